"""
Tests for the simulation driver and result statistics
Run with: pytest tests/test_driver.py -v
"""

from dataclasses import replace

import numpy as np
import pytest

from conftest import HANDLER, SHOOTER, SNIPER, empty_tables
from playsim.core.errors import InvalidDistributionError
from playsim.core.sim_config import SimConfig
from playsim.core.states import State
from playsim.services.driver import SimulationDriver, SimulationResult, compare
from playsim.services.initial_states import InitialCondition
from playsim.services.policy_store import PerturbationRule, PolicyStore

CFG = SimConfig(num_iterations=50, seed=123)


def _random_plays(rs, n=12, seed=0):
    rng = np.random.default_rng(seed)
    return [
        InitialCondition(
            play_id=j,
            state=rs.states[int(rng.integers(len(rs.states)))],
            shot_clock=float(rng.uniform(5.0, 24.0)),
        )
        for j in range(n)
    ]


class TestDeterministicTotals:
    """Totals that can be worked out by hand"""

    def test_totals_match_analytic_sum(self, store, one_second):
        # 3 x SHOOTER (2) + 2 x HANDLER -> SHOOTER (2) + SNIPER (3) = 13
        plays = [(SHOOTER, 24.0)] * 3 + [(HANDLER, 20.0)] * 2 + [(SNIPER, 10.0)]
        result = SimulationDriver(one_second, CFG).run(plays, store, num_iterations=100)
        assert result.num_iterations == 100
        assert result.num_plays == 6
        assert np.all(result.totals == 13)
        assert result.mean == 13.0
        assert result.sd == 0.0

    def test_initial_condition_records(self, store, one_second):
        plays = [InitialCondition(7, SNIPER, 24.0), InitialCondition(8, SHOOTER, 12.0)]
        result = SimulationDriver(one_second, CFG).run(plays, store)
        assert np.all(result.totals == 5)
        assert result.num_iterations == CFG.num_iterations

    def test_empty_play_list_scores_zero(self, store, one_second):
        result = SimulationDriver(one_second, CFG).run([], store, num_iterations=5)
        assert result.totals.tolist() == [0.0] * 5

    def test_invalid_iteration_count(self, store, one_second):
        with pytest.raises(ValueError):
            SimulationDriver(one_second, CFG).run([(SHOOTER, 24.0)], store, num_iterations=0)


class TestReproducibility:
    """Seeded runs and worker independence"""

    def test_same_seed_same_totals(self, rand_store, one_second):
        plays = _random_plays(rand_store)
        driver = SimulationDriver(one_second, CFG)
        a = driver.run(plays, rand_store, seed=7)
        b = driver.run(plays, rand_store, seed=7)
        assert np.array_equal(a.totals, b.totals)

    def test_different_seeds_differ(self, rand_store, one_second):
        plays = _random_plays(rand_store)
        driver = SimulationDriver(one_second, CFG)
        a = driver.run(plays, rand_store, seed=1)
        b = driver.run(plays, rand_store, seed=2)
        assert not np.array_equal(a.totals, b.totals)

    def test_config_seed_is_default(self, rand_store, one_second):
        plays = _random_plays(rand_store)
        driver = SimulationDriver(one_second, CFG)
        assert np.array_equal(driver.run(plays, rand_store).totals, driver.run(plays, rand_store, seed=123).totals)

    def test_workers_do_not_change_results(self, rand_store, one_second):
        plays = _random_plays(rand_store)
        serial = SimulationDriver(one_second, CFG).run(plays, rand_store, seed=3)
        threaded = SimulationDriver(one_second, replace(CFG, workers=4)).run(plays, rand_store, seed=3)
        assert np.array_equal(serial.totals, threaded.totals)

    def test_baseline_and_variant_are_separate(self, rand_store, one_second):
        plays = _random_plays(rand_store, n=20)
        targets = {(s.player, s.context) for s in rand_store.states}
        variant_store = rand_store.perturbed([
            PerturbationRule(targets=targets, clock_buckets={0, 1, 2}, factor=0.1),
        ])
        driver = SimulationDriver(one_second, CFG)
        baseline = driver.run(plays, rand_store, seed=5)
        variant = driver.run(plays, variant_store, seed=5, label="fewer_shots")
        assert variant.label == "fewer_shots"
        assert not np.array_equal(baseline.totals, variant.totals)
        # the baseline run is unaffected by the variant run
        assert np.array_equal(baseline.totals, driver.run(plays, rand_store, seed=5).totals)


class TestFailures:
    """on_error handling"""

    @pytest.fixture
    def broken(self, store):
        # HANDLER's transition rows are emptied in a copy of the tables
        theta, mu, xi = empty_tables(store.states)
        theta[:] = store.theta
        xi[:] = store.xi
        mu[:] = store.mu
        mu[:, 1] = 0.0
        return PolicyStore(store.states, store.buckets, theta, mu, xi)

    def test_raise_aborts(self, broken, one_second):
        driver = SimulationDriver(one_second, CFG)
        with pytest.raises(InvalidDistributionError):
            driver.run([(SHOOTER, 24.0), (HANDLER, 24.0)], broken)

    def test_skip_counts_failures(self, broken, one_second):
        driver = SimulationDriver(one_second, replace(CFG, on_error="skip"))
        result = driver.run([(SHOOTER, 24.0), (HANDLER, 24.0)], broken, num_iterations=10)
        assert result.failures == 10
        assert np.all(result.totals == 2)

    def test_unknown_start_state_aborts(self, store, one_second):
        driver = SimulationDriver(one_second, CFG)
        with pytest.raises(KeyError):
            driver.run([(State(99, "dribble"), 24.0)], store)


class TestResultStatistics:
    def test_percentiles_and_ci(self):
        result = SimulationResult("baseline", np.arange(1.0, 101.0), num_plays=10)
        assert result.mean == 50.5
        assert result.percentile(50) == pytest.approx(50.5)
        lo, hi = result.ci_mean(seed=0)
        assert lo < 50.5 < hi

    def test_percentile_of_observed(self):
        result = SimulationResult("baseline", np.arange(1.0, 101.0))
        assert result.percentile_of(50.5) == pytest.approx(50.0)
        assert result.percentile_of(0.0) == 0.0
        assert result.percentile_of(1000.0) == 100.0

    def test_to_dict(self):
        d = SimulationResult("baseline", np.array([10.0, 12.0, 14.0]), num_plays=4).to_dict()
        assert d["label"] == "baseline"
        assert d["n_iterations"] == 3
        assert d["n_plays"] == 4
        assert d["mean"] == 12.0

    def test_compare_detects_shift(self):
        rng = np.random.default_rng(0)
        base = SimulationResult("baseline", rng.normal(100, 5, 400))
        more = SimulationResult("variant", rng.normal(104, 5, 400))
        out = compare(base, more)
        assert out["mean_diff"] == pytest.approx(4.0, abs=1.0)
        assert out["p_value"] < 0.01
        assert set(out) == {"baseline", "variant", "mean_diff", "pct_change", "p_value"}

    def test_compare_identical_constant_samples(self):
        a = SimulationResult("baseline", np.full(20, 13.0))
        b = SimulationResult("variant", np.full(20, 13.0))
        out = compare(a, b)
        assert out["mean_diff"] == 0.0
        assert out["p_value"] == 1.0
