"""
Simulation driver: repeated rollouts of a team's plays into point totals.

One *iteration* rolls out every historical play of a team once and sums
the terminal rewards, giving one simulated final score.  Repeating that
``num_iterations`` times yields a distribution of totals that can be set
against the team's observed points, or against the totals produced under a
perturbed policy.

Randomness
----------
Every rollout gets its own ``numpy.random.Generator`` spawned from a single
root :class:`numpy.random.SeedSequence`: iteration ``i`` owns child ``i``
and play ``j`` of that iteration owns grandchild ``(i, j)``.  The streams
are independent, results do not depend on ``workers``, and two runs with
the same seed (e.g. baseline vs. perturbed policy) see common random
numbers, which sharpens the paired comparison.

Failures
--------
``on_error="raise"`` (default) aborts the run on the first failed rollout:
a corrupt table usually breaks every rollout the same way, and skipping
would hide it.  ``on_error="skip"`` drops the failed play from that
iteration's total and counts it in :attr:`SimulationResult.failures`.

Usage::

    driver = SimulationDriver(lapses, SimConfig.nba())
    baseline = driver.run(plays, store, seed=7)
    variant = driver.run(plays, store.perturbed(rules), seed=7, label="fewer_long2")
    print(compare(baseline, variant))
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import stats

from playsim.core.errors import SimulationError
from playsim.core.sim_config import SimConfig
from playsim.core.states import State
from playsim.services.initial_states import InitialCondition
from playsim.services.policy_store import PolicyStore
from playsim.services.rollout import PlayRolloutEngine
from playsim.services.time_lapse import TimeLapseDistribution

logger = logging.getLogger(__name__)

PlayStart = Union[InitialCondition, Tuple[State, float]]


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class SimulationResult:
    """Per-iteration simulated point totals for one (team, policy) run."""

    label: str
    totals: np.ndarray = field(repr=False)
    num_plays: int = 0
    failures: int = 0

    @property
    def num_iterations(self) -> int:
        return int(self.totals.size)

    @property
    def mean(self) -> float:
        return float(np.mean(self.totals))

    @property
    def sd(self) -> float:
        return float(np.std(self.totals))

    def percentile(self, pct: float) -> float:
        return float(np.percentile(self.totals, pct))

    def ci_mean(
        self,
        confidence: float = 0.95,
        n_boot: int = 1000,
        seed: Optional[int] = None,
    ) -> Tuple[float, float]:
        """Bootstrap CI on the mean simulated total."""
        rng = np.random.default_rng(seed)
        boot = rng.choice(self.totals, size=(n_boot, self.totals.size), replace=True)
        means = np.mean(boot, axis=1)
        alpha = (1 - confidence) / 2
        return float(np.percentile(means, alpha * 100)), float(np.percentile(means, (1 - alpha) * 100))

    def percentile_of(self, observed: float) -> float:
        """Where an observed total falls in the simulated distribution (0-100)."""
        return float(stats.percentileofscore(self.totals, observed, kind="mean"))

    def to_dict(self) -> Dict:
        return {
            "label": self.label,
            "n_iterations": self.num_iterations,
            "n_plays": self.num_plays,
            "failures": self.failures,
            "mean": round(self.mean, 2),
            "sd": round(self.sd, 2),
            "p05": round(self.percentile(5), 1),
            "p50": round(self.percentile(50), 1),
            "p95": round(self.percentile(95), 1),
        }


def compare(baseline: SimulationResult, variant: SimulationResult) -> Dict:
    """
    Compare two total distributions over the same plays.

    Returns the mean difference (variant minus baseline) and a two-sided
    Mann-Whitney U test of the null that both come from the same
    distribution.
    """
    diff = variant.mean - baseline.mean
    pooled = np.concatenate([baseline.totals, variant.totals])
    if np.all(pooled == pooled[0]):
        # identical constant samples; the U statistic has zero variance
        p_value = 1.0
    else:
        p_value = float(
            stats.mannwhitneyu(variant.totals, baseline.totals, alternative="two-sided").pvalue
        )
    return {
        "baseline": baseline.label,
        "variant": variant.label,
        "mean_diff": round(diff, 3),
        "pct_change": round(100.0 * diff / baseline.mean, 2) if baseline.mean else None,
        "p_value": round(p_value, 4),
    }


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

def _as_conditions(initial_states: Sequence[PlayStart]) -> List[InitialCondition]:
    conditions = []
    for j, item in enumerate(initial_states):
        if isinstance(item, InitialCondition):
            conditions.append(item)
        else:
            state, clock = item
            conditions.append(InitialCondition(play_id=j, state=state, shot_clock=float(clock)))
    return conditions


class SimulationDriver:
    """
    Runs every play ``num_iterations`` times against one policy store.

    The lapse table and config are fixed per driver; the policy store is
    passed per run so baseline and perturbed policies can share everything
    else.
    """

    def __init__(self, lapses: TimeLapseDistribution, config: Optional[SimConfig] = None):
        self.lapses = lapses
        self.config = config or SimConfig()

    def _run_iteration(
        self,
        i: int,
        seq: np.random.SeedSequence,
        engine: PlayRolloutEngine,
        plays: List[InitialCondition],
    ) -> Tuple[int, int]:
        total = 0
        failures = 0
        for play, child in zip(plays, seq.spawn(len(plays))):
            rng = np.random.default_rng(child)
            try:
                trajectory = engine.rollout(play.state, play.shot_clock, rng)
            except SimulationError as exc:
                if self.config.on_error == "raise":
                    logger.error("Iteration %d: rollout of play %d failed: %s", i, play.play_id, exc)
                    raise
                failures += 1
                logger.debug("Iteration %d: skipping play %d: %s", i, play.play_id, exc)
                continue
            total += trajectory.reward
        return total, failures

    def run(
        self,
        initial_states: Sequence[PlayStart],
        store: PolicyStore,
        num_iterations: Optional[int] = None,
        seed: Optional[int] = None,
        label: str = "baseline",
    ) -> SimulationResult:
        """
        Simulate ``num_iterations`` totals over ``initial_states``.

        Args:
            initial_states: :class:`InitialCondition` records or plain
                ``(state, shot_clock)`` pairs.
            store: Posterior tables to sample from.
            num_iterations: Outer repetitions; config default when omitted.
            seed: Root seed; config seed when omitted.
            label: Name carried into the result (e.g. the policy variant).
        """
        cfg = self.config
        n_iter = num_iterations if num_iterations is not None else cfg.num_iterations
        if n_iter < 1:
            raise ValueError(f"num_iterations must be >= 1, got {n_iter!r}")
        root = np.random.SeedSequence(seed if seed is not None else cfg.seed)
        plays = _as_conditions(initial_states)
        engine = PlayRolloutEngine(store, self.lapses, draw_mode=cfg.draw_mode)
        iteration_seqs = root.spawn(n_iter)

        logger.info(
            "Running %s: %d iterations x %d plays (workers=%d, draw_mode=%s)",
            label, n_iter, len(plays), cfg.workers, cfg.draw_mode,
        )

        if cfg.workers > 1:
            with ThreadPoolExecutor(max_workers=cfg.workers) as executor:
                futures = [
                    executor.submit(self._run_iteration, i, seq, engine, plays)
                    for i, seq in enumerate(iteration_seqs)
                ]
                outcomes = [f.result() for f in futures]
        else:
            outcomes = [
                self._run_iteration(i, seq, engine, plays)
                for i, seq in enumerate(iteration_seqs)
            ]

        totals = np.array([t for t, _ in outcomes], dtype=float)
        failures = sum(f for _, f in outcomes)
        if failures:
            logger.warning("%s: %d of %d rollouts failed and were skipped", label, failures, n_iter * len(plays))

        result = SimulationResult(label=label, totals=totals, num_plays=len(plays), failures=failures)
        logger.info("%s: mean total %.2f (sd %.2f)", label, result.mean, result.sd)
        return result
