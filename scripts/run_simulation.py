#!/usr/bin/env python3
"""
Simulate team point totals from posterior draws and compare policy variants.

Reads a filtered event log (CSV) and the posterior draws of the fitted
policy / transition / reward models (NPZ), runs the baseline policy and,
when a rules file is given, the perturbed policy over every play of each
team, and reports the simulated total distributions next to the observed
points.

Usage:
    # Baseline only, all teams
    python scripts/run_simulation.py --events data/events.csv --draws data/draws.npz

    # Baseline vs. "fewer contested long twos" for one team, saved to JSON
    python scripts/run_simulation.py --events data/events.csv --draws data/draws.npz \
        --rules rules/fewer_long2.json --team GSW --iterations 500 --seed 7 \
        --output outputs/gsw_long2.json

The NPZ must hold ``theta``, ``mu``, ``xi`` and the parallel state arrays
``players`` / ``contexts`` that fix the table order.  The rules file is a
JSON list of ``{"targets": [...], "clock_buckets": [...], "factor": x}``
records.
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from playsim.core.sim_config import SimConfig  # noqa: E402
from playsim.core.states import StateIndex  # noqa: E402
from playsim.services import initial_states  # noqa: E402
from playsim.services.driver import SimulationDriver, compare  # noqa: E402
from playsim.services.policy_store import PerturbationRule, PolicyStore  # noqa: E402
from playsim.services.time_lapse import TimeLapseModel  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def load_store(path: str, cfg: SimConfig, history: pd.DataFrame) -> PolicyStore:
    """Load posterior draws from an NPZ archive into a PolicyStore.

    Bucket edges follow the config method, with the bucket count taken from
    the policy draws so the two always agree.
    """
    with np.load(path, allow_pickle=False) as archive:
        missing = {"theta", "mu", "xi", "players", "contexts"} - set(archive.files)
        if missing:
            raise ValueError(f"{path} is missing arrays: {sorted(missing)}")
        states = StateIndex.from_pairs(archive["players"], archive["contexts"])
        bucket_cfg = replace(cfg, num_clock_buckets=int(archive["theta"].shape[2]))
        buckets = TimeLapseModel(bucket_cfg).build_buckets(history)
        return PolicyStore(
            states, buckets,
            theta=archive["theta"], mu=archive["mu"], xi=archive["xi"],
            prob_tol=cfg.prob_tol,
        )


def load_rules(path: str) -> List[PerturbationRule]:
    with open(path) as f:
        records = json.load(f)
    rules = [PerturbationRule.from_dict(r) for r in records]
    logger.info("Loaded %d perturbation rules from %s", len(rules), path)
    return rules


def simulate_team(
    team: str,
    history: pd.DataFrame,
    driver: SimulationDriver,
    store: PolicyStore,
    variant: Optional[PolicyStore] = None,
    seed: Optional[int] = None,
) -> Dict:
    plays = initial_states.extract(history, team)
    if not plays:
        logger.warning("No plays for team %s", team)
        return {}

    baseline = driver.run(plays, store, seed=seed, label="baseline")
    summary: Dict = {"team": team, "baseline": baseline.to_dict()}
    if "points" in history.columns:
        observed = initial_states.observed_points(history, team)
        summary["observed_points"] = observed
        summary["observed_percentile"] = round(baseline.percentile_of(observed), 1)

    if variant is not None:
        perturbed = driver.run(plays, variant, seed=seed, label="perturbed")
        summary["perturbed"] = perturbed.to_dict()
        summary["comparison"] = compare(baseline, perturbed)
    return summary


def main():
    parser = argparse.ArgumentParser(
        description="Simulate possession totals from posterior draws"
    )
    parser.add_argument("--events", required=True, help="Filtered event log CSV")
    parser.add_argument("--draws", required=True, help="Posterior draws NPZ")
    parser.add_argument("--rules", default=None, help="Perturbation rules JSON (optional)")
    parser.add_argument(
        "--team", action="append", default=None,
        help="Team to simulate (repeatable; default: every team in the log)",
    )
    parser.add_argument("--iterations", type=int, default=None, help="Outer iterations")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads")
    parser.add_argument("--seed", type=int, default=None, help="Root RNG seed")
    parser.add_argument("--output", default=None, help="Write summaries to this JSON file")

    args = parser.parse_args()

    cfg = SimConfig.from_env()
    if args.iterations is not None:
        cfg = replace(cfg, num_iterations=args.iterations)
    if args.workers is not None:
        cfg = replace(cfg, workers=args.workers)
    seed = args.seed if args.seed is not None else cfg.seed
    logger.info("Config: %r", cfg)

    history = pd.read_csv(args.events)
    store = load_store(args.draws, cfg, history)
    variant = store.perturbed(load_rules(args.rules)) if args.rules else None

    lapses = TimeLapseModel(cfg).estimate(history, buckets=store.buckets)
    driver = SimulationDriver(lapses, cfg)

    summaries = []
    for team in args.team or initial_states.teams(history):
        summary = simulate_team(team, history, driver, store, variant, seed)
        if summary:
            summaries.append(summary)
            logger.info("%s: %s", team, json.dumps(summary))

    if args.output:
        Path(args.output).parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, "w") as f:
            json.dump(summaries, f, indent=2, default=str)
        logger.info("Saved %d team summaries to %s", len(summaries), args.output)


if __name__ == "__main__":
    main()
