"""Simulation configuration: every tunable run constant in one place.

:class:`SimConfig` is a frozen dataclass carrying the league shot-clock
length, the clock bucketing scheme, the outer iteration count and the
execution knobs of the simulation driver.  Defaults are read from the
environment (a ``.env`` file is honoured through ``python-dotenv``) so a
batch job can be re-pointed without code changes.

Typical usage::

    from playsim.core.sim_config import SimConfig

    cfg = SimConfig.from_env()

    # Override a single constant for one experiment:
    from dataclasses import replace
    quick_cfg = replace(cfg, num_iterations=200)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final, Optional

from dotenv import load_dotenv

load_dotenv()

#: League shot-clock durations in seconds.
NBA_SHOT_CLOCK: Final[float] = 24.0
NCAA_SHOT_CLOCK: Final[float] = 30.0

#: Accepted values for ``bucket_method``.
BUCKET_METHODS: Final[frozenset[str]] = frozenset({"equal", "quantile"})

#: Accepted values for ``draw_mode``.
DRAW_MODES: Final[frozenset[str]] = frozenset({"per_trajectory", "per_step"})

#: Accepted values for ``on_error``.
ERROR_POLICIES: Final[frozenset[str]] = frozenset({"raise", "skip"})


def _env_seed() -> Optional[int]:
    raw = os.getenv("SIM_SEED", "").strip()
    return int(raw) if raw else None


@dataclass(frozen=True)
class SimConfig:
    """Immutable configuration bundle for one simulation run.

    Attributes:
        shot_clock_seconds: Full shot-clock length.  Bucket edges partition
            ``[0, shot_clock_seconds]``.
        num_clock_buckets: Number of ordered shot-clock phases used to index
            the policy and time-lapse tables.  Must match the bucket axis of
            the posterior policy draws.
        bucket_method: ``"equal"`` for equal-width buckets or ``"quantile"``
            for buckets holding equal shares of the historical events.
        num_iterations: Outer repetitions of the driver; each produces one
            simulated point total.
        draw_mode: ``"per_trajectory"`` fixes one posterior draw for a whole
            play, ``"per_step"`` redraws at every decision.
        workers: Thread count for the driver.  ``1`` runs inline.
        prob_tol: Tolerance used when checking that table rows sum to 1.
        on_error: ``"raise"`` aborts the run on the first failed rollout,
            ``"skip"`` drops the failed play from its iteration total.
        seed: Root seed of the run.  ``None`` draws fresh OS entropy.
    """

    shot_clock_seconds: float = NBA_SHOT_CLOCK
    num_clock_buckets: int = 3
    bucket_method: str = "equal"
    num_iterations: int = 1000
    draw_mode: str = "per_trajectory"
    workers: int = 1
    prob_tol: float = 1e-6
    on_error: str = "raise"
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.shot_clock_seconds <= 0:
            raise ValueError(
                f"shot_clock_seconds must be positive, got {self.shot_clock_seconds!r}"
            )
        if self.num_clock_buckets < 1:
            raise ValueError(
                f"num_clock_buckets must be >= 1, got {self.num_clock_buckets!r}"
            )
        if self.bucket_method not in BUCKET_METHODS:
            raise ValueError(f"unknown bucket_method {self.bucket_method!r}")
        if self.draw_mode not in DRAW_MODES:
            raise ValueError(f"unknown draw_mode {self.draw_mode!r}")
        if self.on_error not in ERROR_POLICIES:
            raise ValueError(f"unknown on_error policy {self.on_error!r}")
        if self.num_iterations < 1:
            raise ValueError(f"num_iterations must be >= 1, got {self.num_iterations!r}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers!r}")

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def from_env(cls) -> SimConfig:
        """Build a config from ``os.environ`` (after loading ``.env``)."""
        return cls(
            shot_clock_seconds=float(os.getenv("SHOT_CLOCK_SECONDS", str(NBA_SHOT_CLOCK))),
            num_clock_buckets=int(os.getenv("NUM_CLOCK_BUCKETS", "3")),
            bucket_method=os.getenv("CLOCK_BUCKET_METHOD", "equal").strip().lower(),
            num_iterations=int(os.getenv("SIM_ITERATIONS", "1000")),
            draw_mode=os.getenv("DRAW_MODE", "per_trajectory").strip().lower(),
            workers=int(os.getenv("SIM_WORKERS", "1")),
            prob_tol=float(os.getenv("PROB_TOLERANCE", "1e-6")),
            on_error=os.getenv("ROLLOUT_ON_ERROR", "raise").strip().lower(),
            seed=_env_seed(),
        )

    @classmethod
    def nba(cls) -> SimConfig:
        """NBA run: 24-second clock split into early / middle / late phases."""
        return cls(shot_clock_seconds=NBA_SHOT_CLOCK, num_clock_buckets=3)

    @classmethod
    def ncaa(cls) -> SimConfig:
        """NCAA run: 30-second clock, same three phases."""
        return cls(shot_clock_seconds=NCAA_SHOT_CLOCK, num_clock_buckets=3)

    def __repr__(self) -> str:
        return (
            f"SimConfig(clock={self.shot_clock_seconds}, "
            f"buckets={self.num_clock_buckets}/{self.bucket_method}, "
            f"iterations={self.num_iterations}, draw_mode={self.draw_mode!r}, "
            f"workers={self.workers})"
        )
