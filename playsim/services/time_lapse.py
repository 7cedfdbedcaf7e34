"""
Empirical shot-clock time-lapse model.

Between two on-ball events the shot clock runs down by a random amount.
Rather than assume a parametric form, the rollout draws that decrement from
the lapses actually observed in historical play data, conditioned on the
shot-clock phase the play is in (late-clock possessions move faster):

    L(bucket) = empirical distribution of {time to next event}
                over events whose shot clock falls in ``bucket``

Non-positive lapses are dropped when the distribution is built.  Every
sampled decrement is therefore strictly positive and a rollout is bounded by
``ceil(max_clock / min_lapse)`` steps.

A bucket with no observations raises :class:`EmptyBucketError` on direct
sampling.  The rollout uses :meth:`TimeLapseDistribution.sample_with_fallback`,
which borrows the nearest non-empty bucket instead of aborting the run.

Usage::

    model = TimeLapseModel(SimConfig.nba())
    lapses = model.estimate(history)
    step = lapses.sample_with_fallback(lapses.buckets.bucket(17.3), rng)
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from playsim.core.errors import EmptyBucketError
from playsim.core.sampling import sample_index
from playsim.core.shot_clock import ClockBuckets
from playsim.core.sim_config import SimConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lapse extraction
# ---------------------------------------------------------------------------

def compute_lapses(history: pd.DataFrame) -> pd.Series:
    """
    Time (seconds) from each event to the next event of the same play.

    Uses the ``lapse`` column when the log already carries one.  Otherwise
    the lapse is derived from the game clock, which counts down, so
    ``lapse = game_clock - next_game_clock``.  The last event of every play
    has no successor and gets NaN.
    """
    if "lapse" in history.columns:
        return history["lapse"].astype(float)
    if "game_clock" not in history.columns or "play_id" not in history.columns:
        raise ValueError("event log needs a 'lapse' column or 'play_id' + 'game_clock' columns")
    next_clock = history.groupby("play_id", sort=False)["game_clock"].shift(-1)
    return (history["game_clock"].astype(float) - next_clock.astype(float)).rename("lapse")


# ---------------------------------------------------------------------------
# Distribution
# ---------------------------------------------------------------------------

@dataclass
class TimeLapseDistribution:
    """Per-bucket empirical categorical distribution of time lapses.

    ``values[b]`` holds the distinct lapse durations seen in bucket ``b`` and
    ``counts[b]`` how often each was observed.  Sampling with weights
    ``counts`` is equivalent to drawing uniformly from the raw multiset.
    """

    buckets: ClockBuckets
    values: Tuple[np.ndarray, ...] = field(repr=False)
    counts: Tuple[np.ndarray, ...] = field(repr=False)
    _fallback: Dict[int, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        if len(self.values) != self.buckets.num_buckets or len(self.counts) != self.buckets.num_buckets:
            raise ValueError(
                f"expected {self.buckets.num_buckets} lapse buckets, "
                f"got {len(self.values)} value / {len(self.counts)} count arrays"
            )
        non_empty = [b for b in range(self.buckets.num_buckets) if self.counts[b].sum() > 0]
        if not non_empty:
            raise EmptyBucketError(-1, "every shot-clock bucket is empty; no lapses to sample")
        for b in range(self.buckets.num_buckets):
            if b in non_empty:
                self._fallback[b] = b
                continue
            # nearest non-empty bucket, ties go to the higher-clock side
            borrow = min(non_empty, key=lambda nb: (abs(nb - b), -nb))
            self._fallback[b] = borrow
            logger.warning(
                "Lapse bucket %d %s is empty; borrowing bucket %d",
                b, self.buckets.bounds(b), borrow,
            )

    @classmethod
    def constant(cls, lapse: float, buckets: ClockBuckets) -> "TimeLapseDistribution":
        """Degenerate distribution that always returns ``lapse``."""
        if lapse <= 0:
            raise ValueError(f"lapse must be positive, got {lapse!r}")
        n = buckets.num_buckets
        return cls(
            buckets=buckets,
            values=tuple(np.array([float(lapse)]) for _ in range(n)),
            counts=tuple(np.array([1]) for _ in range(n)),
        )

    # ------------------------------------------------------------------ #
    #  Sampling                                                            #
    # ------------------------------------------------------------------ #

    def is_empty(self, bucket: int) -> bool:
        return int(self.counts[bucket].sum()) == 0

    def sample(self, bucket: int, rng: np.random.Generator) -> float:
        """Draw one lapse from ``bucket``; raises ``EmptyBucketError`` if it has none."""
        if self.is_empty(bucket):
            raise EmptyBucketError(bucket)
        i = sample_index(self.counts[bucket], rng, key=("lapse", bucket))
        return float(self.values[bucket][i])

    def fallback_bucket(self, bucket: int) -> int:
        return self._fallback[bucket]

    def sample_with_fallback(self, bucket: int, rng: np.random.Generator) -> float:
        return self.sample(self._fallback[bucket], rng)

    # ------------------------------------------------------------------ #
    #  Diagnostics                                                         #
    # ------------------------------------------------------------------ #

    @property
    def min_lapse(self) -> float:
        """Smallest lapse that can be sampled (all stored lapses are > 0)."""
        return float(min(v.min() for v in self.values if v.size))

    def max_steps(self) -> int:
        """Upper bound on rollout steps from a full shot clock."""
        return int(math.ceil(self.buckets.max_clock / self.min_lapse))

    def n_observations(self, bucket: int) -> int:
        return int(self.counts[bucket].sum())

    def mean(self, bucket: int) -> Optional[float]:
        if self.is_empty(bucket):
            return None
        return float(np.average(self.values[bucket], weights=self.counts[bucket]))

    def to_frame(self) -> pd.DataFrame:
        """Long-format table: one row per (bucket, lapse value)."""
        rows: List[Dict] = []
        for b in range(self.buckets.num_buckets):
            total = max(self.n_observations(b), 1)
            for v, c in zip(self.values[b], self.counts[b]):
                rows.append({"bucket": b, "lapse": float(v), "count": int(c), "prob": c / total})
        return pd.DataFrame(rows, columns=["bucket", "lapse", "count", "prob"])


# ---------------------------------------------------------------------------
# Estimator
# ---------------------------------------------------------------------------

class TimeLapseModel:
    """
    Builds :class:`TimeLapseDistribution` tables from historical event logs.

    Bucket edges come either from the caller or from the config: equal-width
    partitions of ``[0, shot_clock_seconds]`` or quantiles of the observed
    shot-clock values.
    """

    def __init__(self, config: Optional[SimConfig] = None):
        self.config = config or SimConfig()

    def build_buckets(self, history: pd.DataFrame) -> ClockBuckets:
        cfg = self.config
        if cfg.bucket_method == "quantile":
            return ClockBuckets.quantile(
                history["shot_clock"], cfg.shot_clock_seconds, cfg.num_clock_buckets
            )
        return ClockBuckets.equal(cfg.shot_clock_seconds, cfg.num_clock_buckets)

    def estimate(
        self,
        history: pd.DataFrame,
        buckets: Optional[ClockBuckets] = None,
    ) -> TimeLapseDistribution:
        """
        Count observed lapses per shot-clock bucket.

        Args:
            history: Event log with a ``shot_clock`` column and either a
                ``lapse`` column or ``play_id`` + ``game_clock``.
            buckets: Bucket edges.  Built from the config when omitted.

        Raises:
            EmptyBucketError: If no bucket has a single usable lapse.
        """
        if "shot_clock" not in history.columns:
            raise ValueError("event log needs a 'shot_clock' column")
        buckets = buckets or self.build_buckets(history)

        frame = pd.DataFrame({
            "shot_clock": history["shot_clock"].astype(float),
            "lapse": compute_lapses(history),
        })
        usable = frame["shot_clock"].notna() & frame["lapse"].notna() & (frame["lapse"] > 0)
        dropped = int((~usable).sum())
        frame = frame[usable]
        if dropped:
            logger.debug("Dropped %d events with missing or non-positive lapse", dropped)

        bucket_ids = buckets.assign(frame["shot_clock"].to_numpy())
        values: List[np.ndarray] = []
        counts: List[np.ndarray] = []
        for b in range(buckets.num_buckets):
            v, c = np.unique(frame["lapse"].to_numpy()[bucket_ids == b], return_counts=True)
            values.append(v)
            counts.append(c)

        dist = TimeLapseDistribution(buckets=buckets, values=tuple(values), counts=tuple(counts))
        logger.info(
            "Estimated lapse distribution over %s from %d events (per bucket: %s)",
            buckets, len(frame), [dist.n_observations(b) for b in range(buckets.num_buckets)],
        )
        return dist
