"""Shot-clock phase buckets.

Policy and time-lapse tables are indexed by a small number of ordered
shot-clock phases rather than the raw clock.  :class:`ClockBuckets` holds
the bucket edges and maps a clock value onto its phase.

Invariant: edges are strictly increasing, start at 0 and end at the league
shot-clock length, so the buckets partition ``[0, max_clock]`` without gaps
or overlap.  Bucket ``i`` is the half-open interval
``[edges[i], edges[i+1])`` except the last, which also holds ``max_clock``.
Bucket 0 is therefore the *late-clock* phase.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple

import numpy as np


class ClockBuckets:
    """Partition of ``[0, max_clock]`` into ordered shot-clock phases."""

    __slots__ = ("_edges",)

    def __init__(self, edges: Sequence[float]):
        arr = np.asarray(edges, dtype=float)
        if arr.ndim != 1 or arr.size < 2:
            raise ValueError("clock bucket edges need at least two values")
        if arr[0] != 0.0:
            raise ValueError(f"first clock bucket edge must be 0, got {arr[0]!r}")
        if not np.all(np.diff(arr) > 0):
            raise ValueError(f"clock bucket edges must be strictly increasing: {arr.tolist()}")
        arr.flags.writeable = False
        self._edges = arr

    # ------------------------------------------------------------------ #
    #  Constructors                                                        #
    # ------------------------------------------------------------------ #

    @classmethod
    def equal(cls, max_clock: float, num_buckets: int) -> ClockBuckets:
        """Equal-width buckets."""
        if num_buckets < 1:
            raise ValueError(f"num_buckets must be >= 1, got {num_buckets!r}")
        return cls(np.linspace(0.0, float(max_clock), num_buckets + 1))

    @classmethod
    def quantile(cls, values: Iterable[float], max_clock: float, num_buckets: int) -> ClockBuckets:
        """Buckets holding (roughly) equal shares of the observed clock values.

        Raises:
            ValueError: If there are no finite values, or if repeated values
                make two interior quantiles coincide.
        """
        if num_buckets < 1:
            raise ValueError(f"num_buckets must be >= 1, got {num_buckets!r}")
        arr = np.asarray(list(values), dtype=float)
        arr = np.clip(arr[np.isfinite(arr)], 0.0, max_clock)
        if arr.size == 0:
            raise ValueError("cannot build quantile clock buckets from zero observations")
        interior = np.quantile(arr, np.linspace(0.0, 1.0, num_buckets + 1)[1:-1])
        edges = np.concatenate(([0.0], interior, [float(max_clock)]))
        if not np.all(np.diff(edges) > 0):
            raise ValueError(
                f"quantile clock buckets collapsed ({edges.tolist()}); "
                "use fewer buckets or the equal-width method"
            )
        return cls(edges)

    # ------------------------------------------------------------------ #
    #  Lookup                                                              #
    # ------------------------------------------------------------------ #

    def bucket(self, clock: float) -> int:
        """Phase index of ``clock``.  Values outside the range are clamped."""
        i = int(np.searchsorted(self._edges, clock, side="right")) - 1
        return min(max(i, 0), self.num_buckets - 1)

    def assign(self, clocks: Sequence[float]) -> np.ndarray:
        """Vectorised :meth:`bucket` over an array-like of clock values."""
        arr = np.asarray(clocks, dtype=float)
        idx = np.searchsorted(self._edges, arr, side="right") - 1
        return np.clip(idx, 0, self.num_buckets - 1)

    @property
    def edges(self) -> np.ndarray:
        return self._edges

    @property
    def num_buckets(self) -> int:
        return self._edges.size - 1

    @property
    def max_clock(self) -> float:
        return float(self._edges[-1])

    def bounds(self, bucket: int) -> Tuple[float, float]:
        return float(self._edges[bucket]), float(self._edges[bucket + 1])

    def __len__(self) -> int:
        return self.num_buckets

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ClockBuckets):
            return NotImplemented
        return np.array_equal(self._edges, other._edges)

    def __hash__(self) -> int:
        return hash(tuple(self._edges.tolist()))

    def __repr__(self) -> str:
        return f"ClockBuckets({[round(e, 3) for e in self._edges.tolist()]})"
