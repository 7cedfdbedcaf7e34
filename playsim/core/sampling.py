"""Validated categorical sampling.

Every random choice the rollout makes goes through these two helpers so a
malformed probability vector always surfaces as
:class:`~playsim.core.errors.InvalidDistributionError` (tagged with the
lookup key that produced it) instead of a silent default.

Vectors are renormalised by their own total before sampling, so rows that
sum to 1 only up to floating tolerance are fine.  Zero-mass entries are
never selected.
"""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np

from playsim.core.errors import InvalidDistributionError


def sample_index(probs: Sequence[float], rng: np.random.Generator, key: Any = None) -> int:
    """Draw one index from an (unnormalised) probability vector.

    Raises:
        InvalidDistributionError: If the vector is empty, has a negative or
            non-finite entry, or sums to zero.
    """
    p = np.asarray(probs, dtype=float)
    if p.ndim != 1 or p.size == 0:
        raise InvalidDistributionError(key, p.ravel().tolist(), f"empty probability vector at {key!r}")
    if not np.all(np.isfinite(p)) or np.any(p < 0):
        raise InvalidDistributionError(key, p.tolist())
    cdf = np.cumsum(p)
    total = cdf[-1]
    if total <= 0:
        raise InvalidDistributionError(key, p.tolist(), f"probability vector at {key!r} sums to {total!r}")
    u = rng.random() * total
    return int(np.searchsorted(cdf, u, side="right"))


def bernoulli(prob: float, rng: np.random.Generator, key: Any = None) -> bool:
    """Return True with probability ``prob``."""
    p = float(prob)
    if not (0.0 <= p <= 1.0):
        raise InvalidDistributionError(key, [p], f"success probability at {key!r} outside [0, 1]: {p!r}")
    return bool(rng.random() < p)
