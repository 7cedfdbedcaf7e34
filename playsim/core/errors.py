"""Exception taxonomy for the possession simulator.

Three failure modes matter to callers and each has its own type:

- :class:`EmptyBucketError`: no historical lapses fall in a shot-clock
  bucket.  Recoverable: the time-lapse model can borrow a neighbouring
  bucket.
- :class:`UnknownKeyError`: a ``(player, context)`` key is not present in
  a lookup table.  Fatal to the operation that referenced it.
- :class:`InvalidDistributionError`: a probability vector used for sampling
  is empty, negative, non-finite or sums to zero.  Fatal to the rollout that
  hit it; carries the offending key so data bugs can be told apart from
  sampling bugs.

``UnknownKeyError`` also subclasses :class:`KeyError` and
``InvalidDistributionError`` subclasses :class:`ValueError`, so generic
handlers written against the builtin types keep working.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class SimulationError(Exception):
    """Base class for every error raised by ``playsim``."""


class EmptyBucketError(SimulationError):
    """A shot-clock bucket has no observed time lapses."""

    def __init__(self, bucket: int, message: Optional[str] = None):
        self.bucket = bucket
        super().__init__(message or f"no observed time lapses in shot-clock bucket {bucket}")


class UnknownKeyError(SimulationError, KeyError):
    """A state or ``(player, context)`` key is absent from a lookup table."""

    def __init__(self, key: Any, message: Optional[str] = None):
        self.key = key
        super().__init__(message or f"unknown key {key!r}")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])


class InvalidDistributionError(SimulationError, ValueError):
    """A probability vector cannot be sampled from."""

    def __init__(
        self,
        key: Any,
        probs: Optional[Sequence[float]] = None,
        message: Optional[str] = None,
    ):
        self.key = key
        self.probs = None if probs is None else list(probs)
        super().__init__(
            message or f"invalid probability vector at {key!r}: {self.probs!r}"
        )
