"""State and action vocabulary of the possession MDP.

A state is a ``(player, context)`` pair: the stable numeric code of the
player holding (or about to act with) the ball, and a context label for
what that player is doing.  Contexts come in two families:

* **Non-shot contexts**: ``dribble``, ``pass`` (ball just received from a
  pass) and ``gain_possession``.
* **Shot contexts**: ``<range>_<proximity>`` where range is one of
  ``close2``, ``long2``, ``three`` and proximity is ``open`` or
  ``contested`` (nearest defender at least / closer than 4 ft).

From any state the ball handler picks one of three action categories:
``shoot``, ``pass`` or ``dribble``.  A player already set in a shot context
cannot ``dribble``.  Shooting ends the play; the other two actions move the
play through the transition table.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Final, Iterable, Iterator, Optional, Tuple

import numpy as np

from playsim.core.errors import UnknownKeyError

# ---------------------------------------------------------------------------
# Event vocabulary of the tracking log
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """On-ball event codes recorded in the tracking/event log."""

    MADE_SHOT = "made_shot"
    MISSED_SHOT = "missed_shot"
    OFFENSIVE_REBOUND = "offensive_rebound"
    TURNOVER = "turnover"
    DRIBBLE = "dribble"
    PASS = "pass"
    GAIN_POSSESSION = "gain_possession"
    ASSIST = "assist"


SHOT_EVENTS: Final[frozenset[EventType]] = frozenset(
    {EventType.MADE_SHOT, EventType.MISSED_SHOT}
)

# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------

DRIBBLE: Final[str] = "dribble"
PASS_RECEIVED: Final[str] = "pass"
GAIN_POSSESSION: Final[str] = "gain_possession"

NON_SHOT_CONTEXTS: Final[Tuple[str, ...]] = (DRIBBLE, PASS_RECEIVED, GAIN_POSSESSION)

SHOT_RANGES: Final[Tuple[str, ...]] = ("close2", "long2", "three")
PROXIMITIES: Final[Tuple[str, ...]] = ("open", "contested")

SHOT_CONTEXTS: Final[Tuple[str, ...]] = tuple(
    f"{rng}_{prox}" for rng in SHOT_RANGES for prox in PROXIMITIES
)

#: Nearest-defender distance (ft) at or beyond which a shot counts as open.
OPEN_SHOT_DISTANCE_FT: Final[float] = 4.0

#: Event codes that map directly onto a non-shot context.  Rebounds restart
#: the possession, assists are credited to the passer of the shot event.
_EVENT_CONTEXT: Final[Dict[EventType, str]] = {
    EventType.DRIBBLE: DRIBBLE,
    EventType.PASS: PASS_RECEIVED,
    EventType.GAIN_POSSESSION: GAIN_POSSESSION,
    EventType.OFFENSIVE_REBOUND: GAIN_POSSESSION,
    EventType.ASSIST: PASS_RECEIVED,
}

# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

SHOOT: Final[str] = "shoot"
PASS: Final[str] = "pass"
DRIBBLE_ACTION: Final[str] = "dribble"

#: Policy action categories, in table order (last axis of ``theta``).
ACTIONS: Final[Tuple[str, ...]] = (SHOOT, PASS, DRIBBLE_ACTION)

#: Non-terminal actions, in table order (action axis of ``mu``).
TRANSITION_ACTIONS: Final[Tuple[str, ...]] = (PASS, DRIBBLE_ACTION)

#: Label of the turnover sentinel.  In a transition row over ``S`` states it
#: occupies column ``S``, one past the last real state.
TURNOVER_SENTINEL: Final[str] = "turnover"


def is_shot_context(context: str) -> bool:
    return context in SHOT_CONTEXTS


def point_value(context: str) -> int:
    """Points awarded for a made shot taken from ``context``.

    Three-point contexts are worth 3.  Everything else, including a shot
    forced from a dribble or pass context, is a two-point attempt.
    """
    return 3 if context.startswith("three") else 2


def shot_context(shot_range: str, defender_distance: float,
                 open_threshold: float = OPEN_SHOT_DISTANCE_FT) -> str:
    """Encode a shot attempt as a context label.

    >>> shot_context("three", 6.2)
    'three_open'
    >>> shot_context("long2", 2.5)
    'long2_contested'
    """
    if shot_range not in SHOT_RANGES:
        raise ValueError(f"unknown shot range {shot_range!r}; expected one of {SHOT_RANGES}")
    proximity = "open" if defender_distance >= open_threshold else "contested"
    return f"{shot_range}_{proximity}"


def context_for_event(
    event: str,
    shot_range: Optional[str] = None,
    defender_distance: Optional[float] = None,
) -> str:
    """Map a logged event onto the state context it leaves the ball handler in."""
    kind = EventType(event)
    if kind in SHOT_EVENTS:
        if shot_range is None or defender_distance is None:
            raise ValueError(
                f"{kind.value} events need shot_range and defender_distance to build a context"
            )
        return shot_context(shot_range, defender_distance)
    try:
        return _EVENT_CONTEXT[kind]
    except KeyError:
        raise ValueError(f"event {kind.value!r} does not start or continue a play") from None


def default_action_mask(contexts: Iterable[str]) -> np.ndarray:
    """Boolean ``(S, len(ACTIONS))`` mask of the actions valid at each state."""
    rows = []
    for context in contexts:
        rows.append([True, True, not is_shot_context(context)])
    return np.array(rows, dtype=bool).reshape(-1, len(ACTIONS))


# ---------------------------------------------------------------------------
# State and index
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class State:
    """One ``(player, context)`` cell of the MDP."""

    player: int
    context: str

    @property
    def is_shot(self) -> bool:
        return is_shot_context(self.context)

    @property
    def points(self) -> int:
        return point_value(self.context)

    def __str__(self) -> str:
        return f"{self.player}:{self.context}"


class StateIndex:
    """Ordered, duplicate-free list of states with O(1) position lookup.

    The order fixes the ``S`` axis of every posterior table, so it must be
    the order the external model fit used.
    """

    __slots__ = ("_states", "_positions")

    def __init__(self, states: Iterable[State]):
        ordered = tuple(states)
        positions: Dict[State, int] = {}
        for i, state in enumerate(ordered):
            if state in positions:
                raise ValueError(f"duplicate state {state} at positions {positions[state]} and {i}")
            positions[state] = i
        self._states = ordered
        self._positions = positions

    @classmethod
    def from_pairs(cls, players: Iterable[int], contexts: Iterable[str]) -> StateIndex:
        """Build from parallel player / context sequences."""
        return cls(State(int(p), str(c)) for p, c in zip(players, contexts))

    def position(self, state: State) -> int:
        try:
            return self._positions[state]
        except KeyError:
            raise UnknownKeyError((state.player, state.context)) from None

    def lookup(self, player: int, context: str) -> int:
        return self.position(State(int(player), context))

    def __getitem__(self, i: int) -> State:
        return self._states[i]

    def __contains__(self, state: object) -> bool:
        return state in self._positions

    def __iter__(self) -> Iterator[State]:
        return iter(self._states)

    def __len__(self) -> int:
        return len(self._states)

    @property
    def contexts(self) -> Tuple[str, ...]:
        return tuple(s.context for s in self._states)

    @property
    def turnover_index(self) -> int:
        """Column of the turnover sentinel in a transition row."""
        return len(self._states)

    def __repr__(self) -> str:
        return f"StateIndex(n={len(self._states)})"
