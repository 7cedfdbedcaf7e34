"""
Play rollout engine: one simulated possession through the MDP.

Each rollout walks a play from its starting ``(state, shot_clock)`` until it
ends::

    InProgress(s, c)
        │  lapse l ~ L(bucket(c));  c' = max(c - l, 0)
        ├─ c' == 0 ─────────────► Terminal(clock_violation_shot)   forced shot, reward model only
        │  a ~ theta(s, bucket(c'))  restricted to valid actions at s
        ├─ a == shoot ──────────► Terminal(made | missed)           make ~ xi(s)
        │  s' ~ mu(s, a)
        ├─ s' == turnover ──────► Terminal(turnover, 0)
        └─ otherwise ───────────► InProgress(s', c')

A made shot is worth the point value of the shooting state's context (3 for
three-point contexts, 2 otherwise); misses and turnovers score 0.

The shot clock strictly decreases every step (all lapses are positive), so
a rollout from clock ``c`` takes at most ``ceil(c / min_lapse)`` steps.

Posterior draws
---------------
By default one draw index is fixed for the whole rollout, so a trajectory
lives in a single sampled "world".  With ``draw_mode="per_step"`` a fresh
draw is taken for every step; policy, transition and reward lookups inside
one step still share the same draw.

Sampling failures are never defaulted: a bad probability vector raises
:class:`InvalidDistributionError` with the lookup key that produced it.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from playsim.core.sampling import bernoulli, sample_index
from playsim.core.sim_config import DRAW_MODES
from playsim.core.states import ACTIONS, SHOOT, State
from playsim.services.policy_store import PolicyStore
from playsim.services.time_lapse import TimeLapseDistribution

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """How a simulated play ended."""

    MADE = "made"
    MISSED = "missed"
    TURNOVER = "turnover"
    CLOCK_VIOLATION_SHOT = "clock_violation_shot"


@dataclass(frozen=True)
class Moment:
    """One decision of a trajectory: who had the ball, when, and what they did."""

    state: State
    shot_clock: float
    action: str
    draw: int


@dataclass
class Trajectory:
    """Full record of one rollout."""

    start_state: State
    start_clock: float
    moments: List[Moment] = field(repr=False)
    outcome: Outcome
    reward: int
    draw: int

    @property
    def steps(self) -> int:
        return len(self.moments)

    @property
    def shooter(self) -> Optional[State]:
        """State the play ended in when it ended with a shot."""
        if self.outcome == Outcome.TURNOVER:
            return None
        return self.moments[-1].state


class PlayRolloutEngine:
    """
    Stochastic state machine over a :class:`PolicyStore`.

    The engine holds only read-only references, so one instance can serve
    concurrent rollouts as long as each call gets its own ``rng``.
    """

    def __init__(
        self,
        store: PolicyStore,
        lapses: TimeLapseDistribution,
        draw_mode: str = "per_trajectory",
    ):
        if draw_mode not in DRAW_MODES:
            raise ValueError(f"unknown draw_mode {draw_mode!r}; expected one of {sorted(DRAW_MODES)}")
        if lapses.buckets.max_clock != store.buckets.max_clock:
            logger.warning(
                "Lapse table covers [0, %.1f] but policy table covers [0, %.1f]",
                lapses.buckets.max_clock, store.buckets.max_clock,
            )
        self.store = store
        self.lapses = lapses
        self.draw_mode = draw_mode

    def max_steps(self, shot_clock: Optional[float] = None) -> int:
        """Upper bound on the number of steps of a rollout starting at ``shot_clock``."""
        clock = self.store.buckets.max_clock if shot_clock is None else shot_clock
        return max(1, int(math.ceil(clock / self.lapses.min_lapse)))

    def rollout(
        self,
        state: State,
        shot_clock: float,
        rng: np.random.Generator,
        draw: Optional[int] = None,
    ) -> Trajectory:
        """
        Simulate one play to termination.

        Args:
            state: Starting ``(player, context)`` state.
            shot_clock: Starting shot clock in seconds.
            rng: Random stream owned by this call.
            draw: Posterior draw to use.  Drawn uniformly when omitted.  In
                ``per_step`` mode this is only the first step's draw.

        Raises:
            UnknownKeyError: The starting state is not in the tables.
            InvalidDistributionError: A policy or transition row cannot be
                sampled from, or a make probability is outside [0, 1].
        """
        store = self.store
        if not (math.isfinite(shot_clock) and shot_clock >= 0):
            raise ValueError(f"shot_clock must be a finite non-negative number, got {shot_clock!r}")
        s = store.states.position(state)
        if draw is None:
            draw = int(rng.integers(store.num_draws))
        elif not 0 <= draw < store.num_draws:
            raise IndexError(f"draw {draw} out of range [0, {store.num_draws})")

        start_state, start_clock, first_draw = state, float(shot_clock), draw
        clock = start_clock
        moments: List[Moment] = []

        while True:
            if self.draw_mode == "per_step" and moments:
                draw = int(rng.integers(store.num_draws))

            lapse = self.lapses.sample_with_fallback(self.lapses.buckets.bucket(clock), rng)
            clock = max(clock - lapse, 0.0)

            if clock == 0.0:
                moments.append(Moment(state, 0.0, SHOOT, draw))
                made = bernoulli(store.make_prob_at(s, draw), rng, key=("reward", state, draw))
                return Trajectory(
                    start_state, start_clock, moments,
                    Outcome.CLOCK_VIOLATION_SHOT, state.points if made else 0, first_draw,
                )

            bucket = store.buckets.bucket(clock)
            probs = store.policy_at(s, bucket, draw)
            action = ACTIONS[sample_index(probs, rng, key=("policy", state, bucket, draw))]
            moments.append(Moment(state, clock, action, draw))

            if action == SHOOT:
                made = bernoulli(store.make_prob_at(s, draw), rng, key=("reward", state, draw))
                return Trajectory(
                    start_state, start_clock, moments,
                    Outcome.MADE if made else Outcome.MISSED, state.points if made else 0, first_draw,
                )

            row = store.transition_at(s, action, draw)
            nxt = sample_index(row, rng, key=("transition", state, action, draw))
            if nxt == store.states.turnover_index:
                return Trajectory(start_state, start_clock, moments, Outcome.TURNOVER, 0, first_draw)

            s = nxt
            state = store.states[s]
