"""
Read-only container for posterior parameter draws, plus policy perturbation.

The Bayesian model fit happens elsewhere.  What arrives here is three
arrays of posterior draws, one per parameter family:

    theta  (D, S, B, A)      shot policy: P(action | state, clock bucket)
    mu     (D, S, T, S + 1)  transitions: P(next state | state, action);
                             column S is the turnover sentinel
    xi     (D, S)            shot accuracy: P(make | shot from state)

with ``D`` draws, ``S`` states (ordered by a :class:`StateIndex`), ``B``
shot-clock buckets, ``A = len(ACTIONS)`` action categories and
``T = len(TRANSITION_ACTIONS)`` non-terminal actions.

The store validates everything once at construction and then freezes its
arrays, so one instance can be shared by reference across any number of
concurrent rollouts without locking.

Counterfactual strategies are expressed as :class:`PerturbationRule`
lists.  :func:`perturb` rescales the targeted action probability and lets
the other valid actions of the same row absorb the complement, keeping
every row on the simplex.  :meth:`PolicyStore.perturbed` wraps that into a
new store that shares the transition and reward draws of the original.

Usage::

    store = PolicyStore(states, buckets, theta, mu, xi)
    fewer_long_twos = PerturbationRule(
        targets={(201939, "long2_open"), (201939, "long2_contested")},
        clock_buckets={1, 2},
        factor=0.5,
    )
    variant = store.perturbed([fewer_long_twos])
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from playsim.core.errors import InvalidDistributionError
from playsim.core.shot_clock import ClockBuckets
from playsim.core.states import (
    ACTIONS,
    SHOOT,
    TRANSITION_ACTIONS,
    State,
    StateIndex,
    default_action_mask,
)

logger = logging.getLogger(__name__)

_ACTION_POS: Dict[str, int] = {a: i for i, a in enumerate(ACTIONS)}
_TRANSITION_POS: Dict[str, int] = {a: i for i, a in enumerate(TRANSITION_ACTIONS)}


# ---------------------------------------------------------------------------
# Perturbation rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PerturbationRule:
    """
    Multiply one action's probability for a set of keys and clock buckets.

    Attributes:
        targets: ``(player, context)`` keys the rule applies to.
        clock_buckets: Bucket indices the rule applies to.
        factor: Positive multiplier.  ``1.0`` is a no-op.
        action: Action category being rescaled; the shot decision by default.

    The scaled probability is capped at 1.  Once ``p * factor >= 1`` the
    row saturates: the targeted action takes all the mass and the other
    actions of that row drop to 0.
    """

    targets: FrozenSet[Tuple[int, str]]
    clock_buckets: FrozenSet[int]
    factor: float
    action: str = SHOOT

    def __post_init__(self):
        object.__setattr__(
            self, "targets", frozenset((int(p), str(c)) for p, c in self.targets)
        )
        object.__setattr__(self, "clock_buckets", frozenset(int(b) for b in self.clock_buckets))
        if not np.isfinite(self.factor) or self.factor <= 0:
            raise ValueError(f"perturbation factor must be a positive real, got {self.factor!r}")
        if self.action not in _ACTION_POS:
            raise ValueError(f"unknown action {self.action!r}; expected one of {ACTIONS}")

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "PerturbationRule":
        """
        Build from a JSON-style record::

            {"targets": [[201939, "long2_open"], "201939:long2_contested"],
             "clock_buckets": [1, 2], "factor": 0.5, "action": "shoot"}

        Targets may be ``[player, context]`` pairs or ``"player:context"``
        strings.
        """
        targets = []
        for t in record["targets"]:
            if isinstance(t, str):
                player, _, context = t.partition(":")
                targets.append((int(player), context))
            else:
                player, context = t
                targets.append((int(player), str(context)))
        return cls(
            targets=frozenset(targets),
            clock_buckets=frozenset(record["clock_buckets"]),
            factor=float(record["factor"]),
            action=record.get("action", SHOOT),
        )


def _resolve_rules(
    rules: Sequence[PerturbationRule],
    states: StateIndex,
    num_buckets: int,
) -> List[Tuple[PerturbationRule, List[int], List[int]]]:
    """Map every rule onto table positions, failing before anything is modified."""
    resolved = []
    for rule in rules:
        positions = [states.lookup(p, c) for p, c in sorted(rule.targets)]
        bad = sorted(b for b in rule.clock_buckets if not 0 <= b < num_buckets)
        if bad:
            raise ValueError(f"clock buckets {bad} out of range for a {num_buckets}-bucket policy")
        resolved.append((rule, positions, sorted(rule.clock_buckets)))
    return resolved


def _rescale_rows(rows: np.ndarray, action: int, factor: float, valid: np.ndarray) -> None:
    """
    In-place rescale of a ``(D, A)`` block of policy rows.

    The target probability becomes ``min(p * factor, 1)``; the other valid
    actions are scaled proportionally so the row sums to 1 again.  If they
    held no mass, the complement is split evenly between them.  All-zero
    (unreachable) rows are left alone.
    """
    others = valid.copy()
    others[action] = False
    if not others.any():
        # the target is the only valid action, its probability is pinned at 1
        return

    live = rows.sum(axis=1) > 0
    new = np.minimum(rows[:, action] * factor, 1.0)
    block = rows[:, others]
    rest = block.sum(axis=1)

    scaled = live & (rest > 0)
    block[scaled] *= ((1.0 - new[scaled]) / rest[scaled])[:, None]
    spread = live & (rest <= 0)
    block[spread] = ((1.0 - new[spread]) / others.sum())[:, None]

    rows[:, others] = block
    rows[live, action] = new[live]


def perturb(
    theta: np.ndarray,
    states: StateIndex,
    rules: Sequence[PerturbationRule],
    valid: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Apply ``rules`` in order to a copy of ``theta`` and return the copy.

    Every draw is perturbed identically.  Rules that overlap compound: each
    rule's rescale is applied (and the rows renormalised) before the next
    rule runs.  All rule keys are resolved first, so an unknown key raises
    :class:`UnknownKeyError` with ``theta`` untouched.

    Args:
        theta: ``(D, S, B, A)`` policy draws.
        states: State order of the ``S`` axis.
        rules: Rules to apply, in order.
        valid: ``(S, A)`` boolean mask of valid actions.  Derived from the
            state contexts when omitted.
    """
    theta = np.asarray(theta, dtype=float)
    if theta.ndim != 4:
        raise ValueError(f"theta must be 4-dimensional (D, S, B, A), got shape {theta.shape}")
    if valid is None:
        valid = default_action_mask(states.contexts)
    resolved = _resolve_rules(rules, states, theta.shape[2])

    out = theta.copy()
    for rule, positions, buckets in resolved:
        if rule.factor == 1.0:
            logger.debug("Skipping no-op perturbation rule on %d keys", len(positions))
            continue
        a = _ACTION_POS[rule.action]
        for s in positions:
            for b in buckets:
                _rescale_rows(out[:, s, b, :], a, rule.factor, valid[s])
        logger.info(
            "Applied x%.3f to %r on %d keys in buckets %s",
            rule.factor, rule.action, len(positions), buckets,
        )
    return out


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _freeze(arr: np.ndarray) -> np.ndarray:
    if arr.dtype == np.float64 and not arr.flags.writeable:
        return arr
    arr = np.array(arr, dtype=float, copy=True)
    arr.flags.writeable = False
    return arr


def _check_rows(name: str, arr: np.ndarray, tol: float) -> None:
    """Every row on the last axis must sum to 1 (within ``tol``) or be all zero."""
    if not np.all(np.isfinite(arr)):
        idx = tuple(int(i) for i in np.argwhere(~np.isfinite(arr))[0])
        raise InvalidDistributionError((name,) + idx[:-1], arr[idx[:-1]], f"{name} has a non-finite entry at {idx}")
    if np.any(arr < 0):
        idx = tuple(int(i) for i in np.argwhere(arr < 0)[0])
        raise InvalidDistributionError((name,) + idx[:-1], arr[idx[:-1]], f"{name} has a negative entry at {idx}")
    sums = arr.sum(axis=-1)
    bad = ~(np.isclose(sums, 1.0, rtol=0.0, atol=tol) | (sums == 0.0))
    if bad.any():
        idx = tuple(int(i) for i in np.argwhere(bad)[0])
        raise InvalidDistributionError(
            (name,) + idx, arr[idx], f"{name} row {idx} sums to {sums[idx]!r}, expected 1"
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class PolicyStore:
    """
    Immutable lookup over the policy, transition and reward draw families.

    Draw indices are 0-based: ``0 <= draw < num_draws``.
    """

    def __init__(
        self,
        states: StateIndex,
        buckets: ClockBuckets,
        theta: np.ndarray,
        mu: np.ndarray,
        xi: np.ndarray,
        valid: Optional[np.ndarray] = None,
        prob_tol: float = 1e-6,
    ):
        self.states = states
        self.buckets = buckets
        self.prob_tol = prob_tol

        theta = np.asarray(theta, dtype=float)
        mu = np.asarray(mu, dtype=float)
        xi = np.asarray(xi, dtype=float)
        n_s, n_b = len(states), buckets.num_buckets

        if theta.ndim != 4 or theta.shape[1:] != (n_s, n_b, len(ACTIONS)):
            raise ValueError(
                f"theta shape {theta.shape} does not match (D, {n_s}, {n_b}, {len(ACTIONS)})"
            )
        n_d = theta.shape[0]
        if n_d < 1:
            raise ValueError("posterior tables need at least one draw")
        if mu.shape != (n_d, n_s, len(TRANSITION_ACTIONS), n_s + 1):
            raise ValueError(
                f"mu shape {mu.shape} does not match ({n_d}, {n_s}, {len(TRANSITION_ACTIONS)}, {n_s + 1})"
            )
        if xi.shape != (n_d, n_s):
            raise ValueError(f"xi shape {xi.shape} does not match ({n_d}, {n_s})")

        if valid is None:
            valid = default_action_mask(states.contexts)
        valid = np.asarray(valid, dtype=bool)
        if valid.shape != (n_s, len(ACTIONS)):
            raise ValueError(f"valid-action mask shape {valid.shape} does not match ({n_s}, {len(ACTIONS)})")

        _check_rows("theta", theta, prob_tol)
        _check_rows("mu", mu, prob_tol)
        leak = (theta > 0) & ~valid[None, :, None, :]
        if leak.any():
            d, s, b, a = (int(i) for i in np.argwhere(leak)[0])
            raise InvalidDistributionError(
                ("theta", d, s, b), theta[d, s, b],
                f"theta puts mass on invalid action {ACTIONS[a]!r} at state {states[s]}",
            )
        out_of_range = ~((xi >= 0) & (xi <= 1))
        if out_of_range.any():
            d, s = (int(i) for i in np.argwhere(out_of_range)[0])
            raise InvalidDistributionError(("xi", d, s), [xi[d, s]], f"xi[{d}, {s}] outside [0, 1]")

        valid = valid.copy()
        valid.flags.writeable = False
        self.valid = valid
        self.theta = _freeze(theta)
        self.mu = _freeze(mu)
        self.xi = _freeze(xi)

        logger.info(
            "Loaded posterior tables: %d draws, %d states, %d clock buckets",
            n_d, n_s, n_b,
        )

    # ------------------------------------------------------------------ #
    #  Shape                                                               #
    # ------------------------------------------------------------------ #

    @property
    def num_draws(self) -> int:
        return self.theta.shape[0]

    @property
    def num_states(self) -> int:
        return len(self.states)

    @property
    def num_buckets(self) -> int:
        return self.buckets.num_buckets

    def _check_draw(self, draw: int) -> int:
        if not 0 <= draw < self.num_draws:
            raise IndexError(f"draw {draw} out of range [0, {self.num_draws})")
        return draw

    def _check_bucket(self, bucket: int) -> int:
        if not 0 <= bucket < self.num_buckets:
            raise IndexError(f"clock bucket {bucket} out of range [0, {self.num_buckets})")
        return bucket

    # ------------------------------------------------------------------ #
    #  Positional lookups (hot path of the rollout engine)                 #
    # ------------------------------------------------------------------ #

    def policy_at(self, s: int, bucket: int, draw: int) -> np.ndarray:
        """Policy row of state position ``s``, with invalid actions zeroed."""
        row = self.theta[self._check_draw(draw), s, self._check_bucket(bucket)]
        return np.where(self.valid[s], row, 0.0)

    def transition_at(self, s: int, action: str, draw: int) -> np.ndarray:
        if action not in _TRANSITION_POS:
            raise ValueError(f"{action!r} is not a non-terminal action; expected one of {TRANSITION_ACTIONS}")
        return self.mu[self._check_draw(draw), s, _TRANSITION_POS[action]]

    def make_prob_at(self, s: int, draw: int) -> float:
        return float(self.xi[self._check_draw(draw), s])

    # ------------------------------------------------------------------ #
    #  Lookups                                                             #
    # ------------------------------------------------------------------ #

    def policy(self, player: int, context: str, bucket: int, draw: int) -> np.ndarray:
        """Action probabilities (ordered as ``ACTIONS``) for a key and bucket."""
        return self.policy_at(self.states.lookup(player, context), bucket, draw)

    def transition(self, state: State, action: str, draw: int) -> np.ndarray:
        """Next-state probabilities; the last entry is the turnover sentinel."""
        return self.transition_at(self.states.position(state), action, draw)

    def reward_prob(self, shot_state: State, draw: int) -> float:
        """Make probability of a shot taken from ``shot_state``."""
        return self.make_prob_at(self.states.position(shot_state), draw)

    def valid_actions(self, state: State) -> Tuple[str, ...]:
        row = self.valid[self.states.position(state)]
        return tuple(a for a, ok in zip(ACTIONS, row) if ok)

    # ------------------------------------------------------------------ #
    #  Counterfactuals                                                     #
    # ------------------------------------------------------------------ #

    def perturbed(self, rules: Iterable[PerturbationRule]) -> "PolicyStore":
        """New store with perturbed policy draws; transitions and rewards are shared."""
        theta = perturb(self.theta, self.states, list(rules), self.valid)
        return PolicyStore(
            self.states, self.buckets, theta, self.mu, self.xi,
            valid=self.valid, prob_tol=self.prob_tol,
        )

    def __repr__(self) -> str:
        return (
            f"PolicyStore(draws={self.num_draws}, states={self.num_states}, "
            f"buckets={self.num_buckets})"
        )
