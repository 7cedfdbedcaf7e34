"""Shared synthetic tables for the simulator tests."""

import numpy as np
import pytest

from playsim.core.shot_clock import ClockBuckets
from playsim.core.states import ACTIONS, TRANSITION_ACTIONS, State, StateIndex, default_action_mask
from playsim.services.policy_store import PolicyStore
from playsim.services.time_lapse import TimeLapseDistribution

SHOOTER = State(1, "long2_open")
HANDLER = State(2, "dribble")
SNIPER = State(3, "three_open")

PASS = TRANSITION_ACTIONS.index("pass")
DRIBBLE = TRANSITION_ACTIONS.index("dribble")


def empty_tables(states: StateIndex, n_draws: int = 1, n_buckets: int = 3):
    n_s = len(states)
    theta = np.zeros((n_draws, n_s, n_buckets, len(ACTIONS)))
    mu = np.zeros((n_draws, n_s, len(TRANSITION_ACTIONS), n_s + 1))
    xi = np.zeros((n_draws, n_s))
    return theta, mu, xi


def deterministic_store() -> PolicyStore:
    """
    SHOOTER always shoots and always makes a two.
    HANDLER always passes to SHOOTER.
    SNIPER always shoots and always makes a three.
    """
    states = StateIndex([SHOOTER, HANDLER, SNIPER])
    theta, mu, xi = empty_tables(states)
    theta[:, 0, :, :] = [1.0, 0.0, 0.0]
    theta[:, 1, :, :] = [0.0, 1.0, 0.0]
    theta[:, 2, :, :] = [1.0, 0.0, 0.0]
    mu[:, 1, PASS, 0] = 1.0
    xi[:, 0] = 1.0
    xi[:, 1] = 0.0
    xi[:, 2] = 1.0
    return PolicyStore(states, ClockBuckets.equal(24.0, 3), theta, mu, xi)


def random_store(n_players: int = 3, n_draws: int = 5, seed: int = 0) -> PolicyStore:
    """Dirichlet-random tables over every (player, context) pair."""
    rng = np.random.default_rng(seed)
    contexts = ["dribble", "pass", "long2_contested", "three_open"]
    states = StateIndex(State(p, c) for p in range(1, n_players + 1) for c in contexts)
    valid = default_action_mask(states.contexts)
    theta, mu, xi = empty_tables(states, n_draws=n_draws)
    n_s = len(states)
    for s in range(n_s):
        cols = np.flatnonzero(valid[s])
        for b in range(3):
            theta[:, s, b, cols] = rng.dirichlet(np.ones(cols.size), size=n_draws)
        for t in range(len(TRANSITION_ACTIONS)):
            mu[:, s, t, :] = rng.dirichlet(np.ones(n_s + 1), size=n_draws)
    xi[:] = rng.uniform(0.3, 0.6, size=xi.shape)
    return PolicyStore(states, ClockBuckets.equal(24.0, 3), theta, mu, xi, valid=valid)


@pytest.fixture
def store() -> PolicyStore:
    return deterministic_store()


@pytest.fixture
def rand_store() -> PolicyStore:
    return random_store()


@pytest.fixture
def one_second() -> TimeLapseDistribution:
    return TimeLapseDistribution.constant(1.0, ClockBuckets.equal(24.0, 3))
