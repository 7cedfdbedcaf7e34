"""
Tests for per-team initial-state extraction
Run with: pytest tests/test_initial_states.py -v
"""

import pandas as pd
import pytest

from playsim.core.states import State
from playsim.services import initial_states


@pytest.fixture
def history():
    return pd.DataFrame([
        # play_id, team, entity, event, shot_clock, shot_range, def_dist, points
        (3, "BOS", 11, "dribble", 24.0, None, None, 0),
        (3, "BOS", 11, "pass", 20.0, None, None, 0),
        (3, "BOS", 12, "made_shot", 15.0, "three", 6.0, 3),
        (1, "NYK", 21, "gain_possession", 22.0, None, None, 0),
        (1, "NYK", 21, "missed_shot", 18.0, "close2", 2.0, 0),
        (2, "BOS", 13, "offensive_rebound", 14.0, None, None, 0),
        (2, "BOS", 13, "made_shot", 12.0, "close2", 1.0, 2),
        (5, "BOS", 12, "missed_shot", 9.0, "long2", 5.5, 0),
    ], columns=["play_id", "team", "entity", "event", "shot_clock", "shot_range", "def_dist", "points"])


class TestExtract:
    """First events of each play"""

    def test_one_condition_per_play_in_play_order(self, history):
        plays = initial_states.extract(history, "BOS")
        assert [p.play_id for p in plays] == [2, 3, 5]

    def test_first_event_defines_state_and_clock(self, history):
        plays = {p.play_id: p for p in initial_states.extract(history, "BOS")}
        assert plays[3].state == State(11, "dribble")
        assert plays[3].shot_clock == 24.0
        assert plays[2].state == State(13, "gain_possession")
        assert plays[2].shot_clock == 14.0

    def test_shot_event_context(self, history):
        plays = {p.play_id: p for p in initial_states.extract(history, "BOS")}
        assert plays[5].state == State(12, "long2_open")

    def test_team_filter(self, history):
        plays = initial_states.extract(history, "NYK")
        assert len(plays) == 1
        assert plays[0].state == State(21, "gain_possession")

    def test_unknown_team_gives_nothing(self, history):
        assert initial_states.extract(history, "LAL") == []

    def test_context_column_wins(self, history):
        history = history.assign(context=["pass"] + [None] * (len(history) - 1))
        plays = {p.play_id: p for p in initial_states.extract(history, "BOS")}
        assert plays[3].state == State(11, "pass")
        assert plays[2].state == State(13, "gain_possession")

    def test_missing_column(self, history):
        with pytest.raises(ValueError):
            initial_states.extract(history.drop(columns=["shot_clock"]), "BOS")


class TestTeamSummaries:
    def test_teams_in_order_of_appearance(self, history):
        assert initial_states.teams(history) == ["BOS", "NYK"]

    def test_observed_points(self, history):
        assert initial_states.observed_points(history, "BOS") == 5.0
        assert initial_states.observed_points(history, "NYK") == 0.0

    def test_observed_points_needs_column(self, history):
        with pytest.raises(ValueError):
            initial_states.observed_points(history.drop(columns=["points"]), "BOS")


class TestNumericTeamIds:
    """Team ids read from CSV as integers"""

    @pytest.fixture
    def numeric_history(self):
        return pd.DataFrame({
            "play_id": [1, 1, 2, 3],
            "team": [1610612744, 1610612744, 1610612744, 1610612738],
            "entity": [30, 30, 11, 7],
            "event": ["dribble", "made_shot", "pass", "dribble"],
            "shot_clock": [24.0, 18.0, 21.0, 24.0],
            "shot_range": [None, "three", None, None],
            "def_dist": [None, 7.0, None, None],
            "points": [0, 3, 0, 0],
        })

    def test_teams_round_trip_into_extract(self, numeric_history):
        team = initial_states.teams(numeric_history)[0]
        assert team == "1610612744"
        plays = initial_states.extract(numeric_history, team)
        assert [p.play_id for p in plays] == [1, 2]
        assert plays[0].state == State(30, "dribble")

    def test_integer_team_argument(self, numeric_history):
        assert len(initial_states.extract(numeric_history, 1610612738)) == 1

    def test_observed_points(self, numeric_history):
        assert initial_states.observed_points(numeric_history, "1610612744") == 3.0
