"""
Per-team starting conditions of historical plays.

Every simulated play starts from the ball handler and shot clock of the
first on-ball event of a real play.  The extractor only projects those
starting conditions out of an already-filtered event log (fouls and the
like removed upstream); it never re-filters.

Output order follows play index order so repeated runs over the same log
line up play for play.
"""

import logging
from dataclasses import dataclass
from typing import List

import pandas as pd

from playsim.core.states import State, context_for_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitialCondition:
    """Starting ``(state, shot_clock)`` of one historical play."""

    play_id: int
    state: State
    shot_clock: float


def _team_mask(history: pd.DataFrame, team) -> pd.Series:
    # team ids may load as int64 from CSV; teams() hands them out as strings
    return history["team"].astype(str) == str(team)


def _first_events(history: pd.DataFrame, team: str) -> pd.DataFrame:
    for col in ("play_id", "team", "entity", "shot_clock"):
        if col not in history.columns:
            raise ValueError(f"event log is missing required column {col!r}")
    team_rows = history[_team_mask(history, team)]
    # head(1) keeps the first logged event of each play; the stable sort then
    # puts plays in index order without reordering events inside a play
    firsts = team_rows.groupby("play_id", sort=False).head(1)
    return firsts.sort_values("play_id", kind="stable")


def _row_context(row: pd.Series) -> str:
    context = row.get("context")
    if isinstance(context, str) and context:
        return context
    if "event" not in row.index:
        raise ValueError("event log needs a 'context' or an 'event' column")
    return context_for_event(
        row["event"],
        shot_range=row.get("shot_range"),
        defender_distance=row.get("def_dist"),
    )


def extract(history: pd.DataFrame, team: str) -> List[InitialCondition]:
    """
    One :class:`InitialCondition` per play of ``team``, in play order.

    The state is the first event's ``(entity, context)``.  When the log has
    no ``context`` column the context is derived from the event code (and
    ``shot_range`` / ``def_dist`` for shot events).
    """
    firsts = _first_events(history, team)
    conditions = [
        InitialCondition(
            play_id=int(row["play_id"]),
            state=State(int(row["entity"]), _row_context(row)),
            shot_clock=float(row["shot_clock"]),
        )
        for _, row in firsts.iterrows()
    ]
    logger.info("Extracted %d initial states for team %s", len(conditions), team)
    return conditions


def teams(history: pd.DataFrame) -> List[str]:
    """Teams present in the log, in order of first appearance."""
    return [str(t) for t in history["team"].drop_duplicates()]


def observed_points(history: pd.DataFrame, team: str) -> float:
    """Points ``team`` actually scored over its plays in the log.

    This is the observed counterpart of one simulated iteration total.
    """
    if "points" not in history.columns:
        raise ValueError("event log needs a 'points' column to total observed points")
    return float(history.loc[_team_mask(history, team), "points"].fillna(0).sum())
