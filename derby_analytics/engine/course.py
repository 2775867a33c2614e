from __future__ import annotations

from typing import Optional

from .data_models import RaceLog
from .frame_index import FrameIndex

DISTANCE_BAND_LIMITS = ((1400.0, 1), (1800.0, 2), (2500.0, 3))
LONG_DISTANCE_BAND = 4


def course_length(log: RaceLog, participant_index: int, frame_index: Optional[FrameIndex] = None) -> float:
    """
    Course length as seen by the recorded race.

    Uses the winner's interpolated distance at the winner's raw finish time; races
    without a winner or frames fall back to the furthest distance the given
    participant covered.
    """
    index = frame_index or FrameIndex(log)
    winner = log.winner_index()
    goal = 0.0
    if winner is not None and len(index):
        goal = index.distance_at(winner, log.results[winner].finish_time_raw)
    if goal > 0.0:
        return goal
    return index.max_distance(participant_index)


def distance_band(length: float) -> int:
    """Maps a course length to its distance category (1 short .. 4 long)."""
    for limit, band in DISTANCE_BAND_LIMITS:
        if length <= limit:
            return band
    return LONG_DISTANCE_BAND


def base_course_speed(length: float) -> float:
    return 20.0 - (length - 2000.0) / 1000.0

