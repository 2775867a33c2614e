from __future__ import annotations

import math
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from derby_analytics.config import get_config

from .course import base_course_speed, course_length, distance_band
from .data_models import (
    NOT_APPLICABLE,
    SPURT_FAILURE,
    SPURT_SUCCESS,
    AptitudeGrade,
    ParticipantAttributes,
    RaceLog,
    RunningStyle,
    SpurtStats,
)
from .errors import OutOfRangeError
from .frame_index import FrameIndex

# --- Constants sourced from the game's race formulas ---


class Phase(Enum):
    OPENING = 0
    MIDDLE = 1
    FINAL = 2
    LAST_SPURT = 3


_PHASE_LABELS = {
    Phase.OPENING: ("opening", "early", "0"),
    Phase.MIDDLE: ("middle", "mid", "1"),
    Phase.FINAL: ("final", "late", "2"),
    Phase.LAST_SPURT: ("last_spurt", "spurt", "3"),
}

SPURT_PHASE = Phase.FINAL


def _style_key_variants(style: RunningStyle) -> Tuple[str, ...]:
    base = style.name.lower()
    human = style.name.replace("_", " ").title()
    return (
        base,
        base.replace("_", ""),
        base.replace("_", " "),
        style.name,
        human,
        str(style.value),
    )


def _config_style_table(
    config_key: str, default_table: Mapping[RunningStyle, Mapping[Phase, float]]
) -> Mapping[RunningStyle, Mapping[Phase, float]]:
    config_tables = get_config(config_key, {})
    result: Dict[RunningStyle, Mapping[Phase, float]] = {}
    for style, fallback in default_table.items():
        entry = None
        if isinstance(config_tables, dict):
            for key in _style_key_variants(style):
                if key in config_tables:
                    entry = config_tables[key]
                    break
        style_map: Dict[Phase, float] = {}
        for phase, fallback_value in fallback.items():
            value = None
            if isinstance(entry, dict):
                for alias in _PHASE_LABELS[phase]:
                    if alias in entry:
                        value = entry[alias]
                        break
            style_map[phase] = float(value) if value is not None else fallback_value
        result[style] = MappingProxyType(style_map)
    return MappingProxyType(result)


DEFAULT_STYLE_SPEED_MOD = {
    RunningStyle.NONE: {
        Phase.OPENING: 1.063,
        Phase.MIDDLE: 0.962,
        Phase.FINAL: 0.95,
        Phase.LAST_SPURT: 0.95,
    },
    RunningStyle.FRONT_RUNNER: {
        Phase.OPENING: 1.0,
        Phase.MIDDLE: 0.98,
        Phase.FINAL: 0.962,
        Phase.LAST_SPURT: 0.962,
    },
    RunningStyle.PACE_CHASER: {
        Phase.OPENING: 0.978,
        Phase.MIDDLE: 0.991,
        Phase.FINAL: 0.975,
        Phase.LAST_SPURT: 0.975,
    },
    RunningStyle.LATE_SURGER: {
        Phase.OPENING: 0.938,
        Phase.MIDDLE: 0.998,
        Phase.FINAL: 0.994,
        Phase.LAST_SPURT: 0.994,
    },
    RunningStyle.END_CLOSER: {
        Phase.OPENING: 0.931,
        Phase.MIDDLE: 1.0,
        Phase.FINAL: 1.0,
        Phase.LAST_SPURT: 1.0,
    },
}

STYLE_SPEED_MOD = _config_style_table("spurt_model.style_phase_speed", DEFAULT_STYLE_SPEED_MOD)

DISTANCE_SPEED_MOD = MappingProxyType(
    {
        AptitudeGrade.S: 1.05,
        AptitudeGrade.A: 1.0,
        AptitudeGrade.B: 0.9,
        AptitudeGrade.C: 0.8,
        AptitudeGrade.D: 0.6,
        AptitudeGrade.E: 0.4,
        AptitudeGrade.F: 0.2,
        AptitudeGrade.G: 0.1,
    }
)

TIMING_TOLERANCE = float(get_config("spurt_model.timing_tolerance", 10.0))
DEATH_TOLERANCE = float(get_config("spurt_model.death_tolerance", 1.0))

SPEED_SCALE = 100.0
UNKNOWN_COEF = 1.0


def _distance_speed_factor(grade: Optional[AptitudeGrade]) -> float:
    if grade is None:
        return UNKNOWN_COEF
    return DISTANCE_SPEED_MOD.get(grade, UNKNOWN_COEF)


def _style_speed_factor(style: int, phase: Phase = SPURT_PHASE) -> float:
    try:
        table = STYLE_SPEED_MOD[RunningStyle(style)]
    except ValueError:
        return UNKNOWN_COEF
    return table.get(phase, UNKNOWN_COEF)


def predicted_max_spurt_speed(length: float, attributes: ParticipantAttributes, running_style: int) -> float:
    """Top speed (m/s) a participant should hold during a full last spurt on this course."""
    base = base_course_speed(length)
    fit = _distance_speed_factor(attributes.distance_aptitude(distance_band(length)))
    style_coef = _style_speed_factor(running_style)
    speed = max(attributes.stats.speed, 0.0)
    return (base * (style_coef + 0.01) + math.sqrt(speed / 500.0) * fit) * 1.05 + math.sqrt(
        500.0 * speed
    ) * fit * 0.002


def _stamina_verdict(index: FrameIndex, participant_index: int, length: float) -> Tuple[str, float]:
    for sample in index.participant_frames(participant_index):
        if sample.distance >= length:
            break
        if sample.hp <= 0:
            remaining = length - sample.distance
            if remaining > DEATH_TOLERANCE:
                return SPURT_FAILURE, remaining
            break
    return SPURT_SUCCESS, 0.0


def _observed_max_speed(index: FrameIndex, participant_index: int, start_distance: float) -> float:
    start = index.first_frame_reaching(participant_index, start_distance)
    if start is None:
        return 0.0
    samples = index.participant_frames(participant_index)[start:]
    return max(sample.speed for sample in samples) / SPEED_SCALE


def evaluate(
    log: RaceLog,
    participant_index: int,
    attributes: ParticipantAttributes,
    running_style: Optional[int] = None,
) -> SpurtStats:
    """Classifies one participant's last spurt and stamina outcome."""
    if not 0 <= participant_index < log.participant_count:
        raise OutOfRangeError(
            f"Participant index {participant_index} outside 0..{log.participant_count - 1}"
        )
    result = log.results[participant_index]
    style = result.running_style if running_style is None else running_style

    index = FrameIndex(log)
    length = course_length(log, participant_index, index)
    stamina_success, death_distance = _stamina_verdict(index, participant_index, length)
    expected = length * 2 / 3
    predicted = predicted_max_spurt_speed(length, attributes, style)

    start_distance = result.last_spurt_start_distance
    if start_distance <= 0:
        return SpurtStats(
            success=NOT_APPLICABLE,
            last_spurt_start_distance=0.0,
            expected_spurt_position=expected,
            delay_distance=0.0,
            predicted_max_spurt_speed=predicted,
            observed_max_speed=0.0,
            course_length=length,
            stamina_success=stamina_success,
            death_distance_from_finish=death_distance,
        )

    observed = _observed_max_speed(index, participant_index, start_distance)
    delay = start_distance - expected
    if abs(delay) > TIMING_TOLERANCE:
        success = SPURT_FAILURE
    elif observed > 0 and observed >= predicted:
        success = SPURT_SUCCESS
    else:
        success = SPURT_FAILURE

    return SpurtStats(
        success=success,
        last_spurt_start_distance=start_distance,
        expected_spurt_position=expected,
        delay_distance=delay,
        predicted_max_spurt_speed=predicted,
        observed_max_speed=observed,
        course_length=length,
        stamina_success=stamina_success,
        death_distance_from_finish=death_distance,
    )


def evaluate_all(log: RaceLog, attributes: Iterable[ParticipantAttributes]) -> Dict[int, SpurtStats]:
    """Evaluates every participant that has metadata, keyed by participant index."""
    return {
        attrs.participant_index: evaluate(log, attrs.participant_index, attrs)
        for attrs in attributes
    }
