from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, FrozenSet, Optional, Sequence, Tuple

MAX_PARTICIPANTS = 32
MAX_EVENT_PARAMS = 8

SPURT_SUCCESS = "✓"
SPURT_FAILURE = "✗"
NOT_APPLICABLE = "—"


class RunningStyle(IntEnum):
    """Tactical posture recorded per participant, using the wire identifiers."""

    NONE = 0
    FRONT_RUNNER = 1
    PACE_CHASER = 2
    LATE_SURGER = 3
    END_CLOSER = 4

    @classmethod
    def from_legacy(cls, style_id: int) -> "RunningStyle":
        try:
            return cls(int(style_id))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Unknown running style id: {style_id}") from exc


class AptitudeGrade(IntEnum):
    """Distance and surface proficiency ranks, S (8) down to G (1)."""

    G = 1
    F = 2
    E = 3
    D = 4
    C = 5
    B = 6
    A = 7
    S = 8

    @classmethod
    def from_str(cls, value: str) -> "AptitudeGrade":
        try:
            return cls[value.upper()]
        except KeyError as exc:
            raise ValueError(f"Unknown aptitude grade: {value}") from exc


class EventType(IntEnum):
    SCORE = 0
    CHALLENGE_MATCH_POINT = 1
    NOUSE_2 = 2
    SKILL = 3
    COMPETE_TOP = 4
    COMPETE_FIGHT = 5


class TemptationMode(IntEnum):
    NONE = 0
    RUSHED_LATE = 1
    RUSHED_PACE = 2
    RUSHED_FRONT = 3
    RUSHED_SPEED_UP = 4


# --- Telemetry ---------------------------------------------------------------


@dataclass(frozen=True)
class ParticipantFrame:
    distance: float
    lane_position: int
    speed: int
    hp: int
    temptation_mode: int = 0
    blocked_by_index: Optional[int] = None


@dataclass(frozen=True)
class Frame:
    time: float
    participants: Tuple[ParticipantFrame, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ParticipantResult:
    finish_order: int
    finish_time: float
    finish_diff_time: float
    start_delay_time: float
    guts_order: int
    wiz_order: int
    last_spurt_start_distance: float
    running_style: int
    defeat: int
    finish_time_raw: float

    @property
    def is_winner(self) -> bool:
        return self.finish_order == 0


@dataclass(frozen=True)
class EventRecord:
    frame_time: float
    type: int
    param_count: int
    params: Tuple[int, ...] = field(default_factory=tuple)

    def param(self, index: int, default: int = -1) -> int:
        if 0 <= index < min(self.param_count, len(self.params)):
            return self.params[index]
        return default


@dataclass(frozen=True)
class RaceLog:
    """Decoded race: sampled frames, per-participant results and the event stream."""

    frames: Tuple[Frame, ...] = field(default_factory=tuple)
    results: Tuple[ParticipantResult, ...] = field(default_factory=tuple)
    events: Tuple[EventRecord, ...] = field(default_factory=tuple)
    version: int = 0
    distance_diff_max: float = 0.0

    @property
    def participant_count(self) -> int:
        return len(self.results)

    def winner_index(self) -> Optional[int]:
        for index, result in enumerate(self.results):
            if result.is_winner:
                return index
        return None


# --- Participant metadata ----------------------------------------------------


@dataclass(frozen=True)
class RacerStats:
    speed: float = 0.0
    stamina: float = 0.0
    power: float = 0.0
    guts: float = 0.0
    wit: float = 0.0


@dataclass(frozen=True)
class Skill:
    skill_id: int
    level: int = 1


@dataclass(frozen=True)
class ParticipantAttributes:
    """Caller supplied participant metadata; every field has a usable default."""

    frame_order: int = 1
    trainer_name: str = ""
    viewer_id: int = 0
    chara_id: int = 0
    card_id: int = 0
    trained_chara_id: int = 0
    running_style: int = 0
    stats: RacerStats = field(default_factory=RacerStats)
    proper_distances: Dict[int, AptitudeGrade] = field(default_factory=dict)
    skills: Sequence[Skill] = field(default_factory=tuple)

    @property
    def participant_index(self) -> int:
        return self.frame_order - 1

    @property
    def skill_ids(self) -> FrozenSet[int]:
        return frozenset(skill.skill_id for skill in self.skills)

    def distance_aptitude(self, band: int) -> Optional[AptitudeGrade]:
        return self.proper_distances.get(band)


# --- Derived records ----------------------------------------------------------


@dataclass(frozen=True)
class DebuffProcDetail:
    caster_index: int
    skill_id: int
    frame_time: float
    opponents: FrozenSet[int]
    hits: FrozenSet[int]


@dataclass(frozen=True)
class SpurtStats:
    success: str
    last_spurt_start_distance: float
    expected_spurt_position: float
    delay_distance: float
    predicted_max_spurt_speed: float
    observed_max_speed: float
    course_length: float
    stamina_success: str
    death_distance_from_finish: float
