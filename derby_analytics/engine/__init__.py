"""
Telemetry decode and analysis engine.

The package is split into data models, the binary decoder, frame lookups,
event decoding and the closed-form spurt/stamina model. The aggregation
pipeline one level up composes these pieces over many races.
"""

from .course import base_course_speed, course_length, distance_band  # noqa: F401
from .data_models import (  # noqa: F401
    MAX_PARTICIPANTS,
    NOT_APPLICABLE,
    SPURT_FAILURE,
    SPURT_SUCCESS,
    AptitudeGrade,
    DebuffProcDetail,
    EventRecord,
    EventType,
    Frame,
    ParticipantAttributes,
    ParticipantFrame,
    ParticipantResult,
    RaceLog,
    RacerStats,
    RunningStyle,
    Skill,
    SpurtStats,
    TemptationMode,
)
from .decoder import decode, decode_base64  # noqa: F401
from .errors import DecodeError, MalformedMetadataError, OutOfRangeError, RaceAnalysisError  # noqa: F401
from .events import (  # noqa: F401
    DebuffSetResult,
    SkillActivation,
    debuff_summary,
    find_events,
    occurrence_count,
    proc_details,
    skill_activations,
)
from .frame_index import FrameIndex, InterpolatedFrame, InterpolatedParticipant  # noqa: F401
from .spurt import Phase, evaluate, evaluate_all, predicted_max_spurt_speed  # noqa: F401

__all__ = [
    "base_course_speed",
    "course_length",
    "distance_band",
    "MAX_PARTICIPANTS",
    "NOT_APPLICABLE",
    "SPURT_FAILURE",
    "SPURT_SUCCESS",
    "AptitudeGrade",
    "DebuffProcDetail",
    "EventRecord",
    "EventType",
    "Frame",
    "ParticipantAttributes",
    "ParticipantFrame",
    "ParticipantResult",
    "RaceLog",
    "RacerStats",
    "RunningStyle",
    "Skill",
    "SpurtStats",
    "TemptationMode",
    "decode",
    "decode_base64",
    "DecodeError",
    "MalformedMetadataError",
    "OutOfRangeError",
    "RaceAnalysisError",
    "DebuffSetResult",
    "SkillActivation",
    "debuff_summary",
    "find_events",
    "occurrence_count",
    "proc_details",
    "skill_activations",
    "FrameIndex",
    "InterpolatedFrame",
    "InterpolatedParticipant",
    "Phase",
    "evaluate",
    "evaluate_all",
    "predicted_max_spurt_speed",
]
