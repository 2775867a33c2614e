from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional

from .data_models import (
    MAX_PARTICIPANTS,
    DebuffProcDetail,
    EventRecord,
    EventType,
    RaceLog,
)
from .errors import OutOfRangeError

CASTER_PARAM = 0
SKILL_ID_PARAM = 1
DURATION_PARAM = 2
TARGET_MASK_PARAM = 4

MIN_PARAMS_FOR_OCCURRENCE = 2
MIN_PARAMS_FOR_TARGETS = 5

DURATION_SCALE = 10000.0
DEFAULT_ACTIVATION_SECONDS = 2.0


@dataclass(frozen=True)
class SkillActivation:
    frame_time: float
    skill_id: int
    duration: float
    params: tuple = field(default_factory=tuple)


@dataclass(frozen=True)
class DebuffSetResult:
    procs: int
    opponents: FrozenSet[int]
    hits: FrozenSet[int]


def find_events(log: RaceLog, category: int, match_id: Optional[int] = None) -> List[EventRecord]:
    """Returns the events of one category, optionally limited to a skill/identifier in params[1]."""
    matches: List[EventRecord] = []
    for event in log.events:
        if event.type != category:
            continue
        if match_id is not None:
            if event.param_count < MIN_PARAMS_FOR_OCCURRENCE:
                continue
            if event.param(SKILL_ID_PARAM) != match_id:
                continue
        matches.append(event)
    return matches


def occurrence_count(log: RaceLog, match_id: int) -> int:
    return len(find_events(log, EventType.SKILL, match_id))


def _check_mask_width(participant_count: int) -> None:
    if participant_count > MAX_PARTICIPANTS:
        raise OutOfRangeError(
            f"{participant_count} participants do not fit a {MAX_PARTICIPANTS}-bit target mask"
        )


def proc_details(log: RaceLog, match_id: int) -> List[DebuffProcDetail]:
    """Caster, eligible opponents and targets hit for every activation of a targeted skill.

    Only records carrying the target mask (five or more params) qualify. Every
    participant except the caster counts as an opponent, and the caster is never
    reported as hit even when its own bit is set.
    """
    participant_count = log.participant_count
    _check_mask_width(participant_count)

    details: List[DebuffProcDetail] = []
    for event in find_events(log, EventType.SKILL, match_id):
        if event.param_count < MIN_PARAMS_FOR_TARGETS:
            continue
        caster = event.param(CASTER_PARAM)
        target_mask = event.param(TARGET_MASK_PARAM) & 0xFFFFFFFF
        opponents = frozenset(idx for idx in range(participant_count) if idx != caster)
        hits = frozenset(idx for idx in opponents if target_mask & (1 << idx))
        details.append(
            DebuffProcDetail(
                caster_index=caster,
                skill_id=event.param(SKILL_ID_PARAM),
                frame_time=event.frame_time,
                opponents=opponents,
                hits=hits,
            )
        )
    return details


def debuff_summary(
    log: RaceLog,
    match_id: int,
    trainer_by_index: Optional[Mapping[int, str]] = None,
) -> DebuffSetResult:
    """Union of opponents and hits over every activation of a skill in one race.

    With a trainer mapping, participants entered by the caster's own trainer are
    not counted as opponents.
    """
    participant_count = log.participant_count
    _check_mask_width(participant_count)

    procs = 0
    opponents = set()
    hits = set()
    for event in find_events(log, EventType.SKILL, match_id):
        procs += 1
        if event.param_count < MIN_PARAMS_FOR_TARGETS:
            continue
        caster = event.param(CASTER_PARAM)
        target_mask = event.param(TARGET_MASK_PARAM) & 0xFFFFFFFF
        for idx in range(participant_count):
            if idx == caster:
                continue
            if trainer_by_index is not None and caster in trainer_by_index:
                if trainer_by_index.get(idx) == trainer_by_index[caster]:
                    continue
            opponents.add(idx)
            if target_mask & (1 << idx):
                hits.add(idx)
    return DebuffSetResult(procs=procs, opponents=frozenset(opponents), hits=frozenset(hits))


def skill_activations(log: RaceLog) -> Dict[int, List[SkillActivation]]:
    """Skill activations grouped by caster index, ordered by time."""
    activations: Dict[int, List[SkillActivation]] = {}
    for event in find_events(log, EventType.SKILL):
        if event.param_count < MIN_PARAMS_FOR_OCCURRENCE:
            continue
        raw_duration = event.param(DURATION_PARAM, 0)
        duration = raw_duration / DURATION_SCALE if raw_duration > 0 else DEFAULT_ACTIVATION_SECONDS
        activations.setdefault(event.param(CASTER_PARAM), []).append(
            SkillActivation(
                frame_time=event.frame_time,
                skill_id=event.param(SKILL_ID_PARAM),
                duration=duration,
                params=event.params[: event.param_count],
            )
        )
    for entries in activations.values():
        entries.sort(key=lambda activation: activation.frame_time)
    return activations
