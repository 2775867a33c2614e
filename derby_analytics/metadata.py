"""
Companion participant metadata: the JSON line that accompanies each race scenario.

Records arrive as a JSON array (team and daily races) or a single object
(single mode). Every field is optional; missing values fall back to the
defaults declared on ParticipantAttributes.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from derby_analytics.engine.data_models import AptitudeGrade, ParticipantAttributes, RacerStats, Skill
from derby_analytics.engine.errors import MalformedMetadataError

logger = logging.getLogger(__name__)

PROPER_DISTANCE_FIELDS = {
    1: "proper_distance_short",
    2: "proper_distance_mile",
    3: "proper_distance_middle",
    4: "proper_distance_long",
}

STAT_FIELDS = {
    "speed": "speed",
    "stamina": "stamina",
    "power": "pow",
    "guts": "guts",
    "wit": "wiz",
}


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _grade(value: Any) -> Optional[AptitudeGrade]:
    if isinstance(value, str):
        try:
            return AptitudeGrade.from_str(value)
        except ValueError:
            return None
    number = _as_int(value, 0)
    if number in AptitudeGrade._value2member_map_:
        return AptitudeGrade(number)
    return None


def _skills(raw: Any) -> tuple:
    if not isinstance(raw, list):
        return tuple()
    skills = []
    for entry in raw:
        if not isinstance(entry, Mapping) or entry.get("skill_id") is None:
            continue
        skills.append(Skill(skill_id=_as_int(entry.get("skill_id")), level=_as_int(entry.get("level"), 1)))
    return tuple(skills)


def attributes_from_record(record: Mapping[str, Any]) -> ParticipantAttributes:
    """Builds ParticipantAttributes from one race_horse_data style record."""
    proper_distances: Dict[int, AptitudeGrade] = {}
    for band, key in PROPER_DISTANCE_FIELDS.items():
        grade = _grade(record.get(key))
        if grade is not None:
            proper_distances[band] = grade

    stats = RacerStats(**{name: _as_float(record.get(key)) for name, key in STAT_FIELDS.items()})

    return ParticipantAttributes(
        frame_order=_as_int(record.get("frame_order"), 0) or 1,
        trainer_name=str(record.get("trainer_name") or ""),
        viewer_id=_as_int(record.get("viewer_id")),
        chara_id=_as_int(record.get("chara_id")),
        card_id=_as_int(record.get("card_id")),
        trained_chara_id=_as_int(record.get("trained_chara_id")),
        running_style=_as_int(record.get("running_style")),
        stats=stats,
        proper_distances=proper_distances,
        skills=_skills(record.get("skill_array")),
    )


def _load_records(text: str) -> List[Mapping[str, Any]]:
    cleaned = (text or "").lstrip("\ufeff").strip()
    if not cleaned:
        raise MalformedMetadataError("Participant metadata is empty")
    try:
        parsed = json.loads(cleaned)
    except ValueError as exc:
        raise MalformedMetadataError(f"Participant metadata is not valid JSON: {exc}") from exc

    records = parsed if isinstance(parsed, list) else [parsed]
    if not all(isinstance(record, Mapping) for record in records):
        raise MalformedMetadataError("Participant metadata must hold JSON objects")
    return records


def parse_metadata(text: str) -> List[ParticipantAttributes]:
    return [attributes_from_record(record) for record in _load_records(text)]


def parse_metadata_lenient(text: str) -> List[ParticipantAttributes]:
    """Like parse_metadata, but unreadable metadata degrades to an empty list."""
    try:
        return parse_metadata(text)
    except MalformedMetadataError as exc:
        logger.warning("Ignoring participant metadata: %s", exc)
        return []


def trainers_by_index(attributes: List[ParticipantAttributes]) -> Dict[int, str]:
    return {attrs.participant_index: attrs.trainer_name for attrs in attributes}


def anonymize_metadata(text: str) -> str:
    """
    Replaces trainer names with Anon1, Anon2, ... in order of first appearance and
    clears viewer ids. The result keeps the input's array/object shape.
    """
    cleaned = (text or "").lstrip("\ufeff").strip()
    try:
        parsed = json.loads(cleaned)
    except ValueError as exc:
        raise MalformedMetadataError(f"Participant metadata is not valid JSON: {exc}") from exc

    records = parsed if isinstance(parsed, list) else [parsed]
    aliases: Dict[str, str] = {}
    for record in records:
        if not isinstance(record, dict):
            continue
        record["viewer_id"] = 0
        name = record.get("trainer_name")
        if name:
            if name not in aliases:
                aliases[name] = f"Anon{len(aliases) + 1}"
            record["trainer_name"] = aliases[name]

    return json.dumps(records if isinstance(parsed, list) else records[0], ensure_ascii=False)
