from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from derby_analytics.engine.data_models import AptitudeGrade, RunningStyle, TemptationMode

logger = logging.getLogger(__name__)

RUNNING_STYLE_LABELS = {
    RunningStyle.NONE: "None",
    RunningStyle.FRONT_RUNNER: "Front Runner",
    RunningStyle.PACE_CHASER: "Pace Chaser",
    RunningStyle.LATE_SURGER: "Late Surger",
    RunningStyle.END_CLOSER: "End Closer",
}

DISTANCE_BAND_LABELS = {
    1: "Sprint",
    2: "Mile",
    3: "Medium",
    4: "Long",
}

TEMPTATION_LABELS = {
    TemptationMode.RUSHED_LATE: "Rushed (Late)",
    TemptationMode.RUSHED_PACE: "Rushed (Pace)",
    TemptationMode.RUSHED_FRONT: "Rushed (Front)",
    TemptationMode.RUSHED_SPEED_UP: "Rushed (Speed up)",
}


def running_style_label(style: int) -> str:
    try:
        return RUNNING_STYLE_LABELS[RunningStyle(style)]
    except ValueError:
        return str(style)


def aptitude_label(grade: Optional[int]) -> str:
    try:
        return AptitudeGrade(grade).name
    except ValueError:
        return "-"


def temptation_label(mode: int) -> str:
    try:
        return TEMPTATION_LABELS.get(TemptationMode(mode), "")
    except ValueError:
        return ""


def format_time(seconds: float) -> str:
    """Formats a race time as m:ss.ssss."""
    minutes = math.floor(seconds / 60)
    remainder = seconds - minutes * 60
    return f"{minutes}:{remainder:07.4f}"


class ReferenceLookup:
    """
    Read-only id to display-name lookup for characters, cards and skills.

    Missing ids never raise; they render as an "Unknown (<id>)" placeholder.
    """

    SECTIONS = ("charas", "cards", "skills")

    def __init__(
        self,
        charas: Optional[Mapping[int, str]] = None,
        cards: Optional[Mapping[int, str]] = None,
        skills: Optional[Mapping[int, str]] = None,
    ) -> None:
        self._charas: Dict[int, str] = dict(charas or {})
        self._cards: Dict[int, str] = dict(cards or {})
        self._skills: Dict[int, str] = dict(skills or {})

    @classmethod
    def from_json(cls, path: Union[Path, str]) -> "ReferenceLookup":
        """Loads {"charas": {id: name}, "cards": {...}, "skills": {...}}; unreadable files give an empty lookup."""
        source = Path(path)
        try:
            payload = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Reference data %s unavailable (%s); names fall back to ids", source, exc)
            return cls()
        if not isinstance(payload, dict):
            return cls()
        sections = {}
        for section in cls.SECTIONS:
            raw = payload.get(section) or {}
            entries: Dict[int, str] = {}
            if isinstance(raw, dict):
                for key, name in raw.items():
                    try:
                        entries[int(key)] = str(name)
                    except (TypeError, ValueError):
                        continue
            sections[section] = entries
        return cls(**sections)

    @staticmethod
    def _name(table: Mapping[int, str], identifier: Optional[int]) -> str:
        if identifier is None:
            return "Unknown"
        name = table.get(identifier)
        return name if name else f"Unknown ({identifier})"

    def chara_name(self, chara_id: Optional[int]) -> str:
        return self._name(self._charas, chara_id)

    def card_name(self, card_id: Optional[int]) -> str:
        return self._name(self._cards, card_id)

    def skill_name(self, skill_id: Optional[int]) -> str:
        return self._name(self._skills, skill_id)

    def skill_name_with_id(self, skill_id: int) -> str:
        return f"{skill_id} - {self.skill_name(skill_id)}"
