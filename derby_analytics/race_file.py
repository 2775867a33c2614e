from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from derby_analytics.engine.data_models import ParticipantAttributes, RaceLog

RACE_FILE_SUFFIX = ".txt"
_TIMESTAMP_PATTERN = re.compile(r"(\d{8})_(\d{6})")

Scenario = Union[str, bytes, RaceLog]


@dataclass(frozen=True)
class RaceInput:
    """One race as handed to the aggregation pipeline, before decoding."""

    race_id: str
    scenario: Scenario
    metadata: Union[str, Sequence[ParticipantAttributes]] = field(default_factory=tuple)
    timestamp: Optional[datetime] = None


def split_race_text(text: str) -> Tuple[str, str]:
    """Returns (metadata line, scenario line) from a two-line race export."""
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    metadata_line = (lines[0] if lines else "").lstrip("\ufeff")
    scenario_line = lines[1].strip() if len(lines) > 1 else ""
    return metadata_line, scenario_line


def race_timestamp(name: str) -> Optional[datetime]:
    """Parses a YYYYMMDD_HHMMSS stamp embedded in a race file name."""
    match = _TIMESTAMP_PATTERN.search(name)
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1) + match.group(2), "%Y%m%d%H%M%S")
    except ValueError:
        return None


def read_race_file(path: Union[Path, str]) -> RaceInput:
    race_path = Path(path)
    metadata_line, scenario_line = split_race_text(race_path.read_text(encoding="utf-8"))
    return RaceInput(
        race_id=race_path.name,
        scenario=scenario_line,
        metadata=metadata_line,
        timestamp=race_timestamp(race_path.name),
    )


def iter_race_files(directory: Union[Path, str]) -> Iterable[Path]:
    return sorted(
        candidate
        for candidate in Path(directory).iterdir()
        if candidate.is_file() and candidate.suffix.lower() == RACE_FILE_SUFFIX
    )


def load_race_directory(directory: Union[Path, str]) -> List[RaceInput]:
    return [read_race_file(path) for path in iter_race_files(directory)]


def newest_first(races: Iterable[RaceInput]) -> List[RaceInput]:
    """Orders races for listing: newest stamp first, unstamped races last."""
    return sorted(races, key=lambda race: race.timestamp or datetime.min, reverse=True)
