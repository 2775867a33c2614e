"""
Multi-race aggregation.

Races are decoded and classified independently (a parallel map over a thread
pool), then reduced sequentially into per-group counters. A race that fails to
decode or whose metadata points outside the log is excluded and counted; it
never aborts the batch.
"""
from __future__ import annotations

import concurrent.futures
import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from derby_analytics.config import get_config
from derby_analytics.engine import (
    NOT_APPLICABLE,
    SPURT_SUCCESS,
    ParticipantAttributes,
    RaceAnalysisError,
    RaceLog,
    RunningStyle,
    SpurtStats,
    decode,
    evaluate,
    occurrence_count,
    proc_details,
)
from derby_analytics.metadata import parse_metadata_lenient
from derby_analytics.race_file import RaceInput
from derby_analytics.reference import running_style_label

logger = logging.getLogger(__name__)

RATED_STYLES = (
    RunningStyle.FRONT_RUNNER,
    RunningStyle.PACE_CHASER,
    RunningStyle.LATE_SURGER,
    RunningStyle.END_CLOSER,
)
TOP2_ORDER = 1
TOP3_ORDER = 2


class GroupKey(Enum):
    PLAYER = "player"
    RUNNING_STYLE = "running_style"
    CHARACTER = "character"
    SKILL_OCCURRENCE = "skill_occurrence"
    SKILL_HIT_RATE = "skill_hit_rate"


def percent(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return numerator / denominator * 100.0


def median(values: Iterable[float]) -> float:
    ordered = sorted(values)
    if not ordered:
        return 0.0
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    return (ordered[middle - 1] + ordered[middle]) / 2.0


@dataclass(frozen=True)
class FinishTimeStats:
    samples: int = 0
    median: float = 0.0
    average: float = 0.0

    @classmethod
    def from_times(cls, times: Sequence[float]) -> "FinishTimeStats":
        if not times:
            return cls()
        return cls(samples=len(times), median=median(times), average=sum(times) / len(times))


# --- Prepared races ----------------------------------------------------------


@dataclass(frozen=True)
class ParticipantOutcome:
    race_id: str
    participant_index: int
    attributes: ParticipantAttributes
    finish_order: int
    running_style: int
    finish_time: float
    spurt: SpurtStats

    @property
    def player_name(self) -> str:
        return self.attributes.trainer_name


@dataclass(frozen=True)
class PreparedRace:
    race_id: str
    log: RaceLog
    attributes: Tuple[ParticipantAttributes, ...]
    outcomes: Tuple[ParticipantOutcome, ...]

    def attributes_for(self, participant_index: int) -> Optional[ParticipantAttributes]:
        for attrs in self.attributes:
            if attrs.participant_index == participant_index:
                return attrs
        return None


@dataclass(frozen=True)
class ExcludedRace:
    race_id: str
    reason: str


@dataclass
class PreparedBatch:
    races: List[PreparedRace] = field(default_factory=list)
    excluded: List[ExcludedRace] = field(default_factory=list)


def prepare_race(race: RaceInput) -> PreparedRace:
    """Decodes one race and classifies every participant that has metadata."""
    log = race.scenario if isinstance(race.scenario, RaceLog) else decode(race.scenario)
    if isinstance(race.metadata, str):
        attributes = tuple(parse_metadata_lenient(race.metadata))
    else:
        attributes = tuple(race.metadata)

    outcomes: List[ParticipantOutcome] = []
    for attrs in attributes:
        index = attrs.participant_index
        spurt = evaluate(log, index, attrs)
        result = log.results[index]
        outcomes.append(
            ParticipantOutcome(
                race_id=race.race_id,
                participant_index=index,
                attributes=attrs,
                finish_order=result.finish_order,
                running_style=result.running_style,
                finish_time=result.finish_time,
                spurt=spurt,
            )
        )
    logger.debug("Prepared race %s with %d classified participants", race.race_id, len(outcomes))
    return PreparedRace(race_id=race.race_id, log=log, attributes=attributes, outcomes=tuple(outcomes))


def _as_input(item: Any, position: int) -> RaceInput:
    if isinstance(item, RaceInput):
        return item
    if isinstance(item, tuple) and len(item) == 2:
        log, attributes = item
        if isinstance(attributes, dict):
            attributes = tuple(attributes.values())
        return RaceInput(race_id=f"race-{position + 1}", scenario=log, metadata=attributes)
    raise TypeError(f"Unsupported race input: {type(item).__name__}")


def _default_workers() -> int:
    configured = get_config("aggregation.max_workers")
    if configured:
        return max(1, int(configured))
    return os.cpu_count() or 1


def prepare_races(races: Iterable[Any], workers: Optional[int] = None) -> PreparedBatch:
    """Decodes and classifies races in parallel; failures are excluded, input order is kept."""
    batch = PreparedBatch()
    pending: List[Any] = list(races)
    inputs: List[Optional[RaceInput]] = []
    for position, item in enumerate(pending):
        if isinstance(item, PreparedRace):
            inputs.append(None)
            continue
        inputs.append(_as_input(item, position))

    max_workers = workers or _default_workers()
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(prepare_race, race) if race is not None else None for race in inputs]
        for item, race, future in zip(pending, inputs, futures):
            if future is None:
                batch.races.append(item)
                continue
            try:
                batch.races.append(future.result())
            except RaceAnalysisError as exc:
                logger.warning("Skipping race %s: %s", race.race_id, exc)
                batch.excluded.append(ExcludedRace(race_id=race.race_id, reason=str(exc)))
    return batch


# --- Report rows ---------------------------------------------------------------


@dataclass(frozen=True)
class PlayerFrequency:
    name: str
    races: int


@dataclass(frozen=True)
class CharacterRow:
    trained_chara_id: int
    chara_id: int
    races: int
    wins: int
    win_rate: float
    top2: int
    top2_rate: float
    top3: int
    top3_rate: float
    spurt_samples: int
    spurt_count: int
    spurt_rate: float
    stamina_samples: int
    stamina_survival_count: int
    stamina_survival_rate: float
    running_style: Optional[int]
    finish_time: FinishTimeStats


@dataclass(frozen=True)
class PlayerSummary:
    player_name: str
    total_races: int
    wins: int
    win_rate: float
    by_character: Tuple[CharacterRow, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class WinsRow:
    key: int
    label: str
    wins: int


@dataclass(frozen=True)
class OccurrenceRow:
    occurrences: int
    races: int
    percent: float
    spurt_samples: int
    spurt_successes: int
    spurt_rate: float
    stamina_samples: int
    stamina_survivals: int
    stamina_survival_rate: float

    @property
    def label(self) -> str:
        return f"{self.occurrences}x"


@dataclass(frozen=True)
class StyleHitRateRow:
    style: int
    label: str
    with_modifier_hits: int
    with_modifier_opportunities: int
    with_modifier_rate: float
    without_modifier_hits: int
    without_modifier_opportunities: int
    without_modifier_rate: float


@dataclass
class AggregateReport:
    group_key: GroupKey
    races_used: int
    races_excluded: int
    rows: List[Any] = field(default_factory=list)
    summary: Optional[PlayerSummary] = None
    player_frequency: List[PlayerFrequency] = field(default_factory=list)
    excluded: List[ExcludedRace] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.races_used == 0


# --- Reducers ------------------------------------------------------------------


def player_frequency(races: Sequence[PreparedRace]) -> List[PlayerFrequency]:
    """Players ranked by the number of races they appear in, then by name."""
    counts: Counter = Counter()
    for race in races:
        names = {attrs.trainer_name for attrs in race.attributes if attrs.trainer_name}
        counts.update(names)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [PlayerFrequency(name=name, races=count) for name, count in ranked]


def _character_row(trained_chara_id: int, entries: List[ParticipantOutcome]) -> CharacterRow:
    races = len(entries)
    wins = sum(1 for entry in entries if entry.finish_order == 0)
    top2 = sum(1 for entry in entries if entry.finish_order <= TOP2_ORDER)
    top3 = sum(1 for entry in entries if entry.finish_order <= TOP3_ORDER)

    spurt_samples = sum(1 for entry in entries if entry.spurt.success != NOT_APPLICABLE)
    spurt_count = sum(1 for entry in entries if entry.spurt.success == SPURT_SUCCESS)
    stamina_samples = races
    stamina_survivals = sum(1 for entry in entries if entry.spurt.stamina_success == SPURT_SUCCESS)

    style_counts: Counter = Counter(entry.running_style for entry in entries if entry.running_style > 0)
    common_style = style_counts.most_common(1)[0][0] if style_counts else None

    return CharacterRow(
        trained_chara_id=trained_chara_id,
        chara_id=entries[0].attributes.chara_id,
        races=races,
        wins=wins,
        win_rate=percent(wins, races),
        top2=top2,
        top2_rate=percent(top2, races),
        top3=top3,
        top3_rate=percent(top3, races),
        spurt_samples=spurt_samples,
        spurt_count=spurt_count,
        spurt_rate=percent(spurt_count, spurt_samples),
        stamina_samples=stamina_samples,
        stamina_survival_count=stamina_survivals,
        stamina_survival_rate=percent(stamina_survivals, stamina_samples),
        running_style=common_style,
        finish_time=FinishTimeStats.from_times([entry.finish_time for entry in entries]),
    )


def player_summary(races: Sequence[PreparedRace], player_name: str) -> PlayerSummary:
    entries = [outcome for race in races for outcome in race.outcomes if outcome.player_name == player_name]

    race_ids: Set[str] = set()
    win_race_ids: Set[str] = set()
    grouped: Dict[int, List[ParticipantOutcome]] = {}
    for entry in entries:
        race_ids.add(entry.race_id)
        if entry.finish_order == 0:
            win_race_ids.add(entry.race_id)
        grouped.setdefault(entry.attributes.trained_chara_id, []).append(entry)

    rows = [_character_row(key, group) for key, group in grouped.items()]
    rows.sort(key=lambda row: row.win_rate, reverse=True)
    return PlayerSummary(
        player_name=player_name,
        total_races=len(race_ids),
        wins=len(win_race_ids),
        win_rate=percent(len(win_race_ids), len(race_ids)),
        by_character=tuple(rows),
    )


def wins_by_style(races: Sequence[PreparedRace]) -> List[WinsRow]:
    counts: Counter = Counter()
    for race in races:
        winner = race.log.winner_index()
        if winner is not None:
            counts[race.log.results[winner].running_style] += 1
    rows = [WinsRow(key=style, label=running_style_label(style), wins=wins) for style, wins in counts.items() if wins > 0]
    rows.sort(key=lambda row: row.wins, reverse=True)
    return rows


def wins_by_character(races: Sequence[PreparedRace]) -> List[WinsRow]:
    counts: Counter = Counter()
    for race in races:
        winner = race.log.winner_index()
        if winner is None:
            continue
        attrs = race.attributes_for(winner)
        if attrs is not None:
            counts[attrs.chara_id] += 1
    rows = [WinsRow(key=chara_id, label=str(chara_id), wins=wins) for chara_id, wins in counts.items() if wins > 0]
    rows.sort(key=lambda row: row.wins, reverse=True)
    return rows


def skill_occurrence(races: Sequence[PreparedRace], skill_id: int) -> List[OccurrenceRow]:
    """Histogram of activations per race, with spurt and stamina rates for each bucket."""
    race_counts: Counter = Counter()
    spurt: Dict[int, List[int]] = {}
    stamina: Dict[int, List[int]] = {}
    for race in races:
        occurrences = occurrence_count(race.log, skill_id)
        race_counts[occurrences] += 1
        spurt_bucket = spurt.setdefault(occurrences, [0, 0])
        stamina_bucket = stamina.setdefault(occurrences, [0, 0])
        for outcome in race.outcomes:
            if outcome.spurt.success != NOT_APPLICABLE:
                spurt_bucket[0] += 1
                if outcome.spurt.success == SPURT_SUCCESS:
                    spurt_bucket[1] += 1
            stamina_bucket[0] += 1
            if outcome.spurt.stamina_success == SPURT_SUCCESS:
                stamina_bucket[1] += 1

    total_races = len(races)
    highest = max(race_counts) if race_counts else 0
    rows: List[OccurrenceRow] = []
    for occurrences in range(highest + 1):
        spurt_samples, spurt_successes = spurt.get(occurrences, [0, 0])
        stamina_samples, stamina_survivals = stamina.get(occurrences, [0, 0])
        rows.append(
            OccurrenceRow(
                occurrences=occurrences,
                races=race_counts.get(occurrences, 0),
                percent=percent(race_counts.get(occurrences, 0), total_races),
                spurt_samples=spurt_samples,
                spurt_successes=spurt_successes,
                spurt_rate=percent(spurt_successes, spurt_samples),
                stamina_samples=stamina_samples,
                stamina_survivals=stamina_survivals,
                stamina_survival_rate=percent(stamina_survivals, stamina_samples),
            )
        )
    return rows


def skill_hit_rate(
    races: Sequence[PreparedRace], skill_id: int, modifier_skill_ids: Iterable[int] = ()
) -> List[StyleHitRateRow]:
    """Hit rate per target running style, split on whether the caster holds a modifier skill."""
    modifiers = frozenset(modifier_skill_ids)
    with_hits: Counter = Counter()
    with_opportunities: Counter = Counter()
    without_hits: Counter = Counter()
    without_opportunities: Counter = Counter()

    for race in races:
        skills_by_index = {attrs.participant_index: attrs.skill_ids for attrs in race.attributes}
        results = race.log.results
        for detail in proc_details(race.log, skill_id):
            has_modifier = bool(modifiers & skills_by_index.get(detail.caster_index, frozenset()))
            hits = with_hits if has_modifier else without_hits
            opportunities = with_opportunities if has_modifier else without_opportunities
            for idx in detail.opponents:
                style = results[idx].running_style if idx < len(results) else 0
                if style > 0:
                    opportunities[style] += 1
            for idx in detail.hits:
                style = results[idx].running_style if idx < len(results) else 0
                if style > 0:
                    hits[style] += 1

    return [
        StyleHitRateRow(
            style=int(style),
            label=running_style_label(style),
            with_modifier_hits=with_hits[style],
            with_modifier_opportunities=with_opportunities[style],
            with_modifier_rate=percent(with_hits[style], with_opportunities[style]),
            without_modifier_hits=without_hits[style],
            without_modifier_opportunities=without_opportunities[style],
            without_modifier_rate=percent(without_hits[style], without_opportunities[style]),
        )
        for style in RATED_STYLES
    ]


def aggregate(
    races: Iterable[Any],
    group_key: GroupKey,
    *,
    player_name: Optional[str] = None,
    skill_id: Optional[int] = None,
    modifier_skill_ids: Iterable[int] = (),
    workers: Optional[int] = None,
) -> AggregateReport:
    """
    Builds one report over every usable race.

    `races` may hold RaceInput items, already prepared races, or (RaceLog,
    attributes) pairs. PLAYER defaults to the most frequent player; the two
    skill groupings require `skill_id`.
    """
    if group_key in (GroupKey.SKILL_OCCURRENCE, GroupKey.SKILL_HIT_RATE) and skill_id is None:
        raise ValueError(f"{group_key.value} aggregation requires a skill_id")

    batch = prepare_races(races, workers=workers)
    prepared = batch.races
    report = AggregateReport(
        group_key=group_key,
        races_used=len(prepared),
        races_excluded=len(batch.excluded),
        player_frequency=player_frequency(prepared),
        excluded=list(batch.excluded),
    )

    if group_key is GroupKey.PLAYER:
        name = player_name
        if name is None and report.player_frequency:
            name = report.player_frequency[0].name
        if name:
            report.summary = player_summary(prepared, name)
            report.rows = list(report.summary.by_character)
    elif group_key is GroupKey.RUNNING_STYLE:
        report.rows = wins_by_style(prepared)
    elif group_key is GroupKey.CHARACTER:
        report.rows = wins_by_character(prepared)
    elif group_key is GroupKey.SKILL_OCCURRENCE:
        report.rows = skill_occurrence(prepared, skill_id)
    elif group_key is GroupKey.SKILL_HIT_RATE:
        report.rows = skill_hit_rate(prepared, skill_id, modifier_skill_ids)

    logger.info(
        "Aggregated %s over %d races (%d excluded)", group_key.value, report.races_used, report.races_excluded
    )
    return report
