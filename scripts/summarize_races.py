"""
Summarise a directory of exported race files.

Examples:
    # Win rates, spurt and stamina rates for the most frequent player
    python scripts/summarize_races.py races/ --group player

    # How often skill 201161 fired per race, dumped as JSON
    python scripts/summarize_races.py races/ --group skill_occurrence --skill-id 201161 --dump out.json

    # Debuff hit rate by target style, split on the caster holding a modifier skill
    python scripts/summarize_races.py races/ --group skill_hit_rate --skill-id 201161 --modifier 201162
"""
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

from derby_analytics.aggregation import AggregateReport, GroupKey, aggregate
from derby_analytics.race_file import load_race_directory, newest_first
from derby_analytics.reference import ReferenceLookup, format_time, running_style_label


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {key: _jsonable(item) for key, item in dataclasses.asdict(value).items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_jsonable(item) for item in value)
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    return value


def report_to_dict(report: AggregateReport) -> dict:
    return {
        "group_key": report.group_key.value,
        "races_used": report.races_used,
        "races_excluded": report.races_excluded,
        "excluded": _jsonable(report.excluded),
        "player_frequency": _jsonable(report.player_frequency),
        "summary": _jsonable(report.summary),
        "rows": _jsonable(report.rows),
    }


def dump_report(report: AggregateReport, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as handle:
        json.dump(report_to_dict(report), handle, indent=2, ensure_ascii=False)
    print(f"[summary] wrote {len(report.rows)} rows to {output_path}")


def print_report(report: AggregateReport, lookup: ReferenceLookup) -> None:
    if report.is_empty:
        print("[summary] no data found")
        return

    print(f"[summary] {report.races_used} races used, {report.races_excluded} excluded")
    if report.group_key is GroupKey.PLAYER and report.summary is None:
        print("[summary] no named players found")
        return
    if report.summary is not None:
        summary = report.summary
        print(
            f"[summary] {summary.player_name or '(unknown)'}: {summary.wins}/{summary.total_races} wins "
            f"({summary.win_rate:.1f}%)"
        )
        for row in summary.by_character:
            style = running_style_label(row.running_style) if row.running_style else "-"
            print(
                f"  {lookup.chara_name(row.chara_id):<24} races={row.races:<4} win={row.win_rate:5.1f}% "
                f"top3={row.top3_rate:5.1f}% spurt={row.spurt_rate:5.1f}% "
                f"stamina={row.stamina_survival_rate:5.1f}% style={style} "
                f"median={format_time(row.finish_time.median)}"
            )
        return

    for row in report.rows:
        if report.group_key is GroupKey.CHARACTER:
            print(f"  {lookup.chara_name(row.key):<24} wins={row.wins}")
        elif report.group_key is GroupKey.RUNNING_STYLE:
            print(f"  {row.label:<24} wins={row.wins}")
        elif report.group_key is GroupKey.SKILL_OCCURRENCE:
            print(
                f"  {row.label:<4} races={row.races:<4} ({row.percent:5.1f}%) "
                f"spurt={row.spurt_rate:5.1f}% stamina={row.stamina_survival_rate:5.1f}%"
            )
        elif report.group_key is GroupKey.SKILL_HIT_RATE:
            print(
                f"  {row.label:<14} with={row.with_modifier_hits}/{row.with_modifier_opportunities} "
                f"({row.with_modifier_rate:5.1f}%) without={row.without_modifier_hits}/"
                f"{row.without_modifier_opportunities} ({row.without_modifier_rate:5.1f}%)"
            )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Aggregate spurt, stamina and skill statistics over race files.")
    parser.add_argument("directory", type=Path, help="Directory of two-line race .txt exports.")
    parser.add_argument(
        "--group",
        choices=[key.value for key in GroupKey],
        default=GroupKey.PLAYER.value,
        help="Grouping for the report (default: player).",
    )
    parser.add_argument("--player", help="Player name for the player report (default: most frequent).")
    parser.add_argument("--skill-id", type=int, help="Skill id for the skill reports.")
    parser.add_argument(
        "--modifier",
        type=int,
        action="append",
        default=[],
        help="Modifier skill id for the hit-rate split (repeatable).",
    )
    parser.add_argument("--limit", type=int, help="Only use the newest N races.")
    parser.add_argument("--workers", type=int, help="Decode worker threads (default: config or CPU count).")
    parser.add_argument("--reference", type=Path, help="Optional JSON file with chara/card/skill names.")
    parser.add_argument("--dump", type=Path, help="Optional JSON file to dump the report.")
    parser.add_argument("--verbose", action="store_true", help="Log skipped races and config fallbacks.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    group_key = GroupKey(args.group)
    if group_key in (GroupKey.SKILL_OCCURRENCE, GroupKey.SKILL_HIT_RATE) and args.skill_id is None:
        raise SystemExit(f"--skill-id is required for --group {group_key.value}")

    races = newest_first(load_race_directory(args.directory))
    if args.limit:
        races = races[: args.limit]
    print(f"[summary] loaded {len(races)} race files from {args.directory}")

    lookup = ReferenceLookup.from_json(args.reference) if args.reference else ReferenceLookup()
    report = aggregate(
        races,
        group_key,
        player_name=args.player,
        skill_id=args.skill_id,
        modifier_skill_ids=args.modifier,
        workers=args.workers,
    )
    print_report(report, lookup)

    if args.dump:
        dump_report(report, args.dump)


if __name__ == "__main__":
    main()
