import pytest

from derby_analytics.aggregation import (
    AggregateReport,
    GroupKey,
    PreparedRace,
    aggregate,
    median,
    percent,
    prepare_race,
    prepare_races,
)
from derby_analytics.engine import ParticipantAttributes, RacerStats, decode
from derby_analytics.race_file import RaceInput
from race_payloads import (
    MODIFIER_SKILL_ID,
    SKILL_ID,
    build_payload,
    encode,
    result,
    sample,
    sample_attributes,
    sample_metadata_json,
    sample_race_bytes,
)


def _good_race(race_id: str = "good") -> RaceInput:
    return RaceInput(race_id=race_id, scenario=encode(sample_race_bytes()), metadata=tuple(sample_attributes()))


def _truncated_race() -> RaceInput:
    return RaceInput(race_id="truncated", scenario=sample_race_bytes()[:90], metadata=tuple(sample_attributes()))


def test_percent_and_median_helpers():
    assert percent(1, 4) == 25.0
    assert percent(3, 0) == 0.0
    assert percent(0, 0) == 0.0
    assert percent(2, 8) == 25.0
    assert median([]) == 0.0
    assert median([3.0, 1.0, 2.0]) == 2.0
    assert median([4.0, 1.0, 3.0, 2.0]) == 2.5


def test_one_good_and_one_truncated_race_counts_one_race():
    report = aggregate([_good_race(), _truncated_race()], GroupKey.PLAYER, workers=2)

    assert report.races_used == 1
    assert report.races_excluded == 1
    assert report.excluded[0].race_id == "truncated"
    assert report.summary.total_races == 1


def test_zero_races_report_zero_rates():
    report = aggregate([], GroupKey.PLAYER)
    assert report.is_empty
    assert report.races_used == 0
    assert report.summary is None
    assert report.rows == []

    hit_rates = aggregate([], GroupKey.SKILL_HIT_RATE, skill_id=SKILL_ID)
    assert [row.style for row in hit_rates.rows] == [1, 2, 3, 4]
    assert all(row.with_modifier_rate == 0.0 and row.without_modifier_rate == 0.0 for row in hit_rates.rows)

    occurrences = aggregate([], GroupKey.SKILL_OCCURRENCE, skill_id=SKILL_ID)
    assert len(occurrences.rows) == 1
    assert occurrences.rows[0].percent == 0.0


def test_player_summary_for_the_most_frequent_player():
    report = aggregate([_good_race("a"), _good_race("b")], GroupKey.PLAYER)

    assert [entry.name for entry in report.player_frequency] == ["Alice", "Bob", "Cara"]
    assert report.player_frequency[0].races == 2

    summary = report.summary
    assert summary.player_name == "Alice"
    assert summary.total_races == 2
    assert summary.wins == 2
    assert summary.win_rate == 100.0

    row = summary.by_character[0]
    assert row.trained_chara_id == 11
    assert row.chara_id == 1001
    assert row.races == 2
    assert row.top3_rate == 100.0
    assert row.spurt_samples == 2
    assert row.spurt_rate == 100.0
    assert row.stamina_survival_rate == 100.0
    assert row.running_style == 1
    assert row.finish_time.median == pytest.approx(120.5)
    assert row.finish_time.samples == 2
    assert report.rows == list(summary.by_character)


def test_spurt_samples_exclude_not_applicable_results():
    report = aggregate([_good_race()], GroupKey.PLAYER, player_name="Bob")
    row = report.summary.by_character[0]
    assert report.summary.wins == 0
    assert row.top2 == 1
    assert row.spurt_samples == 0
    assert row.spurt_rate == 0.0
    assert row.stamina_samples == 1

    cara = aggregate([_good_race()], GroupKey.PLAYER, player_name="Cara").summary.by_character[0]
    assert cara.spurt_samples == 1
    assert cara.spurt_count == 0
    assert cara.stamina_survival_rate == 0.0
    assert cara.top2 == 0
    assert cara.top3 == 1


def test_rows_are_sorted_by_win_rate():
    alice_again = [
        ParticipantAttributes(frame_order=attrs.frame_order, trainer_name="Alice", trained_chara_id=attrs.trained_chara_id)
        for attrs in sample_attributes()
    ]
    race = RaceInput(race_id="solo", scenario=sample_race_bytes(), metadata=alice_again)
    summary = aggregate([race], GroupKey.PLAYER).summary

    assert summary.total_races == 1
    assert [row.trained_chara_id for row in summary.by_character][0] == 11
    assert summary.by_character[0].win_rate == 100.0
    assert summary.by_character[-1].win_rate == 0.0


def test_running_style_and_character_wins():
    races = [_good_race("a"), _good_race("b")]
    styles = aggregate(races, GroupKey.RUNNING_STYLE)
    assert [(row.key, row.label, row.wins) for row in styles.rows] == [(1, "Front Runner", 2)]

    characters = aggregate(races, GroupKey.CHARACTER)
    assert [(row.key, row.wins) for row in characters.rows] == [(1001, 2)]


def test_skill_occurrence_histogram():
    report = aggregate([_good_race()], GroupKey.SKILL_OCCURRENCE, skill_id=SKILL_ID)

    assert [row.occurrences for row in report.rows] == [0, 1, 2]
    assert [row.races for row in report.rows] == [0, 0, 1]
    assert report.rows[2].label == "2x"
    assert report.rows[2].percent == 100.0
    assert report.rows[2].spurt_samples == 2
    assert report.rows[2].spurt_rate == 50.0
    assert report.rows[2].stamina_survival_rate == pytest.approx(200.0 / 3)
    assert report.rows[0].percent == 0.0


def test_skill_hit_rate_split_on_modifier_skill():
    report = aggregate(
        [_good_race()],
        GroupKey.SKILL_HIT_RATE,
        skill_id=SKILL_ID,
        modifier_skill_ids=[MODIFIER_SKILL_ID],
    )
    by_style = {row.style: row for row in report.rows}

    assert by_style[2].with_modifier_hits == 1
    assert by_style[2].with_modifier_opportunities == 1
    assert by_style[2].with_modifier_rate == 100.0
    assert by_style[3].with_modifier_rate == 100.0
    assert by_style[1].with_modifier_opportunities == 0
    assert all(row.without_modifier_opportunities == 0 for row in report.rows)

    without = aggregate([_good_race()], GroupKey.SKILL_HIT_RATE, skill_id=SKILL_ID, modifier_skill_ids=[1])
    assert {row.style: row.without_modifier_hits for row in without.rows} == {1: 0, 2: 1, 3: 1, 4: 0}


def test_skill_groupings_require_a_skill_id():
    with pytest.raises(ValueError):
        aggregate([_good_race()], GroupKey.SKILL_OCCURRENCE)


def test_prepare_races_keeps_input_order_and_accepts_mixed_inputs():
    log = decode(sample_race_bytes())
    prepared = prepare_race(_good_race("first"))
    batch = prepare_races(
        [
            prepared,
            (log, sample_attributes()),
            RaceInput(race_id="text", scenario=encode(sample_race_bytes()), metadata=sample_metadata_json()),
        ],
        workers=3,
    )
    assert [race.race_id for race in batch.races] == ["first", "race-2", "text"]
    assert isinstance(batch.races[0], PreparedRace)
    assert len(batch.races[2].outcomes) == 3
    assert batch.excluded == []


def test_malformed_metadata_keeps_the_race_without_participant_rows():
    race = RaceInput(race_id="no-meta", scenario=sample_race_bytes(), metadata="{not json")
    report = aggregate([race], GroupKey.RUNNING_STYLE)
    assert report.races_used == 1
    assert report.rows[0].wins == 1
    assert report.player_frequency == []


def test_metadata_outside_the_log_excludes_the_race():
    stray = [ParticipantAttributes(frame_order=9, trainer_name="Ghost", stats=RacerStats(speed=900))]
    race = RaceInput(race_id="stray", scenario=sample_race_bytes(), metadata=stray)
    report = aggregate([race, _good_race()], GroupKey.PLAYER)
    assert report.races_used == 1
    assert report.races_excluded == 1
    assert report.excluded[0].race_id == "stray"


def test_report_is_empty_when_every_race_fails():
    frames = [(0.0, [sample(0.0)]), (1.0, [sample(5.0)])]
    broken = build_payload(frames, [result(0), result(0)], participant_count=2)
    report = aggregate([RaceInput(race_id="x", scenario=broken)], GroupKey.RUNNING_STYLE)
    assert isinstance(report, AggregateReport)
    assert report.is_empty
    assert report.races_excluded == 1


def test_player_report_without_trainer_names_has_no_summary():
    nameless = [ParticipantAttributes(frame_order=attrs.frame_order, chara_id=attrs.chara_id) for attrs in sample_attributes()]
    race = RaceInput(race_id="nameless", scenario=sample_race_bytes(), metadata=nameless)
    report = aggregate([race], GroupKey.PLAYER)

    assert report.races_used == 1
    assert report.player_frequency == []
    assert report.summary is None
    assert report.rows == []


def test_player_report_for_an_explicit_name_still_builds_a_summary():
    report = aggregate([_good_race()], GroupKey.PLAYER, player_name="Nobody")
    assert report.summary.total_races == 0
    assert report.summary.win_rate == 0.0
    assert report.rows == []
