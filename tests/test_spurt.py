import math

import pytest

from derby_analytics.engine import (
    NOT_APPLICABLE,
    SPURT_FAILURE,
    SPURT_SUCCESS,
    AptitudeGrade,
    OutOfRangeError,
    ParticipantAttributes,
    RacerStats,
    RunningStyle,
    base_course_speed,
    course_length,
    decode,
    distance_band,
    evaluate,
    evaluate_all,
    predicted_max_spurt_speed,
)
from derby_analytics.engine import spurt
from race_payloads import build_payload, result, sample, sample_attributes, sample_race_bytes


def _log():
    return decode(sample_race_bytes())


def _attributes(speed: float = 1000, grade: AptitudeGrade = AptitudeGrade.A) -> ParticipantAttributes:
    return ParticipantAttributes(stats=RacerStats(speed=speed), proper_distances={3: grade})


def test_course_length_is_the_winner_distance_at_its_raw_finish_time():
    log = _log()
    assert course_length(log, 0) == 2000.0
    assert course_length(log, 2) == 2000.0
    assert course_length(log, 1) == course_length(log, 1)


def test_course_length_without_a_winner_uses_the_participant_max_distance():
    frames = [(0.0, [sample(0.0), sample(0.0)]), (10.0, [sample(150.0), sample(180.0)])]
    log = decode(build_payload(frames, [result(1), result(2)]))
    assert course_length(log, 0) == 150.0
    assert course_length(log, 1) == 180.0


def test_distance_bands_and_base_speed():
    assert distance_band(1200) == 1
    assert distance_band(1400) == 1
    assert distance_band(1600) == 2
    assert distance_band(2000) == 3
    assert distance_band(2500) == 3
    assert distance_band(3200) == 4
    assert base_course_speed(2000) == 20.0
    assert base_course_speed(2400) == pytest.approx(19.6)


def test_predicted_max_spurt_speed_formula():
    predicted = predicted_max_spurt_speed(2000.0, _attributes(), RunningStyle.FRONT_RUNNER)
    expected = (20.0 * (0.962 + 0.01) + math.sqrt(1000 / 500) * 1.0) * 1.05 + math.sqrt(500 * 1000) * 1.0 * 0.002
    assert predicted == pytest.approx(expected)


def test_unknown_aptitude_and_style_fall_back_to_neutral_coefficients():
    no_grade = ParticipantAttributes(stats=RacerStats(speed=1000))
    assert predicted_max_spurt_speed(2000.0, no_grade, 1) == pytest.approx(
        predicted_max_spurt_speed(2000.0, _attributes(grade=AptitudeGrade.A), 1)
    )
    worse = predicted_max_spurt_speed(2000.0, _attributes(grade=AptitudeGrade.G), 1)
    assert worse < predicted_max_spurt_speed(2000.0, no_grade, 1)
    unknown_style = predicted_max_spurt_speed(2000.0, no_grade, 42)
    expected = (20.0 * (1.0 + 0.01) + math.sqrt(2.0)) * 1.05 + math.sqrt(500000) * 0.002
    assert unknown_style == pytest.approx(expected)


def test_timely_and_fast_spurt_succeeds():
    stats = evaluate(_log(), 0, sample_attributes()[0])

    assert stats.success == SPURT_SUCCESS
    assert stats.course_length == 2000.0
    assert stats.expected_spurt_position == pytest.approx(1333.333, abs=1e-3)
    assert stats.delay_distance == pytest.approx(6.667, abs=1e-3)
    assert stats.observed_max_speed == pytest.approx(24.0)
    assert stats.observed_max_speed >= stats.predicted_max_spurt_speed
    assert stats.stamina_success == SPURT_SUCCESS
    assert stats.death_distance_from_finish == 0.0


def test_no_spurt_is_not_applicable():
    stats = evaluate(_log(), 1, sample_attributes()[1])
    assert stats.success == NOT_APPLICABLE
    assert stats.last_spurt_start_distance == 0.0
    assert stats.delay_distance == 0.0
    assert stats.observed_max_speed == 0.0
    assert stats.expected_spurt_position == pytest.approx(2000.0 * 2 / 3)


def test_late_spurt_fails_regardless_of_speed_and_hp_death_is_reported():
    stats = evaluate(_log(), 2, sample_attributes()[2])
    assert stats.observed_max_speed >= stats.predicted_max_spurt_speed
    assert stats.success == SPURT_FAILURE
    assert stats.delay_distance == pytest.approx(1500.0 - 2000.0 * 2 / 3)
    assert stats.stamina_success == SPURT_FAILURE
    assert stats.death_distance_from_finish == pytest.approx(640.0)


def test_slow_spurt_fails():
    stats = evaluate(_log(), 0, _attributes(speed=1800))
    assert stats.success == SPURT_FAILURE
    assert stats.observed_max_speed < stats.predicted_max_spurt_speed


def test_running_style_override():
    log = _log()
    recorded = evaluate(log, 0, _attributes())
    closer = evaluate(log, 0, _attributes(), running_style=RunningStyle.END_CLOSER)
    assert closer.predicted_max_spurt_speed > recorded.predicted_max_spurt_speed


def test_death_within_a_metre_of_the_goal_still_survives():
    frames = [
        (0.0, [sample(0.0)]),
        (10.0, [sample(99.5, hp=0)]),
        (11.0, [sample(100.0, hp=0)]),
    ]
    log = decode(build_payload(frames, [result(0, finish_time_raw=11.0)]))
    stats = evaluate(log, 0, _attributes())
    assert stats.stamina_success == SPURT_SUCCESS


def test_out_of_range_participant_raises():
    with pytest.raises(OutOfRangeError):
        evaluate(_log(), 3, _attributes())
    with pytest.raises(OutOfRangeError):
        evaluate(_log(), -1, _attributes())


def test_evaluate_all_keys_by_participant_index():
    results = evaluate_all(_log(), sample_attributes())
    assert sorted(results) == [0, 1, 2]
    assert results[0].success == SPURT_SUCCESS
    assert results[1].success == NOT_APPLICABLE


def test_style_table_overrides_from_config(monkeypatch):
    monkeypatch.setattr(spurt, "get_config", lambda key, default=None: {"front_runner": {"final": 1.5}})
    table = spurt._config_style_table("spurt_model.style_phase_speed", spurt.DEFAULT_STYLE_SPEED_MOD)
    assert table[RunningStyle.FRONT_RUNNER][spurt.Phase.FINAL] == 1.5
    assert table[RunningStyle.FRONT_RUNNER][spurt.Phase.OPENING] == 1.0
    assert table[RunningStyle.END_CLOSER][spurt.Phase.FINAL] == 1.0
    with pytest.raises(TypeError):
        table[RunningStyle.FRONT_RUNNER][spurt.Phase.FINAL] = 2.0
