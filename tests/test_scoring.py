"""
類似度スコアのユニットテスト

時刻・電話番号・通話時間の各要素と正規化の検証
"""

from datetime import datetime, timedelta, timezone

import pytest

from callmatch.models import CandidateRecord, MatchOptions, Recording
from callmatch.scoring import (
    calculate_match_score,
    duration_diff_seconds,
    duration_score,
    phone_number_matches,
    time_diff_minutes,
    time_score,
)


BASE_TIME = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)


def make_candidate(
    offset_seconds: float = 0,
    source_number=None,
    destination_number=None,
    duration_seconds=None,
    candidate_id: str = "csv-1"
) -> CandidateRecord:
    return CandidateRecord(
        id=candidate_id,
        call_time=BASE_TIME + timedelta(seconds=offset_seconds),
        direction="Inbound",
        source_number=source_number,
        destination_number=destination_number,
        duration_seconds=duration_seconds,
    )


class TestFactorHelpers:
    """要素ごとの補助関数のテスト"""

    def test_time_diff_is_signed(self):
        """候補が後なら正、前なら負"""
        later = BASE_TIME + timedelta(seconds=90)
        assert time_diff_minutes(BASE_TIME, later) == pytest.approx(1.5)
        assert time_diff_minutes(later, BASE_TIME) == pytest.approx(-1.5)

    def test_duration_diff_requires_both_values(self):
        assert duration_diff_seconds(120, 125) == 5.0
        assert duration_diff_seconds(125, 120) == 5.0
        assert duration_diff_seconds(None, 120) is None
        assert duration_diff_seconds(120, None) is None

    def test_time_score_decays_linearly(self):
        assert time_score(0, 5) == 1.0
        assert time_score(2.5, 5) == pytest.approx(0.5)
        assert time_score(-2.5, 5) == pytest.approx(0.5)
        assert time_score(5, 5) == 0.0
        assert time_score(12, 5) == 0.0

    def test_duration_score_decays_linearly(self):
        assert duration_score(0, 30) == 1.0
        assert duration_score(15, 30) == pytest.approx(0.5)
        assert duration_score(30, 30) == 0.0
        assert duration_score(90, 30) == 0.0

    def test_phone_number_matches_either_side(self):
        candidate = make_candidate(source_number="555-1111", destination_number="555-9999")
        assert phone_number_matches("555-1111", candidate)
        assert phone_number_matches("555-9999", candidate)
        assert not phone_number_matches("555-2222", candidate)
        assert not phone_number_matches(None, candidate)


class TestCalculateMatchScore:
    """calculate_match_score() のテスト"""

    def test_perfect_match_scores_one(self):
        """
        正常系: 時刻差 0・電話番号一致・通話時間差 0 でスコア 1.0
        """
        recording = Recording(BASE_TIME, phone_number="555-1111", duration_seconds=120)
        candidate = make_candidate(0, source_number="555-1111", duration_seconds=120)

        assert calculate_match_score(recording, candidate) == pytest.approx(1.0)

    def test_weighted_combination(self):
        """
        正常系: 30秒差・電話番号一致・5秒差の重み付きスコア
        """
        recording = Recording(BASE_TIME, phone_number="555-1111", duration_seconds=120)
        candidate = make_candidate(30, source_number="555-1111", duration_seconds=125)

        expected = 0.4 * 0.9 + 0.4 * 1.0 + 0.2 * (1 - 5 / 30)
        score = calculate_match_score(recording, candidate)

        assert score == pytest.approx(expected)
        assert score >= 0.9

    def test_phone_mismatch_contributes_zero(self):
        """電話番号不一致は重み 0.4 の要素として 0 点"""
        recording = Recording(BASE_TIME, phone_number="555-1111", duration_seconds=120)
        candidate = make_candidate(0, source_number="555-2222", duration_seconds=120)

        assert calculate_match_score(recording, candidate) == pytest.approx(0.6)

    def test_missing_duration_is_normalized_away(self):
        """
        候補に通話時間がない場合、時刻と電話番号の2要素のみで正規化される
        """
        recording = Recording(BASE_TIME, phone_number="555-1111", duration_seconds=120)
        candidate = make_candidate(30, source_number="555-1111")

        expected = (0.4 * 0.9 + 0.4 * 1.0) / 0.8
        assert calculate_match_score(recording, candidate) == pytest.approx(expected)

    def test_recording_without_phone_uses_time_and_duration(self):
        recording = Recording(BASE_TIME, duration_seconds=120)
        candidate = make_candidate(0, source_number="555-2222", duration_seconds=135)

        expected = (0.4 * 1.0 + 0.2 * 0.5) / 0.6
        assert calculate_match_score(recording, candidate) == pytest.approx(expected)

    def test_candidate_without_numbers_skips_phone_factor(self):
        recording = Recording(BASE_TIME, phone_number="555-1111")
        candidate = make_candidate(0)

        assert calculate_match_score(recording, candidate) == pytest.approx(1.0)

    def test_phone_matching_disabled(self):
        """phone_number_match=False の場合、電話番号は採点に使用されない"""
        recording = Recording(BASE_TIME, phone_number="555-1111")
        candidate = make_candidate(0, source_number="555-2222")
        options = MatchOptions(phone_number_match=False)

        assert calculate_match_score(recording, candidate, options) == pytest.approx(1.0)

    def test_outside_time_tolerance_scores_zero_on_time_only(self):
        recording = Recording(BASE_TIME)
        candidate = make_candidate(6 * 60)

        assert calculate_match_score(recording, candidate) == 0.0

    def test_custom_time_tolerance(self):
        recording = Recording(BASE_TIME)
        candidate = make_candidate(5 * 60)
        options = MatchOptions(time_tolerance_minutes=10)

        assert calculate_match_score(recording, candidate, options) == pytest.approx(0.5)

    def test_disposition_option_does_not_change_score(self):
        recording = Recording(BASE_TIME, phone_number="555-1111", duration_seconds=60)
        candidate = make_candidate(45, source_number="555-1111", duration_seconds=70)

        plain = calculate_match_score(recording, candidate, MatchOptions())
        with_flag = calculate_match_score(
            recording, candidate, MatchOptions(require_disposition_match=True)
        )
        assert plain == with_flag

    @pytest.mark.parametrize("offset_seconds,phone,duration", [
        (0, "555-1111", 120),
        (-200, "555-2222", 10),
        (10_000, None, None),
        (59, "555-1111", 500),
        (-299, None, 121),
    ])
    def test_score_is_within_unit_interval(self, offset_seconds, phone, duration):
        recording = Recording(BASE_TIME, phone_number="555-1111", duration_seconds=120)
        candidate = make_candidate(offset_seconds, source_number=phone, duration_seconds=duration)

        score = calculate_match_score(recording, candidate)
        assert 0.0 <= score <= 1.0

    def test_score_non_increasing_in_time_difference(self):
        recording = Recording(BASE_TIME, phone_number="555-1111", duration_seconds=120)
        scores = [
            calculate_match_score(
                recording,
                make_candidate(seconds, source_number="555-1111", duration_seconds=120)
            )
            for seconds in range(0, 7 * 60, 30)
        ]
        assert all(a >= b for a, b in zip(scores, scores[1:]))

    def test_score_non_increasing_in_duration_difference(self):
        recording = Recording(BASE_TIME, phone_number="555-1111", duration_seconds=120)
        scores = [
            calculate_match_score(
                recording,
                make_candidate(30, source_number="555-1111", duration_seconds=120 + diff)
            )
            for diff in range(0, 60, 5)
        ]
        assert all(a >= b for a, b in zip(scores, scores[1:]))
