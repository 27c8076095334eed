"""
一致理由タグのユニットテスト
"""

import pytest

from callmatch.reasons import (
    CLOSE_TIME_MATCH,
    EXACT_DURATION_MATCH,
    EXACT_TIME_MATCH,
    PHONE_NUMBER_MATCH,
    SIMILAR_DURATION,
    VERY_CLOSE_DURATION,
    build_match_reasons,
)


class TestTimeReasons:
    """時刻差のタグ"""

    @pytest.mark.parametrize("minutes,expected", [
        (0, [EXACT_TIME_MATCH]),
        (0.5, [EXACT_TIME_MATCH]),
        (-0.99, [EXACT_TIME_MATCH]),
        (1, [CLOSE_TIME_MATCH]),
        (-1.5, [CLOSE_TIME_MATCH]),
        (2, []),
        (7, []),
    ])
    def test_time_tags(self, minutes, expected):
        assert build_match_reasons(minutes, None, False) == expected


class TestDurationReasons:
    """通話時間差のタグ"""

    @pytest.mark.parametrize("seconds,expected", [
        (0, [EXACT_DURATION_MATCH]),
        (3, [VERY_CLOSE_DURATION]),
        (5, [VERY_CLOSE_DURATION]),
        (6, [SIMILAR_DURATION]),
        (30, [SIMILAR_DURATION]),
        (31, []),
    ])
    def test_duration_tags(self, seconds, expected):
        assert build_match_reasons(10, seconds, False) == expected

    def test_unknown_duration_adds_nothing(self):
        assert build_match_reasons(10, None, False) == []


class TestReasonOrdering:
    """タグの並び順"""

    def test_time_then_duration_then_phone(self):
        reasons = build_match_reasons(1.2, 4, True)
        assert reasons == [CLOSE_TIME_MATCH, VERY_CLOSE_DURATION, PHONE_NUMBER_MATCH]

    def test_phone_only(self):
        assert build_match_reasons(4, 100, True) == [PHONE_NUMBER_MATCH]

    def test_empty_when_nothing_matches(self):
        assert build_match_reasons(4, 100, False) == []
