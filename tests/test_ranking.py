"""
候補ランキングのユニットテスト
"""

from datetime import datetime, timezone
from itertools import permutations

from callmatch.models import CandidateRecord, ScoredMatch
from callmatch.quality import QualityClassifier
from callmatch.ranking import compare_matches, rank_matches


CALL_TIME = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)


def make_match(candidate_id: str, score: float, minutes: float) -> ScoredMatch:
    candidate = CandidateRecord(id=candidate_id, call_time=CALL_TIME, direction="Outbound")
    return ScoredMatch(candidate=candidate, score=score, time_diff_minutes=minutes)


def ids(matches):
    return [m.candidate.id for m in matches]


class TestCompareMatches:
    """compare_matches() のテスト"""

    def test_higher_score_first(self):
        assert compare_matches(make_match("a", 0.9, 4), make_match("b", 0.5, 0)) < 0
        assert compare_matches(make_match("a", 0.5, 0), make_match("b", 0.9, 4)) > 0

    def test_near_tie_prefers_closer_time(self):
        """スコア差が 0.01 以内なら時刻差の小さい方が先"""
        far = make_match("far", 0.9, 3)
        near = make_match("near", 0.895, -1)
        assert compare_matches(near, far) < 0
        assert compare_matches(far, near) > 0

    def test_full_tie_is_zero(self):
        assert compare_matches(make_match("a", 0.8, 2), make_match("b", 0.8, -2)) == 0


class TestRankMatches:
    """rank_matches() のテスト"""

    def test_orders_by_score_descending(self):
        matches = [make_match("low", 0.2, 0), make_match("high", 0.95, 3), make_match("mid", 0.6, 1)]
        assert ids(rank_matches(matches)) == ["high", "mid", "low"]

    def test_tie_break_by_absolute_time_difference(self):
        matches = [
            make_match("three", 0.8, 3),
            make_match("minus-one", 0.805, -1),
            make_match("two", 0.798, 2),
        ]
        assert ids(rank_matches(matches)) == ["minus-one", "two", "three"]

    def test_stable_for_identical_keys(self):
        matches = [make_match("first", 0.7, 1), make_match("second", 0.7, -1), make_match("third", 0.7, 1)]
        assert ids(rank_matches(matches)) == ["first", "second", "third"]

    def test_does_not_truncate(self):
        matches = [make_match(str(i), i / 10, i) for i in range(10)]
        assert len(rank_matches(matches)) == 10

    def test_empty_input(self):
        assert rank_matches([]) == []

    def test_near_tie_chain_ignores_input_order(self):
        """
        ほぼ同点が連鎖する候補群でも、入力順によって先頭と品質判定が変わらない
        """
        matches = [
            make_match("0", 0.8746, 2.02),
            make_match("1", 0.8823, 0.14),
            make_match("2", 0.8927, 3.19),
            make_match("3", 0.8876, 0.69),
            make_match("4", 0.8835, 2.81),
            make_match("5", 0.8798, 1.5),
        ]
        classifier = QualityClassifier()
        expected = rank_matches(matches)

        for ordering in permutations(matches):
            ranked = rank_matches(ordering)
            assert ids(ranked) == ids(expected)
            assert classifier.classify(ranked[0]) == classifier.classify(expected[0])
