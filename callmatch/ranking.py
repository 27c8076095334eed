"""
候補ランキングモジュール (Candidate Ranking Module)

採点済みの候補をスコアの降順に並べます。
スコア差が 0.01 以内の場合は時刻差の小さい候補を優先します。
"""

from functools import cmp_to_key
from typing import Iterable, List

from .models import ScoredMatch


SCORE_EPSILON = 0.01


def compare_matches(a: ScoredMatch, b: ScoredMatch) -> int:
    """
    2つの候補を比較

    Returns:
        a を先に並べる場合は負、b を先に並べる場合は正、同順位は 0
    """
    if abs(b.score - a.score) > SCORE_EPSILON:
        return -1 if a.score > b.score else 1

    # ほぼ同点の場合は時刻が近い方を優先
    a_minutes = abs(a.time_diff_minutes)
    b_minutes = abs(b.time_diff_minutes)
    if a_minutes < b_minutes:
        return -1
    if a_minutes > b_minutes:
        return 1
    return 0


def rank_matches(matches: Iterable[ScoredMatch]) -> List[ScoredMatch]:
    """
    候補を安定ソートで並べ替える

    切り捨ては行わず、全候補を順位順に返します。
    許容幅付きの比較は推移的ではないため、先にスコアと時刻差で
    並べてから比較関数で整列します。入力順は完全な同点の場合のみ残ります。
    """
    canonical = sorted(matches, key=lambda m: (-m.score, abs(m.time_diff_minutes)))
    return sorted(canonical, key=cmp_to_key(compare_matches))
