"""
一致理由モジュール (Match Reasons Module)

採点と同じ差分値から、レビュー担当者向けの一致理由タグを生成します。
タグは時刻、通話時間、電話番号の順に並びます。
"""

from typing import List, Optional


EXACT_TIME_MATCH = "Exact time match"
CLOSE_TIME_MATCH = "Close time match"
EXACT_DURATION_MATCH = "Exact duration match"
VERY_CLOSE_DURATION = "Very close duration"
SIMILAR_DURATION = "Similar duration"
PHONE_NUMBER_MATCH = "Phone number match"


def build_match_reasons(
    time_diff_minutes: float,
    duration_diff_seconds: Optional[float],
    phone_matched: bool
) -> List[str]:
    """
    一致理由タグのリストを生成

    Args:
        time_diff_minutes: 時刻差（分、符号付き）
        duration_diff_seconds: 通話時間差（秒、不明な場合はNone）
        phone_matched: 電話番号が一致したかどうか

    Returns:
        一致理由タグのリスト（該当なしの場合は空リスト）
    """
    reasons = []

    abs_minutes = abs(time_diff_minutes)
    if abs_minutes < 1:
        reasons.append(EXACT_TIME_MATCH)
    elif abs_minutes < 2:
        reasons.append(CLOSE_TIME_MATCH)

    if duration_diff_seconds is not None:
        if duration_diff_seconds == 0:
            reasons.append(EXACT_DURATION_MATCH)
        elif duration_diff_seconds <= 5:
            reasons.append(VERY_CLOSE_DURATION)
        elif duration_diff_seconds <= 30:
            reasons.append(SIMILAR_DURATION)

    if phone_matched:
        reasons.append(PHONE_NUMBER_MATCH)

    return reasons
