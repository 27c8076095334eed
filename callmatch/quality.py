"""
一致品質モジュール (Match Quality Module)

選択された候補を high / medium / low の信頼度に分類し、
格下げの理由を添えて返します。
"""

import math

from .models import MatchQuality, ScoredMatch


TIME_SIGNIFICANT = "Time difference is significant"
TIME_TOO_FAR = "Time difference exceeds 5 minutes"
SCORE_BELOW_HIGH = "Match score is below 90%"
SCORE_BELOW_MEDIUM = "Match score is below 70%"
NO_PHONE_DATA = "No phone number data available"

HIGH_TIME_LIMIT_MINUTES = 2
MEDIUM_TIME_LIMIT_MINUTES = 5
HIGH_SCORE_THRESHOLD = 0.9
MEDIUM_SCORE_THRESHOLD = 0.7
LOW_SCORE_THRESHOLD = 0.4


class QualityClassifier:
    """
    一致品質の分類器

    既定では high と medium の判定を段階的に行います。時刻差とスコアの
    medium 判定は high 判定の else 側にあるため、既定の動作では
    medium が下がることはありません。

    independent_thresholds=True の場合、2分/5分 と 0.9/0.7 の閾値を
    それぞれ独立に評価します。

    Attributes:
        independent_thresholds: 閾値を独立に評価するかどうか
    """

    def __init__(self, independent_thresholds: bool = False):
        self.independent_thresholds = independent_thresholds

    def classify(self, match: ScoredMatch) -> MatchQuality:
        """
        候補の一致品質を判定

        Args:
            match: 採点済みの候補

        Returns:
            MatchQuality（格下げがない場合 reasons は空）
        """
        is_high = True
        is_medium = True
        reasons = []

        abs_minutes = abs(match.time_diff_minutes)
        if self.independent_thresholds:
            if abs_minutes > HIGH_TIME_LIMIT_MINUTES:
                reasons.append(TIME_SIGNIFICANT)
                is_high = False
            if abs_minutes > MEDIUM_TIME_LIMIT_MINUTES:
                reasons.append(TIME_TOO_FAR)
                is_medium = False
            if match.score < HIGH_SCORE_THRESHOLD:
                reasons.append(SCORE_BELOW_HIGH)
                is_high = False
            if match.score < MEDIUM_SCORE_THRESHOLD:
                reasons.append(SCORE_BELOW_MEDIUM)
                is_medium = False
        else:
            if abs_minutes > HIGH_TIME_LIMIT_MINUTES:
                reasons.append(TIME_SIGNIFICANT)
                is_high = False
            elif abs_minutes > MEDIUM_TIME_LIMIT_MINUTES:
                is_medium = False

            if match.score < HIGH_SCORE_THRESHOLD:
                reasons.append(SCORE_BELOW_HIGH)
                is_high = False
            elif match.score < MEDIUM_SCORE_THRESHOLD:
                is_medium = False

        if not match.candidate.has_phone_number:
            reasons.append(NO_PHONE_DATA)
            is_high = False

        if not is_medium:
            is_high = False

        return MatchQuality(
            is_high_quality=is_high,
            is_medium_quality=is_medium,
            is_low_quality=not is_medium,
            reasons=reasons,
        )


def get_match_confidence(score: float) -> str:
    """スコアから信頼度ラベル (high / medium / low / none) を返す"""
    if score >= HIGH_SCORE_THRESHOLD:
        return "high"
    if score >= MEDIUM_SCORE_THRESHOLD:
        return "medium"
    if score >= LOW_SCORE_THRESHOLD:
        return "low"
    return "none"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_time_diff(minutes: float) -> str:
    """
    時刻差をレビュー画面向けの文字列に変換

    例: "Less than 1 minute", "3 minutes", "1h 5m"
    """
    abs_minutes = abs(minutes)
    if abs_minutes < 1:
        return "Less than 1 minute"
    if abs_minutes < 60:
        rounded = _round_half_up(abs_minutes)
        return f"{rounded} minute{'s' if rounded != 1 else ''}"
    hours, mins = divmod(_round_half_up(abs_minutes), 60)
    return f"{hours}h {mins}m"
