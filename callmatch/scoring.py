"""
類似度スコアモジュール (Similarity Scoring Module)

録音と候補レコードの1組について、0〜1 の一致スコアを計算します。

採点に使用する要素:
    - 時刻の近さ (重み 0.4、常に使用)
    - 電話番号の一致 (重み 0.4、双方に番号がある場合のみ)
    - 通話時間の近さ (重み 0.2、双方の通話時間が分かる場合のみ)

スコアは実際に使用した要素の重みの合計で正規化されるため、
欠落しているデータによって候補が不利になることはありません。
"""

from datetime import datetime
from typing import List, Optional, Tuple

from .models import CandidateRecord, MatchOptions, Recording


TIME_WEIGHT = 0.4
PHONE_WEIGHT = 0.4
DURATION_WEIGHT = 0.2


def time_diff_minutes(observed_time: datetime, call_time: datetime) -> float:
    """候補時刻と録音時刻の差（分、符号付き）"""
    return (call_time - observed_time).total_seconds() / 60.0


def duration_diff_seconds(
    recording_duration: Optional[int],
    candidate_duration: Optional[int]
) -> Optional[float]:
    """通話時間差の絶対値（秒）。どちらかが不明な場合は None"""
    if recording_duration is None or candidate_duration is None:
        return None
    return float(abs(recording_duration - candidate_duration))


def time_score(diff_minutes: float, tolerance_minutes: float) -> float:
    """許容差で 0 まで線形に減衰する時刻スコア"""
    return max(0.0, 1.0 - abs(diff_minutes) / tolerance_minutes)


def duration_score(diff_seconds: float, tolerance_seconds: float) -> float:
    """許容差で 0 まで線形に減衰する通話時間スコア"""
    return max(0.0, 1.0 - abs(diff_seconds) / tolerance_seconds)


def phone_number_matches(
    phone_number: Optional[str],
    candidate: CandidateRecord
) -> bool:
    """録音の電話番号が候補の発信元・発信先のいずれかと完全一致するか"""
    if not phone_number:
        return False
    return phone_number == candidate.source_number or phone_number == candidate.destination_number


def calculate_match_score(
    recording: Recording,
    candidate: CandidateRecord,
    options: Optional[MatchOptions] = None
) -> float:
    """
    録音と候補レコードの一致スコアを計算

    Args:
        recording: 録音の観測メタデータ
        candidate: 候補レコード
        options: 突き合わせオプション（None の場合は既定値）

    Returns:
        0〜1 の一致スコア
    """
    if options is None:
        options = MatchOptions()

    factors: List[Tuple[float, float]] = []

    diff = time_diff_minutes(recording.observed_time, candidate.call_time)
    factors.append((TIME_WEIGHT, time_score(diff, options.time_tolerance_minutes)))

    if options.phone_number_match and recording.phone_number and candidate.has_phone_number:
        matched = phone_number_matches(recording.phone_number, candidate)
        factors.append((PHONE_WEIGHT, 1.0 if matched else 0.0))

    duration_diff = duration_diff_seconds(recording.duration_seconds, candidate.duration_seconds)
    if duration_diff is not None:
        factors.append(
            (DURATION_WEIGHT, duration_score(duration_diff, options.duration_tolerance_seconds))
        )

    total_weight = sum(weight for weight, _ in factors)
    if total_weight == 0:
        return 0.0

    return sum(weight * value for weight, value in factors) / total_weight
