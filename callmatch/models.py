"""
データモデルモジュール (Data Models Module)

録音とCSV通話明細の突き合わせに使用するデータモデルを定義します。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


CALL_DIRECTION_INBOUND = "Inbound"
CALL_DIRECTION_OUTBOUND = "Outbound"
VALID_CALL_DIRECTIONS = (CALL_DIRECTION_INBOUND, CALL_DIRECTION_OUTBOUND)


class InvalidCandidateError(ValueError):
    """候補行の検証エラー"""
    pass


def to_utc(value: datetime) -> datetime:
    """
    日時を UTC のタイムゾーン付き日時に正規化

    タイムゾーン情報を持たない日時は UTC として扱います。
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """
    ISO 8601 文字列を UTC の日時に変換

    末尾の "Z" も受け付けます。

    Raises:
        ValueError: 解析できない場合
    """
    return to_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))


@dataclass(frozen=True)
class MatchOptions:
    """
    突き合わせオプション

    リクエストごとに明示的に渡される設定値です。

    Attributes:
        time_tolerance_minutes: 時刻の許容差（分）
        phone_number_match: 電話番号を照合に使用するかどうか
        duration_tolerance_seconds: 通話時間の許容差（秒）
        require_disposition_match: 処理結果の一致を要求するか（受け付けるのみで採点には影響しない）
    """
    time_tolerance_minutes: float = 5.0
    phone_number_match: bool = True
    duration_tolerance_seconds: float = 30.0
    require_disposition_match: bool = False

    def __post_init__(self) -> None:
        if not self.time_tolerance_minutes > 0:
            raise ValueError(
                f"time_tolerance_minutes must be positive: {self.time_tolerance_minutes}"
            )
        if not self.duration_tolerance_seconds > 0:
            raise ValueError(
                f"duration_tolerance_seconds must be positive: {self.duration_tolerance_seconds}"
            )


@dataclass(frozen=True)
class Recording:
    """
    録音の観測メタデータ

    アップロードされた音声ファイルについて、突き合わせ前に分かっている情報です。

    Attributes:
        observed_time: 録音の通話時刻
        phone_number: 電話番号（不明な場合はNone）
        duration_seconds: 録音時間（秒、不明な場合はNone）
    """
    observed_time: datetime
    phone_number: Optional[str] = None
    duration_seconds: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "observed_time", to_utc(self.observed_time))


@dataclass(frozen=True)
class CandidateRecord:
    """
    CSV通話明細の候補レコード

    電話システムのCSVエクスポートから取り込まれた1行です。
    検索境界で一度だけ検証され、以降は読み取り専用として扱います。

    Attributes:
        id: 主キー (UUID)
        call_time: 通話時刻
        direction: 通話方向 (Inbound, Outbound)
        source_number: 発信元番号
        destination_number: 発信先番号
        duration_seconds: 通話時間（秒）
        disposition: 処理結果 (answered, voicemail など)
        time_to_answer_seconds: 応答までの秒数
        source_name: 発信元名
    """
    id: str
    call_time: datetime
    direction: str
    source_number: Optional[str] = None
    destination_number: Optional[str] = None
    duration_seconds: Optional[int] = None
    disposition: Optional[str] = None
    time_to_answer_seconds: Optional[int] = None
    source_name: Optional[str] = None

    def __post_init__(self) -> None:
        # タイムゾーンなしの時刻は UTC として扱う
        object.__setattr__(self, "call_time", to_utc(self.call_time))
        if self.direction not in VALID_CALL_DIRECTIONS:
            raise InvalidCandidateError(
                f"call direction must be one of {list(VALID_CALL_DIRECTIONS)}: {self.direction!r}"
            )
        if self.duration_seconds is not None and self.duration_seconds < 0:
            raise InvalidCandidateError(
                f"call duration must be non-negative: {self.duration_seconds}"
            )

    @property
    def has_phone_number(self) -> bool:
        return bool(self.source_number or self.destination_number)


@dataclass(frozen=True)
class ScoredMatch:
    """
    採点済みの候補

    Attributes:
        candidate: 候補レコード
        score: 一致スコア (0〜1)
        time_diff_minutes: 時刻差（分、候補時刻 − 録音時刻）
        duration_diff_seconds: 通話時間差の絶対値（秒、どちらかが不明ならNone）
        match_reasons: 一致理由タグ
    """
    candidate: CandidateRecord
    score: float
    time_diff_minutes: float
    duration_diff_seconds: Optional[float] = None
    match_reasons: List[str] = field(default_factory=list)


@dataclass
class MatchQuality:
    """
    一致品質の判定結果

    is_high_quality は is_medium_quality を含意します。
    """
    is_high_quality: bool
    is_medium_quality: bool
    is_low_quality: bool
    reasons: List[str] = field(default_factory=list)

    @property
    def tier(self) -> str:
        if self.is_high_quality:
            return "high"
        if self.is_medium_quality:
            return "medium"
        return "low"


@dataclass(frozen=True)
class Link:
    """
    録音由来の通話とCSV通話明細の関連付け

    Attributes:
        call_id: 通話ID
        csv_call_id: CSV通話明細ID
        linked_at: 関連付け日時
    """
    call_id: str
    csv_call_id: str
    linked_at: datetime


@dataclass
class CallRecord:
    """
    録音から作成された通話データモデル

    Attributes:
        id: 主キー (UUID)
        user_id: 所有ユーザーID
        call_time: 通話時刻
        phone_number: 電話番号
        duration_seconds: 録音時間（秒）
        csv_call_id: 関連付けられたCSV通話明細ID (未関連付けはNone)
        created_at: 作成日時
        updated_at: 更新日時
    """
    id: str
    user_id: str
    call_time: datetime
    phone_number: Optional[str]
    duration_seconds: Optional[int]
    csv_call_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    def to_recording(self) -> Recording:
        return Recording(
            observed_time=self.call_time,
            phone_number=self.phone_number,
            duration_seconds=self.duration_seconds,
        )
