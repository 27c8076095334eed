"""
設定管理モジュール (Configuration Management Module)

環境変数からアプリケーション設定を読み込み、検証を行います。
"""

from dataclasses import dataclass, field
import math
import os

from .models import MatchOptions


class ConfigurationError(Exception):
    """設定エラー例外クラス"""
    pass


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


@dataclass
class Config:
    """
    アプリケーション設定

    環境変数から設定を読み込み、値のバリデーションを行います。
    突き合わせオプションの既定値は default_match_options() で
    不変の MatchOptions として取得します。
    """
    # データベース設定
    database_path: str

    # 突き合わせオプションの既定値
    time_tolerance_minutes: float
    duration_tolerance_seconds: float
    phone_number_match: bool
    require_disposition_match: bool

    # 自動判定の閾値
    min_score: float

    # 並列採点設定
    parallel_threshold: int
    max_workers: int

    # ロギング設定
    log_level: str

    # デフォルト値の定数
    DEFAULT_DATABASE_PATH: str = field(default="call_matcher.db", init=False, repr=False)
    DEFAULT_TIME_TOLERANCE_MINUTES: float = field(default=5.0, init=False, repr=False)
    DEFAULT_DURATION_TOLERANCE_SECONDS: float = field(default=30.0, init=False, repr=False)
    DEFAULT_MIN_SCORE: float = field(default=0.7, init=False, repr=False)
    DEFAULT_PARALLEL_THRESHOLD: int = field(default=200, init=False, repr=False)
    DEFAULT_MAX_WORKERS: int = field(default=4, init=False, repr=False)
    DEFAULT_LOG_LEVEL: str = field(default="INFO", init=False, repr=False)

    @classmethod
    def from_env(cls) -> 'Config':
        """
        環境変数から設定を読み込む

        環境変数（すべてオプション）:
            - DATABASE_PATH: SQLite データベースファイル (デフォルト: call_matcher.db)
            - MATCH_TIME_TOLERANCE_MINUTES: 時刻の許容差（分） (デフォルト: 5)
            - MATCH_DURATION_TOLERANCE_SECONDS: 通話時間の許容差（秒） (デフォルト: 30)
            - MATCH_PHONE_NUMBER: 電話番号を照合に使用する (デフォルト: true)
            - MATCH_REQUIRE_DISPOSITION: 処理結果の一致を要求する (デフォルト: false)
            - MATCH_MIN_SCORE: 自動判定の最低スコア (デフォルト: 0.7)
            - MATCH_PARALLEL_THRESHOLD: 並列採点を開始する候補数 (デフォルト: 200、0 で無効)
            - MATCH_MAX_WORKERS: 並列採点のワーカー数 (デフォルト: 4)
            - LOG_LEVEL: ログレベル (デフォルト: INFO)

        Returns:
            Config: 設定オブジェクト

        Raises:
            ConfigurationError: 値が数値として解釈できない、または不正な場合
        """
        try:
            time_tolerance_minutes = float(os.environ.get("MATCH_TIME_TOLERANCE_MINUTES", "5"))
            duration_tolerance_seconds = float(os.environ.get("MATCH_DURATION_TOLERANCE_SECONDS", "30"))
            min_score = float(os.environ.get("MATCH_MIN_SCORE", "0.7"))
            parallel_threshold = int(os.environ.get("MATCH_PARALLEL_THRESHOLD", "200"))
            max_workers = int(os.environ.get("MATCH_MAX_WORKERS", "4"))
        except ValueError as e:
            raise ConfigurationError(f"数値設定の形式が不正です: {e}") from e

        config = cls(
            database_path=os.environ.get("DATABASE_PATH", "call_matcher.db"),
            time_tolerance_minutes=time_tolerance_minutes,
            duration_tolerance_seconds=duration_tolerance_seconds,
            phone_number_match=_parse_bool(os.environ.get("MATCH_PHONE_NUMBER", "true")),
            require_disposition_match=_parse_bool(os.environ.get("MATCH_REQUIRE_DISPOSITION", "false")),
            min_score=min_score,
            parallel_threshold=parallel_threshold,
            max_workers=max_workers,
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )

        # バリデーション実行
        config.validate()

        return config

    def validate(self) -> None:
        """
        設定の妥当性を検証

        Raises:
            ConfigurationError: 設定が無効な場合
        """
        if not self.database_path:
            raise ConfigurationError("DATABASE_PATH を空にすることはできません")

        if not math.isfinite(self.time_tolerance_minutes) or self.time_tolerance_minutes <= 0:
            raise ConfigurationError(
                f"MATCH_TIME_TOLERANCE_MINUTES は正の数である必要があります: {self.time_tolerance_minutes}"
            )

        if not math.isfinite(self.duration_tolerance_seconds) or self.duration_tolerance_seconds <= 0:
            raise ConfigurationError(
                f"MATCH_DURATION_TOLERANCE_SECONDS は正の数である必要があります: {self.duration_tolerance_seconds}"
            )

        if not 0 <= self.min_score <= 1:
            raise ConfigurationError(
                f"MATCH_MIN_SCORE は 0 以上 1 以下である必要があります: {self.min_score}"
            )

        if self.parallel_threshold < 0:
            raise ConfigurationError(
                f"MATCH_PARALLEL_THRESHOLD は0以上の整数である必要があります: {self.parallel_threshold}"
            )

        if self.max_workers <= 0:
            raise ConfigurationError(
                f"MATCH_MAX_WORKERS は正の整数である必要があります: {self.max_workers}"
            )

        # ログレベルの検証
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ConfigurationError(
                f"LOG_LEVEL は {valid_log_levels} のいずれかである必要があります: {self.log_level}"
            )

    def default_match_options(self) -> MatchOptions:
        """設定値から既定の突き合わせオプションを作成"""
        return MatchOptions(
            time_tolerance_minutes=self.time_tolerance_minutes,
            phone_number_match=self.phone_number_match,
            duration_tolerance_seconds=self.duration_tolerance_seconds,
            require_disposition_match=self.require_disposition_match,
        )
