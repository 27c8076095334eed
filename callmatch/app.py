"""
Flask アプリケーションモジュール (Flask Application Module)

録音とCSV通話明細の突き合わせ API を提供する Flask アプリケーションです。
候補検索・採点・ランキング・品質判定・関連付けの各エンドポイントと
構造化ロギングを設定します。
"""

import dataclasses
import logging
import math
import sys
import traceback
from typing import Any, Dict, List, Optional, Tuple

import structlog
from flask import Flask, abort, jsonify, request, Response

from .config import Config
from .link_committer import LinkCommitter, LinkNotFoundError
from .matcher import MatchOrchestrator
from .models import Link, MatchOptions, Recording, ScoredMatch, parse_timestamp
from .quality import QualityClassifier, format_time_diff, get_match_confidence
from .storage import SQLiteStorage, Storage


USER_ID_HEADER = "X-User-Id"


class MatchRequestValidationError(Exception):
    """
    突き合わせリクエスト検証エラー

    不正なリクエスト（必須フィールド欠落、不正な時刻形式、負の通話時間など）を
    検出した場合に発生します。

    Attributes:
        message: エラーメッセージ
        error_type: エラーの種類
    """

    def __init__(self, message: str, error_type: str = "validation_error"):
        super().__init__(message)
        self.message = message
        self.error_type = error_type


def configure_structlog(log_level: str = "INFO") -> None:
    """
    structlog を設定

    JSON フォーマットの構造化ロギングを設定します。
    すべてのログ出力は timestamp, level, event フィールドを含みます。

    Args:
        log_level: ログレベル (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    # 標準ライブラリの logging を設定
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # structlog のプロセッサチェーンを設定
    structlog.configure(
        processors=[
            # コンテキスト情報を追加
            structlog.contextvars.merge_contextvars,
            # ログレベルを追加
            structlog.stdlib.add_log_level,
            # ロガー名を追加
            structlog.stdlib.add_logger_name,
            # タイムスタンプを追加
            structlog.processors.TimeStamper(fmt="iso"),
            # スタックトレース情報を追加
            structlog.processors.StackInfoRenderer(),
            # 例外情報をフォーマット
            structlog.processors.format_exc_info,
            # Unicode をデコード
            structlog.processors.UnicodeDecoder(),
            # JSON フォーマットでレンダリング
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """
    構造化ロガーを取得

    Args:
        name: ロガー名

    Returns:
        構造化ロガーインスタンス
    """
    return structlog.get_logger(name)


def validate_json_request(data: Any, required_fields: Optional[list] = None) -> Tuple[bool, Optional[str]]:
    """
    JSON リクエストを検証

    Args:
        data: 検証するデータ
        required_fields: 必須フィールドのリスト（オプション）

    Returns:
        (検証結果, エラーメッセージ) のタプル
    """
    if data is None:
        return False, "Invalid JSON: request body is empty or malformed"

    if not isinstance(data, dict):
        return False, "Invalid JSON: request body must be a JSON object"

    if required_fields:
        missing_fields = [
            field for field in required_fields
            if field not in data or data[field] is None or data[field] == ""
        ]
        if missing_fields:
            return False, f"Missing required fields: {' and '.join(missing_fields)} are required"

    return True, None


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None
) -> Tuple[Response, int]:
    """
    エラーレスポンスを作成

    Args:
        error_type: エラーの種類
        message: エラーメッセージ
        status_code: HTTP ステータスコード
        details: 追加の詳細情報（オプション）

    Returns:
        (JSON レスポンス, ステータスコード) のタプル
    """
    response_body = {
        "error": error_type,
        "message": message,
        "status_code": status_code
    }
    if details:
        response_body["details"] = details

    return jsonify(response_body), status_code


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def parse_match_options(raw: Any, defaults: MatchOptions) -> MatchOptions:
    """
    リクエストの options を MatchOptions に変換

    指定のない項目は defaults の値を使用します。

    Raises:
        MatchRequestValidationError: 値が不正な場合
    """
    if raw is None:
        return defaults
    if not isinstance(raw, dict):
        raise MatchRequestValidationError("options must be a JSON object", "invalid_options")

    overrides: Dict[str, Any] = {}
    for name in ("time_tolerance_minutes", "duration_tolerance_seconds"):
        value = raw.get(name)
        if value is None:
            continue
        if not _is_number(value) or value <= 0:
            raise MatchRequestValidationError(
                f"options.{name} must be a positive number", "invalid_options"
            )
        overrides[name] = float(value)

    for name in ("phone_number_match", "require_disposition_match"):
        value = raw.get(name)
        if value is None:
            continue
        if not isinstance(value, bool):
            raise MatchRequestValidationError(
                f"options.{name} must be a boolean", "invalid_options"
            )
        overrides[name] = value

    return dataclasses.replace(defaults, **overrides)


def parse_recording(data: Dict[str, Any]) -> Recording:
    """
    リクエストから録音の観測メタデータを作成

    Raises:
        MatchRequestValidationError: 時刻・電話番号・通話時間が不正な場合
    """
    call_time = data.get("callTime")
    if not isinstance(call_time, str):
        raise MatchRequestValidationError("Invalid call time format", "invalid_call_time")
    try:
        observed_time = parse_timestamp(call_time)
    except ValueError:
        raise MatchRequestValidationError("Invalid call time format", "invalid_call_time")

    phone_number = data.get("phoneNumber")
    if phone_number is not None and not isinstance(phone_number, str):
        raise MatchRequestValidationError("phoneNumber must be a string", "invalid_phone_number")

    duration = data.get("duration")
    if duration is not None:
        if not _is_number(duration) or duration < 0:
            raise MatchRequestValidationError(
                "duration must be a non-negative number of seconds", "invalid_duration"
            )
        duration = int(round(duration))

    return Recording(
        observed_time=observed_time,
        phone_number=phone_number or None,
        duration_seconds=duration,
    )


def serialize_match(match: ScoredMatch, classifier: QualityClassifier) -> Dict[str, Any]:
    """ScoredMatch を API レスポンス用の辞書に変換"""
    candidate = match.candidate
    quality = classifier.classify(match)
    return {
        "csv_id": candidate.id,
        "call_time": candidate.call_time.isoformat(),
        "call_direction": candidate.direction,
        "source_number": candidate.source_number,
        "source_name": candidate.source_name,
        "destination_number": candidate.destination_number,
        "call_duration_seconds": candidate.duration_seconds,
        "disposition": candidate.disposition,
        "time_to_answer_seconds": candidate.time_to_answer_seconds,
        "match_score": match.score,
        "time_diff_minutes": match.time_diff_minutes,
        "duration_diff_seconds": match.duration_diff_seconds,
        "match_reasons": list(match.match_reasons),
        "confidence": get_match_confidence(match.score),
        "time_diff_label": format_time_diff(match.time_diff_minutes),
        "quality": {
            "tier": quality.tier,
            "is_high_quality": quality.is_high_quality,
            "is_medium_quality": quality.is_medium_quality,
            "is_low_quality": quality.is_low_quality,
            "reasons": quality.reasons,
        },
    }


def serialize_link(link: Link) -> Dict[str, Any]:
    return {
        "call_id": link.call_id,
        "csv_call_id": link.csv_call_id,
        "linked_at": link.linked_at.isoformat(),
    }


class MatchRequestHandler:
    """
    突き合わせリクエストを処理するハンドラー

    候補の検索（ストレージ）、採点とランキング（オーケストレーター）、
    品質判定、関連付けの確定をまとめて扱います。

    Attributes:
        config: アプリケーション設定
        storage: ストレージレイヤー
        orchestrator: 突き合わせオーケストレーター
        classifier: 一致品質の分類器
        link_committer: 関連付けコミッター
        logger: 構造化ロガー
    """

    def __init__(
        self,
        config: Config,
        storage: Storage,
        orchestrator: MatchOrchestrator,
        classifier: QualityClassifier,
        link_committer: LinkCommitter
    ):
        self.config = config
        self.storage = storage
        self.orchestrator = orchestrator
        self.classifier = classifier
        self.link_committer = link_committer
        self.logger = get_logger(__name__)

    def handle_find_matches(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        録音に対する候補を検索し、順位付けして返す

        Args:
            user_id: 呼び出しユーザーID
            data: リクエストボディ
                - callId: 通話ID (必須)
                - callTime: 録音の通話時刻 ISO 8601 (必須)
                - phoneNumber: 電話番号（オプション）
                - duration: 録音時間（秒、オプション）
                - options: 突き合わせオプション（オプション）
                - minScore: 自動判定の最低スコア（オプション）

        Returns:
            レスポンスボディ

        Raises:
            MatchRequestValidationError: リクエストが不正な場合
        """
        is_valid, error_message = validate_json_request(data, ["callId", "callTime"])
        if not is_valid:
            raise MatchRequestValidationError(error_message, "missing_fields")

        recording = parse_recording(data)
        options = parse_match_options(data.get("options"), self.config.default_match_options())

        min_score = data.get("minScore")
        if min_score is None:
            min_score = self.config.min_score
        elif not _is_number(min_score) or not 0 <= min_score <= 1:
            raise MatchRequestValidationError("minScore must be between 0 and 1", "invalid_min_score")

        call_id = data["callId"]
        self.logger.info(
            "match_request_received",
            call_id=call_id,
            observed_time=recording.observed_time.isoformat(),
            has_phone_number=recording.phone_number is not None,
            duration_seconds=recording.duration_seconds,
            time_tolerance_minutes=options.time_tolerance_minutes
        )

        # 候補検索は採点より前に完了している必要がある
        candidates = self.storage.find_candidates(
            user_id,
            recording.observed_time,
            options.time_tolerance_minutes
        )

        ranked = self.orchestrator.find_and_rank(recording, candidates, options)
        best = self.orchestrator.best_match(ranked, min_score)

        self.logger.info(
            "match_request_completed",
            call_id=call_id,
            candidate_count=len(ranked),
            best_match_id=best.candidate.id if best else None
        )

        matches: List[Dict[str, Any]] = [serialize_match(m, self.classifier) for m in ranked]
        return {
            "success": True,
            "matches": matches,
            "count": len(matches),
            "best_match": matches[0] if best is not None else None,
        }

    def handle_link(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        通話とCSV通話明細の関連付けを確定

        Args:
            user_id: 呼び出しユーザーID
            data: リクエストボディ
                - callId: 通話ID (必須)
                - csvCallId: CSV通話明細ID (必須)

        Returns:
            レスポンスボディ

        Raises:
            MatchRequestValidationError: リクエストが不正な場合
            LinkNotFoundError: 通話またはCSV行が見つからない場合
        """
        is_valid, error_message = validate_json_request(data, ["callId", "csvCallId"])
        if not is_valid:
            raise MatchRequestValidationError(error_message, "missing_fields")

        link = self.link_committer.commit(data["callId"], data["csvCallId"], user_id)
        return {"success": True, "link": serialize_link(link)}


def create_app(config: Optional[Config] = None, storage: Optional[Storage] = None) -> Flask:
    """
    Flask アプリケーションを作成

    Args:
        config: アプリケーション設定（None の場合は環境変数から読み込み）
        storage: ストレージ（None の場合は config.database_path の SQLite を使用）

    Returns:
        設定済みの Flask アプリケーション
    """
    # Flask アプリケーションインスタンスを作成
    app = Flask(__name__)

    # 設定を読み込み（テスト時は外部から注入可能）
    if config is None:
        config = Config.from_env()

    # アプリケーション設定を保存
    app.config["CALL_MATCHER_CONFIG"] = config

    # 構造化ロギングを設定
    configure_structlog(config.log_level)

    # ロガーを取得
    logger = get_logger(__name__)
    logger.info(
        "application_initialized",
        log_level=config.log_level,
        database_path=config.database_path
    )

    # ストレージレイヤーを初期化
    if storage is None:
        storage = SQLiteStorage(config.database_path)
    app.config["STORAGE"] = storage

    orchestrator = MatchOrchestrator(
        parallel_threshold=config.parallel_threshold,
        max_workers=config.max_workers
    )
    app.config["ORCHESTRATOR"] = orchestrator

    classifier = QualityClassifier()
    app.config["QUALITY_CLASSIFIER"] = classifier

    link_committer = LinkCommitter(storage)
    app.config["LINK_COMMITTER"] = link_committer

    match_handler = MatchRequestHandler(
        config=config,
        storage=storage,
        orchestrator=orchestrator,
        classifier=classifier,
        link_committer=link_committer
    )
    app.config["MATCH_HANDLER"] = match_handler

    # ==========================================================================
    # エラーハンドラー (Error Handlers)
    # ==========================================================================

    @app.errorhandler(400)
    def handle_bad_request(error):
        """400 Bad Request エラーハンドラー"""
        logger.error(
            "bad_request_error",
            error_type="bad_request",
            error_message=str(error),
            path=request.path,
            method=request.method,
            content_type=request.content_type
        )
        return create_error_response(
            error_type="bad_request",
            message=str(error.description) if hasattr(error, 'description') else "Bad Request",
            status_code=400
        )

    @app.errorhandler(401)
    def handle_unauthorized(error):
        """
        401 Unauthorized エラーハンドラー

        ユーザーIDヘッダーが欠落したリクエストを処理します。
        """
        logger.error(
            "unauthorized_error",
            error_type="unauthorized",
            error_message=str(error),
            path=request.path,
            method=request.method
        )
        return create_error_response(
            error_type="unauthorized",
            message=str(error.description) if hasattr(error, 'description') else "Unauthorized",
            status_code=401
        )

    @app.errorhandler(404)
    def handle_not_found(error):
        """404 Not Found エラーハンドラー"""
        logger.warning(
            "not_found_error",
            error_type="not_found",
            path=request.path,
            method=request.method
        )
        return create_error_response(
            error_type="not_found",
            message=str(error.description) if hasattr(error, 'description') else "Not Found",
            status_code=404
        )

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        """405 Method Not Allowed エラーハンドラー"""
        logger.warning(
            "method_not_allowed_error",
            error_type="method_not_allowed",
            error_message=str(error),
            path=request.path,
            method=request.method
        )
        return create_error_response(
            error_type="method_not_allowed",
            message=str(error.description) if hasattr(error, 'description') else "Method Not Allowed",
            status_code=405
        )

    @app.errorhandler(500)
    def handle_internal_error(error):
        """
        500 Internal Server Error エラーハンドラー

        内部エラーを処理し、スタックトレースをログ出力します。
        """
        # スタックトレースを取得
        stack_trace = traceback.format_exc()

        logger.error(
            "internal_server_error",
            error_type="internal_error",
            error_message=str(error),
            path=request.path,
            method=request.method,
            stack_trace=stack_trace,
            exc_info=True
        )
        return create_error_response(
            error_type="internal_error",
            message="Internal Server Error",
            status_code=500
        )

    @app.errorhandler(MatchRequestValidationError)
    def handle_match_request_validation_error(error):
        """
        MatchRequestValidationError エラーハンドラー

        不正な入力はコアに渡す前にここで 400 として拒否されます。
        """
        logger.error(
            "match_request_validation_error",
            error_type=error.error_type,
            error_message=error.message,
            path=request.path,
            method=request.method,
            content_type=request.content_type
        )
        return create_error_response(
            error_type=error.error_type,
            message=error.message,
            status_code=400
        )

    @app.errorhandler(LinkNotFoundError)
    def handle_link_not_found(error):
        """LinkNotFoundError エラーハンドラー"""
        logger.warning(
            "link_not_found_error",
            error_type="link_not_found",
            call_id=error.call_id,
            csv_call_id=error.csv_call_id,
            path=request.path,
            method=request.method
        )
        return create_error_response(
            error_type="not_found",
            message="Call not found or access denied",
            status_code=404
        )

    @app.errorhandler(Exception)
    def handle_generic_exception(error):
        """
        汎用例外ハンドラー

        予期しない例外を処理し、スタックトレースをログ出力します。
        """
        # スタックトレースを取得
        stack_trace = traceback.format_exc()

        logger.error(
            "unhandled_exception",
            error_type=type(error).__name__,
            error_message=str(error),
            path=request.path,
            method=request.method,
            stack_trace=stack_trace,
            exc_info=True
        )
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=500
        )

    # ==========================================================================
    # エンドポイント (Endpoints)
    # ==========================================================================

    def current_user_id() -> str:
        """ゲートウェイが設定したユーザーIDヘッダーを取得"""
        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        if not user_id:
            abort(401, description="Unauthorized")
        return user_id

    def read_json_body() -> Dict[str, Any]:
        """JSON ボディを取得し検証"""
        data = request.get_json(force=True, silent=True)
        is_valid, error_message = validate_json_request(data)
        if not is_valid:
            raise MatchRequestValidationError(error_message, "invalid_json")
        return data

    # ヘルスチェックエンドポイント
    @app.route("/health", methods=["GET"])
    def health_check():
        """
        ヘルスチェックエンドポイント

        Returns:
            JSON レスポンス: {"status": "healthy"}
        """
        logger.debug("health_check_requested")
        return jsonify({"status": "healthy"}), 200

    @app.route("/api/match-calls", methods=["POST"])
    def find_matches():
        """
        候補検索エンドポイント

        録音の観測メタデータから、順位付け・理由付け・品質判定済みの
        候補リストを返します。

        Returns:
            JSON レスポンス: {"success", "matches", "count", "best_match"}
        """
        user_id = current_user_id()
        try:
            data = read_json_body()
            result = match_handler.handle_find_matches(user_id, data)
            return jsonify(result), 200

        except MatchRequestValidationError:
            # MatchRequestValidationError は専用ハンドラーで処理
            raise
        except Exception as e:
            logger.error(
                "match_calls_error",
                error_type=type(e).__name__,
                error_message=str(e),
                stack_trace=traceback.format_exc(),
                exc_info=True
            )
            raise

    @app.route("/api/match-calls", methods=["PUT"])
    def link_call():
        """
        関連付けエンドポイント

        ユーザーが確定した候補を通話に関連付けます。

        Returns:
            JSON レスポンス: {"success", "link"}
        """
        user_id = current_user_id()
        try:
            data = read_json_body()
            result = match_handler.handle_link(user_id, data)
            return jsonify(result), 200

        except (MatchRequestValidationError, LinkNotFoundError):
            # 専用ハンドラーで処理
            raise
        except Exception as e:
            logger.error(
                "link_call_error",
                error_type=type(e).__name__,
                error_message=str(e),
                stack_trace=traceback.format_exc(),
                exc_info=True
            )
            raise

    logger.info("application_ready", endpoints=["/health", "/api/match-calls"])

    return app
