"""
Flask アプリケーションモジュール (Flask Application Module)

Zoom Phone Webhook を受信し、ケース管理システムへ中継する Flask アプリケーションを提供します。
Webhook エンドポイントと構造化ロギングを設定します。
"""

import logging
import sys
import traceback
from typing import Any, Dict, Optional, Tuple

import structlog
from flask import Flask, jsonify, request, Response

from .config import Config
from .downstream import DownstreamClient
from .engine import CallCorrelationEngine
from .models import EventKind, Party
from .normalizer import UnrecognizedEvent, normalize_event
from .resolver import EntityResolver
from .security import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    url_validation_response,
    verify_signature,
)
from .store import InMemoryCorrelationStore


class WebhookValidationError(Exception):
    """
    Webhook 検証エラー

    不正な Webhook リクエストを検出した場合に発生します。

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
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """構造化ロガーを取得"""
    return structlog.get_logger(name)


def validate_json_request(data: Any) -> Tuple[bool, Optional[str]]:
    """
    Webhook の JSON ボディを検証

    Returns:
        (検証結果, エラーメッセージ) のタプル
    """
    if data is None:
        return False, "Invalid JSON: request body is empty or malformed"

    if not isinstance(data, dict):
        return False, "Invalid JSON: request body must be a JSON object"

    if not isinstance(data.get("event"), str):
        return False, "Missing required fields: event"

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


class WebhookHandler:
    """
    Zoom Phone Webhook を処理するハンドラー

    署名検証済みのボディを正規化し、URL 検証チャレンジには応答を返し、
    それ以外のイベントは通話相関エンジンに渡します。

    Attributes:
        engine: 通話相関エンジン
        secret_token: Zoom の Secret Token
        logger: 構造化ロガー
    """

    def __init__(self, engine: CallCorrelationEngine, secret_token: str):
        self.engine = engine
        self.secret_token = secret_token
        self.logger = get_logger(__name__)

    def is_authentic(self, headers: Any, raw_body: str) -> bool:
        """リクエストの署名を検証"""
        return verify_signature(
            self.secret_token,
            headers.get(TIMESTAMP_HEADER),
            raw_body,
            headers.get(SIGNATURE_HEADER)
        )

    def handle(self, body: Dict[str, Any]) -> Optional[Dict[str, str]]:
        """
        Webhook ボディを処理

        処理中のエラーは送出せずログ出力のみ行います。Webhook の送信元には
        署名検証後は常に成功を返す必要があるためです。

        Args:
            body: Webhook のリクエストボディ

        Returns:
            URL 検証チャレンジの応答ボディ、それ以外は None
        """
        try:
            event = normalize_event(body)
        except UnrecognizedEvent as e:
            self.logger.info("event_unrecognized", event_name=e.event_name, reason=e.reason)
            return None

        if event.kind is EventKind.URL_VALIDATION:
            self.logger.info("url_validation_received")
            return url_validation_response(self.secret_token, event.plain_token)

        try:
            self.engine.handle(event)
        except Exception as e:
            self.logger.error(
                "event_processing_error",
                event_name=event.event_name,
                key=event.correlation_key,
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True
            )
        return None


def build_engine(config: Config) -> CallCorrelationEngine:
    """設定からケース管理 API クライアント・リゾルバー・相関ストアを組み立てる"""
    client = DownstreamClient(
        base_url=config.downstream_base_url,
        auth_token=config.downstream_auth_token,
        timeout=config.downstream_timeout
    )
    resolver = EntityResolver(client, staff_cache_ttl=config.staff_cache_ttl_seconds)
    return CallCorrelationEngine(
        store=InMemoryCorrelationStore(),
        client=client,
        resolver=resolver,
        case_party=Party(config.case_lookup_party),
        self_base_url=config.self_base_url,
        timezone=config.timezone or None,
        record_max_age=config.call_record_max_age_seconds
    )


def create_app(
    config: Optional[Config] = None,
    engine: Optional[CallCorrelationEngine] = None
) -> Flask:
    """
    Flask アプリケーションを作成

    Args:
        config: アプリケーション設定（None の場合は環境変数から読み込み）
        engine: 通話相関エンジン（None の場合は設定から組み立て、テスト時に注入可能）

    Returns:
        設定済みの Flask アプリケーション
    """
    app = Flask(__name__)

    if config is None:
        config = Config.from_env()

    app.config["RELAY_CONFIG"] = config

    configure_structlog(config.log_level)

    logger = get_logger(__name__)
    logger.info(
        "application_initialized",
        log_level=config.log_level,
        downstream_base_url=config.downstream_base_url,
        case_lookup_party=config.case_lookup_party
    )

    if engine is None:
        engine = build_engine(config)
    app.config["CORRELATION_ENGINE"] = engine

    webhook_handler = WebhookHandler(engine, config.zoom_secret_token)
    app.config["WEBHOOK_HANDLER"] = webhook_handler

    # ==========================================================================
    # エラーハンドラー (Error Handlers)
    # ==========================================================================

    @app.errorhandler(400)
    def handle_bad_request(error):
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

    @app.errorhandler(404)
    def handle_not_found(error):
        return create_error_response(
            error_type="not_found",
            message="Not Found",
            status_code=404
        )

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        logger.warning(
            "method_not_allowed_error",
            error_type="method_not_allowed",
            path=request.path,
            method=request.method
        )
        return create_error_response(
            error_type="method_not_allowed",
            message=str(error.description) if hasattr(error, 'description') else "Method Not Allowed",
            status_code=405
        )

    @app.errorhandler(WebhookValidationError)
    def handle_webhook_validation_error(error):
        logger.error(
            "webhook_validation_error",
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

    @app.errorhandler(Exception)
    def handle_generic_exception(error):
        """
        予期しない例外のハンドラー

        スタックトレースをログ出力し、500 を返します。
        """
        logger.error(
            "unhandled_exception",
            error_type=type(error).__name__,
            error_message=str(error),
            path=request.path,
            method=request.method,
            stack_trace=traceback.format_exc(),
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

    @app.route("/health", methods=["GET"])
    def health_check():
        """ヘルスチェックエンドポイント"""
        logger.debug("health_check_requested")
        return jsonify({"status": "healthy"}), 200

    @app.route("/ping", methods=["GET"])
    def ping():
        return "API is running", 200

    @app.route("/webhook", methods=["POST"])
    def zoom_webhook():
        """
        Zoom Phone Webhook エンドポイント

        Headers:
            - x-zm-request-timestamp: リクエスト時刻
            - x-zm-signature: "v0=" + HMAC-SHA256 署名

        Request Body (JSON):
            - event: イベント名
            - payload: イベントペイロード

        Returns:
            401: 署名が一致しない場合
            200: URL 検証チャレンジの応答、またはそれ以外のイベントの {"status": "ok"}
        """
        raw_body = request.get_data(as_text=True)

        logger.debug(
            "webhook_received",
            content_type=request.content_type,
            content_length=request.content_length
        )

        if not webhook_handler.is_authentic(request.headers, raw_body):
            logger.warning(
                "webhook_signature_invalid",
                path=request.path,
                timestamp=request.headers.get(TIMESTAMP_HEADER)
            )
            return "Unauthorized!", 401

        data = request.get_json(force=True, silent=True)
        is_valid, error_message = validate_json_request(data)
        if not is_valid:
            raise WebhookValidationError(
                message=error_message,
                error_type="invalid_json"
            )

        logger.info("webhook_event_received", event_name=data["event"])

        challenge = webhook_handler.handle(data)
        if challenge is not None:
            return jsonify(challenge), 200

        return jsonify({"status": "ok"}), 200

    logger.info("application_ready", endpoints=["/health", "/ping", "/webhook"])

    return app
