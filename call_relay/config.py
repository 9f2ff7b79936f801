"""
設定管理モジュール (Configuration Management Module)

環境変数からアプリケーション設定を読み込み、検証を行います。
"""

from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import os


class ConfigurationError(Exception):
    """設定エラー例外クラス"""
    pass


@dataclass
class Config:
    """
    アプリケーション設定

    環境変数から設定を読み込み、必須設定のバリデーションを行います。
    """
    # Zoom Webhook 署名検証 (必須)
    zoom_secret_token: str

    # ケース管理 API (必須)
    downstream_base_url: str
    downstream_auth_token: str
    downstream_timeout: float

    # 録音プロキシのベース URL
    self_base_url: str

    # 案件検索に使う当事者 (callee / caller)
    case_lookup_party: str

    # ケース管理システムへ送る時刻のタイムゾーン (空文字はシステムのローカル時刻)
    timezone: str

    # キャッシュ設定
    staff_cache_ttl_seconds: int
    call_record_max_age_hours: float

    # ロギング設定
    log_level: str

    # デフォルト値の定数
    DEFAULT_CASE_LOOKUP_PARTY: str = field(default="callee", init=False, repr=False)
    DEFAULT_DOWNSTREAM_TIMEOUT: float = field(default=30.0, init=False, repr=False)
    DEFAULT_STAFF_CACHE_TTL_SECONDS: int = field(default=300, init=False, repr=False)
    DEFAULT_CALL_RECORD_MAX_AGE_HOURS: float = field(default=0.0, init=False, repr=False)
    DEFAULT_LOG_LEVEL: str = field(default="INFO", init=False, repr=False)

    @classmethod
    def from_env(cls) -> 'Config':
        """
        環境変数から設定を読み込む

        必須の環境変数:
            - ZOOM_SECRET_TOKEN: Zoom Webhook の Secret Token
            - DOWNSTREAM_BASE_URL: ケース管理 API のベース URL
            - DOWNSTREAM_AUTH_TOKEN: ケース管理 API の Bearer トークン

        オプションの環境変数:
            - SELF_BASE_URL: 録音プロキシのベース URL (デフォルト: 空)
            - CASE_LOOKUP_PARTY: 案件検索に使う当事者 (デフォルト: callee)
            - TIMEZONE: 時刻のタイムゾーン (デフォルト: システムのローカル時刻)
            - DOWNSTREAM_TIMEOUT: API タイムアウト（秒） (デフォルト: 30)
            - STAFF_CACHE_TTL_SECONDS: スタッフ一覧のキャッシュ期間 (デフォルト: 300)
            - CALL_RECORD_MAX_AGE_HOURS: 相関レコードの最大保持時間 (デフォルト: 0 = 無期限)
            - LOG_LEVEL: ログレベル (デフォルト: INFO)

        Returns:
            Config: 設定オブジェクト

        Raises:
            ConfigurationError: 必須設定が欠落している、または値が不正な場合
        """
        try:
            downstream_timeout = float(os.environ.get("DOWNSTREAM_TIMEOUT", "30"))
            staff_cache_ttl_seconds = int(os.environ.get("STAFF_CACHE_TTL_SECONDS", "300"))
            call_record_max_age_hours = float(os.environ.get("CALL_RECORD_MAX_AGE_HOURS", "0"))
        except ValueError as e:
            raise ConfigurationError(f"数値設定の形式が不正です: {e}") from e

        config = cls(
            zoom_secret_token=os.environ.get("ZOOM_SECRET_TOKEN", ""),
            downstream_base_url=os.environ.get("DOWNSTREAM_BASE_URL", ""),
            downstream_auth_token=os.environ.get("DOWNSTREAM_AUTH_TOKEN", ""),
            downstream_timeout=downstream_timeout,
            self_base_url=os.environ.get("SELF_BASE_URL", ""),
            case_lookup_party=os.environ.get("CASE_LOOKUP_PARTY", "callee").lower(),
            timezone=os.environ.get("TIMEZONE", ""),
            staff_cache_ttl_seconds=staff_cache_ttl_seconds,
            call_record_max_age_hours=call_record_max_age_hours,
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )

        # バリデーション実行
        config.validate()

        return config

    def validate(self) -> None:
        """
        設定の妥当性を検証

        Raises:
            ConfigurationError: 必須設定が欠落または無効な場合
        """
        missing_fields = []

        if not self.zoom_secret_token:
            missing_fields.append("ZOOM_SECRET_TOKEN")
        if not self.downstream_base_url:
            missing_fields.append("DOWNSTREAM_BASE_URL")
        if not self.downstream_auth_token:
            missing_fields.append("DOWNSTREAM_AUTH_TOKEN")

        if missing_fields:
            error_message = (
                f"必須の設定が欠落しています。以下の環境変数を設定してください: "
                f"{', '.join(missing_fields)}"
            )
            raise ConfigurationError(error_message)

        valid_parties = ["callee", "caller"]
        if self.case_lookup_party not in valid_parties:
            raise ConfigurationError(
                f"CASE_LOOKUP_PARTY は {valid_parties} のいずれかである必要があります: {self.case_lookup_party}"
            )

        if self.downstream_timeout <= 0:
            raise ConfigurationError(
                f"DOWNSTREAM_TIMEOUT は正の数である必要があります: {self.downstream_timeout}"
            )

        if self.staff_cache_ttl_seconds < 0:
            raise ConfigurationError(
                f"STAFF_CACHE_TTL_SECONDS は0以上の整数である必要があります: {self.staff_cache_ttl_seconds}"
            )

        if self.call_record_max_age_hours < 0:
            raise ConfigurationError(
                f"CALL_RECORD_MAX_AGE_HOURS は0以上である必要があります: {self.call_record_max_age_hours}"
            )

        if self.timezone:
            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ConfigurationError(f"TIMEZONE が不正です: {self.timezone}") from e

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ConfigurationError(
                f"LOG_LEVEL は {valid_log_levels} のいずれかである必要があります: {self.log_level}"
            )

    @property
    def call_record_max_age_seconds(self) -> float:
        return self.call_record_max_age_hours * 3600
