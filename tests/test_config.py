"""
Config クラスのユニットテスト
"""

import os
import pytest
from unittest import mock

from call_relay.config import Config, ConfigurationError


class TestConfigFromEnv:
    """Config.from_env() メソッドのテスト"""

    @pytest.fixture
    def valid_env_vars(self):
        """有効な環境変数のセット"""
        return {
            "ZOOM_SECRET_TOKEN": "zoom_secret",
            "DOWNSTREAM_BASE_URL": "https://firm.example.com/api/v2",
            "DOWNSTREAM_AUTH_TOKEN": "api_token",
        }

    def test_from_env_with_valid_required_vars(self, valid_env_vars):
        """
        正常系: 必須環境変数が設定されている場合、Configが正しく作成される
        """
        with mock.patch.dict(os.environ, valid_env_vars, clear=True):
            config = Config.from_env()

            assert config.zoom_secret_token == "zoom_secret"
            assert config.downstream_base_url == "https://firm.example.com/api/v2"
            assert config.downstream_auth_token == "api_token"

    def test_from_env_uses_defaults(self, valid_env_vars):
        """
        正常系: オプション設定が未設定の場合、デフォルト値が使用される
        """
        with mock.patch.dict(os.environ, valid_env_vars, clear=True):
            config = Config.from_env()

            assert config.case_lookup_party == "callee"
            assert config.self_base_url == ""
            assert config.timezone == ""
            assert config.downstream_timeout == 30
            assert config.staff_cache_ttl_seconds == 300
            assert config.call_record_max_age_hours == 0
            assert config.call_record_max_age_seconds == 0
            assert config.log_level == "INFO"

    def test_from_env_uses_custom_settings(self, valid_env_vars):
        """
        正常系: 任意の環境変数が設定されている場合、その値が使用される
        """
        env_vars = {
            **valid_env_vars,
            "SELF_BASE_URL": "https://relay.example.com",
            "CASE_LOOKUP_PARTY": "Caller",
            "TIMEZONE": "America/Chicago",
            "DOWNSTREAM_TIMEOUT": "12.5",
            "STAFF_CACHE_TTL_SECONDS": "60",
            "CALL_RECORD_MAX_AGE_HOURS": "6",
            "LOG_LEVEL": "DEBUG",
        }
        with mock.patch.dict(os.environ, env_vars, clear=True):
            config = Config.from_env()

            assert config.self_base_url == "https://relay.example.com"
            assert config.case_lookup_party == "caller"
            assert config.timezone == "America/Chicago"
            assert config.downstream_timeout == 12.5
            assert config.staff_cache_ttl_seconds == 60
            assert config.call_record_max_age_seconds == 6 * 3600
            assert config.log_level == "DEBUG"


class TestConfigValidation:
    """Config.validate() メソッドのテスト"""

    @pytest.fixture
    def valid_env_vars(self):
        return {
            "ZOOM_SECRET_TOKEN": "zoom_secret",
            "DOWNSTREAM_BASE_URL": "https://firm.example.com/api/v2",
            "DOWNSTREAM_AUTH_TOKEN": "api_token",
        }

    def test_validate_missing_multiple_required_fields(self):
        """
        エラー系: 複数の必須フィールドが欠落している場合、すべてがエラーメッセージに含まれる
        """
        with mock.patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

            error_message = str(exc_info.value)
            assert "ZOOM_SECRET_TOKEN" in error_message
            assert "DOWNSTREAM_BASE_URL" in error_message
            assert "DOWNSTREAM_AUTH_TOKEN" in error_message

    @pytest.mark.parametrize("name", ["ZOOM_SECRET_TOKEN", "DOWNSTREAM_BASE_URL", "DOWNSTREAM_AUTH_TOKEN"])
    def test_validate_missing_single_field(self, valid_env_vars, name):
        """
        異常系: 必須項目が1つ欠けている場合、その変数名がエラーに含まれる
        """
        del valid_env_vars[name]
        with mock.patch.dict(os.environ, valid_env_vars, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

            assert name in str(exc_info.value)

    @pytest.mark.parametrize("key,value", [
        ("CASE_LOOKUP_PARTY", "both"),
        ("DOWNSTREAM_TIMEOUT", "0"),
        ("DOWNSTREAM_TIMEOUT", "fast"),
        ("STAFF_CACHE_TTL_SECONDS", "-1"),
        ("CALL_RECORD_MAX_AGE_HOURS", "-2"),
        ("TIMEZONE", "Mars/Olympus_Mons"),
        ("LOG_LEVEL", "VERBOSE"),
    ])
    def test_validate_invalid_values(self, valid_env_vars, key, value):
        """
        エラー系: 不正な値の場合、エラーが発生する
        """
        with mock.patch.dict(os.environ, {**valid_env_vars, key: value}, clear=True):
            with pytest.raises(ConfigurationError):
                Config.from_env()
