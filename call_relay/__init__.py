"""
Zoom Phone Call Relay

Zoom Phone の Webhook をケース管理システムへ中継するサービス
"""

__version__ = "0.1.0"

from call_relay.config import Config, ConfigurationError

__all__ = ["Config", "ConfigurationError"]
