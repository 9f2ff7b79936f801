"""
Webhook 署名検証モジュール (Webhook Security Module)

Zoom の Webhook 署名 (x-zm-signature) の検証と、エンドポイント URL 検証
チャレンジへの応答を提供します。
"""

import hashlib
import hmac
from typing import Dict, Optional

SIGNATURE_HEADER = "x-zm-signature"
TIMESTAMP_HEADER = "x-zm-request-timestamp"
SIGNATURE_VERSION = "v0"


def sign(secret: str, message: str) -> str:
    """HMAC-SHA256 の 16 進ダイジェストを返す"""
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def expected_signature(secret: str, timestamp: str, raw_body: str) -> str:
    """
    Webhook リクエストの期待される署名を計算

    署名対象は "v0:{timestamp}:{raw_body}" です。
    """
    message = f"{SIGNATURE_VERSION}:{timestamp}:{raw_body}"
    return f"{SIGNATURE_VERSION}={sign(secret, message)}"


def verify_signature(
    secret: str,
    timestamp: Optional[str],
    raw_body: str,
    signature: Optional[str]
) -> bool:
    """
    Webhook 署名を検証

    Args:
        secret: Zoom の Secret Token
        timestamp: x-zm-request-timestamp ヘッダーの値
        raw_body: リクエストボディ (受信したままの文字列)
        signature: x-zm-signature ヘッダーの値

    Returns:
        署名が一致する場合は True
    """
    if not secret or not signature or timestamp is None:
        return False
    expected = expected_signature(secret, timestamp, raw_body)
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


def url_validation_response(secret: str, plain_token: Optional[str]) -> Dict[str, str]:
    """エンドポイント URL 検証チャレンジへの応答ボディを作成"""
    token = plain_token or ""
    return {
        "plainToken": token,
        "encryptedToken": sign(secret, token),
    }
