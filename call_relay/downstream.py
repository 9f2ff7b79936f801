"""
ケース管理 API クライアントモジュール (Downstream Client Module)

ケース管理システム (Growpath v2 REST API) に対する認証付きの
作成・更新・参照リクエストを提供します。
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import requests
import structlog


class Resource(Enum):
    """
    ケース管理 API のリソース

    値は (URL パス, リクエストボディのエンベロープキー) です。
    """
    TELEPHONY_EVENTS = ("telephony_events", "telephony_event")
    PHONE_LOGS = ("phone_logs", "telephony_records")

    @property
    def path(self) -> str:
        return self.value[0]

    @property
    def envelope(self) -> str:
        return self.value[1]


class DownstreamError(Exception):
    """
    ケース管理 API エラー

    Attributes:
        message: エラーメッセージ
        status_code: HTTP ステータスコード (通信エラーの場合は None)
        details: レスポンスボディなどの詳細情報
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class DownstreamCreateFailure(DownstreamError):
    """レコード作成に失敗、またはレスポンスに id が含まれない"""
    pass


class DownstreamUpdateFailure(DownstreamError):
    """レコード更新に失敗"""
    pass


def format_timestamp(ts: Optional[str], tz: Optional[str] = None) -> str:
    """
    ISO-8601 のタイムスタンプをケース管理システムの表示形式に変換

    例: "2024-05-01T18:04:05Z" -> "2024-05-01 06:04:05 PM" (tz="UTC")

    Args:
        ts: ISO-8601 形式のタイムスタンプ
        tz: IANA タイムゾーン名 (None または空文字の場合はシステムのローカル時刻)

    Returns:
        "YYYY-MM-DD hh:mm:ss AM/PM" 形式の文字列、変換できない場合は空文字
    """
    if not ts:
        return ""
    try:
        parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return ""

    if tz:
        local = parsed.astimezone(ZoneInfo(tz))
    else:
        local = parsed.astimezone()
    return local.strftime("%Y-%m-%d %I:%M:%S %p")


class DownstreamClient:
    """
    ケース管理 API クライアント

    すべてのリクエストに Bearer トークンを付与し、リクエストごとに
    タイムアウトを適用します。リトライは行いません。
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str,
        timeout: float = 30,
        session: Optional[requests.Session] = None
    ):
        """
        DownstreamClient を初期化

        Args:
            base_url: API のベース URL (例: https://firm.growpath.com/api/v2)
            auth_token: Bearer トークン
            timeout: リクエストタイムアウト（秒）
            session: 使用する requests.Session (テスト時に差し替え可能)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {auth_token}",
            "Content-Type": "application/json",
        })
        self.logger = structlog.get_logger(__name__)

    def create(self, resource: Resource, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        レコードを作成

        Args:
            resource: 作成するリソース
            fields: レコードのフィールド

        Returns:
            パース済みレスポンス (必ず "id" を含む)

        Raises:
            DownstreamCreateFailure: 作成に失敗した場合
        """
        url = f"{self.base_url}/{resource.path}"
        data = self._send("POST", url, DownstreamCreateFailure, body={resource.envelope: fields})
        if not isinstance(data, dict) or data.get("id") is None:
            raise DownstreamCreateFailure(
                f"{resource.path} create returned no id",
                details={"response": data},
            )
        return data

    def update(
        self,
        resource: Resource,
        record_id: str,
        fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        レコードを部分更新

        Args:
            resource: 更新するリソース
            record_id: レコード ID
            fields: 更新するフィールドのみ

        Returns:
            パース済みレスポンス

        Raises:
            DownstreamUpdateFailure: 更新に失敗した場合
        """
        url = f"{self.base_url}/{resource.path}/{record_id}"
        return self._send("PUT", url, DownstreamUpdateFailure, body={resource.envelope: fields})

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        参照リクエスト

        dict や list のパラメータ値は JSON 文字列として送信します
        (例: filters={"claimant_phone": "4155550100"})。

        Raises:
            DownstreamError: 取得に失敗した場合
        """
        encoded = {
            key: json.dumps(value) if isinstance(value, (dict, list)) else value
            for key, value in (params or {}).items()
        }
        url = f"{self.base_url}/{path.lstrip('/')}"
        return self._send("GET", url, DownstreamError, params=encoded)

    def _send(
        self,
        method: str,
        url: str,
        error_class: type,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        self.logger.debug("downstream_request", method=method, url=url, body=body, params=params)
        try:
            response = self.session.request(
                method,
                url,
                json=body,
                params=params,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise error_class(f"{method} {url} failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        self.logger.debug(
            "downstream_response",
            method=method,
            url=url,
            status_code=response.status_code,
            response=data
        )

        if not response.ok:
            raise error_class(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                details={"response": data},
            )
        if not isinstance(data, dict):
            raise error_class(
                f"{method} {url} returned a non-JSON object body",
                status_code=response.status_code,
            )
        return data
