"""
イベント正規化モジュール (Event Normalizer Module)

Zoom Phone の Webhook ボディを分類し、NormalizedEvent に変換します。
"""

import re
from typing import Any, Dict, Optional

from .models import EventKind, NormalizedEvent


class UnrecognizedEvent(Exception):
    """
    処理対象外のイベント

    呼び出し側ではエラーではなく no-op として扱います。

    Attributes:
        event_name: 受信したイベント名
    """

    def __init__(self, event_name: Optional[str], reason: str = "unknown event"):
        super().__init__(f"{reason}: {event_name!r}")
        self.event_name = event_name
        self.reason = reason


# プロバイダーのイベント名 -> イベント種別
EVENT_KINDS: Dict[str, EventKind] = {
    "endpoint.url_validation": EventKind.URL_VALIDATION,
    "phone.caller_ringing": EventKind.CALL_RINGING,
    "phone.caller_ended": EventKind.CALL_ENDED,
    "phone.callee_ended": EventKind.CALL_ENDED,
    "phone.callee_missed": EventKind.CALL_ENDED,
    "phone.callee_rejected": EventKind.CALL_ENDED,
    "phone.recording_completed": EventKind.RECORDING_READY,
    "phone.sms_sent": EventKind.SMS_MESSAGE,
    "phone.sms_received": EventKind.SMS_MESSAGE,
}

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(number: Optional[str]) -> str:
    """
    電話番号を下10桁のローカル形式に正規化

    "+1 (415) 555-0100" と "4155550100" はどちらも "4155550100" になります。

    Args:
        number: 元の電話番号

    Returns:
        数字のみの下10桁、番号がない場合は空文字
    """
    if not number:
        return ""
    return _NON_DIGITS.sub("", str(number))[-10:]


def _phone_of(party: Any) -> str:
    if not isinstance(party, dict):
        return ""
    return normalize_phone(party.get("phone_number"))


def _first(items: Any) -> Dict[str, Any]:
    """リストの先頭要素 (dict でない場合は空の dict)"""
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_event(body: Dict[str, Any]) -> NormalizedEvent:
    """
    Webhook ボディを NormalizedEvent に変換

    Args:
        body: Webhook のリクエストボディ ({"event": ..., "payload": {...}})

    Returns:
        正規化済みイベント

    Raises:
        UnrecognizedEvent: 未知のイベント、または相関キーを持たない通話イベントの場合
    """
    event_name = body.get("event") if isinstance(body, dict) else None
    kind = EVENT_KINDS.get(event_name) if isinstance(event_name, str) else None
    if kind is None:
        raise UnrecognizedEvent(event_name)

    payload = body.get("payload") or {}
    if not isinstance(payload, dict):
        payload = {}

    if kind is EventKind.URL_VALIDATION:
        return NormalizedEvent(
            kind=kind,
            event_name=event_name,
            plain_token=payload.get("plainToken"),
        )

    obj = payload.get("object")
    if not isinstance(obj, dict):
        obj = {}

    if kind is EventKind.RECORDING_READY:
        recording = _first(obj.get("recordings"))
        call_id = recording.get("call_id") or ""
        if not call_id:
            raise UnrecognizedEvent(event_name, reason="recording without call_id")
        return NormalizedEvent(
            kind=kind,
            correlation_key=call_id,
            event_name=event_name,
            recording_download_url=recording.get("download_url"),
            recording_duration=_as_int(recording.get("duration")),
        )

    if kind is EventKind.SMS_MESSAGE:
        attachments = {
            item["download_url"]: item.get("name")
            for item in obj.get("attachments") or []
            if isinstance(item, dict) and item.get("download_url")
        }
        return NormalizedEvent(
            kind=kind,
            correlation_key=obj.get("message_id") or "",
            event_name=event_name,
            caller_number=_phone_of(obj.get("sender")),
            callee_number=_phone_of(_first(obj.get("to_members"))),
            message=obj.get("message"),
            message_time=obj.get("date_time"),
            attachments=attachments,
        )

    call_id = obj.get("call_id") or ""
    if not call_id:
        raise UnrecognizedEvent(event_name, reason="call event without call_id")

    return NormalizedEvent(
        kind=kind,
        correlation_key=call_id,
        event_name=event_name,
        caller_number=_phone_of(obj.get("caller")),
        callee_number=_phone_of(obj.get("callee")),
        ringing_start_time=obj.get("ringing_start_time"),
        answer_start_time=obj.get("answer_start_time"),
        call_end_time=obj.get("call_end_time"),
    )
