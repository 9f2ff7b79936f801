"""
データモデルモジュール (Data Models Module)

正規化済みイベントと通話相関レコードのデータモデルを定義します。
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional


class EventKind(Enum):
    """Webhook イベントの種別"""
    URL_VALIDATION = "url_validation"
    CALL_RINGING = "call_ringing"
    CALL_ENDED = "call_ended"
    RECORDING_READY = "recording_ready"
    SMS_MESSAGE = "sms_message"


class Party(Enum):
    """通話の当事者 (案件検索に使用する側)"""
    CALLER = "caller"
    CALLEE = "callee"


@dataclass
class NormalizedEvent:
    """
    正規化済みイベント

    Zoom Phone から受信した Webhook を分類し、各ステージで必要な
    フィールドだけを取り出したものです。タイムスタンプは未解析のまま保持します。

    Attributes:
        kind: イベント種別
        correlation_key: 相関キー (通話イベントは call_id、SMS は message_id)
        event_name: プロバイダーのイベント名
        caller_number: 発信者電話番号 (下10桁)
        callee_number: 着信者電話番号 (下10桁)
        ringing_start_time: 呼び出し開始時刻
        answer_start_time: 応答開始時刻 (未応答の場合は None)
        call_end_time: 通話終了時刻
        recording_download_url: 録音ファイルのダウンロード URL
        recording_duration: 録音時間（秒）
        message: SMS 本文
        message_time: SMS 送受信時刻
        attachments: SMS 添付ファイル ({download_url: name})
        plain_token: URL 検証用トークン
    """
    kind: EventKind
    correlation_key: str = ""
    event_name: str = ""
    caller_number: str = ""
    callee_number: str = ""
    ringing_start_time: Optional[str] = None
    answer_start_time: Optional[str] = None
    call_end_time: Optional[str] = None
    recording_download_url: Optional[str] = None
    recording_duration: Optional[int] = None
    message: Optional[str] = None
    message_time: Optional[str] = None
    attachments: Dict[str, str] = field(default_factory=dict)
    plain_token: Optional[str] = None

    @property
    def call_id(self) -> str:
        return self.correlation_key

    def number_of(self, party: Party) -> str:
        """指定された当事者の電話番号を返す"""
        if party is Party.CALLER:
            return self.caller_number
        return self.callee_number


@dataclass(frozen=True)
class CallRecord:
    """
    通話相関レコード

    1 つの通話に対してケース管理システム側で作成されたレコード ID を保持します。

    Attributes:
        telephony_event_id: 呼び出し時に作成した "ongoing" レコードの ID
        phone_log_id: 通話終了時に作成した "completed" レコードの ID
    """
    telephony_event_id: Optional[str] = None
    phone_log_id: Optional[str] = None


def merge_record(old: Optional[CallRecord], partial: CallRecord) -> CallRecord:
    """
    2 つの CallRecord をマージ

    partial で値が設定されているフィールドだけが old を上書きします。
    どちらのレコードも変更しません。

    Args:
        old: 既存のレコード (存在しない場合は None)
        partial: 新しく設定するフィールド

    Returns:
        マージ後の新しいレコード
    """
    if old is None:
        return partial

    updates = {
        name: value
        for name, value in vars(partial).items()
        if value is not None
    }
    return replace(old, **updates)


@dataclass
class ResolvedEntities:
    """
    電話番号から解決したケース管理システム上のエンティティ

    一致しない項目は None (matter_type は空文字) のままです。
    """
    case_id: Optional[int] = None
    claimant_id: Optional[int] = None
    staff_id: Optional[int] = None
    matter_type: str = ""
