"""
通話相関エンジンモジュール (Call Correlation Engine Module)

正規化済みイベントを受け取り、通話ごとの相関レコードを更新しながら
ケース管理システムへのレコード作成・更新を正しい順序で実行します。

通話ごとの状態遷移:
    NoRecord -> RingingRecorded -> Finalized (ストアから削除)

ケース管理 API の失敗はすべてここでログ出力して握りつぶし、
1 つの通話の失敗が他の通話に影響しないようにします。
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from .downstream import (
    DownstreamClient,
    DownstreamCreateFailure,
    DownstreamUpdateFailure,
    Resource,
    format_timestamp,
)
from .models import CallRecord, EventKind, NormalizedEvent, Party, ResolvedEntities
from .resolver import EntityResolver
from .store import CorrelationStore

STATUS_VENDOR_START = "VendorStart"
STATUS_VENDOR_FINISH = "VendorFinish"


def _parse_timestamp(ts: Optional[str]) -> Optional[datetime]:
    if not ts:
        return None
    try:
        return datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None


def call_duration(answer_start_time: Optional[str], call_end_time: Optional[str]) -> int:
    """
    通話時間（秒）を計算

    応答時刻がない (未応答) 場合、またはどちらかの時刻が解析できない場合は 0 です。
    """
    answered = _parse_timestamp(answer_start_time)
    ended = _parse_timestamp(call_end_time)
    if answered is None or ended is None:
        return 0
    try:
        seconds = (ended - answered).total_seconds()
    except TypeError:
        # naive と aware の混在
        return 0
    return max(0, round(seconds))


def recording_url_for(download_url: Optional[str], self_base_url: str = "") -> str:
    """
    録音ダウンロード URL を自サービスの録音プロキシ URL に変換

    self_base_url が未設定の場合は元の URL をそのまま返します。
    """
    if not download_url:
        return ""
    if not self_base_url:
        return download_url
    recording_id = download_url.rstrip("/").split("/")[-1]
    return f"{self_base_url.rstrip('/')}/recording/{recording_id}"


class CallCorrelationEngine:
    """
    通話相関エンジン

    Attributes:
        store: 相関ストア (エンジンごとに注入)
        client: ケース管理 API クライアント
        resolver: エンティティリゾルバー
        case_party: 案件検索に使う当事者 (もう一方はスタッフ検索に使う)
        self_base_url: 録音プロキシのベース URL
        timezone: ケース管理システムへ送る時刻のタイムゾーン
        record_max_age: 相関レコードの最大保持時間（秒）、0 の場合は掃除しない
        logger: 構造化ロガー
    """

    def __init__(
        self,
        store: CorrelationStore,
        client: DownstreamClient,
        resolver: EntityResolver,
        case_party: Party = Party.CALLEE,
        self_base_url: str = "",
        timezone: Optional[str] = None,
        record_max_age: float = 0
    ):
        self.store = store
        self.client = client
        self.resolver = resolver
        self.case_party = case_party
        self.staff_party = Party.CALLER if case_party is Party.CALLEE else Party.CALLEE
        self.self_base_url = self_base_url
        self.timezone = timezone or None
        self.record_max_age = record_max_age
        self.logger = structlog.get_logger(__name__)

    def handle(self, event: NormalizedEvent) -> None:
        """
        イベントを 1 件処理

        ケース管理 API の失敗は送出せず、ログ出力のみ行います。

        Args:
            event: 正規化済みイベント
        """
        if self.record_max_age > 0:
            evicted = self.store.sweep(self.record_max_age)
            if evicted:
                self.logger.warning("stale_call_records_evicted", count=evicted)

        handlers = {
            EventKind.CALL_RINGING: self.handle_ringing,
            EventKind.CALL_ENDED: self.handle_ended,
            EventKind.RECORDING_READY: self.handle_recording,
            EventKind.SMS_MESSAGE: self.handle_sms,
        }
        handler = handlers.get(event.kind)
        if handler is None:
            self.logger.debug("event_ignored", kind=event.kind.value, event_name=event.event_name)
            return
        handler(event)

    def handle_ringing(self, event: NormalizedEvent) -> None:
        """呼び出し開始: "ongoing" レコードを作成し、その ID を記録"""
        call_id = event.call_id
        self.logger.info(
            "call_ringing_received",
            call_id=call_id,
            caller_number=event.caller_number,
            callee_number=event.callee_number
        )
        entities = self._resolve(event)

        fields = {
            "from_number": event.caller_number,
            "to_number": event.callee_number,
            "start_time": self._format(event.ringing_start_time),
            "ongoing": True,
            "status": STATUS_VENDOR_START,
            "involvee_id": entities.claimant_id,
            "staff_id": entities.staff_id,
            "matter_type": entities.matter_type,
        }
        response = self._create(Resource.TELEPHONY_EVENTS, fields, call_id)
        if response is None:
            return

        record = self.store.merge(call_id, CallRecord(telephony_event_id=str(response["id"])))
        self.logger.info("call_record_merged", call_id=call_id, telephony_event_id=record.telephony_event_id)

    def handle_ended(self, event: NormalizedEvent) -> None:
        """
        通話終了 (終了・不在・拒否)

        "completed" レコードを必ず 1 件作成し、呼び出し時の "ongoing" レコードが
        記録されていればそれを終了状態に更新します。記録がなければ更新は行いません。
        """
        call_id = event.call_id
        duration = call_duration(event.answer_start_time, event.call_end_time)
        self.logger.info(
            "call_ended_received",
            call_id=call_id,
            event_name=event.event_name,
            duration=duration
        )
        entities = self._resolve(event)
        end_time = self._format(event.call_end_time)

        fields = {
            "type": "Call",
            "raw_from_number": event.caller_number,
            "raw_to_number": event.callee_number,
            "start_time": self._format(event.ringing_start_time),
            "end_time": end_time,
            "duration": duration,
            "involvee_id": entities.claimant_id,
            "staff_id": entities.staff_id,
            "matter_id": entities.case_id,
        }
        response = self._create(Resource.PHONE_LOGS, fields, call_id)
        if response is not None:
            record = self.store.merge(call_id, CallRecord(phone_log_id=str(response["id"])))
            self.logger.info("call_record_merged", call_id=call_id, phone_log_id=record.phone_log_id)

        record = self.store.get(call_id)
        if record is None or not record.telephony_event_id:
            self.logger.info("ongoing_update_skipped", call_id=call_id)
            return

        self._update(
            Resource.TELEPHONY_EVENTS,
            record.telephony_event_id,
            {
                "end_time": end_time,
                "ongoing": False,
                "status": STATUS_VENDOR_FINISH,
            },
            call_id
        )

    def handle_recording(self, event: NormalizedEvent) -> None:
        """
        録音完了

        記録されているレコードそれぞれに録音 URL を添付し、最後に相関レコードを
        無条件で削除します。これが相関レコードを解放する唯一の経路です。
        """
        call_id = event.call_id
        recording_url = recording_url_for(event.recording_download_url, self.self_base_url)
        record = self.store.get(call_id) or CallRecord()
        self.logger.info(
            "recording_ready_received",
            call_id=call_id,
            recording_url=recording_url,
            duration=event.recording_duration,
            telephony_event_id=record.telephony_event_id,
            phone_log_id=record.phone_log_id
        )

        try:
            if record.telephony_event_id:
                self._update(
                    Resource.TELEPHONY_EVENTS,
                    record.telephony_event_id,
                    {"recording_url": recording_url},
                    call_id
                )

            if record.phone_log_id:
                fields: Dict[str, Any] = {"type": "Call", "recording_url": recording_url}
                if event.recording_duration is not None:
                    fields["duration"] = event.recording_duration
                self._update(Resource.PHONE_LOGS, record.phone_log_id, fields, call_id)
        finally:
            self.store.remove(call_id)
            self.logger.info("call_record_removed", call_id=call_id)

    def handle_sms(self, event: NormalizedEvent) -> None:
        """SMS 送受信: 相関なしでメッセージレコードを 1 件作成"""
        self.logger.info(
            "sms_received",
            message_id=event.correlation_key,
            event_name=event.event_name,
            attachments=len(event.attachments)
        )
        entities = self._resolve(event)

        fields = {
            "type": "SMS",
            "raw_from_number": event.caller_number,
            "raw_to_number": event.callee_number,
            "text_message": event.message,
            "involvee_id": entities.claimant_id,
            "staff_id": entities.staff_id,
            "matter_id": entities.case_id,
            "created_at": self._format(event.message_time),
            "media_params": dict(event.attachments),
        }
        self._create(Resource.PHONE_LOGS, fields, event.correlation_key)

    def _resolve(self, event: NormalizedEvent) -> ResolvedEntities:
        return self.resolver.resolve_by_phone(
            event.number_of(self.case_party),
            event.number_of(self.staff_party)
        )

    def _format(self, ts: Optional[str]) -> str:
        return format_timestamp(ts, self.timezone)

    def _create(
        self,
        resource: Resource,
        fields: Dict[str, Any],
        key: str
    ) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.create(resource, fields)
        except DownstreamCreateFailure as e:
            self.logger.error(
                "downstream_create_failed",
                resource=resource.path,
                key=key,
                error=e.message,
                status_code=e.status_code,
                details=e.details
            )
            return None

        self.logger.info("downstream_record_created", resource=resource.path, key=key, record_id=response["id"])
        return response

    def _update(
        self,
        resource: Resource,
        record_id: str,
        fields: Dict[str, Any],
        key: str
    ) -> None:
        try:
            self.client.update(resource, record_id, fields)
        except DownstreamUpdateFailure as e:
            self.logger.error(
                "downstream_update_failed",
                resource=resource.path,
                key=key,
                record_id=record_id,
                error=e.message,
                status_code=e.status_code,
                details=e.details
            )
            return

        self.logger.info("downstream_record_updated", resource=resource.path, key=key, record_id=record_id)
