"""
テスト用のフェイク実装と Webhook ボディのビルダー
"""

import itertools
from typing import Any, Dict, List, Optional, Tuple

from call_relay.downstream import (
    DownstreamCreateFailure,
    DownstreamUpdateFailure,
    Resource,
)
from call_relay.models import ResolvedEntities


class FakeDownstreamClient:
    """
    呼び出しを記録するケース管理 API クライアントのフェイク

    fail_creates / fail_updates に含まれるリソースへの呼び出しは失敗します。
    """

    def __init__(self):
        self.creates: List[Tuple[Resource, Dict[str, Any]]] = []
        self.updates: List[Tuple[Resource, str, Dict[str, Any]]] = []
        self.fail_creates = set()
        self.fail_updates = set()
        self._ids = itertools.count(100)

    def create(self, resource: Resource, fields: Dict[str, Any]) -> Dict[str, Any]:
        self.creates.append((resource, fields))
        if resource in self.fail_creates:
            raise DownstreamCreateFailure(f"{resource.path} create failed", status_code=500)
        return {"id": next(self._ids)}

    def update(self, resource: Resource, record_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        self.updates.append((resource, record_id, fields))
        if resource in self.fail_updates:
            raise DownstreamUpdateFailure(f"{resource.path} update failed", status_code=500)
        return {"id": record_id}

    def creates_of(self, resource: Resource) -> List[Dict[str, Any]]:
        return [fields for r, fields in self.creates if r is resource]

    def updates_of(self, resource: Resource) -> List[Tuple[str, Dict[str, Any]]]:
        return [(record_id, fields) for r, record_id, fields in self.updates if r is resource]


class FakeResolver:
    """電話番号ごとに固定の結果を返すリゾルバーのフェイク"""

    def __init__(self, matters: Optional[Dict[str, ResolvedEntities]] = None,
                 staff: Optional[Dict[str, int]] = None):
        self.matters = matters or {}
        self.staff = staff or {}
        self.calls: List[Tuple[str, str]] = []

    def resolve_by_phone(self, case_number: str, staff_number: str = "") -> ResolvedEntities:
        self.calls.append((case_number, staff_number))
        base = self.matters.get(case_number, ResolvedEntities())
        return ResolvedEntities(
            case_id=base.case_id,
            claimant_id=base.claimant_id,
            staff_id=self.staff.get(staff_number),
            matter_type=base.matter_type,
        )


def call_body(event: str, call_id: str = "call-1", **fields) -> Dict[str, Any]:
    """通話イベントの Webhook ボディを作成"""
    obj = {
        "call_id": call_id,
        "caller": {"phone_number": "+1 (212) 555-0199"},
        "callee": {"phone_number": "+14155550100"},
        "ringing_start_time": "2024-05-01T18:00:00Z",
    }
    obj.update(fields)
    return {"event": event, "payload": {"object": obj}}


def recording_body(call_id: str = "call-1", download_url: str = "https://zoom.us/v2/phone/recording/download/rec-42",
                   duration: Optional[int] = 37) -> Dict[str, Any]:
    """録音完了イベントの Webhook ボディを作成"""
    recording = {"call_id": call_id, "download_url": download_url, "duration": duration}
    return {"event": "phone.recording_completed", "payload": {"object": {"recordings": [recording]}}}
