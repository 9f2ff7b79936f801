"""
エンティティ解決モジュール (Entity Resolver Module)

電話番号からケース管理システム上の案件・依頼者・担当スタッフを検索します。
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional

import structlog

from .downstream import DownstreamClient, DownstreamError
from .models import ResolvedEntities


class EntityResolver:
    """
    電話番号からエンティティを解決するクラス

    案件は依頼者の電話番号で検索し、最も新しく更新された案件を採用します。
    スタッフはアクティブスタッフ一覧 (一定時間キャッシュ) から電話番号で探します。
    どの検索が失敗しても例外は送出せず、一致しなかった項目を空のまま返します。
    """

    MATTERS_PATH = "matters"
    MATTER_TYPES_PATH = "matter_types"
    ACTIVE_STAFF_PATH = "entities/person/search"

    def __init__(
        self,
        client: DownstreamClient,
        staff_cache_ttl: float = 300,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        EntityResolver を初期化

        Args:
            client: ケース管理 API クライアント
            staff_cache_ttl: アクティブスタッフ一覧のキャッシュ有効期間（秒）
            clock: 単調増加する時計 (テスト用に差し替え可能)
        """
        self.client = client
        self.staff_cache_ttl = staff_cache_ttl
        self._clock = clock
        self._active_staff: List[Dict[str, Any]] = []
        self._staff_refreshed_at: Optional[float] = None
        self._staff_lock = threading.Lock()
        self.logger = structlog.get_logger(__name__)

    def resolve_by_phone(self, case_number: str, staff_number: str = "") -> ResolvedEntities:
        """
        電話番号からエンティティを解決

        Args:
            case_number: 案件の検索に使う依頼者側の電話番号
            staff_number: スタッフの検索に使う事務所側の電話番号

        Returns:
            解決結果 (一致しない項目は空)
        """
        result = ResolvedEntities()

        if case_number:
            matter = self._find_matter(case_number)
            if matter:
                result.case_id = matter.get("id")
                result.claimant_id = matter.get("claimant_id")
                result.matter_type = self._find_matter_type(result.case_id)

        if staff_number:
            result.staff_id = self._find_staff_id(staff_number)

        if result.case_id is None:
            self.logger.info("resolver_miss", phone_number=case_number, entity="matter")

        self.logger.debug(
            "entities_resolved",
            case_number=case_number,
            staff_number=staff_number,
            case_id=result.case_id,
            claimant_id=result.claimant_id,
            staff_id=result.staff_id,
            matter_type=result.matter_type
        )
        return result

    def _find_matter(self, phone_number: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.get(
                self.MATTERS_PATH,
                params={"filters": {"claimant_phone": phone_number}}
            )
        except DownstreamError as e:
            self.logger.warning("matter_lookup_failed", phone_number=phone_number, error=e.message)
            return None

        matters = [m for m in response.get("matters") or [] if isinstance(m, dict)]
        if not matters:
            return None
        # ISO-8601 の updated_at は文字列比較で新しい順に並ぶ
        return max(matters, key=lambda m: m.get("updated_at") or "")

    def _find_matter_type(self, matter_id: Optional[int]) -> str:
        if not matter_id:
            return ""
        try:
            matter = self.client.get(f"{self.MATTERS_PATH}/{matter_id}").get("matter")
            case_type_id = matter.get("case_type_id") if isinstance(matter, dict) else None
            if not case_type_id:
                return ""
            response = self.client.get(
                self.MATTER_TYPES_PATH,
                params={"filters": {"id": [case_type_id]}}
            )
        except DownstreamError as e:
            self.logger.warning("matter_type_lookup_failed", matter_id=matter_id, error=e.message)
            return ""

        for matter_type in response.get("matter_types") or []:
            if isinstance(matter_type, dict) and matter_type.get("id") == case_type_id:
                return matter_type.get("name") or ""
        return ""

    def _find_staff_id(self, phone_number: str) -> Optional[int]:
        for person in self._get_active_staff():
            if not isinstance(person, dict):
                continue
            for phone in person.get("phone_numbers_data") or []:
                if isinstance(phone, dict) and phone.get("number") == phone_number:
                    return person.get("id")
        return None

    def _get_active_staff(self) -> List[Dict[str, Any]]:
        # HTTP 取得はロックの外で行う
        with self._staff_lock:
            now = self._clock()
            stale = (
                self._staff_refreshed_at is None
                or now - self._staff_refreshed_at >= self.staff_cache_ttl
            )
            if not stale:
                return self._active_staff

        people = self._fetch_active_staff()

        with self._staff_lock:
            if people is not None:
                self._active_staff = people
                self._staff_refreshed_at = now
            return self._active_staff

    def _fetch_active_staff(self) -> Optional[List[Dict[str, Any]]]:
        try:
            response = self.client.get(
                self.ACTIVE_STAFF_PATH,
                params={"filters": {"active_staff": True}, "per_page": 1000}
            )
        except DownstreamError as e:
            # 前回の一覧を使い続ける
            self.logger.warning("active_staff_refresh_failed", error=e.message)
            return None

        people = response.get("people")
        if not isinstance(people, list):
            return None
        self.logger.info("active_staff_refreshed", count=len(people))
        return people
