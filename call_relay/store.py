"""
相関ストアモジュール (Correlation Store Module)

call_id からケース管理システム側のレコード ID への一時的な対応表を提供します。
プロセス再起動をまたいで保持されることはありません。
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from .models import CallRecord, merge_record


class CorrelationStore(ABC):
    """
    相関ストアの抽象基底クラス

    通話ごとの CallRecord を call_id をキーとして保持するインターフェースを定義します。
    実装は並行する merge / get / remove を安全に処理する必要があります。
    """

    @abstractmethod
    def merge(self, call_id: str, partial: CallRecord) -> CallRecord:
        """
        レコードをマージ

        キーが存在しない場合は新規作成し、存在する場合は partial で
        設定されたフィールドだけを上書きします。

        Args:
            call_id: 通話 ID
            partial: 設定するフィールド

        Returns:
            マージ後のレコード
        """
        pass

    @abstractmethod
    def get(self, call_id: str) -> Optional[CallRecord]:
        """
        レコードを取得

        Args:
            call_id: 通話 ID

        Returns:
            現在のレコード、存在しない場合は None
        """
        pass

    @abstractmethod
    def remove(self, call_id: str) -> None:
        """
        レコードを削除

        存在しないキーの削除は何もしません。

        Args:
            call_id: 通話 ID
        """
        pass

    @abstractmethod
    def sweep(self, max_age_seconds: float) -> int:
        """
        最終更新から max_age_seconds 以上経過したレコードを削除

        Returns:
            削除したレコード数
        """
        pass


class InMemoryCorrelationStore(CorrelationStore):
    """
    メモリ上の相関ストア実装

    すべての操作は単一のロックで保護されます。同じ call_id への並行マージは
    到着順に関わらずフィールド単位で後勝ちになります。
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._records: Dict[str, Tuple[CallRecord, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def merge(self, call_id: str, partial: CallRecord) -> CallRecord:
        with self._lock:
            existing = self._records.get(call_id)
            merged = merge_record(existing[0] if existing else None, partial)
            self._records[call_id] = (merged, self._clock())
            return merged

    def get(self, call_id: str) -> Optional[CallRecord]:
        with self._lock:
            entry = self._records.get(call_id)
        return entry[0] if entry else None

    def remove(self, call_id: str) -> None:
        with self._lock:
            self._records.pop(call_id, None)

    def sweep(self, max_age_seconds: float) -> int:
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            stale = [key for key, (_, touched) in self._records.items() if touched <= cutoff]
            for key in stale:
                del self._records[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, call_id: object) -> bool:
        with self._lock:
            return call_id in self._records
