"""
相関ストアと merge_record のユニットテスト
"""

import threading

import pytest

from call_relay.models import CallRecord, merge_record
from call_relay.store import InMemoryCorrelationStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestMergeRecord:
    """merge_record() のテスト"""

    def test_merge_into_none_returns_partial(self):
        """
        正常系: 既存レコードがない場合は部分レコードがそのまま結果になる
        """
        partial = CallRecord(telephony_event_id="1")
        assert merge_record(None, partial) == partial

    def test_merge_preserves_fields_not_in_partial(self):
        """
        正常系: partial に含まれないフィールドは保持される
        """
        old = CallRecord(telephony_event_id="1")
        merged = merge_record(old, CallRecord(phone_log_id="2"))
        assert merged == CallRecord(telephony_event_id="1", phone_log_id="2")

    def test_merge_newer_field_overwrites(self):
        """
        正常系: 新しい値が古い値を上書きする
        """
        old = CallRecord(telephony_event_id="1", phone_log_id="2")
        merged = merge_record(old, CallRecord(phone_log_id="3"))
        assert merged.phone_log_id == "3"
        assert merged.telephony_event_id == "1"

    def test_merge_does_not_mutate_inputs(self):
        """
        正常系: 入力のレコードは変更されない
        """
        old = CallRecord(telephony_event_id="1")
        merge_record(old, CallRecord(phone_log_id="2"))
        assert old.phone_log_id is None


class TestInMemoryCorrelationStore:
    """InMemoryCorrelationStore のテスト"""

    @pytest.fixture
    def store(self):
        return InMemoryCorrelationStore()

    def test_get_absent_returns_none(self, store):
        """
        正常系: 存在しない通話は None
        """
        assert store.get("missing") is None

    def test_merge_inserts_new_record(self, store):
        """
        正常系: 新しい通話のレコードが登録される
        """
        record = store.merge("call-1", CallRecord(telephony_event_id="10"))
        assert record.telephony_event_id == "10"
        assert store.get("call-1") == record

    def test_merge_after_merge_keeps_both_fields(self, store):
        """
        正常系: 続けてマージしても両方の ID が残る
        """
        store.merge("call-1", CallRecord(telephony_event_id="10"))
        merged = store.merge("call-1", CallRecord(phone_log_id="20"))
        assert merged == CallRecord(telephony_event_id="10", phone_log_id="20")

    def test_records_are_isolated_per_call(self, store):
        """
        正常系: 通話ごとにレコードは独立している
        """
        store.merge("call-1", CallRecord(telephony_event_id="10"))
        store.merge("call-2", CallRecord(phone_log_id="20"))
        assert store.get("call-1") == CallRecord(telephony_event_id="10")
        assert store.get("call-2") == CallRecord(phone_log_id="20")

    def test_remove_deletes_record(self, store):
        """
        正常系: 削除したレコードは取得できない
        """
        store.merge("call-1", CallRecord(telephony_event_id="10"))
        store.remove("call-1")
        assert store.get("call-1") is None
        assert "call-1" not in store

    def test_remove_is_idempotent(self, store):
        """
        正常系: 2 回の削除や存在しないキーの削除は何もしない
        """
        store.merge("call-1", CallRecord(telephony_event_id="10"))
        store.remove("call-1")
        store.remove("call-1")
        store.remove("never-seen")
        assert len(store) == 0

    def test_concurrent_merges_keep_all_fields(self, store):
        """
        正常系: 同じキーへの並行マージで両方のフィールドが残る
        """
        for i in range(200):
            call_id = f"call-{i}"
            barrier = threading.Barrier(2)

            def merge(partial):
                barrier.wait()
                store.merge(call_id, partial)

            threads = [
                threading.Thread(target=merge, args=(CallRecord(telephony_event_id="a"),)),
                threading.Thread(target=merge, args=(CallRecord(phone_log_id="b"),)),
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert store.get(call_id) == CallRecord(telephony_event_id="a", phone_log_id="b")


class TestSweep:
    """古いレコードの掃除のテスト"""

    def test_sweep_evicts_only_stale_records(self):
        """
        正常系: 最大保持時間を過ぎたレコードだけが削除される
        """
        clock = FakeClock()
        store = InMemoryCorrelationStore(clock=clock)
        store.merge("old", CallRecord(telephony_event_id="1"))
        clock.now += 3600
        store.merge("new", CallRecord(telephony_event_id="2"))

        evicted = store.sweep(1800)

        assert evicted == 1
        assert store.get("old") is None
        assert store.get("new") is not None

    def test_merge_refreshes_age(self):
        """
        正常系: マージすると保持時間の起点が更新される
        """
        clock = FakeClock()
        store = InMemoryCorrelationStore(clock=clock)
        store.merge("call-1", CallRecord(telephony_event_id="1"))
        clock.now += 3000
        store.merge("call-1", CallRecord(phone_log_id="2"))
        clock.now += 1000

        assert store.sweep(1800) == 0
        assert store.get("call-1") == CallRecord(telephony_event_id="1", phone_log_id="2")
