"""
Tests for the execution history ledger
"""
from datetime import timedelta

import pytest

from sqlbroker.models.history import ExecutionStatus, utcnow
from sqlbroker.services.history_ledger import HistoryFilter, ABANDONED_MESSAGE


class TestLifecycle:
    """Test record creation and terminal transitions"""

    def test_create_running(self, ledger):
        execution_id = ledger.create_running("alice", "conn-1", "SELECT 1")
        record = ledger.get(execution_id)

        assert record.status == ExecutionStatus.RUNNING.value
        assert not record.is_terminal
        assert record.user_id == "alice"
        assert record.connection_id == "conn-1"
        assert record.sql_text == "SELECT 1"
        assert record.finished_at is None

    def test_finalize_success(self, ledger):
        execution_id = ledger.create_running("alice", "conn-1", "SELECT 1")

        assert ledger.finalize(
            execution_id,
            ExecutionStatus.SUCCESS,
            row_count=8,
            rows_affected=0,
            execution_time_ms=42
        ) is True

        record = ledger.get(execution_id)
        assert record.status == "success"
        assert record.is_terminal
        assert record.row_count == 8
        assert record.execution_time_ms == 42
        assert record.finished_at is not None
        assert record.error_message is None

    def test_terminal_status_never_overwritten(self, ledger):
        execution_id = ledger.create_running("alice", "conn-1", "SELECT 1")
        ledger.finalize(execution_id, ExecutionStatus.SUCCESS, row_count=1)

        assert ledger.finalize(execution_id, ExecutionStatus.CANCELLED, cancelled_at=utcnow()) is False

        record = ledger.get(execution_id)
        assert record.status == "success"
        assert record.cancelled_at is None

    def test_finalize_requires_terminal_status(self, ledger):
        execution_id = ledger.create_running("alice", "conn-1", "SELECT 1")
        with pytest.raises(ValueError):
            ledger.finalize(execution_id, ExecutionStatus.RUNNING)

    def test_finalize_unknown_record(self, ledger):
        assert ledger.finalize("missing", ExecutionStatus.ERROR, error_message="boom") is False

    def test_record_failure(self, ledger):
        execution_id = ledger.record_failure("alice", "conn-1", "SELECT 1", "Failed to connect")

        record = ledger.get(execution_id)
        assert record.status == "error"
        assert record.error_message == "Failed to connect"

    def test_get_missing(self, ledger):
        assert ledger.get("missing") is None


class TestQueries:
    """Test listing and statistics"""

    def test_list_newest_first(self, ledger, backdate):
        now = utcnow()
        ids = [ledger.create_running("alice", "conn-1", f"SELECT {i}") for i in range(3)]
        for age, execution_id in enumerate(reversed(ids)):
            backdate(execution_id, now - timedelta(minutes=age))

        records = ledger.list(HistoryFilter(user_id="alice"))
        assert [r.id for r in records] == list(reversed(ids))

    def test_list_filters(self, ledger):
        ok = ledger.create_running("alice", "conn-1", "SELECT 1")
        ledger.finalize(ok, ExecutionStatus.SUCCESS)
        failed = ledger.record_failure("alice", "conn-2", "SELECT 2", "boom")
        ledger.create_running("bob", "conn-1", "SELECT 3")

        assert {r.id for r in ledger.list(HistoryFilter(user_id="alice"))} == {ok, failed}
        assert [r.id for r in ledger.list(HistoryFilter(user_id="alice", status=ExecutionStatus.ERROR))] == [failed]
        assert [r.id for r in ledger.list(HistoryFilter(user_id="alice", connection_id="conn-1"))] == [ok]
        assert len(ledger.list()) == 3

    def test_list_date_range(self, ledger, backdate):
        now = utcnow()
        old = ledger.create_running("alice", "conn-1", "SELECT 1")
        backdate(old, now - timedelta(days=10))
        recent = ledger.create_running("alice", "conn-1", "SELECT 2")

        records = ledger.list(HistoryFilter(start_date=now - timedelta(days=1)))
        assert [r.id for r in records] == [recent]

        records = ledger.list(HistoryFilter(end_date=now - timedelta(days=1)))
        assert [r.id for r in records] == [old]

    def test_list_pagination(self, ledger, backdate):
        now = utcnow()
        for i in range(5):
            execution_id = ledger.create_running("alice", "conn-1", f"SELECT {i}")
            backdate(execution_id, now - timedelta(minutes=i))

        page = ledger.list(HistoryFilter(limit=2, offset=2))
        assert [r.sql_text for r in page] == ["SELECT 2", "SELECT 3"]

    def test_user_stats(self, ledger, backdate):
        first = ledger.create_running("alice", "conn-1", "SELECT 1")
        ledger.finalize(first, ExecutionStatus.SUCCESS, row_count=8, execution_time_ms=100)
        second = ledger.create_running("alice", "conn-1", "SELECT 2")
        ledger.finalize(second, ExecutionStatus.SUCCESS, row_count=2, execution_time_ms=300)
        ledger.record_failure("alice", "conn-1", "SELECT 3", "boom")
        cancelled = ledger.create_running("alice", "conn-1", "SELECT 4")
        ledger.finalize(cancelled, ExecutionStatus.CANCELLED, cancelled_at=utcnow())

        # Outside the window / other user
        old = ledger.create_running("alice", "conn-1", "SELECT 5")
        ledger.finalize(old, ExecutionStatus.SUCCESS, row_count=1000, execution_time_ms=5)
        backdate(old, utcnow() - timedelta(days=40))
        ledger.record_failure("bob", "conn-1", "SELECT 6", "boom")

        stats = ledger.user_stats("alice", since_days=30)

        assert stats.period_days == 30
        assert stats.total_count == 4
        assert stats.success_count == 2
        assert stats.error_count == 1
        assert stats.cancelled_count == 1
        assert stats.avg_execution_time_ms == 200.0
        assert stats.total_rows_returned == 10

    def test_user_stats_no_history(self, ledger):
        stats = ledger.user_stats("nobody")

        assert stats.total_count == 0
        assert stats.success_count == 0
        assert stats.avg_execution_time_ms is None
        assert stats.total_rows_returned == 0


class TestRetention:
    """Test purge and stale-record sweep"""

    def test_purge_only_old_terminal_records(self, ledger, backdate):
        long_ago = utcnow() - timedelta(days=120)
        old_done = ledger.record_failure("alice", "conn-1", "SELECT 1", "boom")
        backdate(old_done, long_ago)
        old_running = ledger.create_running("alice", "conn-1", "SELECT 2")
        backdate(old_running, long_ago)
        recent = ledger.record_failure("alice", "conn-1", "SELECT 3", "boom")

        assert ledger.purge_older_than(90) == 1

        assert ledger.get(old_done) is None
        assert ledger.get(old_running) is not None
        assert ledger.get(recent) is not None

    def test_stale_running_sweep(self, ledger, backdate):
        stale = ledger.create_running("alice", "conn-1", "SELECT 1")
        backdate(stale, utcnow() - timedelta(hours=1))
        fresh = ledger.create_running("alice", "conn-1", "SELECT 2")

        assert [r.id for r in ledger.list_stale_running(600)] == [stale]
        assert ledger.mark_stale_running(600) == 1

        record = ledger.get(stale)
        assert record.status == "error"
        assert record.error_message == ABANDONED_MESSAGE
        assert ledger.get(fresh).status == "running"
        assert ledger.mark_stale_running(600) == 0
