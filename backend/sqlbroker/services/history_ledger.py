"""
History Ledger
Append/update log of execution attempts and per-user statistics
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
import uuid

from sqlalchemy import case, func
from sqlalchemy.orm import sessionmaker
import structlog

from sqlbroker.database import AppSessionLocal, get_app_db_context
from sqlbroker.models.history import (
    QueryExecution,
    ExecutionStatus,
    TERMINAL_STATUSES,
    utcnow,
)

logger = structlog.get_logger()

ABANDONED_MESSAGE = "Execution abandoned: no completion was recorded"


@dataclass
class HistoryFilter:
    """Filters for listing execution history."""
    user_id: Optional[str] = None
    connection_id: Optional[str] = None
    status: Optional[ExecutionStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = 50
    offset: int = 0


@dataclass
class UserStats:
    """Aggregated execution statistics for one user."""
    period_days: int
    total_count: int = 0
    success_count: int = 0
    error_count: int = 0
    cancelled_count: int = 0
    avg_execution_time_ms: Optional[float] = None
    total_rows_returned: int = 0


class HistoryLedger:
    """
    Durable audit trail of execution attempts.

    Every record starts as ``running`` and moves to exactly one terminal
    status. ``finalize`` only updates rows that are still running, so a late
    writer can never overwrite a status another path already settled.
    """

    def __init__(self, session_factory: sessionmaker = AppSessionLocal):
        self._session_factory = session_factory

    def create_running(self, user_id: str, connection_id: str, statement: str) -> str:
        """
        Insert a new running record.

        Returns:
            The new execution id
        """
        execution_id = str(uuid.uuid4())
        with get_app_db_context(self._session_factory) as db:
            db.add(QueryExecution(
                id=execution_id,
                user_id=user_id,
                connection_id=connection_id,
                sql_text=statement,
                status=ExecutionStatus.RUNNING.value,
                created_at=utcnow()
            ))
        return execution_id

    def record_failure(self, user_id: str, connection_id: str, statement: str, error_message: str) -> str:
        """Insert a record that failed before the statement could start."""
        execution_id = self.create_running(user_id, connection_id, statement)
        self.finalize(execution_id, ExecutionStatus.ERROR, error_message=error_message)
        return execution_id

    def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        row_count: Optional[int] = None,
        rows_affected: Optional[int] = None,
        execution_time_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        cancelled_at: Optional[datetime] = None
    ) -> bool:
        """
        Move a running record to a terminal status.

        Args:
            execution_id: Execution record ID
            status: SUCCESS, ERROR or CANCELLED
            row_count: Total rows the statement produced
            rows_affected: Rows changed by a non-query statement
            execution_time_ms: Elapsed time
            error_message: Driver or broker error text
            cancelled_at: When the cancellation was requested

        Returns:
            True if this call performed the transition, False if the record was
            already terminal (or does not exist)

        Raises:
            ValueError: If status is not terminal
        """
        status = ExecutionStatus(status)
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Cannot finalize execution with non-terminal status: {status.value}")

        values = {
            QueryExecution.status: status.value,
            QueryExecution.finished_at: utcnow(),
            QueryExecution.row_count: row_count,
            QueryExecution.rows_affected: rows_affected,
            QueryExecution.execution_time_ms: execution_time_ms,
            QueryExecution.error_message: error_message,
            QueryExecution.cancelled_at: cancelled_at,
        }

        with get_app_db_context(self._session_factory) as db:
            updated = db.query(QueryExecution).filter(
                QueryExecution.id == execution_id,
                QueryExecution.status == ExecutionStatus.RUNNING.value
            ).update(values, synchronize_session=False)

        if not updated:
            logger.warning("history_finalize_skipped", execution_id=execution_id, status=status.value)
        return updated == 1

    def get(self, execution_id: str) -> Optional[QueryExecution]:
        with get_app_db_context(self._session_factory) as db:
            return db.get(QueryExecution, execution_id)

    def list(self, history_filter: Optional[HistoryFilter] = None) -> List[QueryExecution]:
        """
        Query execution history with filters, newest first.

        Args:
            history_filter: Optional filters and pagination

        Returns:
            List of QueryExecution instances
        """
        history_filter = history_filter or HistoryFilter()

        with get_app_db_context(self._session_factory) as db:
            query = db.query(QueryExecution)

            if history_filter.user_id:
                query = query.filter(QueryExecution.user_id == history_filter.user_id)

            if history_filter.connection_id:
                query = query.filter(QueryExecution.connection_id == history_filter.connection_id)

            if history_filter.status:
                query = query.filter(QueryExecution.status == ExecutionStatus(history_filter.status).value)

            if history_filter.start_date:
                query = query.filter(QueryExecution.created_at >= history_filter.start_date)

            if history_filter.end_date:
                query = query.filter(QueryExecution.created_at <= history_filter.end_date)

            query = query.order_by(QueryExecution.created_at.desc())
            query = query.limit(history_filter.limit).offset(history_filter.offset)

            return query.all()

    def user_stats(self, user_id: str, since_days: int = 30) -> UserStats:
        """Aggregate a user's executions over the last ``since_days`` days."""
        since = utcnow() - timedelta(days=since_days)

        def count_status(status: ExecutionStatus):
            return func.sum(case((QueryExecution.status == status.value, 1), else_=0))

        with get_app_db_context(self._session_factory) as db:
            row = db.query(
                func.count(QueryExecution.id),
                count_status(ExecutionStatus.SUCCESS),
                count_status(ExecutionStatus.ERROR),
                count_status(ExecutionStatus.CANCELLED),
                func.avg(QueryExecution.execution_time_ms),
                func.sum(QueryExecution.row_count)
            ).filter(
                QueryExecution.user_id == user_id,
                QueryExecution.created_at >= since
            ).one()

        total, successes, errors, cancellations, avg_time, total_rows = row
        return UserStats(
            period_days=since_days,
            total_count=total or 0,
            success_count=successes or 0,
            error_count=errors or 0,
            cancelled_count=cancellations or 0,
            avg_execution_time_ms=round(float(avg_time), 2) if avg_time is not None else None,
            total_rows_returned=total_rows or 0
        )

    def purge_older_than(self, days: int = 90) -> int:
        """
        Delete terminal records older than the retention window.

        Returns:
            Number of records deleted
        """
        cutoff = utcnow() - timedelta(days=days)
        with get_app_db_context(self._session_factory) as db:
            deleted = db.query(QueryExecution).filter(
                QueryExecution.created_at < cutoff,
                QueryExecution.status.in_([s.value for s in TERMINAL_STATUSES])
            ).delete(synchronize_session=False)

        logger.info("history_purged", days=days, deleted=deleted)
        return deleted

    def list_stale_running(self, older_than_seconds: float) -> List[QueryExecution]:
        """Running records older than the given age, oldest first."""
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        with get_app_db_context(self._session_factory) as db:
            return db.query(QueryExecution).filter(
                QueryExecution.status == ExecutionStatus.RUNNING.value,
                QueryExecution.created_at < cutoff
            ).order_by(QueryExecution.created_at.asc()).all()

    def mark_stale_running(self, older_than_seconds: float) -> int:
        """
        Mark running records older than the given age as errors.

        Only safe with an age bound larger than the longest query timeout:
        anything that old can no longer be in flight.

        Returns:
            Number of records marked
        """
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        with get_app_db_context(self._session_factory) as db:
            marked = db.query(QueryExecution).filter(
                QueryExecution.status == ExecutionStatus.RUNNING.value,
                QueryExecution.created_at < cutoff
            ).update({
                QueryExecution.status: ExecutionStatus.ERROR.value,
                QueryExecution.error_message: ABANDONED_MESSAGE,
                QueryExecution.finished_at: utcnow(),
            }, synchronize_session=False)

        if marked:
            logger.warning("history_stale_running_marked", count=marked)
        return marked
