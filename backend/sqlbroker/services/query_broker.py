"""
Query Execution Broker
Authorizes, runs, tracks and records SQL statements against target databases
"""
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional
import asyncio

from sqlalchemy.exc import DBAPIError
import structlog

from sqlbroker.config import settings
from sqlbroker.connections.pool_registry import PoolRegistry, ConnectionTestResult
from sqlbroker.connections.vault import CredentialVault
from sqlbroker.core.exceptions import (
    AuthorizationDenied,
    ConnectionNotFound,
    ConnectionUnavailable,
    ExecutionFailed,
    ExecutionTimedOut,
    ExecutionCancelled,
    CancelTargetNotFound,
    CancelForbidden,
    HistoryAccessDenied,
)
from sqlbroker.core.roles import authorize, get_role_policy
from sqlbroker.models.history import QueryExecution, ExecutionStatus, utcnow
from sqlbroker.services.execution_tracker import ExecutionTracker, CancelOutcome
from sqlbroker.services.history_ledger import HistoryLedger, HistoryFilter, UserStats

logger = structlog.get_logger()

LOG_STATEMENT_CHARS = 200


@dataclass
class ExecutionResult:
    """Rows and metadata returned to the caller of a successful execution."""
    execution_id: str
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    total_rows: int = 0
    returned_rows: int = 0
    truncated: bool = False
    max_rows: int = 0
    rows_affected: int = 0
    execution_time_ms: int = 0


@dataclass
class RunningExecution:
    execution_id: str
    connection_id: str
    elapsed_ms: int = 0


@dataclass
class CancelAcknowledgement:
    execution_id: str
    cancelled_at: datetime


def _preview(statement: str) -> str:
    statement = " ".join(statement.split())
    if len(statement) > LOG_STATEMENT_CHARS:
        return statement[:LOG_STATEMENT_CHARS] + "..."
    return statement


def _driver_message(error: BaseException) -> str:
    if isinstance(error, DBAPIError) and error.orig is not None:
        return str(error.orig)
    return str(error) or type(error).__name__


def _consume_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class QueryBroker:
    """
    Runs one statement per call on behalf of an authenticated user.

    Each execution moves through authorization, pool acquisition and the
    statement itself. The statement runs as its own task so that the owner
    can cancel it by id and the role timeout can interrupt it. The execution
    path and the cancel path race for ``tracker.deregister``; only the winner
    writes the terminal history status.
    """

    def __init__(self, registry: PoolRegistry, tracker: ExecutionTracker, ledger: HistoryLedger):
        self.registry = registry
        self.tracker = tracker
        self.ledger = ledger

    async def execute(
        self,
        owner_id: str,
        role: Optional[str],
        connection_id: str,
        statement: str
    ) -> ExecutionResult:
        """
        Execute a statement against a target connection.

        Args:
            owner_id: Authenticated user ID
            role: Role name of the user
            connection_id: Target connection profile ID
            statement: Raw SQL text

        Returns:
            ExecutionResult capped to the role's row limit

        Raises:
            AuthorizationDenied: Role may not run this kind of statement
            ConnectionNotFound: Connection profile is missing or inactive
            ConnectionUnavailable: Target pool could not be reached
            ExecutionFailed: Target database rejected the statement
            ExecutionTimedOut: Statement exceeded the role's timeout
            ExecutionCancelled: Statement was cancelled
        """
        policy = get_role_policy(role)
        decision = authorize(role, statement)
        if not decision.allowed:
            logger.warning(
                "query_denied",
                user_id=owner_id,
                role=policy.role.value,
                keyword=decision.keyword,
                kind=decision.kind.value
            )
            raise AuthorizationDenied(decision.reason)

        try:
            pool = await self.registry.acquire(connection_id)
        except ConnectionNotFound:
            raise
        except ConnectionUnavailable as e:
            e.execution_id = await asyncio.to_thread(
                self.ledger.record_failure, owner_id, connection_id, statement, e.message
            )
            raise

        # Inline so no cancel can land between the insert and register
        execution_id = self.ledger.create_running(owner_id, connection_id, statement)
        task = asyncio.create_task(pool.run(statement, policy.max_rows))
        handle = self.tracker.register(execution_id, task, owner_id, connection_id)

        try:
            done, _ = await asyncio.wait({task}, timeout=policy.timeout_seconds)
        except asyncio.CancelledError:
            task.cancel()
            task.add_done_callback(_consume_result)
            if self.tracker.deregister(execution_id) is not None:
                # Written inline, the caller is already being torn down
                self.ledger.finalize(
                    execution_id,
                    ExecutionStatus.CANCELLED,
                    execution_time_ms=handle.elapsed_ms(),
                    error_message="Request was cancelled before the query finished",
                    cancelled_at=utcnow()
                )
                logger.info("query_abandoned", execution_id=execution_id, user_id=owner_id)
            raise

        if not done:
            task.cancel()
            task.add_done_callback(_consume_result)
            if self.tracker.deregister(execution_id) is None:
                raise ExecutionCancelled("Query was cancelled", execution_id)

            message = f"Query timed out after {policy.query_timeout_ms} ms"
            await asyncio.to_thread(
                self.ledger.finalize,
                execution_id,
                ExecutionStatus.ERROR,
                execution_time_ms=handle.elapsed_ms(),
                error_message=message
            )
            logger.warning(
                "query_timed_out",
                execution_id=execution_id,
                user_id=owner_id,
                timeout_ms=policy.query_timeout_ms,
                sql=_preview(statement)
            )
            raise ExecutionTimedOut(message, execution_id)

        if task.cancelled():
            if self.tracker.deregister(execution_id) is not None:
                await asyncio.to_thread(
                    self.ledger.finalize,
                    execution_id,
                    ExecutionStatus.CANCELLED,
                    execution_time_ms=handle.elapsed_ms(),
                    cancelled_at=utcnow()
                )
            raise ExecutionCancelled("Query was cancelled", execution_id)

        error = task.exception()
        if error is not None:
            if self.tracker.deregister(execution_id) is None:
                raise ExecutionCancelled("Query was cancelled", execution_id) from error

            # Winning deregister means no user cancel reached this execution
            message = _driver_message(error)
            await asyncio.to_thread(
                self.ledger.finalize,
                execution_id,
                ExecutionStatus.ERROR,
                execution_time_ms=handle.elapsed_ms(),
                error_message=message
            )
            logger.error(
                "query_failed",
                execution_id=execution_id,
                user_id=owner_id,
                connection_id=connection_id,
                error_type=type(error).__name__,
                error=message,
                sql=_preview(statement)
            )
            raise ExecutionFailed(message, execution_id) from error

        outcome = task.result()
        if self.tracker.deregister(execution_id) is None:
            raise ExecutionCancelled("Query was cancelled", execution_id)

        elapsed_ms = handle.elapsed_ms()
        await asyncio.to_thread(
            self.ledger.finalize,
            execution_id,
            ExecutionStatus.SUCCESS,
            row_count=outcome.total_rows,
            rows_affected=outcome.rows_affected,
            execution_time_ms=elapsed_ms
        )

        returned_rows = min(outcome.total_rows, policy.max_rows)
        logger.info(
            "query_executed",
            execution_id=execution_id,
            user_id=owner_id,
            connection_id=connection_id,
            total_rows=outcome.total_rows,
            returned_rows=returned_rows,
            rows_affected=outcome.rows_affected,
            execution_time_ms=elapsed_ms,
            sql=_preview(statement)
        )

        return ExecutionResult(
            execution_id=execution_id,
            columns=outcome.columns,
            rows=outcome.rows[:returned_rows],
            total_rows=outcome.total_rows,
            returned_rows=returned_rows,
            truncated=outcome.total_rows > policy.max_rows,
            max_rows=policy.max_rows,
            rows_affected=outcome.rows_affected,
            execution_time_ms=elapsed_ms
        )

    def cancel(
        self,
        execution_id: str,
        requester_id: str,
        role: Optional[str] = None
    ) -> CancelAcknowledgement:
        """
        Cancel an in-flight execution owned by the requester.

        Raises:
            CancelTargetNotFound: Nothing running under that id
            CancelForbidden: Requester does not own the execution, or the role
                may not cancel queries
        """
        if role is not None and not get_role_policy(role).can_cancel_queries:
            raise CancelForbidden("Role is not permitted to cancel queries", execution_id)

        outcome, handle = self.tracker.cancel(execution_id, requester_id)
        if outcome == CancelOutcome.NOT_FOUND:
            raise CancelTargetNotFound(f"Execution {execution_id} is not running", execution_id)
        if outcome == CancelOutcome.FORBIDDEN:
            raise CancelForbidden("Cannot cancel another user's query", execution_id)

        cancelled_at = utcnow()
        self.ledger.finalize(
            execution_id,
            ExecutionStatus.CANCELLED,
            execution_time_ms=handle.elapsed_ms(),
            error_message="Query cancelled by user",
            cancelled_at=cancelled_at
        )
        logger.info("query_cancelled", execution_id=execution_id, user_id=requester_id)
        return CancelAcknowledgement(execution_id=execution_id, cancelled_at=cancelled_at)

    def list_running(self, owner_id: str) -> List[RunningExecution]:
        return [
            RunningExecution(
                execution_id=handle.execution_id,
                connection_id=handle.connection_id,
                elapsed_ms=handle.elapsed_ms()
            )
            for handle in self.tracker.list_by_owner(owner_id)
        ]

    def user_stats(self, owner_id: str, since_days: int = 30) -> UserStats:
        return self.ledger.user_stats(owner_id, since_days=since_days)

    def history(self, history_filter: Optional[HistoryFilter] = None) -> List[QueryExecution]:
        return self.ledger.list(history_filter)

    def get_execution(
        self,
        execution_id: str,
        requester_id: str,
        role: Optional[str]
    ) -> Optional[QueryExecution]:
        """
        Fetch one history record for its owner or a role that sees all history.

        Raises:
            HistoryAccessDenied: Record belongs to another user
        """
        record = self.ledger.get(execution_id)
        if record is None:
            return None
        if record.user_id != requester_id and not get_role_policy(role).can_view_all_history:
            raise HistoryAccessDenied("Cannot view another user's query", execution_id)
        return record

    async def test_connection(self, connection_id: str) -> ConnectionTestResult:
        return await self.registry.test_connection(connection_id)

    async def close(self) -> None:
        """Close every target pool. Called once at process shutdown."""
        await self.registry.close_all()


def build_broker() -> QueryBroker:
    """Wire a broker from application settings."""
    registry = PoolRegistry(
        CredentialVault(),
        min_size=settings.POOL_MIN_SIZE,
        max_size=settings.POOL_MAX_SIZE,
        idle_timeout_seconds=settings.POOL_IDLE_TIMEOUT_SECONDS
    )
    return QueryBroker(registry, ExecutionTracker(), HistoryLedger())


@lru_cache()
def get_broker() -> QueryBroker:
    """Process-wide broker instance."""
    return build_broker()
