"""
Execution Tracker - registry of in-flight statements for cancellation
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import asyncio
import enum
import threading
import time

import structlog

logger = structlog.get_logger()


class CancelOutcome(str, enum.Enum):
    OK = "ok"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"


@dataclass
class InFlightExecution:
    """Cancellable handle to a running statement."""
    execution_id: str
    owner_id: str
    connection_id: str
    task: asyncio.Future
    started_at: float = field(default_factory=time.monotonic)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    def cancel(self) -> None:
        """Deliver the cancel signal to the statement task on its own loop."""
        loop = self.task.get_loop()
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        if current is loop:
            self.task.cancel()
        else:
            loop.call_soon_threadsafe(self.task.cancel)


class ExecutionTracker:
    """
    Concurrent map of execution id -> in-flight handle.

    Each id hashes to one of a fixed set of lock stripes, so check-and-remove
    on one execution never contends with unrelated executions. ``deregister``
    hands the handle to exactly one caller; whoever receives it owns the
    final history write for that execution.
    """

    def __init__(self, stripes: int = 32):
        self._handles: Dict[str, InFlightExecution] = {}
        self._stripes = [threading.Lock() for _ in range(stripes)]

    def __len__(self) -> int:
        return len(self._handles)

    def _lock_for(self, execution_id: str) -> threading.Lock:
        return self._stripes[hash(execution_id) % len(self._stripes)]

    def register(
        self,
        execution_id: str,
        task: asyncio.Future,
        owner_id: str,
        connection_id: str
    ) -> InFlightExecution:
        """
        Track a statement task.

        Raises:
            ValueError: If the execution id is already registered
        """
        handle = InFlightExecution(
            execution_id=execution_id,
            owner_id=owner_id,
            connection_id=connection_id,
            task=task
        )
        with self._lock_for(execution_id):
            if execution_id in self._handles:
                raise ValueError(f"Execution {execution_id} is already registered")
            self._handles[execution_id] = handle
        return handle

    def lookup(self, execution_id: str) -> Optional[InFlightExecution]:
        return self._handles.get(execution_id)

    def deregister(self, execution_id: str) -> Optional[InFlightExecution]:
        """
        Stop tracking an execution.

        Returns:
            The handle if this call removed it, None if it was already gone
        """
        with self._lock_for(execution_id):
            return self._handles.pop(execution_id, None)

    def list_by_owner(self, owner_id: str) -> List[InFlightExecution]:
        return [handle for handle in list(self._handles.values()) if handle.owner_id == owner_id]

    def cancel(
        self,
        execution_id: str,
        requester_id: str
    ) -> Tuple[CancelOutcome, Optional[InFlightExecution]]:
        """
        Cancel an execution on behalf of its owner.

        The ownership check and removal happen under the execution's lock, so
        a second request for the same id sees NOT_FOUND even if the statement
        has not stopped yet.

        Returns:
            (outcome, handle) where handle is set only for CancelOutcome.OK
        """
        with self._lock_for(execution_id):
            handle = self._handles.get(execution_id)
            if handle is None:
                return CancelOutcome.NOT_FOUND, None
            if handle.owner_id != requester_id:
                logger.warning(
                    "cancel_forbidden",
                    execution_id=execution_id,
                    requester_id=requester_id
                )
                return CancelOutcome.FORBIDDEN, None
            del self._handles[execution_id]

        handle.cancel()
        return CancelOutcome.OK, handle
