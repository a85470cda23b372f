"""
Query History Model - audit trail of every execution attempt
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from datetime import datetime, timezone
import enum
import uuid

from sqlbroker.database import Base


class ExecutionStatus(str, enum.Enum):
    """Lifecycle of an execution record. Only RUNNING is non-terminal."""
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.SUCCESS,
    ExecutionStatus.ERROR,
    ExecutionStatus.CANCELLED,
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueryExecution(Base):
    """One submitted statement and how it ended."""
    __tablename__ = "query_history"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Actor
    user_id = Column(String(64), nullable=False, index=True)
    connection_id = Column(String(36), nullable=False, index=True)

    # Statement
    sql_text = Column(Text, nullable=False)

    # Status
    status = Column(String(20), nullable=False, default=ExecutionStatus.RUNNING.value, index=True)
    error_message = Column(Text)

    # Performance
    row_count = Column(Integer)
    rows_affected = Column(Integer)
    execution_time_ms = Column(Integer)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    finished_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_query_history_user_created", "user_id", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != ExecutionStatus.RUNNING.value

    def __repr__(self) -> str:
        return f"<QueryExecution {self.id} {self.status}>"
