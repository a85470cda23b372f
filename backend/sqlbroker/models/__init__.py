"""
Models Package - Export all SQLAlchemy models
"""
from sqlbroker.models.connection import ConnectionProfile, ConnectionType
from sqlbroker.models.history import (
    QueryExecution,
    ExecutionStatus,
    TERMINAL_STATUSES,
)

__all__ = [
    # Connections
    "ConnectionProfile",
    "ConnectionType",

    # History
    "QueryExecution",
    "ExecutionStatus",
    "TERMINAL_STATUSES",
]
