"""
Services Package
"""
from sqlbroker.services.execution_tracker import ExecutionTracker, InFlightExecution, CancelOutcome
from sqlbroker.services.history_ledger import HistoryLedger, HistoryFilter, UserStats
from sqlbroker.services.query_broker import (
    QueryBroker, ExecutionResult, RunningExecution, CancelAcknowledgement, get_broker
)

__all__ = [
    "ExecutionTracker", "InFlightExecution", "CancelOutcome",
    "HistoryLedger", "HistoryFilter", "UserStats",
    "QueryBroker", "ExecutionResult", "RunningExecution", "CancelAcknowledgement", "get_broker"
]
