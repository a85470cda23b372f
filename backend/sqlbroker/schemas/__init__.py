"""
Schemas Package
"""
from sqlbroker.schemas.query import (
    ExecuteRequest, ExecuteResponse, CancelResponse,
    RunningExecutionItem, QueryExecutionItem, UserStatsResponse,
    ConnectionTestResponse
)

__all__ = [
    "ExecuteRequest", "ExecuteResponse", "CancelResponse",
    "RunningExecutionItem", "QueryExecutionItem", "UserStatsResponse",
    "ConnectionTestResponse"
]
