"""
Query Broker Schemas
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Any, Dict
from datetime import datetime

from sqlbroker.models.history import ExecutionStatus


class ExecuteRequest(BaseModel):
    """SQL statement execution request."""
    connection_id: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1)


class ExecuteResponse(BaseModel):
    """Rows and metadata of a successful execution."""
    execution_id: str
    columns: List[str] = []
    data: List[Dict[str, Any]] = []
    total_rows: int = 0
    returned_rows: int = 0
    truncated: bool = False
    max_rows: int
    rows_affected: int = 0
    execution_time_ms: int


class CancelResponse(BaseModel):
    execution_id: str
    cancelled_at: datetime
    message: str = "Query cancelled"


class RunningExecutionItem(BaseModel):
    execution_id: str
    connection_id: str
    elapsed_ms: int


class QueryExecutionItem(BaseModel):
    """Execution history item."""
    id: str
    user_id: str
    connection_id: str
    sql_text: str
    status: ExecutionStatus
    row_count: Optional[int] = None
    rows_affected: Optional[int] = None
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime
    finished_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserStatsResponse(BaseModel):
    period_days: int
    total_count: int
    success_count: int
    error_count: int
    cancelled_count: int
    avg_execution_time_ms: Optional[float] = None
    total_rows_returned: int

    model_config = ConfigDict(from_attributes=True)


class ConnectionTestResponse(BaseModel):
    """Connection test result."""
    success: bool
    message: str
    response_time_ms: int

    model_config = ConfigDict(from_attributes=True)
