"""
Query Execution API Routes
"""
from fastapi import APIRouter, Depends, HTTPException, status, Body, Query
from typing import List, Optional
import asyncio
from datetime import datetime

from sqlbroker.core.auth import Identity, get_current_identity
from sqlbroker.core.roles import get_role_policy
from sqlbroker.models.history import ExecutionStatus
from sqlbroker.schemas import (
    ExecuteRequest, ExecuteResponse, CancelResponse,
    RunningExecutionItem, QueryExecutionItem, UserStatsResponse,
    ConnectionTestResponse
)
from sqlbroker.services.history_ledger import HistoryFilter
from sqlbroker.services.query_broker import QueryBroker, get_broker

router = APIRouter()


@router.post("/execute", response_model=ExecuteResponse)
async def execute_query(
    request: ExecuteRequest = Body(...),
    identity: Identity = Depends(get_current_identity),
    broker: QueryBroker = Depends(get_broker)
):
    """
    Execute a SQL statement against a target connection.

    Results are capped at the caller's role row limit; ``truncated`` tells
    whether more rows were produced than returned.
    """
    result = await broker.execute(
        owner_id=identity.user_id,
        role=identity.role,
        connection_id=request.connection_id,
        statement=request.query
    )
    return ExecuteResponse(
        execution_id=result.execution_id,
        columns=result.columns,
        data=result.rows,
        total_rows=result.total_rows,
        returned_rows=result.returned_rows,
        truncated=result.truncated,
        max_rows=result.max_rows,
        rows_affected=result.rows_affected,
        execution_time_ms=result.execution_time_ms
    )


@router.post("/cancel/{execution_id}", response_model=CancelResponse)
async def cancel_query(
    execution_id: str,
    identity: Identity = Depends(get_current_identity),
    broker: QueryBroker = Depends(get_broker)
):
    """Cancel one of the caller's running statements."""
    ack = await asyncio.to_thread(broker.cancel, execution_id, identity.user_id, role=identity.role)
    return CancelResponse(execution_id=ack.execution_id, cancelled_at=ack.cancelled_at)


@router.get("/running", response_model=List[RunningExecutionItem])
async def list_running(
    identity: Identity = Depends(get_current_identity),
    broker: QueryBroker = Depends(get_broker)
):
    """List the caller's in-flight statements."""
    return [
        RunningExecutionItem(
            execution_id=running.execution_id,
            connection_id=running.connection_id,
            elapsed_ms=running.elapsed_ms
        )
        for running in broker.list_running(identity.user_id)
    ]


@router.get("/history", response_model=List[QueryExecutionItem])
async def get_history(
    connection_id: Optional[str] = None,
    status_filter: Optional[ExecutionStatus] = Query(None, alias="status"),
    user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_current_identity),
    broker: QueryBroker = Depends(get_broker)
):
    """
    Get execution history, newest first.

    Roles that can view all history may filter by any user; everyone else
    only sees their own records.
    """
    if not get_role_policy(identity.role).can_view_all_history:
        user_id = identity.user_id

    return broker.history(HistoryFilter(
        user_id=user_id,
        connection_id=connection_id,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset
    ))


@router.get("/history/{execution_id}", response_model=QueryExecutionItem)
async def get_history_item(
    execution_id: str,
    identity: Identity = Depends(get_current_identity),
    broker: QueryBroker = Depends(get_broker)
):
    """Get one history record."""
    record = broker.get_execution(execution_id, identity.user_id, identity.role)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Execution not found"
        )
    return record


@router.get("/stats", response_model=UserStatsResponse)
async def get_stats(
    days: int = Query(30, ge=1, le=365),
    identity: Identity = Depends(get_current_identity),
    broker: QueryBroker = Depends(get_broker)
):
    """Execution statistics for the caller."""
    return broker.user_stats(identity.user_id, since_days=days)


@router.post("/connections/{connection_id}/test", response_model=ConnectionTestResponse)
async def test_connection(
    connection_id: str,
    identity: Identity = Depends(get_current_identity),
    broker: QueryBroker = Depends(get_broker)
):
    """Try to reach a target connection without keeping a pool."""
    if not get_role_policy(identity.role).can_manage_connections:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Connection management permission required"
        )
    return await broker.test_connection(connection_id)
