"""
Target database connection pool
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List
import time

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from sqlbroker.connections.vault import PoolKey, TargetDescriptor
from sqlbroker.models.connection import ConnectionType


@dataclass
class StatementOutcome:
    """Raw result of one statement, already capped to the caller's row limit."""
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    total_rows: int = 0
    rows_affected: int = 0
    returns_rows: bool = False


def unique_column_names(names: Iterable[str]) -> List[str]:
    """
    Make result column names usable as row keys.

    Repeated names get a numeric suffix (``id``, ``id_1``) that does not clash
    with any other column, so every value in a row keeps its own key.
    """
    names = [str(name) for name in names]
    taken = set(names)
    seen = set()
    unique = []
    for name in names:
        if name not in seen:
            seen.add(name)
            unique.append(name)
            continue
        suffix = 1
        while f"{name}_{suffix}" in taken:
            suffix += 1
        candidate = f"{name}_{suffix}"
        taken.add(candidate)
        seen.add(candidate)
        unique.append(candidate)
    return unique


class TargetPool:
    """
    Bounded pool of live connections to one target database.

    Wraps an async SQLAlchemy engine. The pool keeps ``min_size`` connections
    around and opens up to ``max_size`` under load; callers beyond that wait
    for a free connection until the connect timeout elapses.
    """

    def __init__(
        self,
        descriptor: TargetDescriptor,
        min_size: int = 2,
        max_size: int = 10,
        idle_timeout_seconds: float = 30
    ):
        self.key: PoolKey = descriptor.pool_key
        self.name = descriptor.name
        self.min_size = min_size
        self.max_size = max_size
        self.idle_timeout_seconds = idle_timeout_seconds
        self.in_flight = 0
        self.last_used = time.monotonic()
        self._connected = False
        self._engine = self._create_engine(descriptor)

    def _create_engine(self, descriptor: TargetDescriptor) -> AsyncEngine:
        if descriptor.db_type == ConnectionType.SQLITE.value:
            return create_async_engine(descriptor.url(), connect_args=descriptor.connect_args())

        return create_async_engine(
            descriptor.url(),
            pool_size=self.min_size,
            max_overflow=max(0, self.max_size - self.min_size),
            pool_timeout=descriptor.connect_timeout_seconds,
            pool_pre_ping=True,
            connect_args=descriptor.connect_args()
        )

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def idle_seconds(self) -> float:
        """Seconds since the pool last served a statement; 0 while busy."""
        if self.in_flight:
            return 0.0
        return time.monotonic() - self.last_used

    async def connect(self) -> None:
        """
        Open and verify one connection.

        Raises:
            Exception: Whatever the driver raises when the target is unreachable
        """
        async with self._engine.connect() as conn:
            await conn.exec_driver_sql("SELECT 1")
        self._connected = True
        self.last_used = time.monotonic()

    async def run(self, statement: str, max_rows: int) -> StatementOutcome:
        """
        Execute a raw statement without parameters.

        Args:
            statement: SQL text, sent to the driver as-is
            max_rows: Number of rows to keep; the rest are only counted

        Returns:
            StatementOutcome with capped rows and the total row count
        """
        self.in_flight += 1
        self.last_used = time.monotonic()
        try:
            async with self._engine.connect() as conn:
                result = await conn.exec_driver_sql(statement)

                if result.returns_rows:
                    columns = unique_column_names(result.keys())
                    rows = []
                    total_rows = 0
                    for row in result:
                        total_rows += 1
                        if total_rows <= max_rows:
                            rows.append(dict(zip(columns, row)))
                    outcome = StatementOutcome(
                        columns=columns,
                        rows=rows,
                        total_rows=total_rows,
                        returns_rows=True
                    )
                else:
                    outcome = StatementOutcome(rows_affected=max(result.rowcount, 0))

                await conn.commit()
                return outcome
        finally:
            self.in_flight -= 1
            self.last_used = time.monotonic()

    async def close(self) -> None:
        """Close every connection held by the pool."""
        self._connected = False
        await self._engine.dispose()

    def __repr__(self) -> str:
        return f"<TargetPool {self.key.server}/{self.key.database} in_flight={self.in_flight}>"
