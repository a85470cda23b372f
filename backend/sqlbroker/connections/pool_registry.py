"""
Connection Pool Registry - one shared pool per target (server, database)
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
import asyncio
import time

import structlog

from sqlbroker.connections.pool import TargetPool
from sqlbroker.connections.vault import CredentialVault, PoolKey, TargetDescriptor
from sqlbroker.core.exceptions import ConnectionUnavailable

logger = structlog.get_logger()

PoolFactory = Callable[..., TargetPool]


@dataclass
class ConnectionTestResult:
    """Outcome of a throwaway connection attempt."""
    success: bool
    message: str
    response_time_ms: int


class PoolRegistry:
    """
    Keyed cache of live connection pools to target databases.

    Pools are created lazily on first use and shared by every caller whose
    connection resolves to the same (server, database) key. Creation is
    serialized per key only, so building a pool for one target never blocks
    callers of another.
    """

    def __init__(
        self,
        vault: CredentialVault,
        pool_factory: PoolFactory = TargetPool,
        min_size: int = 2,
        max_size: int = 10,
        idle_timeout_seconds: float = 30
    ):
        self._vault = vault
        self._pool_factory = pool_factory
        self.min_size = min_size
        self.max_size = max_size
        self.idle_timeout_seconds = idle_timeout_seconds
        self._pools: Dict[PoolKey, TargetPool] = {}
        self._locks: Dict[PoolKey, asyncio.Lock] = {}
        self._reaper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._pools)

    def active_pools(self) -> List[PoolKey]:
        """Keys of the currently registered pools."""
        return list(self._pools.keys())

    def _live_pool(self, key: PoolKey) -> Optional[TargetPool]:
        pool = self._pools.get(key)
        if pool is not None and pool.connected:
            pool.last_used = time.monotonic()
            return pool
        return None

    async def acquire(self, connection_id: str) -> TargetPool:
        """
        Get or create the pool serving a connection profile.

        Args:
            connection_id: Connection profile ID

        Returns:
            Connected TargetPool shared by every caller with the same pool key

        Raises:
            ConnectionNotFound: If the profile is missing or inactive
            ConnectionUnavailable: If the pool could not connect
        """
        descriptor = self._vault.decrypt(connection_id)
        key = descriptor.pool_key

        pool = self._live_pool(key)
        if pool is not None:
            return pool

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another caller may have built it while we waited
            pool = self._live_pool(key)
            if pool is not None:
                return pool

            stale = self._pools.pop(key, None)
            if stale is not None:
                logger.info("pool_evicted_disconnected", server=key.server, database=key.database)
                await stale.close()

            pool = await self._open_pool(descriptor)
            self._pools[key] = pool

        logger.info(
            "pool_created",
            connection_id=connection_id,
            server=key.server,
            database=key.database,
            min_size=self.min_size,
            max_size=self.max_size
        )
        return pool

    async def _open_pool(
        self,
        descriptor: TargetDescriptor,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None
    ) -> TargetPool:
        pool = self._pool_factory(
            descriptor,
            min_size=min_size or self.min_size,
            max_size=max_size or self.max_size,
            idle_timeout_seconds=self.idle_timeout_seconds
        )
        try:
            await asyncio.wait_for(pool.connect(), timeout=descriptor.connect_timeout_seconds)
        except asyncio.CancelledError:
            await pool.close()
            raise
        except Exception as e:
            await pool.close()
            reason = str(e) or f"timed out after {descriptor.connect_timeout_ms} ms"
            logger.error(
                "pool_connect_failed",
                connection_id=descriptor.connection_id,
                error_type=type(e).__name__,
                error=reason
            )
            raise ConnectionUnavailable(f"Failed to connect to {descriptor.name}: {reason}") from e
        return pool

    async def test_connection(self, connection_id: str) -> ConnectionTestResult:
        """
        Try to connect without registering a pool.

        Raises:
            ConnectionNotFound: If the profile is missing or inactive
        """
        descriptor = self._vault.decrypt(connection_id)
        start_time = time.time()
        try:
            pool = await self._open_pool(descriptor, min_size=1, max_size=1)
        except ConnectionUnavailable as e:
            return ConnectionTestResult(
                success=False,
                message=e.message,
                response_time_ms=int((time.time() - start_time) * 1000)
            )

        await pool.close()
        return ConnectionTestResult(
            success=True,
            message="Connection successful",
            response_time_ms=int((time.time() - start_time) * 1000)
        )

    async def evict_idle(self) -> int:
        """
        Close pools that have been idle longer than the idle timeout.

        Returns:
            Number of pools closed
        """
        evicted = 0
        for key, pool in list(self._pools.items()):
            if pool.in_flight or pool.idle_seconds < self.idle_timeout_seconds:
                continue
            if self._pools.get(key) is not pool:
                continue
            del self._pools[key]
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]
            await pool.close()
            evicted += 1

        if evicted > 0:
            logger.info("pools_evicted_idle", count=evicted)

        return evicted

    def start_reaper(self, interval_seconds: Optional[float] = None) -> None:
        """Start the background idle-pool eviction loop."""
        if self._reaper is not None and not self._reaper.done():
            return
        self._reaper = asyncio.create_task(
            self._reap_loop(interval_seconds or self.idle_timeout_seconds)
        )

    async def _reap_loop(self, interval_seconds: float) -> None:
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await self.evict_idle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("pool_reaper_error", error=str(e))

    async def close_all(self) -> None:
        """Close every pool and clear the registry. Called once at shutdown."""
        reaper, self._reaper = self._reaper, None
        if reaper is not None:
            reaper.cancel()
            await asyncio.gather(reaper, return_exceptions=True)

        pools = list(self._pools.values())
        self._pools.clear()
        self._locks.clear()

        for pool in pools:
            try:
                await pool.close()
            except Exception as e:
                logger.error("pool_close_failed", pool=repr(pool), error=str(e))

        logger.info("pools_closed", count=len(pools))
