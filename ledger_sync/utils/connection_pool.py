"""
Pooled HTTP clients for the REST-backed ledger store.

One named pool per API host, shared process-wide so scheduled passes reuse
keep-alive connections.
"""

import asyncio
from typing import Any

import httpx
import structlog

log = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_CONNECTIONS = 10
MAX_KEEPALIVE_CONNECTIONS = 5


class HTTPConnectionPool:
    """Lazily-created httpx AsyncClient bound to one base URL."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.headers = headers or {}
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the underlying client if it does not exist yet."""
        async with self._lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    limits=httpx.Limits(
                        max_connections=MAX_CONNECTIONS,
                        max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
                        keepalive_expiry=30.0,
                    ),
                    timeout=self.timeout,
                    http2=True,
                    headers=self.headers,
                )
                log.info("connection_pool_initialized", base_url=self.base_url)

    async def close(self) -> None:
        async with self._lock:
            if self._client:
                await self._client.aclose()
                self._client = None
                log.info("connection_pool_closed", base_url=self.base_url)

    async def _ready_client(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.initialize()
        assert self._client is not None
        return self._client

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._ready_client()
        return await client.post(path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._ready_client()
        return await client.patch(path, **kwargs)


class ConnectionPoolManager:
    """Registry of named pools."""

    def __init__(self) -> None:
        self._pools: dict[str, HTTPConnectionPool] = {}
        self._lock = asyncio.Lock()

    async def get_pool(
        self,
        name: str,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
    ) -> HTTPConnectionPool:
        """Get or create a named connection pool.

        The first caller's settings win; later calls with the same name get
        the existing pool.
        """
        async with self._lock:
            if name not in self._pools:
                pool = HTTPConnectionPool(base_url=base_url, timeout=timeout, headers=headers)
                await pool.initialize()
                self._pools[name] = pool
                log.info("connection_pool_created", name=name, base_url=base_url)
            return self._pools[name]

    async def close_all(self) -> None:
        async with self._lock:
            for pool in self._pools.values():
                await pool.close()
            self._pools.clear()
            log.info("all_connection_pools_closed")


_pool_manager = ConnectionPoolManager()


async def get_pool(
    name: str,
    base_url: str,
    timeout: float = DEFAULT_TIMEOUT,
    headers: dict[str, str] | None = None,
) -> HTTPConnectionPool:
    """Get a named connection pool from the process-wide manager."""
    return await _pool_manager.get_pool(name=name, base_url=base_url, timeout=timeout, headers=headers)


async def close_all_pools() -> None:
    """Close every pool owned by the process-wide manager."""
    await _pool_manager.close_all()
