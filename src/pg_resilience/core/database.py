"""Database connection management with asyncpg pooling and a single query chokepoint.

Every read and write funnels through :meth:`Database.run`, which passes the
call through the registered interceptors (the slow query monitor is one)
before acquiring a pooled connection. The replica manager chooses *which*
``Database`` runs a call; interceptors decide *how* it is observed.
"""

import contextlib
import functools
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any, TypeVar

import asyncpg
from attrs import field, frozen
from beartype import beartype

from .connection import redact_url
from .logging_utils import get_logger
from .result_types import Err, Ok, Result

T = TypeVar("T")

logger = get_logger(__name__)


@frozen
class PoolConfig:
    """Immutable pool configuration."""

    min_connections: int = field(default=2)
    max_connections: int = field(default=10)
    connection_timeout: float = field(default=10.0)
    command_timeout: float = field(default=60.0)
    max_inactive_connection_lifetime: float = field(default=300.0)
    server_settings: dict[str, str] = field(factory=dict)


@frozen
class PoolMetrics:
    """Immutable pool metrics snapshot."""

    name: str = field()
    size: int = field()
    idle_size: int = field()
    min_size: int = field()
    max_size: int = field()
    queries_total: int = field()
    query_errors: int = field()


@frozen
class QueryParams:
    """What an interceptor sees about a call: logical resource, operation, arguments."""

    model: str = field()
    action: str = field()
    args: Any = field(default=None)


CallNext = Callable[[], Awaitable[Any]]
QueryInterceptor = Callable[[QueryParams, CallNext], Awaitable[Any]]
QueryOperation = Callable[[asyncpg.Connection], Awaitable[T]]


class Database:
    """Owned asyncpg pool for one server (the primary or a single replica)."""

    def __init__(
        self,
        dsn: str,
        *,
        name: str = "primary",
        pool_config: PoolConfig | None = None,
        interceptors: Sequence[QueryInterceptor] = (),
    ) -> None:
        """Initialize database manager; the pool is created by :meth:`connect`."""
        self._dsn = dsn
        self._name = name
        self._pool_config = pool_config or PoolConfig()
        self._pool: asyncpg.Pool | None = None
        self._interceptors: list[QueryInterceptor] = list(interceptors)
        self._metrics = {"queries_total": 0, "query_errors": 0}

    @property
    def name(self) -> str:
        """Label used in logs and health reports."""
        return self._name

    @property
    def redacted_dsn(self) -> str:
        """Connection URL with the password masked."""
        return redact_url(self._dsn)

    @property
    def is_connected(self) -> bool:
        """Whether the pool has been created."""
        return self._pool is not None

    @beartype
    def add_interceptor(self, interceptor: QueryInterceptor) -> None:
        """Wrap every subsequent call in ``interceptor``; earlier registrations run outermost."""
        self._interceptors.append(interceptor)

    @beartype
    async def connect(self) -> None:
        """Create the connection pool; calling twice is a no-op."""
        if self._pool is not None:
            return

        config = self._pool_config
        self._pool = await asyncpg.create_pool(
            self._dsn,
            min_size=config.min_connections,
            max_size=config.max_connections,
            timeout=config.connection_timeout,
            command_timeout=config.command_timeout,
            max_inactive_connection_lifetime=config.max_inactive_connection_lifetime,
            server_settings=config.server_settings or None,
        )
        logger.info(
            "Connection pool ready",
            extra={
                "database": self._name,
                "min_size": config.min_connections,
                "max_size": config.max_connections,
            },
        )

    @beartype
    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
        self._pool = None

    @contextlib.asynccontextmanager
    async def acquire(
        self, *, timeout: float | None = None
    ) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection."""
        if self._pool is None:
            raise RuntimeError(f"Database '{self._name}' not connected")

        timeout = timeout or self._pool_config.connection_timeout
        async with self._pool.acquire(timeout=timeout) as conn:
            yield conn

    async def run(
        self,
        model: str,
        action: str,
        operation: QueryOperation[T],
        *,
        args: Any = None,
    ) -> T:
        """Execute ``operation`` on a pooled connection through all interceptors."""
        params = QueryParams(model=model, action=action, args=args)

        async def execute() -> T:
            self._metrics["queries_total"] += 1
            try:
                async with self.acquire() as conn:
                    return await operation(conn)
            except Exception:
                self._metrics["query_errors"] += 1
                raise

        call: CallNext = execute
        for interceptor in reversed(self._interceptors):
            call = functools.partial(interceptor, params, call)
        return await call()

    async def fetchval(
        self, query: str, *args: Any, model: str = "raw", action: str = "fetchval"
    ) -> Any:
        """Return the first column of the first row."""
        return await self.run(
            model, action, lambda conn: conn.fetchval(query, *args), args=list(args)
        )

    async def fetch(
        self, query: str, *args: Any, model: str = "raw", action: str = "fetch"
    ) -> list[asyncpg.Record]:
        """Return all rows."""
        return await self.run(
            model, action, lambda conn: conn.fetch(query, *args), args=list(args)
        )

    async def fetchrow(
        self, query: str, *args: Any, model: str = "raw", action: str = "fetchrow"
    ) -> asyncpg.Record | None:
        """Return the first row or None."""
        return await self.run(
            model, action, lambda conn: conn.fetchrow(query, *args), args=list(args)
        )

    async def execute(
        self, query: str, *args: Any, model: str = "raw", action: str = "execute"
    ) -> str:
        """Execute a statement and return its status tag."""
        return await self.run(
            model, action, lambda conn: conn.execute(query, *args), args=list(args)
        )

    @beartype
    async def open_connection(self, *, timeout: float | None = None) -> asyncpg.Connection:
        """Open a dedicated connection outside the pool (for capacity probes)."""
        return await asyncpg.connect(
            self._dsn, timeout=timeout or self._pool_config.connection_timeout
        )

    @beartype
    def get_pool_stats(self) -> PoolMetrics:
        """Get pool statistics."""
        if self._pool is None:
            return PoolMetrics(
                name=self._name,
                size=0,
                idle_size=0,
                min_size=0,
                max_size=0,
                queries_total=self._metrics["queries_total"],
                query_errors=self._metrics["query_errors"],
            )

        return PoolMetrics(
            name=self._name,
            size=self._pool.get_size(),
            idle_size=self._pool.get_idle_size(),
            min_size=self._pool.get_min_size(),
            max_size=self._pool.get_max_size(),
            queries_total=self._metrics["queries_total"],
            query_errors=self._metrics["query_errors"],
        )

    @beartype
    async def health_check(self) -> Result[float, str]:
        """Run ``SELECT 1`` and report round-trip latency in milliseconds."""
        start = time.perf_counter()
        try:
            async with self.acquire(timeout=5.0) as conn:
                result = await conn.fetchval("SELECT 1")
        except Exception as e:
            return Err(f"Health check failed for '{self._name}': {e}")

        if result != 1:
            return Err(f"Health check query failed for '{self._name}'")
        return Ok((time.perf_counter() - start) * 1000)
