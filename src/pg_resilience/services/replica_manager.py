# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Read/write routing between the primary and read replicas."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from attrs import field, frozen
from beartype import beartype

from ..core.config import Settings, discover_replica_urls
from ..core.database import Database, PoolConfig, QueryInterceptor
from ..core.logging_utils import get_logger
from ..schemas.monitoring import ReplicaHealth, ReplicaHealthReport

T = TypeVar("T")

DatabaseOperation = Callable[[Database], Awaitable[T]]

LAG_QUERY = (
    "SELECT EXTRACT(EPOCH FROM (now() - pg_last_xact_replay_timestamp())) AS lag"
)

logger = get_logger(__name__)


@frozen
class ReplicaRegistration:
    """One read replica: position in the rotation, redacted URL, owned pool."""

    index: int = field()
    url: str = field()
    database: Database = field(eq=False, repr=False)


class ReadReplicaManager:
    """Send writes to the primary and spread reads over replicas round-robin.

    With no replicas every read goes to the primary. Health checks report on
    replicas but do not remove unhealthy ones from the rotation.
    """

    def __init__(self, primary: Database, replicas: Sequence[Database] = ()) -> None:
        """Initialize manager over already constructed (not yet connected) databases."""
        self._primary = primary
        self._replicas = tuple(
            ReplicaRegistration(index=i, url=db.redacted_dsn, database=db)
            for i, db in enumerate(replicas)
        )
        self._next_index = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        primary: Database,
        *,
        pool_config: PoolConfig | None = None,
        interceptors: Sequence[QueryInterceptor] = (),
    ) -> "ReadReplicaManager":
        """Create one pool per replica URL found in the environment."""
        urls = discover_replica_urls()
        if not urls and settings.read_replica_url:
            urls = [settings.read_replica_url]

        replicas = [
            Database(
                url,
                name=f"replica-{i + 1}",
                pool_config=pool_config,
                interceptors=interceptors,
            )
            for i, url in enumerate(urls)
        ]
        return cls(primary, replicas)

    @property
    def primary(self) -> Database:
        """The database every write goes to."""
        return self._primary

    @property
    def replicas(self) -> tuple[ReplicaRegistration, ...]:
        """Registered replicas in rotation order."""
        return self._replicas

    @beartype
    async def connect(self) -> None:
        """Open the primary pool and every replica pool."""
        await self._primary.connect()
        await asyncio.gather(*(r.database.connect() for r in self._replicas))
        logger.info(
            "Read replica manager ready", extra={"replica_count": len(self._replicas)}
        )

    @beartype
    async def disconnect(self) -> None:
        """Close every pool."""
        await asyncio.gather(
            self._primary.disconnect(),
            *(r.database.disconnect() for r in self._replicas),
        )

    @beartype
    async def get_replica(self) -> Database:
        """Next replica in the rotation, or the primary when none are registered."""
        if not self._replicas:
            return self._primary

        async with self._lock:
            replica = self._replicas[self._next_index]
            self._next_index = (self._next_index + 1) % len(self._replicas)
        return replica.database

    async def read(self, operation: DatabaseOperation[T]) -> T:
        """Run a read-only operation on the next replica; errors propagate unchanged."""
        database = await self.get_replica()
        return await operation(database)

    async def write(self, operation: DatabaseOperation[T]) -> T:
        """Run an operation on the primary; errors propagate unchanged."""
        return await operation(self._primary)

    async def _probe(self, replica: ReplicaRegistration) -> ReplicaHealth:
        liveness = await replica.database.health_check()
        if liveness.is_err():
            logger.warning(
                "Replica health check failed",
                extra={"replica": replica.url, "error": liveness.err_value},
            )
            return ReplicaHealth(
                index=replica.index, healthy=False, error=liveness.err_value
            )

        try:
            lag = await replica.database.fetchval(LAG_QUERY, model="Replica", action="lag")
        except Exception as e:
            logger.debug(
                "Replication lag unavailable", extra={"replica": replica.url, "error": str(e)}
            )
            lag = None

        return ReplicaHealth(
            index=replica.index,
            healthy=True,
            lag_seconds=float(lag) if lag is not None else None,
        )

    @beartype
    async def check_replica_health(self) -> ReplicaHealthReport:
        """Probe every replica concurrently for liveness and replication lag."""
        results = await asyncio.gather(*(self._probe(r) for r in self._replicas))
        healthy = sum(1 for r in results if r.healthy)
        report = ReplicaHealthReport(
            healthy=healthy, unhealthy=len(results) - healthy, replicas=list(results)
        )
        logger.info(
            "Replica health checked",
            extra={"healthy": report.healthy, "unhealthy": report.unhealthy},
        )
        return report
