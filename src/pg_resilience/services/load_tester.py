# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Connection pool load testing.

A load test issues fixed-size batches of queries until a wall-clock deadline.
Batches never overlap, so at most ``concurrency`` queries are in flight.
"""

import asyncio
import json
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import asyncpg
from attrs import field, frozen
from beartype import beartype

from ..core.database import Database
from ..core.errors import ResourceExhaustionError
from ..core.logging_utils import get_logger
from ..schemas.load_test import (
    ConnectionLimitResult,
    LoadTestConfig,
    LoadTestErrorCount,
    LoadTestResult,
    PoolHealthReport,
    PoolHealthSample,
    QueryType,
)

READ_QUERY = "SELECT COUNT(*) FROM system_logs"
WRITE_QUERY = """
    INSERT INTO system_logs (level, message, component, metadata)
    VALUES ('DEBUG', $1, 'load-test', $2::jsonb)
"""
POOL_ACTIVITY_QUERY = """
    SELECT
        COUNT(*) FILTER (WHERE state = 'active') AS active,
        COUNT(*) FILTER (WHERE state = 'idle') AS idle
    FROM pg_stat_activity
    WHERE datname = current_database()
"""

RAMP_UP_DELAY_SECONDS = 0.1
RAMP_UP_BATCHES = 10
SAMPLE_INTERVAL_SECONDS = 1.0
MAX_CONNECTION_ATTEMPTS = 100

logger = get_logger(__name__)


@frozen
class QueryOutcome:
    """One load-test query."""

    success: bool = field()
    duration_ms: float = field()
    error: str | None = field(default=None)


class ConnectionPoolLoadTester:
    """Exercise a database's pool and probe its connection capacity."""

    def __init__(
        self,
        database: Database,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        ramp_up_delay: float = RAMP_UP_DELAY_SECONDS,
        sample_interval: float = SAMPLE_INTERVAL_SECONDS,
        max_connection_attempts: int = MAX_CONNECTION_ATTEMPTS,
    ) -> None:
        """Initialize load tester; ``clock`` returns seconds."""
        self._database = database
        self._clock = clock
        self._sleep = sleep
        self._ramp_up_delay = ramp_up_delay
        self._sample_interval = sample_interval
        self._max_connection_attempts = max_connection_attempts

    async def _read(self) -> None:
        await self._database.fetchval(READ_QUERY, model="SystemLog", action="count")

    async def _write(self, query_id: int) -> None:
        metadata = {
            "test_id": query_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        await self._database.execute(
            WRITE_QUERY,
            f"Load test query {query_id}",
            json.dumps(metadata),
            model="SystemLog",
            action="create",
        )

    async def _run_query(self, query_type: QueryType, query_id: int) -> QueryOutcome:
        start = self._clock()
        try:
            if query_type is QueryType.READ or (
                query_type is QueryType.MIXED and query_id % 2 == 0
            ):
                await self._read()
            else:
                await self._write(query_id)
        except Exception as e:
            return QueryOutcome(
                success=False,
                duration_ms=(self._clock() - start) * 1000,
                error=str(e) or type(e).__name__,
            )
        return QueryOutcome(success=True, duration_ms=(self._clock() - start) * 1000)

    @beartype
    async def run_load_test(self, config: LoadTestConfig) -> LoadTestResult:
        """Issue batches of ``concurrency`` queries until the duration elapses."""
        logger.info(
            "Starting connection pool load test",
            extra={
                "duration_seconds": config.duration_seconds,
                "concurrency": config.concurrency,
                "query_type": config.query_type.value,
                "ramp_up": config.ramp_up,
            },
        )

        start = self._clock()
        deadline = start + config.duration_seconds
        outcomes: list[QueryOutcome] = []
        query_count = 0

        while self._clock() < deadline:
            batch = [
                self._run_query(config.query_type, query_count + i)
                for i in range(config.concurrency)
            ]
            query_count += config.concurrency
            outcomes.extend(await asyncio.gather(*batch))

            if config.ramp_up and query_count < config.concurrency * RAMP_UP_BATCHES:
                await self._sleep(self._ramp_up_delay)

        elapsed_ms = (self._clock() - start) * 1000
        result = self._summarize(outcomes, elapsed_ms)
        logger.info(
            "Load test completed",
            extra={
                "total_queries": result.total_queries,
                "fail_count": result.fail_count,
                "avg_ms": round(result.avg_ms),
                "qps": round(result.qps, 2),
            },
        )
        return result

    @staticmethod
    def _summarize(outcomes: list[QueryOutcome], elapsed_ms: float) -> LoadTestResult:
        total = len(outcomes)
        success_count = sum(1 for o in outcomes if o.success)
        fail_count = total - success_count
        durations = [o.duration_ms for o in outcomes]
        error_counts = Counter(o.error for o in outcomes if o.error is not None)

        qps = 0.0
        if total:
            # qps > 0 whenever queries ran
            qps = total / max(elapsed_ms, 1e-3) * 1000

        return LoadTestResult(
            success=fail_count == 0,
            duration_ms=elapsed_ms,
            total_queries=total,
            success_count=success_count,
            fail_count=fail_count,
            avg_ms=sum(durations) / total if total else 0.0,
            min_ms=min(durations, default=0.0),
            max_ms=max(durations, default=0.0),
            qps=qps,
            errors=[
                LoadTestErrorCount(message=message, count=count)
                for message, count in error_counts.items()
            ],
        )

    @beartype
    async def test_connection_limits(self) -> ConnectionLimitResult:
        """Open dedicated connections until the server refuses one, then close them all."""
        logger.info("Testing connection pool limits")
        opened: list[asyncpg.Connection] = []
        errors: list[str] = []

        try:
            for _ in range(self._max_connection_attempts):
                try:
                    opened.append(await self._database.open_connection())
                except Exception as e:
                    exhausted = ResourceExhaustionError(len(opened), e)
                    logger.info(
                        "Connection limit reached",
                        extra={"connections": exhausted.opened, "error": str(exhausted)},
                    )
                    errors.append(str(exhausted))
                    break
        finally:
            await self._close_all(opened)

        logger.info("Connection limit test finished", extra={"connections": len(opened)})
        return ConnectionLimitResult(
            max_connections=len(opened),
            failure_point=len(opened) if errors else None,
            errors=errors,
        )

    @staticmethod
    async def _close_all(connections: list[asyncpg.Connection]) -> None:
        results = await asyncio.gather(
            *(conn.close() for conn in connections), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.warning("Failed to close probe connection", extra={"error": str(result)})

    @beartype
    async def monitor_pool_health(self, duration_seconds: float) -> PoolHealthReport:
        """Sample active and idle connections once per interval for ``duration_seconds``."""
        logger.info("Monitoring connection pool health", extra={"duration_seconds": duration_seconds})
        deadline = self._clock() + duration_seconds
        samples: list[PoolHealthSample] = []
        failed = 0

        while self._clock() < deadline:
            try:
                row = await self._database.fetchrow(
                    POOL_ACTIVITY_QUERY, model="PoolHealth", action="sample"
                )
            except Exception as e:
                failed += 1
                logger.error("Failed to query connection stats", extra={"error": str(e)})
            else:
                samples.append(
                    PoolHealthSample(
                        timestamp=datetime.now(timezone.utc),
                        active_connections=int(row["active"] or 0) if row else 0,
                        idle_connections=int(row["idle"] or 0) if row else 0,
                    )
                )
            await self._sleep(self._sample_interval)

        return PoolHealthReport(samples=samples, failed_samples=failed)

    @staticmethod
    @beartype
    def generate_report(result: LoadTestResult) -> str:
        """Plain text summary of a load test."""
        success_pct = (
            round(result.success_count / result.total_queries * 100)
            if result.total_queries
            else 0
        )
        lines = [
            "=== Connection Pool Load Test Report ===",
            "",
            f"Duration: {round(result.duration_ms)}ms",
            f"Total Queries: {result.total_queries}",
            f"Successful: {result.success_count} ({success_pct}%)",
            f"Failed: {result.fail_count}",
            "",
            "--- Performance ---",
            f"Queries/Second: {round(result.qps, 2)}",
            f"Avg Response Time: {round(result.avg_ms)}ms",
            f"Min Response Time: {round(result.min_ms)}ms",
            f"Max Response Time: {round(result.max_ms)}ms",
            "",
        ]

        if result.errors:
            lines.append("--- Errors ---")
            lines.extend(f"{e.message}: {e.count} occurrences" for e in result.errors)
            lines.append("")

        return "\n".join(lines)
