# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Slow query monitoring as a query interceptor on :class:`Database`."""

import asyncio
import json
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from attrs import evolve, field, frozen
from beartype import beartype

from ..core.alerts import AlertNotifier
from ..core.config import Settings
from ..core.database import CallNext, Database, QueryParams
from ..core.errors import ConfigurationError
from ..core.logging_utils import get_logger
from ..schemas.monitoring import SlowQueryReport, SlowQuerySummary

REDACTED = "***"
TRUNCATION_MARKER = "... (truncated)"
UNSANITIZABLE = "Unable to sanitize args"

INSERT_SYSTEM_LOG = """
    INSERT INTO system_logs (level, message, component, metadata)
    VALUES ($1, $2, $3, $4::jsonb)
"""

logger = get_logger(__name__)


def _check_thresholds(instance: "SlowQueryConfig", attribute: Any, value: float) -> None:
    if value < instance.threshold_ms:
        raise ConfigurationError(
            f"Critical threshold ({value}ms) must be >= warning threshold "
            f"({instance.threshold_ms}ms)"
        )


@frozen
class SlowQueryConfig:
    """Thresholds and persistence switch for the monitor."""

    threshold_ms: float = field(default=1000.0)
    critical_threshold_ms: float = field(default=5000.0, validator=_check_thresholds)
    log_to_database: bool = field(default=True)
    alert_on_critical: bool = field(default=True)
    max_args_length: int = field(default=1000)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SlowQueryConfig":
        """Thresholds from environment configuration."""
        return cls(
            threshold_ms=settings.slow_query_threshold_ms,
            critical_threshold_ms=settings.slow_query_critical_ms,
            log_to_database=settings.slow_query_log_to_database,
        )


@frozen
class QueryStatistic:
    """Running figures for one ``{model}.{action}`` bucket; replaced, never mutated."""

    count: int = field()
    total_duration_ms: float = field()
    avg_duration_ms: float = field()
    max_duration_ms: float = field()
    min_duration_ms: float = field()

    @classmethod
    def first(cls, duration_ms: float) -> "QueryStatistic":
        return cls(
            count=1,
            total_duration_ms=duration_ms,
            avg_duration_ms=duration_ms,
            max_duration_ms=duration_ms,
            min_duration_ms=duration_ms,
        )

    def record(self, duration_ms: float) -> "QueryStatistic":
        count = self.count + 1
        return evolve(
            self,
            count=count,
            total_duration_ms=self.total_duration_ms + duration_ms,
            avg_duration_ms=(self.avg_duration_ms * self.count + duration_ms) / count,
            max_duration_ms=max(self.max_duration_ms, duration_ms),
            min_duration_ms=min(self.min_duration_ms, duration_ms),
        )


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if "password" in str(key).lower() else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


@beartype
def sanitize_args(args: Any, *, max_length: int = 1000) -> Any:
    """Redact password fields at any depth and truncate large payloads.

    Returns None for empty arguments, the redacted structure when its JSON
    form fits in ``max_length`` characters, and otherwise the JSON text cut at
    ``max_length`` followed by ``"... (truncated)"``.
    """
    if not args:
        return None

    try:
        sanitized = _redact(json.loads(json.dumps(args, default=str)))
        text = json.dumps(sanitized)
    except (TypeError, ValueError):
        return UNSANITIZABLE

    if len(text) > max_length:
        return text[:max_length] + TRUNCATION_MARKER
    return sanitized


class SystemLogSink:
    """Persist slow query records into the ``system_logs`` table.

    Writes take a raw pooled connection so they are not themselves observed
    by the interceptors of the database they go to.
    """

    def __init__(self, database: Database, *, component: str = "SlowQueryMonitor") -> None:
        self._database = database
        self._component = component

    async def write(self, entry: dict[str, Any]) -> None:
        """Insert one WARNING row describing a slow query."""
        message = f"Slow query: {entry['model']}.{entry['action']}"
        async with self._database.acquire() as conn:
            await conn.execute(
                INSERT_SYSTEM_LOG,
                "WARNING",
                message,
                self._component,
                json.dumps(entry, default=str),
            )


class SlowQueryMonitor:
    """Time every call through the query chokepoint and keep per-bucket statistics.

    Install with ``database.add_interceptor(monitor.intercept)``. Query errors
    are logged and re-raised unchanged; persistence and alerting failures are
    logged and never reach the caller.
    """

    def __init__(
        self,
        config: SlowQueryConfig | None = None,
        *,
        sink: SystemLogSink | None = None,
        notifier: AlertNotifier | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        """Initialize monitor; ``clock`` returns seconds."""
        self.config = config or SlowQueryConfig()
        self._sink = sink
        self._notifier = notifier or AlertNotifier()
        self._clock = clock
        self._stats: dict[str, QueryStatistic] = {}
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    async def intercept(self, params: QueryParams, call_next: CallNext) -> Any:
        """Query interceptor: measure, record, report, pass the result through."""
        start = self._clock()
        try:
            result = await call_next()
        except Exception as e:
            logger.error(
                "Query error",
                extra={
                    "model": params.model,
                    "action": params.action,
                    "duration_ms": (self._clock() - start) * 1000,
                    "error": str(e),
                },
            )
            raise

        duration_ms = (self._clock() - start) * 1000
        if duration_ms >= self.config.threshold_ms:
            await self._handle_slow_query(params, duration_ms)
        await self._update_stats(f"{params.model}.{params.action}", duration_ms)
        return result

    async def _handle_slow_query(self, params: QueryParams, duration_ms: float) -> None:
        entry = {
            "model": params.model,
            "action": params.action,
            "duration_ms": duration_ms,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "args": sanitize_args(params.args, max_length=self.config.max_args_length),
        }
        logger.warning("Slow query detected", extra={"slow_query": entry})

        if duration_ms >= self.config.critical_threshold_ms:
            logger.error("Critically slow query detected", extra={"slow_query": entry})
            if self.config.alert_on_critical:
                await self._notifier.notify(
                    "Critically slow query",
                    {**entry, "threshold_ms": self.config.critical_threshold_ms},
                )

        if self.config.log_to_database and self._sink is not None:
            task = asyncio.create_task(self._persist(self._sink, entry))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _persist(self, sink: SystemLogSink, entry: dict[str, Any]) -> None:
        try:
            await sink.write(entry)
        except Exception as e:
            logger.error(
                "Failed to log slow query to database",
                extra={"model": entry["model"], "action": entry["action"], "error": str(e)},
            )

    async def _update_stats(self, key: str, duration_ms: float) -> None:
        async with self._lock:
            current = self._stats.get(key)
            self._stats[key] = (
                QueryStatistic.first(duration_ms)
                if current is None
                else current.record(duration_ms)
            )

    @beartype
    def get_query_stats(self) -> dict[str, QueryStatistic]:
        """Snapshot of every bucket."""
        return dict(self._stats)

    @beartype
    def get_top_slow_queries(self, limit: int = 10) -> list[SlowQuerySummary]:
        """Buckets ordered by average duration, slowest first."""
        ranked = sorted(
            self._stats.items(), key=lambda item: item[1].avg_duration_ms, reverse=True
        )
        return [
            SlowQuerySummary(
                query=key,
                avg_duration_ms=stat.avg_duration_ms,
                max_duration_ms=stat.max_duration_ms,
                count=stat.count,
            )
            for key, stat in ranked[:limit]
        ]

    @beartype
    def get_report(self) -> SlowQueryReport:
        """Aggregate report over all buckets."""
        stats = list(self._stats.values())
        avg = sum(s.avg_duration_ms for s in stats) / len(stats) if stats else 0.0
        return SlowQueryReport(
            total_queries=sum(s.count for s in stats),
            slow_queries=sum(1 for s in stats if s.avg_duration_ms >= self.config.threshold_ms),
            avg_query_duration_ms=float(round(avg)),
            top_slow_queries=self.get_top_slow_queries(10),
        )

    @beartype
    async def reset_stats(self) -> None:
        """Drop every bucket at once."""
        async with self._lock:
            self._stats = {}
        logger.info("Slow query statistics reset")

    @beartype
    async def drain(self) -> None:
        """Wait for in-flight persistence tasks (call before closing pools)."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
