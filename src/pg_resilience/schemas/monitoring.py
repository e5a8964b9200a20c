"""Slow query and replica health report schemas."""

from pydantic import Field

from ..models.base import BaseModelConfig


class SlowQuerySummary(BaseModelConfig):
    """One ``{model}.{action}`` bucket as shown in reports."""

    query: str = Field(..., description="Bucket key, e.g. 'SystemLog.count'")
    avg_duration_ms: float = Field(..., ge=0)
    max_duration_ms: float = Field(..., ge=0)
    count: int = Field(..., ge=1)


class SlowQueryReport(BaseModelConfig):
    """Aggregated slow query monitoring report."""

    total_queries: int = Field(default=0, ge=0)
    slow_queries: int = Field(
        default=0, ge=0, description="Buckets whose average exceeds the threshold"
    )
    avg_query_duration_ms: float = Field(default=0.0, ge=0)
    top_slow_queries: list[SlowQuerySummary] = Field(default_factory=list)


class ReplicaHealth(BaseModelConfig):
    """Liveness and lag of one replica."""

    index: int = Field(..., ge=0)
    healthy: bool = Field(...)
    lag_seconds: float | None = Field(
        default=None, description="Seconds since last replay; None when unavailable"
    )
    error: str | None = Field(default=None)


class ReplicaHealthReport(BaseModelConfig):
    """Health of every registered replica."""

    healthy: int = Field(default=0, ge=0)
    unhealthy: int = Field(default=0, ge=0)
    replicas: list[ReplicaHealth] = Field(default_factory=list)
