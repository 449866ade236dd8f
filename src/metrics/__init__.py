"""
src/metrics: engagement counters (views / downloads / windows) on the Counter Store.

Usage:
    from src.metrics import MetricsEngine, InMemoryCounterStore
    engine = MetricsEngine(InMemoryCounterStore())
    engine.record_view("at://did:plc:abc/pub.chive.eprint.submission/1", actor_id="did:plc:reader")
"""

from src.metrics.counter_store import (
    CounterBatch,
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
)
from src.metrics.metrics_engine import MetricsEngine
from src.metrics.models import AggregatedMetrics, MetricOperation, MetricType, TrendingEntry, TrendingWindow
from src.metrics.snapshot_store import SqlMetricsSnapshotStore

__all__ = [
    "AggregatedMetrics",
    "CounterBatch",
    "CounterStore",
    "InMemoryCounterStore",
    "MetricOperation",
    "MetricType",
    "MetricsEngine",
    "RedisCounterStore",
    "SqlMetricsSnapshotStore",
    "TrendingEntry",
    "TrendingWindow",
]
