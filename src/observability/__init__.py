"""
Observability 模块：OpenTelemetry tracing + Prometheus metrics。

用法：
    from src.observability import metrics, tracer

    with tracer.start_as_current_span("citation.upsert_batch"):
        ...

    metrics.citation_edges_total.labels(outcome="skipped").inc(n)
"""

from src.observability.metrics import metrics
from src.observability.tracing import tracer

__all__ = ["metrics", "tracer"]
