"""
Prometheus metrics 定义。

所有自定义指标集中定义，引擎通过 `from src.observability import metrics` 引用。
注意与 Metrics Engine（用户侧浏览/下载计数）区分：这里是服务自身的运行指标。
"""

from prometheus_client import Counter, Gauge, Histogram


class _Metrics:
    """集中管理所有 Prometheus 指标"""

    def __init__(self):
        # ── Sync ──
        self.sync_refresh_total = Counter(
            "index_sync_refresh_total",
            "refresh_record 调用结果",
            ["outcome"],  # changed / unchanged / not_found / error
        )
        self.sync_staleness_checks_total = Counter(
            "index_sync_staleness_checks_total",
            "check_staleness 调用结果",
            ["outcome"],  # fresh / stale / not_indexed / error
        )
        self.sync_fetch_duration_seconds = Histogram(
            "index_sync_fetch_duration_seconds",
            "权威仓库拉取延迟 (秒)",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )
        self.freshness_scan_records_total = Counter(
            "index_freshness_scan_records_total",
            "freshness scan 处理的记录数",
            ["tier", "outcome"],
        )
        self.freshness_scan_running = Gauge(
            "index_freshness_scan_running",
            "freshness scan 是否正在运行 (0/1)",
        )

        # ── Engagement metrics ──
        self.metric_events_total = Counter(
            "index_metric_events_total",
            "写入 Counter Store 的互动事件数",
            ["type"],  # view / download / dwellTime / searchClick / searchDownload
        )
        self.metrics_flushed_subjects_total = Counter(
            "index_metrics_flushed_subjects_total",
            "flush_to_database 持久化的 subject 数",
        )

        # ── Citation graph ──
        self.citation_edges_total = Counter(
            "index_citation_edges_total",
            "citation upsert 结果",
            ["outcome"],  # upserted / skipped
        )

        # ── Stores ──
        self.store_errors_total = Counter(
            "index_store_errors_total",
            "后端存储错误数",
            ["store", "operation"],  # store: primary / counter / graph / repository
        )


# 单例
metrics = _Metrics()
