"""
Metrics Engine：浏览/下载等互动事件计数，聚合视图与 trending。

Counter Store 键布局（prefix 默认 eprint:metrics:）：
    views:{uri}              浏览计数                 TTL 1 年
    unique:{uri}             浏览者基数（HLL）        TTL 1 年
    downloads:{uri}          下载计数                 TTL 1 年
    unique:downloads:{uri}   下载者基数（HLL）        TTL 1 年
    views:24h|7d|30d:{uri}   有序集合，score=写入毫秒  TTL = 窗口长度，写入时顺带裁剪窗口外成员
    dwell:total:{uri} / dwell:count:{uri} / search:clicks:{uri} / search:downloads:{uri}

每次变更是一个原子 batch（MULTI/EXEC）；引擎本身不持锁、不跨调用保存状态。
读路径永不因数据缺失或存储错误抛出：缺失即 0。
"""

from __future__ import annotations

import uuid
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from src.core.errors import IndexServiceError, ValidationError
from src.core.result import Result
from src.db.models import RecordMetricsRow, now_ms as _now_ms
from src.log import get_logger
from src.metrics.counter_store import CounterBatch, CounterStore
from src.metrics.models import AggregatedMetrics, MetricOperation, MetricType, TrendingEntry, TrendingWindow
from src.metrics.snapshot_store import SqlMetricsSnapshotStore
from src.observability import metrics, tracer

logger = get_logger(__name__)

DEFAULT_PREFIX = "eprint:metrics:"
LIFETIME_TTL_SECONDS = 365 * 24 * 3600
WINDOWS = (TrendingWindow.H24, TrendingWindow.D7, TrendingWindow.D30)


def _validate_uri(uri: str) -> None:
    if not isinstance(uri, str) or "://" not in uri or any(c.isspace() for c in uri):
        raise ValidationError(f"invalid subject uri: {uri!r}", field="uri")


def _to_int(value) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class MetricsEngine:
    def __init__(
        self,
        store: CounterStore,
        snapshots: Optional[SqlMetricsSnapshotStore] = None,
        *,
        key_prefix: str = DEFAULT_PREFIX,
        lifetime_ttl_seconds: int = LIFETIME_TTL_SECONDS,
        scan_count: int = 100,
        trending_max_limit: int = 100,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store = store
        self.snapshots = snapshots
        self.prefix = key_prefix
        self.lifetime_ttl = lifetime_ttl_seconds
        self.scan_count = scan_count
        self.trending_max_limit = trending_max_limit
        self._clock = clock

    @classmethod
    def from_settings(cls, store: CounterStore, snapshots: Optional[SqlMetricsSnapshotStore], cfg) -> "MetricsEngine":
        return cls(
            store,
            snapshots,
            key_prefix=cfg.key_prefix,
            lifetime_ttl_seconds=cfg.lifetime_ttl_seconds,
            scan_count=cfg.scan_count,
            trending_max_limit=cfg.trending_max_limit,
        )

    def key(self, kind: str, uri: str) -> str:
        return f"{self.prefix}{kind}:{uri}"

    # ============================================================
    # batch 组装
    # ============================================================

    def _stage_view(self, batch: CounterBatch, uri: str, actor_id: Optional[str], now: int) -> None:
        batch.incr(self.key("views", uri))
        batch.expire(self.key("views", uri), self.lifetime_ttl)
        if actor_id:
            batch.pfadd(self.key("unique", uri), actor_id)
            batch.expire(self.key("unique", uri), self.lifetime_ttl)
        member = f"{now}:{uuid.uuid4().hex[:8]}"
        for window in WINDOWS:
            wkey = self.key(f"views:{window.value}", uri)
            batch.zadd(wkey, member, now)
            batch.zremrangebyscore(wkey, "-inf", f"({now - window.ms}")
            batch.expire(wkey, window.seconds)

    def _stage_download(self, batch: CounterBatch, uri: str, actor_id: Optional[str]) -> None:
        batch.incr(self.key("downloads", uri))
        batch.expire(self.key("downloads", uri), self.lifetime_ttl)
        if actor_id:
            batch.pfadd(self.key("unique:downloads", uri), actor_id)
            batch.expire(self.key("unique:downloads", uri), self.lifetime_ttl)

    def _stage_dwell(self, batch: CounterBatch, uri: str, duration_ms: int) -> None:
        batch.incr(self.key("dwell:total", uri), duration_ms)
        batch.incr(self.key("dwell:count", uri))
        batch.expire(self.key("dwell:total", uri), self.lifetime_ttl)
        batch.expire(self.key("dwell:count", uri), self.lifetime_ttl)

    def _stage_simple(self, batch: CounterBatch, kind: str, uri: str) -> None:
        batch.incr(self.key(kind, uri))
        batch.expire(self.key(kind, uri), self.lifetime_ttl)

    def _stage(self, batch: CounterBatch, op: MetricOperation, now: int) -> None:
        if op.type == MetricType.VIEW:
            self._stage_view(batch, op.uri, op.actor_id, now)
        elif op.type == MetricType.DOWNLOAD:
            self._stage_download(batch, op.uri, op.actor_id)
        elif op.type == MetricType.DWELL_TIME:
            self._stage_dwell(batch, op.uri, int(op.duration_ms or 0))
        elif op.type == MetricType.SEARCH_CLICK:
            self._stage_simple(batch, "search:clicks", op.uri)
        elif op.type == MetricType.SEARCH_DOWNLOAD:
            self._stage_simple(batch, "search:downloads", op.uri)

    @staticmethod
    def _validate_op(op: MetricOperation) -> None:
        if not isinstance(op.type, MetricType):
            raise ValidationError(f"unknown metric type: {op.type!r}", field="type")
        _validate_uri(op.uri)
        if op.type == MetricType.DWELL_TIME:
            if op.duration_ms is None or int(op.duration_ms) < 0:
                raise ValidationError("dwellTime requires a non-negative duration_ms", field="duration_ms")

    def _commit(self, ops: Sequence[MetricOperation]) -> Result[None]:
        now = self._clock()
        batch = self.store.batch()
        for op in ops:
            self._stage(batch, op, now)
        try:
            batch.execute()
        except IndexServiceError as e:
            logger.error("metrics write failed (%d ops): %s", len(ops), e)
            return Result.failure(e)
        for op in ops:
            metrics.metric_events_total.labels(type=op.type.value).inc()
        return Result.success(None)

    # ============================================================
    # 写入
    # ============================================================

    def record_view(self, uri: str, actor_id: Optional[str] = None) -> Result[None]:
        op = MetricOperation(MetricType.VIEW, uri, actor_id)
        self._validate_op(op)
        return self._commit([op])

    def record_download(self, uri: str, actor_id: Optional[str] = None) -> Result[None]:
        op = MetricOperation(MetricType.DOWNLOAD, uri, actor_id)
        self._validate_op(op)
        return self._commit([op])

    def record_dwell_time(self, uri: str, duration_ms: int) -> Result[None]:
        op = MetricOperation(MetricType.DWELL_TIME, uri, duration_ms=duration_ms)
        self._validate_op(op)
        return self._commit([op])

    def record_search_click(self, uri: str) -> Result[None]:
        op = MetricOperation(MetricType.SEARCH_CLICK, uri)
        self._validate_op(op)
        return self._commit([op])

    def record_search_download(self, uri: str) -> Result[None]:
        op = MetricOperation(MetricType.SEARCH_DOWNLOAD, uri)
        self._validate_op(op)
        return self._commit([op])

    def batch_increment(self, operations: Iterable[MetricOperation]) -> Result[None]:
        """多条事件一次往返；整批先校验，任何一条不合法都不会触碰存储。"""
        ops = [MetricOperation.from_dict(o) if isinstance(o, dict) else o for o in operations]
        if not ops:
            return Result.success(None)
        for op in ops:
            self._validate_op(op)
        with tracer.start_as_current_span("metrics.batch_increment") as span:
            span.set_attribute("ops", len(ops))
            return self._commit(ops)

    # ============================================================
    # 读取
    # ============================================================

    def get_metrics(self, uri: str) -> AggregatedMetrics:
        _validate_uri(uri)
        now = self._clock()
        batch = self.store.batch()
        batch.get(self.key("views", uri))
        batch.pfcount(self.key("unique", uri))
        batch.get(self.key("downloads", uri))
        batch.pfcount(self.key("unique:downloads", uri))
        for window in WINDOWS:
            batch.zcount(self.key(f"views:{window.value}", uri), now - window.ms, "+inf")
        batch.get(self.key("dwell:total", uri))
        batch.get(self.key("dwell:count", uri))
        batch.get(self.key("search:clicks", uri))
        batch.get(self.key("search:downloads", uri))
        try:
            values = [_to_int(v) for v in batch.execute()]
        except IndexServiceError as e:
            logger.error("get_metrics failed for %s, returning zeros: %s", uri, e)
            return AggregatedMetrics()

        views, unique, downloads, unique_dl, v24, v7, v30, dwell_total, dwell_count, clicks, search_dl = values
        return AggregatedMetrics(
            total_views=views,
            unique_views=unique,
            total_downloads=downloads,
            views_24h=v24,
            views_7d=v7,
            views_30d=v30,
            unique_downloads=unique_dl,
            search_clicks=clicks,
            search_downloads=search_dl,
            dwell_count=dwell_count,
            avg_dwell_ms=(dwell_total / dwell_count) if dwell_count else 0.0,
        )

    def get_view_count(self, uri: str) -> int:
        _validate_uri(uri)
        try:
            batch = self.store.batch()
            batch.get(self.key("views", uri))
            (value,) = batch.execute()
        except IndexServiceError as e:
            logger.error("get_view_count failed for %s: %s", uri, e)
            return 0
        return _to_int(value)

    def get_trending(self, window: str, limit: int = 10) -> List[TrendingEntry]:
        """扫描 views:{window}:* ，统计窗口内条目数，按分数降序、uri 升序取前 limit。"""
        try:
            win = TrendingWindow(window)
        except ValueError:
            raise ValidationError(f"window must be one of 24h/7d/30d, got {window!r}", field="window") from None
        if not isinstance(limit, int) or not (1 <= limit <= self.trending_max_limit):
            raise ValidationError(f"limit must be in 1..{self.trending_max_limit}", field="limit")

        head = self.key(f"views:{win.value}", "")
        now = self._clock()
        with tracer.start_as_current_span("metrics.get_trending") as span:
            span.set_attribute("window", win.value)
            try:
                uris = list(dict.fromkeys(k[len(head):] for k in self.store.scan_keys(head + "*", self.scan_count)))
                if not uris:
                    return []
                batch = self.store.batch()
                for uri in uris:
                    batch.zcount(self.key(f"views:{win.value}", uri), now - win.ms, "+inf")
                counts = batch.execute()
            except IndexServiceError as e:
                logger.error("get_trending(%s) failed, returning empty list: %s", win.value, e)
                return []

        entries = [TrendingEntry(uri, _to_int(c)) for uri, c in zip(uris, counts) if _to_int(c) > 0]
        entries.sort(key=lambda e: (-e.score, e.subject_uri))
        return entries[:limit]

    # ============================================================
    # 持久化
    # ============================================================

    def _subject_pages(self) -> Iterable[List[str]]:
        head = self.key("views", "")
        windowed = tuple(f"{w.value}:" for w in WINDOWS)
        page: List[str] = []
        seen: set = set()
        for key in self.store.scan_keys(head + "*", self.scan_count):
            uri = key[len(head):]
            if uri.startswith(windowed) or uri in seen:
                continue
            seen.add(uri)
            page.append(uri)
            if len(page) >= self.scan_count:
                yield page
                page = []
        if page:
            yield page

    def _snapshot_page(self, uris: List[str], now: int) -> List[RecordMetricsRow]:
        batch = self.store.batch()
        for uri in uris:
            batch.get(self.key("views", uri))
            batch.pfcount(self.key("unique", uri))
            batch.get(self.key("downloads", uri))
            batch.pfcount(self.key("unique:downloads", uri))
        values = batch.execute()
        rows: List[RecordMetricsRow] = []
        for i, uri in enumerate(uris):
            views, unique, downloads, unique_dl = values[i * 4:(i + 1) * 4]
            rows.append(RecordMetricsRow(
                uri=uri,
                total_views=_to_int(views),
                unique_views=_to_int(unique),
                total_downloads=_to_int(downloads),
                unique_downloads=_to_int(unique_dl),
                flushed_at=now,
            ))
        return rows

    def flush_to_database(self) -> Result[int]:
        """
        扫描 views:{uri} 计数，把每个 subject 的聚合快照写入 record_metrics。
        返回成功写入的 subject 数；单页/单条失败只会降低计数，不会抛出。
        """
        if self.snapshots is None:
            raise RuntimeError("MetricsEngine was built without a snapshot store")
        now = self._clock()
        flushed = 0
        with tracer.start_as_current_span("metrics.flush_to_database") as span:
            try:
                for uris in self._subject_pages():
                    try:
                        rows = self._snapshot_page(uris, now)
                    except IndexServiceError as e:
                        logger.warning("flush: skipping page of %d subjects: %s", len(uris), e)
                        continue
                    flushed += self.snapshots.upsert_many(rows)
            except IndexServiceError as e:
                logger.error("flush: counter scan failed after %d subjects: %s", flushed, e)
                if flushed == 0:
                    return Result.failure(e)
            span.set_attribute("flushed", flushed)
        metrics.metrics_flushed_subjects_total.inc(flushed)
        logger.info("flushed metrics for %d subjects", flushed)
        return Result.success(flushed)
