"""
Sync Engine：让本地 IndexedRecord 与权威仓库保持一致。

过期判断只看 content hash，不看时间戳（各 PDS 的时钟不可信）。
refresh 流程为 读取 → 比较 → 有变化才写；并发 refresh 同一 uri 会收敛到同一 hash，
无需加锁。引擎内部不重试，仓库调用统一经过调用方注入的 ResiliencePolicy。

    engine = SyncEngine(store, repository)
    res = engine.refresh_record("at://did:plc:abc/pub.chive.eprint.submission/xyz")
    if res.ok and res.value.changed:
        ...
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

from src.core.errors import IndexServiceError, NotFoundError, TransientFetchError, ValidationError
from src.core.result import Result
from src.db.models import now_ms as _now_ms
from src.log import get_logger
from src.observability import metrics, tracer
from src.sync.models import (
    AuthoritativeRecord,
    DeletionSource,
    IndexedRecord,
    PDSRegistryEntry,
    RefreshOutcome,
    StalenessCheckResult,
)
from src.sync.pds_registry import PDSRegistry
from src.sync.record_store import SqlRecordStore
from src.sync.records import RECORD_KINDS, parse_at_uri, parse_record, parse_record_uri
from src.sync.repository_client import RepositoryClient
from src.sync.resilience import PASS_THROUGH, ResiliencePolicy

logger = get_logger(__name__)

NOT_INDEXED = "not indexed"
DEFAULT_DETECT_LIMIT = 100


class SyncEngine:
    def __init__(
        self,
        store: SqlRecordStore,
        repository: RepositoryClient,
        registry: Optional[PDSRegistry] = None,
        policy: ResiliencePolicy = PASS_THROUGH,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store = store
        self.repository = repository
        self.registry = registry
        self.policy = policy
        self._clock = clock

    # ============================================================
    # 内部
    # ============================================================

    def _fetch(self, uri: str, pds_endpoint: Optional[str]) -> Optional[AuthoritativeRecord]:
        t0 = time.perf_counter()
        try:
            return self.policy.call(lambda: self.repository.get_record(uri, pds_endpoint or None))
        except TransientFetchError:
            metrics.store_errors_total.labels(store="repository", operation="get_record").inc()
            raise
        finally:
            metrics.sync_fetch_duration_seconds.observe(time.perf_counter() - t0)

    # ============================================================
    # 核心协议
    # ============================================================

    def track_source(self, uri: str, content_hash: str, pds_endpoint: str) -> Result[None]:
        """为已索引记录登记来源；不会创建记录。"""
        parse_at_uri(uri)
        if not content_hash:
            raise ValidationError("content hash is required", field="hash")
        try:
            found = self.store.set_provenance(uri, content_hash, (pds_endpoint or "").rstrip("/"), self._clock())
        except IndexServiceError as e:
            return Result.failure(e)
        if not found:
            return Result.failure(NotFoundError("record", uri))
        return Result.success(None)

    def check_staleness(self, uri: str) -> StalenessCheckResult:
        """uri 格式错误、未索引、拉取失败都通过 error 字段返回，不抛异常。"""
        try:
            parse_record_uri(uri)
        except ValidationError as e:
            metrics.sync_staleness_checks_total.labels(outcome="invalid").inc()
            return StalenessCheckResult(uri=str(uri), error=str(e))
        with tracer.start_as_current_span("sync.check_staleness") as span:
            span.set_attribute("uri", uri)
            try:
                indexed = self.store.get(uri)
            except IndexServiceError as e:
                metrics.sync_staleness_checks_total.labels(outcome="error").inc()
                return StalenessCheckResult(uri=uri, error=str(e))
            if indexed is None:
                metrics.sync_staleness_checks_total.labels(outcome="not_indexed").inc()
                return StalenessCheckResult(uri=uri, error=NOT_INDEXED)

            try:
                fresh = self._fetch(uri, indexed.pds_endpoint)
            except IndexServiceError as e:
                logger.warning("staleness check fetch failed for %s: %s", uri, e)
                metrics.sync_staleness_checks_total.labels(outcome="error").inc()
                return StalenessCheckResult(uri=uri, indexed_hash=indexed.content_hash, error=str(e))

            if fresh is None:
                metrics.sync_staleness_checks_total.labels(outcome="error").inc()
                return StalenessCheckResult(
                    uri=uri, indexed_hash=indexed.content_hash, error="record not found in repository"
                )

            stale = fresh.cid != indexed.content_hash
            metrics.sync_staleness_checks_total.labels(outcome="stale" if stale else "fresh").inc()
            span.set_attribute("is_stale", stale)
            return StalenessCheckResult(
                uri=uri,
                indexed_hash=indexed.content_hash,
                authoritative_hash=fresh.cid,
                is_stale=stale,
            )

    def refresh_record(self, uri: str) -> Result[RefreshOutcome]:
        """
        从权威仓库重新拉取。
        - uri 格式错误 → ValidationError（以 failure 返回）
        - 本地未索引 / 仓库 not-found → NotFoundError，本地存储不动
        - hash 未变 → changed=False，仅更新 last_synced_at
        - hash 变化 → 原子写入新 hash + indexed_at
        """
        try:
            parse_record_uri(uri)
        except ValidationError as e:
            metrics.sync_refresh_total.labels(outcome="invalid").inc()
            return Result.failure(e)
        with tracer.start_as_current_span("sync.refresh_record") as span:
            span.set_attribute("uri", uri)
            try:
                indexed = self.store.get(uri)
                if indexed is None:
                    metrics.sync_refresh_total.labels(outcome="not_found").inc()
                    return Result.failure(NotFoundError("record", uri))

                fresh = self._fetch(uri, indexed.pds_endpoint)
                if fresh is None:
                    logger.info("refresh: %s not found in repository, leaving index untouched", uri)
                    metrics.sync_refresh_total.labels(outcome="not_found").inc()
                    return Result.failure(NotFoundError("repository record", uri))

                now = self._clock()
                if fresh.cid == indexed.content_hash:
                    self.store.touch_synced(uri, now)
                    metrics.sync_refresh_total.labels(outcome="unchanged").inc()
                    return Result.success(RefreshOutcome(
                        refreshed=True, changed=False,
                        previous_hash=indexed.content_hash, current_hash=fresh.cid,
                    ))

                logger.info("refresh: content changed for %s (%s -> %s)", uri, indexed.content_hash, fresh.cid)
                self.store.update_hash(uri, fresh.cid, now)
                metrics.sync_refresh_total.labels(outcome="changed").inc()
                span.set_attribute("changed", True)
                return Result.success(RefreshOutcome(
                    refreshed=True, changed=True,
                    previous_hash=indexed.content_hash, current_hash=fresh.cid,
                ))
            except IndexServiceError as e:
                logger.error("refresh failed for %s: %s", uri, e)
                metrics.sync_refresh_total.labels(outcome="error").inc()
                return Result.failure(e)

    def detect_stale_records(
        self,
        max_age_ms: int,
        limit: int = DEFAULT_DETECT_LIMIT,
        within_ms: Optional[int] = None,
        by_synced: bool = False,
    ) -> List[IndexedRecord]:
        """
        indexed_at 早于 now - max_age_ms 的未删除记录（最旧优先）。
        尽力而为：不在列表中不代表新鲜。within_ms 给分层扫描用：只取 within_ms 以内的记录。
        by_synced=True 时改按 last_synced_at 计算年龄，确认未变的记录会让位给其余记录。
        """
        if max_age_ms < 0:
            raise ValidationError("max_age_ms must be >= 0", field="max_age_ms")
        if limit < 1:
            raise ValidationError("limit must be >= 1", field="limit")
        now = self._clock()
        newer_than = now - within_ms if within_ms is not None else None
        try:
            return self.store.list_stale(now - max_age_ms, limit, newer_than_ms=newer_than, by_synced=by_synced)
        except IndexServiceError as e:
            logger.error("detect_stale_records failed: %s", e)
            return []

    # ============================================================
    # 协议包装：index / delete / register
    # ============================================================

    def index_record(self, uri: str, cid: str, pds_endpoint: str, record: Dict[str, Any]) -> Result[IndexedRecord]:
        """入口校验后 upsert；未识别的记录形状抛 ValidationError。"""
        at = parse_at_uri(uri)
        if not cid:
            raise ValidationError("cid is required", field="cid")
        parsed = parse_record(at.collection, record)
        try:
            stored = self.store.upsert(
                uri=uri,
                content_hash=cid,
                pds_endpoint=(pds_endpoint or "").rstrip("/"),
                collection=at.collection,
                record_kind=RECORD_KINDS[at.collection],
                title=parsed.display_title,
                record=record,
                now_ms=self._clock(),
            )
        except IndexServiceError as e:
            return Result.failure(e)
        logger.info("indexed %s (cid=%s)", uri, cid)
        return Result.success(stored)

    def delete_record(self, uri: str) -> Result[None]:
        parse_at_uri(uri)
        try:
            removed = self.store.delete(uri)
        except IndexServiceError as e:
            return Result.failure(e)
        if not removed:
            return Result.failure(NotFoundError("record", uri))
        logger.info("deleted %s", uri)
        return Result.success(None)

    def register_pds(self, endpoint_url: str, source: str = "manual") -> Result[PDSRegistryEntry]:
        if self.registry is None:
            raise RuntimeError("SyncEngine was built without a PDS registry")
        try:
            return Result.success(self.registry.register(endpoint_url, source))
        except ValidationError:
            raise
        except IndexServiceError as e:
            return Result.failure(e)

    # ============================================================
    # 软删除
    # ============================================================

    def mark_as_deleted(self, uri: str, source: DeletionSource = DeletionSource.ADMIN) -> Result[None]:
        parse_at_uri(uri)
        source = DeletionSource(source)
        try:
            marked = self.store.mark_deleted(uri, source.value, self._clock())
        except IndexServiceError as e:
            return Result.failure(e)
        if marked is None:
            return Result.failure(NotFoundError("record", uri))
        if marked:
            logger.info("soft-deleted %s (source=%s)", uri, source.value)
        return Result.success(None)

    def restore_record(self, uri: str) -> Result[None]:
        parse_at_uri(uri)
        try:
            restored = self.store.restore(uri)
        except IndexServiceError as e:
            return Result.failure(e)
        if not restored:
            return Result.failure(NotFoundError("deleted record", uri))
        logger.info("restored %s", uri)
        return Result.success(None)

    def get_deleted_records(self, grace_period_ms: int, limit: int = DEFAULT_DETECT_LIMIT) -> List[str]:
        """软删除超过宽限期的 uri，供清理任务硬删除。"""
        if grace_period_ms < 0:
            raise ValidationError("grace_period_ms must be >= 0", field="grace_period_ms")
        try:
            return self.store.list_deleted(self._clock() - grace_period_ms, max(1, int(limit)))
        except IndexServiceError as e:
            logger.error("get_deleted_records failed: %s", e)
            return []
