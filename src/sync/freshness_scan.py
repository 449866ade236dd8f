"""
Freshness scan：按上次同步距今的年龄分层扫描，逐条 refresh。

分层（按 last_synced_at 距今的年龄，互不重叠）：
  urgent  [urgent_ms, recent_ms)
  recent  [recent_ms, normal_ms)
  normal  [normal_ms, ∞)
每层最多 batch_size 条，最久未同步的优先，线程池并发 refresh。
refresh 无论是否变化都会更新 last_synced_at，所以记录在各轮之间轮转。
上一轮未结束时直接跳过。
仓库 not-found 默认只计数；tombstone_on_not_found=True 时软删除（pds_404）。
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Tuple

from src.core.errors import NotFoundError
from src.log import get_logger
from src.observability import metrics
from src.sync.models import DeletionSource, IndexedRecord, ScanRunResult
from src.sync.sync_engine import SyncEngine

logger = get_logger(__name__)

HOUR_MS = 3600 * 1000
DAY_MS = 24 * HOUR_MS


class FreshnessScanJob:
    def __init__(
        self,
        engine: SyncEngine,
        *,
        urgent_ms: int = 6 * HOUR_MS,
        recent_ms: int = DAY_MS,
        normal_ms: int = 7 * DAY_MS,
        batch_size: int = 500,
        max_workers: int = 4,
        tombstone_on_not_found: bool = False,
    ):
        if not (0 <= urgent_ms < recent_ms < normal_ms):
            raise ValueError("tier thresholds must satisfy urgent < recent < normal")
        self.engine = engine
        self.batch_size = max(1, batch_size)
        self.max_workers = max(1, max_workers)
        self.tombstone_on_not_found = tombstone_on_not_found
        self.tiers: List[Tuple[str, int, Optional[int]]] = [
            ("urgent", urgent_ms, recent_ms),
            ("recent", recent_ms, normal_ms),
            ("normal", normal_ms, None),
        ]
        self._running = threading.Lock()

    @classmethod
    def from_settings(cls, engine: SyncEngine, cfg) -> "FreshnessScanJob":
        return cls(
            engine,
            urgent_ms=cfg.urgent_ms,
            recent_ms=cfg.recent_ms,
            normal_ms=cfg.normal_ms,
            batch_size=cfg.batch_size,
            max_workers=cfg.scan_max_workers,
            tombstone_on_not_found=cfg.tombstone_on_not_found,
        )

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def run(self) -> ScanRunResult:
        if not self._running.acquire(blocking=False):
            logger.info("freshness scan already running, skipping this run")
            return ScanRunResult(skipped=True)

        t0 = time.perf_counter()
        result = ScanRunResult()
        metrics.freshness_scan_running.set(1)
        try:
            for tier, older_than_ms, within_ms in self.tiers:
                candidates = self.engine.detect_stale_records(
                    older_than_ms, self.batch_size, within_ms=within_ms, by_synced=True,
                )
                result.per_tier[tier] = len(candidates)
                if candidates:
                    logger.debug("tier %s: %d candidates", tier, len(candidates))
                    self._refresh_all(tier, candidates, result)
        finally:
            metrics.freshness_scan_running.set(0)
            self._running.release()

        result.duration_ms = int((time.perf_counter() - t0) * 1000)
        logger.info(
            "freshness scan done: checked=%d changed=%d unchanged=%d not_found=%d tombstoned=%d failed=%d (%dms)",
            result.checked, result.changed, result.unchanged, result.not_found,
            result.tombstoned, result.failed, result.duration_ms,
        )
        return result

    def _refresh_all(self, tier: str, records: List[IndexedRecord], result: ScanRunResult) -> None:
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(self.engine.refresh_record, r.uri): r.uri for r in records}
            for fut in as_completed(futures):
                uri = futures[fut]
                res = fut.result()
                result.checked += 1
                if res.ok:
                    outcome = "changed" if res.value.changed else "unchanged"
                    if res.value.changed:
                        result.changed += 1
                    else:
                        result.unchanged += 1
                elif isinstance(res.error, NotFoundError):
                    outcome = "not_found"
                    result.not_found += 1
                    if self.tombstone_on_not_found and self._tombstone(uri):
                        result.tombstoned += 1
                else:
                    outcome = "failed"
                    result.failed += 1
                metrics.freshness_scan_records_total.labels(tier=tier, outcome=outcome).inc()

    def _tombstone(self, uri: str) -> bool:
        res = self.engine.mark_as_deleted(uri, DeletionSource.PDS_404)
        if not res.ok:
            logger.warning("tombstone failed for %s: %s", uri, res.error)
        return res.ok
