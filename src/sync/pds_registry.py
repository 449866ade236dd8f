"""
PDS 注册表：周期性扫描所覆盖的仓库端点（pds_registry 表）。

- register 幂等：URL 去掉末尾斜杠后 INSERT ... ON CONFLICT DO NOTHING
- 扫描失败按 2^min(failures, 4) 小时退避；连续失败 5 次标记 unreachable
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse

from sqlalchemy import func, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from src.core.errors import ValidationError
from src.db.models import PDSRegistryRow, now_ms as _now_ms
from src.log import get_logger
from src.sync.models import PDSRegistryEntry, PDSStatus

logger = get_logger(__name__)

HOUR_MS = 3600 * 1000
MAX_CONSECUTIVE_FAILURES = 5
DEFAULT_NEXT_SCAN_HOURS = 24
DISCOVERY_SOURCES = ("manual", "did_resolution", "firehose", "relay", "did_mention")


def normalize_pds_url(url: str) -> str:
    """只接受 http(s)，去掉首尾空白与末尾斜杠。"""
    raw = (url or "").strip()
    parsed = urlparse(raw)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"PDS endpoint must be an http(s) URL: {url!r}", field="endpoint_url")
    return raw.rstrip("/")


def _to_entry(row: PDSRegistryRow) -> PDSRegistryEntry:
    return PDSRegistryEntry(
        pds_url=row.pds_url,
        discovery_source=row.discovery_source,
        status=PDSStatus(row.status),
        discovered_at=row.discovered_at,
        last_scan_at=row.last_scan_at,
        next_scan_at=row.next_scan_at,
        consecutive_failures=row.consecutive_failures,
        last_error=row.last_error,
    )


class PDSRegistry:
    def __init__(self, engine: Engine, clock: Callable[[], int] = _now_ms):
        self.engine = engine
        self._clock = clock

    def _insert(self):
        if self.engine.dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert
        return insert(PDSRegistryRow)

    def register(self, endpoint_url: str, source: str = "manual") -> PDSRegistryEntry:
        url = normalize_pds_url(endpoint_url)
        if source not in DISCOVERY_SOURCES:
            raise ValidationError(f"unknown discovery source: {source}", field="source")
        stmt = (
            self._insert()
            .values(pds_url=url, discovery_source=source, status=PDSStatus.PENDING.value,
                    discovered_at=self._clock(), consecutive_failures=0)
            .on_conflict_do_nothing(index_elements=["pds_url"])
        )
        with Session(self.engine) as session:
            res = session.execute(stmt)
            session.commit()
            if res.rowcount:
                logger.info("registered PDS %s (source=%s)", url, source)
            row = session.get(PDSRegistryRow, url)
            return _to_entry(row)

    def get(self, endpoint_url: str) -> Optional[PDSRegistryEntry]:
        url = normalize_pds_url(endpoint_url)
        with Session(self.engine) as session:
            row = session.get(PDSRegistryRow, url)
            return _to_entry(row) if row else None

    def list_for_scan(self, limit: int = 100) -> List[PDSRegistryEntry]:
        """到期的 pending/active 端点，next_scan_at 为空的优先。"""
        now = self._clock()
        stmt = (
            select(PDSRegistryRow)
            .where(PDSRegistryRow.status.in_([PDSStatus.PENDING.value, PDSStatus.ACTIVE.value]))  # type: ignore[attr-defined]
            .where((PDSRegistryRow.next_scan_at.is_(None)) | (PDSRegistryRow.next_scan_at <= now))  # type: ignore[union-attr,operator]
            .where(PDSRegistryRow.consecutive_failures < MAX_CONSECUTIVE_FAILURES)
            .order_by(PDSRegistryRow.next_scan_at.is_(None).desc(),  # type: ignore[union-attr]
                      PDSRegistryRow.next_scan_at.asc(),  # type: ignore[union-attr]
                      PDSRegistryRow.pds_url.asc())  # type: ignore[attr-defined]
            .limit(max(1, int(limit)))
        )
        with Session(self.engine) as session:
            return [_to_entry(r) for r in session.exec(stmt).all()]

    def mark_scan_started(self, endpoint_url: str) -> bool:
        url = normalize_pds_url(endpoint_url)
        stmt = update(PDSRegistryRow).where(PDSRegistryRow.pds_url == url).values(status=PDSStatus.SCANNING.value)
        with Session(self.engine) as session:
            res = session.execute(stmt)
            session.commit()
            return res.rowcount > 0

    def mark_scan_completed(self, endpoint_url: str, next_scan_hours: int = DEFAULT_NEXT_SCAN_HOURS) -> bool:
        url = normalize_pds_url(endpoint_url)
        now = self._clock()
        stmt = (
            update(PDSRegistryRow)
            .where(PDSRegistryRow.pds_url == url)
            .values(status=PDSStatus.ACTIVE.value, last_scan_at=now,
                    next_scan_at=now + next_scan_hours * HOUR_MS,
                    consecutive_failures=0, last_error=None)
        )
        with Session(self.engine) as session:
            res = session.execute(stmt)
            session.commit()
            return res.rowcount > 0

    def mark_scan_failed(self, endpoint_url: str, error: str) -> Optional[PDSRegistryEntry]:
        url = normalize_pds_url(endpoint_url)
        now = self._clock()
        with Session(self.engine) as session:
            row = session.get(PDSRegistryRow, url)
            if row is None:
                return None
            previous = row.consecutive_failures
            row.consecutive_failures = previous + 1
            row.last_error = (error or "")[:1000]
            row.status = (PDSStatus.UNREACHABLE if row.consecutive_failures >= MAX_CONSECUTIVE_FAILURES
                          else PDSStatus.ACTIVE).value
            row.next_scan_at = now + (2 ** min(previous, 4)) * HOUR_MS
            session.add(row)
            session.commit()
            session.refresh(row)
            if row.status == PDSStatus.UNREACHABLE.value:
                logger.warning("PDS %s marked unreachable after %d failures: %s",
                               url, row.consecutive_failures, row.last_error)
            return _to_entry(row)

    def stats(self) -> Dict[str, int]:
        stmt = select(PDSRegistryRow.status, func.count()).group_by(PDSRegistryRow.status)
        out = {s.value: 0 for s in PDSStatus}
        with Session(self.engine) as session:
            for status, count in session.exec(stmt).all():
                out[status] = int(count)
        out["total"] = sum(out[s.value] for s in PDSStatus)
        return out
