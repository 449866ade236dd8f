"""
Primary Store：indexed_records 表的读写（SQLModel）。

Engine 由调用方注入；每个方法一个 Session / 一个事务。
数据库不可达（OperationalError）统一包装为 StoreUnavailableError。
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from src.core.errors import StoreUnavailableError
from src.db.models import IndexedRecordRow
from src.sync.models import IndexedRecord


def _to_domain(row: IndexedRecordRow) -> IndexedRecord:
    return IndexedRecord(
        uri=row.uri,
        content_hash=row.content_hash,
        pds_endpoint=row.pds_endpoint,
        indexed_at=row.indexed_at,
        collection=row.collection,
        record_kind=row.record_kind,
        title=row.title,
        last_synced_at=row.last_synced_at,
        deleted_at=row.deleted_at,
        deletion_source=row.deletion_source,
    )


class SqlRecordStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except OperationalError as e:
            raise StoreUnavailableError("primary", str(e.orig or e), cause=e) from e

    # ── reads ──

    def get(self, uri: str) -> Optional[IndexedRecord]:
        with self._session() as session:
            row = session.get(IndexedRecordRow, uri)
            return _to_domain(row) if row else None

    def list_stale(
        self,
        cutoff_ms: int,
        limit: int,
        newer_than_ms: Optional[int] = None,
        by_synced: bool = False,
    ) -> List[IndexedRecord]:
        """
        时间列 < cutoff_ms 的未删除记录，最旧优先。newer_than_ms 用于分层扫描。
        by_synced=True 时按 last_synced_at（缺失时回落 indexed_at）筛选排序，
        否则按 indexed_at。
        """
        col = (
            func.coalesce(IndexedRecordRow.last_synced_at, IndexedRecordRow.indexed_at)
            if by_synced else IndexedRecordRow.indexed_at
        )
        stmt = (
            select(IndexedRecordRow)
            .where(col < cutoff_ms)
            .where(IndexedRecordRow.deleted_at.is_(None))  # type: ignore[union-attr]
        )
        if newer_than_ms is not None:
            stmt = stmt.where(col >= newer_than_ms)
        stmt = stmt.order_by(col.asc(), IndexedRecordRow.uri.asc()).limit(limit)  # type: ignore[union-attr]
        with self._session() as session:
            return [_to_domain(r) for r in session.exec(stmt).all()]

    def list_deleted(self, deleted_before_ms: int, limit: int) -> List[str]:
        stmt = (
            select(IndexedRecordRow.uri)
            .where(IndexedRecordRow.deleted_at.is_not(None))  # type: ignore[union-attr]
            .where(IndexedRecordRow.deleted_at < deleted_before_ms)
            .order_by(IndexedRecordRow.deleted_at.asc())  # type: ignore[union-attr]
            .limit(limit)
        )
        with self._session() as session:
            return list(session.exec(stmt).all())

    # ── writes ──

    def upsert(
        self,
        *,
        uri: str,
        content_hash: str,
        pds_endpoint: str,
        collection: str,
        record_kind: str,
        title: str,
        record: Dict[str, Any],
        now_ms: int,
    ) -> IndexedRecord:
        """创建或覆盖一条记录；重新索引会清除软删除标记。"""
        with self._session() as session:
            row = session.get(IndexedRecordRow, uri)
            if row is None:
                row = IndexedRecordRow(uri=uri, content_hash=content_hash)
            row.content_hash = content_hash
            row.pds_endpoint = pds_endpoint
            row.collection = collection
            row.record_kind = record_kind
            row.title = title
            row.record_json = json.dumps(record, ensure_ascii=False, default=str)
            row.indexed_at = now_ms
            row.last_synced_at = now_ms
            row.deleted_at = None
            row.deletion_source = None
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_domain(row)

    def update_hash(self, uri: str, content_hash: str, now_ms: int) -> bool:
        """单条 UPDATE 原子写入新 hash + 时间戳；返回记录是否存在。"""
        stmt = (
            update(IndexedRecordRow)
            .where(IndexedRecordRow.uri == uri)
            .values(content_hash=content_hash, indexed_at=now_ms, last_synced_at=now_ms)
        )
        with self._session() as session:
            res = session.execute(stmt)
            session.commit()
            return res.rowcount > 0

    def touch_synced(self, uri: str, now_ms: int) -> bool:
        stmt = update(IndexedRecordRow).where(IndexedRecordRow.uri == uri).values(last_synced_at=now_ms)
        with self._session() as session:
            res = session.execute(stmt)
            session.commit()
            return res.rowcount > 0

    def set_provenance(self, uri: str, content_hash: str, pds_endpoint: str, now_ms: int) -> bool:
        stmt = (
            update(IndexedRecordRow)
            .where(IndexedRecordRow.uri == uri)
            .values(content_hash=content_hash, pds_endpoint=pds_endpoint, last_synced_at=now_ms)
        )
        with self._session() as session:
            res = session.execute(stmt)
            session.commit()
            return res.rowcount > 0

    def delete(self, uri: str) -> bool:
        with self._session() as session:
            res = session.execute(delete(IndexedRecordRow).where(IndexedRecordRow.uri == uri))
            session.commit()
            return res.rowcount > 0

    def mark_deleted(self, uri: str, source: str, now_ms: int) -> Optional[bool]:
        """None = 记录不存在；False = 已是删除状态；True = 本次标记。"""
        with self._session() as session:
            row = session.get(IndexedRecordRow, uri)
            if row is None:
                return None
            if row.deleted_at is not None:
                return False
            row.deleted_at = now_ms
            row.deletion_source = source
            session.add(row)
            session.commit()
            return True

    def restore(self, uri: str) -> bool:
        stmt = (
            update(IndexedRecordRow)
            .where(IndexedRecordRow.uri == uri)
            .where(IndexedRecordRow.deleted_at.is_not(None))  # type: ignore[union-attr]
            .values(deleted_at=None, deletion_source=None)
        )
        with self._session() as session:
            res = session.execute(stmt)
            session.commit()
            return res.rowcount > 0
