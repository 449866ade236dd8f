"""
record_metrics 表：flush_to_database 写入的聚合快照。

一页 subject 一个事务；单条失败不影响同页其它 subject。
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from src.db.models import RecordMetricsRow
from src.log import get_logger

logger = get_logger(__name__)


class SqlMetricsSnapshotStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def _write(self, session: Session, snap: RecordMetricsRow) -> None:
        row = session.get(RecordMetricsRow, snap.uri)
        if row is None:
            session.add(RecordMetricsRow(**snap.model_dump()))
            return
        row.total_views = snap.total_views
        row.unique_views = snap.unique_views
        row.total_downloads = snap.total_downloads
        row.unique_downloads = snap.unique_downloads
        row.flushed_at = snap.flushed_at
        session.add(row)

    def upsert_many(self, snapshots: Iterable[RecordMetricsRow]) -> int:
        """整页一个事务；整页提交失败时退回逐条写入，跳过写不进去的 subject。"""
        snaps = list(snapshots)
        if not snaps:
            return 0
        try:
            with Session(self.engine) as session:
                for snap in snaps:
                    self._write(session, snap)
                session.commit()
            return len(snaps)
        except SQLAlchemyError as e:
            logger.warning("metrics page flush failed (%s), retrying per subject", e)

        written = 0
        for snap in snaps:
            try:
                with Session(self.engine) as session:
                    self._write(session, snap)
                    session.commit()
                written += 1
            except SQLAlchemyError as e:
                logger.warning("metrics snapshot for %s not written: %s", snap.uri, e)
        return written

    def get(self, uri: str) -> Optional[RecordMetricsRow]:
        with Session(self.engine) as session:
            return session.get(RecordMetricsRow, uri)

    def list_uris(self) -> List[str]:
        with Session(self.engine) as session:
            return list(session.exec(select(RecordMetricsRow.uri).order_by(RecordMetricsRow.uri)).all())
