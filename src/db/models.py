"""
SQLModel tables of the Primary Store.

  - indexed_records : local cache entry per authoritative record (keyed by AT-URI)
  - pds_registry    : repository endpoints known to the periodic sweeps
  - record_metrics  : aggregate snapshots written by the metrics flush

Timestamps are integer epoch milliseconds, matching the Counter Store scores.
"""

import time
from typing import Optional

from sqlalchemy import BigInteger, Column, Index, Integer, Text
from sqlmodel import Field, SQLModel


def now_ms() -> int:
    return int(time.time() * 1000)


class IndexedRecordRow(SQLModel, table=True):
    __tablename__ = "indexed_records"
    __table_args__ = (
        Index("idx_indexed_records_indexed_at", "indexed_at"),
        Index("idx_indexed_records_pds", "pds_endpoint"),
        Index("idx_indexed_records_deleted_at", "deleted_at"),
    )

    uri: str = Field(primary_key=True)
    content_hash: str = Field(sa_column=Column(Text, nullable=False))
    pds_endpoint: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    collection: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    record_kind: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    title: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    record_json: str = Field(default="{}", sa_column=Column(Text, nullable=False, server_default="{}"))
    indexed_at: int = Field(default_factory=now_ms, sa_column=Column(BigInteger, nullable=False))
    last_synced_at: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    deleted_at: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    deletion_source: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))


class PDSRegistryRow(SQLModel, table=True):
    __tablename__ = "pds_registry"
    __table_args__ = (
        Index("idx_pds_registry_status", "status"),
        Index("idx_pds_registry_next_scan", "next_scan_at"),
    )

    pds_url: str = Field(primary_key=True)
    discovery_source: str = Field(default="manual", sa_column=Column(Text, nullable=False, server_default="manual"))
    status: str = Field(default="pending", sa_column=Column(Text, nullable=False, server_default="pending"))
    discovered_at: int = Field(default_factory=now_ms, sa_column=Column(BigInteger, nullable=False))
    last_scan_at: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    next_scan_at: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    consecutive_failures: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default="0"))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))


class RecordMetricsRow(SQLModel, table=True):
    __tablename__ = "record_metrics"

    uri: str = Field(primary_key=True)
    total_views: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, server_default="0"))
    unique_views: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, server_default="0"))
    total_downloads: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, server_default="0"))
    unique_downloads: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, server_default="0"))
    flushed_at: int = Field(default_factory=now_ms, sa_column=Column(BigInteger, nullable=False))
