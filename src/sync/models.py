"""
Sync 层数据结构：IndexedRecord 及各操作的返回值。

IndexedRecord 对应 indexed_records 表的一行；其余均为调用期临时结果，不持久化。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class DeletionSource(str, Enum):
    PDS_404 = "pds_404"
    FIREHOSE_TOMBSTONE = "firehose_tombstone"
    ADMIN = "admin"


class PDSStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SCANNING = "scanning"
    UNREACHABLE = "unreachable"


@dataclass
class IndexedRecord:
    uri: str
    content_hash: str
    pds_endpoint: str
    indexed_at: int  # epoch ms
    collection: str = ""
    record_kind: str = ""
    title: str = ""
    last_synced_at: Optional[int] = None
    deleted_at: Optional[int] = None
    deletion_source: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uri": self.uri,
            "contentHash": self.content_hash,
            "pdsEndpoint": self.pds_endpoint,
            "indexedAt": self.indexed_at,
            "collection": self.collection,
            "recordKind": self.record_kind,
            "title": self.title,
            "lastSyncedAt": self.last_synced_at,
            "deletedAt": self.deleted_at,
            "deletionSource": self.deletion_source,
        }


@dataclass
class StalenessCheckResult:
    """is_stale 为 None 表示无法判定（未索引或拉取失败）。"""

    uri: str
    indexed_hash: Optional[str] = None
    authoritative_hash: Optional[str] = None
    is_stale: Optional[bool] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"uri": self.uri, "indexedCID": self.indexed_hash}
        if self.authoritative_hash is not None:
            out["pdsCID"] = self.authoritative_hash
        if self.is_stale is not None:
            out["isStale"] = self.is_stale
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class RefreshOutcome:
    refreshed: bool
    changed: bool
    previous_hash: Optional[str]
    current_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "refreshed": self.refreshed,
            "changed": self.changed,
            "previousCID": self.previous_hash,
            "currentCID": self.current_hash,
        }


@dataclass
class AuthoritativeRecord:
    """Repository Client 的返回：记录当前内容及其 CID。"""

    uri: str
    cid: str
    value: Dict[str, Any] = field(default_factory=dict)
    pds_endpoint: str = ""


@dataclass
class PDSRegistryEntry:
    pds_url: str
    discovery_source: str
    status: PDSStatus
    discovered_at: int
    last_scan_at: Optional[int] = None
    next_scan_at: Optional[int] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None


@dataclass
class ScanRunResult:
    """一次 freshness scan 的统计；skipped=True 表示上一轮仍在运行。"""

    checked: int = 0
    changed: int = 0
    unchanged: int = 0
    not_found: int = 0
    tombstoned: int = 0
    failed: int = 0
    duration_ms: int = 0
    skipped: bool = False
    per_tier: Dict[str, int] = field(default_factory=dict)
