"""
src/sync: Sync Engine (staleness detection / refresh) and its collaborators.

Usage:
    from src.sync import SyncEngine, SqlRecordStore, XrpcRepositoryClient
"""

from src.sync.freshness_scan import FreshnessScanJob
from src.sync.models import (
    DeletionSource,
    IndexedRecord,
    PDSRegistryEntry,
    PDSStatus,
    RefreshOutcome,
    ScanRunResult,
    StalenessCheckResult,
)
from src.sync.pds_registry import PDSRegistry
from src.sync.record_store import SqlRecordStore
from src.sync.repository_client import XrpcRepositoryClient
from src.sync.resilience import PASS_THROUGH, CircuitBreaker, ResiliencePolicy
from src.sync.sync_engine import SyncEngine

__all__ = [
    "PASS_THROUGH",
    "CircuitBreaker",
    "DeletionSource",
    "FreshnessScanJob",
    "IndexedRecord",
    "PDSRegistry",
    "PDSRegistryEntry",
    "PDSStatus",
    "RefreshOutcome",
    "ResiliencePolicy",
    "ScanRunResult",
    "SqlRecordStore",
    "StalenessCheckResult",
    "SyncEngine",
    "XrpcRepositoryClient",
]
