"""
共享 Fixtures：内存 SQLite / 内存 Counter Store / NetworkX 图 / 假仓库客户端 / 可控时钟。
"""

import sys
import threading
from pathlib import Path
from typing import Dict, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.log import init_logging  # noqa: E402

# 测试期间不落盘日志
init_logging({"file_output": False, "console_output": False, "level": "DEBUG"})

from src.core.errors import TransientFetchError  # noqa: E402
from src.db.engine import init_db, make_engine  # noqa: E402
from src.graph import CitationGraphEngine, NetworkxGraphStore  # noqa: E402
from src.metrics import InMemoryCounterStore, MetricsEngine, SqlMetricsSnapshotStore  # noqa: E402
from src.sync import PDSRegistry, SqlRecordStore, SyncEngine  # noqa: E402
from src.sync.models import AuthoritativeRecord  # noqa: E402

T0_MS = 1_760_000_000_000
SUBMISSION = "pub.chive.eprint.submission"


def eprint_uri(rkey: str, did: str = "did:plc:author1") -> str:
    return f"at://{did}/{SUBMISSION}/{rkey}"


def submission_record(title: str = "Deep-sea vents") -> dict:
    return {
        "$type": SUBMISSION,
        "title": title,
        "authors": [{"name": "A. Author", "did": "did:plc:author1"}],
        "submittedBy": "did:plc:author1",
        "createdAt": "2026-01-01T00:00:00Z",
        "licenseSlug": "CC-BY-4.0",
    }


class FakeClock:
    """毫秒时钟，测试里手动推进。"""

    def __init__(self, start_ms: int = T0_MS):
        self.now = start_ms
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            return self.now

    def advance(self, ms: int) -> None:
        with self._lock:
            self.now += ms


class FakeRepository:
    """权威仓库替身：uri → cid；fail=True 时模拟网络错误。"""

    def __init__(self):
        self.records: Dict[str, str] = {}
        self.fail = False
        self.calls = 0
        self._lock = threading.Lock()

    def put(self, uri: str, cid: str) -> None:
        self.records[uri] = cid

    def get_record(self, uri: str, pds_endpoint: Optional[str] = None) -> Optional[AuthoritativeRecord]:
        with self._lock:
            self.calls += 1
        if self.fail:
            raise TransientFetchError(f"connection refused: {pds_endpoint}")
        cid = self.records.get(uri)
        if cid is None:
            return None
        return AuthoritativeRecord(uri=uri, cid=cid, value={}, pds_endpoint=pds_endpoint or "")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_engine(tmp_path):
    # 文件库：并发测试需要多连接
    engine = make_engine(f"sqlite:///{tmp_path / 'index.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def record_store(db_engine):
    return SqlRecordStore(db_engine)


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def registry(db_engine, clock):
    return PDSRegistry(db_engine, clock=clock)


@pytest.fixture
def sync_engine(record_store, repository, registry, clock):
    return SyncEngine(record_store, repository, registry=registry, clock=clock)


@pytest.fixture
def counter_store():
    return InMemoryCounterStore()


@pytest.fixture
def metrics_engine(counter_store, db_engine, clock):
    return MetricsEngine(counter_store, SqlMetricsSnapshotStore(db_engine), clock=clock)


@pytest.fixture
def graph_store():
    return NetworkxGraphStore()


@pytest.fixture
def citation_engine(graph_store, clock):
    return CitationGraphEngine(graph_store, clock=clock)
