"""
Composition root: build every backing-store client once and inject it into the engines.

    from config.settings import settings
    from src.container import build_services

    services = build_services(settings)
    services.sync.refresh_record(uri)
    services.close()

Engines never reach for global state themselves; tests build them directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import Engine

from src.db.engine import init_db, make_engine
from src.graph import CitationGraphEngine, NetworkxGraphStore
from src.log import get_logger
from src.metrics import InMemoryCounterStore, MetricsEngine, RedisCounterStore, SqlMetricsSnapshotStore
from src.metrics.counter_store import CounterStore
from src.sync import (
    FreshnessScanJob,
    PDSRegistry,
    ResiliencePolicy,
    SqlRecordStore,
    SyncEngine,
    XrpcRepositoryClient,
)

logger = get_logger(__name__)


@dataclass
class Services:
    db_engine: Engine
    counter_store: CounterStore
    graph_store: NetworkxGraphStore
    sync: SyncEngine
    metrics: MetricsEngine
    citations: CitationGraphEngine
    registry: PDSRegistry
    freshness_scan: FreshnessScanJob

    def close(self) -> None:
        if self.graph_store.graph_path is not None:
            self.graph_store.save()
        if isinstance(self.counter_store, RedisCounterStore):
            self.counter_store.close()
        self.db_engine.dispose()


def _counter_store(cfg) -> CounterStore:
    if cfg.backend == "memory":
        logger.warning("using in-memory counter store; metrics are not shared between processes")
        return InMemoryCounterStore()
    if cfg.backend != "redis":
        raise ValueError(f"unknown counter backend: {cfg.backend!r} (expected redis | memory)")
    return RedisCounterStore.from_url(cfg.url, socket_timeout=cfg.socket_timeout_seconds)


def _graph_path(settings) -> Optional[Path]:
    raw = settings.graph.graph_path
    if not raw:
        return None
    path = Path(raw)
    return path if path.is_absolute() else settings.path.base / path


def build_services(settings, create_tables: bool = False) -> Services:
    db_engine = make_engine(settings.database.url, echo=settings.database.echo)
    if create_tables:
        init_db(db_engine)

    counter_store = _counter_store(settings.redis)
    graph_store = NetworkxGraphStore(_graph_path(settings))

    registry = PDSRegistry(db_engine)
    repository = XrpcRepositoryClient(
        plc_directory_url=settings.sync.plc_directory_url,
        timeout=settings.sync.request_timeout_seconds,
    )
    sync = SyncEngine(
        SqlRecordStore(db_engine),
        repository,
        registry=registry,
        policy=ResiliencePolicy.from_settings(settings.resilience),
    )
    metrics_engine = MetricsEngine.from_settings(counter_store, SqlMetricsSnapshotStore(db_engine), settings.metrics)
    citations = CitationGraphEngine.from_settings(graph_store, settings.graph, settings.citation)

    logger.info("services ready (db=%s, counters=%s)", db_engine.url.render_as_string(hide_password=True),
                settings.redis.backend)
    return Services(
        db_engine=db_engine,
        counter_store=counter_store,
        graph_store=graph_store,
        sync=sync,
        metrics=metrics_engine,
        citations=citations,
        registry=registry,
        freshness_scan=FreshnessScanJob.from_settings(sync, settings.sync),
    )
