"""
SQLAlchemy/SQLModel engine factory for the Primary Store.

The composition root calls `make_engine(settings.database.url)` and injects the
result into the stores; `get_engine()` keeps a process-wide instance for
scripts and Alembic. URL precedence:
1. INDEX_DATABASE_URL environment variable
2. config/app_config(.local).json  database.url
3. Fallback: sqlite:///data/index.db
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

_engine: Engine | None = None

DEFAULT_DB_URL = "sqlite:///data/index.db"


def _resolve_db_url() -> str:
    env_url = os.environ.get("INDEX_DATABASE_URL")
    if env_url:
        return env_url
    from config.settings import settings

    return settings.database.url or DEFAULT_DB_URL


def _make_absolute_sqlite_url(url: str) -> str:
    """Relative sqlite:/// paths resolve against the project root, not cwd."""
    if not url.startswith("sqlite:///") or url == "sqlite:///:memory:":
        return url
    rel_path = url[len("sqlite:///"):]
    if os.path.isabs(rel_path):
        return url
    root = Path(__file__).resolve().parents[2]
    abs_path = (root / rel_path).resolve()
    abs_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{abs_path}"


def make_engine(url: str, echo: bool = False) -> Engine:
    """
    Build a new engine. In-memory SQLite (``sqlite://`` / ``sqlite:///:memory:``)
    shares one connection across threads so tests see a single database.
    """
    db_url = _make_absolute_sqlite_url(url)
    is_sqlite = db_url.startswith("sqlite")
    in_memory = db_url in ("sqlite://", "sqlite:///:memory:")

    kwargs: dict = {"echo": echo}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if in_memory:
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(db_url, **kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_conn, _connection_record):
            cursor = dbapi_conn.cursor()
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    return engine


def get_engine() -> Engine:
    """Process-wide engine, created on first call."""
    global _engine
    if _engine is None:
        _engine = make_engine(_resolve_db_url())
    return _engine


def get_session() -> Generator[Session, None, None]:
    with Session(get_engine()) as session:
        yield session


def init_db(engine: Optional[Engine] = None) -> None:
    """
    Create missing tables. Production schemas come from Alembic;
    this covers tests and fresh local installs.
    """
    from src.db import models as _models  # noqa: F401  register tables
    SQLModel.metadata.create_all(engine or get_engine())
