from __future__ import annotations

import sys
from logging.config import fileConfig
from pathlib import Path

from sqlmodel import SQLModel

from alembic import context

# Project root on sys.path so `src.db` / `config` import.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Register indexed_records / pds_registry / record_metrics on the metadata.
import src.db.models as _models  # noqa: F401, E402

from src.db.engine import _make_absolute_sqlite_url, _resolve_db_url, make_engine  # noqa: E402

target_metadata = SQLModel.metadata


def _get_url() -> str:
    """alembic.ini override wins; otherwise INDEX_DATABASE_URL / app_config."""
    ini_url = config.get_main_option("sqlalchemy.url", default="")
    if not ini_url or ini_url.startswith("driver://"):
        ini_url = _resolve_db_url()
    return _make_absolute_sqlite_url(ini_url)


def run_migrations_offline() -> None:
    context.configure(
        url=_get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,  # SQLite ALTER TABLE
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = make_engine(_get_url())

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
        )
        with context.begin_transaction():
            context.run_migrations()
    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
