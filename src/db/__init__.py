"""
src/db: Primary Store engine factory and SQLModel tables.

Usage:
    from src.db import make_engine, init_db
    from src.db.models import IndexedRecordRow, PDSRegistryRow, RecordMetricsRow
"""

from src.db.engine import get_engine, get_session, init_db, make_engine

__all__ = ["get_engine", "get_session", "init_db", "make_engine"]
