"""Logging for the index engines: console + per-run file, size/age cleanup."""
from .log_manager import LOG_FORMAT, LogManager, cleanup_logs, get_logger, init_logging

__all__ = ["LOG_FORMAT", "LogManager", "cleanup_logs", "get_logger", "init_logging"]
