"""
日志管理：分级输出、每次运行一个日志文件、按大小/天数自动清理。

引擎与存储模块统一通过 get_logger(__name__) 取 logger；
首次调用时按 config.settings.logging 初始化（测试中可先调用 init_logging 覆盖）。
"""
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

DEFAULT_LEVEL = "INFO"
DEFAULT_MAX_SIZE_MB = 100
DEFAULT_MAX_AGE_DAYS = 30
DEFAULT_MIN_KEEP_MB = 20
LOG_DIR_NAME = "index"
LOG_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)s | %(name)s | %(message)s"


class LogManager:
    """
    控制台 + 文件双输出。文件按进程启动时间命名，同一进程内复用。
    file_output=False 时只写控制台（脚本 --no-log-file / 测试）。
    """

    def __init__(self, config: dict[str, Any] | None = None):
        config = config or {}
        base = Path(__file__).resolve().parent.parent.parent
        self.log_dir = Path(config["log_dir"]) if config.get("log_dir") else base / "logs" / LOG_DIR_NAME
        self.file_output = bool(config.get("file_output", True))
        if self.file_output:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self.max_size_mb = int(config.get("max_size_mb", DEFAULT_MAX_SIZE_MB))
        self.max_age_days = int(config.get("max_age_days", DEFAULT_MAX_AGE_DAYS))
        self.min_keep_mb = int(config.get("min_keep_mb", DEFAULT_MIN_KEEP_MB))
        self.console_output = bool(config.get("console_output", True))
        level_name = str(config.get("level") or DEFAULT_LEVEL).upper()
        self.level = getattr(logging, level_name, logging.INFO)

        self._run_log_path: Path | None = None
        self._formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def _run_file(self) -> Path:
        if self._run_log_path is None:
            self._run_log_path = self.log_dir / datetime.now().strftime("%Y-%m-%d_%H-%M-%S.log")
        return self._run_log_path

    def get_logger(self, name: str) -> logging.Logger:
        """具名 logger；已有 handler 的直接返回，避免重复输出。"""
        logger = logging.getLogger(name)
        if logger.handlers:
            return logger

        logger.setLevel(self.level)
        logger.propagate = False

        if self.console_output:
            ch = logging.StreamHandler()
            ch.setLevel(self.level)
            ch.setFormatter(self._formatter)
            logger.addHandler(ch)

        if self.file_output:
            fh = logging.FileHandler(self._run_file(), encoding="utf-8")
            fh.setLevel(self.level)
            fh.setFormatter(self._formatter)
            logger.addHandler(fh)

        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
        return logger

    def cleanup(self) -> dict[str, Any]:
        """
        清理日志文件：总量低于 min_keep_mb 不动；
        先删超过 max_age_days 的，再按最旧优先删到 max_size_mb 以内。
        """
        report: dict[str, Any] = {"deleted_by_age": [], "deleted_by_size": [], "remaining_mb": 0.0}
        if not self.log_dir.exists():
            return report

        log_files = sorted(
            (f for f in self.log_dir.iterdir() if f.is_file() and f.suffix == ".log"),
            key=lambda p: p.stat().st_mtime,
        )
        total = sum(f.stat().st_size for f in log_files)
        if total < self.min_keep_mb * 1024 * 1024:
            report["remaining_mb"] = total / (1024 * 1024)
            return report

        cutoff = datetime.now() - timedelta(days=self.max_age_days)
        remaining: list[Path] = []
        for f in log_files:
            if f == self._run_log_path:
                remaining.append(f)
            elif datetime.fromtimestamp(f.stat().st_mtime) < cutoff:
                report["deleted_by_age"].append(f.name)
                f.unlink()
            else:
                remaining.append(f)

        max_bytes = self.max_size_mb * 1024 * 1024
        candidates = [f for f in remaining if f != self._run_log_path]
        while candidates and sum(f.stat().st_size for f in remaining) > max_bytes:
            oldest = candidates.pop(0)
            remaining.remove(oldest)
            report["deleted_by_size"].append(oldest.name)
            oldest.unlink()

        report["remaining_mb"] = sum(f.stat().st_size for f in remaining) / (1024 * 1024)
        return report


_manager: LogManager | None = None


def _settings_config() -> dict[str, Any]:
    try:
        from config.settings import settings
    except ImportError:
        return {}
    return settings.logging.as_dict()


def init_logging(config: dict[str, Any] | None = None) -> LogManager:
    """(重新)初始化日志。未传 config 时读取 config.settings.logging。"""
    global _manager
    _manager = LogManager(config if config is not None else _settings_config())
    return _manager


def get_logger(name: str) -> logging.Logger:
    if _manager is None:
        init_logging()
    return _manager.get_logger(name)


def cleanup_logs() -> dict[str, Any]:
    if _manager is None:
        init_logging()
    return _manager.cleanup()
