"""
统一配置模块
- 配置文件: config/app_config.json（各存储与引擎的可调参数）
- 本地覆盖: config/app_config.local.json（本地私密配置，不入库）
- 环境变量优先覆盖连接串等敏感项
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(__file__).parent / "app_config.json"
_LOCAL_CONFIG_PATH = Path(__file__).parent / "app_config.local.json"

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


_RAW_CONFIG: Dict[str, Any] = _load_json(_CONFIG_PATH)
if _LOCAL_CONFIG_PATH.exists():
    _RAW_CONFIG = _deep_merge(_RAW_CONFIG, _load_json(_LOCAL_CONFIG_PATH))


def _section(name: str) -> Dict[str, Any]:
    return (_RAW_CONFIG.get(name) or {})


@dataclass
class DatabaseSettings:
    """Primary Store（关系库）连接"""
    url: str = "sqlite:///data/index.db"
    echo: bool = False


@dataclass
class RedisSettings:
    """Counter Store 连接；backend=memory 时使用进程内实现（本地开发/测试）"""
    url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    backend: str = os.getenv("COUNTER_BACKEND", "redis")  # redis | memory
    socket_timeout_seconds: float = 5.0


@dataclass
class GraphSettings:
    """Graph Store：networkx 图，可选 JSON 落盘"""
    graph_path: Optional[str] = None
    entity_label: str = "Eprint"


@dataclass
class SyncSettings:
    default_max_age_ms: int = 7 * DAY_MS
    batch_size: int = 100
    urgent_ms: int = 6 * HOUR_MS
    recent_ms: int = DAY_MS
    normal_ms: int = 7 * DAY_MS
    scan_max_workers: int = 4
    tombstone_on_not_found: bool = False
    plc_directory_url: str = "https://plc.directory"
    request_timeout_seconds: int = 15
    deleted_grace_period_ms: int = 7 * DAY_MS


@dataclass
class MetricsSettings:
    key_prefix: str = "eprint:metrics:"
    lifetime_ttl_seconds: int = 365 * 24 * 3600
    scan_count: int = 100
    trending_max_limit: int = 100


@dataclass
class CitationSettings:
    max_page_size: int = 1000
    default_page_size: int = 100
    co_citation_limit: int = 50


@dataclass
class ResilienceSettings:
    """Repository 调用的重试 + 熔断（由调用方注入 SyncEngine）"""
    max_retries: int = 2
    retry_backoff: float = 1.5
    breaker_threshold: int = 5
    breaker_reset_seconds: float = 30.0


@dataclass
class LoggingSettings:
    level: str = "INFO"
    log_dir: Optional[str] = None
    max_size_mb: int = 100
    max_age_days: int = 30
    min_keep_mb: int = 20
    console_output: bool = True
    file_output: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "log_dir": self.log_dir,
            "max_size_mb": self.max_size_mb,
            "max_age_days": self.max_age_days,
            "min_keep_mb": self.min_keep_mb,
            "console_output": self.console_output,
            "file_output": self.file_output,
        }


@dataclass
class PathSettings:
    base: Path = field(default_factory=lambda: Path(__file__).parent.parent)

    @property
    def data(self) -> Path:
        return self.base / "data"

    @property
    def logs(self) -> Path:
        return self.base / "logs"

    def ensure_dirs(self):
        for p in [self.data, self.logs]:
            p.mkdir(parents=True, exist_ok=True)


class Settings:
    def __init__(self):
        self.env = os.getenv("INDEX_ENV", "dev")
        db = _section("database")
        self.database = DatabaseSettings(
            url=os.getenv("INDEX_DATABASE_URL") or str(db.get("url", "sqlite:///data/index.db")),
            echo=bool(db.get("echo", False)),
        )
        r = _section("redis")
        self.redis = RedisSettings(
            url=os.getenv("REDIS_URL") or str(r.get("url", "redis://localhost:6379/0")),
            backend=(os.getenv("COUNTER_BACKEND") or str(r.get("backend", "redis"))).strip().lower(),
            socket_timeout_seconds=float(r.get("socket_timeout_seconds", 5.0)),
        )
        g = _section("graph")
        self.graph = GraphSettings(
            graph_path=g.get("graph_path"),
            entity_label=str(g.get("entity_label", "Eprint")),
        )
        s = _section("sync")
        self.sync = SyncSettings(
            default_max_age_ms=int(s.get("default_max_age_ms", 7 * DAY_MS)),
            batch_size=int(s.get("batch_size", 100)),
            urgent_ms=int(s.get("urgent_ms", 6 * HOUR_MS)),
            recent_ms=int(s.get("recent_ms", DAY_MS)),
            normal_ms=int(s.get("normal_ms", 7 * DAY_MS)),
            scan_max_workers=max(1, int(s.get("scan_max_workers", 4))),
            tombstone_on_not_found=bool(s.get("tombstone_on_not_found", False)),
            plc_directory_url=str(s.get("plc_directory_url", "https://plc.directory")).rstrip("/"),
            request_timeout_seconds=int(s.get("request_timeout_seconds", 15)),
            deleted_grace_period_ms=int(s.get("deleted_grace_period_ms", 7 * DAY_MS)),
        )
        m = _section("metrics")
        self.metrics = MetricsSettings(
            key_prefix=str(m.get("key_prefix", "eprint:metrics:")),
            lifetime_ttl_seconds=int(m.get("lifetime_ttl_seconds", 365 * 24 * 3600)),
            scan_count=int(m.get("scan_count", 100)),
            trending_max_limit=int(m.get("trending_max_limit", 100)),
        )
        c = _section("citation")
        self.citation = CitationSettings(
            max_page_size=int(c.get("max_page_size", 1000)),
            default_page_size=int(c.get("default_page_size", 100)),
            co_citation_limit=int(c.get("co_citation_limit", 50)),
        )
        rs = _section("resilience")
        self.resilience = ResilienceSettings(
            max_retries=int(rs.get("max_retries", 2)),
            retry_backoff=float(rs.get("retry_backoff", 1.5)),
            breaker_threshold=int(rs.get("breaker_threshold", 5)),
            breaker_reset_seconds=float(rs.get("breaker_reset_seconds", 30.0)),
        )
        lg = _section("logging")
        self.logging = LoggingSettings(
            level=str(os.getenv("LOG_LEVEL") or lg.get("level", "INFO")),
            log_dir=lg.get("log_dir"),
            max_size_mb=int(lg.get("max_size_mb", 100)),
            max_age_days=int(lg.get("max_age_days", 30)),
            min_keep_mb=int(lg.get("min_keep_mb", 20)),
            console_output=bool(lg.get("console_output", True)),
            file_output=os.getenv("LOG_FILE_OUTPUT", str(lg.get("file_output", True))).strip().lower() in ("1", "true", "yes"),
        )
        self.path = PathSettings()

    @property
    def is_prod(self) -> bool:
        return self.env == "prod"

    def print_info(self):
        print(f"""
========================================
  Eprint Index (AppView core)
========================================
  环境: {self.env}
  Database: {self.database.url}
  Counter store: {self.redis.backend} ({self.redis.url})
  Graph: {self.graph.graph_path or 'in-memory'}
========================================
        """)


# 全局单例
settings = Settings()
