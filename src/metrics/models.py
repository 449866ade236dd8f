"""互动指标的输入事件与派生视图。"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

HOUR_MS = 3600 * 1000
DAY_MS = 24 * HOUR_MS


class MetricType(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    DWELL_TIME = "dwellTime"
    SEARCH_CLICK = "searchClick"
    SEARCH_DOWNLOAD = "searchDownload"


class TrendingWindow(str, Enum):
    H24 = "24h"
    D7 = "7d"
    D30 = "30d"

    @property
    def ms(self) -> int:
        return {"24h": DAY_MS, "7d": 7 * DAY_MS, "30d": 30 * DAY_MS}[self.value]

    @property
    def seconds(self) -> int:
        return self.ms // 1000


@dataclass
class MetricOperation:
    """batch_increment 的一项；timestamp 仅作记录，窗口打分用写入时刻。"""

    type: MetricType
    uri: str
    actor_id: Optional[str] = None
    duration_ms: Optional[int] = None
    timestamp: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricOperation":
        return cls(
            type=MetricType(data["type"]),
            uri=data["uri"],
            actor_id=data.get("actorId") or data.get("actor_id"),
            duration_ms=data.get("durationMs", data.get("duration_ms")),
            timestamp=data.get("timestamp"),
        )


@dataclass
class AggregatedMetrics:
    total_views: int = 0
    unique_views: int = 0
    total_downloads: int = 0
    views_24h: int = 0
    views_7d: int = 0
    views_30d: int = 0
    unique_downloads: int = 0
    search_clicks: int = 0
    search_downloads: int = 0
    dwell_count: int = 0
    avg_dwell_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalViews": self.total_views,
            "uniqueViews": self.unique_views,
            "totalDownloads": self.total_downloads,
            "views24h": self.views_24h,
            "views7d": self.views_7d,
            "views30d": self.views_30d,
            "uniqueDownloads": self.unique_downloads,
            "searchClicks": self.search_clicks,
            "searchDownloads": self.search_downloads,
            "dwellCount": self.dwell_count,
            "avgDwellMs": self.avg_dwell_ms,
        }


@dataclass(frozen=True)
class TrendingEntry:
    subject_uri: str
    score: int
