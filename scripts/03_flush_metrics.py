#!/usr/bin/env python3
"""
步骤3: 把 Counter Store 中的聚合计数刷入 record_metrics 表。

用法：
    python scripts/03_flush_metrics.py
    python scripts/03_flush_metrics.py --trending 24h --limit 20   # 顺带打印 trending
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config.settings import settings
from src.container import build_services
from src.log import get_logger

logger = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Flush engagement metrics")
    parser.add_argument("--trending", choices=["24h", "7d", "30d"], default=None)
    parser.add_argument("--limit", type=int, default=10)
    args = parser.parse_args()

    services = build_services(settings)
    try:
        res = services.metrics.flush_to_database()
        if not res.ok:
            logger.error("flush 失败: %s", res.error)
            sys.exit(1)
        print(f"已持久化 {res.value} 个 subject 的指标")

        if args.trending:
            for i, entry in enumerate(services.metrics.get_trending(args.trending, args.limit), 1):
                print(f"{i:>3}. {entry.score:>6}  {entry.subject_uri}")
    finally:
        services.close()


if __name__ == "__main__":
    main()
