#!/usr/bin/env python3
"""
步骤2: 执行一轮 freshness scan（分层检测过期记录并 refresh）。

用法：
    python scripts/02_freshness_scan.py
    python scripts/02_freshness_scan.py --batch-size 200 --workers 8
    python scripts/02_freshness_scan.py --tombstone      # 仓库 404 时软删除
"""

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config.settings import settings
from src.container import build_services
from src.log import get_logger
from src.sync import FreshnessScanJob

logger = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Freshness scan")
    parser.add_argument("--batch-size", type=int, default=None,
                        help=f"每层最多处理条数（默认 {settings.sync.batch_size}）")
    parser.add_argument("--workers", type=int, default=None,
                        help=f"并发 refresh 线程数（默认 {settings.sync.scan_max_workers}）")
    parser.add_argument("--tombstone", action="store_true", help="仓库确认 not-found 时软删除记录")
    args = parser.parse_args()

    services = build_services(settings)
    try:
        job = FreshnessScanJob(
            services.sync,
            urgent_ms=settings.sync.urgent_ms,
            recent_ms=settings.sync.recent_ms,
            normal_ms=settings.sync.normal_ms,
            batch_size=args.batch_size or settings.sync.batch_size,
            max_workers=args.workers or settings.sync.scan_max_workers,
            tombstone_on_not_found=args.tombstone or settings.sync.tombstone_on_not_found,
        )
        result = job.run()
        print(json.dumps(asdict(result), ensure_ascii=False, indent=2))
    finally:
        services.close()


if __name__ == "__main__":
    main()
