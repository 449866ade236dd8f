#!/usr/bin/env python3
"""
步骤4: 硬删除软删除超过宽限期的记录，同时清掉其引用边与图实体；再按配置清理日志。

用法：
    python scripts/04_cleanup_deleted.py                    # 宽限期取 sync.deleted_grace_period_ms
    python scripts/04_cleanup_deleted.py --grace-days 30 --dry-run
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config.settings import DAY_MS, settings
from src.container import build_services
from src.log import cleanup_logs, get_logger

logger = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(description="清理软删除记录")
    parser.add_argument("--grace-days", type=float, default=None,
                        help=f"宽限天数（默认 {settings.sync.deleted_grace_period_ms / DAY_MS:g}）")
    parser.add_argument("--limit", type=int, default=500)
    parser.add_argument("--dry-run", action="store_true", help="只列出，不删除")
    args = parser.parse_args()

    grace_ms = int(args.grace_days * DAY_MS) if args.grace_days is not None else settings.sync.deleted_grace_period_ms
    services = build_services(settings)
    try:
        uris = services.sync.get_deleted_records(grace_ms, args.limit)
        logger.info("待清理记录: %d", len(uris))
        removed = 0
        for uri in uris:
            if args.dry_run:
                print(uri)
                continue
            services.citations.delete_citations_for_paper(uri)
            services.citations.remove_entity(uri)
            if services.sync.delete_record(uri).ok:
                removed += 1
        if not args.dry_run:
            logger.info("已硬删除 %d 条记录", removed)
        report = cleanup_logs()
        logger.info("日志清理: age=%d size=%d remaining=%.1fMB",
                    len(report["deleted_by_age"]), len(report["deleted_by_size"]), report["remaining_mb"])
    finally:
        services.close()


if __name__ == "__main__":
    main()
