#!/usr/bin/env python3
"""
步骤1: 初始化 Primary Store 并检查各后端连通性。

用法：
    python scripts/01_init_db.py                  # 建表（生产环境请用 alembic upgrade head）
    python scripts/01_init_db.py --register-pds https://pds.example.com
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
    parser = argparse.ArgumentParser(description="初始化索引数据库")
    parser.add_argument("--register-pds", nargs="*", default=[], help="同时登记的 PDS 端点")
    args = parser.parse_args()

    settings.path.ensure_dirs()
    settings.print_info()

    services = build_services(settings, create_tables=True)
    try:
        logger.info("[1/2] 数据库表已就绪: %s", settings.database.url)
        if services.counter_store.ping():
            logger.info("[2/2] Counter store 连接正常 (%s)", settings.redis.backend)
        else:
            logger.warning("[2/2] Counter store 不可达: %s", settings.redis.url)

        for url in args.register_pds:
            res = services.sync.register_pds(url)
            if res.ok:
                logger.info("PDS 已登记: %s (status=%s)", res.value.pds_url, res.value.status.value)
            else:
                logger.error("PDS 登记失败 %s: %s", url, res.error)
    finally:
        services.close()


if __name__ == "__main__":
    main()
