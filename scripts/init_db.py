"""
Database Initialization Script
"""

import sys

from msk.config.database import init_database
from msk.core.logging import logger


def main(argv) -> int:
    drop = len(argv) > 1 and argv[1] == "drop"
    try:
        init_database(drop=drop)
    except Exception as e:
        logger.error(f"数据库{'删除' if drop else '初始化'}失败: {e}")
        return 1
    logger.info(f"数据库{'删除' if drop else '初始化'}成功")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
