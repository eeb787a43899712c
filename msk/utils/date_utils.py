"""
Date Utils
"""

from datetime import datetime
from typing import Optional

import pytz


def get_current_time() -> datetime:
    """获取当前时间（带时区）"""
    return datetime.now(pytz.UTC)


def utc_now() -> datetime:
    """当前 UTC 时间（naive，与数据库 DATETIME 列直接比较）"""
    return get_current_time().replace(tzinfo=None)


def parse_unix_seconds(value: Optional[str]) -> int:
    """解析秒级时间戳字符串，失败抛出 ValueError"""
    if value is None or str(value).strip() == "":
        raise ValueError("empty timestamp")
    return int(str(value).strip())


def format_datetime(dt: Optional[datetime], format_str: str = "%Y-%m-%d %H:%M:%S.%f") -> str:
    """格式化日期时间"""
    if dt is None:
        return ""
    return dt.strftime(format_str)
