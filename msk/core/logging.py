"""
Logging Configuration
"""

import logging
import re
import sys
from pathlib import Path
from typing import Any, Mapping, Optional

from msk.config.settings import settings


class SecretFieldFilter(logging.Filter):
    """
    屏蔽日志中的凭证字段（API key/secret、数据库密码、Authorization 头）。
    """

    SENSITIVE_KEYS = {"api_key", "api_secret", "password", "db_password", "authorization"}
    _PATTERN = re.compile(
        r"(?i)(api_key|api_secret|db_password|password|authorization)(['\"]?\s*[:=]\s*['\"]?)([^'\"\s,}&]+)"
    )

    def _redact_obj(self, obj: Any):
        if isinstance(obj, Mapping):
            return {
                k: ("***" if str(k).lower() in self.SENSITIVE_KEYS else self._redact_obj(v))
                for k, v in obj.items()
            }
        if isinstance(obj, str):
            return self._PATTERN.sub(r"\1\2***", obj)
        return obj

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, (Mapping, str)):
            record.msg = self._redact_obj(record.msg)
        if isinstance(record.args, Mapping):
            record.args = self._redact_obj(record.args)
        elif isinstance(record.args, tuple) and record.args:
            record.args = tuple(self._redact_obj(a) for a in record.args)
        return True


def _tune_external_loggers():
    # 降低第三方库噪音，防止请求头/签名被打印
    for name in ("httpx", "httpcore", "urllib3", "botocore", "boto3", "s3transfer"):
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None
):
    """
    配置日志系统

    Args:
        log_level: 日志级别（DEBUG, INFO, WARNING, ERROR, CRITICAL）
        log_file: 日志文件路径
        log_format: 日志格式
    """
    level = log_level or settings.LOG_LEVEL
    log_path = log_file or settings.LOG_FILE
    fmt = log_format or settings.LOG_FORMAT

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers = []

    secret_filter = SecretFieldFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(fmt))
    console_handler.addFilter(secret_filter)
    root_logger.addHandler(console_handler)

    if log_path:
        try:
            Path(log_path).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(logging.Formatter(fmt))
            file_handler.addFilter(secret_filter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.warning(f"无法创建日志文件 {log_path}: {e}")

    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)

    _tune_external_loggers()


# 初始化日志
setup_logging()

# 创建全局日志记录器
logger = logging.getLogger("msk")
