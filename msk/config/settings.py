"""
Configuration Management
"""

from pathlib import Path
from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings  # type: ignore

# 计算项目根目录，确保无论从哪里运行都能找到根目录下的 .env
_CURRENT_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CURRENT_DIR.parent
_PROJECT_ROOT = _PACKAGE_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """应用配置"""

    APP_NAME: str = "msk"
    APP_VERSION: str = "0.1.0"

    # TiDB Cloud API 配置
    MSK_API_KEY: str = ""
    MSK_API_SECRET: str = ""
    MSK_API_ENDPOINT_BASE: str = "https://api.tidbcloud.com/api/v1beta"
    MSK_PAGE_SIZE: int = 20
    MSK_HTTP_TIMEOUT_SECONDS: float = 30.0
    # 整个同步任务的总时限（覆盖所有分页、所有项目）
    MSK_JOB_TIMEOUT_SECONDS: float = 180.0

    # 数据库配置（DATABASE_URL 为空时由 MYSQL_* 拼接）
    DATABASE_URL: Optional[str] = None
    MYSQL_HOST: str = "127.0.0.1"
    MYSQL_PORT: int = 4000
    MYSQL_USER: str = "root"
    MSK_DB_PASSWORD: str = ""
    MYSQL_DATABASE: str = "test"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_RECYCLE_SECONDS: int = 60
    DB_CONNECT_TIMEOUT_SECONDS: int = 3
    DB_ECHO: bool = False

    # AWS 配置
    AWS_REGION: Optional[str] = None
    AWS_PROFILE: Optional[str] = None
    AWS_CONNECT_TIMEOUT_SECONDS: int = 5
    AWS_READ_TIMEOUT_SECONDS: int = 30

    # Redis / Celery 配置
    REDIS_URL: str = "redis://localhost:6379/0"
    MSK_SYNC_ENABLE_SCHEDULE: bool = True
    MSK_SYNC_INTERVAL_SECONDS: int = 3600
    MSK_SYNC_LOCK_TIMEOUT_SECONDS: int = 1800
    CELERY_TASK_PRIORITY_DEFAULT: int = 5
    CELERY_TASK_PRIORITY_SYNC: int = 3

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: Optional[str] = None

    @property
    def database_url(self) -> str:
        """实际使用的数据库连接串"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        password = quote_plus(self.MSK_DB_PASSWORD) if self.MSK_DB_PASSWORD else ""
        credentials = f"{self.MYSQL_USER}:{password}" if password else self.MYSQL_USER
        return (
            f"mysql+pymysql://{credentials}@{self.MYSQL_HOST}:{self.MYSQL_PORT}"
            f"/{self.MYSQL_DATABASE}?charset=utf8mb4"
        )

    class Config:
        env_file = _ENV_FILE
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
