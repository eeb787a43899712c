"""
Database Configuration
"""

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from msk.config.settings import settings
from msk.core.exceptions import StoreConnectionFailed


def _build_engine(url: str):
    # SQLite 不支持连接池参数
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=settings.DB_ECHO)
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
        pool_pre_ping=True,
        connect_args={"connect_timeout": settings.DB_CONNECT_TIMEOUT_SECONDS},
        echo=settings.DB_ECHO,
    )


engine = _build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def ping_database(db: Session) -> None:
    """连接检查，失败时抛出 StoreConnectionFailed"""
    try:
        db.execute(text("SELECT 1"))
    except OperationalError as exc:
        raise StoreConnectionFailed(f"database connection failed: {exc.orig}") from exc


def init_database(bind=None, drop: bool = False) -> None:
    """创建（或删除）全部表，不做迁移"""
    # 注册所有模型
    import msk.models  # noqa: F401

    bind = bind or engine
    if drop:
        Base.metadata.drop_all(bind=bind)
    else:
        Base.metadata.create_all(bind=bind)
