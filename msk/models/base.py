"""
Base Model
"""

from sqlalchemy import Boolean, Column, DateTime
from sqlalchemy.dialects import mysql

from msk.config.database import Base
from msk.utils.date_utils import utc_now

# MySQL/TiDB 默认 DATETIME 只有秒级精度，同步纪元比较需要微秒
Timestamp = DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")


class BaseModel(Base):
    """基础模型：软删除 + 生命周期时间戳"""

    __abstract__ = True

    is_deleted = Column(Boolean, nullable=False, default=False, index=True, comment="是否已删除（远端已不存在）")
    created_at = Column(Timestamp, nullable=False, default=utc_now, comment="首次写入时间")
    updated_at = Column(Timestamp, nullable=False, default=utc_now, index=True, comment="最近一次同步写入时间")
    deleted_at = Column(Timestamp, nullable=True, comment="标记删除时间")
