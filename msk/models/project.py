"""
Project Model
"""

from sqlalchemy import BigInteger, Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from msk.models.base import BaseModel


class Project(BaseModel):
    """TiDB Cloud 项目"""

    __tablename__ = "projects"

    id = Column(String(64), primary_key=True, comment="项目ID")
    org_id = Column(String(64), nullable=False, comment="组织ID")
    name = Column(String(255), nullable=False, comment="项目名称")
    cluster_count = Column(Integer, nullable=False, default=0, comment="集群数量")
    user_count = Column(Integer, nullable=False, default=0, comment="用户数量")
    create_timestamp = Column(BigInteger, nullable=False, comment="创建时间（秒级时间戳）")
    aws_cmek_enabled = Column(Boolean, nullable=False, default=False, comment="是否启用 AWS CMEK")

    clusters = relationship("Cluster", back_populates="project")
