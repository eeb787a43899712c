"""
Cluster and Cluster Node Models
"""

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from msk.models.base import BaseModel


class Cluster(BaseModel):
    """TiDB Cloud 集群元数据"""

    __tablename__ = "clusters"

    id = Column(String(64), primary_key=True, comment="集群ID")
    project_id = Column(
        String(64),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="所属项目ID",
    )
    name = Column(String(255), nullable=False, comment="集群名称")
    cluster_type = Column(String(32), nullable=False, comment="集群类型: DEDICATED|DEVELOPER")
    cloud_provider = Column(String(32), nullable=False, comment="云厂商: AWS|GCP")
    region = Column(String(32), nullable=False, comment="区域")
    create_timestamp = Column(BigInteger, nullable=False, comment="创建时间（秒级时间戳）")
    tidb_version = Column(String(32), nullable=False, comment="TiDB 版本")
    cluster_status = Column(String(32), nullable=False, comment="集群状态")

    project = relationship("Project", back_populates="clusters")
    nodes = relationship("ClusterNode", back_populates="cluster")


class ClusterNode(BaseModel):
    """集群节点（tidb/tikv/tiflash）"""

    __tablename__ = "cluster_nodes"

    cluster_id = Column(
        String(64),
        ForeignKey("clusters.id", ondelete="CASCADE"),
        primary_key=True,
        comment="所属集群ID",
    )
    node_name = Column(String(255), primary_key=True, comment="节点名称")
    component_type = Column(String(16), nullable=False, comment="组件类型: tidb|tikv|tiflash")
    availability_zone = Column(String(64), nullable=False, default="", comment="可用区")
    node_size = Column(String(32), nullable=False, default="", comment="节点规格")
    vcpu_num = Column(Integer, nullable=False, default=0, comment="vCPU 数")
    ram_bytes = Column(String(32), nullable=False, default="", comment="内存字节数（API 原样返回的字符串）")
    storage_size_gib = Column(Integer, nullable=False, default=0, comment="存储大小（GiB）")
    status = Column(String(32), nullable=False, default="", comment="节点状态")

    cluster = relationship("Cluster", back_populates="nodes")
