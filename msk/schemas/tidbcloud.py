"""
TiDB Cloud API payload schemas.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from msk.schemas.base import BaseSchema

NODE_COMPONENTS = ("tidb", "tikv", "tiflash")


class ProjectItem(BaseSchema):
    """项目（API 使用 camelCase 字段）"""
    id: str
    org_id: str = Field("", alias="orgId")
    name: str = ""
    cluster_count: int = Field(0, alias="clusterCount")
    user_count: int = Field(0, alias="userCount")
    create_timestamp: Optional[str] = Field(None, alias="createTimestamp")
    aws_cmek_enabled: bool = Field(False, alias="awsCmekEnabled")

    @property
    def identifier(self) -> str:
        return self.id


class ClusterNodeItem(BaseSchema):
    node_name: str
    availability_zone: str = ""
    node_size: str = ""
    vcpu_num: int = 0
    ram_bytes: str = ""
    storage_size_gib: int = 0
    status: str = ""


class NodeMap(BaseSchema):
    tidb: List[ClusterNodeItem] = Field(default_factory=list)
    tikv: List[ClusterNodeItem] = Field(default_factory=list)
    tiflash: List[ClusterNodeItem] = Field(default_factory=list)

    def iter_nodes(self):
        """按 (组件类型, 节点) 遍历"""
        for component in NODE_COMPONENTS:
            for node in getattr(self, component):
                yield component, node


class ClusterStatus(BaseSchema):
    tidb_version: str = ""
    cluster_status: str = ""
    node_map: NodeMap = Field(default_factory=NodeMap)


class ClusterItem(BaseSchema):
    """集群（API 使用 snake_case 字段）"""
    id: str
    project_id: str = ""
    name: str = ""
    cluster_type: str = ""
    cloud_provider: str = ""
    region: str = ""
    create_timestamp: Optional[str] = None
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def identifier(self) -> str:
        return self.id


class ProjectListResponse(BaseSchema):
    items: List[ProjectItem] = Field(default_factory=list)
    total: int = 0


class ClusterListResponse(BaseSchema):
    items: List[ClusterItem] = Field(default_factory=list)
    total: int = 0


class ApiErrorResponse(BaseSchema):
    message: str = ""
    code: int = 0
    details: List[str] = Field(default_factory=list)
