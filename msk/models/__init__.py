# Models package
# Ensure all model modules are imported so that SQLAlchemy can resolve string-based relationships
from msk.models.project import Project  # noqa: F401
from msk.models.cluster import Cluster, ClusterNode  # noqa: F401
