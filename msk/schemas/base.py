"""
Base Schema for Pydantic
"""

from pydantic import BaseModel as PydanticBaseModel
from pydantic import ConfigDict


class BaseSchema(PydanticBaseModel):
    """基础模式类"""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)
