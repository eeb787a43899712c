"""
AWS Utils
"""

from typing import Any, Dict, Iterable, Mapping, Optional

import boto3
from botocore.config import Config as BotoConfig

from msk.config.settings import settings


def get_name_from_tags(tags: Optional[Iterable[Mapping[str, Any]]]) -> str:
    """从 AWS 标签中取 Name，没有时返回空字符串"""
    for tag in tags or []:
        if tag.get("Key") == "Name":
            return tag.get("Value") or ""
    return ""


def get_aws_client(service_name: str, region: Optional[str] = None, profile: Optional[str] = None):
    """创建带超时的 boto3 客户端，单次尝试不重试"""
    config = BotoConfig(
        connect_timeout=settings.AWS_CONNECT_TIMEOUT_SECONDS,
        read_timeout=settings.AWS_READ_TIMEOUT_SECONDS,
        retries={"max_attempts": 1, "mode": "standard"},
    )
    region = region or settings.AWS_REGION
    profile = profile or settings.AWS_PROFILE
    kwargs: Dict[str, Any] = {"config": config}
    if region:
        kwargs["region_name"] = region
    if profile:
        session = boto3.Session(profile_name=profile)
        return session.client(service_name, **kwargs)
    return boto3.client(service_name, **kwargs)
