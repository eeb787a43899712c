"""
TiDB Cloud API client and paginated remote sources.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Type

import httpx  # type: ignore
from httpx import Timeout
from pydantic import ValidationError

from msk.config.settings import settings
from msk.core.deadline import Deadline
from msk.core.exceptions import (
    ConfigurationError,
    RemoteProtocolError,
    RemoteRateLimited,
    RemoteUnauthorized,
    RunCancelled,
)
from msk.core.logging import logger
from msk.core.pagination import Page
from msk.schemas.base import BaseSchema
from msk.schemas.tidbcloud import ApiErrorResponse, ClusterListResponse, ProjectListResponse

RATE_LIMIT_DOC = "https://docs.pingcap.com/tidbcloud/api/v1beta/#section/Rate-Limiting"


class TiDBCloudClient:
    """TiDB Cloud API 客户端（HTTP Digest 认证，单次请求不重试）"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        deadline: Optional[Deadline] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        api_key = api_key if api_key is not None else settings.MSK_API_KEY
        api_secret = api_secret if api_secret is not None else settings.MSK_API_SECRET
        if not api_key or not api_secret:
            raise ConfigurationError("MSK_API_KEY and MSK_API_SECRET must be set")
        self.base_url = (base_url or settings.MSK_API_ENDPOINT_BASE).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.MSK_HTTP_TIMEOUT_SECONDS
        self.deadline = deadline or Deadline.unbounded()
        self._client = httpx.Client(
            base_url=self.base_url,
            auth=httpx.DigestAuth(api_key, api_secret),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "TiDBCloudClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get_page(
        self,
        path: str,
        page: int,
        page_size: int,
        schema: Type[BaseSchema],
        **context: Any,
    ):
        """请求一页数据，返回解析后的 schema 对象"""
        params = {"page": page, "page_size": page_size}
        request_timeout = self.deadline.bound(self.timeout)
        if request_timeout <= 0:
            raise RunCancelled(f"no time left to request {path}", page=page, **context)
        try:
            response = self._client.get(path, params=params, timeout=Timeout(request_timeout))
        except httpx.TimeoutException as exc:
            if self.deadline.expired:
                raise RunCancelled(f"run time limit reached while requesting {path}", page=page, **context) from exc
            raise RemoteProtocolError(f"request to {path} timed out: {exc}", page=page, **context) from exc
        except httpx.HTTPError as exc:
            logger.error(f"TiDB Cloud 请求失败: path={path}, page={page}, 错误类型={type(exc).__name__}, 错误={exc}")
            raise RemoteProtocolError(f"request to {path} failed: {exc}", page=page, **context) from exc

        if response.status_code == httpx.codes.OK:
            try:
                return schema.model_validate(response.json())
            except (ValueError, ValidationError) as exc:
                raise RemoteProtocolError(
                    f"request succeeded but response from {path} could not be decoded: {exc}",
                    page=page,
                    **context,
                ) from exc

        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise RemoteUnauthorized("unauthorized: check your API key", page=page, **context)
        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            raise RemoteRateLimited(
                f"rate limit: retry after some minutes. See {RATE_LIMIT_DOC}", page=page, **context
            )
        raise self._error_from_response(path, response, page, context)

    def _error_from_response(
        self, path: str, response: httpx.Response, page: int, context: Dict[str, Any]
    ) -> RemoteProtocolError:
        status = f"{response.status_code} {response.reason_phrase}"
        try:
            error = ApiErrorResponse.model_validate(response.json())
        except (ValueError, ValidationError):
            return RemoteProtocolError(
                f"failed to decode error response from TiDB Cloud API, status: {status}",
                page=page,
                status=response.status_code,
                **context,
            )
        return RemoteProtocolError(
            f"error from TiDB Cloud API: {error.message} (code: {error.code}, "
            f"details: {error.details}, endpoint: {path}), status: {status}",
            page=page,
            status=response.status_code,
            **context,
        )


class ProjectSource:
    """API key 可见的所有项目"""

    resource = "projects"

    def __init__(self, client: TiDBCloudClient):
        self.client = client

    def fetch(self, parent_key: str, page: int, page_size: int) -> Page:
        result = self.client.get_page("projects", page, page_size, ProjectListResponse)
        return Page(items=result.items, total=result.total)


class ClusterSource:
    """单个项目下的集群"""

    resource = "clusters"

    def __init__(self, client: TiDBCloudClient):
        self.client = client

    def fetch(self, parent_key: str, page: int, page_size: int) -> Page:
        result = self.client.get_page(
            f"projects/{parent_key}/clusters", page, page_size, ClusterListResponse, parent_key=parent_key
        )
        return Page(items=result.items, total=result.total)
