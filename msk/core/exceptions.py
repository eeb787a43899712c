"""
Exception Definitions
"""

from typing import Any, Dict, Optional


class ErrorCode:
    """错误代码定义"""
    # 配置错误
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # 远端 API 错误
    REMOTE_UNAUTHORIZED = "REMOTE_UNAUTHORIZED"
    REMOTE_RATE_LIMITED = "REMOTE_RATE_LIMITED"
    REMOTE_PROTOCOL_ERROR = "REMOTE_PROTOCOL_ERROR"
    REMOTE_INCONSISTENT_PAGING = "REMOTE_INCONSISTENT_PAGING"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"

    # 本地存储错误
    STORE_WRITE_FAILED = "STORE_WRITE_FAILED"
    STORE_CONNECTION_FAILED = "STORE_CONNECTION_FAILED"
    STALE_MARK_FAILED = "STALE_MARK_FAILED"

    # 路由变更错误
    ROUTE_MUTATION_FAILED = "ROUTE_MUTATION_FAILED"

    # 任务取消/超时
    RUN_CANCELLED = "RUN_CANCELLED"


class CustomException(Exception):
    """自定义异常类，context 记录出错位置（parent_key/page/item_id 等）"""

    default_code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        self.code = code or self.default_code
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(self.message)

    def add_context(self, **context: Any) -> "CustomException":
        """补充上下文，已有的键不覆盖（保留最靠近出错点的信息）"""
        for key, value in context.items():
            if value is not None and key not in self.context:
                self.context[key] = value
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class ConfigurationError(CustomException):
    default_code = ErrorCode.CONFIGURATION_ERROR


class ValidationFailed(CustomException):
    """命令行参数或输入不合法"""
    default_code = ErrorCode.VALIDATION_ERROR


class RemoteUnauthorized(CustomException):
    """远端返回 401"""
    default_code = ErrorCode.REMOTE_UNAUTHORIZED


class RemoteRateLimited(CustomException):
    """远端返回 429"""
    default_code = ErrorCode.REMOTE_RATE_LIMITED


class RemoteProtocolError(CustomException):
    """远端返回非预期状态码、响应体无法解析或传输失败"""
    default_code = ErrorCode.REMOTE_PROTOCOL_ERROR


class RemoteInconsistentPaging(CustomException):
    """已处理数量未达到 total 时收到空页"""
    default_code = ErrorCode.REMOTE_INCONSISTENT_PAGING


class ResourceNotFound(CustomException):
    default_code = ErrorCode.RESOURCE_NOT_FOUND


class StoreWriteFailed(CustomException):
    """单页写入失败，整页已回滚"""
    default_code = ErrorCode.STORE_WRITE_FAILED


class StoreConnectionFailed(CustomException):
    default_code = ErrorCode.STORE_CONNECTION_FAILED


class StaleMarkFailed(CustomException):
    default_code = ErrorCode.STALE_MARK_FAILED


class RouteMutationFailed(CustomException):
    """某个路由表的变更失败，之前已变更的路由表不回滚"""
    default_code = ErrorCode.ROUTE_MUTATION_FAILED


class RunCancelled(CustomException):
    """任务超时或被取消"""
    default_code = ErrorCode.RUN_CANCELLED
