"""服务层异常与存储错误映射。"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from pymongo.errors import OperationFailure, PyMongoError

# MongoDB 事务写冲突错误码
WRITE_CONFLICT_CODE = 112


class ServiceError(Exception):
    """服务层错误基类，code 用于接口层映射状态码。"""

    code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    code = "not_found"


class ForbiddenError(ServiceError):
    code = "forbidden"


class ConflictError(ServiceError):
    code = "conflict"


class InvalidError(ServiceError):
    code = "invalid"


class UnavailableError(ServiceError):
    code = "unavailable"


def is_write_conflict(exc: PyMongoError) -> bool:
    """判断是否为并发写冲突；主节点切换等其他瞬时事务错误按存储不可用处理。"""

    if not isinstance(exc, OperationFailure) or exc.timeout:
        return False
    if exc.code == WRITE_CONFLICT_CODE:
        return True
    return (exc.details or {}).get("codeName") == "WriteConflict"


@contextmanager
def storage_errors() -> Iterator[None]:
    """把驱动层异常转换为服务层错误，业务异常原样透传。"""

    try:
        yield
    except PyMongoError as exc:
        if is_write_conflict(exc):
            raise ConflictError("该记录已被其他管理员修改，请刷新后重试") from exc
        raise UnavailableError("存储服务暂不可用，请稍后重试") from exc
