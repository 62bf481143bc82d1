"""库存对账引擎的错误分类"""

from typing import Optional


class InventoryError(Exception):
    """业务异常基类，code 与 status_code 供边界层映射响应"""

    code = "InventoryError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_result(self, **extra) -> dict:
        result = {"success": False, "error": self.code, "message": self.message}
        result.update(extra)
        return result


class ValidationError(InventoryError):
    code = "ValidationError"
    status_code = 422


class InsufficientStock(InventoryError):
    code = "InsufficientStock"
    status_code = 409

    def __init__(self, product_id: str, variant_id: Optional[str], requested: int, available: int):
        sku = product_id if not variant_id else f"{product_id}/{variant_id}"
        super().__init__(f"库存不足: {sku} 需要 {requested}，当前可用 {available}")
        self.product_id = product_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = available


class InvalidStateTransition(InventoryError):
    code = "InvalidStateTransition"
    status_code = 409


class AlreadySubscribed(InventoryError):
    code = "AlreadySubscribed"
    status_code = 409


class NotFound(InventoryError):
    code = "NotFound"
    status_code = 404


class LockConflict(InventoryError):
    code = "LockConflict"
    status_code = 429

    def __init__(self, message: str = "库存操作冲突，请稍后重试"):
        super().__init__(message)


class StorageUnavailable(InventoryError):
    code = "StorageUnavailable"
    status_code = 503

    def __init__(self, message: str = "存储服务不可用"):
        super().__init__(message)


# 结构化结果中的 error 码到 HTTP 状态码
ERROR_STATUS = {
    cls.code: cls.status_code
    for cls in (
        ValidationError,
        InsufficientStock,
        InvalidStateTransition,
        AlreadySubscribed,
        NotFound,
        LockConflict,
        StorageUnavailable,
    )
}


def storage_errors():
    """视为存储不可用的数据库异常类型"""
    from sqlalchemy.exc import InterfaceError, OperationalError

    return (OperationalError, InterfaceError)
