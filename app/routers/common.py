"""路由层公共工具：业务结果到 HTTP 响应的映射"""

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from starlette.responses import JSONResponse

from app.core.dependencies import Principal
from app.core.exceptions import ERROR_STATUS, InventoryError, storage_errors

# 交给全局异常处理器的异常，路由不再包装成 500
PASSTHROUGH = (HTTPException, InventoryError) + storage_errors()


def respond(result: dict):
    """成功结果原样返回，失败结果按 error 码映射状态码（未知码 400）"""
    if result.get("success", True):
        return result
    status_code = ERROR_STATUS.get(result.get("error"), 400)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(result))


def ensure_owner(principal: Principal, user_id: str) -> None:
    """本人或管理员才能访问"""
    if not principal.is_admin and principal.user_id != user_id:
        raise HTTPException(status_code=403, detail="无权访问该订单")
