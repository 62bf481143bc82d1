from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError

from app.db import init_db
from app.db.session import engine
from app.core.redis import async_redis
from app.core.exceptions import InventoryError, StorageUnavailable
from app.routers import (
    backorder_router,
    inventory_router,
    notification_router,
    restock_router,
    waitlist_router,
)
from app.schemas.inventory_api import APIInfoResponse, HealthCheckResponse

import uvicorn

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def check_database() -> bool:
    """存储可用性检查，只在边界层调用"""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except (OperationalError, InterfaceError) as e:
        logger.error("❌ Database connection failed: %s", e)
        return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 应用启动时的初始化
    logger.info("Starting application...")

    # 数据库连接检查
    if not check_database():
        raise RuntimeError("Database unavailable")
    logger.info("✅ Database connection successful")
    init_db()

    # Redis 连接检查
    try:
        await async_redis.ping()
        logger.info("✅ Redis connected successfully")
    except Exception as e:
        logger.warning(f"⚠️  Redis connection failed: {e}")
        logger.warning("⚠️  Application will run without Redis caching")

    yield

    # 应用关闭时的清理
    logger.info("Shutting down application...")
    await async_redis.aclose()
    engine.dispose()

# 创建 FastAPI 应用
app = FastAPI(
    title="预订单服务 API",
    description="缺货预订、到货履约与到货提醒服务，SKU 级加锁防超卖",
    version="1.0.0",
    lifespan=lifespan
)

# 添加 CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境中应该指定具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(inventory_router.router, prefix="/api/v1")
app.include_router(backorder_router.router, prefix="/api/v1")
app.include_router(waitlist_router.router, prefix="/api/v1")
app.include_router(notification_router.router, prefix="/api/v1")
app.include_router(restock_router.router, prefix="/api/v1")

# 全局异常处理
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc}")
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "ValidationError",
            "message": "请求参数验证失败",
            "details": exc.errors()
        }
    )

@app.exception_handler(InventoryError)
async def inventory_exception_handler(request: Request, exc: InventoryError):
    logger.warning(f"Business error: {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_result()
    )

@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
async def storage_exception_handler(request: Request, exc: Exception):
    logger.error(f"Storage error: {exc}")
    error = StorageUnavailable()
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_result()
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.error(f"HTTP error: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail
        }
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "服务器内部错误"
        }
    )

# 健康检查端点
@app.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """健康检查接口，数据库不可用时返回 503"""
    database = check_database()
    try:
        redis_ok = bool(await async_redis.ping())
    except Exception as e:
        logger.warning(f"⚠️  Redis ping failed: {e}")
        redis_ok = False

    content = {
        "status": "healthy" if database else "unhealthy",
        "service": "backorder-service",
        "version": "1.0.0",
        "database": database,
        "redis": redis_ok
    }
    if not database:
        return JSONResponse(status_code=503, content=content)
    return content

@app.get("/", response_model=APIInfoResponse)
async def read_root():
    """API 根路径"""
    return {
        "message": "欢迎使用预订单服务",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
