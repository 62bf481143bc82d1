"""依赖注入配置模块"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

# 数据库会话依赖
from app.db.session import SessionLocal
from sqlalchemy.orm import Session

# Redis 依赖
from app.core.redis import redis_client, redlock

from app.services.backorder_service import BackorderService
from app.services.email_sender import EmailSender
from app.services.inventory_monitor import InventoryMonitor
from app.services.inventory_service import InventoryService
from app.services.notification_service import NotificationService
from app.services.restock_service import RestockService
from app.services.waitlist_service import WaitlistService


def get_redis():
    """获取同步 Redis 客户端"""
    return redis_client

def get_redlock():
    """获取 Redlock 分布式锁实例"""
    return redlock

def get_db() -> Session:
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_email_sender() -> EmailSender:
    """获取邮件发送器"""
    return EmailSender()


# ==================== 身份 ====================

@dataclass
class Principal:
    """网关透传的调用方身份"""
    user_id: Optional[str]
    is_admin: bool = False


def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Principal:
    """从网关头 X-User-Id / X-User-Role 解析调用方"""
    return Principal(
        user_id=x_user_id,
        is_admin=(x_user_role or "").lower() == "admin",
    )

def require_user(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.user_id:
        raise HTTPException(status_code=401, detail="未登录")
    return principal

def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="需要管理员权限")
    return principal


# ==================== 服务 ====================

def get_inventory_service(
    db: Session = Depends(get_db),
    redis = Depends(get_redis),
    rlock = Depends(get_redlock)
) -> InventoryService:
    """获取库存服务实例（依赖注入）"""
    return InventoryService(db=db, redis=redis, rlock=rlock)

def get_backorder_service(
    db: Session = Depends(get_db),
    redis = Depends(get_redis),
    rlock = Depends(get_redlock)
) -> BackorderService:
    return BackorderService(db=db, redis=redis, rlock=rlock)

def get_restock_service(db: Session = Depends(get_db)) -> RestockService:
    return RestockService(db)

def get_waitlist_service(db: Session = Depends(get_db)) -> WaitlistService:
    return WaitlistService(db)

def get_notification_service(
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender)
) -> NotificationService:
    return NotificationService(db, sender)

def get_inventory_monitor(
    db: Session = Depends(get_db),
    redis = Depends(get_redis),
    rlock = Depends(get_redlock),
    sender: EmailSender = Depends(get_email_sender)
) -> InventoryMonitor:
    """获取库存监控实例（依赖注入）"""
    return InventoryMonitor(db, redis, rlock, sender)

