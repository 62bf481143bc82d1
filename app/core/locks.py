"""SKU 级别的分布式锁"""

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional, Tuple

from redlock import Redlock

from app.core.config import settings
from app.core.exceptions import LockConflict

logger = logging.getLogger(__name__)

BASE_VARIANT = ""


def normalize_variant(variant_id: Optional[str]) -> str:
    """变体为空时统一存为空串，保证 (product_id, variant_id) 唯一约束生效"""
    return variant_id or BASE_VARIANT


def denormalize_variant(variant_id: Optional[str]) -> Optional[str]:
    return variant_id or None


def sku_key(product_id: str, variant_id: Optional[str]) -> str:
    return f"{product_id}:{normalize_variant(variant_id) or 'base'}"


@contextmanager
def distributed_locks(rlock: Optional[Redlock], keys: Iterable[str]) -> Iterator[None]:
    """按 key 排序依次加锁，任一失败即释放已持有的锁并抛出 LockConflict

    未配置 Redlock 时直接放行，由数据库行锁串行化写入。
    """
    locks = []
    try:
        if rlock:
            for key in sorted(set(keys)):
                lock = rlock.lock(key, settings.LOCK_TTL_MS)
                if not lock:
                    raise LockConflict()
                locks.append(lock)
                logger.debug(f"Lock acquired: {key}")
        yield
    finally:
        for lock in locks:
            rlock.unlock(lock)


def sku_locks(rlock: Optional[Redlock], skus: Iterable[Tuple[str, Optional[str]]]):
    return distributed_locks(rlock, [f"lock:inventory:{sku_key(pid, vid)}" for pid, vid in skus])
