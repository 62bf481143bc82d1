# Models
from .product import Product, ProductVariant
from .stock_records import StockRecord
from .inventory_logs import InventoryLog, ChangeType
from .orders import Order, OrderItem, OrderType, OrderStatus
from .waitlist import WaitlistSubscription
from .notifications import RestockNotification, NotificationType, NotificationStatus
from .restock_schedules import RestockSchedule, ScheduleStatus
from .idempotency_keys import IdempotencyKey

__all__ = [
    "Product",
    "ProductVariant",
    "StockRecord",
    "InventoryLog",
    "ChangeType",
    "Order",
    "OrderItem",
    "OrderType",
    "OrderStatus",
    "WaitlistSubscription",
    "RestockNotification",
    "NotificationType",
    "NotificationStatus",
    "RestockSchedule",
    "ScheduleStatus",
    "IdempotencyKey",
]
