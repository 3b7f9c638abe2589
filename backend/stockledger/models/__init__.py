from .enums import (
    OrderStatus,
    PaymentStatus,
    WarehouseStatus,
    ReceiptStatus,
    MovementType,
    ReferenceType,
)
from .tenancy import Tenant
from .inventory import Product, Warehouse, InventoryPosition, StockMovement
from .orders import Order, OrderLine
from .receipts import Receipt
from .audit import AuditEvent

__all__ = [
    'OrderStatus', 'PaymentStatus', 'WarehouseStatus', 'ReceiptStatus',
    'MovementType', 'ReferenceType',
    'Tenant',
    'Product', 'Warehouse', 'InventoryPosition', 'StockMovement',
    'Order', 'OrderLine',
    'Receipt',
    'AuditEvent',
]
