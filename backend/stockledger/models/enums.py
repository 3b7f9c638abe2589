"""
Closed vocabularies for persisted status and reference fields.

Stored as their string values (non-native enums) so SQLite and Postgres
share one schema.
"""
from __future__ import annotations

from enum import StrEnum

from ..extensions import db


class OrderStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    PARTIAL = "partial"
    REFUNDED = "refunded"


class WarehouseStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ReceiptStatus(StrEnum):
    ACTIVE = "active"
    VOIDED = "voided"


class MovementType(StrEnum):
    IN = "in"
    OUT = "out"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"
    RETURN = "return"


class ReferenceType(StrEnum):
    ORDER = "ORDER"
    ORDER_CANCELLATION = "ORDER_CANCELLATION"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


def sql_enum(enum_cls, name: str) -> db.Enum:
    return db.Enum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        values_callable=_values,
        length=32,
    )


order_status_enum = sql_enum(OrderStatus, "order_status")
payment_status_enum = sql_enum(PaymentStatus, "payment_status")
warehouse_status_enum = sql_enum(WarehouseStatus, "warehouse_status")
receipt_status_enum = sql_enum(ReceiptStatus, "receipt_status")
movement_type_enum = sql_enum(MovementType, "movement_type")
reference_type_enum = sql_enum(ReferenceType, "reference_type")
