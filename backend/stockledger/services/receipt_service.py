# Overview: Service-layer operations for receipts; issuing, voiding, and the order void cascade.

"""
Receipts are issued against orders by the POS/checkout flow and voided
either explicitly or by the cascade when an order's completion is undone.

VOID RULES:
- ACTIVE -> VOIDED only; voiding twice raises ReceiptAlreadyVoided.
- Each void is its own transaction; the row lock is held only for that
  receipt's update.
- The cascade is best-effort: one failing receipt is logged and the rest
  are still voided. The caller's order change is already committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Order, Receipt, ReceiptStatus, Tenant
from ..time_utils import utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import FulfillmentError, NotFound, PartialCascadeFailure, ReceiptAlreadyVoided

logger = logging.getLogger(__name__)


def issue_receipt(*, tenant_id: int, order_id: int, actor_user_id: int | None = None) -> Receipt:
    """
    Issue an ACTIVE receipt mirroring the order's totals.

    Receipt numbers are a per-tenant sequence (RCP-000001, ...). The
    tenant row is locked while the next number is read, so concurrent
    issues for one tenant take numbers one at a time.
    """
    def _op():
        begin_write_transaction()
        lock_for_update(db.session.query(Tenant).filter_by(id=tenant_id)).first()
        order = db.session.query(Order).filter_by(id=order_id, tenant_id=tenant_id).first()
        if order is None:
            raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})

        count = db.session.query(Receipt).filter_by(tenant_id=tenant_id).count()
        receipt = Receipt(
            tenant_id=tenant_id,
            order_id=order.id,
            receipt_number=f"RCP-{str(count + 1).zfill(6)}",
            total_amount_cents=order.total_amount_cents,
            tax_amount_cents=order.tax_amount_cents,
            discount_amount_cents=order.discount_amount_cents,
            payment_method=order.payment_method,
            status=ReceiptStatus.ACTIVE,
            created_by_user_id=actor_user_id,
        )
        db.session.add(receipt)
        db.session.commit()
        return receipt

    return run_with_retry(_op)


def void_receipt(receipt_id: int, tenant_id: int, actor_user_id: int | None, reason: str) -> Receipt:
    """
    Void one receipt.

    Raises:
        NotFound: receipt absent for the tenant
        ReceiptAlreadyVoided: receipt is not ACTIVE
    """
    def _op():
        receipt = lock_for_update(
            db.session.query(Receipt).filter_by(id=receipt_id, tenant_id=tenant_id)
        ).first()
        if receipt is None:
            raise NotFound(f"Receipt {receipt_id} not found", details={"receipt_id": receipt_id})

        if receipt.status == ReceiptStatus.VOIDED:
            raise ReceiptAlreadyVoided(
                f"Receipt {receipt.receipt_number} is already voided",
                details={"receipt_id": receipt_id},
            )

        receipt.status = ReceiptStatus.VOIDED
        receipt.voided_at = utcnow()
        receipt.voided_by_user_id = actor_user_id
        receipt.void_reason = reason

        db.session.commit()
        return receipt

    return run_with_retry(_op)


@dataclass
class CascadeResult:
    voided: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    error: PartialCascadeFailure | None = None

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "voided_receipt_ids": self.voided,
            "skipped_receipt_ids": self.skipped,
            "failed": self.failed,
        }


def void_receipts_for_order(order: Order, actor_user_id: int | None, reason: str) -> CascadeResult:
    """
    Void every ACTIVE receipt of the order, each independently.

    Never raises for a single receipt; failures end up in result.failed and
    result.error (a PartialCascadeFailure) and in the error log.
    """
    result = CascadeResult()
    receipt_ids = [
        row.id
        for row in db.session.query(Receipt.id)
        .filter_by(tenant_id=order.tenant_id, order_id=order.id, status=ReceiptStatus.ACTIVE)
        .order_by(Receipt.id.asc())
        .all()
    ]

    for receipt_id in receipt_ids:
        try:
            void_receipt(receipt_id, order.tenant_id, actor_user_id, reason)
        except ReceiptAlreadyVoided:
            # Voided by someone else since we listed it
            result.skipped.append(receipt_id)
        except (FulfillmentError, SQLAlchemyError) as exc:
            db.session.rollback()
            logger.error(
                "Failed to void receipt %s for order %s: %s",
                receipt_id, order.order_number, exc,
            )
            result.failed.append({"receipt_id": receipt_id, "error": str(exc)})
        else:
            result.voided.append(receipt_id)

    if result.failed:
        result.error = PartialCascadeFailure(
            f"{len(result.failed)} receipt(s) for order {order.order_number} could not be voided",
            details={"order_id": order.id, "failed": result.failed},
        )
        logger.error("%s", result.error, extra={"order_id": order.id, "failed": result.failed})
    elif result.voided:
        logger.info("Voided %s receipt(s) for order %s", len(result.voided), order.order_number)

    return result
