from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import ReceiptStatus, receipt_status_enum


class Receipt(db.Model):
    """
    Issued receipt, optionally tied to an order.

    Voiding is one-way (ACTIVE -> VOIDED) and carries who/when/why.
    Rendering and delivery live outside this service.
    """
    __tablename__ = "receipts"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "receipt_number", name="uq_receipts_tenant_number"),
        db.Index("ix_receipts_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    receipt_number = db.Column(db.String(64), nullable=False)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=True)

    status = db.Column(receipt_status_enum, nullable=False, default=ReceiptStatus.ACTIVE, index=True)

    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)

    order = db.relationship("Order", backref=db.backref("receipts", lazy=True))

    def __repr__(self) -> str:
        return f"<Receipt id={self.id} number={self.receipt_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_id": self.order_id,
            "receipt_number": self.receipt_number,
            "issued_at": to_utc_z(self.issued_at),
            "total_amount_cents": self.total_amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "payment_method": self.payment_method,
            "status": str(self.status),
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by_user_id": self.voided_by_user_id,
            "void_reason": self.void_reason,
            "created_by_user_id": self.created_by_user_id,
        }
