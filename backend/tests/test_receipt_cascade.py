# Overview: Pytest coverage for receipt issuing, voiding and the order void cascade.

"""
Receipt Cascade Tests

When a completed order is cancelled, refunded or reopened, its active
receipts are voided after the order change commits. A receipt that cannot
be voided is reported, never rolled back into the order change.
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError
from stockledger.models import OrderStatus, Receipt, ReceiptStatus
from stockledger.services import order_service, receipt_service
from stockledger.services.errors import NotFound, PartialCascadeFailure, ReceiptAlreadyVoided


@pytest.fixture
def completed_order(db_session, tenant, order):
    order_service.complete_order(order.id, tenant.id, 1)
    return order


def receipt_status(db_session, receipt_id):
    db_session.expire_all()
    return db_session.get(Receipt, receipt_id)


class TestReceiptService:

    def test_issue_receipt_mirrors_order(self, db_session, tenant, completed_order):
        receipt = receipt_service.issue_receipt(tenant_id=tenant.id, order_id=completed_order.id, actor_user_id=2)

        assert receipt.status == ReceiptStatus.ACTIVE
        assert receipt.receipt_number == "RCP-000001"
        assert receipt.total_amount_cents == completed_order.total_amount_cents

    def test_issue_receipt_unknown_order(self, db_session, tenant):
        with pytest.raises(NotFound):
            receipt_service.issue_receipt(tenant_id=tenant.id, order_id=999999)

    def test_void_twice(self, db_session, tenant, completed_order):
        receipt = receipt_service.issue_receipt(tenant_id=tenant.id, order_id=completed_order.id)
        receipt_service.void_receipt(receipt.id, tenant.id, 1, "customer request")

        with pytest.raises(ReceiptAlreadyVoided):
            receipt_service.void_receipt(receipt.id, tenant.id, 1, "again")

    def test_void_other_tenant_receipt(self, db_session, tenant, other_tenant, completed_order):
        receipt = receipt_service.issue_receipt(tenant_id=tenant.id, order_id=completed_order.id)

        with pytest.raises(NotFound):
            receipt_service.void_receipt(receipt.id, other_tenant.id, 1, "not yours")


class TestCascade:

    def test_cancel_voids_receipts(self, db_session, tenant, completed_order):
        r1 = receipt_service.issue_receipt(tenant_id=tenant.id, order_id=completed_order.id)
        r2 = receipt_service.issue_receipt(tenant_id=tenant.id, order_id=completed_order.id)

        result = order_service.cancel_order(completed_order.id, tenant.id, 9)

        assert result.cascade.ok
        assert result.cascade.voided == [r1.id, r2.id]
        voided = receipt_status(db_session, r1.id)
        assert voided.status == ReceiptStatus.VOIDED
        assert voided.voided_by_user_id == 9
        assert voided.voided_at is not None
        assert voided.void_reason == f"Order {completed_order.order_number} status changed to cancelled"

    def test_reopen_voids_receipts(self, db_session, tenant, completed_order):
        r1 = receipt_service.issue_receipt(tenant_id=tenant.id, order_id=completed_order.id)

        order_service.update_order_status(completed_order.id, tenant.id, 1, "pending")

        voided = receipt_status(db_session, r1.id)
        assert voided.status == ReceiptStatus.VOIDED
        assert voided.void_reason.endswith("status changed to pending")

    def test_already_voided_receipts_are_left_alone(self, db_session, tenant, completed_order):
        r1 = receipt_service.issue_receipt(tenant_id=tenant.id, order_id=completed_order.id)
        receipt_service.void_receipt(r1.id, tenant.id, 1, "manual void")

        result = order_service.cancel_order(completed_order.id, tenant.id, 1)

        assert result.cascade.voided == []
        assert receipt_status(db_session, r1.id).void_reason == "manual void"

    def test_partial_failure_keeps_order_change(self, db_session, tenant, completed_order, monkeypatch):
        r1 = receipt_service.issue_receipt(tenant_id=tenant.id, order_id=completed_order.id)
        r2 = receipt_service.issue_receipt(tenant_id=tenant.id, order_id=completed_order.id)
        real_void = receipt_service.void_receipt

        def flaky_void(receipt_id, tenant_id, actor_user_id, reason):
            if receipt_id == r1.id:
                raise SQLAlchemyError("lock timeout")
            return real_void(receipt_id, tenant_id, actor_user_id, reason)

        monkeypatch.setattr(receipt_service, "void_receipt", flaky_void)

        result = order_service.cancel_order(completed_order.id, tenant.id, 1)

        assert result.order.status == OrderStatus.CANCELLED
        assert not result.cascade.ok
        assert [f["receipt_id"] for f in result.cascade.failed] == [r1.id]
        assert result.cascade.voided == [r2.id]
        assert isinstance(result.cascade.error, PartialCascadeFailure)
        assert receipt_status(db_session, r1.id).status == ReceiptStatus.ACTIVE
        assert receipt_status(db_session, r2.id).status == ReceiptStatus.VOIDED

    def test_completion_does_not_cascade(self, db_session, tenant, order):
        result = order_service.complete_order(order.id, tenant.id, 1)

        assert result.cascade is None
