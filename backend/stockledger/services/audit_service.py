# Overview: Service-layer operations for the audit trail; informed after order transitions, never consulted.

"""
Audit Trail Invariants

- Append-only: no updates or deletes of existing events.
- Written after the audited change has committed, in a separate transaction.
- A failed audit write is logged and swallowed; it never fails the caller.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditEvent, Order

logger = logging.getLogger(__name__)


def append_audit_event(
    *,
    tenant_id: int,
    action: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    description: Optional[str] = None,
) -> AuditEvent:
    ev = AuditEvent(
        tenant_id=tenant_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        old_values=old_values,
        new_values=new_values,
        description=description,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def record_order_change(
    order: Order,
    *,
    action: str,
    old_values: dict,
    new_values: dict,
    actor_user_id: int | None,
    description: str,
) -> AuditEvent | None:
    """Best-effort audit row for a committed order change."""
    order_id = order.id
    try:
        ev = append_audit_event(
            tenant_id=order.tenant_id,
            action=action,
            entity_type="Order",
            entity_id=order_id,
            actor_user_id=actor_user_id,
            old_values=old_values,
            new_values=new_values,
            description=description,
        )
        db.session.commit()
        return ev
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to record audit event %s for order %s", action, order_id)
        return None


def record_order_transition(
    order: Order,
    *,
    action: str,
    previous_status: str,
    actor_user_id: int | None,
) -> AuditEvent | None:
    return record_order_change(
        order,
        action=action,
        old_values={"status": str(previous_status)},
        new_values={"status": str(order.status), "payment_status": str(order.payment_status)},
        actor_user_id=actor_user_id,
        description=f"Order {order.order_number} {previous_status} -> {order.status}",
    )
