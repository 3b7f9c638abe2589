# Overview: Service-layer operations for orders; creation and the fulfillment lifecycle state machine.

"""
Order Lifecycle Service

================================================================================
PURPOSE: Move orders through their lifecycle and keep stock in step with it
================================================================================

STATE MACHINE:
    pending    -> processing | completed | cancelled
    processing -> pending | completed | cancelled
    completed  -> pending | processing | cancelled | refunded
    cancelled:  terminal
    refunded:   terminal for status updates; cancel_order may still close it

SIDE EFFECTS:
    entering completed:  deduct stock for every line (once per cycle);
                         payment_status pending -> paid
    leaving completed:   restore exactly what was deducted, then void the
                         order's active receipts (after commit, best-effort)
    reopening:           completed -> pending|processing also bumps
                         fulfillment_cycle so a later completion deducts again

ATOMICITY:
    Status change, projection updates and ledger rows commit together.
    On SQLite the transaction starts with BEGIN IMMEDIATE; elsewhere the
    order row is locked FOR UPDATE. Two concurrent completions of the same
    order serialize on that lock; the loser sees AlreadyInState.

INVENTORY FAILURE POLICY (INVENTORY_FAILURE_POLICY):
    strict       any inventory failure aborts the whole transition
    best_effort  storage failures inside the inventory step roll back to a
                 savepoint and are logged; the status change still commits
    NoWarehouseAvailable and InsufficientStock abort under both policies.

================================================================================
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Order, OrderLine, OrderStatus, PaymentStatus, Product
from ..time_utils import utcnow
from . import audit_service, inventory_service, receipt_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import AlreadyInState, FulfillmentError, InvalidTransition, NotFound
from .inventory_service import AdjustmentOutcome
from .receipt_service import CascadeResult

logger = logging.getLogger(__name__)


TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.PENDING, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: {
        OrderStatus.PENDING,
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}
TERMINAL_STATUSES = {OrderStatus.CANCELLED, OrderStatus.REFUNDED}

ORDER_NUMBER_ATTEMPTS = 5


@dataclass
class TransitionResult:
    """Outcome of one status change, including best-effort side effects."""
    order: Order
    previous_status: OrderStatus
    inventory: AdjustmentOutcome | None = None
    cascade: CascadeResult | None = None

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "previous_status": str(self.previous_status),
            "inventory": self.inventory.to_dict() if self.inventory else None,
            "receipts": self.cascade.to_dict() if self.cascade else None,
        }


def _parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidTransition(
            f"Unknown order status {value!r}",
            details={"allowed": [s.value for s in OrderStatus]},
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """True if to_status is reachable from from_status in one step."""
    return _parse_status(to_status) in TRANSITIONS[_parse_status(from_status)]


def _allowed_targets(current: OrderStatus, *, cancel: bool = False) -> set[OrderStatus]:
    allowed = set(TRANSITIONS[current])
    if cancel and current != OrderStatus.CANCELLED:
        allowed.add(OrderStatus.CANCELLED)
    return allowed


def _validate_transition(order: Order, current: OrderStatus, target: OrderStatus, *, cancel: bool = False) -> None:
    allowed = _allowed_targets(current, cancel=cancel)
    if current == target:
        raise AlreadyInState(
            f"Order {order.order_number} is already {target}",
            details={"order_id": order.id, "status": str(current)},
        )
    if target not in allowed:
        raise InvalidTransition(
            f"Cannot change order {order.order_number} from {current} to {target}",
            details={
                "order_id": order.id,
                "from_status": str(current),
                "to_status": str(target),
                "allowed": sorted(s.value for s in allowed),
            },
        )


def get_order(order_id: int, tenant_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id, tenant_id=tenant_id).first()
    if order is None:
        raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def list_orders(
    tenant_id: int,
    *,
    status: str | None = None,
    customer_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    """
    Newest-first order listing for one tenant.

    search matches order_number or notes (case-insensitive substring).
    Unknown status values raise FulfillmentError (400), not InvalidTransition.

    Returns:
        Dict with 'items' (Order rows), 'count' and 'pagination'.
    """
    q = db.session.query(Order).filter(Order.tenant_id == tenant_id)
    if status:
        try:
            q = q.filter(Order.status == OrderStatus(status))
        except ValueError:
            raise FulfillmentError(
                f"Unknown order status {status!r}",
                details={"field": "status", "allowed": [s.value for s in OrderStatus]},
            )
    if customer_id is not None:
        q = q.filter(Order.customer_id == customer_id)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(db.or_(Order.order_number.ilike(pattern), Order.notes.ilike(pattern)))

    per_page = min(max(per_page or 50, 1), 500)
    page = max(page or 1, 1)

    total = q.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    rows = (
        q.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": rows,
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _load_order_for_update(order_id: int, tenant_id: int) -> Order:
    order = lock_for_update(
        db.session.query(Order).filter_by(id=order_id, tenant_id=tenant_id)
    ).first()
    if order is None:
        raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def _run_inventory_step(step, order: Order, lines: list[OrderLine], actor_user_id: int | None) -> AdjustmentOutcome:
    if inventory_service.get_inventory_failure_policy() == inventory_service.FAILURE_STRICT:
        return step(order, lines, actor_user_id=actor_user_id)

    try:
        with db.session.begin_nested():
            return step(order, lines, actor_user_id=actor_user_id)
    except (FulfillmentError, OperationalError, StaleDataError):
        raise
    except SQLAlchemyError:
        logger.exception(
            "Inventory %s failed for order %s; continuing under best_effort policy",
            step.__name__, order.order_number,
        )
        return AdjustmentOutcome(applied=False, reason="failed")


def transition(
    order_id: int,
    tenant_id: int,
    actor_user_id: int | None,
    target_status,
    *,
    action: str = "UPDATE_ORDER_STATUS",
    cancel: bool = False,
) -> TransitionResult:
    """
    Validate and execute one order status change with its side effects.

    cancel=True also admits CANCELLED from statuses the table leaves
    without exits (refunded); it never reopens a cancelled order.

    Raises:
        NotFound, AlreadyInState, InvalidTransition: nothing changed
        NoWarehouseAvailable, InsufficientStock: nothing changed
    """
    target = _parse_status(target_status)

    def _op():
        begin_write_transaction()
        order = _load_order_for_update(order_id, tenant_id)
        previous = OrderStatus(order.status)
        _validate_transition(order, previous, target, cancel=cancel)

        lines = db.session.query(OrderLine).filter_by(order_id=order.id).order_by(OrderLine.id.asc()).all()
        now = utcnow()
        outcome = None

        if target == OrderStatus.COMPLETED:
            outcome = _run_inventory_step(inventory_service.deduct_for_order, order, lines, actor_user_id)
            if order.payment_status == PaymentStatus.PENDING:
                order.payment_status = PaymentStatus.PAID
            order.completed_at = now
        elif previous == OrderStatus.COMPLETED:
            outcome = _run_inventory_step(inventory_service.restore_for_order, order, lines, actor_user_id)
            if target not in TERMINAL_STATUSES:
                order.fulfillment_cycle = order.fulfillment_cycle + 1
                order.completed_at = None

        if target == OrderStatus.REFUNDED and order.payment_status in (PaymentStatus.PAID, PaymentStatus.PARTIAL):
            order.payment_status = PaymentStatus.REFUNDED
        if target == OrderStatus.CANCELLED:
            order.cancelled_at = now

        order.status = target
        db.session.commit()
        return order, previous, outcome

    order, previous, outcome = run_with_retry(_op)
    logger.info(
        "Order %s %s -> %s (inventory: %s)",
        order.order_number, previous, target, outcome.reason if outcome else "none",
    )

    result = TransitionResult(order=order, previous_status=previous, inventory=outcome)
    if previous == OrderStatus.COMPLETED:
        reason = f"Order {order.order_number} status changed to {target}"
        result.cascade = receipt_service.void_receipts_for_order(order, actor_user_id, reason)

    audit_service.record_order_transition(
        order,
        action=action,
        previous_status=previous,
        actor_user_id=actor_user_id,
    )
    return result


def complete_order(order_id: int, tenant_id: int, actor_user_id: int | None) -> TransitionResult:
    """Fulfill an order: deduct stock and mark it completed."""
    return transition(order_id, tenant_id, actor_user_id, OrderStatus.COMPLETED, action="COMPLETE_ORDER")


def cancel_order(order_id: int, tenant_id: int, actor_user_id: int | None) -> TransitionResult:
    """
    Cancel from any status except cancelled.

    Restores stock only if the order was completed. A refunded order was
    already restored when it left completed, so cancelling it only closes
    the order; payment_status stays refunded.
    """
    return transition(
        order_id, tenant_id, actor_user_id, OrderStatus.CANCELLED, action="CANCEL_ORDER", cancel=True
    )


def update_order_status(order_id: int, tenant_id: int, actor_user_id: int | None, target_status) -> TransitionResult:
    return transition(order_id, tenant_id, actor_user_id, target_status, action="UPDATE_ORDER_STATUS")


_UNSET = object()


def update_order(
    order_id: int,
    tenant_id: int,
    actor_user_id: int | None,
    *,
    payment_status=None,
    payment_method=_UNSET,
    notes=_UNSET,
) -> Order:
    """
    Update payment fields and notes. Status changes go through transition().

    payment_method and notes accept None to clear them; leaving them out
    keeps the stored value. No stock side effects.

    Raises:
        NotFound: order absent for the tenant
        FulfillmentError: unknown payment_status, or nothing to update
    """
    changes = {}
    if payment_status is not None:
        try:
            changes["payment_status"] = PaymentStatus(payment_status)
        except ValueError:
            raise FulfillmentError(
                f"Unknown payment status {payment_status!r}",
                details={"field": "payment_status", "allowed": [s.value for s in PaymentStatus]},
            )
    for name, value in (("payment_method", payment_method), ("notes", notes)):
        if value is _UNSET:
            continue
        if value is not None and not isinstance(value, str):
            raise FulfillmentError(f"{name} must be a string", details={"field": name})
        changes[name] = value
    if not changes:
        raise FulfillmentError("Nothing to update", details={"fields": ["payment_status", "payment_method", "notes"]})

    def _op():
        begin_write_transaction()
        order = _load_order_for_update(order_id, tenant_id)
        old_values = {}
        new_values = {}
        for name, value in changes.items():
            current = getattr(order, name)
            if current == value:
                continue
            old_values[name] = str(current) if current is not None else None
            new_values[name] = str(value) if value is not None else None
            setattr(order, name, value)
        db.session.commit()
        return order, old_values, new_values

    order, old_values, new_values = run_with_retry(_op)
    if new_values:
        logger.info("Order %s updated: %s", order.order_number, ", ".join(sorted(new_values)))
        audit_service.record_order_change(
            order,
            action="UPDATE_ORDER",
            old_values=old_values,
            new_values=new_values,
            actor_user_id=actor_user_id,
            description=f"Order {order.order_number} updated",
        )
    return order


# =============================================================================
# ORDER CREATION
# =============================================================================

def generate_order_number() -> str:
    timestamp = str(int(time.time() * 1000))[-8:]
    suffix = str(secrets.randbelow(1000)).zfill(3)
    return f"ORD-{timestamp}-{suffix}"


def _bps_of(amount_cents: int, bps: int) -> int:
    # nearest-cent rounding (half-up)
    return (amount_cents * bps + 5000) // 10000


def compute_line_amounts(quantity: int, unit_price_cents: int, tax_rate_bps: int, discount_bps: int) -> dict:
    gross = quantity * unit_price_cents
    discount = _bps_of(gross, discount_bps)
    net = gross - discount
    tax = _bps_of(net, tax_rate_bps)
    return {
        "net_cents": net,
        "discount_cents": discount,
        "tax_cents": tax,
        "subtotal_cents": net + tax,
    }


def _coerce_int(value, field: str, *, minimum: int) -> int:
    """Accept ints, integral floats (3.0) and digit strings; never truncate."""
    if isinstance(value, bool):
        number = None
    elif isinstance(value, int):
        number = value
    elif isinstance(value, float):
        number = int(value) if value.is_integer() else None
    elif isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError:
            number = None
    else:
        number = None
    if number is None:
        raise FulfillmentError(f"{field} must be an integer", details={"field": field, "value": repr(value)})
    if number < minimum:
        raise FulfillmentError(f"{field} must be >= {minimum}", details={"field": field})
    return number


def create_order(
    *,
    tenant_id: int,
    actor_user_id: int | None,
    lines: list[dict],
    customer_id: int | None = None,
    payment_method: str | None = None,
    notes: str | None = None,
) -> Order:
    """
    Create a PENDING order. No inventory impact.

    Each line: product_id, quantity, and optionally unit_price_cents,
    tax_rate_bps, discount_bps (defaults come from the product), notes.
    """
    if not lines:
        raise FulfillmentError("Order must have at least one item")

    parsed = []
    for item in lines:
        if not item.get("product_id") or not item.get("quantity"):
            raise FulfillmentError("Each item must have product_id and quantity")
        parsed.append({
            "product_id": _coerce_int(item["product_id"], "product_id", minimum=1),
            "quantity": _coerce_int(item["quantity"], "quantity", minimum=1),
            "unit_price_cents": item.get("unit_price_cents"),
            "tax_rate_bps": item.get("tax_rate_bps"),
            "discount_bps": _coerce_int(item.get("discount_bps") or 0, "discount_bps", minimum=0),
            "notes": item.get("notes"),
        })

    def _op():
        begin_write_transaction()
        product_ids = {item["product_id"] for item in parsed}
        products = {
            p.id: p
            for p in db.session.query(Product)
            .filter(Product.tenant_id == tenant_id, Product.id.in_(product_ids))
            .all()
        }
        missing = sorted(product_ids - set(products))
        if missing:
            raise NotFound(f"Product {missing[0]} not found", details={"product_ids": missing})

        order_lines = []
        net_total = tax_total = discount_total = 0
        for item in parsed:
            product = products[item["product_id"]]
            unit_price = item["unit_price_cents"]
            if unit_price is None:
                unit_price = product.price_cents or 0
            unit_price = _coerce_int(unit_price, "unit_price_cents", minimum=0)
            tax_rate = item["tax_rate_bps"]
            if tax_rate is None:
                tax_rate = product.tax_rate_bps or 0
            tax_rate = _coerce_int(tax_rate, "tax_rate_bps", minimum=0)

            amounts = compute_line_amounts(item["quantity"], unit_price, tax_rate, item["discount_bps"])
            net_total += amounts["net_cents"]
            tax_total += amounts["tax_cents"]
            discount_total += amounts["discount_cents"]
            order_lines.append(OrderLine(
                product_id=product.id,
                quantity=item["quantity"],
                unit_price_cents=unit_price,
                tax_rate_bps=tax_rate,
                discount_bps=item["discount_bps"],
                discount_cents=amounts["discount_cents"],
                tax_cents=amounts["tax_cents"],
                subtotal_cents=amounts["subtotal_cents"],
                notes=item["notes"],
            ))

        for _ in range(ORDER_NUMBER_ATTEMPTS):
            order_number = generate_order_number()
            taken = db.session.query(Order.id).filter_by(
                tenant_id=tenant_id, order_number=order_number
            ).first()
            if taken:
                continue

            order = Order(
                tenant_id=tenant_id,
                order_number=order_number,
                customer_id=customer_id,
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                payment_method=payment_method,
                total_amount_cents=net_total + tax_total,
                tax_amount_cents=tax_total,
                discount_amount_cents=discount_total,
                notes=notes,
                created_by_user_id=actor_user_id,
            )
            try:
                with db.session.begin_nested():
                    db.session.add(order)
            except IntegrityError:
                logger.info("Order number %s collided; retrying", order_number)
                continue
            break
        else:
            raise FulfillmentError("Could not allocate a unique order number")

        for line in order_lines:
            line.order_id = order.id
            db.session.add(line)

        db.session.commit()
        logger.info("Order %s created with %s line(s)", order.order_number, len(order_lines))
        return order

    return run_with_retry(_op)
