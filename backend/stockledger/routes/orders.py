# backend/stockledger/routes/orders.py
"""
Order API Routes

- POST  /api/orders                      Create a PENDING order (no stock impact)
- GET   /api/orders                      List orders (?status=, ?customer_id=, ?search=, ?page=, ?per_page=)
- GET   /api/orders/:id                  Order with lines
- PATCH /api/orders/:id                  Update payment_status, payment_method, notes
- POST  /api/orders/:id/complete         Fulfill: deduct stock, mark completed
- POST  /api/orders/:id/cancel           Cancel; restores stock if it was completed
- PATCH /api/orders/:id/status           Generic transition {"status": "..."}
- GET   /api/orders/:id/movements        Ledger rows written for the order

TENANCY:
- Tenant and actor come from X-Tenant-Id / X-User-Id (see require_tenant),
  never from the request body.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..models import ReferenceType, StockMovement
from ..extensions import db
from ..services import order_service
from ..services.errors import FulfillmentError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _transition_response(result):
    body = result.to_dict()
    if result.cascade is not None and result.cascade.error is not None:
        body["warning"] = str(result.cascade.error)
    return jsonify(body), 200


@orders_bp.post("")
@require_tenant
def create_order_route():
    """
    Create an order.

    Body:
        {
            "items": [{"product_id": 1, "quantity": 2, "discount_bps": 0}],
            "customer_id": 7,          // optional
            "payment_method": "card",  // optional
            "notes": "..."             // optional
        }
    """
    data = request.get_json(silent=True) or {}

    try:
        order = order_service.create_order(
            tenant_id=g.tenant_id,
            actor_user_id=g.actor_id,
            lines=data.get("items") or [],
            customer_id=data.get("customer_id"),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(include_lines=True)}), 201

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_tenant
def list_orders_route():
    """
    Newest first. Unknown ?status= answers 400.

    ?limit= is accepted as an alias for ?per_page=.
    """
    try:
        result = order_service.list_orders(
            g.tenant_id,
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            search=request.args.get("search"),
            page=request.args.get("page", default=1, type=int),
            per_page=request.args.get("per_page", type=int) or request.args.get("limit", default=50, type=int),
        )
        return jsonify({
            "orders": [o.to_dict() for o in result["items"]],
            "count": result["count"],
            "pagination": result["pagination"],
        }), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.get("/<int:order_id>")
@require_tenant
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.tenant_id)
        return jsonify({"order": order.to_dict(include_lines=True)}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.patch("/<int:order_id>")
@require_tenant
def update_order_route(order_id: int):
    """
    Update payment fields and notes. Payment connectors use this to mark
    an order paid or partially paid.

    Body (any subset):
        {"payment_status": "partial", "payment_method": "card", "notes": "..."}

    "status" is rejected here; use PATCH /api/orders/:id/status.
    """
    data = request.get_json(silent=True) or {}
    if "status" in data:
        return jsonify({"error": "Use PATCH /api/orders/<id>/status to change status"}), 400

    fields = {name: data[name] for name in ("payment_method", "notes") if name in data}
    try:
        order = order_service.update_order(
            order_id,
            g.tenant_id,
            g.actor_id,
            payment_status=data.get("payment_status"),
            **fields,
        )
        return jsonify({"order": order.to_dict(include_lines=True)}), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/complete")
@require_tenant
def complete_order_route(order_id: int):
    """
    Complete (fulfill) an order.

    Error responses:
        404: Order not found
        409: Already completed / not reachable from current status
        422: No active warehouse, or short stock under the 'reject' policy
    """
    try:
        result = order_service.complete_order(order_id, g.tenant_id, g.actor_id)
        return _transition_response(result)

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to complete order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_tenant
def cancel_order_route(order_id: int):
    """
    Cancel an order.

    If the order was completed, stock is restored and its receipts are
    voided. A receipt that could not be voided is reported under
    "receipts.failed" and "warning"; the cancellation itself still stands.
    """
    try:
        result = order_service.cancel_order(order_id, g.tenant_id, g.actor_id)
        return _transition_response(result)

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_tenant
def update_order_status_route(order_id: int):
    """
    Move an order to any status reachable from its current one.

    Body:
        {"status": "processing"}
    """
    data = request.get_json(silent=True) or {}
    target = data.get("status")
    if not target:
        return jsonify({"error": "status is required"}), 400

    try:
        result = order_service.update_order_status(order_id, g.tenant_id, g.actor_id, target)
        return _transition_response(result)

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update status of order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/movements")
@require_tenant
def order_movements_route(order_id: int):
    """Deduction and restoration rows for the order, oldest first, across all cycles."""
    try:
        order = order_service.get_order(order_id, g.tenant_id)
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status

    movements = (
        db.session.query(StockMovement)
        .filter(
            StockMovement.tenant_id == g.tenant_id,
            StockMovement.reference_id == order.id,
            StockMovement.reference_type.in_([ReferenceType.ORDER, ReferenceType.ORDER_CANCELLATION]),
        )
        .order_by(StockMovement.id.asc())
        .all()
    )
    return jsonify({
        "order_id": order.id,
        "movements": [m.to_dict() for m in movements],
    }), 200
