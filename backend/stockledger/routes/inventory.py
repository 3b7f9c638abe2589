# backend/stockledger/routes/inventory.py
"""
Inventory API Routes

- GET  /api/inventory/positions   On-hand per (product, warehouse)
- GET  /api/inventory/movements   Ledger listing, newest first
- POST /api/inventory/adjust      Manual set/add/subtract against one warehouse
- GET  /api/inventory/stats       Total / low / out-of-stock position counts
- GET  /api/inventory/reconcile   Projection vs. ledger replay drift report

Order deductions and restorations never go through these routes; they are
side effects of order status changes (see routes/orders.py).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..models import ReferenceType
from ..services import inventory_service, ledger_service
from ..services.errors import FulfillmentError
from ..time_utils import parse_since


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/positions")
@require_tenant
def list_positions_route():
    positions = inventory_service.list_positions(
        tenant_id=g.tenant_id,
        product_id=request.args.get("product_id", type=int),
        warehouse_id=request.args.get("warehouse_id", type=int),
    )
    return jsonify({"positions": [p.to_dict() for p in positions]}), 200


@inventory_bp.get("/movements")
@require_tenant
def list_movements_route():
    """
    Query params (all optional):
        product_id, warehouse_id, reference_type, reference_id,
        since (ISO-8601), limit (default 200, max 1000)
    """
    try:
        reference_type = request.args.get("reference_type")
        movements = ledger_service.list_movements(
            tenant_id=g.tenant_id,
            product_id=request.args.get("product_id", type=int),
            warehouse_id=request.args.get("warehouse_id", type=int),
            reference_type=ReferenceType(reference_type) if reference_type else None,
            reference_id=request.args.get("reference_id", type=int),
            since=parse_since(request.args.get("since")),
            limit=min(request.args.get("limit", default=200, type=int), 1000),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@inventory_bp.post("/adjust")
@require_tenant
def adjust_stock_route():
    """
    Manual stock adjustment.

    Body:
        {
            "product_id": 1,
            "warehouse_id": 1,
            "quantity": 25,
            "adjustment_type": "set" | "add" | "subtract",   // default "set"
            "note": "cycle count"                             // optional
        }
    """
    data = request.get_json(silent=True) or {}
    if data.get("product_id") is None or data.get("warehouse_id") is None or data.get("quantity") is None:
        return jsonify({"error": "product_id, warehouse_id and quantity are required"}), 400

    try:
        position, movement = inventory_service.adjust_stock(
            tenant_id=g.tenant_id,
            product_id=int(data["product_id"]),
            warehouse_id=int(data["warehouse_id"]),
            quantity=int(data["quantity"]),
            adjustment_type=data.get("adjustment_type", inventory_service.ADJUST_SET),
            note=data.get("note"),
            actor_user_id=g.actor_id,
        )
        return jsonify({
            "position": position.to_dict(),
            "movement": movement.to_dict() if movement else None,
        }), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/stats")
@require_tenant
def inventory_stats_route():
    threshold = request.args.get("threshold", type=int)
    return jsonify(inventory_service.get_inventory_stats(g.tenant_id, threshold)), 200


@inventory_bp.get("/reconcile")
@require_tenant
def reconcile_route():
    """Read-only drift report; fixing is a CLI operation (flask inventory reconcile --fix)."""
    drifts = ledger_service.reconcile_tenant(g.tenant_id, fix=False)
    return jsonify({
        "in_sync": not drifts,
        "drifts": [d.to_dict() for d in drifts],
    }), 200
