# backend/stockledger/routes/warehouses.py
"""
Warehouse API Routes

- GET   /api/warehouses        List (?active_only=true to hide inactive)
- POST  /api/warehouses        Create {"name", "location"?, "status"?}
- PATCH /api/warehouses/:id    Change status {"status": "active" | "inactive"}

The oldest ACTIVE warehouse is the one orders deduct from.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_tenant
from ..models import WarehouseStatus
from ..services import warehouse_service
from ..services.errors import FulfillmentError


warehouses_bp = Blueprint("warehouses", __name__, url_prefix="/api/warehouses")


@warehouses_bp.get("")
@require_tenant
def list_warehouses_route():
    active_only = request.args.get("active_only", "false").lower() == "true"
    warehouses = warehouse_service.list_warehouses(g.tenant_id, include_inactive=not active_only)
    return jsonify({"warehouses": [w.to_dict() for w in warehouses]}), 200


@warehouses_bp.post("")
@require_tenant
def create_warehouse_route():
    data = request.get_json(silent=True) or {}

    try:
        warehouse = warehouse_service.create_warehouse(
            tenant_id=g.tenant_id,
            name=data.get("name"),
            location=data.get("location"),
            status=WarehouseStatus(data.get("status", WarehouseStatus.ACTIVE)),
        )
        return jsonify({"warehouse": warehouse.to_dict()}), 201

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@warehouses_bp.patch("/<int:warehouse_id>")
@require_tenant
def update_warehouse_route(warehouse_id: int):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return jsonify({"error": "status is required"}), 400

    try:
        warehouse = warehouse_service.set_warehouse_status(
            g.tenant_id, warehouse_id, WarehouseStatus(data["status"])
        )
        return jsonify({"warehouse": warehouse.to_dict()}), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
