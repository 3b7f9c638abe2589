# backend/stockledger/routes/receipts.py
"""
Receipt API Routes

- POST /api/receipts             Issue a receipt for an order {"order_id"}
- GET  /api/receipts?order_id=   Receipts of an order
- POST /api/receipts/:id/void    Void one receipt {"reason"}
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..extensions import db
from ..models import Receipt
from ..services import receipt_service
from ..services.errors import FulfillmentError


receipts_bp = Blueprint("receipts", __name__, url_prefix="/api/receipts")


@receipts_bp.post("")
@require_tenant
def issue_receipt_route():
    data = request.get_json(silent=True) or {}
    if not data.get("order_id"):
        return jsonify({"error": "order_id is required"}), 400

    try:
        receipt = receipt_service.issue_receipt(
            tenant_id=g.tenant_id,
            order_id=int(data["order_id"]),
            actor_user_id=g.actor_id,
        )
        return jsonify({"receipt": receipt.to_dict()}), 201

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to issue receipt")
        return jsonify({"error": "Internal server error"}), 500


@receipts_bp.get("")
@require_tenant
def list_receipts_route():
    order_id = request.args.get("order_id", type=int)
    q = db.session.query(Receipt).filter(Receipt.tenant_id == g.tenant_id)
    if order_id is not None:
        q = q.filter(Receipt.order_id == order_id)
    receipts = q.order_by(Receipt.id.asc()).all()
    return jsonify({"receipts": [r.to_dict() for r in receipts]}), 200


@receipts_bp.post("/<int:receipt_id>/void")
@require_tenant
def void_receipt_route(receipt_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()
    if not reason:
        return jsonify({"error": "reason is required"}), 400

    try:
        receipt = receipt_service.void_receipt(receipt_id, g.tenant_id, g.actor_id, reason)
        return jsonify({"receipt": receipt.to_dict()}), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to void receipt %s", receipt_id)
        return jsonify({"error": "Internal server error"}), 500
