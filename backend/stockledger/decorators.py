# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import Tenant


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return False


def require_tenant(f):
    """
    Establish tenant context from request headers.

    Sets:
    - g.tenant_id: from X-Tenant-Id (required, must name an active tenant)
    - g.actor_id: from X-User-Id (optional; recorded on ledger rows and audit events)

    Every query a route makes is scoped by g.tenant_id; ids from the URL or
    body are never trusted to carry the tenant.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = _header_int("X-Tenant-Id")
        if not tenant_id:
            return jsonify({"error": "X-Tenant-Id header required"}), 400

        actor_id = _header_int("X-User-Id")
        if actor_id is False:
            return jsonify({"error": "X-User-Id must be an integer"}), 400

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None or not tenant.is_active:
            return jsonify({"error": "Unknown or inactive tenant"}), 403

        g.tenant_id = tenant.id
        g.actor_id = actor_id

        return f(*args, **kwargs)

    return decorated_function
