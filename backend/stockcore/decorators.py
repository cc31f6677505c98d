# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    if not raw.isdigit():
        raise ValueError(name)
    return int(raw)


def require_tenant_context(f):
    """
    Establish tenant context from the upstream auth layer.

    Authentication happens before requests reach this service; the gateway
    forwards the resolved identifiers as headers. Sets:
    - g.tenant_id: X-Tenant-Id (required)
    - g.actor_id: X-Actor-Id (optional, the acting user)

    Returns 400 when X-Tenant-Id is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            tenant_id = _header_int("X-Tenant-Id")
            actor_id = _header_int("X-Actor-Id")
        except ValueError as exc:
            return jsonify({"error": f"{exc} header must be a positive integer"}), 400

        if not tenant_id:
            return jsonify({"error": "Tenant context required (X-Tenant-Id)"}), 400

        g.tenant_id = tenant_id
        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
