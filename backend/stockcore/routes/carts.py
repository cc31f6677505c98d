# Overview: Flask API routes for the acting user's cart and checkout.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..errors import StockCoreError
from ..services import cart_service

carts_bp = Blueprint("carts", __name__, url_prefix="/api/carts")


def _actor_required():
    if g.actor_id is None:
        return jsonify({"error": "Acting user required (X-Actor-Id)"}), 400
    return None


@carts_bp.get("")
@require_tenant_context
def list_cart_route():
    missing = _actor_required()
    if missing:
        return missing
    try:
        lines = cart_service.list_cart_lines(g.tenant_id, g.actor_id)
        summary = cart_service.get_reservation_summary(g.tenant_id, g.actor_id)
        return jsonify({
            "lines": [line.to_dict() for line in lines],
            "reservations": summary,
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.post("")
@require_tenant_context
def add_to_cart_route():
    missing = _actor_required()
    if missing:
        return missing
    data = request.get_json(silent=True) or {}
    if data.get("product_id") is None:
        return jsonify({"error": "product_id required"}), 400
    try:
        line = cart_service.add_to_cart(
            tenant_id=g.tenant_id,
            user_id=g.actor_id,
            product_id=data["product_id"],
            quantity=data.get("quantity"),
            actor_id=g.actor_id,
        )
        return jsonify({"line": line.to_dict()}), 201
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add cart line")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.patch("/<int:line_id>")
@require_tenant_context
def update_cart_line_route(line_id: int):
    missing = _actor_required()
    if missing:
        return missing
    data = request.get_json(silent=True) or {}
    try:
        line = cart_service.update_cart_line(
            tenant_id=g.tenant_id,
            user_id=g.actor_id,
            line_id=line_id,
            quantity=data.get("quantity"),
            product_id=data.get("product_id"),
            actor_id=g.actor_id,
        )
        return jsonify({"line": line.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cart line")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.delete("/<int:line_id>")
@require_tenant_context
def remove_cart_line_route(line_id: int):
    missing = _actor_required()
    if missing:
        return missing
    try:
        line = cart_service.remove_cart_line(
            tenant_id=g.tenant_id,
            user_id=g.actor_id,
            line_id=line_id,
            actor_id=g.actor_id,
        )
        return jsonify({"line": line.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove cart line")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.post("/<int:line_id>/duplicate")
@require_tenant_context
def duplicate_cart_line_route(line_id: int):
    missing = _actor_required()
    if missing:
        return missing
    try:
        line = cart_service.duplicate_cart_line(
            tenant_id=g.tenant_id,
            user_id=g.actor_id,
            line_id=line_id,
            actor_id=g.actor_id,
        )
        return jsonify({"line": line.to_dict()}), 201
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to duplicate cart line")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.post("/checkout")
@require_tenant_context
def checkout_route():
    """Body (all optional): line_ids, discount_type, discount_value, label_ids"""
    missing = _actor_required()
    if missing:
        return missing
    data = request.get_json(silent=True) or {}
    try:
        order = cart_service.checkout(
            tenant_id=g.tenant_id,
            user_id=g.actor_id,
            line_ids=data.get("line_ids"),
            discount_type=data.get("discount_type"),
            discount_value=data.get("discount_value"),
            label_ids=data.get("label_ids"),
            actor_id=g.actor_id,
        )
        return jsonify({"order": order.to_dict()}), 201
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to check out cart")
        return jsonify({"error": "Internal server error"}), 500
