# Overview: Flask API routes for orders; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..errors import StockCoreError
from ..services import order_service
from ..validation import require_positive_int

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
@require_tenant_context
def list_orders_route():
    try:
        orders = order_service.list_orders(
            g.tenant_id,
            user_id=request.args.get("user_id", type=int),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            include_voided=request.args.get("include_voided", "true") != "false",
        )
        return jsonify({"orders": [o.to_dict(include_lines=False) for o in orders]}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("")
@require_tenant_context
def create_order_route():
    """
    Create an order and decrement stock.

    Body: user_id? (defaults to the acting user), lines [{product_id,
    quantity, unit_price_cents?}], discount_type?, discount_value?,
    label_ids?, order_date?
    """
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id") or g.actor_id
    if not user_id:
        return jsonify({"error": "user_id required"}), 400
    try:
        user_id = require_positive_int(user_id, "user_id")
        order = order_service.create_order(
            tenant_id=g.tenant_id,
            user_id=user_id,
            lines=data.get("lines"),
            discount_type=data.get("discount_type"),
            discount_value=data.get("discount_value"),
            label_ids=data.get("label_ids"),
            order_date=data.get("order_date"),
            actor_id=g.actor_id,
        )
        return jsonify({"order": order.to_dict()}), 201
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_tenant_context
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.tenant_id, order_id)
        return jsonify({"order": order.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>")
@require_tenant_context
def update_order_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.update_order(
            tenant_id=g.tenant_id,
            order_id=order_id,
            changes=data,
            actor_id=g.actor_id,
        )
        return jsonify({"order": order.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_tenant_context
def delete_order_route(order_id: int):
    try:
        order = order_service.delete_order(
            tenant_id=g.tenant_id,
            order_id=order_id,
            actor_id=g.actor_id,
        )
        return jsonify({"order": order.to_dict(include_lines=False)}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/void")
@require_tenant_context
def void_order_route(order_id: int):
    """Void the order and restore its stock. Body: {"reason": str?}"""
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.void_order(
            tenant_id=g.tenant_id,
            order_id=order_id,
            actor_id=g.actor_id,
            reason=data.get("reason"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/duplicate")
@require_tenant_context
def duplicate_order_route(order_id: int):
    try:
        order = order_service.duplicate_order(
            tenant_id=g.tenant_id,
            order_id=order_id,
            actor_id=g.actor_id,
        )
        return jsonify({"order": order.to_dict()}), 201
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to duplicate order")
        return jsonify({"error": "Internal server error"}), 500
