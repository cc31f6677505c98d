# Overview: Flask API routes for stock adjustments; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..errors import StockCoreError
from ..services import adjustment_service

adjustments_bp = Blueprint("stock_adjustments", __name__, url_prefix="/api/stock-adjustments")


@adjustments_bp.get("")
@require_tenant_context
def list_adjustments_route():
    try:
        adjustments = adjustment_service.list_adjustments(
            g.tenant_id,
            product_id=request.args.get("product_id", type=int),
            adjustment_type=request.args.get("adjustment_type"),
            reason=request.args.get("reason"),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
        )
        return jsonify({"adjustments": [a.to_dict() for a in adjustments]}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list stock adjustments")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.post("")
@require_tenant_context
def create_adjustment_route():
    """
    Create a stock adjustment.

    Body: product_id, adjustment_type ("increase" | "decrease"), quantity,
    reason, notes?
    """
    data = request.get_json(silent=True) or {}
    if data.get("product_id") is None:
        return jsonify({"error": "product_id required"}), 400
    try:
        adjustment = adjustment_service.create_adjustment(
            tenant_id=g.tenant_id,
            product_id=data["product_id"],
            adjustment_type=data.get("adjustment_type"),
            quantity=data.get("quantity"),
            reason=data.get("reason"),
            notes=data.get("notes"),
            actor_id=g.actor_id,
        )
        return jsonify({"adjustment": adjustment.to_dict()}), 201
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.get("/<int:adjustment_id>")
@require_tenant_context
def get_adjustment_route(adjustment_id: int):
    try:
        adjustment = adjustment_service.get_adjustment(g.tenant_id, adjustment_id)
        return jsonify({"adjustment": adjustment.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.patch("/<int:adjustment_id>")
@require_tenant_context
def update_adjustment_route(adjustment_id: int):
    data = request.get_json(silent=True) or {}
    try:
        adjustment = adjustment_service.update_adjustment(
            tenant_id=g.tenant_id,
            adjustment_id=adjustment_id,
            changes=data,
            actor_id=g.actor_id,
        )
        return jsonify({"adjustment": adjustment.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.delete("/<int:adjustment_id>")
@require_tenant_context
def delete_adjustment_route(adjustment_id: int):
    """Reverse the adjustment's stock effect and soft-delete it."""
    try:
        adjustment = adjustment_service.delete_adjustment(
            tenant_id=g.tenant_id,
            adjustment_id=adjustment_id,
            actor_id=g.actor_id,
        )
        return jsonify({"adjustment": adjustment.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reverse stock adjustment")
        return jsonify({"error": "Internal server error"}), 500
