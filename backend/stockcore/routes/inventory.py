# Overview: Flask API routes for stock records and the movement ledger.

# backend/stockcore/routes/inventory.py
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..errors import StockCoreError
from ..services import movement_service, stock_service

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/products")
@require_tenant_context
def list_products_route():
    try:
        products = stock_service.list_stock_records(
            g.tenant_id,
            status=request.args.get("status"),
            search=request.args.get("search"),
            include_inactive=request.args.get("include_inactive") in ("1", "true"),
        )
        return jsonify({"products": [p.to_dict() for p in products]}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/products")
@require_tenant_context
def create_product_route():
    data = request.get_json(silent=True) or {}
    try:
        product = stock_service.create_product(
            tenant_id=g.tenant_id,
            name=data.get("name"),
            sku=data.get("sku"),
            price_cents=data.get("price_cents", 0),
            tax_rate_bps=data.get("tax_rate_bps", 0),
            quantity=data.get("quantity", 0),
            minimum_stock_quantity=data.get("minimum_stock_quantity"),
            actor_id=g.actor_id,
        )
        return jsonify({"product": product.to_dict()}), 201
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>")
@require_tenant_context
def get_product_route(product_id: int):
    try:
        product = stock_service.get_stock_record(g.tenant_id, product_id)
        return jsonify({"product": product.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load product")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.patch("/products/<int:product_id>/threshold")
@require_tenant_context
def update_threshold_route(product_id: int):
    data = request.get_json(silent=True) or {}
    if "minimum_stock_quantity" not in data:
        return jsonify({"error": "minimum_stock_quantity required (null clears it)"}), 400
    try:
        product = stock_service.update_minimum_stock_quantity(
            tenant_id=g.tenant_id,
            product_id=product_id,
            minimum_stock_quantity=data["minimum_stock_quantity"],
        )
        return jsonify({"product": product.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update stock threshold")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/products/<int:product_id>/recount")
@require_tenant_context
def recount_route(product_id: int):
    """Set on-hand to a counted value. Body: {"quantity": int, "notes": str?}"""
    data = request.get_json(silent=True) or {}
    if data.get("quantity") is None:
        return jsonify({"error": "quantity required"}), 400
    try:
        product = stock_service.set_stock_quantity(
            tenant_id=g.tenant_id,
            product_id=product_id,
            quantity=data["quantity"],
            actor_id=g.actor_id,
            notes=data.get("notes"),
        )
        return jsonify({"product": product.to_dict()}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to recount stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/movements")
@require_tenant_context
def list_movements_route():
    """
    Ledger read, newest first.

    Query: product_id, movement_type, reason, reference_type, reference_id,
    date_from, date_to (ISO-8601, inclusive), limit.
    """
    try:
        movements = movement_service.list_movements(
            g.tenant_id,
            product_id=request.args.get("product_id", type=int),
            movement_type=request.args.get("movement_type"),
            reason=request.args.get("reason"),
            reference_type=request.args.get("reference_type"),
            reference_id=request.args.get("reference_id", type=int),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            limit=request.args.get("limit", type=int),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except StockCoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/reconcile")
@require_tenant_context
def reconcile_route():
    try:
        report = stock_service.reconcile_stock(g.tenant_id, request.args.get("product_id", type=int))
        mismatched = [row for row in report if row["difference"] or not row["status_consistent"]]
        return jsonify({"products": report, "mismatched": len(mismatched)}), 200
    except Exception:
        current_app.logger.exception("Failed to reconcile stock")
        return jsonify({"error": "Internal server error"}), 500
