# Overview: Flask API routes for container sales, container batches and the container pool.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import container_pool, container_service
from ..services.errors import LedgerError
from ..decorators import require_actor
from ..validation import parse_bool


containers_bp = Blueprint("containers", __name__, url_prefix="/api/containers")


# -----------------------------------------------------------------------------
# Sales
# -----------------------------------------------------------------------------

@containers_bp.post("/sales")
@require_actor
def create_container_sale_route():
    """
    Sell filled containers.

    Body: product_name, capacity, quantity, unit_price?, customer_name?,
    payment_method?, includes_container?, customer_brings_container?, sale_date?
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = container_service.create_container_sale(
            data.get("product_name"),
            data.get("capacity"),
            data.get("quantity"),
            unit_price=data.get("unit_price"),
            customer_name=data.get("customer_name"),
            payment_method=data.get("payment_method"),
            includes_container=parse_bool(data.get("includes_container"), "includes_container"),
            customer_brings_container=parse_bool(
                data.get("customer_brings_container"), "customer_brings_container", default=True
            ),
            sale_date=data.get("sale_date"),
            actor_user_id=g.actor_id,
        )
        return jsonify({"container_sale": sale.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create container sale")
        return jsonify({"error": "Internal server error"}), 500


@containers_bp.patch("/sales/<int:sale_id>")
@require_actor
def edit_container_sale_route(sale_id: int):
    """Body: {"quantity": <new quantity>}"""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("quantity") is None:
            return jsonify({"error": "quantity required"}), 400

        sale = container_service.edit_container_sale_quantity(sale_id, data["quantity"], g.actor_id)
        return jsonify({"container_sale": sale.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to edit container sale")
        return jsonify({"error": "Internal server error"}), 500


@containers_bp.delete("/sales/<int:sale_id>")
@require_actor
def delete_container_sale_route(sale_id: int):
    try:
        result = container_service.delete_container_sale(sale_id, g.actor_id)
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete container sale")
        return jsonify({"error": "Internal server error"}), 500


# -----------------------------------------------------------------------------
# Batches (container purchases)
# -----------------------------------------------------------------------------

@containers_bp.post("/batches")
@require_actor
def create_container_batch_route():
    """
    Record a container purchase.

    Body: product_name, capacity, quantity, unit_cost?, container_price?,
    unit_resale_price?, supplier_name?, state? (default FILLED), acquired_on?
    """
    try:
        data = request.get_json(silent=True) or {}
        batch = container_service.create_container_batch(
            data.get("product_name"),
            data.get("capacity"),
            data.get("quantity"),
            unit_cost=data.get("unit_cost"),
            container_price=data.get("container_price"),
            unit_resale_price=data.get("unit_resale_price"),
            supplier_name=data.get("supplier_name"),
            state=data.get("state") or "FILLED",
            acquired_on=data.get("acquired_on"),
            actor_user_id=g.actor_id,
        )
        return jsonify({"container_batch": batch.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create container batch")
        return jsonify({"error": "Internal server error"}), 500


@containers_bp.patch("/batches/<int:batch_id>")
@require_actor
def edit_container_batch_route(batch_id: int):
    """Body: {"quantity": <new quantity>}"""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("quantity") is None:
            return jsonify({"error": "quantity required"}), 400

        batch = container_service.edit_container_batch_quantity(batch_id, data["quantity"], g.actor_id)
        return jsonify({"container_batch": batch.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to edit container batch")
        return jsonify({"error": "Internal server error"}), 500


@containers_bp.delete("/batches/<int:batch_id>")
@require_actor
def delete_container_batch_route(batch_id: int):
    try:
        result = container_service.delete_container_batch(batch_id, g.actor_id)
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete container batch")
        return jsonify({"error": "Internal server error"}), 500


# -----------------------------------------------------------------------------
# Pool
# -----------------------------------------------------------------------------

@containers_bp.get("/pool")
def pool_summary_route():
    """Counts per product/capacity by state, plus filled stock available for sale."""
    try:
        return jsonify({
            "pool": container_pool.pool_summary(),
            "available": container_pool.available_products(),
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load container pool")
        return jsonify({"error": "Internal server error"}), 500


@containers_bp.post("/pool/transfer")
@require_actor
def transfer_containers_route():
    """
    Move containers between states (e.g. EMPTY -> FILLED after refilling).

    Body: product_name, capacity, from_state, to_state, quantity
    """
    try:
        data = request.get_json(silent=True) or {}
        result = container_service.move_containers(
            data.get("product_name"),
            data.get("capacity"),
            data.get("from_state"),
            data.get("to_state"),
            data.get("quantity"),
            actor_user_id=g.actor_id,
        )
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to move containers")
        return jsonify({"error": "Internal server error"}), 500
