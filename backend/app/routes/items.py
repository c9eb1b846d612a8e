# Overview: Flask API routes for item stock reads and manual stock adjustments.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import stock_ledger
from ..services.errors import LedgerError
from ..decorators import require_actor
from ..validation import parse_int


items_bp = Blueprint("items", __name__, url_prefix="/api/items")


@items_bp.get("/<int:item_id>/movements")
def list_movements_route(item_id: int):
    """Most recent stock movements first. Query: limit (default 100, max 500)."""
    try:
        limit = parse_int(request.args.get("limit"), "limit", default=100)
        limit = max(1, min(limit, 500))
        movements = stock_ledger.list_movements(item_id, limit=limit)
        return jsonify({
            "item_id": item_id,
            "quantity": float(stock_ledger.snapshot(item_id)),
            "movements": [m.to_dict() for m in movements],
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/<int:item_id>/adjustments")
@require_actor
def adjust_stock_route(item_id: int):
    """
    Manual stock correction.

    Body: {"quantity_delta": <signed>, "reason"?: "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("quantity_delta") is None:
            return jsonify({"error": "quantity_delta required"}), 400

        movement = stock_ledger.adjust_stock(
            item_id,
            data["quantity_delta"],
            data.get("reason"),
            actor_user_id=g.actor_id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
