# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/app/routes/sales.py
"""Sales API routes: create, read, settlement status, reversal"""

from flask import Blueprint, request, jsonify, g

from ..services import sales_service
from ..services.errors import LedgerError
from ..decorators import require_actor
from flask import current_app


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
@require_actor
def create_sale_route():
    """
    Commit a sale.

    Body: lines[{item_id, quantity, unit_price?}], client_id?, client_name?,
    payment_method?, total_amount?, discount?, final_amount?, paid_amount?,
    status?, sale_date?

    Returns the sale with its lines and receivable_id (when partially paid).
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.create_sale(
            data.get("lines"),
            client_id=data.get("client_id"),
            client_name=data.get("client_name"),
            payment_method=data.get("payment_method"),
            total_amount=data.get("total_amount"),
            discount=data.get("discount"),
            final_amount=data.get("final_amount"),
            paid_amount=data.get("paid_amount"),
            status=data.get("status"),
            sale_date=data.get("sale_date"),
            actor_user_id=g.actor_id,
        )
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    """Sale with lines and, when one exists, its receivable summary."""
    try:
        sale = sales_service.get_sale(sale_id)
        receivable = sale.receivable
        return jsonify({
            "sale": sale.to_dict(include_lines=True),
            "receivable": receivable.to_dict() if receivable else None,
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/<int:sale_id>/status")
@require_actor
def set_sale_status_route(sale_id: int):
    """
    Change settlement status.

    Body: {"status": "SETTLED" | "PARTIALLY_SETTLED"}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("status"):
            return jsonify({"error": "status required"}), 400

        sale = sales_service.set_sale_status(sale_id, data["status"], g.actor_id)
        receivable = sale.receivable
        return jsonify({
            "sale": sale.to_dict(),
            "receivable": receivable.to_dict() if receivable else None,
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to change sale status")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
@require_actor
def delete_sale_route(sale_id: int):
    """
    Delete (reverse) a sale.

    Query: on_reversal=preserve|force_settle (defaults to REVERSAL_RECEIVABLE_POLICY)
    """
    try:
        result = sales_service.delete_sale(
            sale_id,
            g.actor_id,
            on_reversal=request.args.get("on_reversal"),
        )
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500
