# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import purchase_service
from ..services.errors import LedgerError
from ..decorators import require_actor


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchase-orders")


def _po_payload(po, include_lines: bool = True) -> dict:
    payable = po.payable
    return {
        "purchase_order": po.to_dict(include_lines=include_lines),
        "receivable": payable.to_dict() if payable else None,
    }


@purchases_bp.post("/")
@require_actor
def create_purchase_order_route():
    """
    Create a purchase order.

    Body: supplier_id, lines[{item_id, quantity, unit_price?}], po_number?,
    order_date?, receipt_status?, settlement_status?, total_amount?,
    discount?, final_amount?, paid_amount?
    """
    try:
        data = request.get_json(silent=True) or {}
        po = purchase_service.create_purchase_order(
            data.get("lines"),
            supplier_id=data.get("supplier_id"),
            po_number=data.get("po_number"),
            order_date=data.get("order_date"),
            receipt_status=data.get("receipt_status"),
            settlement_status=data.get("settlement_status"),
            total_amount=data.get("total_amount"),
            discount=data.get("discount"),
            final_amount=data.get("final_amount"),
            paid_amount=data.get("paid_amount"),
            actor_user_id=g.actor_id,
        )
        return jsonify(_po_payload(po)), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("/<int:po_id>")
def get_purchase_order_route(po_id: int):
    try:
        po = purchase_service.get_purchase_order(po_id)
        return jsonify(_po_payload(po)), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.patch("/<int:po_id>/status")
@require_actor
def set_receipt_status_route(po_id: int):
    """Body: {"status": "PENDING" | "APPROVED" | "COMPLETED" | "CANCELLED"}"""
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("status"):
            return jsonify({"error": "status required"}), 400

        po = purchase_service.set_receipt_status(po_id, data["status"], g.actor_id)
        return jsonify(_po_payload(po)), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to change purchase order status")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.patch("/<int:po_id>/settlement")
@require_actor
def set_purchase_settlement_route(po_id: int):
    """Body: {"status": "SETTLED" | "PARTIALLY_SETTLED"}"""
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("status"):
            return jsonify({"error": "status required"}), 400

        po = purchase_service.set_purchase_settlement(po_id, data["status"], g.actor_id)
        return jsonify(_po_payload(po, include_lines=False)), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to change purchase order settlement")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.patch("/<int:po_id>/lines/<int:line_id>")
@require_actor
def edit_line_quantity_route(po_id: int, line_id: int):
    """Body: {"quantity": <new quantity>}"""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("quantity") is None:
            return jsonify({"error": "quantity required"}), 400

        po = purchase_service.edit_line_quantity(po_id, line_id, data["quantity"], g.actor_id)
        return jsonify(_po_payload(po)), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to edit purchase order line")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.delete("/<int:po_id>")
@require_actor
def delete_purchase_order_route(po_id: int):
    """Query: on_reversal=preserve|force_settle"""
    try:
        result = purchase_service.delete_purchase_order(
            po_id,
            g.actor_id,
            on_reversal=request.args.get("on_reversal"),
        )
        return jsonify(result), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete purchase order")
        return jsonify({"error": "Internal server error"}), 500
