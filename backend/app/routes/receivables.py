# Overview: Flask API routes for receivables and installments (manual settlement).

from flask import Blueprint, request, jsonify, g, current_app

from ..services import settlement_ledger
from ..services.errors import LedgerError
from ..decorators import require_actor


receivables_bp = Blueprint("receivables", __name__, url_prefix="/api")


@receivables_bp.get("/receivables/<int:receivable_id>")
def get_receivable_route(receivable_id: int):
    try:
        receivable = settlement_ledger.get_receivable(receivable_id)
        return jsonify({"receivable": receivable.to_dict(include_installments=True)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load receivable")
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.post("/receivables/<int:receivable_id>/installments")
@require_actor
def record_installment_route(receivable_id: int):
    """
    Record a payment against a receivable.

    Body: {"amount": ..., "payment_date"?: "YYYY-MM-DD", "notes"?: "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("amount") is None:
            return jsonify({"error": "amount required"}), 400

        installment = settlement_ledger.record_installment(
            receivable_id,
            data["amount"],
            payment_date=data.get("payment_date"),
            notes=data.get("notes"),
            actor_user_id=g.actor_id,
        )
        receivable = settlement_ledger.get_receivable(installment.receivable_id)
        return jsonify({
            "installment": installment.to_dict(),
            "receivable": receivable.to_dict(),
        }), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record installment")
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.delete("/installments/<int:installment_id>")
@require_actor
def delete_installment_route(installment_id: int):
    try:
        receivable = settlement_ledger.delete_installment(installment_id, g.actor_id)
        return jsonify({"receivable": receivable.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete installment")
        return jsonify({"error": "Internal server error"}), 500
