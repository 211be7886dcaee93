# Overview: Flask API routes for register transactions; parses input and returns JSON responses.

"""Sales, returns and payouts. Stock movement is journaled in the same unit of work."""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import with_actor
from ..services import transaction_service
from ..services.transaction_service import TransactionError
from ..services.ledger_service import Actor, LedgerError, StorageFailure
from ..time_utils import parse_date_bound
from ..validation import ValidationError, validate_transaction_payload
from .inventory import ledger_error_status, limit_from_args


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("")
@with_actor
def create_transaction_route():
    """
    Record a completed transaction.

    Body: {kind: sale|return|payout, paymentType, items: [{upc, quantity, unitPriceCents?}],
           payoutCents?, cashGivenCents?, note?, idempotencyKey?, actorId?, actorName?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        data = validate_transaction_payload(payload)
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400

    actor = g.actor or Actor.from_values(data["actor_user_id"], data["actor_name"])

    try:
        tx = transaction_service.record_transaction(
            kind=data["kind"],
            payment_type=data["payment_type"],
            items=data["items"],
            actor=actor,
            payout_cents=data["payout_cents"],
            cash_given_cents=data["cash_given_cents"],
            note=data["note"],
            idempotency_key=data["idempotency_key"],
        )
    except TransactionError as e:
        return jsonify({"success": False, "error": str(e), "details": e.details}), 400
    except LedgerError as e:
        if isinstance(e, StorageFailure):
            current_app.logger.exception("Failed to record transaction")
        return jsonify({"success": False, "error": str(e)}), ledger_error_status(e)

    return jsonify({"success": True, "transaction": tx.to_dict()}), 201


@transactions_bp.get("")
def list_transactions_route():
    """
    List transactions, newest first.

    Query params: startDate, endDate (inclusive; a bare endDate covers that day), kind, limit
    """
    try:
        start_dt = parse_date_bound(request.args.get("startDate"))
        end_dt = parse_date_bound(request.args.get("endDate"), end=True)
    except ValueError:
        return jsonify({"error": "startDate and endDate must be ISO-8601 dates or datetimes"}), 400

    kind = (request.args.get("kind") or "").strip().lower() or None
    try:
        limit = limit_from_args(request.args)
        rows = transaction_service.list_transactions(start_dt, end_dt, kind=kind, limit=limit)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except TransactionError as e:
        return jsonify({"error": str(e), "details": e.details}), 400

    return jsonify([tx.to_dict() for tx in rows]), 200


@transactions_bp.get("/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    tx = transaction_service.get_transaction(transaction_id)
    if tx is None:
        return jsonify({"error": "Transaction not found"}), 404
    return jsonify(tx.to_dict()), 200
