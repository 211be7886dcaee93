# backend/liquorpos/routes/inventory.py
"""
Inventory ledger routes.

- POST /api/adjust-inventory                 journal one quantity change
- GET  /api/inventory/<upc>/on-hand          current balance
- GET  /api/inventory-adjustments            entries, newest first
- GET  /api/inventory-adjustments/summary    in/out/net totals for the same filters
- GET  /api/inventory-adjustments/reasons    reason codes and labels
- GET  /api/inventory-analysis               stock levels and valuation from on-hand

Time semantics:
- startDate/endDate accept ISO-8601 datetimes with Z/offsets or bare dates;
  a bare endDate covers that whole day. Both bounds are inclusive.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..models import LedgerEntry
from ..time_utils import parse_date_bound
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    enforce_rules_adjustment,
)
from ..decorators import with_actor
from ..services import ledger_service
from ..services import reporting_service
from ..services.ledger_service import (
    Actor,
    AdjustmentFilters,
    AdjustmentOptions,
    InvalidAdjustment,
    InvalidReason,
    LedgerError,
    NegativeBalance,
    ProductNotFound,
    StorageFailure,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api")

INVENTORY_ADJUST_POLICY = ModelValidationPolicy(
    writable_fields={
        "upc",
        "reason",
        "delta",
        "actor_user_id",
        "actor_name",
        "note",
        "reference_transaction_id",
        "cost_cents",
        "price_cents",
    },
    required_on_create={"upc", "reason", "delta"},
    aliases={
        "actorId": "actor_user_id",
        "actorName": "actor_name",
        "referenceTransactionId": "reference_transaction_id",
        "costCents": "cost_cents",
        "priceCents": "price_cents",
    },
)

MAX_LIST_LIMIT = 1000


def ledger_error_status(exc: LedgerError) -> int:
    if isinstance(exc, (InvalidReason, InvalidAdjustment)):
        return 400
    if isinstance(exc, ProductNotFound):
        return 404
    if isinstance(exc, NegativeBalance):
        return 409
    if isinstance(exc, StorageFailure):
        return 503
    return 400


def limit_from_args(args) -> int | None:
    """Optional ?limit=N, clamped to 1..MAX_LIST_LIMIT."""
    raw = args.get("limit")
    if raw is None or raw.strip() == "":
        return None
    try:
        limit = int(raw.strip())
    except ValueError:
        raise ValidationError("limit must be an integer")
    return max(1, min(limit, MAX_LIST_LIMIT))


def _filters_from_args(args) -> AdjustmentFilters:
    try:
        start_dt = parse_date_bound(args.get("startDate"))
        end_dt = parse_date_bound(args.get("endDate"), end=True)
    except ValueError:
        raise ValidationError("startDate and endDate must be ISO-8601 dates or datetimes")

    upc = (args.get("upc") or "").strip() or None
    # "type" is the older name for the reason filter
    reason = (args.get("reason") or args.get("type") or "").strip() or None

    return AdjustmentFilters(
        upc=upc,
        reason=reason,
        start_date=start_dt,
        end_date=end_dt,
        newest_first=args.get("order", "desc").lower() != "asc",
    )


@inventory_bp.post("/adjust-inventory")
@with_actor
def adjust_inventory_route():
    """
    Apply one inventory adjustment.

    Body: {upc, reason, delta, actorId?, actorName?, note?, referenceTransactionId?,
           costCents?, priceCents?}
    The session actor, when present, takes precedence over actorId/actorName.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=LedgerEntry,
            payload=payload,
            policy=INVENTORY_ADJUST_POLICY,
            partial=False,
        )
        enforce_rules_adjustment(patch)
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400

    actor = g.actor or Actor.from_values(patch.get("actor_user_id"), patch.get("actor_name"))

    try:
        entry = ledger_service.apply_adjustment(
            patch["upc"],
            patch["reason"],
            patch["delta"],
            actor,
            AdjustmentOptions(
                cost_cents=patch.get("cost_cents"),
                price_cents=patch.get("price_cents"),
                reference_transaction_id=patch.get("reference_transaction_id"),
                note=patch.get("note"),
            ),
        )
    except LedgerError as e:
        if isinstance(e, StorageFailure):
            current_app.logger.exception("Failed to apply inventory adjustment")
        return jsonify({"success": False, "error": str(e)}), ledger_error_status(e)

    return jsonify({"success": True, "entry": entry.to_dict()}), 201


@inventory_bp.get("/inventory/<upc>/on-hand")
def on_hand_route(upc: str):
    try:
        quantity = ledger_service.get_on_hand(upc)
    except LedgerError as e:
        return jsonify({"error": str(e)}), ledger_error_status(e)
    return jsonify({"upc": upc.strip(), "quantity": quantity}), 200


@inventory_bp.get("/inventory-adjustments")
def list_adjustments_route():
    """
    List ledger entries.

    Query params: upc, reason (or type), startDate, endDate, order=asc|desc, limit
    """
    try:
        limit = limit_from_args(request.args)
        filters = _filters_from_args(request.args)
        rows = ledger_service.list_adjustments(filters, limit=limit)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return jsonify({"error": str(e)}), ledger_error_status(e)

    return jsonify([r.to_dict() for r in rows]), 200


@inventory_bp.get("/inventory-adjustments/summary")
def adjustments_summary_route():
    try:
        filters = _filters_from_args(request.args)
        rows = ledger_service.list_adjustments(filters)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return jsonify({"error": str(e)}), ledger_error_status(e)

    return jsonify(ledger_service.compute_summary(rows).to_dict()), 200


@inventory_bp.get("/inventory-adjustments/reasons")
def adjustment_reasons_route():
    return jsonify(ledger_service.list_reasons()), 200


@inventory_bp.get("/inventory-analysis")
def inventory_analysis_route():
    return jsonify(reporting_service.inventory_analysis()), 200
