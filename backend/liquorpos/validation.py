from __future__ import annotations
from datetime import datetime
from .time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Largest single quantity change or line quantity accepted from a client
MAX_QUANTITY = 1_000_000

# Matches the actor_name columns on ledger entries and transactions
MAX_ACTOR_NAME_LENGTH = 120


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate UPC)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - aliases: client spellings (camelCase) mapped onto column keys
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    aliases: dict[str, str] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus/plus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "1", "yes"):
                return True
            if lowered in ("false", "0", "no"):
                return False
            raise ValidationError(f"{col.key} must be a boolean")
        if isinstance(value, int):
            return bool(value)
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if isinstance(value, (dict, list)):
            raise ValidationError(f"{col.key} must be a string")
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields, after resolving aliases)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by column name.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    resolved: dict = {}
    for raw_key, raw in payload.items():
        key = policy.aliases.get(raw_key, raw_key)
        if key in resolved:
            raise ValidationError(f"Field given twice: {key}")
        resolved[key] = raw

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in resolved)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in resolved.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in resolved.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_cents(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None:
        amount = patch[key]
        if amount < 0:
            raise ValidationError(f"{key} must be >= 0")
        if amount > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_cents(patch, "price_cents")
    _check_cents(patch, "cost_cents")


def enforce_rules_adjustment(patch: dict) -> None:
    # delta must be a non-zero, sane quantity; sign is left to the reason's caller
    if "delta" in patch:
        if patch["delta"] is None or patch["delta"] == 0:
            raise ValidationError("delta must be non-zero")
        if abs(patch["delta"]) > MAX_QUANTITY:
            raise ValidationError(f"delta cannot exceed {MAX_QUANTITY} in magnitude")
    _check_cents(patch, "price_cents")
    _check_cents(patch, "cost_cents")


def validate_transaction_payload(payload: dict) -> dict:
    """
    Validate a register transaction body.

    {kind, paymentType, items: [{upc, quantity, unitPriceCents?}], payoutCents?,
     cashGivenCents?, note?, idempotencyKey?, actorId?, actorName?}
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    kind = str(payload.get("kind") or "sale").strip().lower()
    payment_type = str(payload.get("paymentType") or payload.get("payment_type") or "").strip().lower()
    if not payment_type:
        raise ValidationError("paymentType is required")

    raw_items = payload.get("items") or []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")

    items = []
    for index, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        upc = str(raw.get("upc") or "").strip()
        if not upc:
            raise ValidationError(f"items[{index}].upc is required")
        quantity = _coerce_int(f"items[{index}].quantity", raw.get("quantity"))
        if quantity <= 0 or quantity > MAX_QUANTITY:
            raise ValidationError(f"items[{index}].quantity must be between 1 and {MAX_QUANTITY}")
        unit_price = raw.get("unitPriceCents", raw.get("unit_price_cents"))
        if unit_price is not None:
            unit_price = _coerce_int(f"items[{index}].unitPriceCents", unit_price)
            _check_cents({"unitPriceCents": unit_price}, "unitPriceCents")
        items.append({"upc": upc, "quantity": quantity, "unit_price_cents": unit_price})

    cleaned = {
        "kind": kind,
        "payment_type": payment_type,
        "items": items,
        "note": (str(payload["note"]).strip() or None) if payload.get("note") is not None else None,
        "idempotency_key": (str(payload["idempotencyKey"]).strip() or None)
        if payload.get("idempotencyKey") is not None else None,
    }
    for source, target in (("payoutCents", "payout_cents"), ("cashGivenCents", "cash_given_cents")):
        value = payload.get(source)
        if value is not None:
            value = _coerce_int(source, value)
            _check_cents({source: value}, source)
        cleaned[target] = value

    actor_id = payload.get("actorId")
    cleaned["actor_user_id"] = _coerce_int("actorId", actor_id) if actor_id is not None else None
    actor_name = payload.get("actorName")
    if actor_name is not None:
        if isinstance(actor_name, (dict, list)):
            raise ValidationError("actorName must be a string")
        actor_name = str(actor_name).strip() or None
        if actor_name and len(actor_name) > MAX_ACTOR_NAME_LENGTH:
            raise ValidationError(f"actorName exceeds max length {MAX_ACTOR_NAME_LENGTH}")
    cleaned["actor_name"] = actor_name

    # Column widths on transactions
    for key, limit in (("payment_type", 32), ("note", 255), ("idempotency_key", 64)):
        if cleaned[key] is not None and len(cleaned[key]) > limit:
            raise ValidationError(f"{key} exceeds max length {limit}")
    return cleaned
