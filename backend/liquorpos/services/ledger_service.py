# Overview: Service-layer operations for the inventory ledger; every quantity change goes through here.

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from itertools import groupby
from typing import Callable, Iterable, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, LedgerEntry, Transaction, ADJUSTMENT_REASONS, REASON_LABELS
from .concurrency import lock_for_update, run_with_retry
"""
Inventory Ledger Invariants (authoritative)

Inventory model:
- On-hand quantity is never stored as a mutable field. It is the
  quantity_after of the product's latest ledger entry (0 with no entries),
  which always equals SUM(delta) over the product's entries.
- Entries are append-only. Corrections are new compensating entries.

Chain (per UPC, ordered by sequence):
- quantity_after = quantity_before + delta
- quantity_before of entry n+1 = quantity_after of entry n
- sequence is 1, 2, 3, ... with no gaps; (upc, sequence) is unique.

Unit of work:
- apply_adjustment reads the latest entry, computes the new balance and
  inserts the entry inside ONE database transaction. On SQLite every
  transaction starts with BEGIN IMMEDIATE (see concurrency.py); elsewhere
  the product row is locked FOR UPDATE. A writer that still loses the
  (upc, sequence) race gets an IntegrityError and retries from a fresh read.
- Multi-product operations (a sale with several lines) use
  apply_adjustments / run_in_unit_of_work so all entries commit or none do.

Policy:
- Only reasons in LEDGER_IMPLICIT_CREATE_REASONS (purchase, initial by
  default) may create a product the first time its UPC is seen.
- A balance below zero is accepted and flagged (below_zero=True) unless
  LEDGER_FORBID_NEGATIVE is set, in which case NegativeBalance is raised.
- The sign of delta is not checked against the reason; callers own that.
"""

logger = logging.getLogger(__name__)


class LedgerError(ValueError):
    """Base class for ledger failures. The ledger is unchanged when raised."""


class InvalidReason(LedgerError):
    def __init__(self, reason):
        super().__init__(
            f"invalid adjustment reason {reason!r}; expected one of: {', '.join(ADJUSTMENT_REASONS)}"
        )
        self.reason = reason


class InvalidAdjustment(LedgerError):
    """Malformed UPC or delta."""


class ProductNotFound(LedgerError):
    def __init__(self, upc: str):
        super().__init__(f"product not found: {upc}")
        self.upc = upc


class NegativeBalance(LedgerError):
    def __init__(self, upc: str, quantity_before: int, delta: int):
        super().__init__(
            f"adjustment would make on-hand negative for {upc}: {quantity_before} {delta:+d}"
        )
        self.upc = upc
        self.quantity_before = quantity_before
        self.delta = delta


class StorageFailure(LedgerError):
    """The database could not commit the unit of work; nothing was written."""


@dataclass(frozen=True)
class Actor:
    """Who made the change. None on an entry means system-generated."""
    user_id: Optional[int] = None
    name: Optional[str] = None

    @classmethod
    def from_values(cls, user_id=None, name=None) -> Optional["Actor"]:
        if user_id is None and not name:
            return None
        return cls(user_id=user_id, name=name or None)


@dataclass(frozen=True)
class AdjustmentOptions:
    cost_cents: Optional[int] = None
    price_cents: Optional[int] = None
    reference_transaction_id: Optional[int] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class AdjustmentRequest:
    upc: str
    reason: str
    delta: int
    options: AdjustmentOptions = field(default_factory=AdjustmentOptions)


@dataclass(frozen=True)
class AdjustmentFilters:
    """
    Recognized filters for list_adjustments. A field left as None does not
    filter; no filters at all returns every entry. The date range is
    inclusive on created_at.
    """
    upc: Optional[str] = None
    reason: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    newest_first: bool = True


@dataclass(frozen=True)
class LedgerPolicy:
    forbid_negative: bool = False
    implicit_create_reasons: frozenset = frozenset({"purchase", "initial"})

    @classmethod
    def from_config(cls, config) -> "LedgerPolicy":
        reasons = frozenset(config.get("LEDGER_IMPLICIT_CREATE_REASONS", ("purchase", "initial")))
        unknown = reasons - set(ADJUSTMENT_REASONS)
        if unknown:
            raise ValueError(f"LEDGER_IMPLICIT_CREATE_REASONS has unknown reasons: {sorted(unknown)}")
        return cls(
            forbid_negative=bool(config.get("LEDGER_FORBID_NEGATIVE", False)),
            implicit_create_reasons=reasons,
        )


@dataclass(frozen=True)
class AdjustmentSummary:
    total_in: int = 0
    total_out: int = 0
    net: int = 0
    count_in: int = 0
    count_out: int = 0
    count: int = 0

    def to_dict(self) -> dict:
        return {
            "total_in": self.total_in,
            "total_out": self.total_out,
            "net": self.net,
            "count_in": self.count_in,
            "count_out": self.count_out,
            "count": self.count,
        }


@dataclass(frozen=True)
class ChainViolation:
    upc: str
    entry_id: int
    sequence: int
    problem: str

    def to_dict(self) -> dict:
        return {
            "upc": self.upc,
            "entry_id": self.entry_id,
            "sequence": self.sequence,
            "problem": self.problem,
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def normalize_upc(upc) -> str:
    if not isinstance(upc, str) or not upc.strip():
        raise InvalidAdjustment("upc must be a non-empty string")
    return upc.strip()


def normalize_reason(reason) -> str:
    if not isinstance(reason, str):
        raise InvalidReason(reason)
    code = reason.strip().lower()
    if code not in ADJUSTMENT_REASONS:
        raise InvalidReason(reason)
    return code


def _validate_delta(delta) -> int:
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InvalidAdjustment("delta must be an integer")
    if delta == 0:
        raise InvalidAdjustment("delta must be non-zero")
    return delta


def current_policy() -> LedgerPolicy:
    return LedgerPolicy.from_config(current_app.config)


def list_reasons() -> list[dict]:
    return [{"code": code, "label": REASON_LABELS[code]} for code in ADJUSTMENT_REASONS]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _latest_entry(upc: str) -> LedgerEntry | None:
    return (
        LedgerEntry.query.filter_by(upc=upc)
        .order_by(LedgerEntry.sequence.desc())
        .first()
    )


def _resolve_product(upc: str, reason: str, policy: LedgerPolicy) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(upc=upc)).first()
    if product is not None:
        return product

    if reason not in policy.implicit_create_reasons:
        raise ProductNotFound(upc)

    product = Product(upc=upc, description=upc, taxable=True)
    db.session.add(product)
    db.session.flush()
    logger.info("Created product %s on first %s", upc, reason)
    return product


def _append_entry(
    *,
    upc: str,
    reason: str,
    delta: int,
    actor: Optional[Actor],
    options: AdjustmentOptions,
    policy: LedgerPolicy,
) -> LedgerEntry:
    """Read-compute-write for one product. Caller owns the transaction."""
    ref_id = options.reference_transaction_id
    if ref_id is not None and db.session.get(Transaction, ref_id) is None:
        raise InvalidAdjustment(f"reference transaction {ref_id} does not exist")

    product = _resolve_product(upc, reason, policy)

    last = _latest_entry(upc)
    quantity_before = last.quantity_after if last else 0
    sequence = last.sequence + 1 if last else 1
    quantity_after = quantity_before + delta

    below_zero = quantity_after < 0
    if below_zero:
        if policy.forbid_negative:
            raise NegativeBalance(upc, quantity_before, delta)
        logger.warning(
            "On-hand for %s goes below zero: %d %+d -> %d (%s)",
            upc, quantity_before, delta, quantity_after, reason,
        )

    entry = LedgerEntry(
        upc=upc,
        sequence=sequence,
        reason=reason,
        delta=delta,
        quantity_before=quantity_before,
        quantity_after=quantity_after,
        below_zero=below_zero,
        cost_cents=options.cost_cents if options.cost_cents is not None else product.cost_cents,
        price_cents=options.price_cents if options.price_cents is not None else product.price_cents,
        reference_transaction_id=options.reference_transaction_id,
        note=options.note,
        actor_user_id=actor.user_id if actor else None,
        actor_name=actor.name if actor else None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def run_in_unit_of_work(op: Callable[[], object]):
    """
    Run op as one committed unit of work.

    op must perform its own reads and end with db.session.commit(). Lock and
    constraint conflicts are retried from scratch; any failure rolls the
    whole unit back. Domain errors propagate unchanged, database errors
    become StorageFailure.
    """
    try:
        return run_with_retry(op)
    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Inventory ledger unit of work failed: %s", exc)
        raise StorageFailure("inventory ledger could not be saved; no changes were made") from exc


def apply_adjustment(
    upc: str,
    reason: str,
    delta: int,
    actor: Optional[Actor] = None,
    options: Optional[AdjustmentOptions] = None,
    *,
    commit: bool = True,
    policy: Optional[LedgerPolicy] = None,
) -> LedgerEntry:
    """
    Journal one quantity change and return the new entry.

    commit=True runs the change as its own unit of work. commit=False only
    flushes, for callers that wrap several changes in one enclosing
    transaction and commit (or roll back) themselves.
    """
    upc = normalize_upc(upc)
    reason = normalize_reason(reason)
    delta = _validate_delta(delta)
    options = options or AdjustmentOptions()
    policy = policy or current_policy()

    def _op():
        entry = _append_entry(
            upc=upc, reason=reason, delta=delta, actor=actor, options=options, policy=policy
        )
        if commit:
            db.session.commit()
        return entry

    if not commit:
        return _op()
    return run_in_unit_of_work(_op)


def apply_adjustments(
    requests: Iterable[AdjustmentRequest],
    actor: Optional[Actor] = None,
    *,
    policy: Optional[LedgerPolicy] = None,
) -> list[LedgerEntry]:
    """Apply several adjustments all-or-nothing. Entries are returned in request order."""
    cleaned = [
        AdjustmentRequest(
            upc=normalize_upc(r.upc),
            reason=normalize_reason(r.reason),
            delta=_validate_delta(r.delta),
            options=r.options or AdjustmentOptions(),
        )
        for r in requests
    ]
    if not cleaned:
        raise InvalidAdjustment("at least one adjustment is required")
    policy = policy or current_policy()

    def _op():
        entries = [
            _append_entry(
                upc=r.upc, reason=r.reason, delta=r.delta, actor=actor, options=r.options, policy=policy
            )
            for r in cleaned
        ]
        db.session.commit()
        return entries

    return run_in_unit_of_work(_op)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_on_hand(upc: str) -> int:
    """Current balance: the latest entry's quantity_after, 0 if none."""
    last = _latest_entry(normalize_upc(upc))
    return last.quantity_after if last else 0


def on_hand_by_upc(upcs: Optional[Iterable[str]] = None) -> dict[str, int]:
    """Balances for many products in one query. UPCs without entries are omitted."""
    latest = db.session.query(
        LedgerEntry.upc.label("upc"),
        func.max(LedgerEntry.sequence).label("sequence"),
    ).group_by(LedgerEntry.upc)
    if upcs is not None:
        latest = latest.filter(LedgerEntry.upc.in_(list(upcs)))
    latest = latest.subquery()

    rows = db.session.query(LedgerEntry.upc, LedgerEntry.quantity_after).join(
        latest,
        (LedgerEntry.upc == latest.c.upc) & (LedgerEntry.sequence == latest.c.sequence),
    )
    return {upc: qty for upc, qty in rows}


def list_adjustments(filters: Optional[AdjustmentFilters] = None, *, limit: Optional[int] = None) -> list[LedgerEntry]:
    filters = filters or AdjustmentFilters()

    q = LedgerEntry.query
    if filters.upc is not None:
        q = q.filter(LedgerEntry.upc == normalize_upc(filters.upc))
    if filters.reason is not None:
        q = q.filter(LedgerEntry.reason == normalize_reason(filters.reason))
    if filters.start_date is not None:
        q = q.filter(LedgerEntry.created_at >= filters.start_date)
    if filters.end_date is not None:
        q = q.filter(LedgerEntry.created_at <= filters.end_date)

    if filters.newest_first:
        q = q.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
    else:
        q = q.order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())

    if limit is not None:
        q = q.limit(limit)
    return q.all()


def compute_summary(entries: Iterable) -> AdjustmentSummary:
    """
    Totals over a set of entries (LedgerEntry objects or dicts with "delta").

    total_out is reported as a positive number.
    """
    total_in = total_out = count_in = count_out = count = 0
    for entry in entries:
        delta = entry["delta"] if isinstance(entry, Mapping) else entry.delta
        count += 1
        if delta > 0:
            total_in += delta
            count_in += 1
        elif delta < 0:
            total_out += -delta
            count_out += 1
    return AdjustmentSummary(
        total_in=total_in,
        total_out=total_out,
        net=total_in - total_out,
        count_in=count_in,
        count_out=count_out,
        count=count,
    )


def verify_chain(upc: Optional[str] = None) -> list[ChainViolation]:
    """Walk ledger history and report every broken link, bad arithmetic or sequence gap."""
    q = LedgerEntry.query
    if upc is not None:
        q = q.filter(LedgerEntry.upc == normalize_upc(upc))
    q = q.order_by(LedgerEntry.upc.asc(), LedgerEntry.sequence.asc())

    violations: list[ChainViolation] = []
    for product_upc, entries in groupby(q.yield_per(500), key=lambda e: e.upc):
        expected_before = 0
        expected_sequence = 1
        for entry in entries:
            if entry.sequence != expected_sequence:
                violations.append(ChainViolation(
                    product_upc, entry.id, entry.sequence,
                    f"sequence {entry.sequence} where {expected_sequence} was expected",
                ))
            if entry.quantity_before != expected_before:
                violations.append(ChainViolation(
                    product_upc, entry.id, entry.sequence,
                    f"quantity_before {entry.quantity_before} does not match previous quantity_after {expected_before}",
                ))
            if entry.quantity_after != entry.quantity_before + entry.delta:
                violations.append(ChainViolation(
                    product_upc, entry.id, entry.sequence,
                    f"quantity_after {entry.quantity_after} != {entry.quantity_before} {entry.delta:+d}",
                ))
            expected_before = entry.quantity_after
            expected_sequence = entry.sequence + 1
    return violations
