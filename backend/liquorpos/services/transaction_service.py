"""
Register transactions: sales, returns and payouts.

A transaction and the ledger entries for all of its lines are written in
one unit of work. If any line fails (unknown UPC, negative-balance policy,
storage error) nothing is kept: no transaction row, no entries.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Product, Transaction, TransactionLine, TRANSACTION_KINDS
from .ledger_service import (
    Actor,
    AdjustmentOptions,
    ProductNotFound,
    apply_adjustment,
    current_policy,
    run_in_unit_of_work,
)


class TransactionError(Exception):
    """Raised for transaction operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def compute_tax_cents(taxable_subtotal_cents: int, rate_bps: int) -> int:
    """Tax on a subtotal, nearest cent (half-up)."""
    if rate_bps <= 0 or taxable_subtotal_cents <= 0:
        return 0
    return (taxable_subtotal_cents * rate_bps + 5000) // 10000


def _check_shape(kind: str, items: list, payout_cents: int | None) -> None:
    if kind not in TRANSACTION_KINDS:
        raise TransactionError(
            f"kind must be one of: {', '.join(TRANSACTION_KINDS)}", details={"kind": kind}
        )
    if kind == "payout":
        if items:
            raise TransactionError("payouts cannot have items")
        if not payout_cents or payout_cents <= 0:
            raise TransactionError("payoutCents must be > 0 for a payout")
    elif not items:
        raise TransactionError(f"a {kind} needs at least one item")


def record_transaction(
    *,
    kind: str,
    payment_type: str,
    items: list[dict],
    actor: Actor | None = None,
    payout_cents: int | None = None,
    cash_given_cents: int | None = None,
    note: str | None = None,
    idempotency_key: str | None = None,
    tax_rate_bps: int | None = None,
) -> Transaction:
    """
    Record a completed transaction and journal its stock movement.

    items: [{"upc", "quantity", "unit_price_cents"}]; quantity is positive,
    unit_price_cents defaults to the product's current price.
    - sale: one "sale" entry per line with delta = -quantity
    - return: one "return" entry per line with delta = +quantity
    - payout: no lines, total = payout_cents

    A repeated idempotency_key returns the transaction recorded the first
    time, without writing anything.
    """
    _check_shape(kind, items, payout_cents)
    if tax_rate_bps is None:
        tax_rate_bps = int(current_app.config.get("TAX_RATE_BPS", 0))
    policy = current_policy()

    def _op():
        if idempotency_key:
            existing = Transaction.query.filter_by(idempotency_key=idempotency_key).first()
            if existing is not None:
                if existing.kind != kind:
                    raise TransactionError(
                        "idempotency key already used for a different transaction",
                        details={"transaction_id": existing.id},
                    )
                return existing

        tx = Transaction(
            kind=kind,
            payment_type=payment_type,
            note=note,
            idempotency_key=idempotency_key,
            actor_user_id=actor.user_id if actor else None,
            actor_name=actor.name if actor else None,
        )
        db.session.add(tx)
        db.session.flush()

        subtotal = 0
        taxable_subtotal = 0
        for line_number, item in enumerate(items, start=1):
            product = db.session.get(Product, item["upc"])
            if product is None:
                raise ProductNotFound(item["upc"])

            unit_price = item.get("unit_price_cents")
            if unit_price is None:
                unit_price = product.price_cents
            if unit_price is None:
                raise TransactionError(
                    f"no price for {product.upc}", details={"upc": product.upc}
                )

            quantity = item["quantity"]
            line_total = unit_price * quantity
            db.session.add(TransactionLine(
                transaction_id=tx.id,
                line_number=line_number,
                upc=product.upc,
                quantity=quantity,
                unit_price_cents=unit_price,
                line_total_cents=line_total,
                taxable=product.taxable,
            ))

            apply_adjustment(
                product.upc,
                "sale" if kind == "sale" else "return",
                -quantity if kind == "sale" else quantity,
                actor,
                AdjustmentOptions(
                    price_cents=unit_price,
                    reference_transaction_id=tx.id,
                    note=f"Transaction #{tx.id}",
                ),
                commit=False,
                policy=policy,
            )

            subtotal += line_total
            if product.taxable:
                taxable_subtotal += line_total

        if kind == "payout":
            tx.subtotal_cents = payout_cents
            tx.tax_cents = 0
        else:
            tx.subtotal_cents = subtotal
            tx.tax_cents = compute_tax_cents(taxable_subtotal, tax_rate_bps)
        tx.total_cents = tx.subtotal_cents + tx.tax_cents

        if cash_given_cents is not None:
            if payment_type != "cash":
                raise TransactionError("cashGivenCents is only valid for cash payments")
            if kind == "sale" and cash_given_cents < tx.total_cents:
                raise TransactionError(
                    "cash given is less than the total",
                    details={"total_cents": tx.total_cents, "cash_given_cents": cash_given_cents},
                )
            tx.cash_given_cents = cash_given_cents
            tx.change_given_cents = max(cash_given_cents - tx.total_cents, 0)

        db.session.commit()
        return tx

    try:
        return run_in_unit_of_work(_op)
    except TransactionError:
        db.session.rollback()
        raise


def get_transaction(transaction_id: int) -> Transaction | None:
    return db.session.get(Transaction, transaction_id)


def list_transactions(
    start: datetime | None = None,
    end: datetime | None = None,
    *,
    kind: str | None = None,
    limit: int | None = None,
) -> list[Transaction]:
    """Transactions newest first; start/end are inclusive bounds on created_at."""
    if kind is not None and kind not in TRANSACTION_KINDS:
        raise TransactionError(
            f"kind must be one of: {', '.join(TRANSACTION_KINDS)}", details={"kind": kind}
        )

    q = Transaction.query
    if start is not None:
        q = q.filter(Transaction.created_at >= start)
    if end is not None:
        q = q.filter(Transaction.created_at <= end)
    if kind is not None:
        q = q.filter(Transaction.kind == kind)
    q = q.order_by(Transaction.created_at.desc(), Transaction.id.desc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()
