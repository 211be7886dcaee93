from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


TRANSACTION_KINDS = ("sale", "return", "payout")


class Transaction(db.Model):
    """
    A completed register transaction.

    Sales and returns move stock: each line is journaled as a ledger entry
    referencing this row. Payouts (cash paid out of the drawer) carry an
    amount and no lines.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_kind_created", "kind", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False)
    payment_type = db.Column(db.String(32), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    cash_given_cents = db.Column(db.Integer, nullable=True)
    change_given_cents = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)

    # Client-supplied key so a retried checkout does not double-sell
    idempotency_key = db.Column(db.String(64), nullable=True, unique=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    actor_name = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    lines = db.relationship(
        "TransactionLine",
        backref="transaction",
        lazy=True,
        order_by="TransactionLine.line_number",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "payment_type": self.payment_type,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "cash_given_cents": self.cash_given_cents,
            "change_given_cents": self.change_given_cents,
            "note": self.note,
            "idempotency_key": self.idempotency_key,
            "actor_user_id": self.actor_user_id,
            "actor_name": self.actor_name,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class TransactionLine(db.Model):
    __tablename__ = "transaction_lines"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_number", name="uq_transaction_lines_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    upc = db.Column(db.String(64), db.ForeignKey("products.upc"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    taxable = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "upc": self.upc,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "taxable": self.taxable,
        }
