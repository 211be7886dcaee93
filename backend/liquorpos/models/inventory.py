from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


# Reason codes recognized by the ledger. Order matches how the back office lists them.
ADJUSTMENT_REASONS = (
    "purchase",
    "sale",
    "adjustment",
    "initial",
    "test_data",
    "return",
    "damage",
    "theft",
)

REASON_LABELS = {
    "purchase": "Purchase",
    "sale": "Sale",
    "adjustment": "Manual Adjustment",
    "initial": "Initial Stock",
    "test_data": "Test Data",
    "return": "Return",
    "damage": "Damage",
    "theft": "Theft",
}


class Product(db.Model):
    """
    Product master data, keyed by UPC.

    The UPC is the barcode printed on the item and never changes once the
    product exists. Quantity is NOT stored here: on-hand is derived from
    the inventory ledger (see LedgerEntry).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_description", "description"),
        db.Index("ix_products_category", "category"),
    )

    upc = db.Column(db.String(64), primary_key=True)
    description = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(120), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    cost_cents = db.Column(db.Integer, nullable=True)
    price_cents = db.Column(db.Integer, nullable=True)

    taxable = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Product upc={self.upc!r} description={self.description!r}>"

    def to_dict(self) -> dict:
        return {
            "upc": self.upc,
            "description": self.description,
            "category": self.category,
            "cost_cents": self.cost_cents,
            "price_cents": self.price_cents,
            "taxable": self.taxable,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEntry(db.Model):
    """
    One immutable quantity change for one product.

    Chain invariants (per UPC, ordered by sequence):
    - quantity_after == quantity_before + delta
    - entry[n + 1].quantity_before == entry[n].quantity_after
    - sequence runs 1, 2, 3, ... with no gaps

    The unique (upc, sequence) constraint rejects a second writer that read
    the same predecessor; that writer retries from a fresh read.
    """
    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        db.UniqueConstraint("upc", "sequence", name="uq_inventory_adjustments_upc_sequence"),
        db.Index("ix_inventory_adjustments_upc_created", "upc", "created_at"),
        db.Index("ix_inventory_adjustments_reason_created", "reason", "created_at"),
        db.CheckConstraint("delta <> 0", name="ck_inventory_adjustments_delta_nonzero"),
        db.CheckConstraint(
            "quantity_after = quantity_before + delta",
            name="ck_inventory_adjustments_arithmetic",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    upc = db.Column(db.String(64), db.ForeignKey("products.upc"), nullable=False)
    sequence = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(32), nullable=False)

    delta = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    below_zero = db.Column(db.Boolean, nullable=False, default=False)

    # Snapshot of cost/price at the time of the change
    cost_cents = db.Column(db.Integer, nullable=True)
    price_cents = db.Column(db.Integer, nullable=True)

    reference_transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True
    )
    note = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    actor_name = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("ledger_entries", lazy="dynamic"))

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} upc={self.upc!r} reason={self.reason} "
            f"{self.quantity_before}->{self.quantity_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "upc": self.upc,
            "sequence": self.sequence,
            "reason": self.reason,
            "reason_label": REASON_LABELS.get(self.reason, self.reason),
            "delta": self.delta,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "below_zero": self.below_zero,
            "cost_cents": self.cost_cents,
            "price_cents": self.price_cents,
            "reference_transaction_id": self.reference_transaction_id,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "actor_name": self.actor_name,
            "created_at": to_utc_z(self.created_at),
        }


class ImmutableLedgerError(RuntimeError):
    """Raised when code tries to rewrite ledger history through the ORM."""


@event.listens_for(LedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise ImmutableLedgerError(
        f"ledger entry {target.id} is immutable; post a compensating adjustment instead"
    )


@event.listens_for(LedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise ImmutableLedgerError(
        f"ledger entry {target.id} is immutable; post a compensating adjustment instead"
    )
