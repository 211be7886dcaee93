# Overview: Ordered, versioned schema migrations applied at startup or from the CLI.
"""
Schema migrations.

Every schema change is a Migration in MIGRATIONS, applied in order and
recorded in schema_migrations. A migration runs in its own transaction
together with the row that records it, and each step checks the live
schema first, so re-running a migration against a database that already
has the objects is a no-op.

Migrations are written with Alembic's Operations API (the same `op.*`
calls as an Alembic revision file) so SQLite and server databases share
one definition.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations

from .models.system import SchemaMigration
from .time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: str
    description: str
    upgrade: Callable[[Operations, sa.engine.Connection], None]


def _has_table(conn, name: str) -> bool:
    return sa.inspect(conn).has_table(name)


def _create_index_if_missing(op: Operations, conn, name: str, table: str, columns: list[str], unique: bool = False):
    existing = {ix["name"] for ix in sa.inspect(conn).get_indexes(table)}
    if name not in existing:
        op.create_index(name, table, columns, unique=unique)


def _0001_products(op: Operations, conn) -> None:
    if not _has_table(conn, "products"):
        op.create_table(
            "products",
            sa.Column("upc", sa.String(length=64), nullable=False),
            sa.Column("description", sa.String(length=255), nullable=True),
            sa.Column("category", sa.String(length=120), nullable=True),
            sa.Column("cost_cents", sa.Integer(), nullable=True),
            sa.Column("price_cents", sa.Integer(), nullable=True),
            sa.Column("taxable", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("upc"),
        )
    _create_index_if_missing(op, conn, "ix_products_description", "products", ["description"])
    _create_index_if_missing(op, conn, "ix_products_category", "products", ["category"])


def _0002_transactions(op: Operations, conn) -> None:
    if not _has_table(conn, "transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=16), nullable=False),
            sa.Column("payment_type", sa.String(length=32), nullable=False),
            sa.Column("subtotal_cents", sa.Integer(), nullable=False),
            sa.Column("tax_cents", sa.Integer(), nullable=False),
            sa.Column("total_cents", sa.Integer(), nullable=False),
            sa.Column("cash_given_cents", sa.Integer(), nullable=True),
            sa.Column("change_given_cents", sa.Integer(), nullable=True),
            sa.Column("note", sa.String(length=255), nullable=True),
            sa.Column("idempotency_key", sa.String(length=64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_name", sa.String(length=120), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("idempotency_key"),
            sqlite_autoincrement=True,
        )
    _create_index_if_missing(op, conn, "ix_transactions_kind_created", "transactions", ["kind", "created_at"])

    if not _has_table(conn, "transaction_lines"):
        op.create_table(
            "transaction_lines",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("transaction_id", sa.Integer(), nullable=False),
            sa.Column("line_number", sa.Integer(), nullable=False),
            sa.Column("upc", sa.String(length=64), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price_cents", sa.Integer(), nullable=False),
            sa.Column("line_total_cents", sa.Integer(), nullable=False),
            sa.Column("taxable", sa.Boolean(), nullable=False),
            sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
            sa.ForeignKeyConstraint(["upc"], ["products.upc"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("transaction_id", "line_number", name="uq_transaction_lines_number"),
            sqlite_autoincrement=True,
        )
    _create_index_if_missing(
        op, conn, "ix_transaction_lines_transaction_id", "transaction_lines", ["transaction_id"]
    )


def _0003_inventory_ledger(op: Operations, conn) -> None:
    if not _has_table(conn, "inventory_adjustments"):
        op.create_table(
            "inventory_adjustments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("upc", sa.String(length=64), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("reason", sa.String(length=32), nullable=False),
            sa.Column("delta", sa.Integer(), nullable=False),
            sa.Column("quantity_before", sa.Integer(), nullable=False),
            sa.Column("quantity_after", sa.Integer(), nullable=False),
            sa.Column("below_zero", sa.Boolean(), nullable=False),
            sa.Column("cost_cents", sa.Integer(), nullable=True),
            sa.Column("price_cents", sa.Integer(), nullable=True),
            sa.Column("reference_transaction_id", sa.Integer(), nullable=True),
            sa.Column("note", sa.String(length=255), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_name", sa.String(length=120), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["upc"], ["products.upc"]),
            sa.ForeignKeyConstraint(["reference_transaction_id"], ["transactions.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("upc", "sequence", name="uq_inventory_adjustments_upc_sequence"),
            sa.CheckConstraint("delta <> 0", name="ck_inventory_adjustments_delta_nonzero"),
            sa.CheckConstraint(
                "quantity_after = quantity_before + delta",
                name="ck_inventory_adjustments_arithmetic",
            ),
            sqlite_autoincrement=True,
        )
    _create_index_if_missing(
        op, conn, "ix_inventory_adjustments_upc_created", "inventory_adjustments", ["upc", "created_at"]
    )
    _create_index_if_missing(
        op, conn, "ix_inventory_adjustments_reason_created", "inventory_adjustments", ["reason", "created_at"]
    )
    _create_index_if_missing(
        op,
        conn,
        "ix_inventory_adjustments_reference_transaction_id",
        "inventory_adjustments",
        ["reference_transaction_id"],
    )


MIGRATIONS: list[Migration] = [
    Migration("0001", "create products", _0001_products),
    Migration("0002", "create transactions and transaction lines", _0002_transactions),
    Migration("0003", "create inventory adjustments ledger", _0003_inventory_ledger),
]


def _ensure_migrations_table(engine: sa.engine.Engine) -> None:
    with engine.begin() as conn:
        SchemaMigration.__table__.create(bind=conn, checkfirst=True)


def applied_versions(engine: sa.engine.Engine) -> set[str]:
    _ensure_migrations_table(engine)
    table = SchemaMigration.__table__
    with engine.connect() as conn:
        return {row.version for row in conn.execute(sa.select(table.c.version))}


def pending_migrations(engine: sa.engine.Engine) -> list[Migration]:
    done = applied_versions(engine)
    return [m for m in MIGRATIONS if m.version not in done]


def run_migrations(engine: sa.engine.Engine) -> list[str]:
    """
    Apply every pending migration in order.

    Returns the versions applied by this call (empty when up to date).
    """
    applied = []
    table = SchemaMigration.__table__
    for migration in pending_migrations(engine):
        with engine.begin() as conn:
            op = Operations(MigrationContext.configure(conn))
            migration.upgrade(op, conn)
            conn.execute(
                table.insert().values(
                    version=migration.version,
                    description=migration.description,
                    applied_at=utcnow(),
                )
            )
        logger.info("Applied schema migration %s: %s", migration.version, migration.description)
        applied.append(migration.version)
    return applied
