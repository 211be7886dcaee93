# Overview: Read-only stock reports built on ledger balances.

from __future__ import annotations

from ..extensions import db
from ..models import Product
from .ledger_service import on_hand_by_upc


# Upper bounds (inclusive) for each stock band; anything above the last is "excess".
# Zero or negative on-hand is "critical".
STOCK_BANDS = (
    ("low", 9),
    ("normal", 50),
    ("high", 100),
)


def stock_band(quantity: int) -> str:
    if quantity <= 0:
        return "critical"
    for name, upper in STOCK_BANDS:
        if quantity <= upper:
            return name
    return "excess"


def inventory_analysis() -> dict:
    """
    Stock levels and valuation for the whole catalog.

    Values are on-hand x the product's current price/cost, in cents. Only
    positive balances carry value; a product below zero counts as zero.
    Products without a price or cost contribute nothing to that total.
    """
    products = db.session.query(Product).order_by(Product.description.asc(), Product.upc.asc()).all()
    stock = on_hand_by_upc()

    bands = {"critical": 0, "low": 0, "normal": 0, "high": 0, "excess": 0}
    total_quantity = 0
    total_value_cents = 0
    total_cost_cents = 0
    items = []

    for product in products:
        qty = stock.get(product.upc, 0)
        band = stock_band(qty)
        bands[band] += 1

        valued_qty = max(qty, 0)
        value = valued_qty * product.price_cents if product.price_cents is not None else None
        cost = valued_qty * product.cost_cents if product.cost_cents is not None else None
        total_quantity += valued_qty
        total_value_cents += value or 0
        total_cost_cents += cost or 0

        items.append({
            "upc": product.upc,
            "description": product.description,
            "on_hand": qty,
            "stock_level": band,
            "retail_value_cents": value,
            "cost_value_cents": cost,
        })

    if total_value_cents > 0:
        avg_margin_pct = round((total_value_cents - total_cost_cents) * 100 / total_value_cents, 2)
    else:
        avg_margin_pct = 0.0

    return {
        "metrics": {
            "total_items": len(products),
            "total_quantity": total_quantity,
            "total_value_cents": total_value_cents,
            "total_cost_cents": total_cost_cents,
            "avg_margin_pct": avg_margin_pct,
            "low_stock_items": bands["low"] + bands["critical"],
            "overstock_items": bands["excess"],
            "stock_levels": bands,
        },
        "items": items,
    }
