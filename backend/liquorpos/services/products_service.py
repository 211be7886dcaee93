# backend/liquorpos/services/products_service.py
"""
Products (catalog) service.

Products are keyed by UPC and carry no quantity column. Stock levels come
from the inventory ledger; this module only reads them.
"""
from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..validation import ConflictError
from .ledger_service import ProductNotFound, normalize_upc, on_hand_by_upc

PRODUCT_MUTABLE_FIELDS = {"description", "category", "cost_cents", "price_cents", "taxable"}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def get_product(upc: str) -> Product:
    product = db.session.get(Product, normalize_upc(upc))
    if product is None:
        raise ProductNotFound(upc)
    return product


def product_with_stock(product: Product, on_hand: int) -> dict:
    data = product.to_dict()
    data["on_hand"] = on_hand
    return data


def list_products(search: str | None = None) -> dict:
    """
    List products ordered by description, each with its on-hand quantity.

    search matches a UPC prefix or any part of the description/category.
    """
    q = db.session.query(Product)
    if search:
        term = search.strip()
        q = q.filter(
            or_(
                Product.upc.like(f"{term}%"),
                Product.description.ilike(f"%{term}%"),
                Product.category.ilike(f"%{term}%"),
            )
        )
    products = q.order_by(Product.description.asc(), Product.upc.asc()).all()
    stock = on_hand_by_upc(p.upc for p in products)
    return {
        "items": [product_with_stock(p, stock.get(p.upc, 0)) for p in products],
        "count": len(products),
    }


def create_product(*, patch: dict) -> Product:
    """Create a product from a validated patch (must include upc)."""
    upc = normalize_upc(patch.get("upc"))
    if db.session.get(Product, upc) is not None:
        raise ConflictError(f"product with UPC {upc} already exists")

    product = Product(upc=upc, taxable=True)
    apply_product_patch(product, patch)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"product with UPC {upc} already exists")
    return product


def update_product(upc: str, *, patch: dict) -> Product:
    """Edit catalog fields. The UPC and the stock level are not editable here."""
    if "upc" in patch and normalize_upc(patch["upc"]) != normalize_upc(upc):
        raise ConflictError("UPC cannot be changed")
    product = get_product(upc)
    apply_product_patch(product, patch)
    db.session.commit()
    return product
