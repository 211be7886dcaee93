# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

# backend/liquorpos/routes/products.py
"""
Product catalog routes.

Products are looked up by UPC (the scanned barcode). Responses include the
ledger-derived on_hand quantity; stock cannot be edited here, only through
POST /api/adjust-inventory.
"""
from flask import Blueprint, request, jsonify

from ..models import Product
from ..services import products_service
from ..services.ledger_service import LedgerError, ProductNotFound, get_on_hand
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)

_PRODUCT_ALIASES = {"costCents": "cost_cents", "priceCents": "price_cents"}

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"upc", "description", "category", "cost_cents", "price_cents", "taxable"},
    required_on_create={"upc", "description"},
    aliases=_PRODUCT_ALIASES,
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"description", "category", "cost_cents", "price_cents", "taxable"},
    aliases=_PRODUCT_ALIASES,
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List products with on-hand quantities.

    Query params:
    - search: UPC prefix or text in description/category (optional)
    """
    return jsonify(products_service.list_products(search=request.args.get("search"))), 200


@products_bp.get("/<upc>")
def get_product(upc: str):
    """Barcode lookup."""
    try:
        product = products_service.get_product(upc)
    except LedgerError as e:
        status = 404 if isinstance(e, ProductNotFound) else 400
        return jsonify({"error": str(e)}), status
    return jsonify(products_service.product_with_stock(product, get_on_hand(product.upc))), 200


@products_bp.post("")
def create_product():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(
            model=Product,
            payload=payload,
            policy=PRODUCT_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        product = products_service.create_product(patch=patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except LedgerError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(products_service.product_with_stock(product, 0)), 201


@products_bp.patch("/<upc>")
def update_product(upc: str):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(
            model=Product,
            payload=payload,
            policy=PRODUCT_UPDATE_POLICY,
            partial=True,
        )
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        product = products_service.update_product(upc, patch=patch)
    except ProductNotFound as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409

    return jsonify(products_service.product_with_stock(product, get_on_hand(product.upc))), 200
