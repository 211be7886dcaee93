"""
Product catalog API tests.

Stock shown on products always comes from the ledger.
"""

import pytest

from liquorpos.extensions import db
from liquorpos.models import Product
from liquorpos.services.ledger_service import apply_adjustment


class TestCreateProduct:
    def test_create(self, client, db_session):
        resp = client.post("/api/products", json={
            "upc": "080432400432",
            "description": "Glenlivet 12 750ml",
            "category": "Scotch",
            "costCents": 3100,
            "priceCents": 4499,
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["upc"] == "080432400432"
        assert body["price_cents"] == 4499
        assert body["taxable"] is True
        assert body["on_hand"] == 0

    def test_duplicate_upc_is_409(self, client, product):
        resp = client.post("/api/products", json={"upc": product.upc, "description": "Again"})
        assert resp.status_code == 409

    @pytest.mark.parametrize(
        "body",
        [
            {"description": "No UPC"},
            {"upc": "1"},
            {"upc": "1", "description": "x", "priceCents": -5},
            {"upc": "1", "description": "x", "priceCents": 1_000_000_000},
            {"upc": "1", "description": "x", "taxable": "maybe"},
            {"upc": "1", "description": "x", "quantity": 12},
        ],
    )
    def test_invalid_body_is_400(self, client, db_session, body):
        resp = client.post("/api/products", json=body)
        assert resp.status_code == 400
        assert db.session.query(Product).count() == 0

    def test_stock_is_not_writable(self, client, db_session):
        resp = client.post("/api/products", json={"upc": "1", "description": "x", "on_hand": 50})
        assert resp.status_code == 400


class TestReadProducts:
    def test_lookup_includes_ledger_stock(self, client, product, clerk):
        apply_adjustment(product.upc, "purchase", 24, clerk)
        apply_adjustment(product.upc, "sale", -2, clerk)

        resp = client.get(f"/api/products/{product.upc}")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["description"] == "Tito's Handmade Vodka 750ml"
        assert body["on_hand"] == 22

    def test_lookup_unknown_is_404(self, client, db_session):
        assert client.get("/api/products/000000").status_code == 404

    def test_list_and_search(self, client, product, second_product):
        apply_adjustment(second_product.upc, "purchase", 6)

        body = client.get("/api/products").get_json()
        assert body["count"] == 2
        # ordered by description
        assert [p["upc"] for p in body["items"]] == [second_product.upc, product.upc]
        assert {p["upc"]: p["on_hand"] for p in body["items"]} == {product.upc: 0, second_product.upc: 6}

        body = client.get("/api/products?search=bourbon").get_json()
        assert [p["upc"] for p in body["items"]] == [second_product.upc]

        body = client.get("/api/products?search=0123").get_json()
        assert [p["upc"] for p in body["items"]] == [product.upc]

        body = client.get("/api/products?search=vodka").get_json()
        assert [p["upc"] for p in body["items"]] == [product.upc]


class TestUpdateProduct:
    def test_patch_fields(self, client, product):
        resp = client.patch(f"/api/products/{product.upc}", json={"priceCents": 2299, "taxable": False})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["price_cents"] == 2299
        assert body["taxable"] is False
        assert body["description"] == "Tito's Handmade Vodka 750ml"

    def test_patch_does_not_touch_history(self, client, product):
        entry = apply_adjustment(product.upc, "purchase", 5)
        client.patch(f"/api/products/{product.upc}", json={"priceCents": 1999})
        assert entry.price_cents == 2499
        later = apply_adjustment(product.upc, "sale", -1)
        assert later.price_cents == 1999

    def test_upc_is_not_patchable(self, client, product):
        resp = client.patch(f"/api/products/{product.upc}", json={"upc": "999"})
        assert resp.status_code == 400

    def test_patch_unknown_is_404(self, client, db_session):
        resp = client.patch("/api/products/000000", json={"description": "x"})
        assert resp.status_code == 404
