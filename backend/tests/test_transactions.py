"""
Register transaction tests.

A sale or return writes the transaction, its lines and one ledger entry per
line together, or nothing at all.
"""

import time

import pytest

from liquorpos.extensions import db
from liquorpos.models import LedgerEntry, Transaction, TransactionLine
from liquorpos.services.ledger_service import (
    NegativeBalance,
    ProductNotFound,
    apply_adjustment,
    get_on_hand,
    verify_chain,
)
from liquorpos.services.transaction_service import (
    TransactionError,
    compute_tax_cents,
    list_transactions,
    record_transaction,
)
from liquorpos.time_utils import utcnow


@pytest.fixture
def stocked(product, second_product, clerk):
    apply_adjustment(product.upc, "purchase", 24, clerk)
    apply_adjustment(second_product.upc, "purchase", 12, clerk)
    return product, second_product


def _counts():
    return (
        db.session.query(Transaction).count(),
        db.session.query(TransactionLine).count(),
        db.session.query(LedgerEntry).count(),
    )


class TestComputeTax:
    @pytest.mark.parametrize(
        "subtotal, bps, expected",
        [
            (2499, 0, 0),
            (10000, 825, 825),
            (2499, 825, 206),   # 206.17
            (200, 825, 17),     # 16.5 rounds half up
            (0, 825, 0),
        ],
    )
    def test_half_up(self, subtotal, bps, expected):
        assert compute_tax_cents(subtotal, bps) == expected


class TestSale:
    def test_sale_journals_each_line(self, stocked, clerk):
        product, second = stocked
        tx = record_transaction(
            kind="sale",
            payment_type="card",
            items=[
                {"upc": product.upc, "quantity": 2, "unit_price_cents": None},
                {"upc": second.upc, "quantity": 1, "unit_price_cents": 2999},
            ],
            actor=clerk,
        )

        assert tx.subtotal_cents == 2 * 2499 + 2999
        assert tx.tax_cents == 0
        assert tx.total_cents == tx.subtotal_cents
        assert [line.line_number for line in tx.lines] == [1, 2]

        assert get_on_hand(product.upc) == 22
        assert get_on_hand(second.upc) == 11

        entries = LedgerEntry.query.filter_by(reference_transaction_id=tx.id).order_by(LedgerEntry.id).all()
        assert [(e.upc, e.reason, e.delta) for e in entries] == [
            (product.upc, "sale", -2),
            (second.upc, "sale", -1),
        ]
        assert entries[1].price_cents == 2999
        assert entries[0].note == f"Transaction #{tx.id}"
        assert all(e.actor_name == "Kelly" for e in entries)
        assert verify_chain() == []

    def test_tax_only_on_taxable_lines(self, app, stocked, monkeypatch):
        product, second = stocked
        second.taxable = False
        db.session.commit()
        monkeypatch.setitem(app.config, "TAX_RATE_BPS", 825)

        tx = record_transaction(
            kind="sale",
            payment_type="card",
            items=[
                {"upc": product.upc, "quantity": 1, "unit_price_cents": 10000},
                {"upc": second.upc, "quantity": 1, "unit_price_cents": 5000},
            ],
        )
        assert tx.subtotal_cents == 15000
        assert tx.tax_cents == 825
        assert tx.total_cents == 15825

    def test_cash_change(self, stocked):
        product, _ = stocked
        tx = record_transaction(
            kind="sale",
            payment_type="cash",
            items=[{"upc": product.upc, "quantity": 1, "unit_price_cents": None}],
            cash_given_cents=3000,
        )
        assert tx.cash_given_cents == 3000
        assert tx.change_given_cents == 501

    def test_short_cash_rolls_back(self, stocked):
        product, _ = stocked
        before = _counts()
        with pytest.raises(TransactionError):
            record_transaction(
                kind="sale",
                payment_type="cash",
                items=[{"upc": product.upc, "quantity": 1, "unit_price_cents": None}],
                cash_given_cents=100,
            )
        assert _counts() == before
        assert get_on_hand(product.upc) == 24

    def test_unknown_line_rolls_back_everything(self, stocked):
        product, _ = stocked
        before = _counts()
        with pytest.raises(ProductNotFound):
            record_transaction(
                kind="sale",
                payment_type="card",
                items=[
                    {"upc": product.upc, "quantity": 3, "unit_price_cents": None},
                    {"upc": "NOPE-1", "quantity": 1, "unit_price_cents": 100},
                ],
            )
        assert _counts() == before
        assert get_on_hand(product.upc) == 24

    def test_negative_policy_rolls_back(self, app, stocked, monkeypatch):
        product, second = stocked
        monkeypatch.setitem(app.config, "LEDGER_FORBID_NEGATIVE", True)
        before = _counts()
        with pytest.raises(NegativeBalance):
            record_transaction(
                kind="sale",
                payment_type="card",
                items=[
                    {"upc": product.upc, "quantity": 1, "unit_price_cents": None},
                    {"upc": second.upc, "quantity": 13, "unit_price_cents": None},
                ],
            )
        assert _counts() == before

    def test_idempotency_key_replays(self, stocked):
        product, _ = stocked
        items = [{"upc": product.upc, "quantity": 1, "unit_price_cents": None}]
        first = record_transaction(kind="sale", payment_type="card", items=items, idempotency_key="abc-1")
        again = record_transaction(kind="sale", payment_type="card", items=items, idempotency_key="abc-1")
        assert again.id == first.id
        assert get_on_hand(product.upc) == 23

        with pytest.raises(TransactionError):
            record_transaction(kind="return", payment_type="card", items=items, idempotency_key="abc-1")


class TestReturnAndPayout:
    def test_return_puts_stock_back(self, stocked):
        product, _ = stocked
        tx = record_transaction(
            kind="return",
            payment_type="cash",
            items=[{"upc": product.upc, "quantity": 2, "unit_price_cents": None}],
        )
        assert get_on_hand(product.upc) == 26
        entry = LedgerEntry.query.filter_by(reference_transaction_id=tx.id).one()
        assert (entry.reason, entry.delta) == ("return", 2)

    def test_payout_has_no_stock_movement(self, stocked):
        before_entries = db.session.query(LedgerEntry).count()
        tx = record_transaction(kind="payout", payment_type="cash", items=[], payout_cents=4000, note="Ice delivery")
        assert tx.total_cents == 4000
        assert tx.lines == []
        assert db.session.query(LedgerEntry).count() == before_entries

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"kind": "payout", "items": [], "payout_cents": None},
            {"kind": "payout", "items": [{"upc": "012345", "quantity": 1}], "payout_cents": 100},
            {"kind": "sale", "items": []},
            {"kind": "refund", "items": [{"upc": "012345", "quantity": 1}]},
        ],
    )
    def test_shape_errors(self, db_session, kwargs):
        with pytest.raises(TransactionError):
            record_transaction(payment_type="cash", **kwargs)


class TestTransactionRoutes:
    def test_post_sale(self, client, stocked):
        product, _ = stocked
        resp = client.post("/api/transactions", json={
            "kind": "sale",
            "paymentType": "cash",
            "items": [{"upc": product.upc, "quantity": 2}],
            "cashGivenCents": 5000,
            "actorName": "Kelly",
        })
        assert resp.status_code == 201
        tx = resp.get_json()["transaction"]
        assert tx["total_cents"] == 4998
        assert tx["change_given_cents"] == 2
        assert tx["actor_name"] == "Kelly"
        assert tx["lines"][0]["quantity"] == 2

        fetched = client.get(f"/api/transactions/{tx['id']}")
        assert fetched.status_code == 200
        assert fetched.get_json()["id"] == tx["id"]

        assert client.get(f"/api/inventory/{product.upc}/on-hand").get_json()["quantity"] == 22

    def test_missing_payment_type_is_400(self, client, stocked):
        resp = client.post("/api/transactions", json={"items": [{"upc": "012345", "quantity": 1}]})
        assert resp.status_code == 400

    def test_zero_quantity_is_400(self, client, stocked):
        resp = client.post("/api/transactions", json={
            "paymentType": "card",
            "items": [{"upc": "012345", "quantity": 0}],
        })
        assert resp.status_code == 400

    def test_unknown_upc_is_404(self, client, stocked):
        resp = client.post("/api/transactions", json={
            "paymentType": "card",
            "items": [{"upc": "NOPE-1", "quantity": 1}],
        })
        assert resp.status_code == 404
        assert db.session.query(Transaction).count() == 0

    def test_get_missing_is_404(self, client, db_session):
        assert client.get("/api/transactions/999").status_code == 404


class TestTransactionActorInput:
    @pytest.mark.parametrize(
        "actor_fields",
        [
            {"actorId": {"x": 1}},
            {"actorId": "not-a-number"},
            {"actorId": 1.5},
            {"actorName": "x" * 121},
            {"actorName": ["Kelly"]},
        ],
    )
    def test_bad_actor_is_400(self, client, stocked, actor_fields):
        resp = client.post("/api/transactions", json={
            "paymentType": "card",
            "items": [{"upc": "012345", "quantity": 1}],
            **actor_fields,
        })
        assert resp.status_code == 400
        assert db.session.query(Transaction).count() == 0
        assert get_on_hand("012345") == 24

    def test_numeric_string_actor_id_is_coerced(self, client, stocked):
        resp = client.post("/api/transactions", json={
            "paymentType": "card",
            "items": [{"upc": "012345", "quantity": 1}],
            "actorId": "7",
            "actorName": "Kelly",
        })
        assert resp.status_code == 201
        assert resp.get_json()["transaction"]["actor_user_id"] == 7

    def test_overlong_idempotency_key_is_400(self, client, stocked):
        resp = client.post("/api/transactions", json={
            "paymentType": "card",
            "items": [{"upc": "012345", "quantity": 1}],
            "idempotencyKey": "k" * 65,
        })
        assert resp.status_code == 400


def test_storage_failure_is_503_and_rolls_back(client, stocked, failing_commit):
    before = _counts()
    resp = client.post("/api/transactions", json={
        "paymentType": "card",
        "items": [{"upc": "012345", "quantity": 2}],
    })
    assert resp.status_code == 503
    assert _counts() == before
    assert get_on_hand("012345") == 24


class TestListTransactions:
    @pytest.fixture
    def history(self, stocked):
        product, second = stocked
        sale = record_transaction(
            kind="sale", payment_type="card",
            items=[{"upc": product.upc, "quantity": 1, "unit_price_cents": None}],
        )
        time.sleep(0.005)
        marker = utcnow()
        time.sleep(0.005)
        ret = record_transaction(
            kind="return", payment_type="cash",
            items=[{"upc": second.upc, "quantity": 1, "unit_price_cents": None}],
        )
        payout = record_transaction(kind="payout", payment_type="cash", items=[], payout_cents=500)
        return sale, marker, ret, payout

    def test_newest_first(self, history):
        sale, _, ret, payout = history
        assert [tx.id for tx in list_transactions()] == [payout.id, ret.id, sale.id]

    def test_date_range_is_inclusive(self, history):
        sale, marker, ret, payout = history
        assert [tx.id for tx in list_transactions(end=marker)] == [sale.id]
        assert [tx.id for tx in list_transactions(start=marker)] == [payout.id, ret.id]
        assert len(list_transactions(start=sale.created_at, end=payout.created_at)) == 3

    def test_kind_filter(self, history):
        _, _, ret, _ = history
        assert [tx.id for tx in list_transactions(kind="return")] == [ret.id]
        with pytest.raises(TransactionError):
            list_transactions(kind="refund")

    def test_route(self, client, history):
        sale, _, ret, payout = history
        rows = client.get("/api/transactions").get_json()
        assert [r["id"] for r in rows] == [payout.id, ret.id, sale.id]

        rows = client.get("/api/transactions?startDate=2000-01-01&endDate=2999-12-31&kind=sale").get_json()
        assert [r["id"] for r in rows] == [sale.id]
        assert rows[0]["lines"][0]["upc"] == "012345"

        assert client.get("/api/transactions?endDate=2000-01-01").get_json() == []
        assert len(client.get("/api/transactions?limit=1").get_json()) == 1

    @pytest.mark.parametrize("query", ["startDate=soon", "limit=many", "kind=refund"])
    def test_route_bad_query_is_400(self, client, db_session, query):
        assert client.get(f"/api/transactions?{query}").status_code == 400
