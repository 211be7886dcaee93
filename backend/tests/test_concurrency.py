"""
Concurrent writers against one product.

Runs on a file-backed SQLite database so every thread gets its own
connection and has to contend for the write lock.
"""

import threading

from liquorpos.extensions import db
from liquorpos.models import LedgerEntry, Product
from liquorpos.services.ledger_service import (
    Actor,
    AdjustmentFilters,
    apply_adjustment,
    get_on_hand,
    list_adjustments,
    verify_chain,
)


DELTAS = [5, -3, 7, -2, 4, -1] * 2


def _seed(app, upc="012345", quantity=10):
    with app.app_context():
        db.session.add(Product(upc=upc, description="Tito's Handmade Vodka 750ml", price_cents=2499))
        db.session.commit()
        apply_adjustment(upc, "initial", quantity)
        db.session.remove()


def _run_writers(app, jobs):
    """Start one thread per (upc, reason, delta) job at the same moment."""
    barrier = threading.Barrier(len(jobs))
    errors = []

    def worker(index, upc, reason, delta):
        with app.app_context():
            barrier.wait()
            try:
                apply_adjustment(upc, reason, delta, Actor(user_id=index, name=f"clerk-{index}"))
            except Exception as exc:  # collected and asserted on below
                errors.append(exc)

    threads = [
        threading.Thread(target=worker, args=(i, upc, reason, delta))
        for i, (upc, reason, delta) in enumerate(jobs)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=120)
    return errors


def test_concurrent_adjustments_keep_the_chain(file_app):
    _seed(file_app, quantity=10)

    jobs = [("012345", "adjustment", d) for d in DELTAS]
    errors = _run_writers(file_app, jobs)
    assert errors == []

    with file_app.app_context():
        entries = list_adjustments(AdjustmentFilters(upc="012345", newest_first=False))
        assert len(entries) == len(DELTAS) + 1

        by_sequence = sorted(entries, key=lambda e: e.sequence)
        assert [e.sequence for e in by_sequence] == list(range(1, len(DELTAS) + 2))
        for prev, nxt in zip(by_sequence, by_sequence[1:]):
            assert nxt.quantity_before == prev.quantity_after

        assert get_on_hand("012345") == 10 + sum(DELTAS)
        assert verify_chain() == []


def test_concurrent_writers_on_different_products(file_app):
    _seed(file_app, upc="012345", quantity=3)
    _seed(file_app, upc="087000", quantity=3)

    jobs = []
    for d in DELTAS[:6]:
        jobs.append(("012345", "adjustment", d))
        jobs.append(("087000", "adjustment", -d))
    errors = _run_writers(file_app, jobs)
    assert errors == []

    with file_app.app_context():
        assert get_on_hand("012345") == 3 + sum(DELTAS[:6])
        assert get_on_hand("087000") == 3 - sum(DELTAS[:6])
        assert db.session.query(LedgerEntry).count() == 2 + len(jobs)
        assert verify_chain() == []
