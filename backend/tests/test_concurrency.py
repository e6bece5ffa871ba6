"""
Threaded concurrency checks against a file-backed SQLite database.

Each worker runs in its own app context (and therefore its own session),
so the drawer and sequence safeguards are exercised across connections.
"""
import os
import tempfile
import threading
import unittest

from teller import create_app
from teller.errors import InsufficientInventoryError
from teller.extensions import db
from teller.services.denomination_service import OP_ADD, OP_SUBTRACT, adjust_drawer, get_inventory_cents
from teller.services.transaction_service import create_transaction


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()
            adjust_drawer("op-1", "100", 5, OP_ADD)
            db.session.commit()

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def test_concurrent_drawer_subtraction_never_oversells(self):
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(2)

        def worker():
            with self.app.app_context():
                try:
                    barrier.wait()
                    adjust_drawer("op-1", "100", 3, OP_SUBTRACT)
                    db.session.commit()
                    with lock:
                        results.append("subtracted")
                except Exception as exc:
                    db.session.rollback()
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        with self.app.app_context():
            remaining = get_inventory_cents("op-1")[10000]

        succeeded = sum(1 for r in results if r == "subtracted")
        self.assertLessEqual(succeeded, 1)
        self.assertEqual(remaining, 5 - 3 * succeeded)
        self.assertGreaterEqual(remaining, 0)
        if succeeded == 1:
            self.assertTrue(any(isinstance(r, InsufficientInventoryError) for r in results))

    def test_transaction_numbers_are_unique(self):
        created = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    txn = create_transaction(
                        transaction_type="CASH_DEPOSIT",
                        operator_id="op-1",
                        branch_id="branch-1",
                        items=[{"description": "Deposit", "amount": "10.00"}],
                    )
                    with lock:
                        created.append(txn.transaction_number)
                except Exception:
                    db.session.rollback()
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertTrue(created)
        self.assertEqual(len(created), len(set(created)))


if __name__ == "__main__":
    unittest.main()
