import pytest

from storefront_orders.errors import ProductNotFoundError
from storefront_orders.models.inventory import StockChangeType, StockLedgerEntry
from storefront_orders.services.stock_ledger import StockLedger


class TestStockLedger:

    def test_history_is_newest_first(self, db, inventory, make_product):
        product = make_product(stock=10)
        inventory.adjust_stock(db, product.id, 5, StockChangeType.RESTOCK, note="supplier delivery")
        inventory.adjust_stock(db, product.id, -2, StockChangeType.ADJUSTMENT, note="damaged")

        history = StockLedger.history(db, product.id)

        assert [entry.quantity_change for entry in history] == [-2, 5]
        assert history[0].note == "damaged"
        assert history[1].change_type == StockChangeType.RESTOCK

    def test_history_pagination(self, db, inventory, make_product):
        product = make_product(stock=0)
        for _ in range(5):
            inventory.adjust_stock(db, product.id, 1, StockChangeType.RESTOCK)

        page = StockLedger.history(db, product.id, limit=2, offset=1)

        assert [entry.new_quantity for entry in page] == [4, 3]

    def test_audit_replays_every_change(self, db, inventory, make_product):
        product = make_product(stock=10)
        inventory.adjust_stock(db, product.id, 5, StockChangeType.RESTOCK)
        inventory.adjust_stock(db, product.id, -20, StockChangeType.ADJUSTMENT)
        inventory.adjust_stock(db, product.id, 3, StockChangeType.RETURN)

        audit = StockLedger.audit(db, product.id)

        assert audit.consistent
        assert audit.entry_count == 3
        assert audit.opening_quantity == 10
        assert audit.opening_quantity + audit.net_change == audit.current_stock == 3

    def test_audit_flags_stock_written_outside_ledger(self, db, inventory, make_product):
        product = make_product(stock=10)
        inventory.adjust_stock(db, product.id, -1, StockChangeType.ADJUSTMENT)

        product.stock_quantity = 42
        db.commit()

        audit = StockLedger.audit(db, product.id)

        assert not audit.consistent
        assert "product stock is 42" in audit.problems[-1]

    def test_audit_flags_broken_chain(self, db, inventory, make_product):
        product = make_product(stock=10)
        inventory.adjust_stock(db, product.id, -1, StockChangeType.ADJUSTMENT)
        StockLedger.append(
            db,
            product_id=product.id,
            change_type=StockChangeType.ADJUSTMENT,
            quantity_change=2,
            previous_quantity=4,
            new_quantity=6
        )
        db.commit()

        audit = StockLedger.audit(db, product.id)

        assert not audit.consistent
        assert any("previous entry ended at 9" in problem for problem in audit.problems)

    def test_audit_unknown_product(self, db):
        with pytest.raises(ProductNotFoundError):
            StockLedger.audit(db, 999)

    def test_append_does_not_commit(self, db, make_product):
        product = make_product(stock=3)
        StockLedger.append(
            db,
            product_id=product.id,
            change_type=StockChangeType.RESTOCK,
            quantity_change=1,
            previous_quantity=3,
            new_quantity=4
        )
        db.rollback()

        assert db.query(StockLedgerEntry).count() == 0
