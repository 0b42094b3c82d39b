"""
Unit tests for the stock ledger.
"""

import pytest

from nota.exceptions import (
    ValidationError, NotFoundError, InsufficientStockError, ConcurrencyConflictError
)
from nota.models import StockEntry, ProductUnit, DiscountTier
from nota.services.stock_ledger import StockLedger


class TestReserveRelease:
    """Reservations against per-unit stock."""

    def test_reserve_decrements(self, session, product):
        ledger = StockLedger(session, product.id)
        assert ledger.reserve('box', 3) == 7
        assert ledger.available('box') == 7

    def test_reserve_release_round_trip(self, session, product):
        ledger = StockLedger(session, product.id)
        before = ledger.snapshot()
        ledger.reserve('buah', 37)
        ledger.release('buah', 37)
        assert ledger.snapshot() == before

    def test_insufficient_stock_leaves_quantity_untouched(self, session, product):
        ledger = StockLedger(session, product.id)
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.reserve('karton', 3)
        assert exc_info.value.available == 2
        assert exc_info.value.required == 3
        assert exc_info.value.status_code == 409
        assert ledger.available('karton') == 2

    def test_reserve_exact_remaining(self, session, product):
        ledger = StockLedger(session, product.id)
        assert ledger.reserve('karton', 2) == 0
        with pytest.raises(InsufficientStockError):
            ledger.reserve('karton', 1)

    def test_unknown_unit(self, session, product):
        with pytest.raises(ValidationError):
            StockLedger(session, product.id).reserve('lusin', 1)

    def test_unknown_product(self, session):
        with pytest.raises(NotFoundError):
            StockLedger(session, 9999).reserve('buah', 1)

    @pytest.mark.parametrize('qty', [0, -3, 'x', None])
    def test_invalid_quantity(self, session, product, qty):
        with pytest.raises(ValidationError):
            StockLedger(session, product.id).reserve('buah', qty)

    def test_never_negative(self, session, product):
        ledger = StockLedger(session, product.id)
        for qty in (40, 40, 40, 15, 5):
            try:
                ledger.reserve('buah', qty)
            except InsufficientStockError:
                pass
            assert ledger.available('buah') >= 0
        assert ledger.available('buah') == 0

    def test_adjust(self, session, product):
        ledger = StockLedger(session, product.id)
        ledger.adjust('box', 4)
        assert ledger.available('box') == 6
        ledger.adjust('box', -2)
        assert ledger.available('box') == 8
        assert ledger.adjust('box', 0) is None

    def test_release_recreates_removed_entry(self, session, plain_product):
        ledger = StockLedger(session, plain_product.id)
        ledger.reserve('buah', 5)
        session.query(StockEntry).filter(StockEntry.product_id == plain_product.id).delete()
        session.commit()

        assert ledger.release('buah', 5) == 5

    def test_release_after_product_deleted(self, session, plain_product):
        product_id = plain_product.id
        ledger = StockLedger(session, product_id)
        ledger.reserve('buah', 5)
        session.delete(plain_product)
        session.commit()

        assert ledger.release('buah', 5) == 0
        assert session.query(StockEntry).filter_by(product_id=product_id).count() == 0


class TestSetQuantity:
    """Operator edits with optimistic versioning."""

    def test_set_bumps_version(self, session, product):
        ledger = StockLedger(session, product.id)
        entry = ledger.set_quantity('box', 25)
        assert entry.quantity == 25
        assert entry.version == 2

    def test_stale_version_rejected(self, session, product):
        ledger = StockLedger(session, product.id)
        version = session.query(StockEntry).filter_by(product_id=product.id, unit='box').one().version
        ledger.reserve('box', 1)  # another cashier touches the row

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            ledger.set_quantity('box', 50, expected_version=version)
        assert exc_info.value.status_code == 503
        assert ledger.available('box') == 9

    def test_negative_rejected(self, session, product):
        with pytest.raises(ValidationError):
            StockLedger(session, product.id).set_quantity('box', -1)


class TestEntries:
    """Adding and removing stocked units."""

    def test_add_entry(self, session, plain_product):
        ledger = StockLedger(session, plain_product.id)
        ledger.add_entry('box', 3)
        assert ledger.snapshot() == {'buah': 40, 'box': 3}

    def test_units_stored_lowercase(self, session, plain_product):
        ledger = StockLedger(session, plain_product.id)
        entry = ledger.add_entry(' Box ', 5)
        assert entry.unit == 'box'

        assert ledger.reserve('BOX', 2) == 3
        assert ledger.available('Box') == 3
        assert ledger.release('box', 1) == 4

    def test_add_duplicate_case_insensitive(self, session, plain_product):
        with pytest.raises(ValidationError):
            StockLedger(session, plain_product.id).add_entry('BUAH', 3)

    def test_remove_rejected_while_tiers_depend(self, session, product):
        ledger = StockLedger(session, product.id)
        with pytest.raises(ValidationError) as exc_info:
            ledger.remove_entry('box')
        assert exc_info.value.payload['dependent_tiers'] == [[5, 'box', False]]
        assert 'box' in ledger.snapshot()

    def test_remove_with_cascade(self, session, product):
        ledger = StockLedger(session, product.id)
        assert ledger.remove_entry('box', cascade_tiers=True) == 1

        assert 'box' not in ledger.snapshot()
        assert session.query(DiscountTier).filter_by(product_id=product.id, unit='box').count() == 0
        assert session.query(ProductUnit).filter_by(product_id=product.id, name='box').count() == 0
        assert session.query(DiscountTier).filter_by(product_id=product.id).count() == 2

    def test_remove_unknown(self, session, plain_product):
        with pytest.raises(NotFoundError):
            StockLedger(session, plain_product.id).remove_entry('karton')
