"""
Unit tests for the cart aggregator.
"""

import pytest
from decimal import Decimal

from nota.exceptions import InsufficientStockError, NotFoundError, ValidationError
from nota.models import DiscountTier
from nota.services.cart_service import CartAggregator, line_key
from nota.services.discount_resolver import resolve_for_product
from nota.services.stock_ledger import StockLedger


class TestCartLines:
    """Adding, merging and removing lines."""

    def test_add_reserves_stock(self, session, product):
        cart = CartAggregator(session)
        line = cart.add_line(product.id, 'box', 2)

        assert line.quantity == 2
        assert line.key == line_key(product.id, 'box')
        assert StockLedger(session, product.id).available('box') == 8
        assert line.product.stock['box'] == 8

    def test_same_product_and_unit_merge(self, session, product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'buah', 4)
        cart.add_line(product.id, 'buah', 6)

        assert len(cart) == 1
        assert cart.get_line(product.id, 'buah').quantity == 10

    def test_units_are_separate_lines(self, session, product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'buah', 1)
        cart.add_line(product.id, 'box', 1)
        assert len(cart) == 2

    def test_insufficient_stock_adds_nothing(self, session, product):
        cart = CartAggregator(session)
        with pytest.raises(InsufficientStockError):
            cart.add_line(product.id, 'karton', 5)
        assert cart.is_empty()
        assert StockLedger(session, product.id).available('karton') == 2

    def test_invalid_quantity(self, session, product):
        with pytest.raises(ValidationError):
            CartAggregator(session).add_line(product.id, 'buah', 0)

    def test_update_quantity_adjusts_reservation(self, session, product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'box', 2)
        cart.update_quantity(product.id, 'box', 5)
        assert StockLedger(session, product.id).available('box') == 5
        cart.update_quantity(product.id, 'box', 1)
        assert StockLedger(session, product.id).available('box') == 9

    def test_update_to_zero_removes(self, session, product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'box', 2)
        assert cart.update_quantity(product.id, 'box', 0) is None
        assert cart.is_empty()
        assert StockLedger(session, product.id).available('box') == 10

    def test_update_missing_line(self, session, product):
        with pytest.raises(NotFoundError):
            CartAggregator(session).update_quantity(product.id, 'box', 3)

    def test_remove_releases(self, session, product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'buah', 30)
        cart.remove_line(product.id, 'buah')
        assert cart.is_empty()
        assert StockLedger(session, product.id).available('buah') == 100

    def test_clear_releases_everything(self, session, product, plain_product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'buah', 3)
        cart.add_line(product.id, 'karton', 1)
        cart.add_line(plain_product.id, 'buah', 10)
        cart.clear()

        assert cart.is_empty()
        assert StockLedger(session, product.id).snapshot() == {'buah': 100, 'box': 10, 'karton': 2}
        assert StockLedger(session, plain_product.id).snapshot() == {'buah': 40}

    def test_consume_keeps_stock_sold(self, session, product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'box', 3)
        cart.consume()
        assert cart.is_empty()
        assert StockLedger(session, product.id).available('box') == 7

    def test_unit_casing_shares_one_line(self, session, product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'BOX', 3)
        cart.add_line(product.id, 'box', 2)

        line = cart.get_line(product.id, 'Box')
        assert len(cart) == 1
        assert line.unit == 'box'
        assert line.resolve().unit_price == Decimal('855')

    def test_refresh_drops_deleted_product(self, session, product, plain_product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'buah', 1)
        cart.add_line(plain_product.id, 'buah', 3)
        session.delete(plain_product)
        session.commit()

        dropped = cart.refresh()
        assert [line.display_name for line in dropped] == ['Buku Tulis 38 (3 buah)']
        assert len(cart) == 1

    def test_remove_line_of_deleted_product(self, session, plain_product):
        product_id = plain_product.id
        cart = CartAggregator(session)
        cart.add_line(product_id, 'buah', 3)
        session.delete(plain_product)
        session.commit()

        cart.remove_line(product_id, 'buah')
        assert cart.is_empty()



class TestCartPricing:
    """Totals come from the shared resolver."""

    def test_total_matches_resolver_per_line(self, session, product, plain_product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'buah', 12)     # exact 15%
        cart.add_line(product.id, 'box', 5)       # 10% then 5%
        cart.add_line(plain_product.id, 'buah', 3)

        expected = Decimal('0')
        for product_id, unit, qty in ((product.id, 'buah', 12), (product.id, 'box', 5), (plain_product.id, 'buah', 3)):
            fresh = session.get(type(product), product_id)
            expected += resolve_for_product(fresh, qty, unit).unit_price * qty

        assert cart.total() == expected
        assert cart.total() == Decimal('10200') + Decimal('4275') + Decimal('10500')

    def test_transaction_items(self, session, product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'box', 5)
        [draft] = cart.to_transaction_items()

        assert draft.product_name == 'Pensil 2B (5 box)'
        assert draft.unit_price == Decimal('855')
        assert draft.subtotal == Decimal('4275')
        assert draft.discount_amount == Decimal('145')
        assert draft.discount_percent == Decimal('14.50')
        assert draft.discount_details == {'discount1': Decimal('10'), 'discount2': Decimal('5')}

    def test_undiscounted_item_has_no_details(self, session, plain_product):
        cart = CartAggregator(session)
        cart.add_line(plain_product.id, 'buah', 2)
        [draft] = cart.to_transaction_items()
        assert draft.discount_details is None
        assert draft.subtotal == Decimal('7000')

    def test_refresh_picks_up_new_tier(self, session, plain_product):
        cart = CartAggregator(session)
        cart.add_line(plain_product.id, 'buah', 10)
        session.add(DiscountTier(product_id=plain_product.id, min_quantity=10,
                                 discount=Decimal('20'), unit='buah', is_exact=False))
        session.commit()

        assert cart.total() == Decimal('35000')
        cart.refresh()
        assert cart.total() == Decimal('28000')


class TestCartSerialization:
    """Flask session payload."""

    def test_round_trip_preserves_pricing(self, session, product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'buah', 12)
        restored = CartAggregator.from_dict(session, cart.to_dict())

        assert restored.total() == cart.total()
        assert restored.get_line(product.id, 'buah').product.tiers == cart.get_line(product.id, 'buah').product.tiers

    def test_empty_payload(self, session):
        assert CartAggregator.from_dict(session, None).is_empty()
