"""
Unit tests for nota numbering and commit.
"""

import pytest
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import nota.models  # noqa: F401
from nota.database import Base
from nota.exceptions import ValidationError, DuplicateKeyError, NotFoundError
from nota.models import (
    Setting, TRANSACTION_COUNTER_KEY, Transaction, TransactionItem, Customer, Product, StockEntry
)
from nota.services.cart_service import CartAggregator, TransactionItemDraft
from nota.services.stock_ledger import StockLedger
from nota.services.transaction_sequencer import TransactionSequencer, next_counter_value
from nota.services import transaction_service


def counter_value(session):
    return session.query(Setting).filter(Setting.key == TRANSACTION_COUNTER_KEY).populate_existing().one().value


def draft(product_id, quantity=1, unit_price='1000'):
    unit_price = Decimal(unit_price)
    return TransactionItemDraft(
        product_id=product_id,
        product_name=f'Pensil 2B ({quantity} buah)',
        unit='buah',
        quantity=quantity,
        base_price=unit_price,
        unit_price=unit_price,
        subtotal=unit_price * quantity,
        discount_amount=Decimal('0'),
        discount_percent=Decimal('0'),
    )


class TestCounter:
    """Counter increment and number format."""

    def test_padding_is_kept(self):
        assert next_counter_value('2504040159') == '2504040160'
        assert next_counter_value('0000000099') == '0000000100'
        assert next_counter_value('999') == '1000'

    @pytest.mark.parametrize('value', ['', 'RJA159', None, '12a'])
    def test_non_numeric_counter(self, value):
        with pytest.raises(ValidationError):
            next_counter_value(value)

    def test_preview_does_not_touch_counter(self, session, counter):
        sequencer = TransactionSequencer()
        assert sequencer.preview(session) == 'RJA/APT/2504040159'
        assert sequencer.preview(session) == 'RJA/APT/2504040159'
        assert counter_value(session) == '2504040159'

    def test_preview_without_counter_row(self, session):
        assert TransactionSequencer().preview(session) == 'RJA/APT/2504040159'
        assert session.query(Setting).count() == 0

    def test_allocate_seeds_missing_counter(self, session):
        sequencer = TransactionSequencer(seed='0000000001')
        assert sequencer.allocate(session) == 'RJA/APT/0000000001'
        assert sequencer.allocate(session) == 'RJA/APT/0000000002'
        assert counter_value(session) == '0000000003'

    def test_from_config(self, app):
        app.config['TRANSACTION_NUMBER_PREFIX'] = 'INV/'
        sequencer = TransactionSequencer.from_config(app.config)
        assert sequencer.format_number('7') == 'INV/7'


class TestCommit:
    """Header and items written together."""

    def test_commit_writes_header_and_items(self, session, counter, customer, product):
        cart = CartAggregator(session)
        cart.add_line(product.id, 'box', 5)
        cart.add_line(product.id, 'buah', 2)

        transaction = TransactionSequencer().commit(
            session, cart.to_transaction_items(), customer.id, 'kasir-1',
            notes='Antar sore', payment_terms_days='30'
        )

        assert transaction.transaction_number == 'RJA/APT/2504040159'
        assert transaction.customer_name == 'Toko Sinar Jaya'
        assert transaction.customer_address == 'Jl. Merdeka 12, Bandung'
        assert transaction.created_by == 'kasir-1'
        assert transaction.payment_terms_days == 30
        assert transaction.status == 'completed'
        assert transaction.total_amount == Decimal('4275') + Decimal('2000')
        assert [item.unit for item in transaction.items] == ['box', 'buah']
        assert transaction.items[0].discount1 == Decimal('10')
        assert transaction.items[0].discount2 == Decimal('5')
        assert counter_value(session) == '2504040160'

    def test_numbers_are_sequential(self, session, counter, customer, product):
        sequencer = TransactionSequencer()
        first = sequencer.commit(session, [draft(product.id)], customer.id, 'kasir-1')
        second = sequencer.commit(session, [draft(product.id)], customer.id, 'kasir-1')
        assert first.transaction_number == 'RJA/APT/2504040159'
        assert second.transaction_number == 'RJA/APT/2504040160'

    def test_requires_customer(self, session, counter, product):
        with pytest.raises(ValidationError) as exc_info:
            TransactionSequencer().commit(session, [draft(product.id)], None, 'kasir-1')
        assert exc_info.value.message == 'Silakan pilih customer'
        assert counter_value(session) == '2504040159'

    def test_requires_items(self, session, counter, customer):
        with pytest.raises(ValidationError):
            TransactionSequencer().commit(session, [], customer.id, 'kasir-1')

    def test_requires_actor(self, session, counter, customer, product):
        with pytest.raises(ValidationError):
            TransactionSequencer().commit(session, [draft(product.id)], customer.id, None)

    def test_negative_payment_terms(self, session, counter, customer, product):
        with pytest.raises(ValidationError):
            TransactionSequencer().commit(session, [draft(product.id)], customer.id, 'kasir-1',
                                          payment_terms_days=-1)

    def test_duplicate_number_is_reallocated(self, session, counter, customer, product):
        session.add(Transaction(transaction_number='RJA/APT/2504040159', customer_name='Lama',
                                total_amount=Decimal('1'), created_by='import'))
        session.commit()

        transaction = TransactionSequencer().commit(session, [draft(product.id)], customer.id, 'kasir-1')

        assert transaction.transaction_number == 'RJA/APT/2504040160'
        assert counter_value(session) == '2504040161'

    def test_duplicate_retries_exhausted(self, session, counter, customer, product):
        for number in ('RJA/APT/2504040159', 'RJA/APT/2504040160'):
            session.add(Transaction(transaction_number=number, customer_name='Lama',
                                    total_amount=Decimal('1'), created_by='import'))
        session.commit()

        with pytest.raises(DuplicateKeyError):
            TransactionSequencer(max_attempts=2).commit(session, [draft(product.id)], customer.id, 'kasir-1')
        assert session.query(Transaction).count() == 2

    def test_item_failure_rolls_back_header(self, session, counter, customer, product, monkeypatch):
        def broken_item(transaction_id, item):
            raise RuntimeError('disk full')

        monkeypatch.setattr(TransactionSequencer, '_build_item', staticmethod(broken_item))

        with pytest.raises(RuntimeError):
            TransactionSequencer().commit(session, [draft(product.id)], customer.id, 'kasir-1')

        assert session.query(Transaction).count() == 0
        assert session.query(TransactionItem).count() == 0
        # The claimed number is skipped, never reused
        assert counter_value(session) == '2504040160'


@pytest.fixture
def two_sessions(tmp_path):
    """Two independent connections to one on-disk database."""
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    first, second = factory(), factory()

    first.add(Setting(key=TRANSACTION_COUNTER_KEY, value='2504040159'))
    customer = Customer(name='Toko Sinar Jaya', address='Bandung')
    product = Product(name='Pensil 2B', category='Alat Tulis', sku='PSL-2B',
                      base_price=Decimal('1000'), price=Decimal('1000'))
    product.stock_entries.append(StockEntry(unit='buah', quantity=100))
    first.add_all([customer, product])
    first.commit()

    yield first, second, customer.id, product.id

    first.close()
    second.close()
    engine.dispose()


class RacingSequencer(TransactionSequencer):
    """Lets another cashier commit between our counter read and our swap."""

    def __init__(self, rival_session, customer_id, product_id, **kwargs):
        super().__init__(**kwargs)
        self.rival_session = rival_session
        self.customer_id = customer_id
        self.product_id = product_id
        self.rival = None

    def _read_counter(self, session):
        value = super()._read_counter(session)
        if self.rival is None:
            self.rival = TransactionSequencer().commit(
                self.rival_session, [draft(self.product_id)], self.customer_id, 'kasir-2'
            )
        return value


class TestConcurrentCommit:
    """Two commits racing on the same counter value."""

    def test_stale_counter_read_gets_a_fresh_number(self, two_sessions):
        first, second, customer_id, product_id = two_sessions
        sequencer = RacingSequencer(second, customer_id, product_id)

        mine = sequencer.commit(first, [draft(product_id, 2)], customer_id, 'kasir-1')

        assert sequencer.rival.transaction_number == 'RJA/APT/2504040159'
        assert mine.transaction_number == 'RJA/APT/2504040160'
        assert counter_value(first) == '2504040161'
        numbers = [t.transaction_number for t in first.query(Transaction).all()]
        assert len(numbers) == len(set(numbers)) == 2


class TestTransactionHistory:
    """Lookup and deletion of committed notas."""

    def _commit(self, session, customer, product, quantity=3):
        StockLedger(session, product.id).reserve('buah', quantity)
        return TransactionSequencer().commit(session, [draft(product.id, quantity)], customer.id, 'kasir-1',
                                             notes='Pesanan sekolah')

    def test_get_and_list(self, session, counter, customer, product):
        transaction = self._commit(session, customer, product)

        assert transaction_service.get_transaction(session, transaction.id).items[0].quantity == 3
        assert len(transaction_service.list_transactions(session, search='sekolah')) == 1
        assert len(transaction_service.list_transactions(session, search='2504040159')) == 1
        assert transaction_service.list_transactions(session, search='tidak-ada') == []

    def test_get_unknown(self, session):
        with pytest.raises(NotFoundError):
            transaction_service.get_transaction(session, 404)

    def test_delete_keeps_stock_sold(self, session, counter, customer, product):
        transaction = self._commit(session, customer, product)
        result = transaction_service.delete_transaction(session, transaction.id)

        assert result['transaction_number'] == 'RJA/APT/2504040159'
        assert result['restocked'] == []
        assert session.query(Transaction).count() == 0
        assert session.query(TransactionItem).count() == 0
        assert StockLedger(session, product.id).available('buah') == 97

    def test_delete_with_restock(self, session, counter, customer, product):
        transaction = self._commit(session, customer, product)
        result = transaction_service.delete_transaction(session, transaction.id, restock=True)

        assert result['restocked'][0]['new_stock'] == 100
        assert StockLedger(session, product.id).available('buah') == 100

    def test_delete_unknown(self, session):
        with pytest.raises(NotFoundError):
            transaction_service.delete_transaction(session, 404)
