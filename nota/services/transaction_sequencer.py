"""
Transaction sequencer - invoice numbering and nota commit.

Numbers come from the ``transaction_counter`` settings row. Allocation is a
compare-and-swap on the stored value, committed before the transaction row
is written: a failure afterwards leaves a gap in the numbering, never a
repeat.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from nota.blueprints.metrics import sequence_conflicts_total, transactions_committed_total
from nota.exceptions import (
    NotaError, ValidationError, NotFoundError, DuplicateKeyError, TransientError
)
from nota.models import (
    Setting, TRANSACTION_COUNTER_KEY, Customer, Transaction, TransactionItem, TransactionStatus
)
from nota.services.cache_service import invalidate_reports
from nota.services.cart_service import TransactionItemDraft

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = 'RJA/APT/'
DEFAULT_SEED = '2504040159'
DEFAULT_MAX_ATTEMPTS = 5


def next_counter_value(current: str) -> str:
    """Increment a decimal counter string, keeping its digit width."""
    current = (current or '').strip()
    if not current.isdigit():
        raise ValidationError(f'Nilai counter transaksi tidak valid: {current!r}')
    return str(int(current) + 1).zfill(len(current))


class TransactionSequencer:
    """Allocates RJA/APT/<counter> numbers and commits notas."""

    def __init__(self, prefix: str = DEFAULT_PREFIX, seed: str = DEFAULT_SEED,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.prefix = prefix
        self.seed = seed
        self.max_attempts = max_attempts

    @classmethod
    def from_config(cls, config) -> 'TransactionSequencer':
        return cls(
            prefix=config.get('TRANSACTION_NUMBER_PREFIX', DEFAULT_PREFIX),
            seed=config.get('TRANSACTION_COUNTER_SEED', DEFAULT_SEED),
            max_attempts=config.get('SEQUENCE_MAX_ATTEMPTS', DEFAULT_MAX_ATTEMPTS),
        )

    def format_number(self, counter: str) -> str:
        return f"{self.prefix}{counter}"

    # -----------------------------------------------------
    # Counter
    # -----------------------------------------------------

    def _read_counter(self, session: Session) -> Optional[str]:
        setting = session.query(Setting).filter(
            Setting.key == TRANSACTION_COUNTER_KEY
        ).populate_existing().first()
        return setting.value if setting else None

    def _ensure_counter(self, session: Session) -> str:
        """Current counter value, creating the row from the seed if missing."""
        current = self._read_counter(session)
        if current is not None:
            return current
        try:
            session.add(Setting(key=TRANSACTION_COUNTER_KEY, value=self.seed))
            session.commit()
            logger.info(f"[SEQUENCE] counter seeded with {self.seed}")
        except IntegrityError:
            # Another session created it first
            session.rollback()
        return self._read_counter(session)

    def preview(self, session: Session) -> str:
        """Number the next commit would get. Read-only; the counter is not touched."""
        current = self._read_counter(session)
        return self.format_number(current if current is not None else self.seed)

    def allocate(self, session: Session) -> str:
        """
        Claim the next number: compare-and-swap the counter from the value
        just read to its successor, retrying on contention. The increment is
        committed before returning.
        """
        try:
            for attempt in range(1, self.max_attempts + 1):
                current = self._ensure_counter(session)
                successor = next_counter_value(current)

                updated = session.query(Setting).filter(
                    Setting.key == TRANSACTION_COUNTER_KEY,
                    Setting.value == current
                ).update({
                    Setting.value: successor,
                    Setting.updated_at: datetime.now(),
                }, synchronize_session=False)

                if updated == 1:
                    session.commit()
                    return self.format_number(current)

                session.rollback()
                sequence_conflicts_total.labels(reason='counter').inc()
                logger.warning(f"[SEQUENCE] counter moved past {current} (attempt {attempt})")

            raise TransientError('Nomor transaksi sedang dipakai bersamaan, coba lagi')
        except NotaError:
            session.rollback()
            raise
        except OperationalError as e:
            session.rollback()
            logger.error(f"[SEQUENCE] allocation failed: {e}")
            raise TransientError() from e

    # -----------------------------------------------------
    # Commit
    # -----------------------------------------------------

    def commit(self, session: Session, items: List[TransactionItemDraft], customer_id: int,
               actor_id: str, notes: Optional[str] = None,
               payment_terms_days: Optional[int] = None) -> Transaction:
        """
        Persist a nota and its items in one database transaction.

        A number already taken (unique violation on the header) triggers a
        fresh allocation, up to ``max_attempts`` times. Any failure while
        writing items rolls back the header with them.
        """
        if not items:
            raise ValidationError('Keranjang kosong')
        if not actor_id:
            raise ValidationError('Pengguna tidak dikenal')
        if payment_terms_days not in (None, ''):
            try:
                payment_terms_days = int(payment_terms_days)
            except (TypeError, ValueError):
                raise ValidationError('Tempo pembayaran harus berupa angka')
            if payment_terms_days < 0:
                raise ValidationError('Tempo pembayaran tidak boleh negatif')
        else:
            payment_terms_days = None

        customer = session.query(Customer).filter(Customer.id == customer_id).first() if customer_id else None
        if not customer:
            raise ValidationError('Silakan pilih customer')
        customer_name, customer_address = customer.name, customer.address or ''

        total = sum((item.subtotal for item in items), Decimal('0'))

        for attempt in range(1, self.max_attempts + 1):
            number = self.allocate(session)
            try:
                transaction = Transaction(
                    transaction_number=number,
                    customer_id=customer_id,
                    customer_name=customer_name,
                    customer_address=customer_address,
                    total_amount=total,
                    notes=notes,
                    payment_terms_days=payment_terms_days,
                    created_by=str(actor_id),
                    status=TransactionStatus.COMPLETED.value,
                )
                session.add(transaction)
                session.flush()
            except IntegrityError:
                session.rollback()
                sequence_conflicts_total.labels(reason='duplicate_number').inc()
                logger.warning(f"[SEQUENCE] {number} already exists, allocating again (attempt {attempt})")
                continue
            except OperationalError as e:
                session.rollback()
                raise TransientError() from e

            try:
                for item in items:
                    session.add(self._build_item(transaction.id, item))
                session.flush()
                session.commit()
            except OperationalError as e:
                session.rollback()
                logger.error(f"[SEQUENCE] {number} items failed, nothing written: {e}")
                raise TransientError() from e
            except Exception as e:
                session.rollback()
                logger.error(f"[SEQUENCE] {number} items failed, nothing written: {e}")
                raise

            transactions_committed_total.inc()
            invalidate_reports()
            logger.info(f"[SEQUENCE] committed {number} ({len(items)} items, total={total}) by {actor_id}")
            return transaction

        raise DuplicateKeyError('Nomor transaksi sudah digunakan')

    @staticmethod
    def _build_item(transaction_id: int, item: TransactionItemDraft) -> TransactionItem:
        return TransactionItem(
            transaction_id=transaction_id,
            product_id=item.product_id,
            product_name=item.product_name,
            unit=item.unit,
            quantity=item.quantity,
            unit_price=item.unit_price,
            subtotal=item.subtotal,
            discount_amount=item.discount_amount,
            discount_percent=item.discount_percent,
            discount1=item.discount1,
            discount2=item.discount2,
        )
