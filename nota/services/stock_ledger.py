"""
Stock ledger - per-unit stock of one product.

Reservations are a single guarded UPDATE (quantity >= :qty) so two
concurrent reservations can never both succeed against the same units.
Operator edits that overwrite a quantity use the row version instead.
"""
import logging
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from nota.blueprints.metrics import stock_mutations_total
from nota.exceptions import (
    NotaError, ValidationError, NotFoundError, InsufficientStockError,
    ConcurrencyConflictError, TransientError
)
from nota.models import Product, ProductUnit, StockEntry, DiscountTier
from nota.services.unit_catalog import stock_unit_key

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


def _positive_int(value, label: str) -> int:
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{label} harus berupa angka')
    if value < 1:
        raise ValidationError(f'{label} harus lebih dari 0')
    return value


class StockLedger:
    """
    Reserve/release/adjust stock for one product.

    With ``autocommit`` (default) each successful mutation is committed at
    once so other sessions observe it; on failure the session is rolled back.
    """

    def __init__(self, session: Session, product_id: int, autocommit: bool = True,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.session = session
        self.product_id = product_id
        self.autocommit = autocommit
        self.max_attempts = max_attempts

    # -----------------------------------------------------
    # Reads
    # -----------------------------------------------------

    def _product(self) -> Product:
        product = self.session.query(Product).filter(Product.id == self.product_id).first()
        if not product:
            raise NotFoundError(f'Produk #{self.product_id} tidak ditemukan')
        return product

    def _entry(self, unit: str, refresh: bool = False) -> Optional[StockEntry]:
        query = self.session.query(StockEntry).filter(
            StockEntry.product_id == self.product_id,
            StockEntry.unit == stock_unit_key(unit)
        )
        if refresh:
            query = query.populate_existing()
        return query.first()

    def available(self, unit: str) -> int:
        """Current quantity for ``unit``; ValidationError if not stocked."""
        entry = self._entry(unit, refresh=True)
        if entry is None:
            raise ValidationError(f'Unit "{unit}" tidak ditemukan')
        return entry.quantity

    def snapshot(self) -> Dict[str, int]:
        """{unit: quantity} for every stocked unit."""
        entries = self.session.query(StockEntry).filter(
            StockEntry.product_id == self.product_id
        ).order_by(StockEntry.id).populate_existing().all()
        return {entry.unit: entry.quantity for entry in entries}

    # -----------------------------------------------------
    # Mutations
    # -----------------------------------------------------

    def _finish(self, operation: str):
        if self.autocommit:
            self.session.commit()
        else:
            self.session.flush()
        stock_mutations_total.labels(operation=operation, outcome='ok').inc()

    def _fail(self, operation: str, error: Exception):
        self.session.rollback()
        stock_mutations_total.labels(operation=operation, outcome=type(error).__name__).inc()
        if isinstance(error, NotaError):
            raise error
        if isinstance(error, OperationalError):
            logger.error(f"[STOCK] {operation} failed for product {self.product_id}: {error}")
            raise TransientError() from error
        raise error

    def reserve(self, unit: str, qty) -> int:
        """
        Take ``qty`` of ``unit`` out of available stock.

        Returns the remaining quantity. InsufficientStockError when the
        entry holds less than ``qty``; nothing is decremented in that case.
        """
        try:
            unit = stock_unit_key(unit)
            qty = _positive_int(qty, 'Jumlah')
            updated = self.session.query(StockEntry).filter(
                StockEntry.product_id == self.product_id,
                StockEntry.unit == unit,
                StockEntry.quantity >= qty
            ).update({
                StockEntry.quantity: StockEntry.quantity - qty,
                StockEntry.version: StockEntry.version + 1,
            }, synchronize_session=False)

            if updated == 0:
                product = self._product()
                entry = self._entry(unit, refresh=True)
                if entry is None:
                    raise ValidationError(f'Unit "{unit}" tidak ditemukan untuk {product.name}')
                raise InsufficientStockError(product.name, unit, qty, entry.quantity)

            remaining = self._entry(unit, refresh=True).quantity
            self._finish('reserve')
            logger.info(f"[STOCK] reserve product={self.product_id} unit={unit} qty={qty} remaining={remaining}")
            return remaining
        except Exception as e:
            self._fail('reserve', e)

    def release(self, unit: str, qty) -> int:
        """Return ``qty`` of ``unit`` to stock (inverse of a prior reserve)."""
        try:
            unit = stock_unit_key(unit)
            qty = _positive_int(qty, 'Jumlah')
            updated = self.session.query(StockEntry).filter(
                StockEntry.product_id == self.product_id,
                StockEntry.unit == unit
            ).update({
                StockEntry.quantity: StockEntry.quantity + qty,
                StockEntry.version: StockEntry.version + 1,
            }, synchronize_session=False)

            if updated == 0:
                exists = self.session.query(Product.id).filter(Product.id == self.product_id).first()
                if exists is None:
                    # Product deleted while reserved: nothing left to return to
                    logger.warning(f"[STOCK] release of {qty} {unit} dropped, product {self.product_id} no longer exists")
                    stock_mutations_total.labels(operation='release', outcome='product_gone').inc()
                    return 0

                # Entry removed while reserved: re-create it rather than lose the units
                logger.warning(f"[STOCK] release to missing unit '{unit}' on product {self.product_id}; re-creating entry")
                self.session.add(StockEntry(product_id=self.product_id, unit=unit, quantity=qty))
                self.session.flush()

            remaining = self._entry(unit, refresh=True).quantity
            self._finish('release')
            logger.info(f"[STOCK] release product={self.product_id} unit={unit} qty={qty} remaining={remaining}")
            return remaining
        except Exception as e:
            self._fail('release', e)

    def adjust(self, unit: str, delta: int) -> Optional[int]:
        """Signed change of a reservation: positive reserves more, negative releases."""
        delta = int(delta)
        if delta > 0:
            return self.reserve(unit, delta)
        if delta < 0:
            return self.release(unit, -delta)
        return None

    def set_quantity(self, unit: str, quantity, expected_version: Optional[int] = None) -> StockEntry:
        """
        Operator stock edit: overwrite the quantity of ``unit``.

        Compare-and-swap on the row version. With ``expected_version`` a
        stale caller is rejected outright; without it the current version is
        re-read and the swap retried up to ``max_attempts`` times.
        """
        unit = stock_unit_key(unit)
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError('Jumlah stok harus berupa angka')
        if quantity < 0:
            raise ValidationError('Jumlah stok harus 0 atau lebih')

        try:
            for attempt in range(1, self.max_attempts + 1):
                entry = self._entry(unit, refresh=True)
                if entry is None:
                    raise ValidationError(f'Unit "{unit}" tidak ditemukan')

                version = expected_version if expected_version is not None else entry.version
                updated = self.session.query(StockEntry).filter(
                    StockEntry.id == entry.id,
                    StockEntry.version == version
                ).update({
                    StockEntry.quantity: quantity,
                    StockEntry.version: version + 1,
                }, synchronize_session=False)

                if updated == 1:
                    entry = self._entry(unit, refresh=True)
                    self._finish('set')
                    return entry

                if expected_version is not None:
                    break
                logger.warning(f"[STOCK] version conflict on product={self.product_id} unit={unit} (attempt {attempt})")

            raise ConcurrencyConflictError(
                f'Stok {unit} sedang diubah oleh pengguna lain, muat ulang dan coba lagi'
            )
        except Exception as e:
            self._fail('set', e)

    def add_entry(self, unit: str, quantity) -> StockEntry:
        """Declare a newly stocked unit (case-insensitively unique)."""
        try:
            unit = stock_unit_key(unit)
            if not unit:
                raise ValidationError('Unit stok harus diisi')
            try:
                quantity = int(quantity)
            except (TypeError, ValueError):
                raise ValidationError('Jumlah stok harus berupa angka')
            if quantity < 0:
                raise ValidationError('Jumlah stok harus 0 atau lebih')

            product = self._product()
            if any(e.unit.lower() == unit for e in product.stock_entries):
                raise ValidationError(f'Unit stok "{unit}" sudah ada')

            entry = StockEntry(product_id=product.id, unit=unit, quantity=quantity)
            self.session.add(entry)
            self.session.flush()
            self._finish('add')
            return entry
        except IntegrityError:
            self._fail('add', ValidationError(f'Unit stok "{unit}" sudah ada'))
        except Exception as e:
            self._fail('add', e)

    def remove_entry(self, unit: str, cascade_tiers: bool = False) -> int:
        """
        Stop stocking ``unit``. Also drops the same-named unit declaration.

        Refused while discount tiers reference the unit unless
        ``cascade_tiers`` is set, in which case those tiers are deleted too.
        Returns the number of tiers removed.
        """
        try:
            product = self._product()
            entry = self._entry(unit)
            if entry is None:
                raise NotFoundError(f'Unit stok "{unit}" tidak ditemukan')

            dependent = self.session.query(DiscountTier).filter(
                DiscountTier.product_id == product.id,
                DiscountTier.unit == entry.unit
            ).all()
            if dependent and not cascade_tiers:
                raise ValidationError(
                    f'Unit "{entry.unit}" masih dipakai oleh {len(dependent)} tingkat diskon; '
                    f'hapus diskon tersebut terlebih dahulu',
                    payload={'dependent_tiers': [list(t.key) for t in dependent]}
                )

            for tier in dependent:
                self.session.delete(tier)
            self.session.query(ProductUnit).filter(
                ProductUnit.product_id == product.id,
                func.lower(ProductUnit.name) == entry.unit.lower()
            ).delete(synchronize_session=False)
            self.session.delete(entry)
            self.session.flush()
            self._finish('remove')
            return len(dependent)
        except Exception as e:
            self._fail('remove', e)
