"""Cart aggregation - checkout lines that hold stock reservations."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from nota.exceptions import ValidationError, NotFoundError
from nota.models import Product
from nota.services.discount_resolver import TierRule, PriceResolution, resolve_price, to_decimal
from nota.services.stock_ledger import StockLedger
from nota.services.unit_catalog import stock_unit_key

logger = logging.getLogger(__name__)


def line_key(product_id: int, unit: str) -> str:
    """Cart key: at most one line per (product, unit)."""
    return f"{int(product_id)}:{stock_unit_key(unit)}"


@dataclass(frozen=True)
class ProductSnapshot:
    """Pricing and stock view of a product taken right after a reservation."""
    id: int
    name: str
    sku: str
    base_price: Decimal
    price: Decimal
    tiers: Tuple[TierRule, ...] = ()
    stock: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_product(cls, product: Product) -> 'ProductSnapshot':
        return cls(
            id=product.id,
            name=product.name,
            sku=product.sku,
            base_price=to_decimal(product.base_price, Decimal('0')),
            price=to_decimal(product.price, Decimal('0')),
            tiers=tuple(TierRule.from_tier(t) for t in product.discount_tiers),
            stock={e.unit: e.quantity for e in product.stock_entries},
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'ProductSnapshot':
        return cls(
            id=int(data['id']),
            name=data['name'],
            sku=data.get('sku', ''),
            base_price=to_decimal(data.get('base_price'), Decimal('0')),
            price=to_decimal(data.get('price'), Decimal('0')),
            tiers=tuple(TierRule.from_dict(t) for t in data.get('tiers', [])),
            stock={unit: int(qty) for unit, qty in (data.get('stock') or {}).items()},
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'sku': self.sku,
            'base_price': str(self.base_price),
            'price': str(self.price),
            'tiers': [t.to_dict() for t in self.tiers],
            'stock': dict(self.stock),
        }


@dataclass
class CartLine:
    """One (product, unit) reservation."""
    product: ProductSnapshot
    unit: str
    quantity: int

    @property
    def key(self) -> str:
        return line_key(self.product.id, self.unit)

    def resolve(self) -> PriceResolution:
        return resolve_price(self.product.base_price, self.product.price, self.product.tiers,
                             self.quantity, self.unit)

    @property
    def display_name(self) -> str:
        return f"{self.product.name} ({self.quantity} {self.unit})"

    def to_dict(self) -> dict:
        return {'unit': self.unit, 'qty': self.quantity, 'product': self.product.to_dict()}


@dataclass(frozen=True)
class TransactionItemDraft:
    """Priced line ready to be written as a TransactionItem."""
    product_id: int
    product_name: str
    unit: str
    quantity: int
    base_price: Decimal
    unit_price: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    discount_percent: Decimal
    discount1: Optional[Decimal] = None
    discount2: Optional[Decimal] = None

    @property
    def discount_details(self) -> Optional[dict]:
        if self.discount1 is None:
            return None
        return {'discount1': self.discount1, 'discount2': self.discount2 or Decimal('0')}


class CartAggregator:
    """
    In-memory cart for one checkout session.

    Adding a line reserves stock through the StockLedger before the line is
    recorded; removing it releases the reservation. Prices always come from
    ``resolve_price`` so the cart, the nota and the calculator agree.
    """

    def __init__(self, session: Session, lines: Optional[List[CartLine]] = None):
        self.session = session
        self._lines: Dict[str, CartLine] = {}
        for line in lines or []:
            self._lines[line.key] = line

    # -----------------------------------------------------
    # Serialization (Flask session payload)
    # -----------------------------------------------------

    @classmethod
    def from_dict(cls, session: Session, data: Optional[dict]) -> 'CartAggregator':
        lines = []
        for item in ((data or {}).get('items') or {}).values():
            lines.append(CartLine(
                product=ProductSnapshot.from_dict(item['product']),
                unit=item['unit'],
                quantity=int(item['qty']),
            ))
        return cls(session, lines)

    def to_dict(self) -> dict:
        return {'items': {key: line.to_dict() for key, line in self._lines.items()}}

    # -----------------------------------------------------
    # Queries
    # -----------------------------------------------------

    def __len__(self) -> int:
        return len(self._lines)

    def is_empty(self) -> bool:
        return not self._lines

    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def get_line(self, product_id: int, unit: str) -> Optional[CartLine]:
        return self._lines.get(line_key(product_id, unit))

    def total(self) -> Decimal:
        """Sum of discounted unit price x quantity over every line."""
        return sum((line.resolve().subtotal(line.quantity) for line in self._lines.values()), Decimal('0'))

    def to_transaction_items(self) -> List[TransactionItemDraft]:
        drafts = []
        for line in self._lines.values():
            resolution = line.resolve()
            discounts = resolution.applied_discounts
            drafts.append(TransactionItemDraft(
                product_id=line.product.id,
                product_name=line.display_name,
                unit=line.unit,
                quantity=line.quantity,
                base_price=resolution.base_price,
                unit_price=resolution.unit_price,
                subtotal=resolution.subtotal(line.quantity),
                discount_amount=resolution.discount_amount,
                discount_percent=resolution.discount_percent,
                discount1=discounts[0] if discounts else None,
                discount2=discounts[1] if len(discounts) > 1 else (Decimal('0') if discounts else None),
            ))
        return drafts

    # -----------------------------------------------------
    # Mutations
    # -----------------------------------------------------

    def _load_product(self, product_id: int) -> Product:
        product = self.session.query(Product).filter(Product.id == product_id).populate_existing().first()
        if not product:
            raise NotFoundError(f'Produk #{product_id} tidak ditemukan')
        return product

    def _snapshot(self, product_id: int) -> ProductSnapshot:
        return ProductSnapshot.from_product(self._load_product(product_id))

    def add_line(self, product_id: int, unit: str, qty) -> CartLine:
        """Reserve ``qty`` of ``unit`` and merge it into the cart."""
        try:
            qty = int(qty)
        except (TypeError, ValueError):
            raise ValidationError('Jumlah harus berupa angka')
        if qty < 1:
            raise ValidationError('Jumlah harus lebih dari 0')
        unit = stock_unit_key(unit)
        if not unit:
            raise ValidationError('Pilih unit terlebih dahulu')

        product = self._load_product(product_id)
        StockLedger(self.session, product.id).reserve(unit, qty)

        snapshot = self._snapshot(product_id)
        line = self._lines.get(line_key(product_id, unit))
        if line:
            line.quantity += qty
            line.product = snapshot
        else:
            line = CartLine(product=snapshot, unit=unit, quantity=qty)
            self._lines[line.key] = line

        self._sync_snapshots(snapshot)
        logger.info(f"[CART] + {line.display_name}")
        return line

    def update_quantity(self, product_id: int, unit: str, new_qty) -> Optional[CartLine]:
        """Move a line to ``new_qty``; below 1 removes it. Returns the line or None."""
        line = self.get_line(product_id, unit)
        if line is None:
            raise NotFoundError('Produk tidak ada di keranjang')

        try:
            new_qty = int(new_qty)
        except (TypeError, ValueError):
            raise ValidationError('Jumlah harus berupa angka')
        if new_qty < 1:
            self.remove_line(product_id, unit)
            return None

        StockLedger(self.session, line.product.id).adjust(unit, new_qty - line.quantity)
        line.quantity = new_qty
        line.product = self._snapshot(product_id)
        self._sync_snapshots(line.product)
        return line

    def remove_line(self, product_id: int, unit: str) -> None:
        """Release the line's reservation and drop it."""
        line = self.get_line(product_id, unit)
        if line is None:
            return
        StockLedger(self.session, line.product.id).release(line.unit, line.quantity)
        del self._lines[line.key]
        logger.info(f"[CART] - {line.display_name}")

        if any(l.product.id == line.product.id for l in self._lines.values()):
            snapshot = self._current_snapshot(line.product.id)
            if snapshot is not None:
                self._sync_snapshots(snapshot)

    def clear(self) -> None:
        """Abandon the checkout: every reservation goes back to stock."""
        for line in list(self._lines.values()):
            self.remove_line(line.product.id, line.unit)

    def consume(self) -> None:
        """Forget every line without releasing (stock sold on commit)."""
        self._lines.clear()

    def refresh(self) -> List[CartLine]:
        """
        Reload pricing snapshots from the database for every product in the cart.

        Lines whose product has been deleted are dropped (their stock went
        with the product) and returned so the caller can tell the cashier.
        """
        dropped = []
        for product_id in {line.product.id for line in self._lines.values()}:
            snapshot = self._current_snapshot(product_id)
            if snapshot is not None:
                self._sync_snapshots(snapshot)
                continue
            for line in [l for l in self._lines.values() if l.product.id == product_id]:
                del self._lines[line.key]
                dropped.append(line)
                logger.warning(f"[CART] dropped {line.display_name}: product {product_id} no longer exists")
        return dropped

    def _current_snapshot(self, product_id: int) -> Optional[ProductSnapshot]:
        product = self.session.query(Product).filter(Product.id == product_id).populate_existing().first()
        return ProductSnapshot.from_product(product) if product else None

    def _sync_snapshots(self, snapshot: ProductSnapshot) -> None:
        for line in self._lines.values():
            if line.product.id == snapshot.id:
                line.product = snapshot
