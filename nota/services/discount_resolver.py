"""
Discount tier resolution.

Single pricing function shared by the cart, transaction commit and the
discount calculator preview. Pure: no session, no side effects.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, List, Optional, Sequence

from nota.exceptions import ValidationError
from nota.services.unit_catalog import stock_unit_key

HUNDRED = Decimal('100')
TWO_PLACES = Decimal('0.01')
TIER_UNITS = ('buah', 'box', 'karton')


def to_decimal(value, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Coerce numbers/strings to Decimal without float artifacts."""
    if value is None or value == '':
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'Nilai angka tidak valid: {value!r}')


@dataclass(frozen=True)
class TierRule:
    """Plain-value discount tier (same attribute names as the ORM model)."""
    min_quantity: int
    discount: Decimal
    unit: str
    is_exact: bool = False
    discount2: Optional[Decimal] = None

    @classmethod
    def from_tier(cls, tier) -> 'TierRule':
        return cls(
            min_quantity=int(tier.min_quantity),
            discount=to_decimal(tier.discount),
            unit=tier.unit,
            is_exact=bool(tier.is_exact),
            discount2=to_decimal(tier.discount2),
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'TierRule':
        return cls(
            min_quantity=int(data['min_quantity']),
            discount=to_decimal(data['discount']),
            unit=data['unit'],
            is_exact=bool(data.get('is_exact', False)),
            discount2=to_decimal(data.get('discount2')),
        )

    def to_dict(self) -> dict:
        return {
            'min_quantity': self.min_quantity,
            'discount': str(self.discount),
            'discount2': str(self.discount2) if self.discount2 is not None else None,
            'unit': self.unit,
            'is_exact': self.is_exact,
        }


@dataclass(frozen=True)
class PriceResolution:
    """Outcome of resolving a (quantity, unit) request against a tier set."""
    base_price: Decimal
    unit_price: Decimal
    applied_discounts: List[Decimal] = field(default_factory=list)
    tier: Optional[TierRule] = None

    @property
    def has_discount(self) -> bool:
        return self.tier is not None

    @property
    def discount_amount(self) -> Decimal:
        return self.base_price - self.unit_price

    @property
    def discount_percent(self) -> Decimal:
        """Total reduction vs. list price, rounded to 2 decimals."""
        if self.base_price <= 0:
            return Decimal('0.00')
        percent = self.discount_amount / self.base_price * HUNDRED
        return percent.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    def subtotal(self, quantity: int) -> Decimal:
        return self.unit_price * quantity

    def to_dict(self) -> dict:
        return {
            'base_price': str(self.base_price),
            'unit_price': str(self.unit_price),
            'applied_discounts': [str(d) for d in self.applied_discounts],
            'discount_amount': str(self.discount_amount),
            'discount_percent': str(self.discount_percent),
            'tier': self.tier.to_dict() if self.tier else None,
        }


def effective_base_price(base_price, price=None) -> Decimal:
    """List price for discounting: base_price, or price when unset/zero."""
    base = to_decimal(base_price, Decimal('0'))
    if not base:
        base = to_decimal(price, Decimal('0'))
    return base


def apply_discounts(base_price: Decimal, discount, discount2=None):
    """
    Apply the first cut, then the second on the already-discounted price.

    Returns (unit_price, applied) where applied lists the percentages in
    application order. Compounding: 1000 at 10% + 10% is 810, not 800.
    """
    price = base_price
    applied = []

    first = to_decimal(discount, Decimal('0'))
    price = price * (1 - first / HUNDRED)
    applied.append(first)

    second = to_decimal(discount2, Decimal('0'))
    if second > 0:
        price = price * (1 - second / HUNDRED)
        applied.append(second)

    return price, applied


def _unit_matches(tier, unit: Optional[str]) -> bool:
    return not unit or stock_unit_key(tier.unit) == stock_unit_key(unit)


def select_tier(tiers: Iterable, quantity: int, unit: Optional[str] = None):
    """
    Pick the winning tier for (quantity, unit), or None.

    An exact tier at exactly ``quantity`` wins outright. Otherwise the
    threshold tier with the largest min_quantity <= quantity.
    """
    tiers = list(tiers or [])

    for tier in tiers:
        if tier.is_exact and int(tier.min_quantity) == quantity and _unit_matches(tier, unit):
            return tier

    best = None
    for tier in tiers:
        if tier.is_exact or not _unit_matches(tier, unit):
            continue
        if int(tier.min_quantity) <= quantity:
            if best is None or int(tier.min_quantity) > int(best.min_quantity):
                best = tier
    return best


def resolve_price(base_price, price, tiers: Iterable, quantity: int, unit: Optional[str] = None) -> PriceResolution:
    """Resolve the effective unit price for ``quantity`` of ``unit``.

    The returned unit price is unrounded; round only when displaying.
    """
    base = effective_base_price(base_price, price)
    tier = select_tier(tiers, int(quantity), unit)
    if tier is None:
        return PriceResolution(base_price=base, unit_price=base)

    unit_price, applied = apply_discounts(base, tier.discount, tier.discount2)
    rule = tier if isinstance(tier, TierRule) else TierRule.from_tier(tier)
    return PriceResolution(base_price=base, unit_price=unit_price, applied_discounts=applied, tier=rule)


def resolve_for_product(product, quantity: int, unit: Optional[str] = None) -> PriceResolution:
    """Convenience wrapper for ORM products."""
    return resolve_price(product.base_price, product.price, product.discount_tiers, quantity, unit)


def discount_schedule(base_price, tiers: Sequence) -> List[dict]:
    """
    Calculator preview: one row per tier, ordered by min_quantity, showing the
    unit price, the total at min_quantity and the savings vs. list price.
    """
    base = to_decimal(base_price, Decimal('0'))
    if base <= 0:
        return []

    rows = []
    for tier in sorted(tiers, key=lambda t: int(t.min_quantity)):
        unit_price, applied = apply_discounts(base, tier.discount, tier.discount2)
        quantity = int(tier.min_quantity)
        total = unit_price * quantity
        rows.append({
            'quantity': quantity,
            'unit': tier.unit,
            'is_exact': bool(tier.is_exact),
            'discounts': applied,
            'price_per_unit': unit_price,
            'total': total,
            'savings': base * quantity - total,
        })
    return rows


def validate_tier(min_quantity, discount, discount2=None, unit=None, is_exact=False) -> TierRule:
    """Range-check a tier definition; returns it as a TierRule draft."""
    unit = stock_unit_key(unit)
    if unit not in TIER_UNITS:
        raise ValidationError('Pilih unit terlebih dahulu (buah, box, atau karton)')

    try:
        min_quantity = int(min_quantity)
    except (TypeError, ValueError):
        raise ValidationError('Jumlah minimum harus berupa angka')
    if min_quantity < 1:
        raise ValidationError('Jumlah minimum harus lebih dari 0')

    discount = to_decimal(discount)
    if discount is None or discount <= 0 or discount > HUNDRED:
        raise ValidationError('Diskon harus antara 0-100%')

    discount2 = to_decimal(discount2)
    if discount2 is not None and (discount2 < 0 or discount2 > HUNDRED):
        raise ValidationError('Diskon 2 harus antara 0-100%')
    if discount2 == 0:
        discount2 = None

    return TierRule(min_quantity=min_quantity, discount=discount, unit=unit,
                    is_exact=bool(is_exact), discount2=discount2)
