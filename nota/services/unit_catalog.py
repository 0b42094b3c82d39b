"""Unit catalog - a product's named physical units and their conversion quantities."""

from typing import Dict, Iterable, List, Optional, Tuple

from nota.exceptions import ValidationError

BASE_UNIT = 'buah'
DEFAULT_UNITS: Tuple[Tuple[str, int], ...] = ((BASE_UNIT, 1),)


def normalize_unit_name(name: Optional[str]) -> str:
    """Trim a unit name; comparisons elsewhere are case-insensitive."""
    return (name or '').strip()


def stock_unit_key(name: Optional[str]) -> str:
    """Stored form of a stock entry, tier or cart-line unit: trimmed and lowercase."""
    return normalize_unit_name(name).lower()


class UnitCatalog:
    """
    Ordered mapping of unit name -> quantity of base units it contains.

    Built from ``ProductUnit`` rows or plain ``(name, quantity)`` pairs. Names
    keep the operator's casing but are unique case-insensitively.
    """

    def __init__(self, units: Optional[Iterable] = None):
        self._units: Dict[str, int] = {}
        for unit in units if units is not None else DEFAULT_UNITS:
            if isinstance(unit, tuple):
                name, quantity = unit
            else:
                name, quantity = unit.name, unit.quantity
            self.add(name, quantity)

    @classmethod
    def for_product(cls, product) -> 'UnitCatalog':
        """Catalog declared on a product (falls back to the default catalog)."""
        return cls(product.units or None)

    def _lookup(self, name: str) -> Optional[str]:
        wanted = normalize_unit_name(name).lower()
        for existing in self._units:
            if existing.lower() == wanted:
                return existing
        return None

    def add(self, name: str, quantity) -> None:
        """Declare a unit; rejects blanks, quantity < 1 and duplicates."""
        name = normalize_unit_name(name)
        if not name:
            raise ValidationError('Nama unit harus diisi')
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError('Jumlah per unit harus berupa angka')
        if quantity < 1:
            raise ValidationError('Jumlah per unit harus lebih dari 0')
        if self._lookup(name) is not None:
            raise ValidationError(f'Unit "{name}" sudah ada')
        self._units[name] = quantity

    def remove(self, name: str) -> bool:
        """Drop a unit; returns False when it was not declared."""
        existing = self._lookup(name)
        if existing is None:
            return False
        del self._units[existing]
        return True

    def __contains__(self, name) -> bool:
        return self._lookup(name) is not None

    def __len__(self) -> int:
        return len(self._units)

    def names(self) -> List[str]:
        return list(self._units)

    def quantity_of(self, name: str) -> int:
        """Base units contained in one ``name``."""
        existing = self._lookup(name)
        if existing is None:
            raise ValidationError(f'Unit "{name}" tidak ditemukan')
        return self._units[existing]

    def to_base_quantity(self, name: str, quantity: int) -> int:
        """Convert ``quantity`` of ``name`` into base units (buah)."""
        return self.quantity_of(name) * int(quantity)

    def items(self) -> List[Tuple[str, int]]:
        return list(self._units.items())

    def to_list(self) -> List[Dict]:
        return [{'name': name, 'quantity': quantity} for name, quantity in self._units.items()]
