"""Catalog maintenance: products, their units, stock entries and discount tiers."""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, selectinload

from nota.exceptions import (
    NotaError, ValidationError, NotFoundError, DuplicateKeyError,
    ReferentialConflictError, TransientError
)
from nota.models import Product, ProductUnit, StockEntry, DiscountTier, TransactionItem
from nota.services.discount_resolver import (
    PriceResolution, resolve_for_product, discount_schedule, validate_tier,
    effective_base_price, to_decimal
)
from nota.services.unit_catalog import UnitCatalog, normalize_unit_name, stock_unit_key

logger = logging.getLogger(__name__)


def _rollback_and_raise(session: Session, error: Exception, context: str):
    session.rollback()
    if isinstance(error, NotaError):
        raise error
    if isinstance(error, OperationalError):
        logger.error(f"[CATALOG] {context}: {error}")
        raise TransientError() from error
    logger.error(f"[CATALOG] {context}: {error}", exc_info=True)
    raise error


def _price(value, label: str, required: bool = True) -> Optional[Decimal]:
    if value in (None, ''):
        if required:
            raise ValidationError(f'{label} harus diisi')
        return None
    amount = to_decimal(str(value).replace(',', '.'))
    if amount is None:
        raise ValidationError(f'{label} tidak valid')
    return amount


def _validate_product_fields(data: dict) -> dict:
    """Normalize the editable product fields; raises ValidationError listing every problem."""
    errors = []
    name = (data.get('name') or '').strip()
    category = (data.get('category') or '').strip()
    sku = (data.get('sku') or '').strip()
    if not name:
        errors.append('Nama produk harus diisi')
    if not category:
        errors.append('Kategori harus diisi')
    if not sku:
        errors.append('SKU harus diisi')

    base_price = price = purchase_price = None
    try:
        base_price = _price(data.get('base_price'), 'Harga dasar')
        if base_price is not None and base_price <= 0:
            errors.append('Harga dasar harus lebih dari 0')
        price = _price(data.get('price'), 'Harga', required=False)
        purchase_price = _price(data.get('purchase_price'), 'Harga beli', required=False)
        if price is not None and price < 0:
            errors.append('Harga tidak boleh negatif')
        if purchase_price is not None and purchase_price < 0:
            errors.append('Harga beli tidak boleh negatif')
    except ValidationError as e:
        errors.append(e.message)

    if errors:
        raise ValidationError(', '.join(errors), payload={'errors': errors})

    return {
        'name': name,
        'category': category,
        'sku': sku,
        'description': (data.get('description') or '').strip() or None,
        'base_price': base_price,
        'price': price if price else base_price,
        'purchase_price': purchase_price or Decimal('0'),
    }


def _validate_stock(rows) -> List[tuple]:
    entries = []
    seen = set()
    for row in rows or []:
        unit = stock_unit_key(row.get('unit'))
        if not unit:
            raise ValidationError('Unit stok harus diisi')
        try:
            quantity = int(row.get('quantity', 0))
        except (TypeError, ValueError):
            raise ValidationError('Jumlah stok harus berupa angka')
        if quantity < 0:
            raise ValidationError('Jumlah stok harus 0 atau lebih')
        if unit in seen:
            raise ValidationError(f'Unit stok "{unit}" sudah ada')
        seen.add(unit)
        entries.append((unit, quantity))
    return entries


def _sku_taken(session: Session, sku: str, exclude_id: Optional[int] = None) -> bool:
    query = session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


# -----------------------------------------------------
# Products
# -----------------------------------------------------

def get_product(session: Session, product_id: int) -> Product:
    product = session.query(Product).options(
        selectinload(Product.units),
        selectinload(Product.stock_entries),
        selectinload(Product.discount_tiers),
    ).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError(f'Produk #{product_id} tidak ditemukan')
    return product


def list_products(session: Session, search: str = '', category: Optional[str] = None) -> List[Product]:
    query = session.query(Product)
    if search:
        term = f'%{search.strip()[:100]}%'
        query = query.filter(or_(Product.name.ilike(term), Product.sku.ilike(term)))
    if category:
        query = query.filter(Product.category == category)
    return query.order_by(Product.name).all()


def create_product(session: Session, data: dict) -> Product:
    """
    Create a product with its unit catalog and initial stock entries.

    ``data['stock']`` is a list of ``{'unit', 'quantity'}`` and must hold at
    least one row. ``data['units']`` (``{'name', 'quantity'}`` rows) defaults
    to the base unit only.
    """
    try:
        fields = _validate_product_fields(data)
        stock = _validate_stock(data.get('stock'))
        if not stock:
            raise ValidationError('Minimal satu unit stok harus diisi')

        unit_rows = data.get('units')
        catalog = UnitCatalog([(u.get('name'), u.get('quantity', 1)) for u in unit_rows] if unit_rows else None)

        if _sku_taken(session, fields['sku']):
            raise DuplicateKeyError(f'SKU "{fields["sku"]}" sudah digunakan')

        product = Product(**fields)
        for name, quantity in catalog.items():
            product.units.append(ProductUnit(name=name, quantity=quantity))
        for unit, quantity in stock:
            product.stock_entries.append(StockEntry(unit=unit, quantity=quantity))

        session.add(product)
        session.flush()
        session.commit()
        logger.info(f"[CATALOG] created product {product.id} sku={product.sku}")
        return product
    except IntegrityError as e:
        session.rollback()
        raise DuplicateKeyError(f'SKU "{(data.get("sku") or "").strip()}" sudah digunakan') from e
    except Exception as e:
        _rollback_and_raise(session, e, 'create_product failed')


def update_product(session: Session, product_id: int, data: dict) -> Product:
    """Update name, category, SKU, description and prices. Stock is edited through the ledger."""
    try:
        product = get_product(session, product_id)
        fields = _validate_product_fields(data)
        if _sku_taken(session, fields['sku'], exclude_id=product.id):
            raise DuplicateKeyError(f'SKU "{fields["sku"]}" sudah digunakan')

        for key, value in fields.items():
            setattr(product, key, value)
        session.flush()
        session.commit()
        logger.info(f"[CATALOG] updated product {product.id}")
        return product
    except IntegrityError as e:
        session.rollback()
        raise DuplicateKeyError(f'SKU "{(data.get("sku") or "").strip()}" sudah digunakan') from e
    except Exception as e:
        _rollback_and_raise(session, e, f'update_product {product_id} failed')


def delete_product(session: Session, product_id: int) -> str:
    """Delete a product and everything it owns; refused once it was sold."""
    try:
        product = get_product(session, product_id)
        name = product.name

        sold = session.query(TransactionItem.id).filter(
            TransactionItem.product_id == product.id
        ).count()
        if sold:
            raise ReferentialConflictError(
                f'Produk "{name}" tidak dapat dihapus karena sudah tercatat di {sold} item transaksi',
                payload={'transaction_items': sold}
            )

        session.delete(product)
        session.commit()
        logger.info(f"[CATALOG] deleted product {product_id}")
        return name
    except IntegrityError as e:
        session.rollback()
        raise ReferentialConflictError('Produk tidak dapat dihapus karena masih direferensikan') from e
    except Exception as e:
        _rollback_and_raise(session, e, f'delete_product {product_id} failed')


# -----------------------------------------------------
# Unit catalog
# -----------------------------------------------------

def add_unit(session: Session, product_id: int, name: str, quantity) -> ProductUnit:
    try:
        product = get_product(session, product_id)
        catalog = UnitCatalog.for_product(product)
        catalog.add(name, quantity)
        unit = ProductUnit(product_id=product.id, name=normalize_unit_name(name),
                           quantity=catalog.quantity_of(name))
        session.add(unit)
        session.commit()
        return unit
    except IntegrityError as e:
        session.rollback()
        raise ValidationError(f'Unit "{name}" sudah ada') from e
    except Exception as e:
        _rollback_and_raise(session, e, f'add_unit {product_id} failed')


def remove_unit(session: Session, product_id: int, name: str) -> None:
    try:
        product = get_product(session, product_id)
        wanted = normalize_unit_name(name).lower()
        unit = next((u for u in product.units if u.name.lower() == wanted), None)
        if unit is None:
            raise NotFoundError(f'Unit "{name}" tidak ditemukan')
        session.delete(unit)
        session.commit()
    except Exception as e:
        _rollback_and_raise(session, e, f'remove_unit {product_id} failed')


# -----------------------------------------------------
# Discount tiers
# -----------------------------------------------------

def add_discount_tier(session: Session, product_id: int, min_quantity, discount,
                      discount2=None, unit=None, is_exact=False) -> DiscountTier:
    """Validate and attach a tier; the unit must be stocked for the product."""
    try:
        product = get_product(session, product_id)
        rule = validate_tier(min_quantity, discount, discount2, unit, is_exact)

        if product.stock_for(rule.unit) is None:
            raise ValidationError(f'Unit "{rule.unit}" belum memiliki stok untuk {product.name}')

        key = (rule.min_quantity, rule.unit, rule.is_exact)
        if any(tier.key == key for tier in product.discount_tiers):
            raise DuplicateKeyError('Diskon untuk jumlah dan unit tersebut sudah ada',
                                    payload={'key': list(key)})

        tier = DiscountTier(
            product_id=product.id,
            min_quantity=rule.min_quantity,
            discount=rule.discount,
            discount2=rule.discount2,
            unit=rule.unit,
            is_exact=rule.is_exact,
        )
        session.add(tier)
        session.flush()
        session.commit()
        logger.info(f"[CATALOG] tier {tier!r} added")
        return tier
    except IntegrityError as e:
        session.rollback()
        raise DuplicateKeyError('Diskon untuk jumlah dan unit tersebut sudah ada') from e
    except Exception as e:
        _rollback_and_raise(session, e, f'add_discount_tier {product_id} failed')


def remove_discount_tier(session: Session, product_id: int, tier_id: int) -> None:
    try:
        tier = session.query(DiscountTier).filter(
            DiscountTier.id == tier_id,
            DiscountTier.product_id == product_id
        ).first()
        if not tier:
            raise NotFoundError('Diskon tidak ditemukan')
        session.delete(tier)
        session.commit()
    except Exception as e:
        _rollback_and_raise(session, e, f'remove_discount_tier {tier_id} failed')


# -----------------------------------------------------
# Pricing
# -----------------------------------------------------

def price_for(session: Session, product_id: int, quantity, unit: Optional[str] = None) -> PriceResolution:
    """Effective unit price for ``quantity`` of ``unit``."""
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError('Jumlah harus berupa angka')
    if quantity < 1:
        raise ValidationError('Jumlah harus lebih dari 0')
    return resolve_for_product(get_product(session, product_id), quantity, unit)


def schedule_for(session: Session, product_id: int) -> List[dict]:
    """Discount calculator rows for every tier of the product."""
    product = get_product(session, product_id)
    base = effective_base_price(product.base_price, product.price)
    return discount_schedule(base, product.discount_tiers)
