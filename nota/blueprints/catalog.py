"""Catalog blueprint - products, units, stock entries and discount tiers (JSON)."""
import logging

from flask import Blueprint, request, jsonify, current_app

from nota.database import get_session
from nota.exceptions import ValidationError
from nota.middleware import require_actor
from nota.models import Product
from nota.services import catalog_service
from nota.services.discount_resolver import effective_base_price
from nota.services.stock_ledger import StockLedger
from nota.services.unit_catalog import UnitCatalog
from nota.utils.formatters import rupiah, stock_summary

logger = logging.getLogger(__name__)

catalog_bp = Blueprint('catalog', __name__, url_prefix='/catalog')


def request_data() -> dict:
    """JSON body, falling back to form fields."""
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    return data


def _flag(value) -> bool:
    return str(value).lower() in ('1', 'true', 'yes', 'on')


def tier_to_dict(tier) -> dict:
    return {
        'id': tier.id,
        'min_quantity': tier.min_quantity,
        'discount': str(tier.discount),
        'discount2': str(tier.discount2) if tier.discount2 is not None else None,
        'unit': tier.unit,
        'is_exact': bool(tier.is_exact),
    }


def product_to_dict(product: Product) -> dict:
    return {
        'id': product.id,
        'name': product.name,
        'category': product.category,
        'sku': product.sku,
        'description': product.description,
        'base_price': str(product.base_price),
        'price': str(product.price),
        'purchase_price': str(product.purchase_price) if product.purchase_price is not None else '0',
        'price_display': rupiah(effective_base_price(product.base_price, product.price)),
        'units': UnitCatalog.for_product(product).to_list(),
        'stock': [
            {'unit': e.unit, 'quantity': e.quantity, 'version': e.version}
            for e in product.stock_entries
        ],
        'stock_display': stock_summary(product.stock_entries),
        'discount_tiers': [tier_to_dict(t) for t in product.discount_tiers],
    }


# -----------------------------------------------------
# Products
# -----------------------------------------------------

@catalog_bp.route('/products', methods=['GET'])
def list_products():
    session = get_session()
    products = catalog_service.list_products(
        session,
        search=request.args.get('search', ''),
        category=request.args.get('category') or None,
    )
    return jsonify({'products': [product_to_dict(p) for p in products]})


@catalog_bp.route('/products', methods=['POST'])
@require_actor
def create_product():
    session = get_session()
    product = catalog_service.create_product(session, request_data())
    return jsonify({
        'success': True,
        'message': f'Produk "{product.name}" berhasil ditambahkan',
        'product': product_to_dict(product),
    }), 201


@catalog_bp.route('/products/<int:product_id>', methods=['GET'])
def product_detail(product_id: int):
    session = get_session()
    return jsonify({'product': product_to_dict(catalog_service.get_product(session, product_id))})


@catalog_bp.route('/products/<int:product_id>', methods=['PUT'])
@require_actor
def update_product(product_id: int):
    session = get_session()
    product = catalog_service.update_product(session, product_id, request_data())
    return jsonify({
        'success': True,
        'message': f'Produk "{product.name}" berhasil diperbarui',
        'product': product_to_dict(product),
    })


@catalog_bp.route('/products/<int:product_id>', methods=['DELETE'])
@require_actor
def delete_product(product_id: int):
    session = get_session()
    name = catalog_service.delete_product(session, product_id)
    return jsonify({'success': True, 'message': f'Produk "{name}" berhasil dihapus'})


# -----------------------------------------------------
# Units
# -----------------------------------------------------

@catalog_bp.route('/products/<int:product_id>/units', methods=['POST'])
@require_actor
def add_unit(product_id: int):
    session = get_session()
    data = request_data()
    catalog_service.add_unit(session, product_id, data.get('name'), data.get('quantity', 1))
    return jsonify({'success': True, 'product': product_to_dict(catalog_service.get_product(session, product_id))}), 201


@catalog_bp.route('/products/<int:product_id>/units/<string:name>', methods=['DELETE'])
@require_actor
def remove_unit(product_id: int, name: str):
    session = get_session()
    catalog_service.remove_unit(session, product_id, name)
    return jsonify({'success': True, 'product': product_to_dict(catalog_service.get_product(session, product_id))})


# -----------------------------------------------------
# Stock entries
# -----------------------------------------------------

@catalog_bp.route('/products/<int:product_id>/stock', methods=['POST'])
@require_actor
def add_stock_entry(product_id: int):
    session = get_session()
    data = request_data()
    entry = StockLedger(session, product_id).add_entry(data.get('unit'), data.get('quantity', 0))
    return jsonify({'success': True, 'unit': entry.unit, 'quantity': entry.quantity}), 201


@catalog_bp.route('/products/<int:product_id>/stock/<string:unit>', methods=['PUT'])
@require_actor
def set_stock(product_id: int, unit: str):
    """Operator stock edit; send the version you read to detect concurrent edits."""
    session = get_session()
    data = request_data()
    version = data.get('version')
    if version not in (None, ''):
        try:
            version = int(version)
        except (TypeError, ValueError):
            raise ValidationError('Versi stok tidak valid')
    else:
        version = None

    entry = StockLedger(
        session, product_id,
        max_attempts=int(current_app.config.get('STOCK_MAX_ATTEMPTS', 5))
    ).set_quantity(unit, data.get('quantity'), expected_version=version)
    return jsonify({'success': True, 'unit': entry.unit, 'quantity': entry.quantity, 'version': entry.version})


@catalog_bp.route('/products/<int:product_id>/stock/<string:unit>', methods=['DELETE'])
@require_actor
def remove_stock_entry(product_id: int, unit: str):
    session = get_session()
    removed = StockLedger(session, product_id).remove_entry(
        unit, cascade_tiers=_flag(request.args.get('cascade_tiers', '0'))
    )
    return jsonify({'success': True, 'removed_tiers': removed})


# -----------------------------------------------------
# Discount tiers
# -----------------------------------------------------

@catalog_bp.route('/products/<int:product_id>/tiers', methods=['POST'])
@require_actor
def add_tier(product_id: int):
    session = get_session()
    data = request_data()
    tier = catalog_service.add_discount_tier(
        session, product_id,
        min_quantity=data.get('min_quantity'),
        discount=data.get('discount'),
        discount2=data.get('discount2') or None,
        unit=data.get('unit'),
        is_exact=_flag(data.get('is_exact', False)),
    )
    return jsonify({'success': True, 'tier': tier_to_dict(tier)}), 201


@catalog_bp.route('/products/<int:product_id>/tiers/<int:tier_id>', methods=['DELETE'])
@require_actor
def remove_tier(product_id: int, tier_id: int):
    session = get_session()
    catalog_service.remove_discount_tier(session, product_id, tier_id)
    return jsonify({'success': True})


# -----------------------------------------------------
# Pricing
# -----------------------------------------------------

@catalog_bp.route('/products/<int:product_id>/price', methods=['GET'])
def product_price(product_id: int):
    session = get_session()
    quantity = request.args.get('qty', 1)
    unit = request.args.get('unit') or None
    resolution = catalog_service.price_for(session, product_id, quantity, unit)
    result = resolution.to_dict()
    result['quantity'] = int(quantity)
    result['unit'] = unit
    result['subtotal'] = str(resolution.subtotal(int(quantity)))
    result['unit_price_display'] = rupiah(resolution.unit_price)
    return jsonify(result)


@catalog_bp.route('/products/<int:product_id>/discount-schedule', methods=['GET'])
def discount_schedule(product_id: int):
    session = get_session()
    rows = catalog_service.schedule_for(session, product_id)
    return jsonify({'schedule': [
        {
            'quantity': row['quantity'],
            'unit': row['unit'],
            'is_exact': row['is_exact'],
            'discounts': [str(d) for d in row['discounts']],
            'price_per_unit': str(row['price_per_unit']),
            'total': str(row['total']),
            'savings': str(row['savings']),
            'price_per_unit_display': rupiah(row['price_per_unit']),
            'total_display': rupiah(row['total']),
            'savings_display': rupiah(row['savings']),
        }
        for row in rows
    ]})
