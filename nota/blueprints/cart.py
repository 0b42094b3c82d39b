"""Cart blueprint - checkout lines held in the Flask session (JSON)."""
import logging

from flask import Blueprint, session, jsonify

from nota.database import get_session
from nota.blueprints.catalog import request_data
from nota.exceptions import ValidationError
from nota.middleware import require_actor
from nota.services.cart_service import CartAggregator
from nota.utils.formatters import rupiah, discount_label

logger = logging.getLogger(__name__)

cart_bp = Blueprint('cart', __name__, url_prefix='/cart')

CART_SESSION_KEY = 'cart'


def get_cart(db_session) -> CartAggregator:
    """Rebuild the cart from the Flask session."""
    return CartAggregator.from_dict(db_session, session.get(CART_SESSION_KEY))


def save_cart(cart: CartAggregator) -> None:
    session[CART_SESSION_KEY] = cart.to_dict()
    session.modified = True


def cart_payload(cart: CartAggregator) -> dict:
    lines = []
    for line in cart.lines():
        resolution = line.resolve()
        subtotal = resolution.subtotal(line.quantity)
        lines.append({
            'key': line.key,
            'product_id': line.product.id,
            'name': line.display_name,
            'sku': line.product.sku,
            'unit': line.unit,
            'quantity': line.quantity,
            'base_price': str(resolution.base_price),
            'unit_price': str(resolution.unit_price),
            'subtotal': str(subtotal),
            'discounts': [str(d) for d in resolution.applied_discounts],
            'discount_label': discount_label(resolution.applied_discounts),
            'discount_percent': str(resolution.discount_percent),
            'stock': dict(line.product.stock),
            'unit_price_display': rupiah(resolution.unit_price),
            'subtotal_display': rupiah(subtotal),
        })
    total = cart.total()
    return {
        'items': lines,
        'count': len(lines),
        'total': str(total),
        'total_display': rupiah(total),
    }


def _line_args(data: dict):
    try:
        product_id = int(data.get('product_id'))
    except (TypeError, ValueError):
        raise ValidationError('Produk tidak valid')
    unit = (data.get('unit') or '').strip()
    if not unit:
        raise ValidationError('Pilih unit terlebih dahulu')
    return product_id, unit


@cart_bp.route('', methods=['GET'])
@require_actor
def view_cart():
    db_session = get_session()
    cart = get_cart(db_session)
    dropped = cart.refresh()
    save_cart(cart)

    payload = cart_payload(cart)
    if dropped:
        payload['removed'] = [line.display_name for line in dropped]
    return jsonify(payload)


@cart_bp.route('/lines', methods=['POST'])
@require_actor
def add_line():
    """Reserve stock and add (or merge) a line."""
    db_session = get_session()
    data = request_data()
    product_id, unit = _line_args(data)

    cart = get_cart(db_session)
    line = cart.add_line(product_id, unit, data.get('qty', data.get('quantity', 1)))
    save_cart(cart)

    payload = cart_payload(cart)
    payload['message'] = f'{line.display_name} ditambahkan ke keranjang'
    return jsonify(payload), 201


@cart_bp.route('/lines', methods=['PUT'])
@require_actor
def update_line():
    """Change a line's quantity; zero or less removes it."""
    db_session = get_session()
    data = request_data()
    product_id, unit = _line_args(data)

    cart = get_cart(db_session)
    cart.update_quantity(product_id, unit, data.get('qty', data.get('quantity')))
    save_cart(cart)
    return jsonify(cart_payload(cart))


@cart_bp.route('/lines/<int:product_id>/<string:unit>', methods=['DELETE'])
@require_actor
def remove_line(product_id: int, unit: str):
    db_session = get_session()
    cart = get_cart(db_session)
    cart.remove_line(product_id, unit)
    save_cart(cart)
    return jsonify(cart_payload(cart))


@cart_bp.route('', methods=['DELETE'])
@require_actor
def clear_cart():
    """Abandon the checkout and return every reservation to stock."""
    db_session = get_session()
    cart = get_cart(db_session)
    cart.clear()
    save_cart(cart)
    return jsonify({'success': True, 'message': 'Keranjang dikosongkan', **cart_payload(cart)})
