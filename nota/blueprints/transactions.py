"""Transactions blueprint - nota numbering, commit and history (JSON)."""
import logging

from flask import Blueprint, request, jsonify, current_app

from nota.database import get_session
from nota.blueprints.cart import get_cart, save_cart
from nota.blueprints.catalog import request_data
from nota.exceptions import ValidationError
from nota.middleware import require_actor, current_context
from nota.models import Transaction
from nota.services import transaction_service
from nota.services.transaction_sequencer import TransactionSequencer
from nota.utils.formatters import rupiah, datetime_id, discount_label

logger = logging.getLogger(__name__)

transactions_bp = Blueprint('transactions', __name__, url_prefix='/transactions')


def transaction_to_dict(transaction: Transaction, with_items: bool = True) -> dict:
    result = {
        'id': transaction.id,
        'transaction_number': transaction.transaction_number,
        'customer_id': transaction.customer_id,
        'customer_name': transaction.customer_name,
        'customer_address': transaction.customer_address,
        'total_amount': str(transaction.total_amount),
        'total_display': rupiah(transaction.total_amount),
        'notes': transaction.notes,
        'payment_terms_days': transaction.payment_terms_days,
        'created_by': transaction.created_by,
        'status': transaction.status,
        'created_at': transaction.created_at.isoformat() if transaction.created_at else None,
        'created_at_display': datetime_id(transaction.created_at),
    }
    if with_items:
        result['items'] = [
            {
                'id': item.id,
                'product_id': item.product_id,
                'product_name': item.product_name,
                'unit': item.unit,
                'quantity': item.quantity,
                'unit_price': str(item.unit_price),
                'subtotal': str(item.subtotal),
                'discount_amount': str(item.discount_amount),
                'discount_percent': str(item.discount_percent),
                'discount_details': {
                    key: str(value) for key, value in item.discount_details.items()
                } if item.discount_details else None,
                'discount_label': discount_label([item.discount1, item.discount2]),
                'unit_price_display': rupiah(item.unit_price),
                'subtotal_display': rupiah(item.subtotal),
            }
            for item in transaction.items
        ]
    return result


def _sequencer() -> TransactionSequencer:
    return TransactionSequencer.from_config(current_app.config)


@transactions_bp.route('/next-number', methods=['GET'])
def next_number():
    """Number the next nota would receive (informational, not reserved)."""
    return jsonify({'transaction_number': _sequencer().preview(get_session())})


@transactions_bp.route('', methods=['POST'])
@require_actor
def commit_transaction():
    """
    Turn the cart into a committed nota.

    Pricing is refreshed from the database first so the stored prices match
    the resolver. On success the cart is emptied without releasing stock.
    """
    db_session = get_session()
    data = request_data()

    cart = get_cart(db_session)
    if cart.is_empty():
        raise ValidationError('Keranjang kosong')

    dropped = cart.refresh()
    if dropped:
        save_cart(cart)
        raise ValidationError(
            'Beberapa produk di keranjang sudah dihapus, periksa kembali keranjang',
            payload={'removed': [line.display_name for line in dropped]}
        )

    customer_id = data.get('customer_id')
    try:
        customer_id = int(customer_id) if customer_id not in (None, '') else None
    except (TypeError, ValueError):
        raise ValidationError('Silakan pilih customer')

    transaction = _sequencer().commit(
        db_session,
        cart.to_transaction_items(),
        customer_id=customer_id,
        actor_id=current_context().actor_id,
        notes=(data.get('notes') or '').strip() or None,
        payment_terms_days=data.get('payment_terms_days'),
    )

    cart.consume()
    save_cart(cart)

    return jsonify({
        'success': True,
        'message': f'Transaksi {transaction.transaction_number} berhasil disimpan',
        'transaction': transaction_to_dict(transaction),
    }), 201


@transactions_bp.route('', methods=['GET'])
def list_transactions():
    search = request.args.get('search', '')
    try:
        limit = min(int(request.args.get('limit', 100)), 500)
    except (TypeError, ValueError):
        limit = 100
    transactions = transaction_service.list_transactions(get_session(), search=search, limit=limit)
    return jsonify({'transactions': [transaction_to_dict(t, with_items=False) for t in transactions]})


@transactions_bp.route('/<int:transaction_id>', methods=['GET'])
def transaction_detail(transaction_id: int):
    transaction = transaction_service.get_transaction(get_session(), transaction_id)
    return jsonify({'transaction': transaction_to_dict(transaction)})


@transactions_bp.route('/<int:transaction_id>', methods=['DELETE'])
@require_actor
def delete_transaction(transaction_id: int):
    """Delete a nota; ?restock=1 returns the sold quantities to stock."""
    restock = str(request.args.get('restock', '0')).lower() in ('1', 'true', 'yes')
    result = transaction_service.delete_transaction(get_session(), transaction_id, restock=restock)
    logger.info(f"[TRANSACTION] {result['transaction_number']} deleted by {current_context().actor_id}")
    return jsonify(result)
