"""Committed transactions: history lookup and deletion."""
import logging
from typing import List

from sqlalchemy import or_, cast, String
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, joinedload

from nota.exceptions import NotaError, NotFoundError, TransientError
from nota.models import Transaction, TransactionItem
from nota.services.cache_service import invalidate_reports
from nota.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)


def get_transaction(session: Session, transaction_id: int) -> Transaction:
    """Transaction with its items, or NotFoundError."""
    transaction = session.query(Transaction).options(
        joinedload(Transaction.items)
    ).filter(Transaction.id == transaction_id).first()
    if not transaction:
        raise NotFoundError(f'Transaksi #{transaction_id} tidak ditemukan')
    return transaction


def list_transactions(session: Session, search: str = '', limit: int = 100) -> List[Transaction]:
    """Most recent first, optionally filtered by number, customer or notes."""
    query = session.query(Transaction)
    if search:
        search = search.strip()[:100]
        query = query.filter(
            or_(
                Transaction.transaction_number.ilike(f'%{search}%'),
                Transaction.customer_name.ilike(f'%{search}%'),
                Transaction.notes.ilike(f'%{search}%'),
                cast(Transaction.total_amount, String).like(f'%{search}%'),
            )
        )
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit).all()


def delete_transaction(session: Session, transaction_id: int, restock: bool = False) -> dict:
    """
    Delete a transaction and all of its items.

    Sold stock stays consumed unless ``restock`` is set, in which case every
    item's quantity is released back to its product's stock entry within the
    same database transaction.
    """
    try:
        transaction = session.query(Transaction).filter(
            Transaction.id == transaction_id
        ).with_for_update().first()
        if not transaction:
            raise NotFoundError(f'Transaksi #{transaction_id} tidak ditemukan')

        number = transaction.transaction_number
        items = session.query(TransactionItem).filter(
            TransactionItem.transaction_id == transaction_id
        ).all()

        restocked = []
        if restock:
            for item in items:
                remaining = StockLedger(session, item.product_id, autocommit=False).release(item.unit, item.quantity)
                restocked.append({
                    'product_id': item.product_id,
                    'unit': item.unit,
                    'quantity': item.quantity,
                    'new_stock': remaining,
                })

        session.delete(transaction)
        session.commit()
        logger.info(f"[TRANSACTION] deleted {number} (restock={restock})")

        invalidate_reports()
        return {
            'success': True,
            'message': f'Transaksi {number} berhasil dihapus',
            'transaction_number': number,
            'restocked': restocked,
        }
    except NotaError:
        session.rollback()
        raise
    except OperationalError as e:
        session.rollback()
        raise TransientError() from e

