"""
Sales report service.
Aggregates committed notas over a date range; results are cached in Redis
under the 'reports' module and dropped whenever a nota is written or deleted.
"""
import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy import func, desc
from sqlalchemy.orm import Session

from nota.exceptions import ValidationError
from nota.models import Product, Transaction, TransactionItem, TransactionStatus
from nota.services.cache_service import get_cache

logger = logging.getLogger(__name__)

TOP_PRODUCTS_LIMIT = 5


def _as_date(value, label: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f'Tanggal {label} tidak valid (format YYYY-MM-DD)')


def sales_summary(session: Session, start, end, use_cache: bool = True) -> dict:
    """
    Revenue summary for notas created between ``start`` and ``end`` (inclusive).

    Returns total revenue, transaction count, average per transaction, the
    daily revenue series and the top products by revenue per (product, unit).
    """
    start = _as_date(start, 'awal')
    end = _as_date(end, 'akhir')
    if start > end:
        raise ValidationError('Tanggal awal harus sebelum tanggal akhir')

    def loader():
        return _compute_summary(session, start, end)

    if not use_cache:
        return loader()
    try:
        cache = get_cache()
    except RuntimeError:
        return loader()

    ttl: Optional[int] = None
    if has_app_context():
        ttl = current_app.config.get('CACHE_REPORTS_TTL', 300)
    return cache.memoize('reports', f'sales:{start.isoformat()}:{end.isoformat()}', loader, ttl=ttl)


def _compute_summary(session: Session, start: date, end: date) -> dict:
    range_start = datetime.combine(start, time.min)
    range_end = datetime.combine(end + timedelta(days=1), time.min)

    in_range = (
        Transaction.status == TransactionStatus.COMPLETED.value,
        Transaction.created_at >= range_start,
        Transaction.created_at < range_end,
    )

    total_revenue, transaction_count = session.query(
        func.coalesce(func.sum(Transaction.total_amount), 0),
        func.count(Transaction.id)
    ).filter(*in_range).one()
    total_revenue = Decimal(str(total_revenue or 0))
    average = total_revenue / transaction_count if transaction_count else Decimal('0')

    day = func.date(Transaction.created_at)
    daily_rows = session.query(
        day.label('day'),
        func.sum(Transaction.total_amount).label('revenue'),
        func.count(Transaction.id).label('count')
    ).filter(*in_range).group_by(day).order_by(day).all()

    revenue = func.sum(TransactionItem.subtotal).label('revenue')
    top_rows = session.query(
        TransactionItem.product_id,
        Product.name,
        TransactionItem.unit,
        func.sum(TransactionItem.quantity).label('quantity'),
        revenue
    ).join(
        Transaction, Transaction.id == TransactionItem.transaction_id
    ).join(
        Product, Product.id == TransactionItem.product_id
    ).filter(*in_range).group_by(
        TransactionItem.product_id, Product.name, TransactionItem.unit
    ).order_by(desc('revenue')).limit(TOP_PRODUCTS_LIMIT).all()

    logger.info(f"[REPORTS] sales {start}..{end}: {transaction_count} notas, revenue={total_revenue}")

    return {
        'start': start.isoformat(),
        'end': end.isoformat(),
        'total_revenue': total_revenue,
        'transaction_count': int(transaction_count),
        'average_transaction': average,
        'daily': [
            {
                'date': str(row.day),
                'revenue': Decimal(str(row.revenue or 0)),
                'count': int(row.count),
            }
            for row in daily_rows
        ],
        'top_products': [
            {
                'product_id': row.product_id,
                'name': row.name,
                'unit': row.unit,
                'quantity': int(row.quantity or 0),
                'revenue': Decimal(str(row.revenue or 0)),
            }
            for row in top_rows
        ],
    }
