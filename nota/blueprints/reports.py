"""Reports blueprint - sales summary (JSON)."""
from datetime import date, timedelta

from flask import Blueprint, request, jsonify

from nota.database import get_session
from nota.middleware import require_actor
from nota.services.report_service import sales_summary
from nota.utils.formatters import rupiah

reports_bp = Blueprint('reports', __name__, url_prefix='/reports')


@reports_bp.route('/sales', methods=['GET'])
@require_actor
def sales():
    """Summary for ?start=YYYY-MM-DD&end=YYYY-MM-DD (defaults to the last 30 days)."""
    end = request.args.get('end') or date.today().isoformat()
    start = request.args.get('start') or (date.today() - timedelta(days=29)).isoformat()

    summary = sales_summary(get_session(), start, end)
    return jsonify({
        'start': summary['start'],
        'end': summary['end'],
        'total_revenue': str(summary['total_revenue']),
        'total_revenue_display': rupiah(summary['total_revenue']),
        'transaction_count': summary['transaction_count'],
        'average_transaction': str(summary['average_transaction']),
        'average_transaction_display': rupiah(summary['average_transaction']),
        'daily': [
            {'date': row['date'], 'revenue': str(row['revenue']), 'count': row['count']}
            for row in summary['daily']
        ],
        'top_products': [
            {
                'product_id': row['product_id'],
                'name': row['name'],
                'unit': row['unit'],
                'quantity': row['quantity'],
                'revenue': str(row['revenue']),
                'revenue_display': rupiah(row['revenue']),
            }
            for row in summary['top_products']
        ],
    })
