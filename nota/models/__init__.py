"""Models package - exports all SQLAlchemy models."""
from nota.models.product import Product
from nota.models.product_unit import ProductUnit
from nota.models.stock_entry import StockEntry
from nota.models.discount_tier import DiscountTier, TierUnit
from nota.models.setting import Setting, TRANSACTION_COUNTER_KEY
from nota.models.customer import Customer
from nota.models.transaction import Transaction, TransactionStatus
from nota.models.transaction_item import TransactionItem

__all__ = [
    'Product', 'ProductUnit', 'StockEntry', 'DiscountTier', 'TierUnit',
    'Setting', 'TRANSACTION_COUNTER_KEY',
    'Customer', 'Transaction', 'TransactionStatus', 'TransactionItem',
]
