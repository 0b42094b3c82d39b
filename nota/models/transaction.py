"""Transaction (nota) model."""
import enum
from sqlalchemy import Column, String, Text, Integer, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from nota.database import Base, BigIntId


class TransactionStatus(str, enum.Enum):
    """Transaction status enum."""
    PENDING = 'pending'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class Transaction(Base):
    """Finalized sale, numbered RJA/APT/<counter>."""

    __tablename__ = 'transaction'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    transaction_number = Column(String(64), nullable=False, unique=True, index=True)
    customer_id = Column(BigIntId, ForeignKey('customer.id'), nullable=True)
    customer_name = Column(String(200), nullable=False)
    customer_address = Column(Text, nullable=False, default='')
    total_amount = Column(Numeric(18, 4), nullable=False)
    notes = Column(Text, nullable=True)
    payment_terms_days = Column(Integer, nullable=True)
    created_by = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default=TransactionStatus.COMPLETED.value)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='transactions')
    items = relationship('TransactionItem', back_populates='transaction', cascade='all, delete-orphan',
                         order_by='TransactionItem.id')

    def __repr__(self):
        return f"<Transaction(id={self.id}, number='{self.transaction_number}', total={self.total_amount})>"
