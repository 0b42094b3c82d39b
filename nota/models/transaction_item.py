"""Transaction Item model."""
from sqlalchemy import Column, String, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from nota.database import Base, BigIntId


class TransactionItem(Base):
    """Line of a committed transaction; immutable once written."""

    __tablename__ = 'transaction_item'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    transaction_id = Column(BigIntId, ForeignKey('transaction.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(BigIntId, ForeignKey('product.id', ondelete='RESTRICT'), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)  # "<name> (<qty> <unit>)"
    unit = Column(String(50), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(18, 4), nullable=False)  # Post-discount, unrounded
    subtotal = Column(Numeric(18, 4), nullable=False)
    discount_amount = Column(Numeric(18, 4), nullable=False, default=0)
    discount_percent = Column(Numeric(7, 2), nullable=False, default=0)
    discount1 = Column(Numeric(5, 2), nullable=True)
    discount2 = Column(Numeric(5, 2), nullable=True)

    # Relationships
    transaction = relationship('Transaction', back_populates='items')
    product = relationship('Product')

    @property
    def discount_details(self):
        """First/second stage percentages, None when no tier applied."""
        if self.discount1 is None:
            return None
        return {'discount1': self.discount1, 'discount2': self.discount2 or 0}

    def __repr__(self):
        return f"<TransactionItem(id={self.id}, product_id={self.product_id}, qty={self.quantity} {self.unit})>"
