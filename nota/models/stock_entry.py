"""Stock Entry model - available count of a product in one physical unit."""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from nota.database import Base, BigIntId


class StockEntry(Base):
    """Stock Entry - one row per distinct unit actually stocked."""

    __tablename__ = 'stock_entry'
    __table_args__ = (
        UniqueConstraint('product_id', 'unit', name='uq_stock_entry_unit'),
        CheckConstraint('quantity >= 0', name='ck_stock_entry_non_negative'),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    product_id = Column(BigIntId, ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    unit = Column(String(50), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    # Row version for optimistic concurrency on operator edits
    version = Column(Integer, nullable=False, default=1, server_default='1')
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    product = relationship('Product', back_populates='stock_entries')

    def __repr__(self):
        return f"<StockEntry(product_id={self.product_id}, unit='{self.unit}', quantity={self.quantity})>"
