"""Product model."""
from sqlalchemy import Column, String, Text, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from nota.database import Base, BigIntId


class Product(Base):
    """Product sold in one or more physical units (buah/box/karton)."""

    __tablename__ = 'product'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=False)
    sku = Column(String(64), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    base_price = Column(Numeric(16, 4), nullable=False)  # List price before discount
    price = Column(Numeric(16, 4), nullable=False)  # Display price, normally base_price
    purchase_price = Column(Numeric(16, 4), nullable=False, default=0, server_default='0')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    units = relationship('ProductUnit', back_populates='product', cascade='all, delete-orphan',
                         order_by='ProductUnit.quantity')
    stock_entries = relationship('StockEntry', back_populates='product', cascade='all, delete-orphan',
                                 order_by='StockEntry.id')
    discount_tiers = relationship('DiscountTier', back_populates='product', cascade='all, delete-orphan',
                                  order_by='DiscountTier.min_quantity')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"

    def stock_for(self, unit):
        """Return the StockEntry stocked under ``unit`` (any casing) or None."""
        wanted = (unit or '').strip().lower()
        for entry in self.stock_entries:
            if entry.unit.lower() == wanted:
                return entry
        return None
