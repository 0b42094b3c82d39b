"""Product Unit model (unit-to-quantity conversion table)."""
from sqlalchemy import Column, String, Integer, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from nota.database import Base, BigIntId


class ProductUnit(Base):
    """
    Declared unit of a product, e.g. box = 12 buah.
    Informational: not enforced against stock entries.
    """
    __tablename__ = 'product_unit'
    __table_args__ = (
        UniqueConstraint('product_id', 'name', name='uq_product_unit_name'),
        CheckConstraint('quantity >= 1', name='ck_product_unit_quantity'),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    product_id = Column(BigIntId, ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    product = relationship('Product', back_populates='units')

    def __repr__(self):
        return f"<ProductUnit(product_id={self.product_id}, name='{self.name}', qty={self.quantity})>"
