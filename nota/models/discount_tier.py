"""Discount Tier model."""
import enum
from sqlalchemy import Column, String, Integer, Numeric, Boolean, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from nota.database import Base, BigIntId


class TierUnit(str, enum.Enum):
    """Units a discount tier may be declared for."""
    BUAH = 'buah'
    BOX = 'box'
    KARTON = 'karton'


class DiscountTier(Base):
    """
    Quantity/unit condition mapped to one or two sequential percentage cuts.

    is_exact=True applies only when the requested quantity equals
    min_quantity; otherwise it applies at or above min_quantity.
    """

    __tablename__ = 'discount_tier'
    __table_args__ = (
        UniqueConstraint('product_id', 'min_quantity', 'unit', 'is_exact', name='uq_discount_tier_key'),
        CheckConstraint('min_quantity >= 1', name='ck_discount_tier_min_quantity'),
        CheckConstraint('discount >= 0 AND discount <= 100', name='ck_discount_tier_discount'),
        CheckConstraint('discount2 IS NULL OR (discount2 >= 0 AND discount2 <= 100)', name='ck_discount_tier_discount2'),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    product_id = Column(BigIntId, ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    min_quantity = Column(Integer, nullable=False)
    discount = Column(Numeric(5, 2), nullable=False)
    discount2 = Column(Numeric(5, 2), nullable=True)
    unit = Column(String(20), nullable=False)
    is_exact = Column(Boolean, nullable=False, default=False)

    product = relationship('Product', back_populates='discount_tiers')

    @property
    def key(self):
        """Uniqueness triple (min_quantity, unit, is_exact)."""
        return (self.min_quantity, self.unit, bool(self.is_exact))

    def __repr__(self):
        op = '=' if self.is_exact else '>='
        return f"<DiscountTier(product_id={self.product_id}, {op}{self.min_quantity} {self.unit}, -{self.discount}%)>"
