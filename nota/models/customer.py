"""Customer model."""
from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from nota.database import Base, BigIntId


class Customer(Base):
    """Customer (pelanggan) selected on the nota."""

    __tablename__ = 'customer'

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    address = Column(Text, nullable=False, default='')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    transactions = relationship('Transaction', back_populates='customer')

    def __repr__(self):
        return f"<Customer(id={self.id}, name='{self.name}')>"
