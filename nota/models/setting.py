"""Settings model - key/value rows (invoice counter lives here)."""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from nota.database import Base

TRANSACTION_COUNTER_KEY = 'transaction_counter'


class Setting(Base):
    """Single key-value row."""

    __tablename__ = 'settings'

    key = Column(String(64), primary_key=True)
    value = Column(String(255), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Setting(key='{self.key}', value='{self.value}')>"
