"""
Product model — offer_id → account name, used to categorize leads.

offer_id is not unique: the same offer can be registered under
more than one product name.
"""
from sqlalchemy import Column, Integer, Text, DateTime, Index

from leadtrack.database import Base, local_now


class Product(Base):
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    offer_id = Column(Text, nullable=False)
    account_name = Column(Text, nullable=False)
    created_at = Column(DateTime, default=local_now)
    updated_at = Column(DateTime, default=local_now, onupdate=local_now)

    __table_args__ = (
        Index('ix_products_offer_id', 'offer_id'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'offer_id': self.offer_id,
            'account_name': self.account_name,
            'created_at': self.created_at.isoformat(sep=' ') if self.created_at else None,
            'updated_at': self.updated_at.isoformat(sep=' ') if self.updated_at else None,
        }
