"""
LeadRecord model — one row per resolved lead, mutated in place across its lifecycle.

`date` (attribution day) and `created_at` (first arrival) are written once at
creation; status updates only touch notification_type/status/payout/category
and fill lead_id/offer_id when empty.
"""
from sqlalchemy import Column, Integer, Float, Text, Date, DateTime, Index

from leadtrack.database import Base, local_now


class LeadRecord(Base):
    __tablename__ = 'lead_records'

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Text, nullable=True)
    offer_id = Column(Text, nullable=True)

    campaign = Column(Text, nullable=True)
    adset = Column(Text, nullable=True)
    ad = Column(Text, nullable=True)

    sub_id1 = Column(Text, nullable=True)
    sub_id2 = Column(Text, nullable=True)   # landing-page variant, joined with Clarity
    sub_id3 = Column(Text, nullable=True)
    sub_id4 = Column(Text, nullable=True)   # ad.name
    sub_id5 = Column(Text, nullable=True)   # adset.name
    sub_id6 = Column(Text, nullable=True)   # campaign.name
    sub_id7 = Column(Text, nullable=True)
    sub_id8 = Column(Text, nullable=True)

    status = Column(Text, nullable=True)
    payout = Column(Float, nullable=True)
    category = Column(Text, nullable=True)
    notification_type = Column(Text, nullable=False, default='lead')

    utm_source = Column(Text, nullable=True)
    utm_medium = Column(Text, nullable=True)
    placement = Column(Text, nullable=True)
    pixel = Column(Text, nullable=True)

    date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=local_now)

    __table_args__ = (
        Index('ix_lead_records_lead_id', 'lead_id'),
        Index('ix_lead_records_offer_id', 'offer_id'),
        Index('ix_lead_records_date', 'date'),
        Index('ix_lead_records_hierarchy', 'sub_id1', 'campaign', 'adset', 'ad'),
    )

    @property
    def identity(self):
        """Reporting identity: lead_id, else one synthetic identity per row."""
        return self.lead_id or f'unique_{self.id}'

    @property
    def attribution_date(self):
        """`date`, falling back to the arrival day for rows written before it existed."""
        if self.date is not None:
            return self.date
        return self.created_at.date() if self.created_at else None

    def to_dict(self):
        return {
            'id': self.id,
            'lead_id': self.lead_id,
            'offer_id': self.offer_id,
            'campaign': self.campaign,
            'adset': self.adset,
            'ad': self.ad,
            'sub_id1': self.sub_id1,
            'sub_id2': self.sub_id2,
            'sub_id3': self.sub_id3,
            'sub_id4': self.sub_id4,
            'sub_id5': self.sub_id5,
            'sub_id6': self.sub_id6,
            'sub_id7': self.sub_id7,
            'sub_id8': self.sub_id8,
            'status': self.status,
            'payout': self.payout,
            'category': self.category,
            'notification_type': self.notification_type,
            'utm_source': self.utm_source,
            'utm_medium': self.utm_medium,
            'placement': self.placement,
            'pixel': self.pixel,
            'date': self.date.isoformat() if self.date else None,
            'created_at': self.created_at.isoformat(sep=' ') if self.created_at else None,
        }
