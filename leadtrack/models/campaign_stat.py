"""
CampaignStat model — denormalized per-(campaign, adset, ad) counters.

Derived from LeadRecord transitions and rebuildable at any time
(see services.repairs.rebuild_campaign_stats). Never a source of truth.
"""
from sqlalchemy import Column, Integer, Text, DateTime, UniqueConstraint

from leadtrack.database import Base, local_now


class CampaignStat(Base):
    __tablename__ = 'campaign_stats'
    __table_args__ = (
        UniqueConstraint('campaign', 'adset', 'ad', name='uq_campaign_stats_hierarchy'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign = Column(Text, nullable=False)
    campaign_id = Column(Text, nullable=True)
    adset = Column(Text, nullable=False)
    adset_id = Column(Text, nullable=True)
    ad = Column(Text, nullable=False)
    ad_id = Column(Text, nullable=True)
    placement = Column(Text, nullable=True)
    site_source = Column(Text, nullable=True)
    leads = Column(Integer, nullable=False, default=0)
    conversions = Column(Integer, nullable=False, default=0)
    trash = Column(Integer, nullable=False, default=0)
    cancel = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=local_now)

    def to_dict(self):
        return {
            'id': self.id,
            'campaign': self.campaign,
            'campaign_id': self.campaign_id,
            'adset': self.adset,
            'adset_id': self.adset_id,
            'ad': self.ad,
            'ad_id': self.ad_id,
            'placement': self.placement,
            'site_source': self.site_source,
            'leads': self.leads,
            'conversions': self.conversions,
            'trash': self.trash,
            'cancel': self.cancel,
            'updated_at': self.updated_at.isoformat(sep=' ') if self.updated_at else None,
        }
