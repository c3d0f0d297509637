"""
Campaign stats maintainer — per-(campaign, adset, ad) counters.

Counters follow LeadRecord transitions:
  - CREATE                 → +1 on the created type
  - UPDATE, type changed   → -1 old type (floored at 0), +1 new type
  - UPDATE, same type      → untouched

The table is a cache. rebuild() recomputes it from lead_records, so a failed
increment only costs accuracy until the next rebuild.
"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from leadtrack.config import (
    MISSING_BUCKET, NOTIFICATION_CANCEL, NOTIFICATION_CONVERSION,
    NOTIFICATION_LEAD, NOTIFICATION_TRASH,
)
from leadtrack.database import local_now
from leadtrack.models.campaign_stat import CampaignStat
from leadtrack.models.lead_record import LeadRecord

logger = logging.getLogger('services.campaign_stats')

COUNTER_FOR_TYPE = {
    NOTIFICATION_LEAD: 'leads',
    NOTIFICATION_CONVERSION: 'conversions',
    NOTIFICATION_CANCEL: 'cancel',
    NOTIFICATION_TRASH: 'trash',
}

METADATA_FIELDS = ('campaign_id', 'adset_id', 'ad_id', 'placement', 'site_source')


def bucket_key(campaign, adset, ad):
    """NULL never takes part in the unique key; missing levels share the N/A bucket."""
    return (campaign or MISSING_BUCKET, adset or MISSING_BUCKET, ad or MISSING_BUCKET)


def counter_for(notification_type: str) -> str:
    return COUNTER_FOR_TYPE.get(notification_type, 'leads')


class CampaignStatsMaintainer:
    """Applies counter deltas for one session. Methods raise; callers decide."""

    def __init__(self, session):
        self.session = session

    def _get_or_create(self, key) -> CampaignStat:
        campaign, adset, ad = key
        stat = self.session.query(CampaignStat).filter_by(campaign=campaign, adset=adset, ad=ad).first()
        if stat is not None:
            return stat
        stat = CampaignStat(campaign=campaign, adset=adset, ad=ad,
                            leads=0, conversions=0, trash=0, cancel=0)
        self.session.add(stat)
        try:
            self.session.flush()
        except IntegrityError:
            # Another request created the bucket between our read and insert.
            self.session.rollback()
            stat = self.session.query(CampaignStat).filter_by(campaign=campaign, adset=adset, ad=ad).one()
        return stat

    @staticmethod
    def _fill_metadata(stat: CampaignStat, metadata: Optional[dict]):
        for field in METADATA_FIELDS:
            value = (metadata or {}).get(field)
            if value:
                setattr(stat, field, value)

    def _apply(self, record: LeadRecord, deltas, metadata=None):
        stat = self._get_or_create(bucket_key(record.campaign, record.adset, record.ad))
        for notification_type, delta in deltas:
            column = counter_for(notification_type)
            setattr(stat, column, max(0, (getattr(stat, column) or 0) + delta))
        self._fill_metadata(stat, metadata)
        stat.updated_at = local_now()
        self.session.commit()
        return stat

    def record_created(self, record: LeadRecord, metadata: Optional[dict] = None) -> CampaignStat:
        return self._apply(record, [(record.notification_type, 1)], metadata)

    def record_transition(self, record: LeadRecord, old_type: str, new_type: str,
                          metadata: Optional[dict] = None) -> Optional[CampaignStat]:
        """Move one unit between counters. No-op when the type did not change."""
        if old_type == new_type:
            return None
        return self._apply(record, [(old_type, -1), (new_type, 1)], metadata)

    def delete_all(self) -> int:
        count = self.session.query(CampaignStat).delete()
        self.session.commit()
        return count

    def rebuild(self, records) -> int:
        """
        Replace every counter with totals recomputed from `records`.

        Does not commit; the caller decides (repairs honour --dry-run).
        Returns the number of buckets written.
        """
        buckets = {}
        for record in records:
            key = bucket_key(record.campaign, record.adset, record.ad)
            entry = buckets.setdefault(key, {
                'counts': dict.fromkeys(COUNTER_FOR_TYPE.values(), 0),
                'placement': None,
                'site_source': None,
            })
            entry['counts'][counter_for(record.notification_type)] += 1
            entry['placement'] = record.placement or entry['placement']
            entry['site_source'] = record.utm_source or entry['site_source']

        existing = {
            (s.campaign, s.adset, s.ad): s
            for s in self.session.query(CampaignStat).all()
        }
        now = local_now()
        for key, stat in existing.items():
            if key not in buckets:
                self.session.delete(stat)
        for key, entry in buckets.items():
            stat = existing.get(key)
            if stat is None:
                stat = CampaignStat(campaign=key[0], adset=key[1], ad=key[2])
                self.session.add(stat)
            for column, value in entry['counts'].items():
                setattr(stat, column, value)
            stat.placement = stat.placement or entry['placement']
            stat.site_source = stat.site_source or entry['site_source']
            stat.updated_at = now
        self.session.flush()
        return len(buckets)

    def list_all(self):
        return (
            self.session.query(CampaignStat)
            .order_by(CampaignStat.campaign, CampaignStat.adset, CampaignStat.ad)
            .all()
        )
