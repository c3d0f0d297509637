"""
Identity resolution — does this postback create a lead or update one?

  lead                     → by lead_id only; no lead_id means always CREATE
  conversao/cancel/trash   → lead_id, then offer_id, then the exact
                             (sub1, campaign, adset, ad) tuple of a row still
                             in 'lead' state; oldest row of the first tier
                             with any match wins

Anything unmatched is created, never rejected. If the lookup itself fails we
also CREATE: a duplicate can be merged later, a dropped postback is gone.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from leadtrack.config import NOTIFICATION_LEAD
from leadtrack.models.lead_record import LeadRecord
from leadtrack.postback.normalizer import NormalizedPostback

logger = logging.getLogger('postback.resolver')

CREATE = 'create'
UPDATE = 'update'


@dataclass
class Resolution:
    action: str
    record: Optional[LeadRecord] = None
    tier: Optional[str] = None  # which key matched: lead_id / offer_id / hierarchy

    @property
    def target_id(self) -> Optional[int]:
        return self.record.id if self.record is not None else None


class IdentityResolver:

    def __init__(self, store):
        self.store = store

    def _match(self, postback: NormalizedPostback):
        if postback.notification_type == NOTIFICATION_LEAD:
            if not postback.lead_id:
                return None, None
            return self.store.find_by_lead_id(postback.lead_id), 'lead_id'

        sub1, campaign, adset, ad = postback.hierarchy
        record = self.store.find_best_match(
            lead_id=postback.lead_id, offer_id=postback.offer_id,
            sub1=sub1, campaign=campaign, adset=adset, ad=ad,
        )
        if record is None:
            return None, None
        if postback.lead_id and record.lead_id == postback.lead_id:
            return record, 'lead_id'
        if postback.offer_id and record.offer_id == postback.offer_id:
            return record, 'offer_id'
        return record, 'hierarchy'

    def resolve(self, postback: NormalizedPostback) -> Resolution:
        try:
            record, tier = self._match(postback)
        except SQLAlchemyError:
            logger.error(
                "Lookup failed for %s postback, falling back to create",
                postback.notification_type, exc_info=True,
                extra={'notification_type': postback.notification_type, 'lead_id': postback.lead_id,
                       'offer_id': postback.offer_id},
            )
            self.store.session.rollback()
            return Resolution(CREATE)

        if record is not None:
            return Resolution(UPDATE, record=record, tier=tier)

        if postback.notification_type != NOTIFICATION_LEAD and (postback.lead_id or postback.offer_id):
            logger.warning(
                "No lead matched %s postback (lead_id=%s, offer_id=%s); creating a new record",
                postback.notification_type, postback.lead_id, postback.offer_id,
                extra={'notification_type': postback.notification_type, 'lead_id': postback.lead_id,
                       'offer_id': postback.offer_id, 'action': 'correlation_lost'},
            )
        return Resolution(CREATE)


def build_create_fields(postback: NormalizedPostback, category: Optional[str]) -> Dict:
    """Columns for a new LeadRecord. created_at is set by the store."""
    fields = postback.record_fields()
    fields['date'] = postback.attribution_date
    fields['category'] = category
    return fields


def build_update_fields(record: LeadRecord, postback: NormalizedPostback,
                        category: Optional[str]) -> Dict:
    """
    Partial update for an existing record.

    notification_type always moves; status and payout only when the postback
    carries a value; ids only fill blanks; category only on a product hit.
    date and created_at are never part of an update.
    """
    fields = {'notification_type': postback.notification_type}
    if postback.status is not None:
        fields['status'] = postback.status
    if postback.payout is not None:
        fields['payout'] = float(postback.payout)
    if postback.lead_id and not record.lead_id:
        fields['lead_id'] = postback.lead_id
    if postback.offer_id and not record.offer_id:
        fields['offer_id'] = postback.offer_id
    if category:
        fields['category'] = category
    return fields
