"""
Postback processing — normalize, resolve, write, count.

One call handles one postback end to end under the identity lock:

    normalize_params → IdentityResolver.resolve → LeadStore insert/update
                     → CampaignStatsMaintainer (best effort)

Only the LeadRecord write decides success. A failed counter update is logged
and left for `repair_data.py rebuild-stats`.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from leadtrack.postback.normalizer import NormalizedPostback, normalize_params
from leadtrack.postback.resolver import (
    UPDATE, IdentityResolver, build_create_fields, build_update_fields,
)
from leadtrack.services.campaign_stats import CampaignStatsMaintainer
from leadtrack.services.lead_store import LeadStore
from leadtrack.services.locks import postback_lock
from leadtrack.services.products import lookup_category

logger = logging.getLogger('postback.processor')


class PostbackStorageError(Exception):
    """The LeadRecord write failed; the sender should retry."""


@dataclass
class PostbackResult:
    record_id: int
    updated: bool = False
    previous_type: Optional[str] = None
    notification_type: Optional[str] = None

    def to_response(self) -> Dict:
        body = {'success': True, 'id': self.record_id}
        if self.updated:
            body['updated'] = True
        return body


class PostbackProcessor:
    """Runs postbacks against one session. Build one per request."""

    def __init__(self, session, lock_backend=None):
        self.session = session
        self.store = LeadStore(session)
        self.resolver = IdentityResolver(self.store)
        self.stats = CampaignStatsMaintainer(session)
        self.lock_backend = lock_backend

    def process(self, params: Dict[str, str], notification_type: str,
                today: Optional[date] = None) -> PostbackResult:
        postback = normalize_params(params, notification_type, today=today)
        with postback_lock(postback, self.lock_backend):
            return self.process_normalized(postback)

    def process_normalized(self, postback: NormalizedPostback) -> PostbackResult:
        resolution = self.resolver.resolve(postback)
        if resolution.action == UPDATE:
            result = self._update(resolution.record, postback)
        else:
            result = self._create(postback)
        self._update_stats(result, postback)
        return result

    def _category(self, offer_id: Optional[str]) -> Optional[str]:
        try:
            return lookup_category(self.session, offer_id)
        except SQLAlchemyError:
            logger.warning("Product lookup failed for offer_id=%s", offer_id, exc_info=True)
            self.session.rollback()
            return None

    def _create(self, postback: NormalizedPostback) -> PostbackResult:
        fields = build_create_fields(postback, self._category(postback.offer_id))
        try:
            record_id = self.store.insert(fields)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(
                "Failed to insert %s postback", postback.notification_type, exc_info=True,
                extra={'notification_type': postback.notification_type, 'lead_id': postback.lead_id,
                       'offer_id': postback.offer_id, 'action': 'create'},
            )
            raise PostbackStorageError('Failed to save postback') from e

        logger.info(
            "Created lead record %s (%s, date=%s)", record_id, postback.notification_type,
            postback.attribution_date,
            extra={'notification_type': postback.notification_type, 'lead_id': postback.lead_id,
                   'offer_id': postback.offer_id, 'record_id': record_id, 'action': 'create'},
        )
        return PostbackResult(record_id=record_id, notification_type=postback.notification_type)

    def _update(self, record, postback: NormalizedPostback) -> PostbackResult:
        record_id = record.id
        previous_type = record.notification_type
        category = self._category(postback.offer_id or record.offer_id)
        fields = build_update_fields(record, postback, category)
        try:
            self.store.update_by_id(record_id, fields)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(
                "Failed to update lead record %s", record_id, exc_info=True,
                extra={'notification_type': postback.notification_type, 'lead_id': postback.lead_id,
                       'offer_id': postback.offer_id, 'record_id': record_id, 'action': 'update'},
            )
            raise PostbackStorageError('Failed to update lead') from e

        logger.info(
            "Updated lead record %s: %s -> %s", record_id, previous_type, postback.notification_type,
            extra={'notification_type': postback.notification_type, 'lead_id': postback.lead_id,
                   'offer_id': postback.offer_id, 'record_id': record_id, 'action': 'update'},
        )
        return PostbackResult(record_id=record_id, updated=True, previous_type=previous_type,
                              notification_type=postback.notification_type)

    def _update_stats(self, result: PostbackResult, postback: NormalizedPostback):
        metadata = {
            'campaign_id': postback.campaign_id,
            'adset_id': postback.adset_id,
            'ad_id': postback.ad_id,
            'placement': postback.placement,
            'site_source': postback.utm_source,
        }
        try:
            record = self.store.get(result.record_id)
            if result.updated:
                self.stats.record_transition(record, result.previous_type, result.notification_type, metadata)
            else:
                self.stats.record_created(record, metadata)
        except SQLAlchemyError:
            self.session.rollback()
            logger.error(
                "Campaign stats update failed for record %s", result.record_id, exc_info=True,
                extra={'record_id': result.record_id, 'notification_type': result.notification_type},
            )
