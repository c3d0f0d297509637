"""
Lead store — every read and write of lead_records goes through here.

The store wraps one SQLAlchemy session handed in by the caller. Writes commit
immediately: each insert/update is a single-row atomic change, and nothing
spans the record write and the counter update that follows it.
"""
import logging
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, or_

from leadtrack.config import NOTIFICATION_LEAD
from leadtrack.database import local_now
from leadtrack.models.lead_record import LeadRecord

logger = logging.getLogger('services.lead_store')

# Columns an UPDATE may touch. Everything else is fixed at creation.
MUTABLE_FIELDS = frozenset({'notification_type', 'status', 'payout', 'category', 'lead_id', 'offer_id'})


def _oldest_first(query):
    return query.order_by(LeadRecord.created_at.asc(), LeadRecord.id.asc())


def attribution_date_filter(start: date, end: date):
    """
    Rows whose attribution day falls in [start, end].

    Rows with a null `date` are attributed to their created_at calendar day.
    """
    start_dt = datetime.combine(start, time.min)
    end_dt = datetime.combine(end, time.max)
    return or_(
        and_(LeadRecord.date >= start, LeadRecord.date <= end),
        and_(
            LeadRecord.date.is_(None),
            LeadRecord.created_at >= start_dt,
            LeadRecord.created_at <= end_dt,
        ),
    )


class LeadStore:
    """Lookup and write operations over LeadRecord for one session."""

    def __init__(self, session):
        self.session = session

    # ── Lookups ──────────────────────────────────────────────────────────

    def get(self, record_id: int) -> Optional[LeadRecord]:
        return self.session.get(LeadRecord, record_id)

    def find_by_lead_id(self, lead_id: str) -> Optional[LeadRecord]:
        """Oldest record carrying exactly this lead_id."""
        if not lead_id:
            return None
        return _oldest_first(
            self.session.query(LeadRecord).filter(LeadRecord.lead_id == lead_id)
        ).first()

    def find_by_offer_id(self, offer_id: str) -> Optional[LeadRecord]:
        if not offer_id:
            return None
        return _oldest_first(
            self.session.query(LeadRecord).filter(LeadRecord.offer_id == offer_id)
        ).first()

    def find_by_hierarchy(self, sub1, campaign, adset, ad) -> Optional[LeadRecord]:
        """
        Oldest still-open lead with exactly this (sub1, campaign, adset, ad).

        A missing component never matches: NULL = NULL is not a match in SQL,
        and treating "no tracking at all" as an identity would merge strangers.
        """
        if sub1 is None or campaign is None or adset is None or ad is None:
            return None
        return _oldest_first(
            self.session.query(LeadRecord).filter(
                LeadRecord.sub_id1 == sub1,
                LeadRecord.campaign == campaign,
                LeadRecord.adset == adset,
                LeadRecord.ad == ad,
                LeadRecord.notification_type == NOTIFICATION_LEAD,
            )
        ).first()

    def find_best_match(self, lead_id=None, offer_id=None, sub1=None,
                        campaign=None, adset=None, ad=None) -> Optional[LeadRecord]:
        """
        Status-update resolution: lead_id, then offer_id, then hierarchy.

        The first tier with any candidate wins; lower tiers are not consulted
        even if they would match an older record.
        """
        return (
            self.find_by_lead_id(lead_id)
            or self.find_by_offer_id(offer_id)
            or self.find_by_hierarchy(sub1, campaign, adset, ad)
        )

    # ── Writes ───────────────────────────────────────────────────────────

    def insert(self, fields: Dict) -> int:
        """Insert one record and return its id. created_at defaults to local now."""
        record = LeadRecord(**fields)
        if record.created_at is None:
            record.created_at = local_now()
        self.session.add(record)
        self.session.commit()
        return record.id

    def update_by_id(self, record_id: int, fields: Dict) -> Optional[LeadRecord]:
        """Apply a partial update. Only MUTABLE_FIELDS are accepted."""
        illegal = set(fields) - MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Immutable lead_record fields: {sorted(illegal)}")
        record = self.get(record_id)
        if record is None:
            return None
        for key, value in fields.items():
            setattr(record, key, value)
        self.session.commit()
        return record

    def delete_all(self) -> int:
        count = self.session.query(LeadRecord).delete()
        self.session.commit()
        return count

    # ── Listings (reporting) ─────────────────────────────────────────────

    def _filtered(self, offer_id=None, category=None):
        query = self.session.query(LeadRecord)
        if offer_id:
            query = query.filter(LeadRecord.offer_id == offer_id.strip())
        if category:
            query = query.filter(LeadRecord.category == category.strip())
        return query

    def list_by_date_and_filters(self, start: date, end: date, offer_id=None,
                                 category=None) -> List[LeadRecord]:
        """
        Rows attributed to [start, end] plus every other row sharing a lead_id
        with them, so callers can pick first-seen and latest rows per identity.
        """
        in_range = self._filtered(offer_id, category).filter(attribution_date_filter(start, end)).all()
        lead_ids = {r.lead_id for r in in_range if r.lead_id}
        if not lead_ids:
            return in_range
        related = self._filtered(offer_id, category).filter(LeadRecord.lead_id.in_(lead_ids)).all()
        by_id = {r.id: r for r in in_range}
        by_id.update((r.id, r) for r in related)
        return list(by_id.values())

    def list_all(self, offer_id=None, category=None, start: Optional[date] = None,
                 end: Optional[date] = None, newest_first: bool = True) -> List[LeadRecord]:
        query = self._filtered(offer_id, category)
        if start is not None or end is not None:
            query = query.filter(attribution_date_filter(start or date.min, end or date.max))
        if newest_first:
            query = query.order_by(LeadRecord.created_at.desc(), LeadRecord.id.desc())
        else:
            query = query.order_by(LeadRecord.created_at.asc(), LeadRecord.id.asc())
        return query.all()

    def iter_all(self, batch_size: int = 500) -> Iterable[LeadRecord]:
        return self.session.query(LeadRecord).order_by(LeadRecord.id).yield_per(batch_size)
