"""
Data repair jobs — idempotent batch fixes over lead_records.

Run through scripts/repair_data.py. Each job returns a RepairReport and
leaves committing to the caller, so --dry-run is a rollback.

Jobs respect the record invariants: an existing `date` is never rewritten,
a non-null lead_id is never replaced.
"""
import logging
from dataclasses import dataclass, field
from typing import List

from sqlalchemy import and_, or_

from leadtrack.config import NOTIFICATION_CONVERSION, NOTIFICATION_LEAD
from leadtrack.models.lead_record import LeadRecord
from leadtrack.services.campaign_stats import CampaignStatsMaintainer
from leadtrack.services.lead_store import LeadStore

logger = logging.getLogger('services.repairs')


@dataclass
class RepairReport:
    job: str
    examined: int = 0
    changed: int = 0
    details: List[str] = field(default_factory=list)

    def to_dict(self):
        return {'job': self.job, 'examined': self.examined, 'changed': self.changed,
                'details': list(self.details)}


def _original_lead_for(session, conversion: LeadRecord):
    """
    Oldest 'lead' row the conversion should have updated: same lead_id, or same
    offer_id and hierarchy, or (neither id present) same hierarchy. Only rows
    attributed to an earlier day count.
    """
    hierarchy = and_(
        LeadRecord.campaign == conversion.campaign,
        LeadRecord.adset == conversion.adset,
        LeadRecord.ad == conversion.ad,
    )
    clauses = []
    if conversion.lead_id:
        clauses.append(LeadRecord.lead_id == conversion.lead_id)
    if conversion.offer_id:
        clauses.append(and_(LeadRecord.offer_id == conversion.offer_id, hierarchy))
    if not conversion.lead_id and not conversion.offer_id:
        clauses.append(and_(LeadRecord.lead_id.is_(None), LeadRecord.offer_id.is_(None), hierarchy))

    conversion_day = conversion.attribution_date
    candidates = (
        session.query(LeadRecord)
        .filter(
            LeadRecord.notification_type == NOTIFICATION_LEAD,
            LeadRecord.id != conversion.id,
            or_(*clauses),
        )
        .order_by(LeadRecord.created_at.asc(), LeadRecord.id.asc())
        .all()
    )
    for candidate in candidates:
        day = candidate.attribution_date
        if day is not None and conversion_day is not None and day < conversion_day:
            return candidate
    return None


def merge_duplicate_conversions(session) -> RepairReport:
    """
    Fold conversion rows that were created instead of updating their lead.

    The original lead row becomes the conversion (keeping its date and
    created_at); the duplicate row is deleted.
    """
    report = RepairReport('merge-duplicates')
    conversions = (
        session.query(LeadRecord)
        .filter(LeadRecord.notification_type == NOTIFICATION_CONVERSION)
        .order_by(LeadRecord.created_at.desc(), LeadRecord.id.desc())
        .all()
    )
    deleted = set()
    for conversion in conversions:
        if conversion.id in deleted:
            continue
        report.examined += 1
        original = _original_lead_for(session, conversion)
        if original is None:
            continue

        original.notification_type = NOTIFICATION_CONVERSION
        if conversion.status is not None:
            original.status = conversion.status
        if conversion.payout is not None:
            original.payout = conversion.payout
        original.lead_id = original.lead_id or conversion.lead_id
        original.offer_id = original.offer_id or conversion.offer_id
        original.category = conversion.category or original.category
        report.details.append(f'#{conversion.id} merged into #{original.id}')
        deleted.add(conversion.id)
        session.delete(conversion)
        session.flush()
        report.changed += 1

    logger.info("merge-duplicates: %d conversions examined, %d merged", report.examined, report.changed)
    return report


def backfill_attribution_dates(session) -> RepairReport:
    """Give rows without a `date` the calendar day of their created_at."""
    report = RepairReport('backfill-dates')
    rows = session.query(LeadRecord).filter(LeadRecord.date.is_(None)).all()
    for row in rows:
        report.examined += 1
        if row.created_at is None:
            continue
        row.date = row.created_at.date()
        report.changed += 1
    session.flush()
    logger.info("backfill-dates: %d rows dated", report.changed)
    return report


def rebuild_campaign_stats(session) -> RepairReport:
    """Recompute every campaign_stats counter from lead_records."""
    report = RepairReport('rebuild-stats')
    records = list(LeadStore(session).iter_all())
    report.examined = len(records)
    report.changed = CampaignStatsMaintainer(session).rebuild(records)
    logger.info("rebuild-stats: %d buckets from %d records", report.changed, report.examined)
    return report


JOBS = {
    'merge-duplicates': merge_duplicate_conversions,
    'backfill-dates': backfill_attribution_dates,
    'rebuild-stats': rebuild_campaign_stats,
}


def run_jobs(session, names, dry_run=False) -> List[RepairReport]:
    """Run jobs in the given order; commit once at the end unless dry_run."""
    reports = []
    try:
        for name in names:
            reports.append(JOBS[name](session))
        if dry_run:
            session.rollback()
        else:
            session.commit()
    except Exception:
        session.rollback()
        raise
    return reports
