"""
Reporting engine — read-only views computed from lead_records.

Every view that counts leads picks rows per lead identity (lead_id, or
`unique_<id>` for rows without one) in two ways:

  - first-seen (oldest created_at): which day and which campaign/adset/ad
    the lead is credited to
  - latest-status (newest created_at): what state the lead is in now and
    what it paid

Rows are fetched with SQL and folded in Python so the same code runs on
SQLite and Postgres. Campaign counters (campaign_stats) are exposed as a
raw dump only; no view here depends on them being correct.
"""
import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Tuple

from leadtrack.config import (
    NOTIFICATION_CANCEL, NOTIFICATION_CONVERSION, NOTIFICATION_LEAD,
    NOTIFICATION_TRASH, UNTRACKED, UNTRACKED_ALIASES,
)
from leadtrack.database import local_today
from leadtrack.models.clarity import ClarityVisit
from leadtrack.models.lead_record import LeadRecord
from leadtrack.services.campaign_stats import CampaignStatsMaintainer
from leadtrack.services.clarity import normalize_identifier
from leadtrack.services.lead_store import LeadStore

logger = logging.getLogger('services.reporting')

# Older senders used approval/rejection for the same states.
CONVERSION_TYPES = {NOTIFICATION_CONVERSION, 'approval'}
CANCEL_TYPES = {NOTIFICATION_CANCEL, 'rejection'}

ROLLUP_COUNTERS = ('total', 'leads', 'conversoes', 'cancelados', 'trash')


class InvalidDateError(ValueError):
    """Raised for a date query parameter that is not YYYY-MM-DD or 'today'."""


# ── Parameter helpers ────────────────────────────────────────────────────────

def parse_day(value: Optional[str], today: Optional[date] = None) -> Optional[date]:
    if value is None or not str(value).strip():
        return None
    text = str(value).strip()
    if text.lower() == 'today':
        return today or local_today()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise InvalidDateError(f'Invalid date: {text}. Use YYYY-MM-DD')


def resolve_range(day=None, start=None, end=None,
                  default_today: bool = False) -> Optional[Tuple[date, date]]:
    """
    (start, end) inclusive from date | startDate/endDate query parameters.

    `day` wins over a range. An open-ended range is closed with date.min /
    date.max. Returns None when no filter was given and default_today is off.
    """
    single = parse_day(day)
    if single is not None:
        return single, single
    start_day, end_day = parse_day(start), parse_day(end)
    if start_day is None and end_day is None:
        if default_today:
            today = local_today()
            return today, today
        return None
    return start_day or date.min, end_day or date.max


# ── Row classification ───────────────────────────────────────────────────────

def normalize_label(value: Optional[str]) -> str:
    """Empty, 'N/A' and 'sem-trackeamento' hierarchy values collapse to 'untracked'."""
    if value is None:
        return UNTRACKED
    text = str(value).strip()
    if text.lower() in UNTRACKED_ALIASES:
        return UNTRACKED
    return text


def backfilled_hierarchy(record: LeadRecord) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """campaign/adset/ad, falling back to sub-ids for rows stored before the mapping existed."""
    def clean(v):
        return v if v and str(v).strip() else None
    campaign = clean(record.campaign) or clean(record.sub_id6) or clean(record.sub_id3)
    adset = clean(record.adset) or clean(record.sub_id5)
    ad = clean(record.ad) or clean(record.sub_id4)
    return campaign, adset, ad


def state_bucket(notification_type: Optional[str]) -> str:
    if notification_type in CONVERSION_TYPES:
        return 'conversoes'
    if notification_type in CANCEL_TYPES:
        return 'cancelados'
    if notification_type == NOTIFICATION_TRASH:
        return 'trash'
    return 'leads'


def _sort_key(record: LeadRecord):
    return (record.created_at, record.id)


def select_identities(records) -> Dict[str, Tuple[LeadRecord, LeadRecord]]:
    """identity → (first-seen row, latest-status row)."""
    selected = {}
    for record in records:
        identity = record.identity
        current = selected.get(identity)
        if current is None:
            selected[identity] = (record, record)
            continue
        first, latest = current
        if _sort_key(record) < _sort_key(first):
            first = record
        if _sort_key(record) > _sort_key(latest):
            latest = record
        selected[identity] = (first, latest)
    return selected


def _conversion_payout(record: LeadRecord) -> float:
    if record.notification_type in CONVERSION_TYPES and record.payout is not None:
        return float(record.payout)
    return 0.0


class ReportingEngine:
    """Read-only queries for the dashboard. One engine per request session."""

    def __init__(self, session):
        self.session = session
        self.store = LeadStore(session)

    # ── Identity selection ──────────────────────────────────────────────

    def identities(self, date_range: Optional[Tuple[date, date]], offer_id=None,
                   category=None) -> List[Tuple[LeadRecord, LeadRecord]]:
        """
        (first-seen, latest) pairs for every lead whose first-seen row is
        attributed inside date_range (all leads when date_range is None).
        """
        if date_range is None:
            rows = self.store.list_all(offer_id=offer_id, category=category)
            return list(select_identities(rows).values())

        start, end = date_range
        rows = self.store.list_by_date_and_filters(start, end, offer_id=offer_id, category=category)
        pairs = []
        for first, latest in select_identities(rows).values():
            day = first.attribution_date
            if day is not None and start <= day <= end:
                pairs.append((first, latest))
        return pairs

    # ── Listings ────────────────────────────────────────────────────────

    def conversions(self, date_range=None, offer_id=None, category=None) -> List[Dict]:
        """Raw rows with sub-id backfilled hierarchy, newest attribution date first."""
        start, end = date_range if date_range else (None, None)
        rows = self.store.list_all(offer_id=offer_id, category=category, start=start, end=end)
        rows.sort(key=lambda r: (r.attribution_date or date.min, r.created_at, r.id), reverse=True)
        result = []
        for row in rows:
            item = row.to_dict()
            item['campaign'], item['adset'], item['ad'] = backfilled_hierarchy(row)
            attribution = row.attribution_date
            item['date'] = attribution.isoformat() if attribution else None
            result.append(item)
        return result

    def extract(self, date_range=None, offer_id=None, category=None) -> List[Dict]:
        """Every stored postback row, newest first."""
        start, end = date_range if date_range else (None, None)
        rows = self.store.list_all(offer_id=offer_id, category=category, start=start, end=end)
        return [row.to_dict() for row in rows]

    def leads_for_day(self, day: date) -> Dict:
        """Latest state of every lead first seen on `day`."""
        pairs = sorted(self.identities((day, day)), key=lambda p: _sort_key(p[1]), reverse=True)
        leads = []
        for first, latest in pairs:
            item = latest.to_dict()
            item['campaign'], item['adset'], item['ad'] = backfilled_hierarchy(first)
            leads.append(item)
        return {'date': day.isoformat(), 'total': len(leads), 'leads': leads}

    def conversion_dates(self) -> List[Dict]:
        """Per attribution day: row count, open leads, conversions and converted payout."""
        days = defaultdict(lambda: {'count': 0, 'leads': 0, 'conversions': 0, 'total_payout': 0.0})
        for row in self.store.list_all():
            day = row.attribution_date
            if day is None:
                continue
            entry = days[day]
            entry['count'] += 1
            if row.notification_type == NOTIFICATION_LEAD:
                entry['leads'] += 1
            elif row.notification_type in CONVERSION_TYPES:
                entry['conversions'] += 1
            entry['total_payout'] += _conversion_payout(row)
        return [
            {'date': day.isoformat(), **entry, 'total_payout': round(entry['total_payout'], 2)}
            for day, entry in sorted(days.items(), reverse=True)
        ]

    def campaign_stats(self) -> List[Dict]:
        return [stat.to_dict() for stat in CampaignStatsMaintainer(self.session).list_all()]

    # ── Aggregates ──────────────────────────────────────────────────────

    def stats(self, date_range=None, offer_id=None, category=None) -> Dict:
        totals = {'total_leads': 0, 'leads': 0, 'confirmed': 0, 'cancelled': 0,
                  'trash': 0, 'total_payout': 0.0}
        rename = {'leads': 'leads', 'conversoes': 'confirmed', 'cancelados': 'cancelled', 'trash': 'trash'}
        for _first, latest in self.identities(date_range, offer_id, category):
            totals['total_leads'] += 1
            totals[rename[state_bucket(latest.notification_type)]] += 1
            totals['total_payout'] += _conversion_payout(latest)
        totals['total_payout'] = round(totals['total_payout'], 2)
        return totals

    def hierarchy(self, day: Optional[date] = None, offer_id=None, category=None) -> List[Dict]:
        """
        campaign → adsets → ads rollup for leads first seen on `day` (default today).

        Leaves are counted once; adset and campaign totals are sums of their
        children, so the levels always agree.
        """
        day = day or local_today()
        tree = {}
        for first, latest in self.identities((day, day), offer_id, category):
            campaign, adset, ad = (normalize_label(v) for v in backfilled_hierarchy(first))
            leaf = (
                tree.setdefault(campaign, {})
                .setdefault(adset, {})
                .setdefault(ad, _empty_node(ad))
            )
            leaf['total'] += 1
            leaf[state_bucket(latest.notification_type)] += 1
            leaf['total_payout'] += _conversion_payout(latest)

        result = []
        for campaign_name in sorted(tree):
            campaign_node = _empty_node(campaign_name)
            campaign_node['adsets'] = []
            for adset_name in sorted(tree[campaign_name]):
                adset_node = _empty_node(adset_name)
                adset_node['ads'] = []
                for ad_name in sorted(tree[campaign_name][adset_name]):
                    leaf = tree[campaign_name][adset_name][ad_name]
                    leaf['total_payout'] = round(leaf['total_payout'], 2)
                    adset_node['ads'].append(leaf)
                    _add_into(adset_node, leaf)
                campaign_node['adsets'].append(adset_node)
                _add_into(campaign_node, adset_node)
            result.append(campaign_node)
        return result

    def sub2_metrics(self, date_range=None, offer_id=None) -> Dict:
        """
        Per landing-page variant (sub_id2) lead metrics, joined with Clarity
        sessions on the normalized identifier.
        """
        per_sub2 = {}
        totals = {'total_leads': 0, 'leads': 0, 'conversions': 0, 'cancel': 0,
                  'trash': 0, 'total_payout': 0.0}
        for first, latest in self.identities(date_range, offer_id):
            sub2 = (first.sub_id2 or '').strip()
            if not sub2:
                continue
            entry = per_sub2.setdefault(sub2, {'total_leads': 0, 'leads': 0, 'conversions': 0,
                                               'cancel': 0, 'trash': 0, 'payouts': []})
            bucket = {'leads': 'leads', 'conversoes': 'conversions', 'cancelados': 'cancel',
                      'trash': 'trash'}[state_bucket(latest.notification_type)]
            for target in (entry, totals):
                target['total_leads'] += 1
                target[bucket] += 1
            if latest.notification_type in CONVERSION_TYPES and latest.payout is not None:
                entry['payouts'].append(float(latest.payout))
                totals['total_payout'] += float(latest.payout)

        sessions = self._clarity_sessions(date_range)
        metrics = []
        for sub2, entry in per_sub2.items():
            payouts = entry.pop('payouts')
            visits = sessions.get(normalize_identifier(sub2), 0)
            metrics.append({
                'sub2': sub2,
                **entry,
                'total_payout': round(sum(payouts), 2),
                'average_payout': round(sum(payouts) / len(payouts), 2) if payouts else 0,
                'clarity_sessions': visits,
                'conversion_rate': conversion_rate(entry['conversions'], visits, entry['total_leads']),
            })
        metrics.sort(key=lambda m: (-m['total_leads'], m['sub2']))
        totals['total_payout'] = round(totals['total_payout'], 2)
        return {'success': True, 'metrics': metrics, 'totals': totals}

    def _clarity_sessions(self, date_range) -> Dict[str, int]:
        """Clarity sessions per normalized identifier, for the range (default today)."""
        start, end = date_range if date_range else (local_today(), local_today())
        rows = (
            self.session.query(ClarityVisit)
            .filter(ClarityVisit.collected_on >= start, ClarityVisit.collected_on <= end)
            .all()
        )
        sessions = defaultdict(int)
        for row in rows:
            if row.identifier:
                sessions[normalize_identifier(row.identifier)] += row.sessions or 0
        return dict(sessions)

    def hourly(self, date_range=None, offer_id=None) -> List[Dict]:
        """24 buckets of arrivals by created_at hour: rows and distinct identities."""
        start, end = date_range if date_range else (None, None)
        rows = self.store.list_all(offer_id=offer_id, start=start, end=end)
        totals = [0] * 24
        identities = [set() for _ in range(24)]
        for row in rows:
            if row.created_at is None:
                continue
            totals[row.created_at.hour] += 1
            identities[row.created_at.hour].add(row.identity)
        return [
            {'hour': f'{h:02d}', 'total_leads': totals[h], 'unique_leads': len(identities[h])}
            for h in range(24)
        ]


def conversion_rate(conversions: int, sessions: int, total_leads: int) -> float:
    """Conversions per Clarity session (percent), or per lead when no sessions were recorded."""
    if sessions > 0:
        return round(conversions / sessions * 100, 2)
    if total_leads > 0:
        return round(conversions / total_leads * 100, 2)
    return 0.0


def _empty_node(name: str) -> Dict:
    node = {'name': name}
    node.update(dict.fromkeys(ROLLUP_COUNTERS, 0))
    node['total_payout'] = 0.0
    return node


def _add_into(parent: Dict, child: Dict):
    for key in ROLLUP_COUNTERS:
        parent[key] += child[key]
    parent['total_payout'] = round(parent['total_payout'] + child['total_payout'], 2)
