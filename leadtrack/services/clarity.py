"""
Microsoft Clarity ingestion — page sessions per landing-page URL.

Clarity's export API allows only a handful of calls per project per day, so
every call is counted in clarity_requests and refused once CLARITY_DAILY_LIMIT
is reached. Visits are stored per (url, day) with the landing-page identifier
parsed from the URL; reporting joins that identifier to lead_records.sub_id2.
"""
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import requests

from leadtrack.config import CLARITY_API_TOKEN, CLARITY_API_URL, CLARITY_DAILY_LIMIT
from leadtrack.database import local_now, local_today
from leadtrack.models.clarity import ClarityRequestLog, ClarityVisit
from leadtrack.services.circuit_breaker import get_breaker

logger = logging.getLogger('services.clarity')

# The export API truncates every metric at this many rows.
EXPORT_ROW_CAP = 999
MAX_NUM_OF_DAYS = 3

_INDEX_PHP = re.compile(r'/([^/]+)/index\.php$')
_PR2_SUFFIX = re.compile(r'-?pr2$')


class ClarityError(Exception):
    """Clarity export failed or returned something unusable."""


class QuotaExceededError(Exception):
    """Daily Clarity request quota is used up."""
    def __init__(self, requests_made, daily_limit):
        self.requests_made = requests_made
        self.daily_limit = daily_limit
        super().__init__(f'Daily Clarity limit reached ({requests_made}/{daily_limit})')


# ── Identifiers ─────────────────────────────────────────────────────────────

def extract_identifier(url: Optional[str]) -> Optional[str]:
    """
    Landing-page variant from a Clarity URL.

    /ldr/gota/f01/vsl/gta-vsl2-ld1/index.php → gta-vsl2-ld1. Without an
    index.php, the second-to-last path segment; failing that, a sub2 query
    parameter.
    """
    if not url:
        return None
    parsed = urlparse(url)
    path = parsed.path or ''
    match = _INDEX_PHP.search(path)
    if match:
        return match.group(1)

    parts = [p for p in path.split('/') if p]
    if len(parts) >= 2 and 'index' not in parts[-2]:
        return parts[-2]

    query = parse_qs(parsed.query)
    for key in ('sub2', 'sub_id2', 'sub_id_2'):
        values = query.get(key)
        if values and values[0]:
            return values[0]
    return None


def normalize_identifier(value: Optional[str]) -> Optional[str]:
    """Join key between Clarity identifiers and sub_id2: no pr2 suffix, no underscores, lower-case."""
    if not value:
        return value
    text = _PR2_SUFFIX.sub('', value.strip())
    return text.replace('_', '').lower()


# ── Quota ───────────────────────────────────────────────────────────────────

def requests_made_on(session, day: date) -> int:
    row = session.query(ClarityRequestLog).filter_by(day=day).first()
    return row.requests_made if row else 0


def quota_status(session, day: Optional[date] = None) -> Dict[str, Any]:
    day = day or local_today()
    made = requests_made_on(session, day)
    return {
        'requests_made': made,
        'requests_remaining': max(0, CLARITY_DAILY_LIMIT - made),
        'daily_limit': CLARITY_DAILY_LIMIT,
        'date': day.isoformat(),
    }


def _count_request(session, day: date):
    row = session.query(ClarityRequestLog).filter_by(day=day).first()
    if row is None:
        row = ClarityRequestLog(day=day, requests_made=0)
        session.add(row)
    row.requests_made += 1
    row.updated_at = local_now()


# ── Export API ──────────────────────────────────────────────────────────────

def fetch_traffic(num_of_days: int = 1) -> List[Dict[str, Any]]:
    """Raw Clarity export, one request, URL dimension."""
    if not CLARITY_API_TOKEN:
        raise ClarityError('CLARITY_API_TOKEN is not configured')
    response = requests.get(
        CLARITY_API_URL,
        params={'numOfDays': num_of_days, 'dimension1': 'URL'},
        headers={
            'Authorization': f'Bearer {CLARITY_API_TOKEN}',
            'Content-Type': 'application/json',
        },
        timeout=30,
    )
    if response.status_code != 200:
        logger.error("Clarity export returned %d: %s", response.status_code, response.text[:500])
    response.raise_for_status()
    return response.json()


def traffic_rows(payload) -> List[Dict[str, Any]]:
    """(url, sessions, unique_users) rows from the Traffic metric of an export payload."""
    if not isinstance(payload, list):
        raise ClarityError('Unexpected Clarity response format')
    rows = {}
    for metric in payload:
        if metric.get('metricName') != 'Traffic' or not isinstance(metric.get('information'), list):
            continue
        information = metric['information']
        if len(information) >= EXPORT_ROW_CAP:
            logger.warning("Clarity Traffic export hit the %d row cap; some URLs are missing", EXPORT_ROW_CAP)
        for info in information:
            url = info.get('URL') or info.get('url') or info.get('pageUrl') or info.get('Url')
            if not url:
                continue
            rows[url] = {
                'url': url,
                'sessions': to_int(info.get('totalSessionCount')),
                'unique_users': to_int(info.get('distantUserCount')),
            }
    return list(rows.values())


def to_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def store_visits(session, rows, day: date) -> int:
    """Upsert one ClarityVisit per URL for `day`. Rows without an identifier are skipped."""
    stored = 0
    for row in rows:
        identifier = extract_identifier(row['url'])
        if not identifier:
            continue
        visit = session.query(ClarityVisit).filter_by(url=row['url'], collected_on=day).first()
        if visit is None:
            visit = ClarityVisit(url=row['url'], collected_on=day)
            session.add(visit)
        visit.identifier = identifier
        visit.sessions = row['sessions']
        visit.unique_users = row['unique_users']
        visit.updated_at = local_now()
        stored += 1
    return stored


def update_from_clarity(session, num_of_days: int = 1, day: Optional[date] = None) -> Dict[str, Any]:
    """
    Pull the Traffic export and store it under today's date.

    Raises QuotaExceededError before calling out when the daily limit is used
    up, CircuitOpenError while the clarity breaker is open, ClarityError on
    upstream failure. The quota counter only moves on a completed export.
    """
    day = day or local_today()
    num_of_days = max(1, min(MAX_NUM_OF_DAYS, int(num_of_days or 1)))

    made = requests_made_on(session, day)
    if made >= CLARITY_DAILY_LIMIT:
        raise QuotaExceededError(made, CLARITY_DAILY_LIMIT)

    breaker = get_breaker('clarity')
    try:
        payload = breaker.call(fetch_traffic, num_of_days)
    except requests.exceptions.RequestException as e:
        raise ClarityError(f'Clarity request failed: {e}') from e
    except ValueError as e:
        raise ClarityError(f'Clarity returned invalid JSON: {e}') from e

    rows = traffic_rows(payload)
    stored = store_visits(session, rows, day)
    _count_request(session, day)
    session.commit()

    status = quota_status(session, day)
    logger.info("Stored %d Clarity URLs for %s (%d/%d requests today)",
                stored, day, status['requests_made'], CLARITY_DAILY_LIMIT)
    return {
        'success': True,
        'urls_received': len(rows),
        'records_stored': stored,
        **status,
    }
