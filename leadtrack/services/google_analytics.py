"""
Google Analytics (GA4) ingestion — page views per landing-page path.

A second traffic source next to Clarity. Rows go through the same
extract_identifier/store_visits path into clarity_visits, keyed on
(url, day), so reporting does not care which source filled them.

Credentials are a service account: GA_CREDENTIALS holds the JSON itself or
a path to it; otherwise a few well-known filenames in GA_CREDENTIALS_DIR
are tried.
"""
import json
import logging
import os
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from google.analytics.data_v1beta import BetaAnalyticsDataClient
from google.analytics.data_v1beta.types import DateRange, Dimension, Metric, RunReportRequest
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions

from leadtrack.config import GA_BASE_URL, GA_CREDENTIALS, GA_CREDENTIALS_DIR, GA_PROPERTY_ID
from leadtrack.database import local_today
from leadtrack.services.circuit_breaker import get_breaker
from leadtrack.services.clarity import store_visits, to_int

logger = logging.getLogger('services.google_analytics')

CREDENTIAL_FILENAMES = (
    'credentials.json',
    'ga-credentials.json',
    'google-analytics-credentials.json',
    'service-account.json',
)
# GA4 caps a single runReport page at this many rows.
REPORT_ROW_LIMIT = 100000
MAX_NUM_OF_DAYS = 30


class GoogleAnalyticsError(Exception):
    """GA report failed, or the integration is not configured."""


# ── Credentials ─────────────────────────────────────────────────────────────

def find_credentials() -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
    """(source, service-account info); source is 'env', a file path, or None."""
    paths = []
    if GA_CREDENTIALS:
        if os.path.isfile(GA_CREDENTIALS):
            paths.append(GA_CREDENTIALS)
        else:
            try:
                return 'env', json.loads(GA_CREDENTIALS)
            except ValueError:
                logger.warning("GA_CREDENTIALS is neither service-account JSON nor an existing file")
    paths.extend(os.path.join(GA_CREDENTIALS_DIR, name) for name in CREDENTIAL_FILENAMES)

    for path in paths:
        if not os.path.isfile(path):
            continue
        try:
            with open(path, encoding='utf-8') as f:
                return path, json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Unreadable credentials file %s: %s", path, e)
    return None, None


def ga_status() -> Dict[str, Any]:
    source, info = find_credentials()
    has_property_id = bool(GA_PROPERTY_ID)
    has_credentials = info is not None
    missing = []
    if not has_property_id:
        missing.append('GA_PROPERTY_ID')
    if not has_credentials:
        missing.append('GA_CREDENTIALS (service-account JSON or file)')
    return {
        'configured': has_property_id and has_credentials,
        'property_id': GA_PROPERTY_ID or None,
        'has_property_id': has_property_id,
        'has_credentials': has_credentials,
        'credentials_source': 'GA_CREDENTIALS' if source == 'env' else source,
        'message': 'Google Analytics configured' if not missing else 'Configure: ' + ', '.join(missing),
    }


def _client() -> BetaAnalyticsDataClient:
    source, info = find_credentials()
    if info is None:
        raise GoogleAnalyticsError('Google Analytics credentials not found; set GA_CREDENTIALS')
    if info.get('type') != 'service_account':
        raise GoogleAnalyticsError(f'Credentials from {source} are not a service account')
    try:
        client = BetaAnalyticsDataClient.from_service_account_info(info)
    except ValueError as e:
        raise GoogleAnalyticsError(f'Invalid service-account credentials: {e}') from e
    logger.info("Google Analytics client ready for %s", info.get('client_email'))
    return client


# ── Data API ────────────────────────────────────────────────────────────────

def fetch_report(client, start: date, end: date):
    """One runReport call: page views and active users per page path."""
    request = RunReportRequest(
        property=f'properties/{GA_PROPERTY_ID}',
        date_ranges=[DateRange(start_date=start.isoformat(), end_date=end.isoformat())],
        dimensions=[Dimension(name='pagePath')],
        metrics=[Metric(name='screenPageViews'), Metric(name='activeUsers')],
        limit=REPORT_ROW_LIMIT,
    )
    return client.run_report(request)


def report_rows(response) -> List[Dict[str, Any]]:
    """(url, sessions, unique_users) rows; relative paths get GA_BASE_URL prefixed."""
    rows = {}
    for row in response.rows:
        path = row.dimension_values[0].value if row.dimension_values else ''
        if not path:
            continue
        url = path if path.startswith('http') else f'{GA_BASE_URL}{path}'
        metrics = [m.value for m in row.metric_values]
        rows[url] = {
            'url': url,
            'sessions': to_int(metrics[0] if metrics else 0),
            'unique_users': to_int(metrics[1] if len(metrics) > 1 else 0),
        }
    if len(response.rows) >= REPORT_ROW_LIMIT:
        logger.warning("GA report hit the %d row limit; some paths are missing", REPORT_ROW_LIMIT)
    return list(rows.values())


def update_from_google_analytics(session, num_of_days: int = 1, day: Optional[date] = None) -> Dict[str, Any]:
    """
    Pull today-(n-1)..today and store the totals under today's date.

    Configuration problems raise GoogleAnalyticsError without touching the
    breaker; API failures trip it. CircuitOpenError propagates.
    """
    day = day or local_today()
    num_of_days = max(1, min(MAX_NUM_OF_DAYS, int(num_of_days or 1)))
    if not GA_PROPERTY_ID:
        raise GoogleAnalyticsError('GA_PROPERTY_ID is not configured')
    client = _client()
    start = day - timedelta(days=num_of_days - 1)

    breaker = get_breaker('google_analytics')
    try:
        response = breaker.call(fetch_report, client, start, day)
    except (google_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
        raise GoogleAnalyticsError(f'Google Analytics request failed: {e}') from e

    rows = report_rows(response)
    stored = store_visits(session, rows, day)
    session.commit()

    logger.info("Stored %d Google Analytics URLs for %s (%s..%s)", stored, day, start, day)
    return {
        'success': True,
        'message': 'Google Analytics data updated',
        'records_stored': stored,
        'total_rows': len(rows),
        'start_date': start.isoformat(),
        'end_date': day.isoformat(),
    }
