"""
Analytics routes — Microsoft Clarity and Google Analytics ingestion.

Failures here stay here: a broken traffic export never touches postbacks.
"""
import logging

from flask import Blueprint, request, jsonify

from leadtrack.services.circuit_breaker import CircuitOpenError
from leadtrack.services.clarity import (
    MAX_NUM_OF_DAYS, ClarityError, QuotaExceededError, quota_status, update_from_clarity,
)
from leadtrack.services.google_analytics import (
    MAX_NUM_OF_DAYS as GA_MAX_NUM_OF_DAYS, GoogleAnalyticsError, ga_status, update_from_google_analytics,
)

logger = logging.getLogger('routes.analytics')

bp = Blueprint('analytics', __name__)


@bp.route('/api/clarity/requests-count')
def clarity_requests_count():
    from leadtrack.database import get_session

    session = get_session()
    try:
        return jsonify({'success': True, **quota_status(session)})
    finally:
        session.close()


@bp.route('/api/clarity/update', methods=['POST'])
def clarity_update():
    from leadtrack.database import get_session

    body = request.get_json(silent=True) or {}
    try:
        num_of_days = int(body.get('numOfDays', 1))
    except (TypeError, ValueError):
        return jsonify({'error': 'numOfDays must be an integer'}), 400
    if not 1 <= num_of_days <= MAX_NUM_OF_DAYS:
        return jsonify({'error': f'numOfDays must be between 1 and {MAX_NUM_OF_DAYS}'}), 400

    session = get_session()
    try:
        return jsonify(update_from_clarity(session, num_of_days))
    except QuotaExceededError as e:
        return jsonify({
            'error': 'Daily limit reached',
            'requests_made': e.requests_made,
            'requests_remaining': 0,
            'daily_limit': e.daily_limit,
        }), 429
    except CircuitOpenError as e:
        return jsonify({'error': str(e), 'retry_after': e.retry_after}), 503
    except ClarityError as e:
        session.rollback()
        logger.error("Clarity update failed: %s", e)
        return jsonify({'error': 'Failed to fetch Clarity data', 'details': str(e)}), 500
    finally:
        session.close()


@bp.route('/api/analytics/status')
def analytics_status():
    return jsonify({'success': True, **ga_status()})


@bp.route('/api/analytics/update', methods=['POST'])
def analytics_update():
    from leadtrack.database import get_session

    body = request.get_json(silent=True) or {}
    try:
        num_of_days = int(body.get('numOfDays', 1))
    except (TypeError, ValueError):
        return jsonify({'error': 'numOfDays must be an integer'}), 400
    if not 1 <= num_of_days <= GA_MAX_NUM_OF_DAYS:
        return jsonify({'error': f'numOfDays must be between 1 and {GA_MAX_NUM_OF_DAYS}'}), 400

    session = get_session()
    try:
        return jsonify(update_from_google_analytics(session, num_of_days))
    except CircuitOpenError as e:
        return jsonify({'error': str(e), 'retry_after': e.retry_after}), 503
    except GoogleAnalyticsError as e:
        session.rollback()
        logger.error("Google Analytics update failed: %s", e)
        return jsonify({'error': 'Failed to fetch Google Analytics data', 'details': str(e)}), 500
    finally:
        session.close()
