"""
Admin routes — health checks and the test-environment wipe.
"""
import logging

from flask import Blueprint, jsonify

from leadtrack import config
from leadtrack.services.campaign_stats import CampaignStatsMaintainer
from leadtrack.services.circuit_breaker import get_all_breakers
from leadtrack.services.lead_store import LeadStore

logger = logging.getLogger('routes.admin')

bp = Blueprint('admin', __name__)


@bp.route('/health')
def health():
    return jsonify({'status': 'healthy'}), 200


@bp.route('/api/health')
def api_health():
    """Circuit-breaker state of every external service."""
    services = {name: cb.get_health() for name, cb in get_all_breakers().items()}
    degraded = any(s['state'] != 'closed' for s in services.values())
    return jsonify({'status': 'degraded' if degraded else 'healthy', 'services': services})


@bp.route('/api/health/<service>/reset', methods=['POST'])
def reset_circuit(service):
    breaker = get_all_breakers().get(service)
    if breaker is None:
        return jsonify({'ok': False, 'error': f'Unknown service: {service}'}), 404
    breaker.reset()
    return jsonify({'ok': True, 'service': service, 'state': breaker.state})


@bp.route('/api/clear-all', methods=['DELETE', 'GET'])
def clear_all():
    """Delete every lead record and campaign counter. Disabled unless ALLOW_CLEAR_ALL is set."""
    if not config.ALLOW_CLEAR_ALL:
        return jsonify({'success': False, 'error': 'clear-all is disabled (set ALLOW_CLEAR_ALL)'}), 403

    from leadtrack.database import get_session

    session = get_session()
    try:
        leads = LeadStore(session).delete_all()
        stats = CampaignStatsMaintainer(session).delete_all()
    finally:
        session.close()
    logger.warning("clear-all removed %d lead records and %d campaign stats", leads, stats)
    return jsonify({'success': True, 'lead_records_deleted': leads, 'campaign_stats_deleted': stats})
