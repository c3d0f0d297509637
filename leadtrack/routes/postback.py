"""
Postback routes — inbound notifications from the affiliate network.

GET /postback          → notification type 'lead'
GET /postback/<type>   → lead | conversao | cancel | trash

Every query parameter is forwarded to the processor untouched. The response
only says whether a record was written, never whether it matched the lead
the network had in mind.
"""
import logging

from flask import Blueprint, request, jsonify

from leadtrack.config import NOTIFICATION_LEAD, NOTIFICATION_TYPES
from leadtrack.postback.processor import PostbackProcessor, PostbackStorageError

logger = logging.getLogger('routes.postback')

bp = Blueprint('postback', __name__)


def _handle(notification_type):
    from leadtrack.database import get_session

    params = request.args.to_dict(flat=True)
    session = get_session()
    try:
        result = PostbackProcessor(session).process(params, notification_type)
        return jsonify(result.to_response())
    except PostbackStorageError as e:
        return jsonify({'success': False, 'error': str(e)}), 500
    finally:
        session.close()


@bp.route('/postback')
def postback_lead():
    return _handle(NOTIFICATION_LEAD)


@bp.route('/postback/<notification_type>')
def postback_typed(notification_type):
    if notification_type not in NOTIFICATION_TYPES:
        return jsonify({
            'success': False,
            'error': f'Unknown notification type: {notification_type}',
        }), 404
    return _handle(notification_type)
