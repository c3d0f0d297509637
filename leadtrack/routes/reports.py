"""
Reporting routes — read-only JSON for the dashboard.

Date filters: `date` (YYYY-MM-DD or 'today') or `startDate`/`endDate`.
Entity filters: `offerId`, `category` (or `categoria`). An unparsable date is a 400.
"""
import logging

from flask import Blueprint, request, jsonify

from leadtrack.services.reporting import InvalidDateError, ReportingEngine, parse_day, resolve_range

logger = logging.getLogger('routes.reports')

bp = Blueprint('reports', __name__)


def _range_from_args(default_today=False):
    return resolve_range(
        day=request.args.get('date'),
        start=request.args.get('startDate'),
        end=request.args.get('endDate'),
        default_today=default_today,
    )


def _filters():
    return {
        'offer_id': request.args.get('offerId') or None,
        'category': request.args.get('category') or request.args.get('categoria') or None,
    }


def _run(report):
    """Open a session, run `report(engine)`, map bad dates to 400."""
    from leadtrack.database import get_session

    session = get_session()
    try:
        return jsonify(report(ReportingEngine(session)))
    except InvalidDateError as e:
        return jsonify({'error': str(e)}), 400
    finally:
        session.close()


@bp.route('/api/conversions')
def conversions():
    return _run(lambda engine: engine.conversions(_range_from_args(), **_filters()))


@bp.route('/api/extract')
def extract():
    return _run(lambda engine: engine.extract(_range_from_args(), **_filters()))


@bp.route('/api/hierarchy')
def hierarchy():
    return _run(lambda engine: engine.hierarchy(parse_day(request.args.get('date')), **_filters()))


@bp.route('/api/stats')
def stats():
    return _run(lambda engine: engine.stats(_range_from_args(), **_filters()))


@bp.route('/api/leads/<day>')
def leads_for_day(day):
    def report(engine):
        parsed = parse_day(day)
        if parsed is None:
            raise InvalidDateError('Invalid date. Use YYYY-MM-DD')
        return engine.leads_for_day(parsed)
    return _run(report)


@bp.route('/api/conversions/dates')
def conversion_dates():
    return _run(lambda engine: engine.conversion_dates())


@bp.route('/api/campaign-stats')
def campaign_stats():
    return _run(lambda engine: engine.campaign_stats())


@bp.route('/api/metrics/sub2')
def sub2_metrics():
    return _run(lambda engine: engine.sub2_metrics(
        _range_from_args(), offer_id=request.args.get('offerId') or None,
    ))


@bp.route('/api/metrics/hours')
def hourly_metrics():
    return _run(lambda engine: {
        'success': True,
        'hours': engine.hourly(_range_from_args(), offer_id=request.args.get('offerId') or None),
    })
