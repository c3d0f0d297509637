"""Tests for leadtrack.services.reporting — identity folding and rollups."""
from datetime import date, datetime
from unittest.mock import patch

import pytest

from leadtrack.models.clarity import ClarityVisit
from leadtrack.models.lead_record import LeadRecord
from leadtrack.services.reporting import (
    InvalidDateError, ReportingEngine, backfilled_hierarchy, conversion_rate,
    normalize_label, parse_day, resolve_range, select_identities, state_bucket,
)

DAY1 = date(2024, 3, 1)
DAY2 = date(2024, 3, 2)


@pytest.fixture
def engine(db_session):
    return ReportingEngine(db_session)


class TestParameters:

    def test_parse_day(self):
        assert parse_day('2024-03-01') == DAY1
        assert parse_day('2024-03-01T10:00:00') == DAY1
        assert parse_day('today', today=DAY2) == DAY2
        assert parse_day(None) is None
        assert parse_day('  ') is None

    def test_parse_day_rejects_garbage(self):
        with pytest.raises(InvalidDateError):
            parse_day('03/01/2024')

    def test_single_day_wins_over_range(self):
        assert resolve_range(day='2024-03-02', start='2024-01-01', end='2024-01-31') == (DAY2, DAY2)

    def test_open_ended_range(self):
        assert resolve_range(start='2024-03-01') == (DAY1, date.max)
        assert resolve_range(end='2024-03-01') == (date.min, DAY1)

    def test_no_filter(self):
        assert resolve_range() is None
        with patch('leadtrack.services.reporting.local_today', return_value=DAY2):
            assert resolve_range(default_today=True) == (DAY2, DAY2)


class TestClassification:

    @pytest.mark.parametrize('value', [None, '', '  ', 'N/A', 'n/a', 'sem-trackeamento', 'untracked'])
    def test_untracked_labels(self, value):
        assert normalize_label(value) == 'untracked'

    def test_real_label_kept(self):
        assert normalize_label(' CampA ') == 'CampA'

    def test_backfilled_hierarchy(self):
        record = LeadRecord(campaign=None, adset='', ad=None, sub_id6=None, sub_id3='S3',
                            sub_id5='S5', sub_id4='S4')
        assert backfilled_hierarchy(record) == ('S3', 'S5', 'S4')

    def test_backfill_prefers_sub6_over_sub3(self):
        record = LeadRecord(sub_id6='S6', sub_id3='S3')
        assert backfilled_hierarchy(record)[0] == 'S6'

    def test_state_buckets(self):
        assert state_bucket('lead') == 'leads'
        assert state_bucket('conversao') == 'conversoes'
        assert state_bucket('approval') == 'conversoes'
        assert state_bucket('rejection') == 'cancelados'
        assert state_bucket('trash') == 'trash'

    def test_select_identities_first_and_latest(self):
        first = LeadRecord(id=1, lead_id='L1', created_at=datetime(2024, 3, 1, 9))
        latest = LeadRecord(id=2, lead_id='L1', created_at=datetime(2024, 3, 2, 9))
        solo = LeadRecord(id=3, lead_id=None, created_at=datetime(2024, 3, 1, 9))
        selected = select_identities([latest, solo, first])
        assert selected['L1'] == (first, latest)
        assert selected['unique_3'] == (solo, solo)


class TestHierarchy:

    def test_first_seen_decides_day_and_campaign(self, engine, make_record):
        make_record(lead_id='L1', campaign='CampA', date=DAY1, created_at=datetime(2024, 3, 1, 9))
        make_record(lead_id='L1', campaign='CampB', notification_type='conversao', payout=50.0,
                    date=DAY2, created_at=datetime(2024, 3, 2, 9))

        tree = engine.hierarchy(DAY1)
        assert [c['name'] for c in tree] == ['CampA']
        assert tree[0]['conversoes'] == 1
        assert tree[0]['leads'] == 0
        assert tree[0]['total_payout'] == 50.0
        assert engine.hierarchy(DAY2) == []

    def test_untracked_rows_grouped(self, engine, make_record):
        make_record(campaign=None, adset=None, ad=None)
        make_record(campaign='N/A', adset='sem-trackeamento', ad='')
        tree = engine.hierarchy(DAY1)
        assert len(tree) == 1
        assert tree[0]['name'] == 'untracked'
        assert tree[0]['total'] == 2
        assert tree[0]['adsets'][0]['ads'][0]['name'] == 'untracked'

    def test_levels_always_agree(self, engine, make_record):
        make_record(campaign='CampA', adset='SetA', ad='Ad1')
        make_record(campaign='CampA', adset='SetA', ad='Ad2', notification_type='conversao', payout=10.0)
        make_record(campaign='CampA', adset='SetB', ad='Ad1', notification_type='trash')
        make_record(campaign='CampB', adset='SetC', ad='Ad9', notification_type='cancel')
        make_record(campaign='CampB', adset='SetC', ad='Ad9', notification_type='conversao', payout=2.5)

        tree = engine.hierarchy(DAY1)
        assert sum(c['total'] for c in tree) == 5
        for campaign in tree:
            for key in ('total', 'leads', 'conversoes', 'cancelados', 'trash'):
                assert campaign[key] == sum(a[key] for a in campaign['adsets'])
                for adset in campaign['adsets']:
                    assert adset[key] == sum(ad[key] for ad in adset['ads'])
            for adset in campaign['adsets']:
                for ad in adset['ads']:
                    assert ad['total'] == ad['leads'] + ad['conversoes'] + ad['cancelados'] + ad['trash']
        assert tree[0]['total_payout'] == 10.0
        assert tree[1]['total_payout'] == 2.5

    def test_filters_restrict_population(self, engine, make_record):
        make_record(offer_id='OFF1', category='Conta A')
        make_record(offer_id='OFF2', category='Conta B')
        assert engine.hierarchy(DAY1, offer_id='OFF1')[0]['total'] == 1
        assert engine.hierarchy(DAY1, category='Conta B')[0]['total'] == 1


class TestStats:

    def test_counts_latest_state_per_identity(self, engine, make_record):
        make_record(lead_id='L1', created_at=datetime(2024, 3, 1, 9))
        make_record(lead_id='L1', notification_type='conversao', payout=30.0,
                    created_at=datetime(2024, 3, 1, 11))
        make_record(lead_id='L2', notification_type='cancel')
        make_record(notification_type='trash')
        make_record()

        stats = engine.stats((DAY1, DAY1))
        assert stats == {'total_leads': 4, 'leads': 1, 'confirmed': 1, 'cancelled': 1,
                         'trash': 1, 'total_payout': 30.0}

    def test_all_time_when_no_range(self, engine, make_record):
        make_record(date=DAY1)
        make_record(date=DAY2)
        assert engine.stats()['total_leads'] == 2


class TestListings:

    def test_leads_for_day(self, engine, make_record):
        make_record(lead_id='L1', campaign='CampA', created_at=datetime(2024, 3, 1, 9))
        make_record(lead_id='L1', campaign=None, notification_type='conversao',
                    date=DAY2, created_at=datetime(2024, 3, 2, 9))
        result = engine.leads_for_day(DAY1)
        assert result['date'] == '2024-03-01'
        assert result['total'] == 1
        assert result['leads'][0]['notification_type'] == 'conversao'
        assert result['leads'][0]['campaign'] == 'CampA'

    def test_conversions_backfill_and_order(self, engine, make_record):
        make_record(campaign=None, sub_id6='S6', date=DAY1)
        make_record(date=DAY2)
        rows = engine.conversions()
        assert [r['date'] for r in rows] == ['2024-03-02', '2024-03-01']
        assert rows[1]['campaign'] == 'S6'

    def test_extract_respects_range(self, engine, make_record):
        make_record(date=DAY1)
        make_record(date=DAY2)
        assert len(engine.extract((DAY2, DAY2))) == 1
        assert len(engine.extract()) == 2

    def test_conversion_dates(self, engine, make_record):
        make_record(date=DAY1)
        make_record(date=DAY1, notification_type='conversao', payout=20.0)
        make_record(date=DAY1, notification_type='cancel', payout=99.0)
        make_record(date=DAY2, notification_type='conversao', payout=5.0)

        result = engine.conversion_dates()
        assert result[0] == {'date': '2024-03-02', 'count': 1, 'leads': 0,
                             'conversions': 1, 'total_payout': 5.0}
        assert result[1]['count'] == 3
        assert result[1]['total_payout'] == 20.0


class TestSub2Metrics:

    def test_joins_clarity_sessions(self, engine, make_record, db_session):
        make_record(sub_id2='gta-vsl2-ld1-pr2', notification_type='conversao', payout=100.0)
        make_record(sub_id2='gta-vsl2-ld1-pr2')
        make_record(sub_id2='other')
        make_record(sub_id2=None)
        db_session.add(ClarityVisit(url='https://x.com/gota/gta-vsl2-ld1/index.php',
                                    identifier='gta-vsl2-ld1', sessions=40, collected_on=DAY1))
        db_session.commit()

        result = engine.sub2_metrics((DAY1, DAY1))
        assert result['success'] is True
        first = result['metrics'][0]
        assert first['sub2'] == 'gta-vsl2-ld1-pr2'
        assert first['total_leads'] == 2
        assert first['conversions'] == 1
        assert first['clarity_sessions'] == 40
        assert first['conversion_rate'] == 2.5
        assert first['average_payout'] == 100.0
        other = result['metrics'][1]
        assert other['clarity_sessions'] == 0
        assert other['conversion_rate'] == 0.0
        assert result['totals']['total_leads'] == 3
        assert result['totals']['total_payout'] == 100.0

    def test_conversion_rate(self):
        assert conversion_rate(1, 40, 2) == 2.5
        assert conversion_rate(1, 0, 4) == 25.0
        assert conversion_rate(0, 0, 0) == 0.0


class TestHourly:

    def test_buckets_by_hour(self, engine, make_record):
        make_record(lead_id='L1', created_at=datetime(2024, 3, 1, 10, 0))
        make_record(lead_id='L1', created_at=datetime(2024, 3, 1, 10, 30))
        make_record(created_at=datetime(2024, 3, 1, 14, 5))

        hours = engine.hourly()
        assert len(hours) == 24
        assert hours[10] == {'hour': '10', 'total_leads': 2, 'unique_leads': 1}
        assert hours[14]['total_leads'] == 1
        assert hours[0]['total_leads'] == 0
