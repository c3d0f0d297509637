"""Tests for leadtrack.postback.processor — end-to-end postback scenarios."""
from datetime import date
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from leadtrack.models.campaign_stat import CampaignStat
from leadtrack.models.lead_record import LeadRecord
from leadtrack.postback.processor import PostbackProcessor, PostbackStorageError
from leadtrack.services.locks import NullLockBackend

DAY1 = date(2024, 3, 1)
DAY2 = date(2024, 3, 2)
DAY3 = date(2024, 3, 3)

TRACKED = {'sub6': 'CampA', 'sub5': 'SetA', 'sub4': 'AdA'}


@pytest.fixture
def processor(db_session):
    return PostbackProcessor(db_session, lock_backend=NullLockBackend())


def stat_for(session, campaign='CampA', adset='SetA', ad='AdA'):
    return session.query(CampaignStat).filter_by(campaign=campaign, adset=adset, ad=ad).one()


class TestCreate:

    def test_new_lead_is_created(self, processor, db_session):
        result = processor.process(dict(TRACKED, leadId='L1', price='10'), 'lead', today=DAY1)
        record = db_session.get(LeadRecord, result.record_id)
        assert result.updated is False
        assert result.to_response() == {'success': True, 'id': result.record_id}
        assert record.campaign == 'CampA'
        assert record.date == DAY1
        assert record.payout == 10.0
        assert stat_for(db_session).leads == 1

    def test_leads_without_lead_id_never_merge(self, processor, db_session):
        first = processor.process({'offer_id': 'OFF1'}, 'lead', today=DAY1)
        second = processor.process({'offer_id': 'OFF1'}, 'lead', today=DAY1)
        assert first.record_id != second.record_id
        assert db_session.query(LeadRecord).count() == 2

    def test_malformed_date_uses_today(self, processor, db_session):
        result = processor.process({'leadId': 'L1', 'date': '2024-03-01T25:70:00'}, 'lead', today=DAY2)
        assert db_session.get(LeadRecord, result.record_id).date == DAY2

    def test_compact_date_is_calendar_day(self, processor, db_session):
        result = processor.process({'leadId': 'L1', 'date': '20240301'}, 'lead', today=DAY3)
        assert db_session.get(LeadRecord, result.record_id).date == DAY1

    def test_overflowing_price_stored_without_payout(self, processor, db_session):
        result = processor.process({'leadId': 'L1', 'price': '1e400'}, 'lead', today=DAY1)
        assert db_session.get(LeadRecord, result.record_id).payout is None

    def test_category_from_product(self, processor, db_session, make_product):
        make_product(offer_id='OFF1', account_name='Conta A')
        result = processor.process({'leadId': 'L1', 'offer_id': 'OFF1'}, 'lead', today=DAY1)
        assert db_session.get(LeadRecord, result.record_id).category == 'Conta A'

    def test_untracked_lead_counts_in_missing_bucket(self, processor, db_session):
        processor.process({'leadId': 'L1'}, 'lead', today=DAY1)
        assert stat_for(db_session, 'N/A', 'N/A', 'N/A').leads == 1


class TestStatusUpdate:

    def test_conversion_updates_lead_in_place(self, processor, db_session):
        processor.process(dict(TRACKED, leadId='L1', price='10'), 'lead', today=DAY1)
        result = processor.process({'leadId': 'L1', 'price': '25'}, 'conversao', today=DAY1)

        assert result.updated is True
        assert result.to_response()['updated'] is True
        record = db_session.get(LeadRecord, result.record_id)
        assert record.notification_type == 'conversao'
        assert record.payout == 25.0
        assert record.campaign == 'CampA'
        stat = stat_for(db_session)
        assert (stat.leads, stat.conversions) == (0, 1)
        assert db_session.query(LeadRecord).count() == 1

    def test_update_keeps_attribution_date(self, processor, db_session):
        created = processor.process(dict(TRACKED, leadId='L1'), 'lead', today=DAY1)
        processor.process({'leadId': 'L1'}, 'conversao', today=DAY2)
        processor.process({'leadId': 'L1', 'date': '2024-03-03'}, 'cancel', today=DAY3)
        processor.process({'leadId': 'L1'}, 'trash', today=DAY3)

        record = db_session.get(LeadRecord, created.record_id)
        assert record.date == DAY1
        assert record.notification_type == 'trash'

    def test_repeated_lead_updates_without_moving_date(self, processor, db_session):
        created = processor.process({'leadId': 'L1', 'date': '2024-03-01'}, 'lead', today=DAY1)
        again = processor.process({'leadId': 'L1', 'date': '2024-03-03'}, 'lead', today=DAY3)
        assert again.updated is True
        assert again.record_id == created.record_id
        record = db_session.get(LeadRecord, created.record_id)
        assert (record.notification_type, record.date) == ('lead', DAY1)
        assert stat_for(db_session, 'N/A', 'N/A', 'N/A').leads == 1

    def test_update_without_payout_keeps_payout(self, processor, db_session):
        created = processor.process({'leadId': 'L1', 'price': '10'}, 'lead', today=DAY1)
        processor.process({'leadId': 'L1'}, 'cancel', today=DAY1)
        assert db_session.get(LeadRecord, created.record_id).payout == 10.0

    def test_repeat_conversion_counts_once(self, processor, db_session):
        processor.process(dict(TRACKED, leadId='L1'), 'lead', today=DAY1)
        processor.process({'leadId': 'L1', 'price': '25'}, 'conversao', today=DAY1)
        again = processor.process({'leadId': 'L1', 'price': '25'}, 'conversao', today=DAY1)

        assert again.updated is True
        stat = stat_for(db_session)
        assert (stat.leads, stat.conversions) == (0, 1)

    def test_conversion_matched_by_offer_id(self, processor, db_session):
        created = processor.process(dict(TRACKED, offer_id='OFF1'), 'lead', today=DAY1)
        result = processor.process({'offer_id': 'OFF1', 'price': '97,50'}, 'conversao', today=DAY2)
        assert result.record_id == created.record_id
        assert db_session.get(LeadRecord, created.record_id).payout == 97.5

    def test_conversion_matched_by_hierarchy(self, processor, db_session):
        created = processor.process(dict(TRACKED, sub1='fb'), 'lead', today=DAY1)
        result = processor.process(dict(TRACKED, sub1='fb'), 'conversao', today=DAY1)
        assert result.record_id == created.record_id

    def test_unmatched_conversion_is_created(self, processor, db_session):
        result = processor.process({'leadId': 'ghost', 'price': '5'}, 'conversao', today=DAY1)
        assert result.updated is False
        assert db_session.get(LeadRecord, result.record_id).notification_type == 'conversao'

    def test_update_fills_missing_offer_id(self, processor, db_session):
        created = processor.process({'leadId': 'L1'}, 'lead', today=DAY1)
        processor.process({'leadId': 'L1', 'offer_id': 'OFF9'}, 'conversao', today=DAY1)
        processor.process({'leadId': 'L1', 'offer_id': 'OFF10'}, 'cancel', today=DAY1)
        assert db_session.get(LeadRecord, created.record_id).offer_id == 'OFF9'


class TestFailures:

    def test_insert_failure_raises_storage_error(self, processor):
        with patch.object(processor.store, 'insert',
                          side_effect=OperationalError('insert', {}, Exception('disk full'))):
            with pytest.raises(PostbackStorageError):
                processor.process({'leadId': 'L1'}, 'lead', today=DAY1)

    def test_update_failure_raises_storage_error(self, processor):
        processor.process({'leadId': 'L1'}, 'lead', today=DAY1)
        with patch.object(processor.store, 'update_by_id',
                          side_effect=OperationalError('update', {}, Exception('locked'))):
            with pytest.raises(PostbackStorageError):
                processor.process({'leadId': 'L1'}, 'conversao', today=DAY1)

    def test_stats_failure_does_not_fail_postback(self, processor, db_session):
        with patch.object(processor.stats, 'record_created',
                          side_effect=OperationalError('update', {}, Exception('locked'))):
            result = processor.process({'leadId': 'L1'}, 'lead', today=DAY1)
        assert db_session.get(LeadRecord, result.record_id) is not None
        assert db_session.query(CampaignStat).count() == 0

    def test_lock_held_around_processing(self, db_session):
        backend = NullLockBackend()
        processor = PostbackProcessor(db_session, lock_backend=backend)
        with patch.object(backend, 'hold', wraps=backend.hold) as hold:
            processor.process({'leadId': 'L1'}, 'lead', today=DAY1)
        hold.assert_called_once_with('lead:L1')
