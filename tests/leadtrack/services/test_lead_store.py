"""Tests for leadtrack.services.lead_store — lookups, tie-breaks, writes, listings."""
from datetime import date, datetime

import pytest

from leadtrack.models.lead_record import LeadRecord
from leadtrack.services.lead_store import LeadStore


@pytest.fixture
def store(db_session):
    return LeadStore(db_session)


class TestFindByLeadId:

    def test_returns_none_without_id(self, store):
        assert store.find_by_lead_id(None) is None

    def test_oldest_wins(self, store, make_record):
        make_record(lead_id='L1', created_at=datetime(2024, 3, 2, 9))
        older = make_record(lead_id='L1', created_at=datetime(2024, 3, 1, 9))
        assert store.find_by_lead_id('L1').id == older.id

    def test_tie_broken_by_smallest_id(self, store, make_record):
        first = make_record(lead_id='L1', created_at=datetime(2024, 3, 1, 9))
        make_record(lead_id='L1', created_at=datetime(2024, 3, 1, 9))
        assert store.find_by_lead_id('L1').id == first.id


class TestFindByHierarchy:

    def test_exact_match_in_lead_state(self, store, make_record):
        rec = make_record(sub_id1='fb')
        assert store.find_by_hierarchy('fb', 'CampA', 'SetA', 'AdA').id == rec.id

    def test_ignores_non_lead_rows(self, store, make_record):
        make_record(sub_id1='fb', notification_type='conversao')
        assert store.find_by_hierarchy('fb', 'CampA', 'SetA', 'AdA') is None

    def test_missing_component_never_matches(self, store, make_record):
        make_record(sub_id1=None)
        assert store.find_by_hierarchy(None, 'CampA', 'SetA', 'AdA') is None


class TestFindBestMatch:
    """The first tier with any candidate wins, even over an older lower-tier match."""

    def test_lead_id_tier_beats_older_offer_match(self, store, make_record):
        make_record(offer_id='O1', created_at=datetime(2024, 1, 1))
        by_lead = make_record(lead_id='L1', created_at=datetime(2024, 3, 1))
        assert store.find_best_match(lead_id='L1', offer_id='O1').id == by_lead.id

    def test_offer_tier_when_lead_id_unknown(self, store, make_record):
        by_offer = make_record(offer_id='O1')
        assert store.find_best_match(lead_id='nope', offer_id='O1').id == by_offer.id

    def test_hierarchy_tier_last(self, store, make_record):
        rec = make_record(sub_id1='fb')
        match = store.find_best_match(lead_id=None, offer_id=None, sub1='fb',
                                      campaign='CampA', adset='SetA', ad='AdA')
        assert match.id == rec.id

    def test_no_match(self, store):
        assert store.find_best_match(lead_id='L9', offer_id='O9') is None


class TestWrites:

    def test_insert_returns_id_and_sets_created_at(self, store, db_session):
        record_id = store.insert({'lead_id': 'L1', 'notification_type': 'lead', 'date': date(2024, 3, 1)})
        row = db_session.get(LeadRecord, record_id)
        assert row.lead_id == 'L1'
        assert row.created_at is not None

    def test_update_by_id(self, store, make_record):
        rec = make_record(lead_id='L1')
        updated = store.update_by_id(rec.id, {'notification_type': 'trash', 'status': 'x'})
        assert updated.notification_type == 'trash'
        assert updated.status == 'x'

    def test_update_rejects_immutable_fields(self, store, make_record):
        rec = make_record()
        with pytest.raises(ValueError):
            store.update_by_id(rec.id, {'date': date(2020, 1, 1)})

    def test_update_unknown_id(self, store):
        assert store.update_by_id(999, {'status': 'x'}) is None


class TestListings:

    def test_null_date_falls_back_to_created_at(self, store, make_record):
        rec = make_record(date=None, created_at=datetime(2024, 3, 5, 23, 59))
        make_record(date=None, created_at=datetime(2024, 3, 6, 0, 1))
        rows = store.list_by_date_and_filters(date(2024, 3, 5), date(2024, 3, 5))
        assert [r.id for r in rows] == [rec.id]

    def test_related_rows_by_lead_id_included(self, store, make_record):
        earlier = make_record(lead_id='L1', date=date(2024, 3, 1))
        later = make_record(lead_id='L1', date=date(2024, 3, 2), created_at=datetime(2024, 3, 2, 8))
        rows = store.list_by_date_and_filters(date(2024, 3, 2), date(2024, 3, 2))
        assert {r.id for r in rows} == {earlier.id, later.id}

    def test_filters(self, store, make_record):
        make_record(offer_id='O1', category='Conta A')
        make_record(offer_id='O2', category='Conta B')
        assert len(store.list_all(offer_id='O1')) == 1
        assert len(store.list_all(category='Conta B')) == 1
        assert len(store.list_all()) == 2

    def test_list_all_newest_first(self, store, make_record):
        a = make_record(created_at=datetime(2024, 3, 1, 8))
        b = make_record(created_at=datetime(2024, 3, 1, 9))
        assert [r.id for r in store.list_all()] == [b.id, a.id]

    def test_list_all_open_ended_range(self, store, make_record):
        make_record(date=date(2024, 3, 1))
        make_record(date=date(2024, 2, 1))
        assert len(store.list_all(start=date(2024, 2, 15))) == 1
        assert len(store.list_all(end=date(2024, 2, 15))) == 1
