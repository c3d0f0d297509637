#!/usr/bin/env python3
"""
Seed postback data for checking the dashboard locally.

Replays a realistic postback sequence through the real processor, so the
records, counters and reports end up exactly as live traffic would leave them:
  1. Tracked leads across two campaigns, some later converted
  2. A conversion that arrives with only the offer id
  3. A cancel and a trash for the same campaign
  4. An untracked lead (no sub-ids at all)
  5. A postback with unsubstituted {placeholders}

Usage:
    python scripts/seed_test_data.py          # seed all scenarios
    python scripts/seed_test_data.py --clear  # wipe seeded data first

Requires DATABASE_URL (defaults to sqlite:///local.db).
"""
import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from leadtrack import create_app
from leadtrack.database import get_session, engine, Base
from leadtrack.models.lead_record import LeadRecord
from leadtrack.models.product import Product
from leadtrack.postback.processor import PostbackProcessor
from leadtrack.services.locks import NullLockBackend
from leadtrack.services.repairs import rebuild_campaign_stats

SEED_PREFIX = 'seed-'

PRODUCTS = [
    {'name': 'Gota Slim', 'offerId': 'seed-offer-gota', 'accountName': 'Conta A'},
    {'name': 'Flex Joint', 'offerId': 'seed-offer-flex', 'accountName': 'Conta B'},
]

# (notification type, query parameters)
POSTBACKS = [
    ('lead', {'leadId': 'seed-L1', 'offer_id': 'seed-offer-gota', 'sub1': 'fb', 'sub2': 'gta-vsl2-ld1-pr2',
              'sub6': 'Gota - Broad', 'sub5': 'Mulheres 35+', 'sub4': 'Video 01', 'price': '0'}),
    ('lead', {'leadId': 'seed-L2', 'offer_id': 'seed-offer-gota', 'sub1': 'fb', 'sub2': 'gta-vsl2-ld1',
              'sub6': 'Gota - Broad', 'sub5': 'Mulheres 35+', 'sub4': 'Video 02'}),
    ('lead', {'leadId': 'seed-L3', 'offer_id': 'seed-offer-flex', 'sub1': 'fb', 'sub2': 'flx-adv1',
              'utm_campaign': 'Flex - LAL', 'utm_content': 'LAL 1%', 'utm_term': 'Carrossel'}),
    ('lead', {'leadId': 'seed-L4', 'offer_id': 'seed-offer-flex', 'sub1': 'fb', 'sub2': 'flx-adv1',
              'utm_campaign': 'Flex - LAL', 'utm_content': 'LAL 1%', 'utm_term': 'Carrossel'}),
    ('lead', {'leadId': 'seed-L5', 'sub2': 'gta-vsl2-mn3'}),
    ('lead', {'leadId': '{leadId}', 'offer_id': '{offer_id}', 'sub6': '{sub6}'}),
    ('conversao', {'leadId': 'seed-L1', 'price': '147.00', 'status': 'approved'}),
    ('conversao', {'offer_id': 'seed-offer-flex', 'price': '97.50'}),
    ('cancel', {'leadId': 'seed-L2', 'status': 'rejected'}),
    ('trash', {'leadId': 'seed-L4'}),
]


def clear_seeded_data(session):
    """Delete seeded leads and products, then rebuild counters from what is left."""
    leads = session.query(LeadRecord).filter(
        (LeadRecord.lead_id.like(f'{SEED_PREFIX}%')) | (LeadRecord.offer_id.like(f'{SEED_PREFIX}%'))
    ).delete(synchronize_session=False)
    products = session.query(Product).filter(Product.offer_id.like(f'{SEED_PREFIX}%')).delete(
        synchronize_session=False)
    rebuild_campaign_stats(session)
    session.commit()
    print(f'Cleared {leads} lead records, {products} products.')


def seed_products(session):
    for payload in PRODUCTS:
        session.add(Product(name=payload['name'], offer_id=payload['offerId'],
                            account_name=payload['accountName']))
    session.commit()
    print(f'  {len(PRODUCTS)} products')


def replay_postbacks(session):
    processor = PostbackProcessor(session, lock_backend=NullLockBackend())
    for notification_type, params in POSTBACKS:
        result = processor.process(params, notification_type)
        verb = 'updated' if result.updated else 'created'
        print(f'  {notification_type:<10} → record #{result.record_id} {verb}')


def main():
    parser = argparse.ArgumentParser(description='Seed postback data for dashboard checks')
    parser.add_argument('--clear', action='store_true', help='Clear seeded data before seeding')
    parser.add_argument('--clear-only', action='store_true', help='Only clear, do not re-seed')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        # Ensure tables exist (for SQLite local dev)
        Base.metadata.create_all(engine)

        session = get_session()
        try:
            if args.clear or args.clear_only:
                clear_seeded_data(session)
                if args.clear_only:
                    return

            print('Seeding postbacks...')
            seed_products(session)
            replay_postbacks(session)
            print('\nDone! Try /api/hierarchy and /api/stats.')

        except Exception as e:
            session.rollback()
            print(f'Error: {e}')
            raise
        finally:
            session.close()


if __name__ == '__main__':
    main()
