"""Initial schema: lead records, products, campaign stats, Clarity tables

Revision ID: 3f9a6c1d2e70
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a6c1d2e70'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'lead_records',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('lead_id', sa.Text(), nullable=True),
        sa.Column('offer_id', sa.Text(), nullable=True),
        sa.Column('campaign', sa.Text(), nullable=True),
        sa.Column('adset', sa.Text(), nullable=True),
        sa.Column('ad', sa.Text(), nullable=True),
        *[sa.Column(f'sub_id{n}', sa.Text(), nullable=True) for n in range(1, 9)],
        sa.Column('status', sa.Text(), nullable=True),
        sa.Column('payout', sa.Float(), nullable=True),
        sa.Column('category', sa.Text(), nullable=True),
        sa.Column('notification_type', sa.Text(), nullable=False, server_default='lead'),
        sa.Column('utm_source', sa.Text(), nullable=True),
        sa.Column('utm_medium', sa.Text(), nullable=True),
        sa.Column('placement', sa.Text(), nullable=True),
        sa.Column('pixel', sa.Text(), nullable=True),
        sa.Column('date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_lead_records_lead_id', 'lead_records', ['lead_id'])
    op.create_index('ix_lead_records_offer_id', 'lead_records', ['offer_id'])
    op.create_index('ix_lead_records_date', 'lead_records', ['date'])
    op.create_index('ix_lead_records_hierarchy', 'lead_records', ['sub_id1', 'campaign', 'adset', 'ad'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('offer_id', sa.Text(), nullable=False),
        sa.Column('account_name', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_products_offer_id', 'products', ['offer_id'])

    op.create_table(
        'campaign_stats',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('campaign', sa.Text(), nullable=False),
        sa.Column('campaign_id', sa.Text(), nullable=True),
        sa.Column('adset', sa.Text(), nullable=False),
        sa.Column('adset_id', sa.Text(), nullable=True),
        sa.Column('ad', sa.Text(), nullable=False),
        sa.Column('ad_id', sa.Text(), nullable=True),
        sa.Column('placement', sa.Text(), nullable=True),
        sa.Column('site_source', sa.Text(), nullable=True),
        sa.Column('leads', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('trash', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cancel', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('campaign', 'adset', 'ad', name='uq_campaign_stats_hierarchy'),
    )

    op.create_table(
        'clarity_visits',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('identifier', sa.Text(), nullable=True),
        sa.Column('sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unique_users', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('collected_on', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('url', 'collected_on', name='uq_clarity_visits_url_day'),
    )

    op.create_table(
        'clarity_requests',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('day', sa.Date(), nullable=False, unique=True),
        sa.Column('requests_made', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('clarity_requests')
    op.drop_table('clarity_visits')
    op.drop_table('campaign_stats')
    op.drop_index('ix_products_offer_id', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_lead_records_hierarchy', table_name='lead_records')
    op.drop_index('ix_lead_records_date', table_name='lead_records')
    op.drop_index('ix_lead_records_offer_id', table_name='lead_records')
    op.drop_index('ix_lead_records_lead_id', table_name='lead_records')
    op.drop_table('lead_records')
