"""Create trade negotiation tables: listings, trades, trade_items, item_locks, cash_settlement_intents

Revision ID: 001_create_trade_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_create_trade_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Local projection of the inventory service's listings
    op.create_table(
        'listings',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(200), nullable=False, server_default=''),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_tradeable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_listings_owner_id', 'listings', ['owner_id'])

    op.create_table(
        'trades',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('trade_number', sa.String(32), nullable=False),
        sa.Column('initiator_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('receiver_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(24), nullable=False, server_default='pending'),
        sa.Column('cash_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('cash_payer_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('initiator_message', sa.Text(), nullable=True),
        sa.Column('receiver_message', sa.Text(), nullable=True),
        sa.Column('cancel_reason', sa.String(500), nullable=True),
        sa.Column('expired', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('response_deadline', sa.DateTime(timezone=True), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('initiator_shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('receiver_shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('initiator_delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('receiver_delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('initiator_carrier', sa.String(50), nullable=True),
        sa.Column('initiator_tracking_number', sa.String(100), nullable=True),
        sa.Column('receiver_carrier', sa.String(50), nullable=True),
        sa.Column('receiver_tracking_number', sa.String(100), nullable=True),
        sa.Column('root_trade_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('supersedes_trade_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('trades.id', ondelete='SET NULL'), nullable=True),
        sa.Column('superseded_by_trade_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('initiator_id <> receiver_id', name='ck_trades_distinct_participants'),
        sa.CheckConstraint('cash_amount >= 0', name='ck_trades_cash_non_negative'),
        sa.CheckConstraint('NOT (completed_at IS NOT NULL AND cancelled_at IS NOT NULL)', name='ck_trades_terminal_exclusive'),
    )
    op.create_index('ix_trades_trade_number', 'trades', ['trade_number'], unique=True)
    op.create_index('ix_trades_initiator_id', 'trades', ['initiator_id'])
    op.create_index('ix_trades_receiver_id', 'trades', ['receiver_id'])
    op.create_index('ix_trades_root_trade_id', 'trades', ['root_trade_id'])
    # Sweeper scan: pending trades ordered by deadline
    op.create_index('idx_trades_status_deadline', 'trades', ['status', 'response_deadline'])

    op.create_table(
        'trade_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('trade_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('trades.id', ondelete='CASCADE'), nullable=False),
        sa.Column('listing_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('side', sa.String(10), nullable=False),
        sa.Column('value_at_trade', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_order', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_trade_items_trade_id', 'trade_items', ['trade_id'])
    op.create_index('ix_trade_items_listing_id', 'trade_items', ['listing_id'])

    # One row per locked listing; the primary key forbids double commitment
    op.create_table(
        'item_locks',
        sa.Column('listing_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('trade_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('trades.id', ondelete='CASCADE'), nullable=False),
        sa.Column('locked_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_item_locks_trade_id', 'item_locks', ['trade_id'])

    op.create_table(
        'cash_settlement_intents',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('trade_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('trades.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('payer_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('payee_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('commission', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('cash_settlement_intents')

    op.drop_index('ix_item_locks_trade_id', table_name='item_locks')
    op.drop_table('item_locks')

    op.drop_index('ix_trade_items_listing_id', table_name='trade_items')
    op.drop_index('ix_trade_items_trade_id', table_name='trade_items')
    op.drop_table('trade_items')

    op.drop_index('idx_trades_status_deadline', table_name='trades')
    op.drop_index('ix_trades_root_trade_id', table_name='trades')
    op.drop_index('ix_trades_receiver_id', table_name='trades')
    op.drop_index('ix_trades_initiator_id', table_name='trades')
    op.drop_index('ix_trades_trade_number', table_name='trades')
    op.drop_table('trades')

    op.drop_index('ix_listings_owner_id', table_name='listings')
    op.drop_table('listings')
