"""Create drop allocation tables

Revision ID: a001_create_drop_allocation
Revises:
Create Date: 2026-10-19

This migration creates the users, drops, waitlist_entries and claims tables
used by the drop allocation engine.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a001_create_drop_allocation'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users are owned by the auth service; only created_at is read here
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='USER'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))
    )

    op.create_table(
        'drops',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('image_url', sa.String(), nullable=True),
        sa.Column('total_stock', sa.Integer(), nullable=False),
        sa.Column('claimed_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('claim_window_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('claim_window_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))
    )

    # Stock and window ordering constraints
    op.create_check_constraint('check_total_stock_positive', 'drops', 'total_stock > 0')
    op.create_check_constraint('check_claimed_stock_positive', 'drops', 'claimed_stock >= 0')
    op.create_check_constraint('check_claimed_lte_total', 'drops', 'claimed_stock <= total_stock')
    op.create_check_constraint('check_start_before_claim_window', 'drops', 'start_date <= claim_window_start')
    op.create_check_constraint('check_claim_window_order', 'drops', 'claim_window_start < claim_window_end')
    op.create_check_constraint('check_claim_window_before_end', 'drops', 'claim_window_end <= end_date')

    op.create_table(
        'waitlist_entries',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('drop_id', sa.String(), sa.ForeignKey('drops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('priority_score', sa.Integer(), nullable=True),
        sa.UniqueConstraint('user_id', 'drop_id', name='unique_waitlist_user_drop')
    )

    op.create_index('ix_waitlist_entries_user_id', 'waitlist_entries', ['user_id'])
    op.create_index('ix_waitlist_entries_drop_id', 'waitlist_entries', ['drop_id'])
    # Rank queries: count rows ahead of an entry within one drop
    op.create_index('idx_waitlist_drop_rank', 'waitlist_entries', ['drop_id', 'priority_score', 'joined_at'])
    # Rapid-action signal: a user's joins in the last hour
    op.create_index('idx_waitlist_user_joined', 'waitlist_entries', ['user_id', 'joined_at'])

    op.create_table(
        'claims',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('drop_id', sa.String(), sa.ForeignKey('drops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('claim_code', sa.String(64), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('user_id', 'drop_id', name='unique_claim_user_drop')
    )

    op.create_check_constraint(
        'check_claim_status',
        'claims',
        "status IN ('PENDING', 'COMPLETED', 'EXPIRED')"
    )

    op.create_index('ix_claims_user_id', 'claims', ['user_id'])
    op.create_index('ix_claims_drop_id', 'claims', ['drop_id'])
    # Expiry sweep: PENDING rows past expires_at
    op.create_index('idx_claims_status_expires', 'claims', ['status', 'expires_at'])


def downgrade() -> None:
    op.drop_index('idx_claims_status_expires', table_name='claims')
    op.drop_index('ix_claims_drop_id', table_name='claims')
    op.drop_index('ix_claims_user_id', table_name='claims')
    op.drop_table('claims')

    op.drop_index('idx_waitlist_user_joined', table_name='waitlist_entries')
    op.drop_index('idx_waitlist_drop_rank', table_name='waitlist_entries')
    op.drop_index('ix_waitlist_entries_drop_id', table_name='waitlist_entries')
    op.drop_index('ix_waitlist_entries_user_id', table_name='waitlist_entries')
    op.drop_table('waitlist_entries')

    op.drop_table('drops')
    op.drop_table('users')
