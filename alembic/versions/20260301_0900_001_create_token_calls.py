"""create token_calls table

Revision ID: 001
Revises: 
Create Date: 2026-03-01 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create token_calls with status stored as a plain string column."""
    op.create_table(
        'token_calls',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('token_id', sa.String(), nullable=False),
        sa.Column('call_timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reference_price', sa.Numeric(18, 8), nullable=False),
        sa.Column('reference_supply', sa.Numeric(30, 8), nullable=True),
        sa.Column('target_price', sa.Numeric(18, 8), nullable=False),
        sa.Column('timeframe_duration', sa.String(), nullable=True),
        sa.Column('target_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='PENDING'),
        sa.Column('verification_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('peak_price_during_period', sa.Numeric(18, 8), nullable=True),
        sa.Column('final_price_at_target_date', sa.Numeric(18, 8), nullable=True),
        sa.Column('target_hit_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('time_to_hit_ratio', sa.Float(), nullable=True),
        sa.Column('last_checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.String(), nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status != 'VERIFIED_SUCCESS' OR target_hit_timestamp IS NOT NULL",
            name='ck_token_calls_success_hit_timestamp'
        ),
        sa.CheckConstraint(
            "status != 'VERIFIED_SUCCESS' OR time_to_hit_ratio IS NOT NULL",
            name='ck_token_calls_success_hit_ratio'
        ),
        sa.CheckConstraint(
            "time_to_hit_ratio IS NULL OR (time_to_hit_ratio >= 0 AND time_to_hit_ratio <= 1)",
            name='ck_token_calls_hit_ratio_range'
        ),
        sa.CheckConstraint(
            "target_date > call_timestamp",
            name='ck_token_calls_target_after_call'
        ),
    )
    op.create_index('ix_token_calls_status_target_date', 'token_calls', ['status', 'target_date'])
    op.create_index('ix_token_calls_token_id', 'token_calls', ['token_id'])
    op.create_index('ix_token_calls_user_id', 'token_calls', ['user_id'])


def downgrade() -> None:
    """Drop token_calls table."""
    op.drop_index('ix_token_calls_user_id', table_name='token_calls')
    op.drop_index('ix_token_calls_token_id', table_name='token_calls')
    op.drop_index('ix_token_calls_status_target_date', table_name='token_calls')
    op.drop_table('token_calls')
