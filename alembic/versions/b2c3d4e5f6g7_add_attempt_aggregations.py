"""add attempt_aggregations outbox

Revision ID: b2c3d4e5f6g7
Revises: a1b2c3d4e5f6
Create Date: 2026-09-28 16:40:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'b2c3d4e5f6g7'
down_revision: Union[str, None] = 'a1b2c3d4e5f6'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One row per completed attempt; each step stamps its column once
    op.create_table(
        'attempt_aggregations',
        sa.Column('attempt_id', sa.Integer(), sa.ForeignKey('quiz_attempts.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('account_applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('engagement_applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_aggregations_pending', 'attempt_aggregations', ['account_applied_at', 'engagement_applied_at'])
    # Completed attempts that predate the outbox were aggregated inline
    op.execute(
        "INSERT INTO attempt_aggregations (attempt_id, account_applied_at, engagement_applied_at) "
        "SELECT id, completed_at, completed_at FROM quiz_attempts WHERE completed_at IS NOT NULL"
    )


def downgrade() -> None:
    op.drop_index('idx_aggregations_pending', table_name='attempt_aggregations')
    op.drop_table('attempt_aggregations')
