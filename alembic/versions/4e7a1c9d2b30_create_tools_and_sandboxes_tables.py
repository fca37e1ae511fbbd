"""create tools and sandboxes tables

Revision ID: 4e7a1c9d2b30
Revises:
Create Date: 2026-10-18 09:00:00.000000

The tools table holds the last known generated source per tool; the
sandboxes table holds one row per preview pipeline run.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4e7a1c9d2b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the tools and sandboxes tables."""
    op.create_table(
        'tools',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('code', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'sandboxes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tool_id', sa.Uuid(), nullable=False),
        sa.Column('generation_id', sa.String(length=100), nullable=True),

        # Driver and provider-native identity
        sa.Column('provider', sa.String(length=20), nullable=True),
        sa.Column('external_id', sa.String(length=200), nullable=True),
        sa.Column('url', sa.String(length=500), nullable=True),

        # State machine
        sa.Column('status', sa.String(length=30), nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),

        # Errors
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('error_history', sa.JSON(), nullable=False),

        # Validation flags
        sa.Column('build_passed', sa.Boolean(), nullable=True),
        sa.Column('tests_passed', sa.Boolean(), nullable=True),
        sa.Column('health_check_passed', sa.Boolean(), nullable=True),

        # Timestamps
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tool_id'], ['tools.id'], ondelete='CASCADE'),
    )

    op.create_index(op.f('ix_sandboxes_tool_id'), 'sandboxes', ['tool_id'], unique=False)
    op.create_index(op.f('ix_sandboxes_status'), 'sandboxes', ['status'], unique=False)


def downgrade() -> None:
    """Drop the sandboxes and tools tables."""
    op.drop_index(op.f('ix_sandboxes_status'), table_name='sandboxes')
    op.drop_index(op.f('ix_sandboxes_tool_id'), table_name='sandboxes')
    op.drop_table('sandboxes')
    op.drop_table('tools')
