"""Persistent last-known-good comps results.

Revision ID: 001_comps_snapshots
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_comps_snapshots'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'comps_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cache_key', sa.String(512), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_index('ix_comps_snapshots_cache_key', 'comps_snapshots', ['cache_key'], unique=True)
    op.create_index('ix_comps_snapshots_expires_at', 'comps_snapshots', ['expires_at'])


def downgrade() -> None:
    op.drop_index('ix_comps_snapshots_expires_at', table_name='comps_snapshots')
    op.drop_index('ix_comps_snapshots_cache_key', table_name='comps_snapshots')
    op.drop_table('comps_snapshots')
