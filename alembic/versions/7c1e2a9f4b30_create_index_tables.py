"""create_index_tables

Revision ID: 7c1e2a9f4b30
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = '7c1e2a9f4b30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create indexed_records, pds_registry and record_metrics."""
    op.create_table(
        'indexed_records',
        sa.Column('uri', sa.String(), nullable=False),
        sa.Column('content_hash', sa.Text(), nullable=False),
        sa.Column('pds_endpoint', sa.Text(), server_default='', nullable=False),
        sa.Column('collection', sa.Text(), server_default='', nullable=False),
        sa.Column('record_kind', sa.Text(), server_default='', nullable=False),
        sa.Column('title', sa.Text(), server_default='', nullable=False),
        sa.Column('record_json', sa.Text(), server_default='{}', nullable=False),
        sa.Column('indexed_at', sa.BigInteger(), nullable=False),
        sa.Column('last_synced_at', sa.BigInteger(), nullable=True),
        sa.Column('deleted_at', sa.BigInteger(), nullable=True),
        sa.Column('deletion_source', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('uri'),
    )
    op.create_index('idx_indexed_records_indexed_at', 'indexed_records', ['indexed_at'], unique=False)
    op.create_index('idx_indexed_records_pds', 'indexed_records', ['pds_endpoint'], unique=False)
    op.create_index('idx_indexed_records_deleted_at', 'indexed_records', ['deleted_at'], unique=False)

    op.create_table(
        'pds_registry',
        sa.Column('pds_url', sa.String(), nullable=False),
        sa.Column('discovery_source', sa.Text(), server_default='manual', nullable=False),
        sa.Column('status', sa.Text(), server_default='pending', nullable=False),
        sa.Column('discovered_at', sa.BigInteger(), nullable=False),
        sa.Column('last_scan_at', sa.BigInteger(), nullable=True),
        sa.Column('next_scan_at', sa.BigInteger(), nullable=True),
        sa.Column('consecutive_failures', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('pds_url'),
    )
    op.create_index('idx_pds_registry_status', 'pds_registry', ['status'], unique=False)
    op.create_index('idx_pds_registry_next_scan', 'pds_registry', ['next_scan_at'], unique=False)

    op.create_table(
        'record_metrics',
        sa.Column('uri', sa.String(), nullable=False),
        sa.Column('total_views', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('unique_views', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('total_downloads', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('unique_downloads', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('flushed_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('uri'),
    )


def downgrade() -> None:
    op.drop_table('record_metrics')
    op.drop_index('idx_pds_registry_next_scan', table_name='pds_registry')
    op.drop_index('idx_pds_registry_status', table_name='pds_registry')
    op.drop_table('pds_registry')
    op.drop_index('idx_indexed_records_deleted_at', table_name='indexed_records')
    op.drop_index('idx_indexed_records_pds', table_name='indexed_records')
    op.drop_index('idx_indexed_records_indexed_at', table_name='indexed_records')
    op.drop_table('indexed_records')
