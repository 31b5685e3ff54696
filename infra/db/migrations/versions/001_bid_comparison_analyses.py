"""add bid comparison analyses cache

Revision ID: 001_bid_comparison_analyses
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_bid_comparison_analyses'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # One row per comparison request fingerprint (see cache_keys.build_cache_key)
    op.create_table(
        'bid_comparison_analyses',
        sa.Column('id', sa.String(36), primary_key=True),

        sa.Column('cache_key', sa.Text, nullable=False, unique=True,
                  comment='anchor id | sorted comparison owner ids | sha256 of content set'),
        sa.Column('comparison_type', sa.Text, nullable=False, server_default='bid_to_bid',
                  comment='bid_to_bid or bid_to_takeoff'),

        # JSON-encoded payloads, persisted verbatim
        sa.Column('matching_result', sa.Text, nullable=False, comment='MatchingResult JSON'),
        sa.Column('analysis_result', sa.Text, nullable=False, comment='AnalysisResult / TakeoffAnalysisResult JSON'),

        sa.Column('cached_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_index('idx_bid_comparison_analyses_type', 'bid_comparison_analyses', ['comparison_type'])


def downgrade() -> None:
    op.drop_index('idx_bid_comparison_analyses_type', table_name='bid_comparison_analyses')
    op.drop_table('bid_comparison_analyses')
