"""Add processing_history table

Revision ID: 001_processing_history
Revises:
Create Date: 2026-10-19

Append-only record of every completed enhancement:
who ran it, with which settings, what it cost and where the result lives.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_processing_history'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'processing_history',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('job_id', sa.String(), nullable=False),
        sa.Column('image_name', sa.String(), nullable=False, server_default='api_upload'),
        sa.Column('processing_type', sa.String(), nullable=False, server_default='general_enhancement'),
        sa.Column('enhancement_settings', sa.JSON(), nullable=True),
        sa.Column('credits_consumed', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(), nullable=False, server_default='completed'),
        sa.Column('result_url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_processing_history_user_id', 'processing_history', ['user_id'])
    op.create_index('ix_processing_history_job_id', 'processing_history', ['job_id'])
    op.create_index('ix_processing_history_created_at', 'processing_history', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_processing_history_created_at', table_name='processing_history')
    op.drop_index('ix_processing_history_job_id', table_name='processing_history')
    op.drop_index('ix_processing_history_user_id', table_name='processing_history')
    op.drop_table('processing_history')
