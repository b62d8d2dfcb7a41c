"""create soundcrons and soundcron_jobs tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('soundcrons',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('guild_id', sa.String(length=32), nullable=False),
    sa.Column('cron', sa.String(length=100), nullable=False),
    sa.Column('file_size', sa.BigInteger(), nullable=False),
    sa.Column('last_accessed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('guild_id', 'name', name='uq_soundcron_guild_name')
    )
    op.create_index(op.f('ix_soundcrons_guild_id'), 'soundcrons', ['guild_id'], unique=False)

    # No foreign key: occurrences outlive a deleted definition.
    op.create_table('soundcron_jobs',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('soundcron_id', sa.String(length=36), nullable=False),
    sa.Column('run_time', sa.DateTime(timezone=True), nullable=False),
    sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('soundcron_id', 'run_time', name='uq_soundcron_job_run_time')
    )
    op.create_index(op.f('ix_soundcron_jobs_soundcron_id'), 'soundcron_jobs', ['soundcron_id'], unique=False)
    op.create_index(op.f('ix_soundcron_jobs_run_time'), 'soundcron_jobs', ['run_time'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_soundcron_jobs_run_time'), table_name='soundcron_jobs')
    op.drop_index(op.f('ix_soundcron_jobs_soundcron_id'), table_name='soundcron_jobs')
    op.drop_table('soundcron_jobs')
    op.drop_index(op.f('ix_soundcrons_guild_id'), table_name='soundcrons')
    op.drop_table('soundcrons')
