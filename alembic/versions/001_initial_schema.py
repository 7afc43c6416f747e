"""initial_schema_scans_reports_notifications

Revision ID: 001
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

wcag_level = sa.Enum('A', 'AA', 'AAA', name='wcaglevel')
scan_status = sa.Enum('PENDING', 'RUNNING', 'COMPLETED', 'FAILED', name='scanstatus')
batch_status = sa.Enum('PENDING', 'RUNNING', 'COMPLETED', 'FAILED', 'CANCELLED', 'STALE', name='batchstatus')
issue_impact = sa.Enum('CRITICAL', 'SERIOUS', 'MODERATE', 'MINOR', name='issueimpact')
report_format = sa.Enum('PDF', 'JSON', 'CSV', name='reportformat')
report_status = sa.Enum('PENDING', 'GENERATING', 'COMPLETED', 'FAILED', name='reportstatus')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # Create batch_scans table
    op.create_table(
        'batch_scans',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('homepage_url', sa.String(2048), nullable=False),
        sa.Column('wcag_level', wcag_level, nullable=False),
        sa.Column('status', batch_status, nullable=False),
        sa.Column('notification_email', sa.String(255), nullable=True),
        sa.Column('total_urls', sa.Integer(), nullable=False),
        sa.Column('completed_count', sa.Integer(), nullable=False),
        sa.Column('failed_count', sa.Integer(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_batch_scans_id'), 'batch_scans', ['id'], unique=False)
    op.create_index(op.f('ix_batch_scans_status'), 'batch_scans', ['status'], unique=False)

    # Create scans table
    op.create_table(
        'scans',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('batch_id', sa.String(), nullable=True),
        sa.Column('url', sa.String(2048), nullable=False),
        sa.Column('wcag_level', wcag_level, nullable=False),
        sa.Column('status', scan_status, nullable=False),
        sa.Column('notification_email', sa.String(255), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_issues', sa.Integer(), nullable=False),
        sa.Column('critical_count', sa.Integer(), nullable=False),
        sa.Column('serious_count', sa.Integer(), nullable=False),
        sa.Column('moderate_count', sa.Integer(), nullable=False),
        sa.Column('minor_count', sa.Integer(), nullable=False),
        sa.Column('passed_checks', sa.Integer(), nullable=False),
        sa.Column('ai_enabled', sa.Boolean(), nullable=False),
        sa.Column('ai_status', sa.String(32), nullable=True),
        sa.Column('criteria_verified', sa.Integer(), nullable=True),
        sa.Column('criteria_passed', sa.Integer(), nullable=True),
        sa.Column('criteria_failed', sa.Integer(), nullable=True),
        sa.Column('criteria_not_tested', sa.Integer(), nullable=True),
        sa.Column('ai_tokens_used', sa.Integer(), nullable=True),
        sa.Column('ai_completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['batch_id'], ['batch_scans.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_scans_id'), 'scans', ['id'], unique=False)
    op.create_index(op.f('ix_scans_batch_id'), 'scans', ['batch_id'], unique=False)
    op.create_index(op.f('ix_scans_status'), 'scans', ['status'], unique=False)
    op.create_index('idx_scans_status_completed', 'scans', ['status', 'completed_at'], unique=False)

    # Create scan_issues table
    op.create_table(
        'scan_issues',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('scan_id', sa.String(), nullable=False),
        sa.Column('rule_id', sa.String(100), nullable=False),
        sa.Column('impact', issue_impact, nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('help_text', sa.Text(), nullable=False),
        sa.Column('help_url', sa.String(2048), nullable=False),
        sa.Column('wcag_criteria', sa.JSON(), nullable=True),
        sa.Column('css_selector', sa.String(1024), nullable=False),
        sa.Column('html_snippet', sa.Text(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['scan_id'], ['scans.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_scan_issues_id'), 'scan_issues', ['id'], unique=False)
    op.create_index(op.f('ix_scan_issues_scan_id'), 'scan_issues', ['scan_id'], unique=False)
    op.create_index(op.f('ix_scan_issues_impact'), 'scan_issues', ['impact'], unique=False)

    # Create reports table, one row per (subject, format)
    op.create_table(
        'reports',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('subject_id', sa.String(), nullable=False),
        sa.Column('format', report_format, nullable=False),
        sa.Column('status', report_status, nullable=False),
        sa.Column('storage_key', sa.String(1024), nullable=True),
        sa.Column('file_size_bytes', sa.BigInteger(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('generation_attempts', sa.Integer(), nullable=False),
        sa.Column('celery_task_id', sa.String(128), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('subject_id', 'format', name='uq_reports_subject_format'),
    )
    op.create_index(op.f('ix_reports_id'), 'reports', ['id'], unique=False)
    op.create_index(op.f('ix_reports_subject_id'), 'reports', ['subject_id'], unique=False)
    op.create_index(op.f('ix_reports_status'), 'reports', ['status'], unique=False)
    op.create_index('idx_reports_status_updated', 'reports', ['status', 'updated_at'], unique=False)

    # Create notification_dead_letters table
    op.create_table(
        'notification_dead_letters',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('subject_id', sa.String(), nullable=False),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('provider', sa.String(32), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('error_code', sa.String(64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_notification_dead_letters_id'), 'notification_dead_letters', ['id'], unique=False)
    op.create_index(
        op.f('ix_notification_dead_letters_subject_id'), 'notification_dead_letters', ['subject_id'], unique=False
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('notification_dead_letters')
    op.drop_table('reports')
    op.drop_table('scan_issues')
    op.drop_table('scans')
    op.drop_table('batch_scans')

    bind = op.get_bind()
    for enum_type in (report_status, report_format, issue_impact, batch_status, scan_status, wcag_level):
        enum_type.drop(bind, checkfirst=True)
