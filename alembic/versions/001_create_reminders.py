"""Create reminders and idempotency_keys tables

Revision ID: 001_create_reminders
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_create_reminders'
down_revision = None
branch_labels = None
depends_on = None

json_type = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade():
    op.create_table('reminders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notify_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='manual'),
        sa.Column('advance_minutes', sa.Integer(), nullable=False, server_default='15'),
        sa.Column('metadata', json_type, nullable=False),
        sa.Column('notified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status IN ('pending', 'scheduled', 'notified', 'completed', 'cancelled')",
            name='ck_reminders_status',
        ),
        sa.CheckConstraint('advance_minutes BETWEEN 0 AND 10080', name='ck_reminders_advance_minutes'),
    )
    op.create_index('ix_reminders_user_id', 'reminders', ['user_id'], unique=False)
    op.create_index('ix_reminders_due_scan', 'reminders', ['status', 'notify_at'], unique=False)
    op.create_index('ix_reminders_user_created', 'reminders', ['user_id', 'created_at'], unique=False)

    op.create_table('idempotency_keys',
        sa.Column('idempotency_key', sa.String(length=36), nullable=False),
        sa.Column('resource_id', sa.String(length=36), nullable=True),
        sa.Column('resource_type', sa.String(length=32), nullable=False, server_default='reminder'),
        sa.Column('request_hash', sa.String(length=64), nullable=False),
        sa.Column('response_status', sa.Integer(), nullable=True),
        sa.Column('response_body', json_type, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('idempotency_key'),
    )
    op.create_index('ix_idempotency_keys_expires_at', 'idempotency_keys', ['expires_at'], unique=False)


def downgrade():
    op.drop_index('ix_idempotency_keys_expires_at', table_name='idempotency_keys')
    op.drop_table('idempotency_keys')
    op.drop_index('ix_reminders_user_created', table_name='reminders')
    op.drop_index('ix_reminders_due_scan', table_name='reminders')
    op.drop_index('ix_reminders_user_id', table_name='reminders')
    op.drop_table('reminders')
