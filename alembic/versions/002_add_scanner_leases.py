"""Add scanner_leases table

Revision ID: 002_add_scanner_leases
Revises: 001_create_reminders
Create Date: 2026-10-19 15:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_add_scanner_leases'
down_revision = '001_create_reminders'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('scanner_leases',
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('holder', sa.String(length=32), nullable=False),
        sa.Column('acquired_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('name'),
    )


def downgrade():
    op.drop_table('scanner_leases')
