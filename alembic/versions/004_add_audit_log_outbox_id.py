"""add outbox_id to audit log

Revision ID: 004
Revises: 003
Create Date: 2026-10-18 11:20:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '004'
down_revision: Union[str, None] = '003'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('audit_log', sa.Column('outbox_id', UUID(as_uuid=True), nullable=True))
    op.create_unique_constraint('uq_audit_log_outbox_id', 'audit_log', ['outbox_id'])


def downgrade() -> None:
    op.drop_constraint('uq_audit_log_outbox_id', 'audit_log', type_='unique')
    op.drop_column('audit_log', 'outbox_id')
