"""add slot locks, audit outbox and audit log tables

Revision ID: 003
Revises: 002
Create Date: 2026-10-13 14:10:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = '003'
down_revision: Union[str, None] = '002'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'slot_locks',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('scope_key', sa.String(), nullable=False),
        sa.Column('holder', sa.String(), nullable=False),
        sa.Column('slot_start', sa.DateTime(), nullable=False),
        sa.Column('slot_end', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tenant_id', 'scope_key', name='uq_slot_locks_tenant_scope'),
    )
    op.create_index('ix_slot_locks_tenant_id', 'slot_locks', ['tenant_id'])
    op.create_index('ix_slot_locks_holder', 'slot_locks', ['holder'])
    op.create_index('ix_slot_locks_expires_at', 'slot_locks', ['expires_at'])

    op.create_table(
        'audit_outbox',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('payload', JSONB(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_audit_outbox_tenant_id', 'audit_outbox', ['tenant_id'])
    op.create_index('ix_audit_outbox_status', 'audit_outbox', ['status'])
    op.create_index('ix_audit_outbox_created_at', 'audit_outbox', ['created_at'])

    op.create_table(
        'audit_log',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('actor_id', sa.String(), nullable=True),
        sa.Column('trace_id', sa.String(), nullable=True),
        sa.Column('appointment_id', UUID(as_uuid=True), nullable=True),
        sa.Column('details', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_audit_log_id', 'audit_log', ['id'])
    op.create_index('ix_audit_log_tenant_id', 'audit_log', ['tenant_id'])
    op.create_index('ix_audit_log_event_type', 'audit_log', ['event_type'])
    op.create_index('ix_audit_log_appointment_id', 'audit_log', ['appointment_id'])


def downgrade() -> None:
    op.drop_table('audit_log')
    op.drop_table('audit_outbox')
    op.drop_table('slot_locks')
