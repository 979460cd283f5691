"""create_approval_workflow_tables

Revision ID: 5b1e0c3a7d21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '5b1e0c3a7d21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    op.create_table(
        'companies',
        _id(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_companies'),
    )

    op.create_table(
        'approval_rules',
        _id(),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('created_by', sa.String(64), nullable=True),
        sa.Column('amount_threshold', sa.Numeric(18, 2), nullable=True),
        sa.Column('categories', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('vendors', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('time_window_minutes', sa.Integer(), nullable=True),
        sa.Column('user_roles', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('requires_approval', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('auto_approve', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approvers', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('escalation_chain', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('notify_on_submission', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_on_approval', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_on_rejection', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('reminder_interval_minutes', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], name='fk_approval_rules_company_id_companies'),
        sa.PrimaryKeyConstraint('id', name='pk_approval_rules'),
    )
    op.create_index('ix_approval_rules_company_id', 'approval_rules', ['company_id'])
    op.create_index(
        'ix_approval_rules_company_active_priority', 'approval_rules', ['company_id', 'is_active', 'priority']
    )

    op.create_table(
        'approval_requests',
        _id(),
        sa.Column('receipt_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('submitter_id', sa.String(64), nullable=False),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('rule_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('vendor', sa.String(255), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('approver_id', sa.String(64), nullable=True),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escalated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escalation_tier', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'escalated')",
            name='ck_approval_requests_status',
        ),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], name='fk_approval_requests_company_id_companies'),
        sa.ForeignKeyConstraint(['rule_id'], ['approval_rules.id'], name='fk_approval_requests_rule_id_approval_rules'),
        sa.PrimaryKeyConstraint('id', name='pk_approval_requests'),
    )
    op.create_index('ix_approval_requests_receipt_id', 'approval_requests', ['receipt_id'])
    op.create_index('ix_approval_requests_submitter_id', 'approval_requests', ['submitter_id'])
    op.create_index('ix_approval_requests_rule_id', 'approval_requests', ['rule_id'])
    op.create_index('ix_approval_requests_due_at', 'approval_requests', ['due_at'])
    op.create_index('ix_approval_requests_company_status', 'approval_requests', ['company_id', 'status'])
    # At most one pending/escalated request per receipt
    op.create_index(
        'uq_approval_requests_receipt_live',
        'approval_requests',
        ['receipt_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'escalated')"),
    )

    op.create_table(
        'approval_actions',
        _id(),
        sa.Column('request_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('actor_id', sa.String(64), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('delegated_from', sa.String(64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['request_id'], ['approval_requests.id'],
            name='fk_approval_actions_request_id_approval_requests', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_approval_actions'),
    )
    op.create_index('ix_approval_actions_request_id', 'approval_actions', ['request_id'])

    op.create_table(
        'approval_delegations',
        _id(),
        sa.Column('delegator_id', sa.String(64), nullable=False),
        sa.Column('delegate_to_id', sa.String(64), nullable=False),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('max_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('categories', sa.JSON(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['company_id'], ['companies.id'], name='fk_approval_delegations_company_id_companies'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_approval_delegations'),
    )
    op.create_index('ix_approval_delegations_delegate_to_id', 'approval_delegations', ['delegate_to_id'])
    op.create_index(
        'ix_approval_delegations_lookup',
        'approval_delegations',
        ['delegator_id', 'company_id', 'start_date', 'end_date'],
    )

    op.create_table(
        'audit_logs',
        _id(),
        sa.Column('actor_id', sa.String(64), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_audit_logs'),
    )
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('approval_delegations')
    op.drop_table('approval_actions')
    op.drop_index('uq_approval_requests_receipt_live', table_name='approval_requests')
    op.drop_table('approval_requests')
    op.drop_table('approval_rules')
    op.drop_table('companies')
