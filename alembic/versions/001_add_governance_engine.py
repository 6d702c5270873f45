"""Add users, autopilot policy, risk overrides, budget ledger, proposals,
decisions and governance audit tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # -- users --
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_is_admin', 'users', ['is_admin'])

    # -- autopilot_policies --
    op.create_table(
        'autopilot_policies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, unique=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('allowed_action_types', sa.JSON(), nullable=False),
        sa.Column('max_actions_per_week', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('max_daily_budget', sa.Numeric(12, 4), nullable=False, server_default='50'),
        sa.Column('require_approval_above_risk', sa.String(10), nullable=False, server_default='high'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    # -- risk_tier_overrides --
    op.create_table(
        'risk_tier_overrides',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('action_type', sa.String(100), nullable=False),
        sa.Column('risk_tier', sa.String(10), nullable=False),
        sa.Column('updated_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('workspace_id', 'action_type', name='_risk_override_ws_action_uc'),
    )
    op.create_index('ix_risk_tier_overrides_workspace_id', 'risk_tier_overrides', ['workspace_id'])

    # -- autopilot_budget_ledger --
    op.create_table(
        'autopilot_budget_ledger',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('bucket_kind', sa.String(10), nullable=False),
        sa.Column('bucket_key', sa.String(20), nullable=False),
        sa.Column('amount_units', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('workspace_id', 'bucket_kind', 'bucket_key',
                            name='_budget_ledger_bucket_uc'),
    )

    # -- action_proposals --
    op.create_table(
        'action_proposals',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('agent_type', sa.String(100), nullable=False),
        sa.Column('action_type', sa.String(100), nullable=False),
        sa.Column('risk_tier', sa.String(10), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('components', sa.JSON(), nullable=False),
        sa.Column('estimated_cost', sa.Numeric(14, 4), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('auto_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('policy_snapshot', sa.JSON(), nullable=True),
        sa.Column('supersedes_id', sa.String(36), sa.ForeignKey('action_proposals.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('reviewed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
    )
    op.create_index('ix_action_proposal_ws_status', 'action_proposals', ['workspace_id', 'status'])
    op.create_index('ix_action_proposal_status_expires', 'action_proposals', ['status', 'expires_at'])

    # -- proposal_component_decisions --
    op.create_table(
        'proposal_component_decisions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('proposal_id', sa.String(36), sa.ForeignKey('action_proposals.id'), nullable=False),
        sa.Column('component_key', sa.String(100), nullable=False),
        sa.Column('decision', sa.String(10), nullable=False, server_default='pending'),
        sa.Column('decided_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('proposal_id', 'component_key', name='_component_decision_uc'),
    )

    # -- proposal_decisions --
    op.create_table(
        'proposal_decisions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('proposal_id', sa.String(36), sa.ForeignKey('action_proposals.id'),
                  nullable=False, unique=True),
        sa.Column('outcome', sa.String(20), nullable=False),
        sa.Column('requested_outcome', sa.String(20), nullable=False),
        sa.Column('reviewer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # -- governance_audit_log --
    op.create_table(
        'governance_audit_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('proposal_id', sa.String(36), sa.ForeignKey('action_proposals.id'), nullable=True),
        sa.Column('event', sa.String(30), nullable=False),
        sa.Column('actor', sa.String(50), nullable=False),
        sa.Column('detail', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_gov_audit_proposal', 'governance_audit_log', ['proposal_id', 'id'])
    op.create_index('ix_gov_audit_ws_created', 'governance_audit_log', ['workspace_id', 'created_at'])


def downgrade():
    op.drop_table('governance_audit_log')
    op.drop_table('proposal_decisions')
    op.drop_table('proposal_component_decisions')
    op.drop_table('action_proposals')
    op.drop_table('autopilot_budget_ledger')
    op.drop_table('risk_tier_overrides')
    op.drop_table('autopilot_policies')
    op.drop_table('users')
