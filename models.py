"""
Database models for the agent action governance engine
"""
from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()


class User(db.Model):
    """Workspace owner or reviewer account. In v1, workspace_id == user_id."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Admin access control
    is_admin = db.Column(db.Boolean, default=False, nullable=False, index=True)

    proposals = db.relationship('ActionProposal', backref='workspace', lazy='dynamic',
                                foreign_keys='ActionProposal.workspace_id')

    def __repr__(self):
        return f'<User {self.email}>'


# ============================================
# Autopilot configuration
# ============================================

class AutopilotPolicy(db.Model):
    """Per-workspace autopilot configuration (one row per workspace)"""
    __tablename__ = 'autopilot_policies'

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True)

    enabled = db.Column(db.Boolean, default=True, nullable=False)
    allowed_action_types = db.Column(db.JSON, nullable=False, default=list)
    max_actions_per_week = db.Column(db.Integer, nullable=False, default=10)
    max_daily_budget = db.Column(db.Numeric(12, 4), nullable=False, default=50)
    # 'low', 'medium' or 'high'; tiers above it always need review
    require_approval_above_risk = db.Column(db.String(10), nullable=False, default='high')

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<AutopilotPolicy workspace_id={self.workspace_id}>'

    def to_dict(self):
        return {
            'workspace_id': self.workspace_id,
            'enabled': bool(self.enabled),
            'allowed_action_types': sorted(self.allowed_action_types or []),
            'max_actions_per_week': self.max_actions_per_week,
            'max_daily_budget': str(self.max_daily_budget) if self.max_daily_budget is not None else None,
            'require_approval_above_risk': self.require_approval_above_risk,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class RiskTierOverride(db.Model):
    """Administrator-edited risk tier for an action type in one workspace"""
    __tablename__ = 'risk_tier_overrides'

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    action_type = db.Column(db.String(100), nullable=False)
    risk_tier = db.Column(db.String(10), nullable=False)
    updated_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('workspace_id', 'action_type', name='_risk_override_ws_action_uc'),
    )

    def to_dict(self):
        return {
            'action_type': self.action_type,
            'risk_tier': self.risk_tier,
            'updated_by': self.updated_by,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class BudgetLedgerEntry(db.Model):
    """Consumed autopilot budget for one workspace bucket.

    bucket_kind 'week' counts auto-approved actions (bucket_key '2026-W42'),
    'day' sums estimated spend (bucket_key '2026-10-17'). Amounts are stored
    as integer ten-thousandths so the cap comparison is exact on every
    backend. They only grow within a bucket; a new bucket starts from zero.
    """
    __tablename__ = 'autopilot_budget_ledger'

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    bucket_kind = db.Column(db.String(10), nullable=False)
    bucket_key = db.Column(db.String(20), nullable=False)
    amount_units = db.Column(db.BigInteger, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('workspace_id', 'bucket_kind', 'bucket_key',
                            name='_budget_ledger_bucket_uc'),
    )

    def to_dict(self):
        return {
            'bucket_kind': self.bucket_kind,
            'bucket_key': self.bucket_key,
            'amount': str(self.amount),
        }

    @property
    def amount(self):
        from core.autopilot.budget_ledger import from_units
        return from_units(self.amount_units or 0)


# ============================================
# Proposals and decisions
# ============================================

class ActionProposal(db.Model):
    """An action proposed by an agent, awaiting or past resolution"""
    __tablename__ = 'action_proposals'

    VALID_STATUSES = frozenset({
        'pending', 'auto_approved', 'approved', 'rejected',
        'partially_approved', 'expired',
    })
    TERMINAL_STATUSES = VALID_STATUSES - {'pending'}

    id = db.Column(db.String(36), primary_key=True)
    workspace_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    agent_type = db.Column(db.String(100), nullable=False)
    action_type = db.Column(db.String(100), nullable=False)
    risk_tier = db.Column(db.String(10), nullable=False)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    components = db.Column(db.JSON, nullable=False, default=list)
    estimated_cost = db.Column(db.Numeric(14, 4))
    status = db.Column(db.String(20), nullable=False, default='pending')
    auto_approved = db.Column(db.Boolean, nullable=False, default=False)

    # Policy as seen at submit time, kept for audit
    policy_snapshot = db.Column(db.JSON)

    supersedes_id = db.Column(db.String(36), db.ForeignKey('action_proposals.id'))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    reviewed_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    reviewed_at = db.Column(db.DateTime)
    rejection_reason = db.Column(db.Text)

    component_decisions = db.relationship(
        'ComponentDecision', backref='proposal', lazy='select',
        order_by='ComponentDecision.id',
    )
    decision = db.relationship('ProposalDecision', backref='proposal',
                               uselist=False, lazy='select')

    __table_args__ = (
        db.Index('ix_action_proposal_ws_status', 'workspace_id', 'status'),
        db.Index('ix_action_proposal_status_expires', 'status', 'expires_at'),
    )

    def __repr__(self):
        return f'<ActionProposal {self.id} {self.action_type} ({self.status})>'

    @property
    def is_bundle(self):
        return bool(self.components)

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def component_map(self):
        """Return {component_key: decision} with 'pending' for undecided keys."""
        decided = {cd.component_key: cd.decision for cd in self.component_decisions}
        return {key: decided.get(key, 'pending') for key in (self.components or [])}

    def to_dict(self, include_components=True):
        d = {
            'id': self.id,
            'workspace_id': self.workspace_id,
            'agent_type': self.agent_type,
            'action_type': self.action_type,
            'risk_tier': self.risk_tier,
            'payload': self.payload,
            'components': list(self.components or []),
            'estimated_cost': str(self.estimated_cost) if self.estimated_cost is not None else None,
            'status': self.status,
            'auto_approved': bool(self.auto_approved),
            'supersedes_id': self.supersedes_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'reviewed_by': self.reviewed_by,
            'reviewed_at': self.reviewed_at.isoformat() if self.reviewed_at else None,
            'rejection_reason': self.rejection_reason,
        }
        if include_components and self.components:
            d['component_decisions'] = self.component_map()
        if include_components and self.decision is not None:
            d['decision'] = self.decision.to_dict()
        return d


class ComponentDecision(db.Model):
    """Reviewer decision on one component of a bundled proposal"""
    __tablename__ = 'proposal_component_decisions'

    VALID_DECISIONS = frozenset({'pending', 'approved', 'rejected'})

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(db.String(36), db.ForeignKey('action_proposals.id'), nullable=False)
    component_key = db.Column(db.String(100), nullable=False)
    decision = db.Column(db.String(10), nullable=False, default='pending')
    decided_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    decided_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint('proposal_id', 'component_key', name='_component_decision_uc'),
    )

    def to_dict(self):
        return {
            'proposal_id': self.proposal_id,
            'component_key': self.component_key,
            'decision': self.decision,
            'decided_by': self.decided_by,
            'decided_at': self.decided_at.isoformat() if self.decided_at else None,
        }


class ProposalDecision(db.Model):
    """Terminal manual resolution of a whole proposal"""
    __tablename__ = 'proposal_decisions'

    VALID_OUTCOMES = frozenset({'approved', 'rejected', 'partially_approved'})

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(db.String(36), db.ForeignKey('action_proposals.id'),
                            nullable=False, unique=True)
    outcome = db.Column(db.String(20), nullable=False)
    # What the reviewer asked for before bundle normalization
    requested_outcome = db.Column(db.String(20), nullable=False)
    reviewer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    reason = db.Column(db.Text)
    decided_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            'proposal_id': self.proposal_id,
            'outcome': self.outcome,
            'requested_outcome': self.requested_outcome,
            'reviewer_id': self.reviewer_id,
            'reason': self.reason,
            'decided_at': self.decided_at.isoformat() if self.decided_at else None,
        }


# ============================================
# Audit
# ============================================

class GovernanceAuditLog(db.Model):
    """Append-only record of every governance state transition"""
    __tablename__ = 'governance_audit_log'

    VALID_EVENTS = frozenset({
        'created', 'auto_approved', 'approved', 'rejected', 'partial', 'expired',
        'component_decided', 'executed', 'execution_failed',
        'policy_updated', 'risk_override_set',
    })

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    workspace_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    proposal_id = db.Column(db.String(36), db.ForeignKey('action_proposals.id'))
    event = db.Column(db.String(30), nullable=False)
    actor = db.Column(db.String(50), nullable=False)  # 'system' or 'user:<id>'
    detail = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_gov_audit_proposal', 'proposal_id', 'id'),
        db.Index('ix_gov_audit_ws_created', 'workspace_id', 'created_at'),
    )

    def __repr__(self):
        return f'<GovernanceAuditLog {self.event} proposal={self.proposal_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'workspace_id': self.workspace_id,
            'proposal_id': self.proposal_id,
            'event': self.event,
            'actor': self.actor,
            'detail': self.detail,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(GovernanceAuditLog, 'before_update')
def _reject_audit_update(mapper, connection, target):
    raise RuntimeError('governance_audit_log is append-only; updates are not allowed')


@event.listens_for(GovernanceAuditLog, 'before_delete')
def _reject_audit_delete(mapper, connection, target):
    raise RuntimeError('governance_audit_log is append-only; deletes are not allowed')
