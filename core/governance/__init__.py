"""
core.governance — Agent Action Governance Engine.

Agents submit proposed actions; autopilot resolves the ones the workspace
policy and budget allow, humans decide the rest (whole proposals or bundle
components), stale proposals expire, and executors report back. Every state
transition is audited in the same transaction.

State machine (all resolutions are terminal):
    pending -> auto_approved | approved | rejected | partially_approved | expired

Public API:
    submit, get_proposal, get_proposals,
    get_pending, get_recent_decisions        — proposal registry
    decide, decide_component                 — human decision gate
    expire_stale                             — proposal lifecycle
    get_executable, record_execution         — executor hand-off
    append, query, get_trail                 — audit sink
"""

from core.governance.proposals import (
    submit,
    get_proposal,
    get_proposals,
    get_pending,
    get_recent_decisions,
    expire_stale,
)
from core.governance.decisions import (
    decide,
    decide_component,
)
from core.governance.execution import (
    get_executable,
    record_execution,
)
from core.governance.audit_sink import (
    append,
    query,
    get_trail,
)
from core.governance.errors import (
    GovernanceError,
    InvalidArgument,
    NotFound,
    Conflict,
    Expired,
    PolicyViolation,
    BudgetExhausted,
    AuditWriteFailed,
    LockTimeout,
)

__all__ = [
    'submit',
    'get_proposal',
    'get_proposals',
    'get_pending',
    'get_recent_decisions',
    'expire_stale',
    'decide',
    'decide_component',
    'get_executable',
    'record_execution',
    'append',
    'query',
    'get_trail',
    'GovernanceError',
    'InvalidArgument',
    'NotFound',
    'Conflict',
    'Expired',
    'PolicyViolation',
    'BudgetExhausted',
    'AuditWriteFailed',
    'LockTimeout',
]
