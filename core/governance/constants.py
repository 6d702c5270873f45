"""
Governance constants — statuses, events, configuration defaults.
"""
import os

PROPOSAL_STATUSES = frozenset({
    'pending', 'auto_approved', 'approved', 'rejected',
    'partially_approved', 'expired',
})

# Statuses an executor may act on.
EXECUTABLE_STATUSES = ('approved', 'auto_approved', 'partially_approved')

DECISION_OUTCOMES = frozenset({'approved', 'rejected', 'partially_approved'})
COMPONENT_DECISIONS = frozenset({'approved', 'rejected'})

# Audit event written for each terminal manual outcome.
OUTCOME_EVENTS = {
    'approved': 'approved',
    'rejected': 'rejected',
    'partially_approved': 'partial',
}

# Days a pending proposal waits for review before expiring.
PROPOSAL_SLA_DAYS = int(os.environ.get('PROPOSAL_SLA_DAYS', '7'))

# Seconds a caller waits for the per-workspace lock before giving up.
LOCK_TIMEOUT_SECONDS = float(os.environ.get('GOVERNANCE_LOCK_TIMEOUT_SECONDS', '10'))

# Input limits
MAX_IDENTIFIER_LENGTH = 100
MAX_COMPONENTS = 50
MAX_REASON_LENGTH = 2000
