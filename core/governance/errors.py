"""
Governance error taxonomy.

Every engine operation raises one of these; routes turn them into
``{'error': ..., 'code': ...}`` JSON with the matching HTTP status.
"""


class GovernanceError(Exception):
    """Base class for structured governance errors."""
    code = 'GovernanceError'
    http_status = 400

    def __init__(self, message, detail=None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self):
        d = {'error': self.message, 'code': self.code}
        if self.detail:
            d['detail'] = self.detail
        return d


class InvalidArgument(GovernanceError):
    """Malformed request. Not retriable without a client change."""
    code = 'InvalidArgument'
    http_status = 400


class NotFound(GovernanceError):
    code = 'NotFound'
    http_status = 404


class Conflict(GovernanceError):
    """Transition attempted on a proposal that is no longer pending."""
    code = 'Conflict'
    http_status = 409


class Expired(GovernanceError):
    code = 'Expired'
    http_status = 410


class PolicyViolation(GovernanceError):
    code = 'PolicyViolation'
    http_status = 403


class BudgetExhausted(GovernanceError):
    code = 'BudgetExhausted'
    http_status = 429


class AuditWriteFailed(GovernanceError):
    """The audit trail could not be written; the whole operation is aborted."""
    code = 'AuditWriteFailed'
    http_status = 500


class LockTimeout(GovernanceError):
    code = 'Timeout'
    http_status = 503
