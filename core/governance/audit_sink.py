"""
Audit sink — append-only trail for every governance state transition.

Writing audit is never best-effort: a failed append raises AuditWriteFailed
and the calling operation rolls back, so proposal state can never diverge
from its trail. Rows are protected against UPDATE/DELETE at the ORM layer
(see models.GovernanceAuditLog).
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from core.governance.errors import AuditWriteFailed, InvalidArgument

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = 'system'


def system_actor():
    return SYSTEM_ACTOR


def user_actor(user_id):
    return f'user:{user_id}'


def append(workspace_id, event, actor, detail=None, proposal_id=None):
    """Write an audit entry and flush it so it gets an id.

    Args:
        workspace_id: Workspace scope.
        event: One of GovernanceAuditLog.VALID_EVENTS.
        actor: 'system' or 'user:<id>'.
        detail: dict with event-specific data.
        proposal_id: The proposal involved (None for workspace-level events).

    Returns:
        int: id of the new entry.

    Raises:
        AuditWriteFailed: the entry could not be written.
    """
    from models import db, GovernanceAuditLog

    if event not in GovernanceAuditLog.VALID_EVENTS:
        raise InvalidArgument(f'Unknown audit event: {event}')

    entry = GovernanceAuditLog(
        workspace_id=workspace_id,
        proposal_id=proposal_id,
        event=event,
        actor=actor,
        detail=detail or {},
    )
    try:
        db.session.add(entry)
        db.session.flush()
    except SQLAlchemyError as e:
        logger.error('[audit] write failed event=%s proposal=%s: %s',
                     event, proposal_id, e)
        raise AuditWriteFailed(f'Audit write failed for event {event}') from e
    # Caller is responsible for commit (batched with the state transition).
    return entry.id


def query(proposal_id):
    """Return the audit entries for one proposal, oldest first."""
    from models import GovernanceAuditLog

    return (
        GovernanceAuditLog.query
        .filter_by(proposal_id=proposal_id)
        .order_by(GovernanceAuditLog.id.asc())
        .all()
    )


def get_trail(workspace_id, event=None, limit=100):
    """Query the audit trail for a workspace, newest first."""
    from models import GovernanceAuditLog

    q = GovernanceAuditLog.query.filter_by(workspace_id=workspace_id)
    if event is not None:
        q = q.filter_by(event=event)
    return q.order_by(GovernanceAuditLog.id.desc()).limit(limit).all()
