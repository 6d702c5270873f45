"""
core.governance.execution — executor hand-off and execution feedback.

The executor polls get_executable() for resolved proposals it has not yet
carried out, performs the real-world effect, and reports back through
record_execution(). Reports are audit entries only; proposal status never
changes after resolution.
"""
from __future__ import annotations

import logging

from core.governance import audit_sink
from core.governance.constants import EXECUTABLE_STATUSES
from core.governance.errors import Conflict, InvalidArgument
from core.governance.locks import workspace_lock
from core.governance.proposals import get_proposal

logger = logging.getLogger(__name__)


def approved_components(proposal) -> list[str]:
    """Component keys the executor may act on for a resolved proposal."""
    if not proposal.is_bundle:
        return []
    if proposal.status == 'auto_approved':
        return list(proposal.components)
    decisions = proposal.component_map()
    return [k for k in proposal.components if decisions.get(k) == 'approved']


def get_executable(workspace_id: int, limit: int = 50) -> list[dict]:
    """Resolved proposals with no successful execution recorded, oldest first."""
    from models import db, ActionProposal, GovernanceAuditLog

    executed = (
        db.select(GovernanceAuditLog.id)
        .where(
            GovernanceAuditLog.proposal_id == ActionProposal.id,
            GovernanceAuditLog.event == 'executed',
        )
        .exists()
    )
    proposals = (
        ActionProposal.query
        .filter(
            ActionProposal.workspace_id == workspace_id,
            ActionProposal.status.in_(EXECUTABLE_STATUSES),
            ~executed,
        )
        .order_by(ActionProposal.reviewed_at.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            'proposal': p.to_dict(include_components=False),
            'approved_components': approved_components(p),
        }
        for p in proposals
    ]


def record_execution(proposal_id: str, succeeded: bool, detail: dict | None = None,
                     workspace_id: int | None = None, timeout: float | None = None) -> int:
    """Record the executor's outcome for a resolved proposal.

    A proposal can be marked executed once; failures may be reported any
    number of times while the executor retries.

    Returns:
        int: id of the audit entry.

    Raises:
        NotFound: unknown proposal.
        InvalidArgument: malformed arguments.
        Conflict: proposal not executable, or already executed.
    """
    from models import db, GovernanceAuditLog

    if not isinstance(succeeded, bool):
        raise InvalidArgument('succeeded must be a boolean')
    if detail is not None and not isinstance(detail, dict):
        raise InvalidArgument('detail must be a dict')

    proposal = get_proposal(proposal_id, workspace_id)

    with workspace_lock(proposal.workspace_id, timeout):
        db.session.expire(proposal)

        if proposal.status not in EXECUTABLE_STATUSES:
            raise Conflict(f'Proposal is {proposal.status}, nothing to execute')

        already = GovernanceAuditLog.query.filter_by(
            proposal_id=proposal.id, event='executed',
        ).first()
        if already is not None:
            raise Conflict('Proposal has already been executed')

        try:
            entry_id = audit_sink.append(
                workspace_id=proposal.workspace_id,
                proposal_id=proposal.id,
                event='executed' if succeeded else 'execution_failed',
                actor=audit_sink.system_actor(),
                detail={
                    'approved_components': approved_components(proposal),
                    **(detail or {}),
                },
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    if succeeded:
        logger.info('[governance] executed %s', proposal_id)
    else:
        logger.warning('[governance] execution failed %s: %s', proposal_id, detail)
    return entry_id
