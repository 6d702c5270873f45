"""
Human decision gate — the only manual path out of 'pending'.

Outcomes:
    approved            — the whole proposal (every component) is approved.
    rejected            — the whole proposal is rejected; reason required.
    partially_approved  — bundles only; some components approved, some not.

Bundle outcomes are normalized from the component decisions: all approved
becomes 'approved', all rejected becomes 'rejected', and only a genuine mix
stays 'partially_approved'.

Critical constraints:
    - The reviewer must be the workspace owner or an admin.
    - A terminal proposal is never re-decided. Repeating the decision that
      resolved it is a silent no-op so retried requests are harmless.
    - Component decisions are immutable once made.
    - All actions are logged to governance_audit_log in the same commit.
"""
import logging
from datetime import datetime

from core.governance import audit_sink
from core.governance.constants import (
    COMPONENT_DECISIONS,
    DECISION_OUTCOMES,
    MAX_REASON_LENGTH,
    OUTCOME_EVENTS,
)
from core.governance.errors import (
    Conflict,
    Expired,
    InvalidArgument,
    NotFound,
    PolicyViolation,
)
from core.governance.locks import workspace_lock
from core.governance.proposals import get_proposal, transition_from_pending

logger = logging.getLogger(__name__)


def decide(proposal_id, reviewer_id, outcome, reason=None,
           component_decisions=None, workspace_id=None, now=None, timeout=None):
    """Resolve a pending proposal.

    Args:
        proposal_id: The proposal to decide.
        reviewer_id: The human user deciding.
        outcome: 'approved', 'rejected' or 'partially_approved'.
        reason: Required when the (normalized) outcome is 'rejected'.
        component_decisions: Optional {component_key: 'approved'|'rejected'}
                             for bundles.
        workspace_id: Optional workspace scope (enforced when given).
        now: Clock override (UTC).
        timeout: Seconds to wait for the workspace lock.

    Returns:
        ActionProposal in its terminal state.

    Raises:
        NotFound, InvalidArgument, Conflict, Expired, PolicyViolation,
        AuditWriteFailed.
    """
    from models import db, ComponentDecision, ProposalDecision

    if not isinstance(outcome, str) or outcome not in DECISION_OUTCOMES:
        raise InvalidArgument(
            f'Invalid outcome: {outcome}. Must be one of '
            f'{", ".join(sorted(DECISION_OUTCOMES))}'
        )
    reason = _clean_reason(reason)

    proposal = get_proposal(proposal_id, workspace_id)

    with workspace_lock(proposal.workspace_id, timeout):
        db.session.expire(proposal)

        if proposal.status != 'pending':
            return _already_decided(proposal, outcome)

        effective, components = _resolve_components(proposal, outcome, component_decisions)

        if effective == 'rejected' and not reason:
            raise InvalidArgument('reason is required when rejecting a proposal')

        now = now or datetime.utcnow()
        if now > proposal.expires_at:
            raise Expired('Proposal expired before it was decided')

        _require_reviewer(reviewer_id, proposal.workspace_id)

        try:
            won = transition_from_pending(
                proposal.id, effective,
                reviewed_by=reviewer_id,
                reviewed_at=now,
                rejection_reason=reason if effective != 'approved' else None,
            )
            if not won:
                db.session.rollback()
                db.session.expire(proposal)
                return _already_decided(proposal, outcome)

            existing = {cd.component_key: cd for cd in proposal.component_decisions}
            for key, decision in components.items():
                if key in existing:
                    continue
                db.session.add(ComponentDecision(
                    proposal_id=proposal.id,
                    component_key=key,
                    decision=decision,
                    decided_by=reviewer_id,
                    decided_at=now,
                ))

            db.session.add(ProposalDecision(
                proposal_id=proposal.id,
                outcome=effective,
                requested_outcome=outcome,
                reviewer_id=reviewer_id,
                reason=reason,
                decided_at=now,
            ))

            audit_sink.append(
                workspace_id=proposal.workspace_id,
                proposal_id=proposal.id,
                event=OUTCOME_EVENTS[effective],
                actor=audit_sink.user_actor(reviewer_id),
                detail={
                    'outcome': effective,
                    'requested_outcome': outcome,
                    'reason': reason,
                    'component_decisions': components or None,
                },
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception('[governance] decide aborted proposal=%s', proposal_id)
            raise

    logger.info('[governance] %s %s by user:%s', effective, proposal.id, reviewer_id)
    return proposal


def decide_component(proposal_id, component_key, decision, reviewer_id,
                     workspace_id=None, now=None, timeout=None):
    """Record a reviewer's decision on one component of a pending bundle.

    The proposal stays pending until decide() resolves it. Re-marking a
    component with the same decision is a no-op.

    Returns:
        ComponentDecision

    Raises:
        NotFound, InvalidArgument, Conflict, Expired, PolicyViolation,
        AuditWriteFailed.
    """
    from models import db, ComponentDecision

    if not isinstance(decision, str) or decision not in COMPONENT_DECISIONS:
        raise InvalidArgument(
            f'Invalid component decision: {decision}. Must be "approved" or "rejected"'
        )

    proposal = get_proposal(proposal_id, workspace_id)

    with workspace_lock(proposal.workspace_id, timeout):
        db.session.expire(proposal)

        if not proposal.is_bundle:
            raise InvalidArgument('Proposal has no components')
        if component_key not in proposal.components:
            raise InvalidArgument(f'Unknown component: {component_key}')

        if proposal.status == 'expired':
            raise Expired('Proposal has expired')
        if proposal.status != 'pending':
            raise Conflict(f'Proposal is already {proposal.status}')

        now = now or datetime.utcnow()
        if now > proposal.expires_at:
            raise Expired('Proposal expired before it was decided')

        _require_reviewer(reviewer_id, proposal.workspace_id)

        existing = ComponentDecision.query.filter_by(
            proposal_id=proposal.id, component_key=component_key,
        ).first()
        if existing is not None:
            if existing.decision == decision:
                return existing
            raise Conflict(
                f'Component {component_key} is already {existing.decision}'
            )

        try:
            cd = ComponentDecision(
                proposal_id=proposal.id,
                component_key=component_key,
                decision=decision,
                decided_by=reviewer_id,
                decided_at=now,
            )
            db.session.add(cd)
            audit_sink.append(
                workspace_id=proposal.workspace_id,
                proposal_id=proposal.id,
                event='component_decided',
                actor=audit_sink.user_actor(reviewer_id),
                detail={'component_key': component_key, 'decision': decision},
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    return cd


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _already_decided(proposal, outcome):
    """Idempotent replay or the appropriate error for a terminal proposal."""
    decision = proposal.decision
    if decision is not None and outcome in (decision.outcome, decision.requested_outcome):
        return proposal
    if proposal.status == 'expired':
        raise Expired('Proposal has expired')
    raise Conflict(f'Proposal is already {proposal.status}, cannot decide')


def _resolve_components(proposal, outcome, component_decisions):
    """Return (effective_outcome, {component_key: decision})."""
    if not proposal.is_bundle:
        if outcome == 'partially_approved':
            raise InvalidArgument('partially_approved requires a proposal with components')
        if component_decisions:
            raise InvalidArgument('component_decisions given for a proposal without components')
        return outcome, {}

    if component_decisions is None:
        component_decisions = {}
    if not isinstance(component_decisions, dict):
        raise InvalidArgument('component_decisions must be a dict')

    merged = {
        cd.component_key: cd.decision
        for cd in proposal.component_decisions
        if cd.decision != 'pending'
    }
    for key, value in component_decisions.items():
        if key not in proposal.components:
            raise InvalidArgument(f'Unknown component: {key}')
        if not isinstance(value, str) or value not in COMPONENT_DECISIONS:
            raise InvalidArgument(f'Invalid decision for component {key}: {value}')
        if key in merged and merged[key] != value:
            raise Conflict(f'Component {key} is already {merged[key]}')
        merged[key] = value

    undecided = [k for k in proposal.components if k not in merged]
    values = set(merged.values())

    if outcome == 'approved':
        if 'rejected' in values:
            raise InvalidArgument('Cannot approve a bundle with rejected components; '
                                  'use partially_approved')
        merged.update({k: 'approved' for k in undecided})
    elif outcome == 'rejected':
        if 'approved' in values:
            raise InvalidArgument('Cannot reject a bundle with approved components; '
                                  'use partially_approved')
        merged.update({k: 'rejected' for k in undecided})
    elif undecided:
        raise InvalidArgument(
            f'Undecided components: {", ".join(undecided)}'
        )

    ordered = {k: merged[k] for k in proposal.components}
    values = set(ordered.values())
    if values == {'approved'}:
        return 'approved', ordered
    if values == {'rejected'}:
        return 'rejected', ordered
    return 'partially_approved', ordered


def _require_reviewer(reviewer_id, workspace_id):
    from models import db, User

    reviewer = db.session.get(User, reviewer_id) if reviewer_id is not None else None
    if reviewer is None:
        raise NotFound('Reviewer not found')
    if reviewer_id != workspace_id and not reviewer.is_admin:
        raise PolicyViolation('Only the workspace owner or an admin can decide proposals')
    return reviewer


def _clean_reason(reason):
    if reason is None:
        return None
    if not isinstance(reason, str):
        raise InvalidArgument('reason must be a string')
    reason = reason.strip()
    if len(reason) > MAX_REASON_LENGTH:
        raise InvalidArgument(f'reason cannot exceed {MAX_REASON_LENGTH} characters')
    return reason or None
