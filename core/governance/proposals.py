"""
Proposal registry — agents submit, autopilot or humans resolve.

submit() classifies the action, evaluates autopilot eligibility against the
workspace policy and budget ledger, and stores the proposal either as
'auto_approved' (terminal) or 'pending' for manual review. Reservations
made while evaluating are rolled back together with the transaction when
the proposal ends up pending.

Enforces:
- Workspace isolation (all queries scoped by workspace_id).
- critical-tier actions are never auto-approved.
- Only pending proposals transition (transition_from_pending).
- Every transition is audited in the same transaction.
"""
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import SQLAlchemyError

from core.autopilot import budget_ledger
from core.autopilot.policy_store import get_policy
from core.autopilot.risk_classifier import classify_for_workspace, tier_at_most
from core.governance import audit_sink
from core.governance.constants import (
    MAX_COMPONENTS,
    MAX_IDENTIFIER_LENGTH,
    PROPOSAL_SLA_DAYS,
    PROPOSAL_STATUSES,
)
from core.governance.errors import (
    BudgetExhausted,
    InvalidArgument,
    NotFound,
    PolicyViolation,
)
from core.governance.locks import workspace_lock

logger = logging.getLogger(__name__)


def submit(workspace_id, agent_type, action_type, payload, components=None,
           supersedes_id=None, sla=None, now=None, timeout=None):
    """Submit a proposed agent action.

    Args:
        workspace_id: Owning workspace.
        agent_type: Originating agent kind (e.g. 'seo_agent').
        action_type: Action kind (e.g. 'seo_fix').
        payload: dict describing the change. Not interpreted, except for an
                 optional non-negative 'estimated_cost'.
        components: Optional ordered list of component keys for a bundle.
        supersedes_id: Optional id of a proposal this one corrects.
        sla: Optional timedelta until expiry (default PROPOSAL_SLA_DAYS).
        now: Clock override (UTC).
        timeout: Seconds to wait for the workspace lock.

    Returns:
        ActionProposal with status 'auto_approved' or 'pending'.

    Raises:
        InvalidArgument: malformed arguments or payload.
        NotFound: unknown workspace or superseded proposal.
        AuditWriteFailed: audit could not be written (nothing is stored).
    """
    from models import db, User, ActionProposal

    agent_type = _require_identifier(agent_type, 'agent_type')
    action_type = _require_identifier(action_type, 'action_type')
    if not isinstance(payload, dict):
        raise InvalidArgument('payload must be a dict')
    components = _validate_components(components)
    estimated_cost = _parse_estimated_cost(payload)
    if sla is not None and (not isinstance(sla, timedelta) or sla <= timedelta(0)):
        raise InvalidArgument('sla must be a positive timedelta')
    if supersedes_id is not None and not isinstance(supersedes_id, str):
        raise InvalidArgument('supersedes_id must be a proposal id string')

    # Unknown workspaces never get a lock registry entry.
    if db.session.get(User, workspace_id) is None:
        raise NotFound('Workspace not found')

    with workspace_lock(workspace_id, timeout):
        if supersedes_id is not None:
            previous = ActionProposal.query.filter_by(
                id=supersedes_id, workspace_id=workspace_id,
            ).first()
            if previous is None:
                raise NotFound('Superseded proposal not found')

        now = now or datetime.utcnow()
        risk_tier = classify_for_workspace(workspace_id, action_type)
        policy = _load_policy(workspace_id)
        policy_snapshot = policy.to_dict() if policy is not None else None

        try:
            try:
                _reserve_autopilot(workspace_id, policy, action_type, risk_tier,
                                   estimated_cost, now)
                autopilot = {'eligible': True}
            except (PolicyViolation, BudgetExhausted) as e:
                # Undo any reservation made before the refusal.
                db.session.rollback()
                autopilot = {'eligible': False, 'code': e.code, 'reason': e.message}

            auto = autopilot['eligible']
            proposal = ActionProposal(
                id=str(uuid.uuid4()),
                workspace_id=workspace_id,
                agent_type=agent_type,
                action_type=action_type,
                risk_tier=risk_tier,
                payload=payload,
                components=components,
                estimated_cost=estimated_cost,
                status='auto_approved' if auto else 'pending',
                auto_approved=auto,
                policy_snapshot=policy_snapshot,
                supersedes_id=supersedes_id,
                created_at=now,
                expires_at=now + (sla or timedelta(days=PROPOSAL_SLA_DAYS)),
                reviewed_at=now if auto else None,
            )
            db.session.add(proposal)
            db.session.flush()

            audit_sink.append(
                workspace_id=workspace_id,
                proposal_id=proposal.id,
                event='created',
                actor=audit_sink.system_actor(),
                detail={
                    'agent_type': agent_type,
                    'action_type': action_type,
                    'risk_tier': risk_tier,
                    'components': components,
                    'estimated_cost': str(estimated_cost) if estimated_cost is not None else None,
                    'supersedes_id': supersedes_id,
                    'autopilot': autopilot,
                },
            )
            if auto:
                audit_sink.append(
                    workspace_id=workspace_id,
                    proposal_id=proposal.id,
                    event='auto_approved',
                    actor=audit_sink.system_actor(),
                    detail={'risk_tier': risk_tier, 'policy': policy_snapshot},
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception('[governance] submit aborted workspace=%s action=%s',
                             workspace_id, action_type)
            raise

    if auto:
        logger.info('[governance] auto-approved %s (%s, %s) workspace=%s',
                    proposal.id, action_type, risk_tier, workspace_id)
    else:
        logger.info('[governance] pending %s (%s, %s) workspace=%s: %s',
                    proposal.id, action_type, risk_tier, workspace_id,
                    autopilot.get('reason'))
    return proposal


def get_proposal(proposal_id, workspace_id=None):
    """Get a single proposal, optionally scoped to a workspace.

    Raises:
        NotFound: no such proposal in scope.
    """
    from models import ActionProposal

    q = ActionProposal.query.filter_by(id=proposal_id)
    if workspace_id is not None:
        q = q.filter_by(workspace_id=workspace_id)
    proposal = q.first()
    if proposal is None:
        raise NotFound('Proposal not found')
    return proposal


def get_proposals(workspace_id, status=None, agent_type=None,
                  action_type=None, limit=50):
    """List proposals for a workspace, newest first."""
    from models import ActionProposal

    if status is not None and status not in PROPOSAL_STATUSES:
        raise InvalidArgument(f'Unknown status: {status}')

    q = ActionProposal.query.filter_by(workspace_id=workspace_id)
    if status is not None:
        q = q.filter_by(status=status)
    if agent_type is not None:
        q = q.filter_by(agent_type=agent_type)
    if action_type is not None:
        q = q.filter_by(action_type=action_type)

    return q.order_by(ActionProposal.created_at.desc()).limit(limit).all()


def get_pending(workspace_id, limit=50):
    return get_proposals(workspace_id, status='pending', limit=limit)


def get_recent_decisions(workspace_id, limit=20):
    """Resolved proposals (any terminal status), most recently resolved first."""
    from models import db, ActionProposal

    return (
        ActionProposal.query
        .filter(
            ActionProposal.workspace_id == workspace_id,
            ActionProposal.status != 'pending',
        )
        .order_by(
            db.func.coalesce(ActionProposal.reviewed_at, ActionProposal.expires_at).desc(),
        )
        .limit(limit)
        .all()
    )


def transition_from_pending(proposal_id, new_status, **fields):
    """Move a proposal out of 'pending' unless someone else already did.

    Issues ``UPDATE ... WHERE id = :id AND status = 'pending'`` so that of
    two racing transitions exactly one takes effect. Does not commit.

    Returns:
        bool: True if this call performed the transition.
    """
    from models import db, ActionProposal

    table = ActionProposal.__table__
    result = db.session.execute(
        table.update()
        .where(table.c.id == proposal_id, table.c.status == 'pending')
        .values(status=new_status, **fields)
    )
    return result.rowcount == 1


def expire_stale(now=None, timeout=None):
    """Expire pending proposals whose expires_at has passed.

    Idempotent and safe to run alongside decide(): the pending-only guard
    means whichever transition commits first wins.

    Returns:
        int: Count of proposals expired by this call.
    """
    from models import db, ActionProposal

    now = now or datetime.utcnow()

    rows = (
        db.session.query(ActionProposal.workspace_id, ActionProposal.id)
        .filter(
            ActionProposal.status == 'pending',
            ActionProposal.expires_at < now,
        )
        .order_by(ActionProposal.workspace_id, ActionProposal.created_at)
        .all()
    )

    by_workspace = {}
    for workspace_id, proposal_id in rows:
        by_workspace.setdefault(workspace_id, []).append(proposal_id)

    count = 0
    for workspace_id, proposal_ids in by_workspace.items():
        try:
            count += _expire_workspace(workspace_id, proposal_ids, now, timeout)
        except Exception as e:
            db.session.rollback()
            logger.error('[governance] expiry failed workspace=%s: %s', workspace_id, e)

    if count:
        logger.info('[governance] expired %d stale proposal(s)', count)
    return count


# ---- internal helpers ----

def _expire_workspace(workspace_id, proposal_ids, now, timeout):
    from models import db

    expired = 0
    with workspace_lock(workspace_id, timeout):
        try:
            for proposal_id in proposal_ids:
                if not transition_from_pending(proposal_id, 'expired'):
                    continue
                audit_sink.append(
                    workspace_id=workspace_id,
                    proposal_id=proposal_id,
                    event='expired',
                    actor=audit_sink.system_actor(),
                    detail={
                        'reason': 'Proposal expired without review',
                        'expired_at': now.isoformat(),
                    },
                )
                expired += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
    return expired


def _load_policy(workspace_id):
    """Policy for autopilot evaluation, or None if it cannot be read."""
    from models import db

    try:
        return get_policy(workspace_id)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning('[governance] policy lookup failed workspace=%s, '
                       'autopilot disabled for this proposal: %s', workspace_id, e)
        return None


def _reserve_autopilot(workspace_id, policy, action_type, risk_tier,
                       estimated_cost, now):
    """Check eligibility and reserve budget for an auto-approval.

    Raises:
        PolicyViolation: the policy does not allow this action on autopilot.
        BudgetExhausted: the weekly action cap or daily budget is used up.
    """
    if risk_tier == 'critical':
        raise PolicyViolation('Critical-tier actions always require review')
    if policy is None:
        raise PolicyViolation('Autopilot policy unavailable')
    if not policy.enabled:
        raise PolicyViolation('Autopilot is disabled for this workspace')
    if action_type not in (policy.allowed_action_types or []):
        raise PolicyViolation(f'Action type {action_type} is not allowed on autopilot')
    if not tier_at_most(risk_tier, policy.require_approval_above_risk):
        raise PolicyViolation(
            f'Risk tier {risk_tier} is above the autopilot threshold '
            f'{policy.require_approval_above_risk}'
        )

    weekly = budget_ledger.try_reserve_action(
        workspace_id, cap=policy.max_actions_per_week, now=now,
    )
    if not weekly.granted:
        raise BudgetExhausted(
            f'Weekly autopilot cap reached ({int(weekly.used)}/{int(weekly.cap)})'
        )

    if estimated_cost is not None and estimated_cost > 0:
        daily_cap = Decimal(str(policy.max_daily_budget))
        if daily_cap <= 0:
            raise BudgetExhausted('Autopilot spend is disabled (max_daily_budget is 0)')
        daily = budget_ledger.try_reserve_spend(
            workspace_id, estimated_cost, cap=daily_cap, now=now,
        )
        if not daily.granted:
            raise BudgetExhausted(
                f'Daily autopilot budget exhausted (remaining {daily.remaining})'
            )


def _require_identifier(value, name):
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f'{name} is required')
    value = value.strip()
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise InvalidArgument(f'{name} cannot exceed {MAX_IDENTIFIER_LENGTH} characters')
    return value


def _validate_components(components):
    if components is None:
        return []
    if not isinstance(components, (list, tuple)):
        raise InvalidArgument('components must be a list')
    if len(components) > MAX_COMPONENTS:
        raise InvalidArgument(f'A proposal cannot have more than {MAX_COMPONENTS} components')

    keys = []
    for key in components:
        key = _require_identifier(key, 'component key')
        if key in keys:
            raise InvalidArgument(f'Duplicate component key: {key}')
        keys.append(key)
    return keys


def _parse_estimated_cost(payload):
    if 'estimated_cost' not in payload or payload['estimated_cost'] is None:
        return None

    value = payload['estimated_cost']
    if isinstance(value, bool):
        raise InvalidArgument('payload.estimated_cost must be a number')
    try:
        cost = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidArgument(f'Invalid payload.estimated_cost: {value}')
    if not cost.is_finite() or cost < 0:
        raise InvalidArgument('payload.estimated_cost must be a non-negative number')
    return cost
