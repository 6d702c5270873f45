"""
Policy store — per-workspace autopilot configuration.

One AutopilotPolicy row per workspace; a workspace without a row gets the
defaults. Updates are validated here, not in the UI:

- max_daily_budget must be >= 0 (0 disables autopilot spend entirely).
- critical-tier action types can never be allow-listed.
- changes are prospective: pending proposals are never re-evaluated.
"""
import logging
from decimal import Decimal, InvalidOperation

from core.autopilot.risk_classifier import RISK_TIERS, classify_for_workspace

logger = logging.getLogger(__name__)

DEFAULT_POLICY = {
    'enabled': True,
    'allowed_action_types': [],
    'max_actions_per_week': 10,
    'max_daily_budget': Decimal('50'),
    'require_approval_above_risk': 'high',
}

# Critical is never a valid ceiling: it would mean "auto-approve everything".
APPROVAL_THRESHOLDS = tuple(t for t in RISK_TIERS if t != 'critical')

MUTABLE_FIELDS = frozenset(DEFAULT_POLICY)


def _require_workspace(workspace_id):
    from models import db, User
    from core.governance.errors import NotFound

    if workspace_id is None or db.session.get(User, workspace_id) is None:
        raise NotFound('Workspace not found')


def get_policy(workspace_id):
    """Return the workspace's AutopilotPolicy.

    If the workspace has never saved one, a transient (unsaved) policy with
    the defaults is returned.

    Raises:
        NotFound: unknown workspace.
    """
    from models import AutopilotPolicy

    _require_workspace(workspace_id)

    policy = AutopilotPolicy.query.filter_by(workspace_id=workspace_id).first()
    if policy is None:
        policy = _default_policy(workspace_id)
    return policy


def _default_policy(workspace_id):
    from models import AutopilotPolicy

    return AutopilotPolicy(
        workspace_id=workspace_id,
        enabled=DEFAULT_POLICY['enabled'],
        allowed_action_types=list(DEFAULT_POLICY['allowed_action_types']),
        max_actions_per_week=DEFAULT_POLICY['max_actions_per_week'],
        max_daily_budget=DEFAULT_POLICY['max_daily_budget'],
        require_approval_above_risk=DEFAULT_POLICY['require_approval_above_risk'],
    )


def update_policy(workspace_id, patch, actor_id=None):
    """Apply a partial update to the workspace's autopilot policy.

    Args:
        workspace_id: Workspace scope.
        patch: dict with any of MUTABLE_FIELDS.
        actor_id: The user making the change (None for system changes).

    Returns:
        AutopilotPolicy (persisted).

    Raises:
        NotFound: unknown workspace.
        InvalidArgument: malformed patch.
        PolicyViolation: a critical-tier action type was allow-listed.
    """
    from models import db, AutopilotPolicy
    from core.governance import audit_sink
    from core.governance.errors import InvalidArgument

    _require_workspace(workspace_id)

    if not isinstance(patch, dict) or not patch:
        raise InvalidArgument('patch must be a non-empty dict')

    unknown = set(patch) - MUTABLE_FIELDS
    if unknown:
        raise InvalidArgument(
            f'Unknown policy field(s): {", ".join(sorted(unknown))}'
        )

    cleaned = _validate_patch(workspace_id, patch)

    policy = AutopilotPolicy.query.filter_by(workspace_id=workspace_id).first()
    if policy is None:
        policy = _default_policy(workspace_id)
        db.session.add(policy)
        before = _default_policy(workspace_id).to_dict()
    else:
        before = policy.to_dict()

    try:
        for field, value in cleaned.items():
            setattr(policy, field, value)
        db.session.flush()
        after = policy.to_dict()

        audit_sink.append(
            workspace_id=workspace_id,
            event='policy_updated',
            actor=(audit_sink.user_actor(actor_id) if actor_id is not None
                   else audit_sink.system_actor()),
            detail={
                'changed_fields': sorted(cleaned),
                'policy_before': _jsonable(before),
                'policy_after': _jsonable(after),
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info('[autopilot] policy updated workspace=%s fields=%s',
                workspace_id, ','.join(sorted(cleaned)))
    return policy


def _validate_patch(workspace_id, patch):
    """Return a cleaned copy of *patch* or raise."""
    from core.governance.errors import InvalidArgument, PolicyViolation

    cleaned = {}

    if 'enabled' in patch:
        if not isinstance(patch['enabled'], bool):
            raise InvalidArgument('enabled must be a boolean')
        cleaned['enabled'] = patch['enabled']

    if 'max_actions_per_week' in patch:
        value = patch['max_actions_per_week']
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidArgument('max_actions_per_week must be an integer')
        if value < 0:
            raise InvalidArgument('max_actions_per_week cannot be negative')
        cleaned['max_actions_per_week'] = value

    if 'max_daily_budget' in patch:
        value = patch['max_daily_budget']
        if isinstance(value, bool) or value is None:
            raise InvalidArgument('max_daily_budget must be a number')
        try:
            budget = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise InvalidArgument(f'Invalid max_daily_budget: {value}')
        if not budget.is_finite():
            raise InvalidArgument(f'Invalid max_daily_budget: {value}')
        if budget < 0:
            raise InvalidArgument('max_daily_budget cannot be negative')
        cleaned['max_daily_budget'] = budget

    if 'require_approval_above_risk' in patch:
        value = patch['require_approval_above_risk']
        if value not in APPROVAL_THRESHOLDS:
            raise InvalidArgument(
                f'require_approval_above_risk must be one of '
                f'{", ".join(APPROVAL_THRESHOLDS)}'
            )
        cleaned['require_approval_above_risk'] = value

    if 'allowed_action_types' in patch:
        value = patch['allowed_action_types']
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise InvalidArgument('allowed_action_types must be a list')
        types = []
        for action_type in value:
            if not isinstance(action_type, str) or not action_type.strip():
                raise InvalidArgument('allowed_action_types entries must be non-empty strings')
            action_type = action_type.strip()
            if action_type not in types:
                types.append(action_type)

        critical = [t for t in types
                    if classify_for_workspace(workspace_id, t) == 'critical']
        if critical:
            raise PolicyViolation(
                f'Critical-tier action types cannot be auto-approved: '
                f'{", ".join(sorted(critical))}'
            )
        cleaned['allowed_action_types'] = sorted(types)

    return cleaned


def _jsonable(d):
    return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in d.items()}
