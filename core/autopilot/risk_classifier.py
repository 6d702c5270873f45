"""
Risk classifier — maps an action type to a risk tier.

The static table covers the action kinds the dashboard's agents emit.
Administrators can override a tier per workspace (risk_tier_overrides).
Unknown action types are 'high': they always go to a human and are never
auto-approved by accident.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

RISK_TIERS = ('low', 'medium', 'high', 'critical')

UNKNOWN_ACTION_TIER = 'high'

DEFAULT_RISK_TIERS = {
    # seo / content upkeep
    'seo_fix': 'low',
    'meta_update': 'low',
    'review_response': 'low',
    'image_optimization': 'low',
    'content_update': 'medium',
    'content_suggestion': 'medium',
    # social / lifecycle
    'social_scheduling': 'medium',
    'social_publish': 'medium',
    'email_automation': 'medium',
    # ads
    'ad_bid_adjustment': 'high',
    'ad_pause_underperforming': 'high',
    'ads_optimization': 'high',
    'campaign_pause': 'high',
    # money and account-level changes
    'budget_increase': 'critical',
    'payment_method_change': 'critical',
    'domain_transfer': 'critical',
    'bulk_delete': 'critical',
    'account_deletion': 'critical',
}


def tier_rank(tier):
    """Position of *tier* in RISK_TIERS (low=0 ... critical=3)."""
    return RISK_TIERS.index(tier)


def tier_at_most(tier, ceiling):
    return tier_rank(tier) <= tier_rank(ceiling)


def classify(action_type, overrides=None):
    """Return the risk tier for *action_type*.

    Args:
        action_type: Action kind string.
        overrides: Optional {action_type: tier} taking precedence over the
                   static table.
    """
    if overrides:
        tier = overrides.get(action_type)
        if tier in RISK_TIERS:
            return tier
    return DEFAULT_RISK_TIERS.get(action_type, UNKNOWN_ACTION_TIER)


def get_risk_overrides(workspace_id):
    """Return {action_type: tier} overrides for a workspace."""
    from models import RiskTierOverride

    rows = RiskTierOverride.query.filter_by(workspace_id=workspace_id).all()
    return {r.action_type: r.risk_tier for r in rows}


def classify_for_workspace(workspace_id, action_type):
    """Classify with the workspace's overrides applied.

    A failed override lookup is logged and falls back to the static table.
    """
    try:
        overrides = get_risk_overrides(workspace_id)
    except SQLAlchemyError as e:
        from models import db
        db.session.rollback()
        logger.warning('[autopilot] risk override lookup failed workspace=%s: %s',
                       workspace_id, e)
        overrides = None
    return classify(action_type, overrides)


def set_risk_override(workspace_id, action_type, risk_tier, actor_id):
    """Set (or replace) a workspace-level risk tier for an action type.

    Only the workspace owner or an admin may edit the table.

    Returns:
        RiskTierOverride
    """
    from models import db, User, RiskTierOverride
    from core.governance import audit_sink
    from core.governance.errors import InvalidArgument, NotFound, PolicyViolation

    if db.session.get(User, workspace_id) is None:
        raise NotFound('Workspace not found')
    actor = db.session.get(User, actor_id)
    if actor is None:
        raise NotFound('User not found')
    if actor_id != workspace_id and not actor.is_admin:
        raise PolicyViolation('Only the workspace owner or an admin can edit risk tiers')

    if not isinstance(action_type, str) or not action_type.strip():
        raise InvalidArgument('action_type is required')
    if risk_tier not in RISK_TIERS:
        raise InvalidArgument(
            f'Invalid risk_tier: {risk_tier}. Must be one of {", ".join(RISK_TIERS)}'
        )

    action_type = action_type.strip()
    row = RiskTierOverride.query.filter_by(
        workspace_id=workspace_id, action_type=action_type,
    ).first()
    previous = classify_for_workspace(workspace_id, action_type)

    try:
        if row is None:
            row = RiskTierOverride(workspace_id=workspace_id, action_type=action_type)
            db.session.add(row)
        row.risk_tier = risk_tier
        row.updated_by = actor_id

        audit_sink.append(
            workspace_id=workspace_id,
            event='risk_override_set',
            actor=audit_sink.user_actor(actor_id),
            detail={
                'action_type': action_type,
                'previous_tier': previous,
                'risk_tier': risk_tier,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info('[autopilot] risk override workspace=%s %s=%s',
                workspace_id, action_type, risk_tier)
    return row
