"""
Tests for the per-workspace autopilot policy store
"""
import pytest
from decimal import Decimal

from core.autopilot.policy_store import get_policy, update_policy
from core.governance.errors import InvalidArgument, NotFound, PolicyViolation


@pytest.mark.autopilot
class TestGetPolicy:

    def test_defaults_when_unset(self, user):
        policy = get_policy(user.id)

        assert policy.enabled is True
        assert policy.allowed_action_types == []
        assert policy.max_actions_per_week == 10
        assert Decimal(str(policy.max_daily_budget)) == Decimal('50')
        assert policy.require_approval_above_risk == 'high'

    def test_default_policy_is_not_persisted(self, user):
        from models import AutopilotPolicy

        get_policy(user.id)
        assert AutopilotPolicy.query.filter_by(workspace_id=user.id).count() == 0

    def test_unknown_workspace(self, app):
        with pytest.raises(NotFound):
            get_policy(424242)


@pytest.mark.autopilot
class TestUpdatePolicy:

    def test_partial_update_persists(self, user):
        policy = update_policy(user.id, {'allowed_action_types': ['seo_fix'],
                                         'max_actions_per_week': 5},
                               actor_id=user.id)

        assert policy.id is not None
        assert policy.allowed_action_types == ['seo_fix']
        assert policy.max_actions_per_week == 5
        # Untouched fields keep their defaults
        assert policy.require_approval_above_risk == 'high'

        again = get_policy(user.id)
        assert again.id == policy.id
        assert again.max_actions_per_week == 5

    def test_critical_action_type_rejected(self, user):
        with pytest.raises(PolicyViolation):
            update_policy(user.id, {'allowed_action_types': ['seo_fix', 'budget_increase']})

    def test_critical_override_rejected(self, user):
        from core.autopilot.risk_classifier import set_risk_override

        set_risk_override(user.id, 'seo_fix', 'critical', actor_id=user.id)
        with pytest.raises(PolicyViolation):
            update_policy(user.id, {'allowed_action_types': ['seo_fix']})

    def test_negative_budget_rejected(self, user):
        with pytest.raises(InvalidArgument):
            update_policy(user.id, {'max_daily_budget': -1})

    def test_zero_budget_allowed(self, user):
        policy = update_policy(user.id, {'max_daily_budget': 0})
        assert Decimal(str(policy.max_daily_budget)) == Decimal('0')

    def test_budget_accepts_decimal_strings(self, user):
        policy = update_policy(user.id, {'max_daily_budget': '12.50'})
        assert Decimal(str(policy.max_daily_budget)) == Decimal('12.50')

    def test_unknown_field_rejected(self, user):
        with pytest.raises(InvalidArgument):
            update_policy(user.id, {'auto_approve_everything': True})

    def test_empty_patch_rejected(self, user):
        with pytest.raises(InvalidArgument):
            update_policy(user.id, {})

    @pytest.mark.parametrize('patch', [
        {'enabled': 'yes'},
        {'max_actions_per_week': 2.5},
        {'max_actions_per_week': -3},
        {'max_daily_budget': 'lots'},
        {'require_approval_above_risk': 'critical'},
        {'allowed_action_types': 'seo_fix'},
        {'allowed_action_types': ['']},
    ])
    def test_invalid_values(self, user, patch):
        with pytest.raises(InvalidArgument):
            update_policy(user.id, patch)

    def test_failed_update_leaves_policy_unchanged(self, user, seo_policy):
        with pytest.raises(PolicyViolation):
            update_policy(user.id, {'max_actions_per_week': 1,
                                    'allowed_action_types': ['account_deletion']})

        assert get_policy(user.id).max_actions_per_week == 10

    def test_update_is_audited(self, user, seo_policy):
        from core.governance.audit_sink import get_trail

        update_policy(user.id, {'max_actions_per_week': 3}, actor_id=user.id)

        entries = get_trail(user.id, event='policy_updated')
        assert len(entries) == 1
        detail = entries[0].detail
        assert detail['changed_fields'] == ['max_actions_per_week']
        assert detail['policy_before']['max_actions_per_week'] == 10
        assert detail['policy_after']['max_actions_per_week'] == 3
        assert entries[0].proposal_id is None
