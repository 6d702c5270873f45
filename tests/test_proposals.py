"""
Tests for proposal submission, autopilot evaluation, queries and expiry
"""
import threading
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from core.governance.proposals import (
    submit,
    get_proposal,
    get_proposals,
    get_pending,
    get_recent_decisions,
    expire_stale,
)
from core.governance.errors import InvalidArgument, NotFound


def _events(proposal_id):
    from core.governance.audit_sink import query
    return [e.event for e in query(proposal_id)]


# ---------------------------------------------------------------------------
# Submit: manual path
# ---------------------------------------------------------------------------

@pytest.mark.governance
class TestSubmitPending:

    def test_submit_without_policy_is_pending(self, user, make_proposal):
        p = make_proposal(action_type='seo_fix')

        assert p.status == 'pending'
        assert p.auto_approved is False
        assert p.risk_tier == 'low'
        assert p.reviewed_at is None

    def test_default_expiry_is_seven_days(self, user, make_proposal):
        now = datetime(2026, 10, 14, 9, 0, 0)
        p = make_proposal(now=now)

        assert p.created_at == now
        assert p.expires_at == now + timedelta(days=7)

    def test_custom_sla(self, user, make_proposal):
        now = datetime(2026, 10, 14, 9, 0, 0)
        p = make_proposal(now=now, sla=timedelta(hours=4))
        assert p.expires_at == now + timedelta(hours=4)

    def test_unknown_action_type_is_high_and_pending(self, user, seo_policy, make_proposal):
        p = make_proposal(action_type='mystery_action')

        assert p.risk_tier == 'high'
        assert p.status == 'pending'

    def test_not_allow_listed_stays_pending(self, user, seo_policy, make_proposal):
        p = make_proposal(action_type='content_update')
        assert p.status == 'pending'

    def test_created_is_audited_with_reason(self, user, seo_policy, make_proposal):
        from core.governance.audit_sink import query

        p = make_proposal(action_type='content_update')

        entries = query(p.id)
        assert [e.event for e in entries] == ['created']
        autopilot = entries[0].detail['autopilot']
        assert autopilot['eligible'] is False
        assert autopilot['code'] == 'PolicyViolation'

    def test_disabled_policy_stays_pending(self, user, seo_policy, make_proposal):
        from models import db

        seo_policy.enabled = False
        db.session.commit()

        assert make_proposal(action_type='seo_fix').status == 'pending'

    def test_threshold_requires_review_above(self, user, seo_policy, make_proposal):
        from models import db

        seo_policy.require_approval_above_risk = 'low'
        db.session.commit()

        # social_publish is medium: above the 'low' threshold
        assert make_proposal(action_type='social_publish').status == 'pending'
        assert make_proposal(action_type='seo_fix').status == 'auto_approved'

    def test_bundle_components_stored_in_order(self, user, make_proposal):
        p = make_proposal(action_type='social_publish',
                          components=['video_0', 'thumb_0', 'caption_0'])

        assert p.components == ['video_0', 'thumb_0', 'caption_0']
        assert p.component_map() == {
            'video_0': 'pending', 'thumb_0': 'pending', 'caption_0': 'pending',
        }


# ---------------------------------------------------------------------------
# Submit: autopilot path
# ---------------------------------------------------------------------------

@pytest.mark.governance
class TestSubmitAutopilot:

    def test_allowed_low_risk_is_auto_approved(self, user, seo_policy, make_proposal):
        p = make_proposal(action_type='seo_fix')

        assert p.status == 'auto_approved'
        assert p.auto_approved is True
        assert p.reviewed_at is not None
        assert p.policy_snapshot['allowed_action_types'] == ['seo_fix', 'social_publish']
        assert _events(p.id) == ['created', 'auto_approved']

    def test_weekly_cap_last_slot(self, user, seo_policy, make_proposal, seed_ledger):
        """9 of 10 used this week: the next allowed action takes the last slot."""
        from core.autopilot.budget_ledger import get_usage

        now = datetime.utcnow()
        seed_ledger(user.id, 'week', 9, now=now)

        p = make_proposal(action_type='seo_fix', now=now)

        assert p.status == 'auto_approved'
        assert get_usage(user.id, now=now)['week']['actions_used'] == 10

    def test_weekly_cap_reached_stays_pending(self, user, seo_policy, make_proposal, seed_ledger):
        from core.autopilot.budget_ledger import get_usage
        from core.governance.audit_sink import query

        now = datetime.utcnow()
        seed_ledger(user.id, 'week', 10, now=now)

        p = make_proposal(action_type='seo_fix', now=now)

        assert p.status == 'pending'
        assert p.auto_approved is False
        assert get_usage(user.id, now=now)['week']['actions_used'] == 10
        assert query(p.id)[0].detail['autopilot']['code'] == 'BudgetExhausted'

    def test_critical_never_auto_approved(self, user, make_proposal):
        from models import db, AutopilotPolicy

        # Written directly: update_policy refuses critical action types
        db.session.add(AutopilotPolicy(
            workspace_id=user.id,
            allowed_action_types=['budget_increase'],
            max_actions_per_week=100,
            max_daily_budget=Decimal('1000'),
            require_approval_above_risk='high',
        ))
        db.session.commit()

        p = make_proposal(action_type='budget_increase')

        assert p.risk_tier == 'critical'
        assert p.status == 'pending'
        assert p.auto_approved is False

    def test_override_to_critical_blocks_autopilot(self, user, seo_policy, make_proposal):
        from core.autopilot.risk_classifier import set_risk_override

        set_risk_override(user.id, 'seo_fix', 'critical', actor_id=user.id)

        p = make_proposal(action_type='seo_fix')
        assert p.risk_tier == 'critical'
        assert p.status == 'pending'

    def test_spend_within_daily_budget(self, user, seo_policy, make_proposal):
        from core.autopilot.budget_ledger import get_usage

        now = datetime.utcnow()
        p = make_proposal(action_type='seo_fix', payload={'estimated_cost': '20.50'}, now=now)

        assert p.status == 'auto_approved'
        assert Decimal(str(p.estimated_cost)) == Decimal('20.50')
        assert Decimal(get_usage(user.id, now=now)['day']['spent']) == Decimal('20.50')

    def test_fractional_spend_up_to_exact_budget(self, user, seo_policy, make_proposal):
        from models import db
        from core.autopilot.budget_ledger import get_usage

        seo_policy.max_daily_budget = Decimal('0.30')
        db.session.commit()

        now = datetime.utcnow()
        first = make_proposal(action_type='seo_fix', payload={'estimated_cost': 0.10}, now=now)
        second = make_proposal(action_type='seo_fix', payload={'estimated_cost': 0.20}, now=now)

        assert first.status == 'auto_approved'
        assert second.status == 'auto_approved'
        usage = get_usage(user.id, now=now)
        assert Decimal(usage['day']['spent']) == Decimal('0.30')
        assert Decimal(usage['day']['remaining']) == Decimal('0')

    def test_over_daily_budget_rolls_back_weekly_slot(self, user, seo_policy,
                                                      make_proposal, seed_ledger):
        """A refused spend must not leave the weekly action reserved."""
        from core.autopilot.budget_ledger import get_usage

        now = datetime.utcnow()
        seed_ledger(user.id, 'day', 45, now=now)

        p = make_proposal(action_type='seo_fix', payload={'estimated_cost': 10}, now=now)

        assert p.status == 'pending'
        usage = get_usage(user.id, now=now)
        assert usage['week']['actions_used'] == 0
        assert Decimal(usage['day']['spent']) == Decimal('45')

    def test_zero_daily_budget_blocks_spend(self, user, seo_policy, make_proposal):
        from models import db

        seo_policy.max_daily_budget = Decimal('0')
        db.session.commit()

        assert make_proposal(action_type='seo_fix',
                             payload={'estimated_cost': 1}).status == 'pending'
        # Zero-cost actions do not touch the daily budget
        assert make_proposal(action_type='seo_fix').status == 'auto_approved'

    def test_policy_change_is_prospective(self, user, seo_policy, make_proposal):
        from core.autopilot.policy_store import update_policy

        pending = make_proposal(action_type='content_update')
        update_policy(user.id, {'allowed_action_types': ['seo_fix', 'content_update']})

        assert get_proposal(pending.id).status == 'pending'
        assert make_proposal(action_type='content_update').status == 'auto_approved'

    def test_concurrent_submits_never_exceed_weekly_cap(self, app, user, seo_policy):
        """20 simultaneous submits against a cap of 10: exactly 10 auto-approve."""
        from models import ActionProposal

        workspace_id = user.id
        statuses = []
        errors = []
        guard = threading.Lock()

        def worker(i):
            with app.app_context():
                try:
                    p = submit(workspace_id, 'seo_agent', 'seo_fix', {'page': f'/p/{i}'},
                               timeout=30)
                    with guard:
                        statuses.append(p.status)
                except Exception as e:
                    with guard:
                        errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert statuses.count('auto_approved') == 10
        assert statuses.count('pending') == 10
        assert ActionProposal.query.filter_by(
            workspace_id=workspace_id, auto_approved=True,
        ).count() == 10


# ---------------------------------------------------------------------------
# Submit: validation
# ---------------------------------------------------------------------------

@pytest.mark.governance
class TestSubmitValidation:

    @pytest.mark.parametrize('kwargs', [
        {'agent_type': ''},
        {'agent_type': None},
        {'action_type': '   '},
        {'action_type': 'x' * 101},
        {'payload': 'not a dict'},
        {'payload': {'estimated_cost': -5}},
        {'payload': {'estimated_cost': 'cheap'}},
        {'payload': {'estimated_cost': True}},
        {'components': 'video_0'},
        {'components': ['video_0', 'video_0']},
        {'components': ['']},
        {'sla': timedelta(0)},
    ])
    def test_invalid_arguments(self, user, kwargs):
        args = {
            'workspace_id': user.id,
            'agent_type': 'seo_agent',
            'action_type': 'seo_fix',
            'payload': {},
        }
        args.update(kwargs)
        with pytest.raises(InvalidArgument):
            submit(**args)

    def test_too_many_components(self, user, make_proposal):
        with pytest.raises(InvalidArgument):
            make_proposal(components=[f'c{i}' for i in range(51)])

    def test_unknown_workspace(self, app):
        with pytest.raises(NotFound):
            submit(99999, 'seo_agent', 'seo_fix', {})

    def test_unknown_workspace_takes_no_lock(self, app):
        from core.governance import locks

        for workspace_id in (424242, 424243):
            with pytest.raises(NotFound):
                submit(workspace_id, 'seo_agent', 'seo_fix', {})
            assert workspace_id not in locks._workspace_locks

    @pytest.mark.parametrize('supersedes_id', [{'id': 'abc'}, ['abc'], 17])
    def test_supersedes_id_must_be_string(self, user, supersedes_id):
        with pytest.raises(InvalidArgument):
            submit(user.id, 'seo_agent', 'seo_fix', {}, supersedes_id=supersedes_id)

    def test_invalid_submit_stores_nothing(self, user):
        from models import ActionProposal

        with pytest.raises(InvalidArgument):
            submit(user.id, 'seo_agent', 'seo_fix', {'estimated_cost': -1})
        assert ActionProposal.query.count() == 0


# ---------------------------------------------------------------------------
# Supersedes
# ---------------------------------------------------------------------------

@pytest.mark.governance
class TestSupersedes:

    def test_supersedes_existing_proposal(self, user, make_proposal):
        first = make_proposal()
        second = make_proposal(supersedes_id=first.id)

        assert second.supersedes_id == first.id
        # The superseded proposal is left as-is
        assert get_proposal(first.id).status == 'pending'

    def test_supersedes_unknown_proposal(self, user, make_proposal):
        with pytest.raises(NotFound):
            make_proposal(supersedes_id='00000000-0000-0000-0000-000000000000')

    def test_supersedes_other_workspace(self, user, other_user, make_proposal):
        foreign = make_proposal(workspace_id=other_user.id)
        with pytest.raises(NotFound):
            make_proposal(supersedes_id=foreign.id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

@pytest.mark.governance
class TestQueries:

    def test_get_proposal_scoped_to_workspace(self, user, other_user, make_proposal):
        p = make_proposal()

        assert get_proposal(p.id, workspace_id=user.id).id == p.id
        with pytest.raises(NotFound):
            get_proposal(p.id, workspace_id=other_user.id)

    def test_get_proposal_unknown(self, app):
        with pytest.raises(NotFound):
            get_proposal('nope')

    def test_filters(self, user, seo_policy, make_proposal):
        make_proposal(action_type='seo_fix')
        make_proposal(action_type='content_update')
        make_proposal(action_type='content_update', agent_type='social_agent')

        assert len(get_proposals(user.id)) == 3
        assert len(get_proposals(user.id, status='auto_approved')) == 1
        assert len(get_proposals(user.id, action_type='content_update')) == 2
        assert len(get_proposals(user.id, agent_type='social_agent')) == 1
        assert len(get_pending(user.id)) == 2

    def test_unknown_status_filter(self, user):
        with pytest.raises(InvalidArgument):
            get_proposals(user.id, status='maybe')

    def test_pending_newest_first(self, user, make_proposal):
        base = datetime.utcnow()
        old = make_proposal(now=base - timedelta(hours=2))
        new = make_proposal(now=base - timedelta(hours=1))

        assert [p.id for p in get_pending(user.id)] == [new.id, old.id]

    def test_workspace_isolation(self, user, other_user, make_proposal):
        make_proposal()
        make_proposal(workspace_id=other_user.id)

        assert len(get_proposals(user.id)) == 1
        assert len(get_proposals(other_user.id)) == 1

    def test_recent_decisions_excludes_pending(self, user, seo_policy, make_proposal):
        auto = make_proposal(action_type='seo_fix')
        make_proposal(action_type='content_update')

        assert [p.id for p in get_recent_decisions(user.id)] == [auto.id]


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------

@pytest.mark.governance
class TestExpireStale:

    def test_expires_overdue_pending(self, user, make_proposal):
        now = datetime.utcnow()
        stale = make_proposal(now=now - timedelta(days=8))
        fresh = make_proposal(now=now)

        assert expire_stale(now=now) == 1
        assert get_proposal(stale.id).status == 'expired'
        assert get_proposal(fresh.id).status == 'pending'
        assert _events(stale.id) == ['created', 'expired']

    def test_expiry_is_idempotent(self, user, make_proposal):
        now = datetime.utcnow()
        make_proposal(now=now - timedelta(days=8))

        assert expire_stale(now=now) == 1
        assert expire_stale(now=now) == 0

    def test_terminal_proposals_untouched(self, user, seo_policy, make_proposal):
        now = datetime.utcnow()
        auto = make_proposal(action_type='seo_fix', now=now - timedelta(days=8))

        assert expire_stale(now=now) == 0
        assert get_proposal(auto.id).status == 'auto_approved'

    def test_expires_across_workspaces(self, user, other_user, make_proposal):
        now = datetime.utcnow()
        make_proposal(now=now - timedelta(days=8))
        make_proposal(workspace_id=other_user.id, now=now - timedelta(days=9))

        assert expire_stale(now=now) == 2

    def test_expiry_audit_actor_is_system(self, user, make_proposal):
        from core.governance.audit_sink import query

        now = datetime.utcnow()
        p = make_proposal(now=now - timedelta(days=8))
        expire_stale(now=now)

        entry = query(p.id)[-1]
        assert entry.event == 'expired'
        assert entry.actor == 'system'
