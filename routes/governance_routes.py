"""
Governance routes — proposal submission, review, autopilot policy and audit.

Proposals:
    POST /api/governance/proposals                     — Agent runtime submits a proposal
    GET  /api/governance/proposals                     — List proposals for the workspace
    GET  /api/governance/proposals/pending             — Pending proposals (review UI)
    GET  /api/governance/proposals/recent              — Recently resolved proposals
    GET  /api/governance/proposals/<id>                — Single proposal with components
    GET  /api/governance/proposals/<id>/audit          — Audit trail of one proposal
Review:
    POST /api/governance/proposals/<id>/decide         — Human decides a proposal
    POST /api/governance/proposals/<id>/components/<key> — Human decides one component
Execution:
    GET  /api/governance/executable                    — Resolved, not yet executed
    POST /api/governance/proposals/<id>/execution      — Executor reports an outcome
Autopilot:
    GET   /api/governance/autopilot                    — Current policy
    PATCH /api/governance/autopilot                    — Update policy
    GET   /api/governance/budget                       — Ledger usage this week/day
    GET   /api/governance/risk-tiers                   — Effective risk tier table
    PUT   /api/governance/risk-tiers/<action_type>     — Override a tier
Audit / cron:
    GET  /api/governance/audit                         — Workspace audit trail
    POST /api/governance/internal/expire               — Cron: expire stale proposals
"""
import os
from flask import jsonify, request, session

from core.governance.errors import GovernanceError, InvalidArgument
from rate_limiter import limiter, SUBMIT_LIMIT, DECIDE_LIMIT


def _json_body():
    """Request JSON as a dict; {} when there is no body."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidArgument('Request body must be a JSON object')
    return data


def register_governance_routes(app):

    @app.errorhandler(GovernanceError)
    def governance_error(err):
        return jsonify(err.to_dict()), err.http_status

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    @app.route('/api/governance/proposals', methods=['POST'])
    @limiter.limit(SUBMIT_LIMIT)
    def governance_submit_proposal():
        """Agent runtime submits a proposed action.

        Body:
            agent_type (str): Originating agent.
            action_type (str): Action kind.
            payload (dict): Proposed change (optional estimated_cost).
            components (list[str], optional): Bundle component keys.
            supersedes_id (str, optional): Proposal this one corrects.
        """
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        data = _json_body()
        if not data:
            return jsonify({'error': 'Request body is required'}), 400

        if not data.get('agent_type'):
            return jsonify({'error': 'agent_type is required'}), 400
        if not data.get('action_type'):
            return jsonify({'error': 'action_type is required'}), 400

        from core.governance.proposals import submit

        proposal = submit(
            workspace_id=user_id,
            agent_type=data.get('agent_type'),
            action_type=data.get('action_type'),
            payload=data.get('payload', {}),
            components=data.get('components'),
            supersedes_id=data.get('supersedes_id'),
        )

        return jsonify({
            'success': True,
            'proposal': proposal.to_dict(),
        }), 201

    @app.route('/api/governance/proposals', methods=['GET'])
    def governance_list_proposals():
        """List proposals for the workspace.

        Query params:
            status, agent_type, action_type (str, optional): Filters.
            limit (int, optional): Max results (default 50).
        """
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        limit = request.args.get('limit', 50, type=int)
        limit = min(max(limit, 1), 200)

        from core.governance.proposals import get_proposals

        results = get_proposals(
            workspace_id=user_id,
            status=request.args.get('status'),
            agent_type=request.args.get('agent_type'),
            action_type=request.args.get('action_type'),
            limit=limit,
        )

        return jsonify({
            'proposals': [p.to_dict(include_components=False) for p in results],
            'count': len(results),
        })

    @app.route('/api/governance/proposals/pending', methods=['GET'])
    def governance_pending_proposals():
        """Pending proposals, newest first. Convenience endpoint for the review UI."""
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        limit = request.args.get('limit', 50, type=int)
        limit = min(max(limit, 1), 200)

        from core.governance.proposals import get_pending

        results = get_pending(workspace_id=user_id, limit=limit)

        return jsonify({
            'proposals': [p.to_dict() for p in results],
            'count': len(results),
        })

    @app.route('/api/governance/proposals/recent', methods=['GET'])
    def governance_recent_decisions():
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        limit = request.args.get('limit', 20, type=int)
        limit = min(max(limit, 1), 100)

        from core.governance.proposals import get_recent_decisions

        results = get_recent_decisions(workspace_id=user_id, limit=limit)

        return jsonify({
            'proposals': [p.to_dict() for p in results],
            'count': len(results),
        })

    @app.route('/api/governance/proposals/<proposal_id>', methods=['GET'])
    def governance_get_proposal(proposal_id):
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        from core.governance.proposals import get_proposal

        proposal = get_proposal(proposal_id, workspace_id=user_id)
        return jsonify({'proposal': proposal.to_dict()})

    @app.route('/api/governance/proposals/<proposal_id>/audit', methods=['GET'])
    def governance_proposal_audit(proposal_id):
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        from core.governance.proposals import get_proposal
        from core.governance.audit_sink import query

        proposal = get_proposal(proposal_id, workspace_id=user_id)
        entries = query(proposal.id)

        return jsonify({
            'audit_trail': [e.to_dict() for e in entries],
            'count': len(entries),
        })

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    @app.route('/api/governance/proposals/<proposal_id>/decide', methods=['POST'])
    @limiter.limit(DECIDE_LIMIT)
    def governance_decide(proposal_id):
        """Human decides a pending proposal.

        Body:
            outcome (str): 'approved', 'rejected' or 'partially_approved'.
            reason (str, optional): Required when rejecting.
            component_decisions (dict, optional): {component_key: decision}.
        """
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        data = _json_body()
        outcome = data.get('outcome')
        if not outcome:
            return jsonify({'error': 'outcome is required'}), 400

        from core.governance.decisions import decide

        proposal = decide(
            proposal_id=proposal_id,
            reviewer_id=user_id,
            outcome=outcome,
            reason=data.get('reason'),
            component_decisions=data.get('component_decisions'),
            workspace_id=user_id,
        )

        return jsonify({'success': True, 'proposal': proposal.to_dict()})

    @app.route('/api/governance/proposals/<proposal_id>/components/<component_key>',
               methods=['POST'])
    @limiter.limit(DECIDE_LIMIT)
    def governance_decide_component(proposal_id, component_key):
        """Human approves or rejects one component of a bundle.

        Body:
            decision (str): 'approved' or 'rejected'.
        """
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        data = _json_body()
        decision = data.get('decision')
        if not decision:
            return jsonify({'error': 'decision is required'}), 400

        from core.governance.decisions import decide_component

        cd = decide_component(
            proposal_id=proposal_id,
            component_key=component_key,
            decision=decision,
            reviewer_id=user_id,
            workspace_id=user_id,
        )

        return jsonify({'success': True, 'component_decision': cd.to_dict()})

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @app.route('/api/governance/executable', methods=['GET'])
    def governance_executable():
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        limit = request.args.get('limit', 50, type=int)
        limit = min(max(limit, 1), 200)

        from core.governance.execution import get_executable

        items = get_executable(workspace_id=user_id, limit=limit)
        return jsonify({'executable': items, 'count': len(items)})

    @app.route('/api/governance/proposals/<proposal_id>/execution', methods=['POST'])
    def governance_record_execution(proposal_id):
        """Executor reports the outcome of carrying out a proposal.

        Body:
            succeeded (bool): Whether the action was performed.
            detail (dict, optional): Executor-specific result data.
        """
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        data = _json_body()
        if 'succeeded' not in data:
            return jsonify({'error': 'succeeded is required'}), 400

        from core.governance.execution import record_execution

        entry_id = record_execution(
            proposal_id=proposal_id,
            succeeded=data.get('succeeded'),
            detail=data.get('detail'),
            workspace_id=user_id,
        )

        return jsonify({'success': True, 'audit_id': entry_id}), 201

    # ------------------------------------------------------------------
    # Autopilot policy, budget and risk tiers
    # ------------------------------------------------------------------

    @app.route('/api/governance/autopilot', methods=['GET'])
    def governance_get_autopilot():
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        from core.autopilot.policy_store import get_policy

        return jsonify({'policy': get_policy(user_id).to_dict()})

    @app.route('/api/governance/autopilot', methods=['PATCH'])
    def governance_update_autopilot():
        """Update autopilot settings. Body: any subset of the policy fields."""
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        data = request.get_json(silent=True)
        if not isinstance(data, dict) or not data:
            return jsonify({'error': 'Request body is required'}), 400

        from core.autopilot.policy_store import update_policy

        policy = update_policy(user_id, data, actor_id=user_id)
        return jsonify({'success': True, 'policy': policy.to_dict()})

    @app.route('/api/governance/budget', methods=['GET'])
    def governance_budget():
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        from core.autopilot.budget_ledger import get_usage

        return jsonify({'usage': get_usage(user_id)})

    @app.route('/api/governance/risk-tiers', methods=['GET'])
    def governance_risk_tiers():
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        from core.autopilot.risk_classifier import (
            DEFAULT_RISK_TIERS, classify, get_risk_overrides,
        )

        overrides = get_risk_overrides(user_id)
        action_types = sorted(set(DEFAULT_RISK_TIERS) | set(overrides))

        return jsonify({
            'risk_tiers': {a: classify(a, overrides) for a in action_types},
            'overrides': overrides,
        })

    @app.route('/api/governance/risk-tiers/<action_type>', methods=['PUT'])
    def governance_set_risk_tier(action_type):
        """Override the risk tier of an action type. Body: {risk_tier}."""
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        data = _json_body()
        risk_tier = data.get('risk_tier')
        if not risk_tier:
            raise InvalidArgument('risk_tier is required')

        from core.autopilot.risk_classifier import set_risk_override

        override = set_risk_override(user_id, action_type, risk_tier, actor_id=user_id)
        return jsonify({'success': True, 'override': override.to_dict()})

    # ------------------------------------------------------------------
    # Audit & cron
    # ------------------------------------------------------------------

    @app.route('/api/governance/audit', methods=['GET'])
    def governance_audit_trail():
        """Query the governance audit trail for the workspace.

        Query params:
            event (str, optional): Filter by event.
            limit (int, optional): Max results (default 100).
        """
        user_id = session.get('user_id')
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        limit = request.args.get('limit', 100, type=int)
        limit = min(max(limit, 1), 500)

        from core.governance.audit_sink import get_trail

        entries = get_trail(
            workspace_id=user_id,
            event=request.args.get('event'),
            limit=limit,
        )

        return jsonify({
            'audit_trail': [e.to_dict() for e in entries],
            'count': len(entries),
        })

    @app.route('/api/governance/internal/expire', methods=['POST'])
    def governance_internal_expire():
        """Cron endpoint: expire stale proposals."""
        # Auth: CRON_SECRET or ADMIN_PASSWORD
        auth_header = request.headers.get('Authorization', '')
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            body = {}
        cron_secret = os.environ.get('CRON_SECRET', '')
        admin_password = os.environ.get('ADMIN_PASSWORD', '')

        authorized = False
        if cron_secret and auth_header == f'Bearer {cron_secret}':
            authorized = True
        elif admin_password and body.get('password') == admin_password:
            authorized = True

        if not authorized:
            return jsonify({'error': 'Unauthorized'}), 401

        from core.governance.proposals import expire_stale

        return jsonify({
            'success': True,
            'proposals_expired': expire_stale(),
        })
