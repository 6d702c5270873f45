"""
core.autopilot — autopilot policy, risk tiers and budget.

Decides which proposed agent actions may skip human review, and bounds
how many (per week) and how much spend (per day) autopilot may consume.

Public API:
    classify, classify_for_workspace       — risk tiers
    set_risk_override, get_risk_overrides   — admin-edited tier table
    get_policy, update_policy               — per-workspace autopilot policy
    try_reserve, try_reserve_action,
    try_reserve_spend, get_usage            — budget ledger
"""

from core.autopilot.risk_classifier import (
    RISK_TIERS,
    DEFAULT_RISK_TIERS,
    classify,
    classify_for_workspace,
    set_risk_override,
    get_risk_overrides,
    tier_at_most,
)
from core.autopilot.policy_store import (
    DEFAULT_POLICY,
    get_policy,
    update_policy,
)
from core.autopilot.budget_ledger import (
    Reservation,
    try_reserve,
    try_reserve_action,
    try_reserve_spend,
    get_usage,
    week_bucket,
    day_bucket,
)

__all__ = [
    'RISK_TIERS',
    'DEFAULT_RISK_TIERS',
    'classify',
    'classify_for_workspace',
    'set_risk_override',
    'get_risk_overrides',
    'tier_at_most',
    'DEFAULT_POLICY',
    'get_policy',
    'update_policy',
    'Reservation',
    'try_reserve',
    'try_reserve_action',
    'try_reserve_spend',
    'get_usage',
    'week_bucket',
    'day_bucket',
]
