"""
Budget ledger — autopilot actions per week and spend per day, per workspace.

Buckets are only ever mutated by try_reserve(), as one conditional UPDATE:

    UPDATE autopilot_budget_ledger
       SET amount_units = amount_units + :n
     WHERE <bucket> AND amount_units + :n <= :cap

so two concurrent reservations can never both take the last unit. The
ledger does not commit: the caller's transaction does, which is what makes
a reservation and the proposal transition it pays for commit (or roll back)
together. Buckets never shrink; a new week or day starts a new bucket.

Quantities are held as integer ten-thousandths (UNITS_PER_WHOLE) in the
database, so the comparison above is integer arithmetic on every backend.
Amounts finer than 0.0001 round up; caps round down.
"""
from __future__ import annotations

from collections import namedtuple
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR

BUCKET_WEEK = 'week'
BUCKET_DAY = 'day'
BUCKET_KINDS = frozenset({BUCKET_WEEK, BUCKET_DAY})

UNITS_PER_WHOLE = 10000
_QUANTUM = Decimal('0.0001')

Reservation = namedtuple('Reservation', ['granted', 'remaining', 'used', 'cap'])


def week_bucket(now: datetime) -> str:
    """ISO week key, e.g. '2026-W42'."""
    iso = now.isocalendar()
    return f'{iso[0]}-W{iso[1]:02d}'


def day_bucket(now: datetime) -> str:
    """ISO date key, e.g. '2026-10-17'."""
    return now.date().isoformat()


def bucket_key(bucket_kind: str, now: datetime) -> str:
    if bucket_kind == BUCKET_WEEK:
        return week_bucket(now)
    return day_bucket(now)


def to_units(value: Decimal, rounding=ROUND_CEILING) -> int:
    """Decimal quantity -> integer ten-thousandths."""
    return int(value.quantize(_QUANTUM, rounding=rounding) * UNITS_PER_WHOLE)


def from_units(units: int) -> Decimal:
    return (Decimal(int(units)) / UNITS_PER_WHOLE).quantize(_QUANTUM)


def try_reserve(workspace_id: int, amount, bucket_kind: str = BUCKET_DAY,
                cap=None, now: datetime | None = None) -> Reservation:
    """Atomically reserve *amount* from the workspace's current bucket.

    Args:
        workspace_id: Workspace scope.
        amount: Positive quantity (actions or currency).
        bucket_kind: 'week' (action count) or 'day' (spend).
        cap: Bucket cap. Defaults to the workspace policy
             (max_actions_per_week / max_daily_budget).
        now: Clock override (UTC).

    Returns:
        Reservation(granted, remaining, used, cap). On a refused reservation
        nothing is written.

    Raises:
        InvalidArgument: non-positive amount or unknown bucket kind.
    """
    from models import db, BudgetLedgerEntry
    from core.governance.errors import InvalidArgument

    if bucket_kind not in BUCKET_KINDS:
        raise InvalidArgument(f'Unknown bucket kind: {bucket_kind}')

    amount = _to_decimal(amount, 'amount')
    if amount <= 0:
        raise InvalidArgument('amount must be positive')

    if cap is None:
        cap = _policy_cap(workspace_id, bucket_kind)
    cap = _to_decimal(cap, 'cap')

    amount_units = to_units(amount, ROUND_CEILING)
    cap_units = to_units(cap, ROUND_FLOOR)

    now = now or datetime.utcnow()
    key = bucket_key(bucket_kind, now)

    _ensure_bucket(workspace_id, bucket_kind, key, now)

    table = BudgetLedgerEntry.__table__
    where = (
        table.c.workspace_id == workspace_id,
        table.c.bucket_kind == bucket_kind,
        table.c.bucket_key == key,
    )
    result = db.session.execute(
        table.update()
        .where(*where, table.c.amount_units + amount_units <= cap_units)
        .values(amount_units=table.c.amount_units + amount_units)
    )
    granted = result.rowcount == 1

    used_units = db.session.execute(
        db.select(table.c.amount_units).where(*where)
    ).scalar_one()
    used = from_units(used_units)
    cap = from_units(cap_units)
    remaining = max(cap - used, Decimal('0'))

    return Reservation(granted=granted, remaining=remaining, used=used, cap=cap)


def try_reserve_action(workspace_id: int, cap=None, now: datetime | None = None) -> Reservation:
    """Reserve one autopilot action from this week's bucket."""
    return try_reserve(workspace_id, 1, bucket_kind=BUCKET_WEEK, cap=cap, now=now)


def try_reserve_spend(workspace_id: int, amount, cap=None,
                      now: datetime | None = None) -> Reservation:
    """Reserve *amount* of today's autopilot spend."""
    return try_reserve(workspace_id, amount, bucket_kind=BUCKET_DAY, cap=cap, now=now)


def get_usage(workspace_id: int, now: datetime | None = None) -> dict:
    """Read-only snapshot of the current week/day buckets for the UI."""
    from models import db, BudgetLedgerEntry
    from core.autopilot.policy_store import get_policy

    now = now or datetime.utcnow()
    policy = get_policy(workspace_id)
    table = BudgetLedgerEntry.__table__

    def _used(kind):
        value = db.session.execute(
            db.select(table.c.amount_units).where(
                table.c.workspace_id == workspace_id,
                table.c.bucket_kind == kind,
                table.c.bucket_key == bucket_key(kind, now),
            )
        ).scalar_one_or_none()
        return from_units(value or 0)

    week_used = _used(BUCKET_WEEK)
    day_used = _used(BUCKET_DAY)
    week_cap = Decimal(policy.max_actions_per_week)
    day_cap = Decimal(str(policy.max_daily_budget))

    return {
        'week': {
            'bucket': week_bucket(now),
            'actions_used': int(week_used),
            'max_actions_per_week': policy.max_actions_per_week,
            'remaining': int(max(week_cap - week_used, 0)),
        },
        'day': {
            'bucket': day_bucket(now),
            'spent': str(day_used),
            'max_daily_budget': str(day_cap),
            'remaining': str(max(day_cap - day_used, Decimal('0'))),
        },
    }


# ---- internal helpers ----

def _ensure_bucket(workspace_id, bucket_kind, key, now):
    """Create the bucket row at zero if it does not exist yet."""
    from models import db, BudgetLedgerEntry

    table = BudgetLedgerEntry.__table__
    values = {
        'workspace_id': workspace_id,
        'bucket_kind': bucket_kind,
        'bucket_key': key,
        'amount_units': 0,
        'created_at': now,
    }
    conflict_cols = ['workspace_id', 'bucket_kind', 'bucket_key']

    dialect = db.engine.dialect.name
    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
        stmt = insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_cols)
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
        stmt = insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_cols)
    else:
        exists = db.session.execute(
            db.select(table.c.id).where(
                table.c.workspace_id == workspace_id,
                table.c.bucket_kind == bucket_kind,
                table.c.bucket_key == key,
            )
        ).first()
        if exists is not None:
            return
        stmt = table.insert().values(**values)

    db.session.execute(stmt)


def _policy_cap(workspace_id, bucket_kind):
    from core.autopilot.policy_store import get_policy

    policy = get_policy(workspace_id)
    if bucket_kind == BUCKET_WEEK:
        return policy.max_actions_per_week
    return policy.max_daily_budget


def _to_decimal(value, name):
    from core.governance.errors import InvalidArgument

    if isinstance(value, bool) or value is None:
        raise InvalidArgument(f'{name} must be a number')
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidArgument(f'Invalid {name}: {value}')
    if not result.is_finite():
        raise InvalidArgument(f'Invalid {name}: {value}')
    return result
