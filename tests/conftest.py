"""
Pytest configuration and shared fixtures for the governance engine tests
"""
import pytest
import os
import sys
import tempfile
from datetime import datetime
from decimal import Decimal
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['TESTING'] = 'true'


@pytest.fixture(scope='session')
def app():
    """Create and configure a test Flask application instance"""
    # File-backed SQLite so worker threads share the database. The engine is
    # built in db.init_app(), so the URL must be set before server is imported.
    db_fd, db_path = tempfile.mkstemp(suffix='.db')
    os.environ['DATABASE_URL'] = f'sqlite:///{db_path}'

    from server import app as flask_app
    from models import db
    from rate_limiter import limiter

    flask_app.config.update({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': 'test-secret-key',
    })

    # Disable rate limiting for tests (must be done after init_limiter ran)
    limiter.enabled = False

    # Create tables inside a persistent app context
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()

    # Close and remove temporary database
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture(autouse=True)
def _clean_db(app):
    """Clean up data between tests to avoid UNIQUE constraint violations."""
    from models import db
    yield
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()


@pytest.fixture(scope='function')
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def user(app):
    """Workspace owner (workspace_id == user.id)"""
    from models import User, db

    user = User(email='owner@example.com', created_at=datetime.utcnow())
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def other_user(app):
    """A second workspace for isolation tests"""
    from models import User, db

    u = User(email='other@example.com', created_at=datetime.utcnow())
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def admin_user(app):
    """Platform admin allowed to review any workspace"""
    from models import User, db

    u = User(email='admin@example.com', created_at=datetime.utcnow(), is_admin=True)
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def seo_policy(app, user):
    """Autopilot allowed for seo_fix and social_publish, 10 actions/week, 50/day."""
    from models import AutopilotPolicy, db

    policy = AutopilotPolicy(
        workspace_id=user.id,
        enabled=True,
        allowed_action_types=['seo_fix', 'social_publish'],
        max_actions_per_week=10,
        max_daily_budget=Decimal('50.0000'),
        require_approval_above_risk='high',
    )
    db.session.add(policy)
    db.session.commit()
    return policy


@pytest.fixture
def authenticated_client(client, user):
    """Test client with the workspace owner's session"""
    with client.session_transaction() as sess:
        sess['user_id'] = user.id
    return client


@pytest.fixture
def make_proposal(app, user):
    """Factory that submits proposals for the owner's workspace."""
    from core.governance.proposals import submit

    def _make(action_type='content_update', payload=None, components=None,
              workspace_id=None, **kwargs):
        return submit(
            workspace_id=workspace_id or user.id,
            agent_type=kwargs.pop('agent_type', 'content_agent'),
            action_type=action_type,
            payload=payload if payload is not None else {'page': '/pricing'},
            components=components,
            **kwargs,
        )
    return _make


@pytest.fixture
def seed_ledger(app):
    """Write a ledger bucket directly, bypassing try_reserve (setup only)."""
    from models import BudgetLedgerEntry, db
    from core.autopilot.budget_ledger import bucket_key, to_units

    def _seed(workspace_id, bucket_kind, amount, now=None):
        entry = BudgetLedgerEntry(
            workspace_id=workspace_id,
            bucket_kind=bucket_kind,
            bucket_key=bucket_key(bucket_kind, now or datetime.utcnow()),
            amount_units=to_units(Decimal(str(amount))),
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    return _seed
