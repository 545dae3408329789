"""
Shared pytest fixtures for the HSE Corrective Action Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - NOW: fixed reference clock used by the lifecycle tests
    - make_action / make_sub_action: direct DB factories
"""

from datetime import datetime, timedelta, timezone

import pytest

from hse_app import create_app
from hse_app.models import db as _db
from hse_app.models.corrective_action import CorrectiveAction, SubAction

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
PAST = NOW - timedelta(days=2)
FUTURE = NOW + timedelta(days=10)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_action():
    """Insert a CorrectiveAction directly, bypassing the lifecycle service."""
    def _make(*, title="Fix guard rail", due_date=FUTURE, status="Not Started",
              overdue=False, assigned_to_id="u-owner", completed_at=None):
        ca = CorrectiveAction(
            title=title, due_date=due_date, status=status, overdue=overdue,
            assigned_to_id=assigned_to_id, created_by_id="u-creator",
            completed_at=completed_at,
        )
        _db.session.add(ca)
        _db.session.commit()
        return ca
    return _make


@pytest.fixture()
def make_sub_action():
    """Insert a SubAction directly under *parent*."""
    def _make(parent, *, title="Sub task", due_date=None, status="Not Started",
              overdue=False, assigned_to_id="u-worker", completed_at=None):
        sa = SubAction(
            corrective_action_id=parent.id, title=title, due_date=due_date,
            status=status, overdue=overdue, assigned_to_id=assigned_to_id,
            completed_at=completed_at,
        )
        _db.session.add(sa)
        _db.session.commit()
        return sa
    return _make
