"""
Shared pytest fixtures for the Decision Process Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - simple_template: the built-in four-phase template definition
    - published_instance: a published instance of the simple template
"""

import pytest

from app import create_app
from app.models import db as _db


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


# ── Convenience fixtures ─────────────────────────────────────────────────


CHAINED_DATES = [
    ("submission", "2026-01-01T00:00:00+00:00", "2026-02-01T00:00:00+00:00"),
    ("review", "2026-02-01T00:00:00+00:00", "2026-03-01T00:00:00+00:00"),
    ("voting", "2026-03-01T00:00:00+00:00", "2026-04-01T00:00:00+00:00"),
    ("results", "2026-04-01T00:00:00+00:00", "2026-05-01T00:00:00+00:00"),
]


def _chained_overrides():
    """Phase overrides with each phase ending where the next one starts."""
    return [
        {"phaseId": phase_id, "startDate": start, "endDate": end}
        for phase_id, start, end in CHAINED_DATES
    ]


@pytest.fixture()
def simple_template():
    from app.services.schema_registry import get_template
    return get_template("simple")


@pytest.fixture()
def published_instance():
    """Published 'simple' instance with chained dates and its 3 transitions."""
    from app.services.decision_service import create_instance_from_template
    return create_instance_from_template(
        "simple",
        name="Community Budget 2026",
        phases=_chained_overrides(),
        status="published",
    )


@pytest.fixture()
def chained_overrides():
    """Fresh phase override list (safe to mutate)."""
    return _chained_overrides()
