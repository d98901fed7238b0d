"""
Shared pytest fixtures for the Decision Trail test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - decision: Pre-created decision with one object and two options
    - actor: Default caller identity kwargs
"""

import pytest

from decision_trail import create_app
from decision_trail.models import db as _db
from decision_trail.services import decision_service


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


@pytest.fixture()
def actor():
    return {"user_id": "user-1", "user_name": "Dana Designer"}


@pytest.fixture()
def decision(actor):
    """Kitchen Finishes decision with a countertop object and two options."""
    return decision_service.create_decision(
        {
            "project_id": "proj-1",
            "title": "Kitchen Finishes",
            "description": "Select finishes for the kitchen renovation",
            "category": "Interior",
            "due_date": "2026-12-01",
            "tags": ["kitchen", "finishes"],
            "metadata": {"room": "kitchen"},
            "decision_objects": [
                {
                    "title": "Countertop Material",
                    "options": [
                        {"label": "Quartz", "cost": "$2,500", "media_url": "https://cdn.test/quartz.jpg"},
                        {"label": "Granite", "cost": "$3,200"},
                    ],
                },
            ],
        },
        **actor,
    )
