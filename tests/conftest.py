"""
Shared pytest fixtures for the LunaManager test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_workspace / make_company / add_member: factories
    - owner, workspace, company: a ready-made tenant for API tests
    - auth_headers: Bearer header builder
"""

import pytest

from lunamanager import create_app
from lunamanager.models import db as _db
from lunamanager.models.workspace import WorkspaceMember
from lunamanager.services import company_service, workspace_service
from lunamanager.services.jwt_service import generate_access_token
from lunamanager.services.permission_service import invalidate_all_cache
from lunamanager.services.user_service import create_user

DEFAULT_PASSWORD = "SecurePass123!"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
        # ids are reused across tests; stale cached permissions would leak
        invalidate_all_cache()
        yield
        invalidate_all_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(email=None, name="Test User", password=DEFAULT_PASSWORD, email_verified=True):
        counter["n"] += 1
        user = create_user(
            email or f"user{counter['n']}@example.com", password, name, email_verified=email_verified
        )
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_workspace():
    def _make(owner, name="Acme Holding"):
        ws = workspace_service.create_workspace(owner.id, name)
        _db.session.commit()
        return ws

    return _make


@pytest.fixture()
def make_company():
    def _make(workspace, name="Luna Teknoloji", user=None, **fields):
        company = company_service.create_company(
            workspace, {"name": name, **fields}, user_id=user.id if user else workspace.owner_id
        )
        _db.session.commit()
        return company

    return _make


@pytest.fixture()
def add_member():
    def _add(workspace, user, role="member", restricted_to=None):
        permissions = {"restrictedToCompany": restricted_to} if restricted_to else {}
        member = WorkspaceMember(
            workspace_id=workspace.id, user_id=user.id, role=role, permissions=permissions
        )
        _db.session.add(member)
        _db.session.commit()
        return member

    return _add


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id)}"}

    return _headers


@pytest.fixture()
def owner(make_user):
    return make_user(email="owner@example.com", name="Ayse Owner")


@pytest.fixture()
def workspace(owner, make_workspace):
    return make_workspace(owner)


@pytest.fixture()
def company(workspace, make_company):
    return make_company(workspace)


@pytest.fixture()
def headers(owner, auth_headers):
    """Owner's Authorization header."""
    return auth_headers(owner)


@pytest.fixture()
def base(workspace, company):
    """URL prefix for company-scoped routes."""
    return f"/api/v1/workspaces/{workspace.id}/companies/{company.id}"
