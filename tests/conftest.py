"""
Shared pytest fixtures for the Delivery Workspace test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / other_tenant: Pre-created Tenant entities
    - make_user: factory for users with a membership in a tenant
    - auth_headers: bearer headers for a user acting in a tenant
    - storage: LocalFileStorage rooted in tmp_path, installed on the app
    - hierarchy: client → project → phase → set seeded through the services

Fixtures commit instead of flushing: the API error handlers roll the
session back, which would otherwise erase uncommitted seed rows.
"""

import uuid

import pytest

from delivery_workspace import create_app
from delivery_workspace.models import db as _db
from delivery_workspace.models.tenancy import Tenant, User
from delivery_workspace.services import (
    client_service,
    phase_service,
    project_service,
    role_service,
    set_service,
)
from delivery_workspace.services.jwt_service import generate_access_token
from delivery_workspace.services.storage import LocalFileStorage


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
        # Tables are recreated per test and user ids repeat across runs;
        # clear the role cache so no decision leaks between tests.
        role_service.invalidate_all_cache()
        yield
        role_service.invalidate_all_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Tenancy fixtures ─────────────────────────────────────────────────────


def _make_tenant(name, slug, status="active"):
    tenant = Tenant(name=name, slug=slug, status=status)
    _db.session.add(tenant)
    _db.session.commit()
    return tenant


@pytest.fixture()
def tenant():
    return _make_tenant("Acme Delivery", "acme-delivery")


@pytest.fixture()
def other_tenant():
    return _make_tenant("Globex Delivery", "globex-delivery")


@pytest.fixture()
def make_user():
    """Factory: ``make_user("org_admin", tenant)`` → committed User with a membership."""

    def _make(role, tenant, *, status="active", client_id=None, full_name=None):
        user = User(
            email=f"{role}-{uuid.uuid4().hex[:8]}@example.com",
            full_name=full_name or role.replace("_", " ").title(),
        )
        _db.session.add(user)
        _db.session.flush()
        role_service.assign_membership(
            tenant_id=tenant.id, user_id=user.id, role=role, status=status, client_id=client_id,
        )
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers():
    """Factory: bearer headers for ``user`` acting inside ``tenant``."""

    def _headers(user, tenant=None):
        token = generate_access_token(user.id, tenant.id if tenant is not None else None)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def admin(make_user, tenant):
    return make_user("org_admin", tenant)


@pytest.fixture()
def admin_headers(auth_headers, admin, tenant):
    return auth_headers(admin, tenant)


# ── Storage ──────────────────────────────────────────────────────────────


@pytest.fixture()
def storage(app, tmp_path):
    """A ready bucket under tmp_path, used by every upload in the test."""
    backend = LocalFileStorage(tmp_path, "documents")
    backend.bucket_dir.mkdir(parents=True)
    app.extensions["storage"] = backend
    yield backend
    app.extensions.pop("storage", None)


# ── Delivery hierarchy ───────────────────────────────────────────────────


@pytest.fixture()
def hierarchy(tenant, admin):
    """Client → Project → Phase → Set, created through the services and committed."""
    acme = client_service.create_client(
        tenant_id=tenant.id, data={"name": "Acme Corp"}, actor_id=admin.id,
    )
    project = project_service.create_project(
        tenant_id=tenant.id, data={"client_id": acme.id, "name": "Website Relaunch"}, actor_id=admin.id,
    )
    phase = phase_service.create_phase(
        project.id, tenant_id=tenant.id, data={"name": "Discovery"}, actor_id=admin.id,
    )
    set_obj = set_service.create_set(
        tenant_id=tenant.id, data={"phase_id": phase.id, "name": "Kickoff"}, actor_id=admin.id,
    )
    _db.session.commit()
    return {"client": acme, "project": project, "phase": phase, "set": set_obj}
