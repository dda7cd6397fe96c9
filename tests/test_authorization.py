"""
Identity, role resolution and authorization tests.

Covers:
  - Role precedence across memberships and the role cache
  - resolve_context failures (inactive user, foreign tenant, suspended tenant)
  - The authorize matrix per role, including client portal visibility
  - Tenant isolation over HTTP (cross-tenant ids look missing)
"""

import pytest
from sqlalchemy import update

from delivery_workspace.core.exceptions import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from delivery_workspace.models import db
from delivery_workspace.models.tenancy import TenantUser
from delivery_workspace.services import (
    client_service,
    contact_service,
    phase_service,
    pitch_service,
    project_service,
    role_service,
    set_service,
)
from delivery_workspace.services.authorization_service import authorize, enforce
from delivery_workspace.services.identity_service import UserContext, resolve_context


def _ctx(user, tenant, role, client_id=None):
    return UserContext(
        user_id=user.id, tenant_id=tenant.id if tenant else None, role=role, client_id=client_id,
    )


# ═════════════════════════════════════════════════════════════════════════════
# ROLES
# ═════════════════════════════════════════════════════════════════════════════


class TestRolePrecedence:
    @pytest.mark.parametrize(
        "roles, expected",
        [
            (["org_user", "client_user"], "org_user"),
            (["client_user", "sys_admin", "org_admin"], "sys_admin"),
            (["org_admin", "org_user"], "org_admin"),
            (["auditor"], None),
            ([], None),
        ],
    )
    def test_highest_role(self, roles, expected):
        assert role_service.highest_role(roles) == expected

    def test_highest_across_tenants(self, make_user, tenant, other_tenant):
        user = make_user("client_user", tenant)
        role_service.assign_membership(tenant_id=other_tenant.id, user_id=user.id, role="org_admin")
        db.session.commit()
        assert role_service.get_user_highest_role(user.id) == "org_admin"

    def test_suspended_membership_is_ignored(self, make_user, tenant):
        user = make_user("org_admin", tenant, status="suspended")
        assert role_service.get_user_highest_role(user.id) is None

    def test_inactive_user_has_no_role(self, make_user, tenant):
        user = make_user("org_user", tenant)
        user.is_active = False
        db.session.commit()
        assert role_service.get_user_highest_role(user.id) is None

    def test_cache_is_refreshed_by_assign_membership(self, make_user, tenant):
        user = make_user("org_user", tenant)
        assert role_service.get_user_highest_role(user.id) == "org_user"

        db.session.execute(
            update(TenantUser).where(TenantUser.user_id == user.id).values(role="org_admin")
        )
        db.session.commit()
        assert role_service.get_user_highest_role(user.id) == "org_user"

        role_service.assign_membership(tenant_id=tenant.id, user_id=user.id, role="org_admin")
        db.session.commit()
        assert role_service.get_user_highest_role(user.id) == "org_admin"

    def test_unknown_role_rejected(self, make_user, tenant):
        user = make_user("org_user", tenant)
        with pytest.raises(ValidationError):
            role_service.assign_membership(tenant_id=tenant.id, user_id=user.id, role="superuser")


class TestResolveContext:
    def test_member_gets_resolved_role(self, make_user, tenant):
        user = make_user("org_user", tenant)
        ctx = resolve_context(user.id, tenant.id)
        assert (ctx.role, ctx.tenant_id) == ("org_user", tenant.id)

    def test_client_user_carries_client_binding(self, make_user, tenant, hierarchy):
        user = make_user("client_user", tenant, client_id=hierarchy["client"].id)
        assert resolve_context(user.id, tenant.id).client_id == hierarchy["client"].id

    def test_unknown_user(self, tenant):
        with pytest.raises(AuthenticationError):
            resolve_context("00000000-0000-0000-0000-000000000000", tenant.id)

    def test_inactive_user(self, make_user, tenant):
        user = make_user("org_admin", tenant)
        user.is_active = False
        db.session.commit()
        with pytest.raises(AuthenticationError):
            resolve_context(user.id, tenant.id)

    def test_membership_in_the_tenant_is_required(self, make_user, tenant, other_tenant):
        user = make_user("org_admin", tenant)
        with pytest.raises(ForbiddenError):
            resolve_context(user.id, other_tenant.id)

    def test_suspended_tenant(self, make_user, tenant):
        user = make_user("org_admin", tenant)
        tenant.status = "suspended"
        db.session.commit()
        with pytest.raises(ForbiddenError):
            resolve_context(user.id, tenant.id)

    def test_missing_tenant_claim(self, make_user, tenant):
        user = make_user("org_user", tenant)
        with pytest.raises(ForbiddenError):
            resolve_context(user.id, None)

    def test_sys_admin_may_act_in_any_tenant(self, make_user, tenant, other_tenant):
        root = make_user("sys_admin", tenant)
        ctx = resolve_context(root.id, other_tenant.id)
        assert ctx.is_sys_admin
        assert ctx.tenant_id == other_tenant.id


# ═════════════════════════════════════════════════════════════════════════════
# AUTHORIZE
# ═════════════════════════════════════════════════════════════════════════════


class TestAuthorizeMatrix:
    @pytest.mark.parametrize(
        "role, operation, allowed",
        [
            ("org_admin", "read", True),
            ("org_admin", "delete", True),
            ("org_user", "update", True),
            ("client_user", "read", True),
            ("client_user", "create", False),
            ("client_user", "delete", False),
        ],
    )
    def test_role_on_portal_client(self, make_user, tenant, admin, role, operation, allowed):
        client = client_service.create_client(
            tenant_id=tenant.id, data={"name": "Acme Corp", "portal_enabled": True}, actor_id=admin.id,
        )
        db.session.commit()
        assert authorize(_ctx(admin, tenant, role, client_id=client.id), operation, client) is allowed

    def test_client_user_cannot_read_hidden_rows(self, tenant, admin, hierarchy):
        ctx = _ctx(admin, tenant, "client_user", client_id=hierarchy["client"].id)
        assert authorize(ctx, "read", hierarchy["project"]) is False
        project_service.update_project(
            hierarchy["project"].id, tenant_id=tenant.id, data={"show_in_client_portal": True},
        )
        assert authorize(ctx, "read", hierarchy["project"]) is True

    def test_client_user_is_bound_to_one_client(self, tenant, admin, hierarchy):
        project_service.update_project(
            hierarchy["project"].id, tenant_id=tenant.id, data={"show_in_client_portal": True},
        )
        phase_service.update_phase(hierarchy["phase"].id, tenant_id=tenant.id, data={"show_in_client_portal": True})
        set_service.update_set(hierarchy["set"].id, tenant_id=tenant.id, data={"show_in_client_portal": True})
        pitch = pitch_service.create_pitch(
            hierarchy["set"].id, tenant_id=tenant.id, data={"name": "Option A", "show_in_client_portal": True},
        )
        db.session.commit()
        owner = _ctx(admin, tenant, "client_user", client_id=hierarchy["client"].id)
        stranger = _ctx(admin, tenant, "client_user", client_id="11111111-1111-1111-1111-111111111111")
        for row in (hierarchy["project"], hierarchy["phase"], hierarchy["set"], pitch):
            assert authorize(owner, "read", row) is True
            assert authorize(stranger, "read", row) is False

    def test_unbound_client_user_has_no_list_gates(self, tenant, admin):
        assert authorize(_ctx(admin, tenant, "client_user"), "read", "project") is False
        assert authorize(_ctx(admin, tenant, "client_user", client_id="c-1"), "read", "project") is True

    @pytest.mark.parametrize("entity_type", ["lead", "contact", "discussion", "note"])
    def test_client_user_has_no_internal_types(self, tenant, admin, entity_type):
        assert authorize(_ctx(admin, tenant, "client_user", client_id="c-1"), "read", entity_type) is False

    def test_unknown_operation(self, tenant, admin):
        with pytest.raises(ValidationError):
            authorize(_ctx(admin, tenant, "org_admin"), "approve", "client")

    def test_cross_tenant_denial_looks_missing(self, other_tenant, admin, hierarchy):
        with pytest.raises(NotFoundError):
            enforce(_ctx(admin, other_tenant, "org_admin"), "read", hierarchy["client"])

    def test_same_tenant_denial_is_forbidden(self, tenant, admin, hierarchy):
        with pytest.raises(ForbiddenError):
            enforce(_ctx(admin, tenant, "client_user"), "update", hierarchy["client"])

    def test_sys_admin_bypasses_tenant_checks(self, other_tenant, admin, hierarchy):
        assert authorize(_ctx(admin, other_tenant, "sys_admin"), "delete", hierarchy["client"]) is True

    def test_global_contacts_are_read_only_for_tenants(self, tenant, admin):
        shared = contact_service.create_contact(tenant_id=None, data={"first_name": "Grace"})
        db.session.commit()
        assert authorize(_ctx(admin, tenant, "org_user"), "read", shared) is True
        assert authorize(_ctx(admin, tenant, "org_admin"), "update", shared) is False
        assert authorize(_ctx(admin, tenant, "sys_admin"), "update", shared) is True


# ═════════════════════════════════════════════════════════════════════════════
# OVER HTTP
# ═════════════════════════════════════════════════════════════════════════════


class TestPortalAccessApi:
    @pytest.fixture()
    def portal_user(self, make_user, tenant, hierarchy):
        return make_user("client_user", tenant, client_id=hierarchy["client"].id)

    @pytest.fixture()
    def rival(self, tenant, admin):
        """A second portal-enabled client in the same tenant with visible rows."""
        other = client_service.create_client(
            tenant_id=tenant.id, data={"name": "Globex", "portal_enabled": True}, actor_id=admin.id,
        )
        project = project_service.create_project(
            tenant_id=tenant.id,
            data={"client_id": other.id, "name": "Globex ERP", "show_in_client_portal": True},
            actor_id=admin.id,
        )
        set_obj = set_service.create_set(
            tenant_id=tenant.id,
            data={"project_id": project.id, "name": "Globex Kickoff", "show_in_client_portal": True},
            actor_id=admin.id,
        )
        db.session.commit()
        return {"client": other, "project": project, "set": set_obj}

    def test_client_list_shows_only_the_bound_client(
        self, client, auth_headers, tenant, portal_user, hierarchy, rival,
    ):
        headers = auth_headers(portal_user, tenant)
        assert client.get("/api/v1/clients", headers=headers).get_json()["total"] == 0

        client_service.update_client(hierarchy["client"].id, tenant_id=tenant.id, data={"portal_enabled": True})
        db.session.commit()
        res = client.get("/api/v1/clients", headers=headers)
        assert res.status_code == 200
        assert [c["name"] for c in res.get_json()["items"]] == ["Acme Corp"]

    def test_other_clients_rows_are_forbidden(self, client, auth_headers, tenant, portal_user, rival):
        headers = auth_headers(portal_user, tenant)
        for path in (
            f"/api/v1/clients/{rival['client'].id}",
            f"/api/v1/projects/{rival['project'].id}",
            f"/api/v1/sets/{rival['set'].id}",
        ):
            assert client.get(path, headers=headers).status_code == 403, path

    def test_list_filters_are_pinned_to_the_bound_client(
        self, client, auth_headers, tenant, portal_user, hierarchy, rival,
    ):
        headers = auth_headers(portal_user, tenant)
        assert client.get("/api/v1/projects", headers=headers).get_json()["total"] == 0
        assert client.get("/api/v1/sets", headers=headers).get_json()["total"] == 0
        res = client.get(f"/api/v1/sets?client_id={rival['client'].id}", headers=headers)
        assert res.status_code == 404
        res = client.get(f"/api/v1/projects?client_id={rival['client'].id}", headers=headers)
        assert res.status_code == 404

        set_service.update_set(hierarchy["set"].id, tenant_id=tenant.id, data={"show_in_client_portal": True})
        db.session.commit()
        res = client.get(f"/api/v1/sets?client_id={hierarchy['client'].id}", headers=headers)
        assert [s["name"] for s in res.get_json()["items"]] == ["Kickoff"]

    def test_client_contacts_stay_internal(self, client, auth_headers, tenant, portal_user, hierarchy):
        client_service.update_client(hierarchy["client"].id, tenant_id=tenant.id, data={"portal_enabled": True})
        db.session.commit()
        path = f"/api/v1/clients/{hierarchy['client'].id}/contacts"
        res = client.get(path, headers=auth_headers(portal_user, tenant))
        assert res.status_code == 403

    def test_unbound_client_user_sees_nothing(self, client, make_user, auth_headers, tenant):
        stray = make_user("client_user", tenant)
        assert client.get("/api/v1/projects", headers=auth_headers(stray, tenant)).status_code == 403

    def test_project_list_is_filtered_to_portal_rows(self, client, auth_headers, tenant, portal_user, hierarchy):
        headers = auth_headers(portal_user, tenant)
        assert client.get("/api/v1/projects", headers=headers).get_json()["total"] == 0
        project_service.update_project(
            hierarchy["project"].id, tenant_id=tenant.id, data={"show_in_client_portal": True},
        )
        db.session.commit()
        assert client.get("/api/v1/projects", headers=headers).get_json()["total"] == 1

    @pytest.mark.parametrize("path", ["/api/v1/leads", "/api/v1/contacts", "/api/v1/leads/pipeline-stats"])
    def test_internal_lists_are_forbidden(self, client, auth_headers, tenant, portal_user, path):
        res = client.get(path, headers=auth_headers(portal_user, tenant))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_portal_user_cannot_create(self, client, auth_headers, tenant, portal_user):
        res = client.post("/api/v1/clients", json={"name": "Sneaky"}, headers=auth_headers(portal_user, tenant))
        assert res.status_code == 403


class TestTenantIsolationApi:
    def test_foreign_client_is_404(self, client, make_user, auth_headers, other_tenant, hierarchy):
        outsider = make_user("org_admin", other_tenant)
        res = client.get(f"/api/v1/clients/{hierarchy['client'].id}", headers=auth_headers(outsider, other_tenant))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_foreign_tenant_claim_is_403(self, client, auth_headers, admin, other_tenant):
        res = client.get("/api/v1/clients", headers=auth_headers(admin, other_tenant))
        assert res.status_code == 403

    def test_global_contact_visible_but_not_editable(self, client, admin_headers, tenant):
        shared = contact_service.create_contact(tenant_id=None, data={"first_name": "Grace"})
        db.session.commit()
        assert client.get(f"/api/v1/contacts/{shared.id}", headers=admin_headers).status_code == 200
        res = client.put(f"/api/v1/contacts/{shared.id}", json={"title": "CTO"}, headers=admin_headers)
        assert res.status_code == 403

    def test_sys_admin_creates_global_contact(self, client, make_user, auth_headers, tenant):
        root = make_user("sys_admin", tenant)
        res = client.post(
            "/api/v1/contacts", json={"first_name": "Linus", "global": True}, headers=auth_headers(root, tenant),
        )
        assert res.status_code == 201
        assert res.get_json()["tenant_id"] is None
