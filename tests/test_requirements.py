"""
Set ownership of pitches and requirements.

A requirement's pitch must live in the requirement's own set, and neither
a pitch nor a requirement can be moved to another set after creation.
"""

import pytest

from delivery_workspace.core.exceptions import ValidationError
from delivery_workspace.models import db
from delivery_workspace.services import pitch_service, requirement_service, set_service


@pytest.fixture()
def two_sets(tenant, admin, hierarchy):
    other = set_service.create_set(
        tenant_id=tenant.id, data={"phase_id": hierarchy["phase"].id, "name": "Build"}, actor_id=admin.id,
    )
    pitch = pitch_service.create_pitch(hierarchy["set"].id, tenant_id=tenant.id, data={"name": "Option A"})
    foreign_pitch = pitch_service.create_pitch(other.id, tenant_id=tenant.id, data={"name": "Option B"})
    db.session.commit()
    return {"home": hierarchy["set"], "other": other, "pitch": pitch, "foreign_pitch": foreign_pitch}


class TestRequirementPitchLink:
    def test_pitch_from_another_set_rejected_on_create(self, tenant, admin, two_sets):
        with pytest.raises(ValidationError) as exc:
            requirement_service.create_requirement(
                two_sets["home"].id, tenant_id=tenant.id,
                data={"title": "Wireframes", "pitch_id": two_sets["foreign_pitch"].id}, actor_id=admin.id,
            )
        assert "pitch_id" in exc.value.details

    def test_pitch_from_another_set_rejected_on_update(self, tenant, admin, two_sets):
        req = requirement_service.create_requirement(
            two_sets["home"].id, tenant_id=tenant.id,
            data={"title": "Wireframes", "pitch_id": two_sets["pitch"].id}, actor_id=admin.id,
        )
        db.session.commit()
        with pytest.raises(ValidationError):
            requirement_service.update_requirement(
                req.id, tenant_id=tenant.id, data={"pitch_id": two_sets["foreign_pitch"].id},
            )
        assert req.pitch_id == two_sets["pitch"].id

    def test_api_rejects_foreign_pitch(self, client, admin_headers, two_sets):
        res = client.post(
            f"/api/v1/sets/{two_sets['home'].id}/requirements",
            json={"title": "Wireframes", "pitch_id": two_sets["foreign_pitch"].id},
            headers=admin_headers,
        )
        assert res.status_code == 422


class TestSetIsFixed:
    def test_requirement_cannot_change_set(self, tenant, admin, two_sets):
        req = requirement_service.create_requirement(
            two_sets["home"].id, tenant_id=tenant.id, data={"title": "Wireframes"}, actor_id=admin.id,
        )
        db.session.commit()
        with pytest.raises(ValidationError) as exc:
            requirement_service.update_requirement(req.id, tenant_id=tenant.id, data={"set_id": two_sets["other"].id})
        assert exc.value.details == {"set_id": "immutable"}
        assert req.set_id == two_sets["home"].id

    def test_same_set_id_is_accepted(self, tenant, admin, two_sets):
        req = requirement_service.create_requirement(
            two_sets["home"].id, tenant_id=tenant.id, data={"title": "Wireframes"}, actor_id=admin.id,
        )
        updated = requirement_service.update_requirement(
            req.id, tenant_id=tenant.id, data={"set_id": two_sets["home"].id, "title": "Mockups"},
        )
        assert updated.title == "Mockups"

    def test_pitch_cannot_change_set(self, tenant, two_sets):
        with pytest.raises(ValidationError):
            pitch_service.update_pitch(
                two_sets["pitch"].id, tenant_id=tenant.id, data={"set_id": two_sets["other"].id},
            )
        assert two_sets["pitch"].set_id == two_sets["home"].id
