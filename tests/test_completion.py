"""
Completion roll-up tests.

Requirement status drives Set/Pitch completion (share of completed
requirements); Phase and Project completion are the mean of their
children's stored percentages.
"""

import uuid

import pytest

from delivery_workspace.core.exceptions import ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.delivery import Phase, Project, Set
from delivery_workspace.services import (
    aggregation_service,
    phase_service,
    pitch_service,
    requirement_service,
    set_service,
)


# ═════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═════════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def add_requirement(tenant, admin):
    def _add(set_id, title, status="open", **extra):
        req = requirement_service.create_requirement(
            set_id, tenant_id=tenant.id, data={"title": title, "status": status, **extra},
            actor_id=admin.id,
        )
        db.session.commit()
        return req

    return _add


def _pct(model, entity_id):
    db.session.expire_all()
    return db.session.get(model, entity_id).completion_percentage


# ═════════════════════════════════════════════════════════════════════════════
# TESTS
# ═════════════════════════════════════════════════════════════════════════════


class TestRequirementDrivenCascade:
    def test_status_changes_roll_up_to_project(self, tenant, admin, hierarchy, add_requirement):
        set_id = hierarchy["set"].id
        add_requirement(set_id, "Agenda", "completed")
        add_requirement(set_id, "Invite list", "completed")
        third = add_requirement(set_id, "Room booking")
        fourth = add_requirement(set_id, "Catering")

        assert _pct(Set, set_id) == 50
        assert _pct(Phase, hierarchy["phase"].id) == 50
        assert _pct(Project, hierarchy["project"].id) == 50

        requirement_service.update_requirement(
            third.id, tenant_id=tenant.id, data={"status": "completed"}, actor_id=admin.id,
        )
        db.session.commit()
        assert _pct(Set, set_id) == 75
        assert _pct(Project, hierarchy["project"].id) == 75

        requirement_service.delete_requirement(fourth.id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        assert _pct(Set, set_id) == 100
        assert _pct(Phase, hierarchy["phase"].id) == 100
        assert _pct(Project, hierarchy["project"].id) == 100

    def test_restore_counts_requirement_again(self, tenant, admin, hierarchy, add_requirement):
        set_id = hierarchy["set"].id
        add_requirement(set_id, "Done", "completed")
        pending = add_requirement(set_id, "Pending")
        requirement_service.delete_requirement(pending.id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        assert _pct(Set, set_id) == 100

        requirement_service.restore_requirement(pending.id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        assert _pct(Set, set_id) == 50

    def test_completed_at_tracks_status(self, tenant, admin, hierarchy, add_requirement):
        req = add_requirement(hierarchy["set"].id, "Brief", "completed")
        assert req.completed_at is not None
        requirement_service.update_requirement(
            req.id, tenant_id=tenant.id, data={"status": "in_progress"}, actor_id=admin.id,
        )
        assert req.completed_at is None


class TestMeanAggregation:
    def test_phase_averages_sets_and_project_averages_phases(
        self, tenant, admin, hierarchy, add_requirement,
    ):
        empty_phase = phase_service.create_phase(
            hierarchy["project"].id, tenant_id=tenant.id, data={"name": "Delivery"}, actor_id=admin.id,
        )
        second_set = set_service.create_set(
            tenant_id=tenant.id, data={"phase_id": hierarchy["phase"].id, "name": "Research"},
            actor_id=admin.id,
        )
        db.session.commit()

        add_requirement(hierarchy["set"].id, "Interview", "completed")
        add_requirement(hierarchy["set"].id, "Survey")
        add_requirement(second_set.id, "Desk research", "completed")

        assert _pct(Set, hierarchy["set"].id) == 50
        assert _pct(Set, second_set.id) == 100
        assert _pct(Phase, hierarchy["phase"].id) == 75
        assert _pct(Phase, empty_phase.id) == 0
        # (75 + 0) / 2 rounds half up
        assert _pct(Project, hierarchy["project"].id) == 38

    def test_deleted_set_leaves_phase_mean(self, tenant, admin, hierarchy, add_requirement):
        stale = set_service.create_set(
            tenant_id=tenant.id, data={"phase_id": hierarchy["phase"].id, "name": "Stale"},
            actor_id=admin.id,
        )
        db.session.commit()
        add_requirement(hierarchy["set"].id, "Done", "completed")
        add_requirement(stale.id, "Never started")
        assert _pct(Phase, hierarchy["phase"].id) == 50

        set_service.delete_set(stale.id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        assert _pct(Phase, hierarchy["phase"].id) == 100


class TestPitchCompletion:
    def test_pitch_counts_only_its_requirements(self, tenant, admin, hierarchy, add_requirement):
        pitch = pitch_service.create_pitch(
            hierarchy["set"].id, tenant_id=tenant.id, data={"name": "Option A"}, actor_id=admin.id,
        )
        db.session.commit()
        add_requirement(hierarchy["set"].id, "In pitch, done", "completed", pitch_id=pitch.id)
        add_requirement(hierarchy["set"].id, "In pitch, open", pitch_id=pitch.id)
        add_requirement(hierarchy["set"].id, "Outside pitch, done", "completed")

        db.session.expire_all()
        assert pitch.completion_percentage == 50
        # Set completion is over all of its requirements, not over pitches
        assert _pct(Set, hierarchy["set"].id) == 67


class TestEmptyChildren:
    def test_empty_set_keeps_last_value_by_default(self, tenant, admin, hierarchy, add_requirement):
        only = add_requirement(hierarchy["set"].id, "Only one", "completed")
        requirement_service.delete_requirement(only.id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        assert _pct(Set, hierarchy["set"].id) == 100

    def test_reset_on_empty_zeroes_the_level(self, tenant, admin, hierarchy, add_requirement):
        only = add_requirement(hierarchy["set"].id, "Only one", "completed")
        requirement_service.delete_requirement(only.id, tenant_id=tenant.id, actor_id=admin.id)
        result = aggregation_service.recompute_completion(
            "set", hierarchy["set"].id, tenant_id=tenant.id, reset_on_empty=True,
        )
        db.session.commit()
        assert result.percentage_of("set", hierarchy["set"].id) == 0
        assert _pct(Project, hierarchy["project"].id) == 0

    def test_config_flag_is_the_default(self, app, tenant, admin, hierarchy, add_requirement):
        only = add_requirement(hierarchy["set"].id, "Only one", "completed")
        requirement_service.delete_requirement(only.id, tenant_id=tenant.id, actor_id=admin.id)
        app.config["COMPLETION_RESET_ON_EMPTY"] = True
        try:
            aggregation_service.recompute_completion("set", hierarchy["set"].id, tenant_id=tenant.id)
        finally:
            app.config["COMPLETION_RESET_ON_EMPTY"] = False
        assert _pct(Set, hierarchy["set"].id) == 0


class TestRecompute:
    def test_recompute_is_idempotent(self, tenant, hierarchy, add_requirement):
        add_requirement(hierarchy["set"].id, "Done", "completed")
        first = aggregation_service.recompute_completion("set", hierarchy["set"].id, tenant_id=tenant.id)
        second = aggregation_service.recompute_completion("set", hierarchy["set"].id, tenant_id=tenant.id)
        assert first.updated == second.updated
        assert [level for level, _, _ in first.updated] == ["set", "phase", "project"]

    def test_missing_level_stops_with_warning(self, tenant):
        result = aggregation_service.recompute_completion("phase", str(uuid.uuid4()), tenant_id=tenant.id)
        assert result.updated == []
        assert result.warnings

    def test_unknown_level_rejected(self, tenant):
        with pytest.raises(ValidationError):
            aggregation_service.recompute_completion("client", str(uuid.uuid4()), tenant_id=tenant.id)

    def test_client_level_set_stops_at_set(self, tenant, admin, hierarchy, add_requirement):
        loose = set_service.create_set(
            tenant_id=tenant.id, data={"client_id": hierarchy["client"].id, "name": "Ad hoc"},
            actor_id=admin.id,
        )
        db.session.commit()
        add_requirement(loose.id, "Quick fix", "completed")
        result = aggregation_service.recompute_completion("set", loose.id, tenant_id=tenant.id)
        assert [level for level, _, _ in result.updated] == ["set"]

    def test_recompute_endpoint(self, client, admin_headers, hierarchy, add_requirement):
        add_requirement(hierarchy["set"].id, "Done", "completed")
        res = client.post(
            f"/api/v1/completion/set/{hierarchy['set'].id}/recompute", headers=admin_headers,
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["updated"][0] == {
            "entity_type": "set",
            "entity_id": hierarchy["set"].id,
            "completion_percentage": 100,
        }

    def test_recompute_endpoint_rejects_unknown_level(self, client, admin_headers, hierarchy):
        res = client.post(
            f"/api/v1/completion/client/{hierarchy['client'].id}/recompute", headers=admin_headers,
        )
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
