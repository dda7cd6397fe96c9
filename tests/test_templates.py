"""
Project duplication and template tests.

The source tree used throughout:

    Project "Website Relaunch" (ACM-001)
      ├─ Phase "Discovery"
      │    └─ Set "Kickoff" ─ Pitch "Option A" ─ 2 requirements (one in the pitch)
      └─ Phase "Design" (predecessor: Discovery)
"""

import pytest
from sqlalchemy import func, select

from delivery_workspace.core.exceptions import PartialFailure, ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.delivery import Phase, Pitch, Project, Requirement, Set
from delivery_workspace.models.notification import Notification
from delivery_workspace.services import (
    client_service,
    phase_service,
    pitch_service,
    project_service,
    requirement_service,
    template_service,
)


# ═════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═════════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def source(tenant, admin, hierarchy):
    design = phase_service.create_phase(
        hierarchy["project"].id, tenant_id=tenant.id,
        data={"name": "Design", "predecessor_phase_id": hierarchy["phase"].id}, actor_id=admin.id,
    )
    pitch = pitch_service.create_pitch(
        hierarchy["set"].id, tenant_id=tenant.id, data={"name": "Option A"}, actor_id=admin.id,
    )
    in_pitch = requirement_service.create_requirement(
        hierarchy["set"].id, tenant_id=tenant.id,
        data={"title": "Moodboard", "pitch_id": pitch.id, "status": "completed",
              "assigned_to_id": admin.id, "due_date": "2026-11-02"},
        actor_id=admin.id,
    )
    loose = requirement_service.create_requirement(
        hierarchy["set"].id, tenant_id=tenant.id,
        data={"title": "Stakeholder map", "requires_review": True}, actor_id=admin.id,
    )
    db.session.commit()
    return {**hierarchy, "design": design, "pitch": pitch, "requirements": [in_pitch, loose]}


def _rows(model, project_id):
    if model is Project:
        return [db.session.get(Project, project_id)]
    if model is Phase:
        return Phase.query.filter_by(project_id=project_id).all()
    set_ids = [s.id for s in Set.query.filter_by(project_id=project_id).all()]
    if model is Set:
        return Set.query.filter(Set.id.in_(set_ids)).all()
    return model.query.filter(model.set_id.in_(set_ids)).all()


def _all_ids(project_id):
    return {row.id for model in (Project, Phase, Set, Pitch, Requirement) for row in _rows(model, project_id)}


# ═════════════════════════════════════════════════════════════════════════════
# DUPLICATE
# ═════════════════════════════════════════════════════════════════════════════


class TestDuplicateProject:
    def test_copies_whole_tree_with_fresh_ids(self, tenant, admin, source):
        clone = template_service.duplicate_project(source["project"].id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()

        assert clone.id != source["project"].id
        assert clone.name == "Website Relaunch (Copy)"
        assert source["project"].project_code == "ACM-001"
        assert clone.project_code == "ACM-002"
        assert clone.status == "planning"
        for model, expected in ((Phase, 2), (Set, 1), (Pitch, 1), (Requirement, 2)):
            assert len(_rows(model, clone.id)) == expected
        assert not (_all_ids(clone.id) & _all_ids(source["project"].id))

    def test_foreign_keys_point_into_the_copy(self, tenant, admin, source):
        clone = template_service.duplicate_project(source["project"].id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        source_ids = _all_ids(source["project"].id)
        clone_ids = _all_ids(clone.id)

        phases = {p.name: p for p in _rows(Phase, clone.id)}
        assert phases["Design"].predecessor_phase_id == phases["Discovery"].id

        (set_copy,) = _rows(Set, clone.id)
        assert set_copy.phase_id == phases["Discovery"].id
        assert set_copy.client_id == source["client"].id

        (pitch_copy,) = _rows(Pitch, clone.id)
        assert pitch_copy.set_id == set_copy.id
        assert pitch_copy.is_approved is False

        requirements = {r.title: r for r in _rows(Requirement, clone.id)}
        assert requirements["Moodboard"].pitch_id == pitch_copy.id
        assert requirements["Stakeholder map"].pitch_id is None

        references = [
            *(getattr(p, col) for p in _rows(Phase, clone.id)
              for col in ("project_id", "predecessor_phase_id", "successor_phase_id")),
            set_copy.project_id, set_copy.phase_id,
            pitch_copy.set_id, pitch_copy.predecessor_pitch_id, pitch_copy.successor_pitch_id,
            *(r.set_id for r in requirements.values()),
            *(r.pitch_id for r in requirements.values()),
        ]
        assert not (set(filter(None, references)) & source_ids)
        assert set(filter(None, references)) <= clone_ids

    def test_progress_is_reset(self, tenant, admin, source):
        clone = template_service.duplicate_project(source["project"].id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        requirements = {r.title: r for r in _rows(Requirement, clone.id)}
        assert requirements["Moodboard"].status == "open"
        assert requirements["Moodboard"].completed_at is None
        assert requirements["Stakeholder map"].review_status == "pending"
        assert clone.completion_percentage == 0
        assert all(p.status == "not_started" for p in _rows(Phase, clone.id))

    def test_pitch_status_is_reset(self, tenant, admin, source):
        pitch_service.update_pitch(source["pitch"].id, tenant_id=tenant.id, data={"status": "in_progress"})
        db.session.commit()
        clone = template_service.duplicate_project(source["project"].id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        template = template_service.duplicate_project(
            source["project"].id, tenant_id=tenant.id, actor_id=admin.id, as_template=True,
        )
        db.session.commit()
        assert [p.status for p in _rows(Pitch, clone.id)] == ["not_started"]
        assert [p.status for p in _rows(Pitch, template.id)] == ["in_progress"]

    def test_rows_share_one_clone_batch(self, tenant, admin, source):
        clone = template_service.duplicate_project(source["project"].id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        batches = {
            row.clone_batch_id
            for model in (Project, Phase, Set, Pitch, Requirement)
            for row in _rows(model, clone.id)
        }
        assert len(batches) == 1
        assert None not in batches

    def test_clear_options(self, tenant, admin, source):
        clone = template_service.duplicate_project(
            source["project"].id, tenant_id=tenant.id, actor_id=admin.id,
            clear_dates=True, clear_assignments=True,
        )
        db.session.commit()
        requirements = {r.title: r for r in _rows(Requirement, clone.id)}
        assert requirements["Moodboard"].due_date is None
        assert requirements["Moodboard"].assigned_to_id is None

    def test_assignments_kept_by_default(self, tenant, admin, source):
        clone = template_service.duplicate_project(source["project"].id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        requirements = {r.title: r for r in _rows(Requirement, clone.id)}
        assert requirements["Moodboard"].assigned_to_id == admin.id
        assert requirements["Moodboard"].due_date.isoformat() == "2026-11-02"

    def test_without_children(self, tenant, admin, source):
        clone = template_service.duplicate_project(
            source["project"].id, tenant_id=tenant.id, actor_id=admin.id, include_children=False,
        )
        db.session.commit()
        assert _rows(Phase, clone.id) == []
        assert _rows(Set, clone.id) == []

    def test_to_another_client(self, tenant, admin, source):
        globex = client_service.create_client(tenant_id=tenant.id, data={"name": "Globex"}, actor_id=admin.id)
        db.session.commit()
        clone = template_service.duplicate_project(
            source["project"].id, tenant_id=tenant.id, actor_id=admin.id,
            new_client_id=globex.id, new_name="Globex Relaunch",
        )
        db.session.commit()
        assert clone.client_id == globex.id
        assert clone.project_code == "GLO-001"
        assert all(s.client_id == globex.id for s in _rows(Set, clone.id))

    def test_notifies_the_actor(self, tenant, admin, source):
        clone = template_service.duplicate_project(source["project"].id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        note = Notification.query.filter_by(entity_id=clone.id).one()
        assert note.recipient_id == admin.id

    def test_failed_stage_purges_the_copy(self, tenant, admin, source, monkeypatch):
        def broken_copy(run, set_pairs):
            run.stage = "requirements"
            raise RuntimeError("disk full")

        monkeypatch.setattr(template_service, "_copy_requirements", broken_copy)
        before = db.session.execute(select(func.count(Project.id))).scalar()

        with pytest.raises(PartialFailure) as exc:
            template_service.duplicate_project(source["project"].id, tenant_id=tenant.id, actor_id=admin.id)

        assert exc.value.failed == ["requirements"]
        assert exc.value.cleaned_up is True
        db.session.commit()
        assert db.session.execute(select(func.count(Project.id))).scalar() == before
        assert db.session.execute(
            select(func.count(Phase.id)).where(Phase.clone_batch_id.is_not(None))
        ).scalar() == 0

    def test_duplicate_endpoint_maps_partial_failure(self, client, admin_headers, source, monkeypatch):
        def broken_copy(run, set_pairs):
            run.stage = "requirements"
            raise RuntimeError("disk full")

        monkeypatch.setattr(template_service, "_copy_requirements", broken_copy)
        res = client.post(f"/api/v1/projects/{source['project'].id}/duplicate", json={}, headers=admin_headers)
        assert res.status_code == 500
        body = res.get_json()
        assert body["code"] == "ERR_PARTIAL_FAILURE"
        assert body["details"]["failed"] == ["requirements"]


# ═════════════════════════════════════════════════════════════════════════════
# TEMPLATES
# ═════════════════════════════════════════════════════════════════════════════


class TestTemplates:
    def test_save_as_template_hides_it_from_operational_lists(self, tenant, admin, source):
        template = template_service.duplicate_project(
            source["project"].id, tenant_id=tenant.id, actor_id=admin.id, as_template=True,
        )
        db.session.commit()
        assert all(
            row.is_template
            for model in (Project, Phase, Set, Pitch, Requirement)
            for row in _rows(model, template.id)
        )
        operational = project_service.list_projects(tenant_id=tenant.id)
        assert template.id not in [p.id for p in operational]
        assert [p.id for p in template_service.list_templates(tenant_id=tenant.id)] == [template.id]

    def test_mark_as_template_flags_subtree(self, tenant, admin, source):
        template_service.mark_as_template(source["project"].id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        assert all(
            row.is_template
            for model in (Project, Phase, Set, Pitch, Requirement)
            for row in _rows(model, source["project"].id)
        )

    def test_create_from_template(self, tenant, admin, source):
        template_service.mark_as_template(source["project"].id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        project = template_service.create_from_template(
            source["project"].id, tenant_id=tenant.id, client_id=source["client"].id,
            name="Relaunch 2027", actor_id=admin.id,
        )
        db.session.commit()
        assert project.is_template is False
        assert project.name == "Relaunch 2027"
        requirements = _rows(Requirement, project.id)
        assert len(requirements) == 2
        assert all(not r.is_template and r.due_date is None for r in requirements)

    def test_create_from_non_template_rejected(self, tenant, admin, source):
        with pytest.raises(ValidationError):
            template_service.create_from_template(
                source["project"].id, tenant_id=tenant.id, client_id=source["client"].id,
                name="Nope", actor_id=admin.id,
            )

    def test_from_template_endpoint_requires_name(self, client, admin_headers, source):
        res = client.post(
            "/api/v1/projects/from-template",
            json={"template_id": source["project"].id, "client_id": source["client"].id},
            headers=admin_headers,
        )
        assert res.status_code == 422
        assert "name" in res.get_json()["details"]
