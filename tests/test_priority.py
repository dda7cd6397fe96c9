"""Eisenhower priority: matrix values and how sets/requirements keep it in step."""

import pytest

from delivery_workspace.core.exceptions import ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.delivery import calculate_priority
from delivery_workspace.services import requirement_service, set_service


class TestCalculatePriority:
    @pytest.mark.parametrize(
        "importance, urgency, expected",
        [
            ("critical", "high", 1),
            ("high", "high", 2),
            ("high", "medium", 3),
            ("critical", "medium", 3),
            ("medium", "medium", 4),
            ("high", "low", 4),
            ("medium", "high", 5),
            ("low", "medium", 5),
            ("low", "low", 6),
        ],
    )
    def test_matrix(self, importance, urgency, expected):
        assert calculate_priority(importance, urgency) == expected

    def test_critical_urgency_ranks_as_high(self):
        assert calculate_priority("critical", "critical") == 1
        assert calculate_priority("high", "critical") == 2

    def test_missing_values_count_as_medium(self):
        assert calculate_priority(None, None) == 4
        assert calculate_priority("high", None) == 3
        assert calculate_priority(None, "low") == 5

    def test_result_stays_in_range(self):
        levels = ["low", "medium", "high", "critical", None]
        for importance in levels:
            for urgency in levels:
                assert 1 <= calculate_priority(importance, urgency) <= 6


class TestPriorityOnRecords:
    def test_set_priority_defaults_to_medium_medium(self, tenant, hierarchy):
        assert hierarchy["set"].priority == 4

    def test_set_priority_follows_update(self, tenant, admin, hierarchy):
        set_obj = set_service.update_set(
            hierarchy["set"].id, tenant_id=tenant.id,
            data={"importance": "critical", "urgency": "high"}, actor_id=admin.id,
        )
        db.session.commit()
        assert set_obj.priority == 1

    def test_priority_cannot_be_written_directly(self, tenant, admin, hierarchy):
        set_obj = set_service.update_set(
            hierarchy["set"].id, tenant_id=tenant.id, data={"priority": 1}, actor_id=admin.id,
        )
        db.session.commit()
        db.session.refresh(set_obj)
        assert set_obj.priority == 4

    def test_requirement_priority_on_create(self, tenant, admin, hierarchy):
        req = requirement_service.create_requirement(
            hierarchy["set"].id, tenant_id=tenant.id,
            data={"title": "Draft brief", "importance": "low", "urgency": "low"}, actor_id=admin.id,
        )
        assert req.priority == 6

    def test_invalid_level_rejected(self, tenant, admin, hierarchy):
        with pytest.raises(ValidationError) as exc:
            requirement_service.create_requirement(
                hierarchy["set"].id, tenant_id=tenant.id,
                data={"title": "Bad", "urgency": "yesterday"}, actor_id=admin.id,
            )
        assert "urgency" in exc.value.details

    def test_api_reports_priority(self, client, admin_headers, hierarchy):
        res = client.post(
            f"/api/v1/sets/{hierarchy['set'].id}/requirements",
            json={"title": "Sign-off", "importance": "high", "urgency": "high"},
            headers=admin_headers,
        )
        assert res.status_code == 201
        assert res.get_json()["priority"] == 2
