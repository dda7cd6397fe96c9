"""
Sibling ordering tests: explicit reorder, order_key placement and
predecessor/successor cycle checks.
"""

import uuid

import pytest
from sqlalchemy.exc import OperationalError

from delivery_workspace.core.exceptions import NotFoundError, PartialFailure, ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.delivery import Set
from delivery_workspace.services import (
    ordering_service,
    phase_service,
    pitch_service,
    set_service,
)


# ═════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═════════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def three_sets(tenant, admin, hierarchy):
    """Kickoff (A), Budget (B), Staffing (C) under the discovery phase."""
    phase_id = hierarchy["phase"].id
    extra = [
        set_service.create_set(tenant_id=tenant.id, data={"phase_id": phase_id, "name": name}, actor_id=admin.id)
        for name in ("Budget", "Staffing")
    ]
    db.session.commit()
    return [hierarchy["set"], *extra]


@pytest.fixture()
def new_phase(tenant, admin, hierarchy):
    def _create(name, **data):
        phase = phase_service.create_phase(
            hierarchy["project"].id, tenant_id=tenant.id, data={"name": name, **data}, actor_id=admin.id,
        )
        db.session.commit()
        return phase

    return _create


def _orders(ids):
    db.session.expire_all()
    return [db.session.get(Set, sid).set_order for sid in ids]


# ═════════════════════════════════════════════════════════════════════════════
# REORDER
# ═════════════════════════════════════════════════════════════════════════════


class TestReorder:
    def test_new_sets_append_at_the_end(self, three_sets):
        assert [s.set_order for s in three_sets] == [0, 1, 2]

    def test_positions_follow_given_sequence(self, tenant, hierarchy, three_sets):
        a, b, c = (s.id for s in three_sets)
        result = ordering_service.reorder("set", hierarchy["phase"].id, [c, a, b], tenant_id=tenant.id)
        db.session.commit()
        assert result.ordered_ids == [c, a, b]
        assert _orders([c, a, b]) == [0, 1, 2]

    def test_duplicate_ids_rejected_without_writes(self, tenant, hierarchy, three_sets):
        a, b, c = (s.id for s in three_sets)
        with pytest.raises(ValidationError) as exc:
            ordering_service.reorder("set", hierarchy["phase"].id, [c, c, a], tenant_id=tenant.id)
        assert exc.value.details["child_ids"] == [c]
        assert _orders([a, b, c]) == [0, 1, 2]

    def test_foreign_child_rejected(self, tenant, admin, hierarchy, three_sets):
        outsider = set_service.create_set(
            tenant_id=tenant.id, data={"client_id": hierarchy["client"].id, "name": "Elsewhere"},
            actor_id=admin.id,
        )
        db.session.commit()
        with pytest.raises(ValidationError) as exc:
            ordering_service.reorder(
                "set", hierarchy["phase"].id, [three_sets[0].id, outsider.id], tenant_id=tenant.id,
            )
        assert exc.value.details["child_ids"] == [outsider.id]

    def test_unknown_child_type(self, tenant, hierarchy):
        with pytest.raises(ValidationError):
            ordering_service.reorder("client", hierarchy["phase"].id, [], tenant_id=tenant.id)

    def test_parent_in_other_tenant_is_not_found(self, other_tenant, hierarchy, three_sets):
        with pytest.raises(NotFoundError):
            ordering_service.reorder(
                "set", hierarchy["phase"].id, [s.id for s in three_sets], tenant_id=other_tenant.id,
            )

    def test_failed_row_reports_partial_failure(self, tenant, hierarchy, three_sets, monkeypatch):
        a, b, c = (s.id for s in three_sets)
        real_get = db.session.get

        def flaky_get(model, ident, *args, **kwargs):
            if ident == a:
                raise OperationalError("UPDATE sets", {}, Exception("database is locked"))
            return real_get(model, ident, *args, **kwargs)

        monkeypatch.setattr(db.session, "get", flaky_get)
        with pytest.raises(PartialFailure) as exc:
            ordering_service.reorder("set", hierarchy["phase"].id, [c, a, b], tenant_id=tenant.id)
        monkeypatch.undo()

        assert exc.value.succeeded == [c, b]
        assert exc.value.failed == [a]
        assert exc.value.cleaned_up is False
        db.session.commit()
        assert _orders([c, b]) == [0, 2]

    def test_reorder_endpoint(self, client, admin_headers, hierarchy, three_sets):
        a, b, c = (s.id for s in three_sets)
        res = client.post(
            "/api/v1/reorder",
            json={"child_type": "set", "parent_id": hierarchy["phase"].id, "child_ids": [b, c, a]},
            headers=admin_headers,
        )
        assert res.status_code == 200
        assert res.get_json()["ordered_ids"] == [b, c, a]
        assert _orders([b, c, a]) == [0, 1, 2]

    def test_reorder_endpoint_requires_parent(self, client, admin_headers):
        res = client.post("/api/v1/reorder", json={"child_type": "set"}, headers=admin_headers)
        assert res.status_code == 422
        assert "parent_id" in res.get_json()["details"]


# ═════════════════════════════════════════════════════════════════════════════
# ORDER KEYS & CHAINS
# ═════════════════════════════════════════════════════════════════════════════


class TestOrderKeyPlacement:
    def test_predecessor_successor_and_manual(self, hierarchy, new_phase):
        discovery = hierarchy["phase"]
        assert discovery.order_key == 0
        after = new_phase("Design", predecessor_phase_id=discovery.id)
        before = new_phase("Sales handover", successor_phase_id=discovery.id)
        pinned = new_phase("Retrospective", order_manual=10)
        appended = new_phase("Support")

        assert after.order_key == 1
        assert before.order_key == -1
        assert pinned.order_key == 10
        assert appended.order_key == 11

    def test_listing_follows_order_key(self, tenant, hierarchy, new_phase):
        new_phase("Sales handover", successor_phase_id=hierarchy["phase"].id)
        names = [p.name for p in phase_service.list_phases(hierarchy["project"].id, tenant_id=tenant.id)]
        assert names == ["Sales handover", "Discovery"]


class TestChainCycles:
    def test_closing_a_loop_is_rejected(self, tenant, hierarchy, new_phase):
        first = hierarchy["phase"]
        second = new_phase("Design", predecessor_phase_id=first.id)
        third = new_phase("Build", predecessor_phase_id=second.id)

        with pytest.raises(ValidationError) as exc:
            phase_service.update_phase(
                first.id, tenant_id=tenant.id, data={"predecessor_phase_id": third.id},
            )
        assert exc.value.details["predecessor_phase_id"] == "cycle"

    def test_consistent_successor_link_is_accepted(self, tenant, hierarchy, new_phase):
        first = hierarchy["phase"]
        second = new_phase("Design", predecessor_phase_id=first.id)
        updated = phase_service.update_phase(
            first.id, tenant_id=tenant.id, data={"successor_phase_id": second.id},
        )
        assert updated.successor_phase_id == second.id

    def test_self_reference_is_rejected(self, tenant, hierarchy):
        phase = hierarchy["phase"]
        with pytest.raises(ValidationError):
            phase_service.update_phase(phase.id, tenant_id=tenant.id, data={"successor_phase_id": phase.id})

    def test_pitch_link_must_stay_in_the_set(self, tenant, admin, hierarchy):
        other_set = set_service.create_set(
            tenant_id=tenant.id, data={"phase_id": hierarchy["phase"].id, "name": "Other"}, actor_id=admin.id,
        )
        stranger = pitch_service.create_pitch(other_set.id, tenant_id=tenant.id, data={"name": "Elsewhere"})
        db.session.commit()
        with pytest.raises(NotFoundError):
            pitch_service.create_pitch(
                hierarchy["set"].id, tenant_id=tenant.id,
                data={"name": "Linked", "predecessor_pitch_id": stranger.id},
            )

    def test_pitch_cycle_is_rejected(self, tenant, hierarchy):
        set_id = hierarchy["set"].id
        a = pitch_service.create_pitch(set_id, tenant_id=tenant.id, data={"name": "A"})
        b = pitch_service.create_pitch(set_id, tenant_id=tenant.id, data={"name": "B", "predecessor_pitch_id": a.id})
        db.session.commit()
        with pytest.raises(ValidationError):
            pitch_service.update_pitch(a.id, tenant_id=tenant.id, data={"predecessor_pitch_id": b.id})

    def test_unknown_phase_link_is_not_found(self, tenant, hierarchy):
        with pytest.raises(NotFoundError):
            phase_service.create_phase(
                hierarchy["project"].id, tenant_id=tenant.id,
                data={"name": "Ghost", "predecessor_phase_id": str(uuid.uuid4())},
            )
