"""
Tests for MaintenanceService and the maintenance request workflow.

Covers:
- Workflow definition checks
- Submission: defaults, unit resolution, validation
- Allowed and rejected transitions
- completed_at stamped once
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from rental_kernel.domain.workflow import Transition, Workflow
from rental_kernel.exceptions import (
    InvalidTransitionError,
    MaintenanceRequestNotFoundError,
    TenantNotFoundError,
    ValidationError,
)
from rental_modules.maintenance.models import (
    MaintenancePriority,
    MaintenanceStatus,
    priority_rank,
)
from rental_modules.maintenance.workflows import MAINTENANCE_WORKFLOW


class TestMaintenanceWorkflow:
    def test_declared_moves(self):
        assert MAINTENANCE_WORKFLOW.find_transition("pending", "in_progress").action == "start"
        assert MAINTENANCE_WORKFLOW.find_transition("in_progress", "completed").action == "complete"
        assert MAINTENANCE_WORKFLOW.find_transition("pending", "canceled").action == "cancel"
        assert MAINTENANCE_WORKFLOW.find_transition("in_progress", "canceled").action == "cancel"

    def test_no_moves_out_of_terminal_states(self):
        for terminal in ("completed", "canceled"):
            assert MAINTENANCE_WORKFLOW.is_terminal(terminal)
            for state in MAINTENANCE_WORKFLOW.states:
                assert MAINTENANCE_WORKFLOW.find_transition(terminal, state) is None

    def test_pending_cannot_jump_to_completed(self):
        assert MAINTENANCE_WORKFLOW.find_transition("pending", "completed") is None

    def test_find_action(self):
        assert MAINTENANCE_WORKFLOW.find_action("pending", "start").to_state == "in_progress"
        assert MAINTENANCE_WORKFLOW.find_action("completed", "start") is None

    def test_terminal_state_with_outgoing_transition_rejected(self):
        with pytest.raises(ValueError, match="terminal state"):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(Transition("b", "a", action="reopen"),),
                terminal_states=("b",),
            )

    def test_undeclared_state_rejected(self):
        with pytest.raises(ValueError, match="undeclared state"):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a",),
                transitions=(Transition("a", "z", action="go"),),
            )

    def test_priority_rank_urgent_first(self):
        ranked = sorted(MaintenancePriority, key=priority_rank)
        assert ranked == [
            MaintenancePriority.URGENT,
            MaintenancePriority.HIGH,
            MaintenancePriority.MEDIUM,
            MaintenancePriority.LOW,
        ]


class TestSubmitRequest:
    def test_submit_defaults(self, maintenance_service, create_property, create_unit, create_lease, test_actor_id):
        prop = create_property()
        unit = create_unit(prop.id)
        lease = create_lease(property_id=prop.id, unit_id=unit.id)

        request = maintenance_service.submit_request(
            lease.id, "  Leaking tap ", "Kitchen tap drips all night", test_actor_id
        )

        assert request.status == MaintenanceStatus.PENDING
        assert request.priority == MaintenancePriority.MEDIUM
        assert request.title == "Leaking tap"
        assert request.property_id == prop.id
        assert request.unit_id == unit.id
        assert request.submitted_at == datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert request.completed_at is None

    def test_whole_property_lease_may_name_unit(self, maintenance_service, create_property, create_unit, create_lease, test_actor_id):
        prop = create_property()
        unit = create_unit(prop.id)
        lease = create_lease(property_id=prop.id)

        request = maintenance_service.submit_request(
            lease.id, "Broken window", "Bedroom window cracked", test_actor_id, unit_id=unit.id
        )

        assert request.unit_id == unit.id

    def test_unit_outside_lease_rejected(self, maintenance_service, create_property, create_unit, create_lease, test_actor_id):
        lease = create_lease()
        foreign = create_unit(create_property().id)

        with pytest.raises(ValidationError):
            maintenance_service.submit_request(
                lease.id, "Broken window", "Cracked", test_actor_id, unit_id=foreign.id
            )

    def test_blank_title_rejected(self, maintenance_service, create_lease, test_actor_id):
        lease = create_lease()

        with pytest.raises(ValidationError):
            maintenance_service.submit_request(lease.id, " ", "Cracked", test_actor_id)

    def test_unknown_lease_rejected(self, maintenance_service, test_actor_id):
        with pytest.raises(TenantNotFoundError):
            maintenance_service.submit_request(uuid4(), "Broken window", "Cracked", test_actor_id)

    def test_unknown_request(self, maintenance_service):
        with pytest.raises(MaintenanceRequestNotFoundError):
            maintenance_service.get_request(uuid4())


class TestTransitions:
    @pytest.fixture
    def request_id(self, maintenance_service, create_lease, test_actor_id):
        lease = create_lease()
        return maintenance_service.submit_request(
            lease.id, "No hot water", "Boiler is off", test_actor_id,
            priority=MaintenancePriority.HIGH,
        ).id

    def test_start_then_complete(self, maintenance_service, request_id, deterministic_clock, test_actor_id):
        maintenance_service.start_work(request_id, test_actor_id)
        deterministic_clock.advance(3600)

        done = maintenance_service.complete(request_id, test_actor_id, notes="Replaced igniter")

        assert done.status == MaintenanceStatus.COMPLETED
        assert done.completed_at == datetime(2024, 1, 1, 13, 0, 0, tzinfo=timezone.utc)
        assert done.notes == "Replaced igniter"

    def test_completed_cannot_reopen(self, maintenance_service, request_id, captured_logs, test_actor_id):
        maintenance_service.start_work(request_id, test_actor_id)
        maintenance_service.complete(request_id, test_actor_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            maintenance_service.transition(request_id, MaintenanceStatus.IN_PROGRESS, test_actor_id)

        assert exc_info.value.from_state == "completed"
        assert exc_info.value.to_state == "in_progress"
        assert maintenance_service.get_request(request_id).status == MaintenanceStatus.COMPLETED
        assert any(r["message"] == "maintenance_transition_rejected" for r in captured_logs())

    def test_pending_cannot_complete(self, maintenance_service, request_id, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            maintenance_service.complete(request_id, test_actor_id)
        assert maintenance_service.get_request(request_id).status == MaintenanceStatus.PENDING

    def test_cancel_from_pending_and_in_progress(self, maintenance_service, create_lease, test_actor_id):
        lease = create_lease()
        first = maintenance_service.submit_request(lease.id, "A", "a", test_actor_id).id
        second = maintenance_service.submit_request(lease.id, "B", "b", test_actor_id).id
        maintenance_service.start_work(second, test_actor_id)

        assert maintenance_service.cancel(first, test_actor_id).status == MaintenanceStatus.CANCELED
        assert maintenance_service.cancel(second, test_actor_id).status == MaintenanceStatus.CANCELED

    def test_canceled_is_final(self, maintenance_service, request_id, test_actor_id):
        maintenance_service.cancel(request_id, test_actor_id)

        with pytest.raises(InvalidTransitionError):
            maintenance_service.start_work(request_id, test_actor_id)
