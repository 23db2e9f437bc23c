"""Tests for sub-operation steps."""

import pytest

from diskmgr.errors import DuplicateStepType, InvalidStatusTransition, InvalidTransition, NotFound, StaleWrite
from diskmgr.models import DeviceState, OperationDetail, OperationKind, OperationStatus


@pytest.fixture
def operation(healthy_device, daemon, tracker):
    return tracker.open_operation(healthy_device, daemon, reason="check")


class TestAppendStep:

    def test_new_step_is_pending(self, operation, step_log):
        step = step_log.append_step(operation, OperationKind.EVALUATION)
        assert step.status == OperationStatus.PENDING
        assert step.kind == OperationKind.EVALUATION
        assert step.done_time is None
        assert operation.details == [step]

    def test_new_step_is_persisted(self, operation, step_log, session_factory):
        step = step_log.append_step(operation, OperationKind.EVALUATION)
        assert step.operation_detail_id is not None

        with session_factory() as other:
            stored = other.get(OperationDetail, step.operation_detail_id)
            assert stored is not None
            assert stored.operation_id == operation.operation_id
            assert stored.kind == OperationKind.EVALUATION
            assert stored.status == OperationStatus.PENDING

    def test_duplicate_type_rejected(self, operation, step_log):
        step_log.append_step(operation, OperationKind.EVALUATION)
        with pytest.raises(DuplicateStepType):
            step_log.append_step(operation, OperationKind.EVALUATION)
        assert len(operation.details) == 1

    def test_different_types_allowed(self, operation, step_log):
        step_log.append_step(operation, OperationKind.EVALUATION)
        step_log.append_step(operation, OperationKind.CLUSTER_DELETE)
        assert [d.kind for d in operation.details] == [OperationKind.EVALUATION, OperationKind.CLUSTER_DELETE]

    def test_append_to_closed_operation(self, operation, step_log, tracker):
        tracker.close(operation)
        with pytest.raises(InvalidStatusTransition):
            step_log.append_step(operation, OperationKind.EVALUATION)

    def test_replace_on_healthy_device_rejected(self, operation, step_log):
        with pytest.raises(InvalidTransition):
            step_log.append_step(operation, OperationKind.DISK_REPLACE)
        assert operation.details == []

    def test_get_unknown_step(self, step_log):
        with pytest.raises(NotFound):
            step_log.get(12345)


class TestAdvance:

    def test_full_path(self, operation, step_log):
        step = step_log.append_step(operation, OperationKind.CLUSTER_DELETE)
        step_log.advance(step, OperationStatus.IN_PROGRESS)
        assert step.done_time is None
        step_log.advance(step, OperationStatus.COMPLETE)
        assert step.status == OperationStatus.COMPLETE
        assert step.done_time is not None

    @pytest.mark.parametrize("target", [OperationStatus.COMPLETE, OperationStatus.FAILED, OperationStatus.PENDING])
    def test_pending_can_only_start(self, operation, step_log, target):
        step = step_log.append_step(operation, OperationKind.CLUSTER_ADD)
        with pytest.raises(InvalidStatusTransition):
            step_log.advance(step, target)
        assert step.status == OperationStatus.PENDING

    @pytest.mark.parametrize("final", [OperationStatus.COMPLETE, OperationStatus.FAILED])
    @pytest.mark.parametrize("target", list(OperationStatus))
    def test_terminal_steps_do_not_move(self, operation, step_log, run_step, final, target):
        step = run_step(operation, OperationKind.CLUSTER_ADD, final)
        with pytest.raises(InvalidStatusTransition):
            step_log.advance(step, target)
        assert step.status == final

    def test_terminal_status_notifies_device(self, operation, step_log, healthy_device):
        step = step_log.append_step(operation, OperationKind.EVALUATION)
        step_log.advance(step, OperationStatus.IN_PROGRESS)
        step_log.advance(step, OperationStatus.COMPLETE, smart_passed=False)
        assert healthy_device.state == DeviceState.DEGRADED
        assert healthy_device.smart_passed is False

    def test_failed_health_check_degrades_device(self, operation, run_step, healthy_device):
        run_step(operation, OperationKind.EVALUATION, final=OperationStatus.FAILED)
        assert healthy_device.state == DeviceState.DEGRADED
        assert healthy_device.smart_passed is None

    def test_illegal_device_move_records_nothing(self, topology, daemon, tracker, step_log, at):
        # D123 is still unknown; a completed diskremove is legal but a completed
        # diskadd after it is not, since removed is absorbing
        operation = tracker.open_operation(topology.device, daemon, at=at(0))
        remove = step_log.append_step(operation, OperationKind.DISK_REMOVE, at=at(1))
        add = step_log.append_step(operation, OperationKind.DISK_ADD, at=at(2))
        step_log.advance(remove, OperationStatus.IN_PROGRESS, at=at(3))
        step_log.advance(add, OperationStatus.IN_PROGRESS, at=at(4))
        step_log.advance(remove, OperationStatus.COMPLETE, at=at(5))
        assert topology.device.state == DeviceState.REMOVED

        with pytest.raises(InvalidTransition):
            step_log.advance(add, OperationStatus.COMPLETE, at=at(6))
        assert step_log.get(add.operation_detail_id).status == OperationStatus.IN_PROGRESS
        assert step_log.get(add.operation_detail_id).done_time is None
        assert topology.device.state == DeviceState.REMOVED

    def test_out_of_order_write_is_stale(self, healthy_device, daemon, tracker, step_log, at):
        operation = tracker.open_operation(healthy_device, daemon, at=at(0))
        step = step_log.append_step(operation, OperationKind.CLUSTER_ADD, at=at(10))
        with pytest.raises(StaleWrite):
            step_log.advance(step, OperationStatus.IN_PROGRESS, at=at(5))
        assert step.status == OperationStatus.PENDING


class TestTrackingAndHeartbeat:

    def test_attach_tracking_ref_before_terminal(self, operation, step_log):
        step = step_log.append_step(operation, OperationKind.CLUSTER_ADD)
        step_log.attach_tracking_ref(step, "JIRA-1234")
        assert step.tracking_id == "JIRA-1234"

    def test_tracking_ref_frozen_after_terminal(self, operation, step_log, run_step):
        step = run_step(operation, OperationKind.CLUSTER_ADD)
        with pytest.raises(InvalidStatusTransition):
            step_log.attach_tracking_ref(step, "JIRA-1234")
        assert step.tracking_id is None

    def test_step_writes_move_operation_snapshot_forward(self, healthy_device, daemon, tracker, step_log, at):
        operation = tracker.open_operation(healthy_device, daemon, at=at(0))
        step = step_log.append_step(operation, OperationKind.CLUSTER_ADD, at=at(10))
        step_log.heartbeat(step, at=at(20))
        assert step.snapshot_time == at(20)
        assert operation.snapshot_time == at(20)

    def test_step_heartbeat_is_monotonic(self, healthy_device, daemon, tracker, step_log, at):
        operation = tracker.open_operation(healthy_device, daemon, at=at(0))
        step = step_log.append_step(operation, OperationKind.CLUSTER_ADD, at=at(10))
        step_log.heartbeat(step, at=at(20))
        with pytest.raises(StaleWrite):
            step_log.heartbeat(step, at=at(15))

    def test_last_step(self, healthy_device, daemon, tracker, step_log, at):
        operation = tracker.open_operation(healthy_device, daemon, at=at(0))
        assert step_log.last_step(operation) is None
        first = step_log.append_step(operation, OperationKind.EVALUATION, at=at(1))
        second = step_log.append_step(operation, OperationKind.CLUSTER_ADD, at=at(2))
        assert step_log.last_step(operation) == second
        step_log.advance(first, OperationStatus.IN_PROGRESS, at=at(3))
        assert step_log.last_step(operation) == first
