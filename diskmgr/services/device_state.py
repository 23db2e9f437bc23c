"""
Device State Machine

    unknown -> healthy -> {degraded, missing} -> replacing -> {healthy, removed}
    missing -> healthy

Any non-absorbing state may also move to removed or failed; removed and
failed are absorbing. Moves are driven only by terminal sub-operation
outcomes reported by the SubOperationLog.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from diskmgr.errors import InvalidStatusTransition, InvalidTransition
from diskmgr.models import Device, DeviceState, OperationKind, OperationStatus

logger = logging.getLogger(__name__)


ADJACENT: Dict[DeviceState, Set[DeviceState]] = {
    DeviceState.UNKNOWN: {DeviceState.HEALTHY},
    DeviceState.HEALTHY: {DeviceState.DEGRADED, DeviceState.MISSING},
    DeviceState.DEGRADED: {DeviceState.REPLACING},
    DeviceState.MISSING: {DeviceState.REPLACING, DeviceState.HEALTHY},
    DeviceState.REPLACING: {DeviceState.HEALTHY, DeviceState.REMOVED},
}

ABSORBING = {DeviceState.REMOVED, DeviceState.FAILED}

# States a device must be in before replacement work can be scheduled
AWAITING_REPLACEMENT = (DeviceState.DEGRADED, DeviceState.MISSING, DeviceState.REPLACING)


@dataclass
class StepOutcome:
    """Terminal result of one sub-operation, as reported to the state machine."""
    kind: OperationKind
    status: OperationStatus
    smart_passed: Optional[bool] = None
    device_present: Optional[bool] = None
    cancelled: bool = False


class DeviceStateMachine:

    def check_step_allowed(self, device: Device, kind: OperationKind) -> None:
        """
        Raises:
            InvalidTransition: device is absorbing, or replacement work is
                requested without a prior failing evaluation
        """
        kind = OperationKind(kind)
        current = DeviceState(device.state or DeviceState.UNKNOWN)
        if current in ABSORBING:
            raise InvalidTransition(device.device_id, current.value, kind.value, "device is in a terminal state")
        if kind in (OperationKind.DISK_REPLACE, OperationKind.WAIT_FOR_REPLACEMENT) and current not in AWAITING_REPLACEMENT:
            raise InvalidTransition(device.device_id, current.value, kind.value, "replacement requires a failing evaluation")

    def plan(self, current: DeviceState, outcome: StepOutcome) -> List[DeviceState]:
        """Target states, in order, for an outcome. Empty means no lifecycle change."""
        if outcome.cancelled:
            return []

        kind = OperationKind(outcome.kind)
        status = OperationStatus(outcome.status)

        if kind == OperationKind.EVALUATION:
            if current != DeviceState.HEALTHY:
                return []
            if outcome.device_present is False:
                return [DeviceState.MISSING]
            if status == OperationStatus.FAILED or outcome.smart_passed is False:
                return [DeviceState.DEGRADED]
            return []

        if status == OperationStatus.FAILED:
            if kind == OperationKind.DISK_REPLACE:
                return [DeviceState.FAILED]
            return []

        if kind == OperationKind.DISK_ADD:
            return [DeviceState.HEALTHY]
        if kind == OperationKind.DISK_REPLACE:
            if current == DeviceState.REPLACING:
                return [DeviceState.HEALTHY]
            return [DeviceState.REPLACING, DeviceState.HEALTHY]
        if kind == OperationKind.DISK_REMOVE:
            return [DeviceState.REMOVED]
        if kind == OperationKind.WAIT_FOR_REPLACEMENT and current != DeviceState.REPLACING:
            return [DeviceState.REPLACING]
        return []

    def apply_transition(self, device: Device, outcome: StepOutcome) -> DeviceState:
        """
        Apply a terminal step outcome to a device. Does not commit; the caller
        owns the transaction so that the step and the device change land together.

        Raises:
            InvalidStatusTransition: outcome status is not terminal
            InvalidTransition: outcome would require a non-adjacent move
        """
        status = OperationStatus(outcome.status)
        if status not in (OperationStatus.COMPLETE, OperationStatus.FAILED):
            raise InvalidStatusTransition(f"Outcome status must be terminal, got {status.value}")

        current = DeviceState(device.state or DeviceState.UNKNOWN)
        targets = self.plan(current, outcome)

        # Validate the whole path before touching the row
        cursor = current
        for target in targets:
            self._check_move(device, cursor, target)
            cursor = target

        if outcome.kind == OperationKind.EVALUATION and outcome.smart_passed is not None:
            device.smart_passed = outcome.smart_passed

        for target in targets:
            logger.info(f"Device {device.device_id} ({device.device_name}): {DeviceState(device.state).value} -> {target.value}")
            device.state = target

        return DeviceState(device.state)

    def _check_move(self, device: Device, current: DeviceState, target: DeviceState) -> None:
        if current in ABSORBING:
            raise InvalidTransition(device.device_id, current.value, target.value, "state is absorbing")
        if target in ABSORBING:
            return
        if target not in ADJACENT.get(current, set()):
            raise InvalidTransition(device.device_id, current.value, target.value)
