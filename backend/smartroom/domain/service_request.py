"""
ServiceRequest 领域实体 - 服务请求生命周期

pending → assigned → in_progress → completed
assigned → completed
{pending, assigned, in_progress} → cancelled
completed / cancelled 为终态
"""
from datetime import datetime
from typing import Optional, TYPE_CHECKING
import logging

from smartroom.domain.state_machine import StateMachine, StateMachineConfig, StateTransition
from smartroom.exceptions import ConflictError
from smartroom.models.ontology import RequestStatus

if TYPE_CHECKING:
    from smartroom.models.ontology import ServiceRequest

logger = logging.getLogger(__name__)


# 目标状态 → 触发动作
STATUS_TRIGGERS = {
    RequestStatus.ASSIGNED.value: "assign",
    RequestStatus.IN_PROGRESS.value: "start",
    RequestStatus.COMPLETED.value: "complete",
    RequestStatus.CANCELLED.value: "cancel",
}

_PENDING = RequestStatus.PENDING.value
_ASSIGNED = RequestStatus.ASSIGNED.value
_IN_PROGRESS = RequestStatus.IN_PROGRESS.value
_COMPLETED = RequestStatus.COMPLETED.value
_CANCELLED = RequestStatus.CANCELLED.value

SERVICE_REQUEST_LIFECYCLE = StateMachineConfig(
    name="ServiceRequest",
    states=[s.value for s in RequestStatus],
    transitions=[
        StateTransition(_PENDING, _ASSIGNED, "assign"),
        StateTransition(_ASSIGNED, _IN_PROGRESS, "start"),
        StateTransition(_ASSIGNED, _COMPLETED, "complete"),
        StateTransition(_IN_PROGRESS, _COMPLETED, "complete"),
        StateTransition(_PENDING, _CANCELLED, "cancel"),
        StateTransition(_ASSIGNED, _CANCELLED, "cancel"),
        StateTransition(_IN_PROGRESS, _CANCELLED, "cancel"),
    ],
    terminal_states=[_COMPLETED, _CANCELLED],
)


class ServiceRequestEntity:
    """包装 ORM 对象，所有状态变更都经过生命周期状态机"""

    def __init__(self, orm_model: "ServiceRequest"):
        self._orm_model = orm_model
        self._state_machine = StateMachine(SERVICE_REQUEST_LIFECYCLE, self.status)

    @property
    def status(self) -> str:
        status = self._orm_model.status
        if status is None:
            return _PENDING
        return status.value if isinstance(status, RequestStatus) else str(status)

    def is_terminal(self) -> bool:
        return self._state_machine.is_terminal()

    def _move_to(self, target: str, now: Optional[datetime] = None) -> None:
        trigger = STATUS_TRIGGERS.get(target)
        if trigger is None or not self._state_machine.transition_to(target, trigger):
            raise ConflictError(f"服务请求状态 {self.status} 不允许变更为 {target}")
        self._orm_model.status = RequestStatus(target)
        if target == _COMPLETED:
            self._orm_model.completed_at = now or datetime.utcnow()
        if target == _CANCELLED:
            self._orm_model.assigned_to = None

    def assign(self, staff_id: int) -> None:
        """分配员工；待处理的请求自动进入 assigned"""
        if self.is_terminal():
            raise ConflictError(f"服务请求已处于终态 {self.status}，不能再分配")
        if self.status == _PENDING:
            self._move_to(_ASSIGNED)
        self._orm_model.assigned_to = staff_id

    def change_status(self, target: str, now: Optional[datetime] = None) -> None:
        """显式修改状态；与当前状态相同视为无变化"""
        if self.is_terminal():
            raise ConflictError(f"服务请求已处于终态 {self.status}，不能再修改状态")
        if target == self.status:
            return
        self._move_to(target, now)

    def apply_update(self, status: Optional[str] = None, assigned_to: Optional[int] = None,
                     now: Optional[datetime] = None) -> str:
        """
        员工更新：先处理分配（pending 自动提升为 assigned），再应用显式状态

        Returns:
            更新前的状态
        """
        old_status = self.status
        if self.is_terminal():
            raise ConflictError(f"服务请求已处于终态 {old_status}，不能再修改")
        if assigned_to is not None:
            self.assign(assigned_to)
            if status == _PENDING:
                status = None
        if status is not None:
            self.change_status(status, now)
        return old_status

    def cancel(self) -> None:
        self.change_status(_CANCELLED)
