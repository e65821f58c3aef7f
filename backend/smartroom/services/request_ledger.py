"""
服务请求台账 - 服务请求的唯一写入方
所有状态变更经过 domain.service_request 的生命周期状态机；
取消操作通过原子条件更新（update_if）完成，避免与员工的并发推进产生竞争
"""
from datetime import datetime, time
from typing import Any, Callable, Dict, List, Optional
import logging

from sqlalchemy import case
from sqlalchemy.orm import Session, joinedload

from smartroom.database import storage_guard, update_if
from smartroom.domain.service_request import ServiceRequestEntity, SERVICE_REQUEST_LIFECYCLE
from smartroom.exceptions import NotFoundError, ValidationError
from smartroom.models.events import (
    EventType, ServiceRequestCreatedData, ServiceRequestUpdatedData, ServiceRequestCancelledData
)
from smartroom.models.ontology import (
    ServiceRequest, GuestProfile, StaffProfile,
    RequestType, RequestPriority, RequestStatus,
)
from smartroom.security.auth import require_role
from smartroom.security.context import CallerContext
from smartroom.security.permissions import (
    SERVICE_REQUEST_READ, SERVICE_REQUEST_CREATE, SERVICE_REQUEST_UPDATE, SERVICE_REQUEST_CANCEL
)
from smartroom.services.directory_service import DirectoryService, GuestRoomStrategy, strategy_for
from smartroom.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)

GUEST_LIST_LIMIT = 50
STAFF_LIST_LIMIT = 100

# urgent > high > medium > low
_PRIORITY_RANK = case(
    (ServiceRequest.priority == RequestPriority.URGENT, 1),
    (ServiceRequest.priority == RequestPriority.HIGH, 2),
    (ServiceRequest.priority == RequestPriority.MEDIUM, 3),
    (ServiceRequest.priority == RequestPriority.LOW, 4),
    else_=5,
)

# 可以被取消的状态，由生命周期中 trigger=cancel 的边决定
CANCELLABLE_STATUSES = tuple(
    RequestStatus(t.from_state)
    for t in SERVICE_REQUEST_LIFECYCLE.transitions
    if t.trigger == "cancel"
)


def _parse_enum(enum_cls, value, field_name: str):
    """把外部输入解析为枚举，非法值抛出 ValidationError"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"无效的 {field_name}: {value}（可选值: {allowed}）")


def _parse_time(value) -> Optional[time]:
    """解析 HH:MM 或 HH:MM:SS"""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    text = str(value).strip()
    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValidationError(f"无效的 preferred_time: {value}（格式 HH:MM 或 HH:MM:SS）")


def _parse_staff_id(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("assigned_to 必须是员工ID")
    try:
        staff_id = int(value)
    except (TypeError, ValueError):
        raise ValidationError("assigned_to 必须是员工ID")
    if staff_id <= 0:
        raise ValidationError("assigned_to 必须是员工ID")
    return staff_id


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


class ServiceRequestService:
    """服务请求服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None):
        self.db = db
        self.directory = DirectoryService(db)
        # 支持依赖注入事件发布器，便于测试
        self._publish_event = event_publisher or event_bus.publish

    def _query(self):
        return self.db.query(ServiceRequest).options(
            joinedload(ServiceRequest.guest).joinedload(GuestProfile.user),
            joinedload(ServiceRequest.assignee).joinedload(StaffProfile.user),
        )

    def get_request(self, request_id: int) -> Optional[ServiceRequest]:
        """获取单个服务请求（每次都从存储读取）"""
        return self._query().filter(ServiceRequest.id == request_id).first()

    # ---------- 查询 ----------

    def list_requests(self, caller: CallerContext, status: Optional[str] = None,
                      room: Optional[str] = None) -> List[ServiceRequest]:
        """
        客人：本房间的请求，最新在前，最多 50 条（忽略 status 与 room 过滤）
        员工/管理员：可按状态、房间过滤，按优先级再按创建时间倒序，最多 100 条
        """
        require_role(caller, SERVICE_REQUEST_READ)

        with storage_guard(self.db, "list service requests"):
            if caller.is_guest:
                room_number = GuestRoomStrategy(self.directory).acting_room(caller)
                if not room_number:
                    return []
                return (
                    self._query()
                    .filter(ServiceRequest.room_number == room_number)
                    .order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
                    .limit(GUEST_LIST_LIMIT)
                    .all()
                )

            query = self._query()
            if status:
                query = query.filter(ServiceRequest.status == _parse_enum(RequestStatus, status, "status"))
            if room:
                query = query.filter(ServiceRequest.room_number == room)
            return (
                query.order_by(_PRIORITY_RANK, ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
                .limit(STAFF_LIST_LIMIT)
                .all()
            )

    # ---------- 创建 ----------

    def create_request(self, caller: CallerContext, request_type: str,
                       description: Optional[str] = None, priority: Optional[str] = None,
                       preferred_time: Optional[str] = None,
                       room_number: Optional[str] = None) -> ServiceRequest:
        """
        创建服务请求

        客人使用自己的档案和房间；员工/管理员必须提供 room_number，
        且该房间必须有登记的客人
        """
        require_role(caller, SERVICE_REQUEST_CREATE)
        req_type = _parse_enum(RequestType, request_type, "request_type")
        req_priority = _parse_enum(RequestPriority, priority or RequestPriority.MEDIUM.value, "priority")
        req_time = _parse_time(preferred_time)
        description = (description or "").strip() or None

        with storage_guard(self.db, "create service request"):
            guest = strategy_for(caller, self.directory).request_target(caller, room_number)

            request = ServiceRequest(
                guest_id=guest.id,
                room_number=guest.room_number,
                request_type=req_type,
                priority=req_priority,
                status=RequestStatus.PENDING,
                description=description,
                preferred_time=req_time,
            )
            self.db.add(request)
            self.db.commit()
            request_id = request.id
            created = self.get_request(request_id)

        logger.info(
            f"Service request {request_id} created for room {created.room_number} "
            f"by {caller.role.value} {caller.user_id}"
        )
        self._publish_event(Event(
            event_type=EventType.SERVICE_REQUEST_CREATED,
            timestamp=datetime.now(),
            data=ServiceRequestCreatedData(
                request_id=request_id,
                room_number=created.room_number,
                request_type=req_type.value,
                priority=req_priority.value,
                created_by=caller.user_id,
                created_by_role=caller.role.value,
            ).to_dict(),
            source="request_ledger"
        ))
        return created

    # ---------- 更新 ----------

    def update_request(self, caller: CallerContext, request_id: Optional[int],
                       status: Optional[str] = None, assigned_to: Any = None) -> ServiceRequest:
        """
        员工/管理员更新状态或分配

        分配员工时，pending 的请求先自动进入 assigned，再应用显式状态；
        写入后重新读取并返回最新记录
        """
        require_role(caller, SERVICE_REQUEST_UPDATE)
        if not request_id:
            raise ValidationError("缺少服务请求 ID")
        if status is None and assigned_to is None:
            raise ValidationError("至少需要提供 status 或 assigned_to")
        target_status = _parse_enum(RequestStatus, status, "status").value if status is not None else None
        staff_id = _parse_staff_id(assigned_to) if assigned_to is not None else None

        with storage_guard(self.db, "update service request"):
            request = self.get_request(request_id)
            if request is None:
                raise NotFoundError(f"服务请求 {request_id} 不存在")
            if staff_id is not None and self.directory.staff_profile(staff_id) is None:
                raise NotFoundError(f"员工 {staff_id} 不存在")

            entity = ServiceRequestEntity(request)
            old_status = entity.apply_update(status=target_status, assigned_to=staff_id, now=datetime.utcnow())
            request.updated_at = datetime.utcnow()
            self.db.commit()

            self.db.expire_all()
            updated = self.get_request(request_id)

        self._publish_event(Event(
            event_type=EventType.SERVICE_REQUEST_UPDATED,
            timestamp=datetime.now(),
            data=ServiceRequestUpdatedData(
                request_id=updated.id,
                room_number=updated.room_number,
                guest_user_id=updated.guest.user_id if updated.guest else None,
                old_status=old_status,
                new_status=updated.status.value,
                assigned_to=updated.assigned_to,
                updated_by=caller.user_id,
            ).to_dict(),
            source="request_ledger"
        ))
        return updated

    # ---------- 取消 ----------

    def cancel_request(self, caller: CallerContext, request_id: Optional[int]) -> bool:
        """
        取消服务请求（条件写入）

        客人：仅限自己的、仍为 pending 的请求
        员工/管理员：任何非终态请求；已是终态时不做任何修改

        Returns:
            是否有记录被修改；条件不满足时返回 False 而不是报错
        """
        require_role(caller, SERVICE_REQUEST_CANCEL)
        if not request_id:
            raise ValidationError("缺少服务请求 ID")

        with storage_guard(self.db, "cancel service request"):
            if caller.is_guest:
                profile = self.directory.guest_profile_for_user(caller.user_id)
                if profile is None:
                    return False
                predicate = [
                    ServiceRequest.id == request_id,
                    ServiceRequest.guest_id == profile.id,
                    ServiceRequest.status == RequestStatus.PENDING,
                ]
            else:
                exists = self.db.query(ServiceRequest.id).filter(ServiceRequest.id == request_id).first()
                if exists is None:
                    raise NotFoundError(f"服务请求 {request_id} 不存在")
                predicate = [
                    ServiceRequest.id == request_id,
                    ServiceRequest.status.in_(CANCELLABLE_STATUSES),
                ]

            changed = update_if(self.db, ServiceRequest, predicate, {
                "status": RequestStatus.CANCELLED,
                "assigned_to": None,
                "updated_at": datetime.utcnow(),
            })
            self.db.commit()

            if not changed:
                logger.info(f"Cancel of service request {request_id} by {caller.role.value} matched no row")
                return False

            self.db.expire_all()
            cancelled = self.get_request(request_id)

        logger.info(f"Service request {request_id} cancelled by {caller.role.value} {caller.user_id}")
        self._publish_event(Event(
            event_type=EventType.SERVICE_REQUEST_CANCELLED,
            timestamp=datetime.now(),
            data=ServiceRequestCancelledData(
                request_id=cancelled.id,
                room_number=cancelled.room_number,
                guest_user_id=cancelled.guest.user_id if cancelled.guest else None,
                cancelled_by=caller.user_id,
                cancelled_by_role=caller.role.value,
            ).to_dict(),
            source="request_ledger"
        ))
        return True

    # ---------- 序列化 ----------

    @staticmethod
    def to_dict(request: ServiceRequest) -> Dict[str, Any]:
        guest_user = request.guest.user if request.guest else None
        staff_user = request.assignee.user if request.assignee else None
        return {
            "id": request.id,
            "guest_id": request.guest_id,
            "guest_name": guest_user.full_name if guest_user else None,
            "room_number": request.room_number,
            "request_type": request.request_type.value,
            "priority": request.priority.value,
            "status": request.status.value,
            "description": request.description,
            "assigned_to": request.assigned_to,
            "assigned_staff_name": staff_user.full_name if staff_user else None,
            "preferred_time": request.preferred_time.strftime("%H:%M:%S") if request.preferred_time else None,
            "completed_at": _iso(request.completed_at),
            "created_at": _iso(request.created_at),
            "updated_at": _iso(request.updated_at),
        }
