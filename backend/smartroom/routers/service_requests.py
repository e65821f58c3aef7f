"""
服务请求路由
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from smartroom.database import get_db
from smartroom.models.schemas import ServiceRequestCreate, ServiceRequestUpdate
from smartroom.security.auth import require_any_role, require_staff
from smartroom.security.context import CallerContext
from smartroom.services.request_ledger import ServiceRequestService

router = APIRouter(prefix="/service_requests", tags=["服务请求"])


@router.get("")
def list_service_requests(
    status: Optional[str] = None,
    room: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_any_role)
):
    """获取服务请求列表（客人只能看到本房间）"""
    service = ServiceRequestService(db)
    requests = service.list_requests(caller, status=status, room=room)
    return {"ok": True, "requests": [service.to_dict(r) for r in requests]}


@router.post("")
def create_service_request(
    data: ServiceRequestCreate,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_any_role)
):
    """创建服务请求"""
    service = ServiceRequestService(db)
    request = service.create_request(
        caller,
        request_type=data.request_type,
        description=data.description,
        priority=data.priority,
        preferred_time=data.preferred_time,
        room_number=data.room_number,
    )
    return {"ok": True, "request": service.to_dict(request)}


@router.put("")
def update_service_request(
    data: ServiceRequestUpdate,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_staff)
):
    """更新状态或分配员工（员工/管理员）"""
    service = ServiceRequestService(db)
    request = service.update_request(caller, data.id, status=data.status, assigned_to=data.assigned_to)
    return {"ok": True, "request": service.to_dict(request)}


@router.delete("")
def cancel_service_request(
    id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_any_role)
):
    """取消服务请求；条件不满足时 cancelled=false"""
    cancelled = ServiceRequestService(db).cancel_request(caller, id)
    return {"ok": True, "cancelled": cancelled}
