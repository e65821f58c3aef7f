"""
客人档案路由（员工/管理员）
"""
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from smartroom.database import get_db
from smartroom.security.auth import require_staff
from smartroom.security.context import CallerContext
from smartroom.services.guest_service import GuestService

router = APIRouter(prefix="/guests", tags=["客人档案"])


@router.get("")
def list_guests(
    status: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_staff)
):
    """客人列表"""
    return {"ok": True, "guests": GuestService(db).list_guests(caller, status=status, search=search)}


@router.get("/{guest_id}")
def get_guest(
    guest_id: int,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_staff)
):
    """客人详情"""
    return {"ok": True, "guest": GuestService(db).get_guest(caller, guest_id)}
