"""
站内通知路由
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from smartroom.database import get_db
from smartroom.security.auth import require_any_role
from smartroom.security.context import CallerContext
from smartroom.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["站内通知"])


@router.get("")
def list_notifications(db: Session = Depends(get_db), caller: CallerContext = Depends(require_any_role)):
    """我的通知与未读数"""
    return {"ok": True, **NotificationService(db).list_notifications(caller)}


@router.post("/read_all")
def mark_all_read(db: Session = Depends(get_db), caller: CallerContext = Depends(require_any_role)):
    """全部标为已读"""
    count = NotificationService(db).mark_all_read(caller)
    return {"ok": True, "updated": count}


@router.delete("")
def dismiss_notification(
    id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_any_role)
):
    """忽略一条通知"""
    dismissed = NotificationService(db).dismiss(caller, id)
    return {"ok": True, "dismissed": dismissed}
