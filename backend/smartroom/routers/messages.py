"""
房间消息路由
"""
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from smartroom.database import get_db
from smartroom.models.schemas import MessageCreate
from smartroom.security.auth import require_any_role
from smartroom.security.context import CallerContext
from smartroom.services.message_board import MessageService

router = APIRouter(prefix="/messages", tags=["房间消息"])

_FALSY = {"", "0", "false", "no"}


@router.get("")
def list_messages(
    room: Optional[str] = None,
    unread: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_any_role)
):
    """获取消息线程；unread=1 时返回各房间未读数（员工/管理员）"""
    service = MessageService(db)
    if unread is not None and unread.strip().lower() not in _FALSY:
        return {"ok": True, "rooms": service.unread_room_counts(caller)}
    return {"ok": True, "messages": service.list_messages(caller, room=room)}


@router.post("")
def send_message(
    data: MessageCreate,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_any_role)
):
    """发送消息"""
    service = MessageService(db)
    message = service.send_message(caller, data.message, room_number=data.room_number)
    return {"ok": True, "message": service.to_dict(message)}
