"""
房间留言板 - 按房间组织的消息线程与已读状态
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from smartroom.database import storage_guard, update_if
from smartroom.exceptions import ValidationError
from smartroom.models.events import EventType, MessageSentData
from smartroom.models.ontology import Message
from smartroom.security.auth import require_role
from smartroom.security.context import CallerContext
from smartroom.security.permissions import MESSAGE_READ, MESSAGE_SEND, MESSAGE_UNREAD_SUMMARY
from smartroom.services.directory_service import DirectoryService, strategy_for
from smartroom.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)

THREAD_LIMIT = 100
PREVIEW_LENGTH = 80


class MessageService:
    """房间消息服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None):
        self.db = db
        self.directory = DirectoryService(db)
        self._publish_event = event_publisher or event_bus.publish

    def _query(self):
        return self.db.query(Message).options(joinedload(Message.sender))

    def get_message(self, message_id: int) -> Optional[Message]:
        return self._query().filter(Message.id == message_id).first()

    def _thread(self, room_number: str) -> List[Message]:
        return (
            self._query()
            .filter(Message.room_number == room_number)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .limit(THREAD_LIMIT)
            .all()
        )

    def list_messages(self, caller: CallerContext, room: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        获取消息

        - 客人：本房间线程（最早在前），随后把员工发出的消息标记为已读
        - 员工/管理员指定房间：该房间线程，随后把客人发出的消息标记为已读
        - 员工/管理员未指定房间：所有房间最近 100 条（最新在前），不修改已读状态

        返回的是标记已读之前读到的状态
        """
        require_role(caller, MESSAGE_READ)

        with storage_guard(self.db, "list messages"):
            room_number = strategy_for(caller, self.directory).acting_room(caller, room)

            if room_number is None:
                if caller.is_guest:
                    return []
                recent = (
                    self._query()
                    .order_by(Message.created_at.desc(), Message.id.desc())
                    .limit(THREAD_LIMIT)
                    .all()
                )
                return [self.to_dict(m) for m in recent]

            snapshot = [self.to_dict(m) for m in self._thread(room_number)]

            # 读者一方把对方发来的消息标为已读
            marked = update_if(self.db, Message, [
                Message.room_number == room_number,
                Message.is_from_guest == (not caller.is_guest),
                Message.is_read == False,
            ], {"is_read": True})
            self.db.commit()

        if marked:
            logger.debug(f"Marked {marked} messages read in room {room_number} for {caller.role.value}")
        return snapshot

    def send_message(self, caller: CallerContext, body: Optional[str],
                     room_number: Optional[str] = None) -> Message:
        """
        发送消息

        客人只能发往自己的房间（忽略传入的房间号）；员工/管理员必须指定房间
        """
        require_role(caller, MESSAGE_SEND)
        text = (body or "").strip()
        if not text:
            raise ValidationError("消息内容不能为空")

        with storage_guard(self.db, "send message"):
            room = strategy_for(caller, self.directory).require_room(caller, room_number)
            message = Message(
                sender_id=caller.user_id,
                room_number=room,
                body=text,
                is_from_guest=caller.is_guest,
                is_read=False,
            )
            self.db.add(message)
            self.db.commit()
            message_id = message.id
            created = self.get_message(message_id)

        self._publish_event(Event(
            event_type=EventType.MESSAGE_SENT,
            timestamp=datetime.now(),
            data=MessageSentData(
                message_id=message_id,
                room_number=room,
                sender_id=caller.user_id,
                sender_name=caller.full_name,
                is_from_guest=created.is_from_guest,
                preview=text[:PREVIEW_LENGTH],
            ).to_dict(),
            source="message_board"
        ))
        return created

    def unread_room_counts(self, caller: CallerContext) -> List[Dict[str, Any]]:
        """按房间统计客人发出的未读消息数（员工看板角标）"""
        require_role(caller, MESSAGE_UNREAD_SUMMARY)
        with storage_guard(self.db, "count unread messages"):
            rows = (
                self.db.query(Message.room_number, func.count(Message.id))
                .filter(Message.is_from_guest == True, Message.is_read == False)
                .group_by(Message.room_number)
                .order_by(Message.room_number)
                .all()
            )
        return [{"room_number": room, "unread_count": count} for room, count in rows]

    @staticmethod
    def to_dict(message: Message) -> Dict[str, Any]:
        sender = message.sender
        return {
            "id": message.id,
            "sender_id": message.sender_id,
            "sender_name": sender.full_name if sender else None,
            "sender_role": sender.role.value if sender else None,
            "room_number": message.room_number,
            "message": message.body,
            "is_from_guest": bool(message.is_from_guest),
            "is_read": bool(message.is_read),
            "created_at": message.created_at.isoformat() if message.created_at else None,
        }
