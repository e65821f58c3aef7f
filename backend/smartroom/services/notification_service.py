"""
站内通知服务 - 按接收人存储的通知、未读计数、全部已读与忽略
"""
from datetime import datetime
from string import Template
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from smartroom.database import storage_guard, update_if
from smartroom.exceptions import ValidationError
from smartroom.models.ontology import Notification, NotificationKind
from smartroom.security.auth import require_role
from smartroom.security.context import CallerContext
from smartroom.security.permissions import NOTIFICATION_READ

logger = logging.getLogger(__name__)

LIST_LIMIT = 50

# 事件 → (类型, 标题模板, 内容模板)
NOTIFICATION_TEMPLATES: Dict[str, tuple] = {
    "request_created": (
        NotificationKind.INFO,
        "New service request - Room $room_number",
        "A $priority priority $request_type request was created.",
    ),
    "request_status": (
        NotificationKind.INFO,
        "Service request update",
        "Your $request_type request is now $status.",
    ),
    "request_completed": (
        NotificationKind.SUCCESS,
        "Service request completed",
        "Your $request_type request has been completed.",
    ),
    "request_cancelled": (
        NotificationKind.WARNING,
        "Service request cancelled",
        "Your $request_type request was cancelled by hotel staff.",
    ),
    "guest_message": (
        NotificationKind.INFO,
        "New message - Room $room_number",
        "$sender_name: $preview",
    ),
}


class NotificationService:
    """站内通知服务"""

    def __init__(self, db: Session):
        self.db = db

    # ---------- 写入（事件处理器调用） ----------

    def notify_many(self, recipient_ids: Iterable[int], template_code: str,
                    variables: Optional[Dict[str, Any]] = None,
                    room_number: Optional[str] = None,
                    related_entity_type: Optional[str] = None,
                    related_entity_id: Optional[int] = None) -> List[Notification]:
        """按模板给多个接收人各写一条通知，单次提交"""
        kind, subject_tpl, content_tpl = NOTIFICATION_TEMPLATES[template_code]
        vars_dict = {k: "" if v is None else str(v) for k, v in (variables or {}).items()}
        title = Template(subject_tpl).safe_substitute(vars_dict)
        body = Template(content_tpl).safe_substitute(vars_dict)

        created = []
        for recipient_id in recipient_ids:
            notification = Notification(
                recipient_id=recipient_id,
                kind=kind,
                title=title,
                body=body,
                room_number=room_number,
                related_entity_type=related_entity_type,
                related_entity_id=related_entity_id,
            )
            self.db.add(notification)
            created.append(notification)
        if created:
            self.db.commit()
        return created

    # ---------- 查询与状态 ----------

    def list_notifications(self, caller: CallerContext) -> Dict[str, Any]:
        """最近 50 条未忽略的通知（最新在前）及未读数"""
        require_role(caller, NOTIFICATION_READ)
        with storage_guard(self.db, "list notifications"):
            base = self.db.query(Notification).filter(
                Notification.recipient_id == caller.user_id,
                Notification.dismissed_at.is_(None),
            )
            items = (
                base.order_by(Notification.created_at.desc(), Notification.id.desc())
                .limit(LIST_LIMIT)
                .all()
            )
            unread = base.filter(Notification.is_read == False).count()
            return {
                "notifications": [self.to_dict(n) for n in items],
                "unread_count": unread,
            }

    def mark_all_read(self, caller: CallerContext) -> int:
        """标记全部已读，返回更新数量"""
        require_role(caller, NOTIFICATION_READ)
        with storage_guard(self.db, "mark notifications read"):
            count = update_if(self.db, Notification, [
                Notification.recipient_id == caller.user_id,
                Notification.is_read == False,
            ], {"is_read": True})
            self.db.commit()
        return count

    def dismiss(self, caller: CallerContext, notification_id: Optional[int]) -> bool:
        """忽略一条通知；不属于调用者或已忽略时静默返回 False"""
        require_role(caller, NOTIFICATION_READ)
        if not notification_id:
            raise ValidationError("缺少通知 ID")
        with storage_guard(self.db, "dismiss notification"):
            changed = update_if(self.db, Notification, [
                Notification.id == notification_id,
                Notification.recipient_id == caller.user_id,
                Notification.dismissed_at.is_(None),
            ], {"dismissed_at": datetime.utcnow(), "is_read": True})
            self.db.commit()
        return changed > 0

    @staticmethod
    def to_dict(notification: Notification) -> Dict[str, Any]:
        return {
            "id": notification.id,
            "kind": notification.kind.value,
            "title": notification.title,
            "body": notification.body,
            "room_number": notification.room_number,
            "related_entity_type": notification.related_entity_type,
            "related_entity_id": notification.related_entity_id,
            "is_read": bool(notification.is_read),
            "created_at": notification.created_at.isoformat() if notification.created_at else None,
        }
