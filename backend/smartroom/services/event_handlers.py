"""
事件处理器 - 订阅服务请求与消息事件，生成站内通知
"""
from typing import Callable
import logging

from sqlalchemy.exc import SQLAlchemyError

from smartroom.database import SessionLocal
from smartroom.models.events import EventType
from smartroom.models.ontology import ServiceRequest, UserRole, RequestStatus
from smartroom.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)


class NotificationHandlers:
    """
    通知事件处理器

    支持依赖注入以便于测试：
    - db_session_factory: 数据库会话工厂（每个事件使用独立会话）
    """

    def __init__(self, db_session_factory: Callable = None):
        self._db_session_factory = db_session_factory or SessionLocal
        self._registered = False
        self._bus = None

    def _get_db(self):
        return self._db_session_factory()

    def _notification_service(self, db):
        from smartroom.services.notification_service import NotificationService
        return NotificationService(db)

    def _staff_recipients(self, db):
        from smartroom.services.directory_service import DirectoryService
        return DirectoryService(db).active_staff_user_ids()

    def handle_service_request_created(self, event: Event) -> None:
        """客人新建请求 → 通知所有在职员工/管理员"""
        data = event.data
        if data.get("created_by_role") != UserRole.GUEST.value:
            return

        db = self._get_db()
        try:
            created = self._notification_service(db).notify_many(
                self._staff_recipients(db),
                "request_created",
                variables={
                    "room_number": data.get("room_number"),
                    "priority": data.get("priority"),
                    "request_type": data.get("request_type"),
                },
                room_number=data.get("room_number"),
                related_entity_type="ServiceRequest",
                related_entity_id=data.get("request_id"),
            )
            logger.info(f"Notified {len(created)} staff of service request {data.get('request_id')}")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to notify staff of new request: {e}", exc_info=True)
        finally:
            db.close()

    def handle_service_request_updated(self, event: Event) -> None:
        """状态变化 → 通知所属客人"""
        data = event.data
        guest_user_id = data.get("guest_user_id")
        new_status = data.get("new_status")
        if not guest_user_id or data.get("old_status") == new_status:
            return

        db = self._get_db()
        try:
            request = db.query(ServiceRequest).filter(ServiceRequest.id == data.get("request_id")).first()
            request_type = request.request_type.value if request else ""
            template = "request_completed" if new_status == RequestStatus.COMPLETED.value else "request_status"
            self._notification_service(db).notify_many(
                [guest_user_id],
                template,
                variables={"request_type": request_type, "status": new_status.replace("_", " ")},
                room_number=data.get("room_number"),
                related_entity_type="ServiceRequest",
                related_entity_id=data.get("request_id"),
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to notify guest of request update: {e}", exc_info=True)
        finally:
            db.close()

    def handle_service_request_cancelled(self, event: Event) -> None:
        """员工取消请求 → 通知所属客人；客人自己取消不通知"""
        data = event.data
        guest_user_id = data.get("guest_user_id")
        if not guest_user_id or data.get("cancelled_by_role") == UserRole.GUEST.value:
            return

        db = self._get_db()
        try:
            request = db.query(ServiceRequest).filter(ServiceRequest.id == data.get("request_id")).first()
            self._notification_service(db).notify_many(
                [guest_user_id],
                "request_cancelled",
                variables={"request_type": request.request_type.value if request else ""},
                room_number=data.get("room_number"),
                related_entity_type="ServiceRequest",
                related_entity_id=data.get("request_id"),
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to notify guest of cancellation: {e}", exc_info=True)
        finally:
            db.close()

    def handle_message_sent(self, event: Event) -> None:
        """客人留言 → 通知所有在职员工/管理员"""
        data = event.data
        if not data.get("is_from_guest"):
            return

        db = self._get_db()
        try:
            self._notification_service(db).notify_many(
                self._staff_recipients(db),
                "guest_message",
                variables={
                    "room_number": data.get("room_number"),
                    "sender_name": data.get("sender_name"),
                    "preview": data.get("preview"),
                },
                room_number=data.get("room_number"),
                related_entity_type="Message",
                related_entity_id=data.get("message_id"),
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to notify staff of guest message: {e}", exc_info=True)
        finally:
            db.close()

    def _subscriptions(self):
        return [
            (EventType.SERVICE_REQUEST_CREATED, self.handle_service_request_created),
            (EventType.SERVICE_REQUEST_UPDATED, self.handle_service_request_updated),
            (EventType.SERVICE_REQUEST_CANCELLED, self.handle_service_request_cancelled),
            (EventType.MESSAGE_SENT, self.handle_message_sent),
        ]

    def register_handlers(self, event_bus_instance=None) -> None:
        """注册所有事件处理器"""
        if self._registered:
            return
        bus = event_bus_instance or event_bus
        for event_type, handler in self._subscriptions():
            bus.subscribe(event_type, handler)
        self._bus = bus
        self._registered = True
        logger.info("Notification handlers registered")

    def unregister_handlers(self) -> None:
        """取消注册（用于测试）"""
        if not self._registered:
            return
        for event_type, handler in self._subscriptions():
            self._bus.unsubscribe(event_type, handler)
        self._registered = False
        logger.info("Notification handlers unregistered")


# 全局事件处理器实例
notification_handlers = NotificationHandlers()


def register_event_handlers(db_session_factory: Callable = None) -> NotificationHandlers:
    """注册事件处理器（应用启动时调用）"""
    global notification_handlers
    if db_session_factory is not None and db_session_factory is not notification_handlers._db_session_factory:
        notification_handlers.unregister_handlers()
        notification_handlers = NotificationHandlers(db_session_factory)
    notification_handlers.register_handlers()
    return notification_handlers


def unregister_event_handlers() -> None:
    notification_handlers.unregister_handlers()
