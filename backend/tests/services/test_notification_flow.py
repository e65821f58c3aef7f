"""
站内通知测试：通知服务与事件处理器
处理器使用测试数据库的会话工厂，每个事件独立会话
"""
import pytest
from datetime import datetime

from smartroom.models.events import EventType
from smartroom.models.ontology import Notification, NotificationKind
from smartroom.services.event_bus import EventBus, Event
from smartroom.services.event_handlers import NotificationHandlers
from smartroom.services.message_board import MessageService
from smartroom.services.notification_service import NotificationService
from smartroom.services.request_ledger import ServiceRequestService


@pytest.fixture
def handlers(session_factory):
    return NotificationHandlers(db_session_factory=session_factory)


@pytest.fixture
def bus(handlers):
    """注册了通知处理器的事件总线"""
    bus = EventBus()
    handlers.register_handlers(bus)
    yield bus
    handlers.unregister_handlers()


def _notifications(db, user_id):
    db.expire_all()
    return (
        db.query(Notification)
        .filter(Notification.recipient_id == user_id)
        .order_by(Notification.id)
        .all()
    )


class TestNotificationService:

    def test_notify_many_renders_template(self, db_session, staff_member, admin_user):
        created = NotificationService(db_session).notify_many(
            [staff_member[0].id, admin_user[0].id], "request_created",
            variables={"room_number": "205", "priority": "high", "request_type": "maintenance"},
            room_number="205", related_entity_type="ServiceRequest", related_entity_id=7,
        )
        assert len(created) == 2
        assert created[0].title == "New service request - Room 205"
        assert created[0].body == "A high priority maintenance request was created."
        assert created[0].kind == NotificationKind.INFO

    def test_list_mark_read_and_dismiss(self, db_session, staff_member, staff_caller, guest_205, guest_caller):
        service = NotificationService(db_session)
        first, second = service.notify_many(
            [staff_member[0].id, staff_member[0].id], "guest_message",
            variables={"room_number": "205", "sender_name": "Ada", "preview": "hi"},
        )
        service.notify_many([guest_205[0].id], "request_completed", variables={"request_type": "laundry"})

        listing = service.list_notifications(staff_caller)
        assert listing["unread_count"] == 2
        assert [n["id"] for n in listing["notifications"]] == [second.id, first.id]

        assert service.dismiss(staff_caller, first.id) is True
        assert service.dismiss(staff_caller, first.id) is False
        listing = service.list_notifications(staff_caller)
        assert [n["id"] for n in listing["notifications"]] == [second.id]
        assert listing["unread_count"] == 1

        assert service.mark_all_read(staff_caller) == 1
        assert service.list_notifications(staff_caller)["unread_count"] == 0
        # 其他用户不受影响
        assert service.list_notifications(guest_caller)["unread_count"] == 1

    def test_cannot_dismiss_someone_elses(self, db_session, staff_member, guest_caller):
        (note,) = NotificationService(db_session).notify_many(
            [staff_member[0].id], "guest_message", variables={"room_number": "205"}
        )
        assert NotificationService(db_session).dismiss(guest_caller, note.id) is False


class TestNotificationHandlers:
    """业务事件 → 通知"""

    def test_guest_request_notifies_staff(self, db_session, bus, guest_205, staff_member,
                                          admin_user, guest_caller):
        ServiceRequestService(db_session, event_publisher=bus.publish).create_request(
            guest_caller, "maintenance", priority="urgent"
        )
        staff_notes = _notifications(db_session, staff_member[0].id)
        assert len(staff_notes) == 1
        assert "Room 205" in staff_notes[0].title
        assert staff_notes[0].related_entity_type == "ServiceRequest"
        assert len(_notifications(db_session, admin_user[0].id)) == 1
        assert _notifications(db_session, guest_205[0].id) == []

    def test_staff_created_request_does_not_notify(self, db_session, bus, guest_205, staff_member, staff_caller):
        ServiceRequestService(db_session, event_publisher=bus.publish).create_request(
            staff_caller, "amenities", room_number="205"
        )
        assert _notifications(db_session, staff_member[0].id) == []

    def test_status_change_notifies_guest(self, db_session, bus, guest_205, staff_member,
                                          guest_caller, staff_caller):
        service = ServiceRequestService(db_session, event_publisher=bus.publish)
        request = service.create_request(guest_caller, "laundry")
        service.update_request(staff_caller, request.id, assigned_to=staff_member[1].id)
        service.update_request(staff_caller, request.id, status="completed")

        notes = _notifications(db_session, guest_205[0].id)
        assert [n.kind for n in notes] == [NotificationKind.INFO, NotificationKind.SUCCESS]
        assert notes[0].body == "Your laundry request is now assigned."
        assert notes[1].title == "Service request completed"

    def test_reassignment_without_status_change_is_silent(self, db_session, bus, guest_205, staff_member,
                                                         staff_factory, guest_caller, staff_caller):
        _, other_staff = staff_factory(username="staff2", employee_id="E2")
        service = ServiceRequestService(db_session, event_publisher=bus.publish)
        request = service.create_request(guest_caller, "laundry")
        service.update_request(staff_caller, request.id, assigned_to=staff_member[1].id)
        service.update_request(staff_caller, request.id, assigned_to=other_staff.id)
        assert len(_notifications(db_session, guest_205[0].id)) == 1

    def test_cancellation_by_staff_notifies_guest(self, db_session, bus, guest_205, staff_member,
                                                  guest_caller, staff_caller):
        service = ServiceRequestService(db_session, event_publisher=bus.publish)
        request = service.create_request(guest_caller, "housekeeping")
        service.cancel_request(staff_caller, request.id)
        notes = _notifications(db_session, guest_205[0].id)
        assert len(notes) == 1
        assert notes[0].kind == NotificationKind.WARNING

    def test_cancellation_by_guest_is_silent(self, db_session, bus, guest_205, staff_member, guest_caller):
        service = ServiceRequestService(db_session, event_publisher=bus.publish)
        request = service.create_request(guest_caller, "housekeeping")
        service.cancel_request(guest_caller, request.id)
        assert _notifications(db_session, guest_205[0].id) == []

    def test_guest_message_notifies_staff_only(self, db_session, bus, guest_205, staff_member,
                                               guest_caller, staff_caller):
        service = MessageService(db_session, event_publisher=bus.publish)
        service.send_message(guest_caller, "Need towels")
        service.send_message(staff_caller, "On our way", room_number="205")
        staff_notes = _notifications(db_session, staff_member[0].id)
        assert len(staff_notes) == 1
        assert staff_notes[0].body == "Ada Guest: Need towels"
        assert _notifications(db_session, guest_205[0].id) == []

    def test_handler_ignores_irrelevant_payload(self, handlers, db_session, staff_member):
        handlers.handle_service_request_updated(Event(
            event_type=EventType.SERVICE_REQUEST_UPDATED,
            timestamp=datetime.now(),
            data={"request_id": 1, "guest_user_id": None, "old_status": "pending", "new_status": "assigned"},
            source="test",
        ))
        assert db_session.query(Notification).count() == 0

    def test_register_is_idempotent(self, handlers):
        bus = EventBus()
        handlers.register_handlers(bus)
        handlers.register_handlers(bus)
        subscribers = bus.get_subscribers(EventType.MESSAGE_SENT)
        assert subscribers[EventType.MESSAGE_SENT.value].count("handle_message_sent") == 1
        handlers.unregister_handlers()
        assert "handle_message_sent" not in bus.get_subscribers(EventType.MESSAGE_SENT)[EventType.MESSAGE_SENT.value]
