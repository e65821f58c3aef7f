"""
目录服务与房间解析策略测试
"""
import pytest

from smartroom.exceptions import NotFoundError, ValidationError
from smartroom.services.directory_service import (
    DirectoryService, GuestRoomStrategy, StaffRoomStrategy, strategy_for
)


class TestDirectoryService:

    def test_guest_for_room_prefers_latest_active_profile(self, db_session, guest_factory):
        guest_factory(room_number="150", email="old@example.com")
        _, newer = guest_factory(room_number="150", email="new@example.com")
        guest_factory(room_number="150", email="inactive@example.com", active=False)
        assert DirectoryService(db_session).guest_for_room("150").id == newer.id

    def test_guest_for_empty_room(self, db_session):
        assert DirectoryService(db_session).guest_for_room("404") is None

    def test_active_staff_user_ids(self, db_session, guest_205, staff_member, admin_user, staff_factory):
        staff_factory(username="former", active=False)
        ids = DirectoryService(db_session).active_staff_user_ids()
        assert ids == sorted([staff_member[0].id, admin_user[0].id])


class TestRoomStrategies:

    def test_strategy_selection(self, db_session, guest_caller, staff_caller, admin_caller):
        directory = DirectoryService(db_session)
        assert isinstance(strategy_for(guest_caller, directory), GuestRoomStrategy)
        assert isinstance(strategy_for(staff_caller, directory), StaffRoomStrategy)
        assert isinstance(strategy_for(admin_caller, directory), StaffRoomStrategy)

    def test_guest_ignores_requested_room(self, db_session, guest_caller):
        strategy = GuestRoomStrategy(DirectoryService(db_session))
        assert strategy.acting_room(guest_caller, "999") == "205"
        assert strategy.require_room(guest_caller, "999") == "205"

    def test_staff_room_is_explicit(self, db_session, staff_caller):
        strategy = StaffRoomStrategy(DirectoryService(db_session))
        assert strategy.acting_room(staff_caller, None) is None
        assert strategy.acting_room(staff_caller, "310") == "310"
        with pytest.raises(ValidationError):
            strategy.require_room(staff_caller, "")

    def test_staff_request_target(self, db_session, guest_205, staff_caller):
        strategy = StaffRoomStrategy(DirectoryService(db_session))
        assert strategy.request_target(staff_caller, "205").id == guest_205[1].id
        with pytest.raises(NotFoundError):
            strategy.request_target(staff_caller, "999")
