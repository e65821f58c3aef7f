"""
账号服务测试：员工/管理员建档、客人入住登记、自助注册、首个管理员
"""
import pytest
from sqlalchemy.exc import OperationalError

from smartroom.config import settings
from smartroom.exceptions import (
    AuthorizationError, ConflictError, SchemaMismatchError, StorageError, ValidationError
)
from smartroom.models.ontology import (
    User, UserRole, GuestProfile, StaffProfile, AdminProfile, StaffDepartment, AdminAccessLevel
)
from smartroom.models.schemas import AccountCreate, SelfRegisterRequest, BootstrapAdminRequest
from smartroom.notification.email_channel import EmailNotConfigured
from smartroom.security.auth import verify_password
from smartroom.services.account_service import (
    AccountService, account_setup_guard, generate_access_code, schema_mismatch_hint,
    ACCESS_CODE_ALPHABET, TABLES_MISSING_HINT, SCHEMA_OUTDATED_HINT,
)


class FakeEmailChannel:
    """记录发送内容的邮件渠道"""

    def __init__(self, result=True, not_configured=False):
        self.result = result
        self.not_configured = not_configured
        self.sent = []

    def send(self, recipient, subject, content, extra=None):
        if self.not_configured:
            raise EmailNotConfigured(["SMTP_USER", "SMTP_PASSWORD"])
        self.sent.append({"recipient": recipient, "subject": subject, "content": content})
        return self.result


def _guest_payload(**overrides):
    data = {"role": "guest", "full_name": "Grace Hopper", "email": "grace@example.com"}
    data.update(overrides)
    return AccountCreate(**data)


class TestAccessCode:

    def test_format(self):
        code = generate_access_code()
        assert len(code) == 7
        assert all(ch in ACCESS_CODE_ALPHABET for ch in code)


class TestRegisterGuest:
    """员工为客人办理入住建档"""

    def test_auto_assigns_first_vacant_room(self, db_session, guest_factory, staff_caller):
        guest_factory(room_number="101")
        guest_factory(room_number="102")
        channel = FakeEmailChannel()
        result = AccountService(db_session, channel).register(staff_caller, _guest_payload())
        assert result.user.guest_profile.room_number == "103"
        assert result.warning is None
        assert "guest_code" not in result.to_dict()

    def test_access_code_is_password_and_emailed(self, db_session, staff_caller):
        channel = FakeEmailChannel()
        result = AccountService(db_session, channel).register(staff_caller, _guest_payload(room_number="318"))
        profile = db_session.query(GuestProfile).filter_by(user_id=result.user.id).one()
        assert profile.room_number == "318"
        assert verify_password(profile.guest_code, result.user.password_hash)
        assert channel.sent[0]["recipient"] == "grace@example.com"
        assert profile.guest_code in channel.sent[0]["content"]
        assert "318" in channel.sent[0]["content"]

    def test_email_not_configured_returns_code_with_warning(self, db_session, staff_caller):
        service = AccountService(db_session, FakeEmailChannel(not_configured=True))
        result = service.register(staff_caller, _guest_payload())
        data = result.to_dict()
        assert data["guest_code"]
        assert verify_password(data["guest_code"], result.user.password_hash)
        assert data["warning"]
        assert "SMTP_USER" in data["warning_detail"]
        # 客人记录已经写入
        assert db_session.query(User).filter_by(email="grace@example.com").count() == 1

    def test_smtp_failure_returns_warning(self, db_session, staff_caller):
        result = AccountService(db_session, FakeEmailChannel(result=False)).register(
            staff_caller, _guest_payload()
        )
        assert result.guest_code is not None
        assert result.warning_detail == "SMTP delivery failed"

    def test_no_vacant_room(self, db_session, staff_caller, monkeypatch):
        service = AccountService(db_session, FakeEmailChannel())
        monkeypatch.setattr("smartroom.services.account_service.ROOM_FLOORS", range(1, 2))
        monkeypatch.setattr("smartroom.services.account_service.ROOMS_PER_FLOOR", 1)
        service.register(staff_caller, _guest_payload(email="first@example.com"))
        with pytest.raises(ConflictError):
            service.register(staff_caller, _guest_payload(email="second@example.com"))

    def test_records_check_in_dates(self, db_session, staff_caller):
        result = AccountService(db_session, FakeEmailChannel()).register(
            staff_caller, _guest_payload(check_in_date="2026-03-01", check_out_date="2026-03-04")
        )
        profile = result.user.guest_profile
        assert profile.check_in_date.isoformat() == "2026-03-01"
        assert profile.check_out_date.isoformat() == "2026-03-04"

    def test_guest_caller_forbidden(self, db_session, guest_caller):
        with pytest.raises(AuthorizationError):
            AccountService(db_session, FakeEmailChannel()).register(guest_caller, _guest_payload())

    def test_missing_fields(self, db_session, staff_caller):
        with pytest.raises(ValidationError):
            AccountService(db_session, FakeEmailChannel()).register(staff_caller, _guest_payload(full_name=" "))


class TestRegisterStaffAndAdmin:

    def test_staff_created_with_department(self, db_session, staff_caller):
        result = AccountService(db_session, FakeEmailChannel()).register(staff_caller, AccountCreate(
            role="staff", full_name="Hal Porter", username="hal", email="hal@hotel.example.com",
            password="secret99", department="housekeeping", employee_id="E100",
        ))
        profile = db_session.query(StaffProfile).filter_by(user_id=result.user.id).one()
        assert profile.department == StaffDepartment.HOUSEKEEPING
        assert result.user.created_by == staff_caller.user_id

    def test_staff_requires_password(self, db_session, staff_caller):
        with pytest.raises(ValidationError):
            AccountService(db_session, FakeEmailChannel()).register(staff_caller, AccountCreate(
                role="staff", full_name="Hal Porter", email="hal@hotel.example.com",
            ))

    def test_duplicate_username_conflict(self, db_session, staff_member, staff_caller):
        with pytest.raises(ConflictError):
            AccountService(db_session, FakeEmailChannel()).register(staff_caller, AccountCreate(
                role="staff", full_name="Copy", username="staff1", email="copy@hotel.example.com",
                password="secret99",
            ))

    def test_staff_cannot_create_admin(self, db_session, staff_caller):
        with pytest.raises(AuthorizationError):
            AccountService(db_session, FakeEmailChannel()).register(staff_caller, AccountCreate(
                role="admin", full_name="Boss", email="boss@hotel.example.com", password="secret99",
            ))

    def test_admin_creates_admin_within_quota(self, db_session, admin_caller, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_LIMIT", 2)
        service = AccountService(db_session, FakeEmailChannel())
        result = service.register(admin_caller, AccountCreate(
            role="admin", full_name="Second", username="admin2", email="a2@hotel.example.com",
            password="secret99", access_level="super_admin",
        ))
        profile = db_session.query(AdminProfile).filter_by(user_id=result.user.id).one()
        assert profile.access_level == AdminAccessLevel.SUPER_ADMIN

        with pytest.raises(ConflictError):
            service.register(admin_caller, AccountCreate(
                role="admin", full_name="Third", username="admin3", email="a3@hotel.example.com",
                password="secret99",
            ))
        assert service.admin_count() == 2

    def test_invalid_role(self, db_session, admin_caller):
        with pytest.raises(ValidationError):
            AccountService(db_session, FakeEmailChannel()).register(admin_caller, AccountCreate(
                role="manager", full_name="X", email="x@example.com", password="p",
            ))


class TestSelfRegister:

    def test_staff_self_register(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_SELF_REGISTER", True)
        user = AccountService(db_session, FakeEmailChannel()).self_register(SelfRegisterRequest(
            role="staff", full_name="Ivy Desk", username="ivy", email="ivy@hotel.example.com", password="pw12345",
        ))
        assert user.role == UserRole.STAFF
        assert user.staff_profile.department == StaffDepartment.FRONT_DESK

    def test_guest_role_rejected(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_SELF_REGISTER", True)
        with pytest.raises(ValidationError):
            AccountService(db_session, FakeEmailChannel()).self_register(SelfRegisterRequest(
                role="guest", full_name="G", username="g", email="g@example.com", password="pw",
            ))

    def test_missing_username(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_SELF_REGISTER", True)
        with pytest.raises(ValidationError):
            AccountService(db_session, FakeEmailChannel()).self_register(SelfRegisterRequest(
                role="staff", full_name="Ivy", email="ivy@hotel.example.com", password="pw",
            ))

    def test_disabled(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_SELF_REGISTER", False)
        with pytest.raises(AuthorizationError):
            AccountService(db_session, FakeEmailChannel()).self_register(SelfRegisterRequest(
                role="staff", full_name="Ivy", username="ivy", email="ivy@hotel.example.com", password="pw",
            ))

    def test_admin_quota_applies(self, db_session, admin_user, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_SELF_REGISTER", True)
        monkeypatch.setattr(settings, "ADMIN_LIMIT", 1)
        with pytest.raises(ConflictError):
            AccountService(db_session, FakeEmailChannel()).self_register(SelfRegisterRequest(
                role="admin", full_name="Extra", username="extra", email="extra@hotel.example.com",
                password="pw",
            ))


class TestBootstrapAdmin:

    def _payload(self):
        return BootstrapAdminRequest(full_name="Root Admin", email="root@hotel.example.com",
                                     password="rootpass", username="root")

    def test_creates_super_admin(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "SETUP_TOKEN", "setup-123")
        user = AccountService(db_session, FakeEmailChannel()).bootstrap_admin("setup-123", self._payload())
        assert user.role == UserRole.ADMIN
        assert user.admin_profile.access_level == AdminAccessLevel.SUPER_ADMIN

    @pytest.mark.parametrize("configured,provided", [("", ""), ("", "anything"), ("setup-123", "wrong")])
    def test_bad_token(self, db_session, monkeypatch, configured, provided):
        monkeypatch.setattr(settings, "SETUP_TOKEN", configured)
        with pytest.raises(AuthorizationError):
            AccountService(db_session, FakeEmailChannel()).bootstrap_admin(provided, self._payload())

    def test_only_once(self, db_session, admin_user, monkeypatch):
        monkeypatch.setattr(settings, "SETUP_TOKEN", "setup-123")
        with pytest.raises(ConflictError):
            AccountService(db_session, FakeEmailChannel()).bootstrap_admin("setup-123", self._payload())


class TestAccountSetupGuard:
    """表结构问题转换为带提示的错误"""

    def _operational(self, message):
        return OperationalError("INSERT INTO users ...", {}, Exception(message))

    def test_hints(self):
        assert schema_mismatch_hint(self._operational("no such table: users")) == TABLES_MISSING_HINT
        assert schema_mismatch_hint(self._operational("table users has no column named username")) == SCHEMA_OUTDATED_HINT
        assert schema_mismatch_hint(self._operational("database is locked")) is None

    def test_missing_table_maps_to_schema_error(self, db_session):
        with pytest.raises(SchemaMismatchError) as exc:
            with account_setup_guard(db_session, "test"):
                raise self._operational("no such table: guests")
        assert exc.value.message == TABLES_MISSING_HINT
        assert exc.value.status_code == 500

    def test_other_operational_error_is_storage_error(self, db_session):
        with pytest.raises(StorageError) as exc:
            with account_setup_guard(db_session, "test"):
                raise self._operational("disk I/O error")
        assert not isinstance(exc.value, SchemaMismatchError)
