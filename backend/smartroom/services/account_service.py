"""
账号服务 - 员工/管理员建档、客人入住登记、自助注册与首个管理员初始化
"""
import hmac
import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from smartroom.config import settings
from smartroom.exceptions import (
    AuthorizationError, ConflictError, SchemaMismatchError, ServiceError, StorageError, ValidationError
)
from smartroom.models.ontology import (
    User, UserRole, GuestProfile, StaffProfile, AdminProfile, StaffDepartment, AdminAccessLevel
)
from smartroom.models.schemas import AccountCreate, SelfRegisterRequest, BootstrapAdminRequest
from smartroom.notification.email_channel import (
    EmailChannel, EmailNotConfigured, WELCOME_SUBJECT, render_welcome_email
)
from smartroom.security.auth import get_password_hash, require_role
from smartroom.security.context import CallerContext
from smartroom.security.permissions import ACCOUNT_REGISTER, ACCOUNT_CREATE_ADMIN

logger = logging.getLogger(__name__)

# 客房库存：1-4 层，每层 01-40 号
ROOM_FLOORS = range(1, 5)
ROOMS_PER_FLOOR = 40

ACCESS_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ACCESS_CODE_LENGTH = 7

TABLES_MISSING_HINT = "数据库表不存在，请先执行 init_db 创建数据表，并确认 DATABASE_URL 指向正确的数据库"
SCHEMA_OUTDATED_HINT = "数据库结构已过期（缺少字段），请按当前版本重新执行 init_db 或迁移数据库"
EMAIL_FAILED_WARNING = "客人已创建，但欢迎邮件发送失败。请配置 SMTP 后手动告知访问码"


def generate_access_code() -> str:
    """7 位房间访问码（去掉易混淆字符）"""
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(ACCESS_CODE_LENGTH))


def schema_mismatch_hint(error: Exception) -> Optional[str]:
    """识别常见的表结构问题，返回可执行的提示"""
    message = str(getattr(error, "orig", error)).lower()
    if "no such table" in message or "doesn't exist" in message:
        return TABLES_MISSING_HINT
    if "no such column" in message or "unknown column" in message or "has no column" in message:
        return SCHEMA_OUTDATED_HINT
    return None


def _duplicate_message(error: IntegrityError) -> str:
    message = str(error.orig).lower()
    if "username" in message:
        return "用户名已存在"
    if "employee_id" in message:
        return "员工编号已存在"
    return "账号信息与已有记录冲突"


@contextmanager
def account_setup_guard(db: Session, operation: str):
    """账号初始化路径的存储边界：唯一键冲突 → ConflictError，表结构问题 → SchemaMismatchError"""
    try:
        yield
    except ServiceError:
        raise
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Integrity error during {operation}: {e.orig}")
        raise ConflictError(_duplicate_message(e)) from e
    except OperationalError as e:
        db.rollback()
        hint = schema_mismatch_hint(e)
        if hint is None:
            logger.exception(f"Storage failure during {operation}: {e}")
            raise StorageError() from e
        logger.error(f"Schema mismatch during {operation}: {e.orig}")
        raise SchemaMismatchError(hint) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"Storage failure during {operation}: {e}")
        raise StorageError() from e


def _parse_choice(enum_cls, value, default, field_name: str):
    if not value:
        return default
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"无效的 {field_name}: {value}（可选值: {allowed}）")


def _required(**fields) -> Dict[str, str]:
    values = {name: (value or "").strip() for name, value in fields.items()}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ValidationError(f"缺少必填字段: {', '.join(missing)}")
    return values


@dataclass
class RegistrationResult:
    """建档结果；客人欢迎邮件失败时带回访问码与警告"""
    user: User
    guest_code: Optional[str] = None
    warning: Optional[str] = None
    warning_detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        from smartroom.services.auth_service import AuthService
        result = {"user": AuthService.user_payload(self.user)}
        if self.warning:
            result["guest_code"] = self.guest_code
            result["warning"] = self.warning
            result["warning_detail"] = self.warning_detail
        return result


class AccountService:
    """账号服务"""

    def __init__(self, db: Session, email_channel: EmailChannel = None):
        self.db = db
        self.email_channel = email_channel or EmailChannel.from_settings()

    def admin_count(self) -> int:
        return self.db.query(User).filter(User.role == UserRole.ADMIN).count()

    def _check_admin_quota(self) -> None:
        if self.admin_count() >= settings.ADMIN_LIMIT:
            raise ConflictError(f"管理员账号数量已达上限（最多 {settings.ADMIN_LIMIT} 个）")

    def next_vacant_room(self) -> str:
        """按 101-140, 201-240, 301-340, 401-440 顺序取第一个没有客人登记的房间"""
        occupied = {
            (room or "").strip()
            for (room,) in self.db.query(GuestProfile.room_number)
            .filter(GuestProfile.room_number.isnot(None))
            .all()
        }
        for floor in ROOM_FLOORS:
            for number in range(1, ROOMS_PER_FLOOR + 1):
                candidate = str(floor * 100 + number)
                if candidate not in occupied:
                    return candidate
        raise ConflictError("没有空闲房间")

    def _create_user(self, role: UserRole, full_name: str, email: str, password: str,
                     username: Optional[str] = None, phone_number: Optional[str] = None,
                     created_by: Optional[int] = None) -> User:
        user = User(
            role=role,
            full_name=full_name,
            username=username or None,
            email=email,
            phone_number=phone_number,
            password_hash=get_password_hash(password),
            active=True,
            created_by=created_by,
        )
        self.db.add(user)
        self.db.flush()
        return user

    # ---------- 员工/管理员建档 ----------

    def register(self, actor: CallerContext, data: AccountCreate) -> RegistrationResult:
        """
        员工或管理员创建账号

        - 只有管理员能创建管理员，且总数不超过 ADMIN_LIMIT
        - 客人：未指定房间时自动分配；生成访问码作为密码并发送欢迎邮件
        - 员工/管理员：必须提供密码
        """
        require_role(actor, ACCOUNT_REGISTER)
        role = _parse_choice(UserRole, data.role, None, "role")
        if role is None:
            raise ValidationError("缺少 role")
        fields = _required(full_name=data.full_name, email=data.email)
        if role == UserRole.ADMIN:
            require_role(actor, ACCOUNT_CREATE_ADMIN)

        department = _parse_choice(StaffDepartment, data.department, StaffDepartment.FRONT_DESK, "department")
        access_level = _parse_choice(AdminAccessLevel, data.access_level, AdminAccessLevel.ADMIN, "access_level")

        guest_code = None
        if role == UserRole.GUEST:
            guest_code = generate_access_code()
            password = guest_code
        else:
            if not data.password:
                raise ValidationError("员工/管理员账号需要设置密码")
            password = data.password

        with account_setup_guard(self.db, "register account"):
            if role == UserRole.ADMIN:
                self._check_admin_quota()

            user = self._create_user(
                role, fields["full_name"], fields["email"], password,
                username=data.username, phone_number=data.phone_number,
                created_by=actor.user_id,
            )
            if role == UserRole.GUEST:
                room_number = data.room_number or self.next_vacant_room()
                self.db.add(GuestProfile(
                    user_id=user.id,
                    room_number=room_number,
                    key_card_id=data.key_card_id,
                    check_in_date=data.check_in_date,
                    check_out_date=data.check_out_date,
                    guest_code=guest_code,
                ))
            elif role == UserRole.STAFF:
                self.db.add(StaffProfile(user_id=user.id, employee_id=data.employee_id, department=department))
            else:
                self.db.add(AdminProfile(user_id=user.id, access_level=access_level))
            self.db.commit()
            self.db.refresh(user)

        logger.info(f"{actor.role.value} {actor.user_id} created {role.value} account {user.id}")
        result = RegistrationResult(user=user)
        if role == UserRole.GUEST:
            self._send_welcome_email(user, guest_code, result)
        return result

    def _send_welcome_email(self, user: User, guest_code: str, result: RegistrationResult) -> None:
        """邮件失败不影响建档，结果中带回访问码与警告"""
        room_number = user.guest_profile.room_number
        try:
            sent = self.email_channel.send(
                user.email,
                WELCOME_SUBJECT.format(hotel=settings.HOTEL_NAME),
                render_welcome_email(user.full_name, room_number, guest_code, user.email),
                {"content_type": "html", "recipient_name": user.full_name},
            )
            detail = None if sent else "SMTP delivery failed"
        except EmailNotConfigured as e:
            sent = False
            detail = str(e)

        if not sent:
            logger.warning(f"Welcome email to guest {user.id} failed: {detail}")
            result.guest_code = guest_code
            result.warning = EMAIL_FAILED_WARNING
            result.warning_detail = detail

    # ---------- 自助注册 ----------

    def self_register(self, data: SelfRegisterRequest) -> User:
        """公开的员工/管理员自助注册"""
        if not settings.ALLOW_SELF_REGISTER:
            raise AuthorizationError("自助注册已关闭")
        role = _parse_choice(UserRole, data.role, None, "role")
        if role not in (UserRole.STAFF, UserRole.ADMIN):
            raise ValidationError("自助注册仅支持 staff 或 admin")
        fields = _required(full_name=data.full_name, username=data.username, email=data.email)
        if not data.password:
            raise ValidationError("缺少必填字段: password")

        with account_setup_guard(self.db, "self register"):
            if role == UserRole.ADMIN:
                self._check_admin_quota()
            user = self._create_user(role, fields["full_name"], fields["email"], data.password,
                                     username=fields["username"])
            if role == UserRole.ADMIN:
                self.db.add(AdminProfile(user_id=user.id, access_level=AdminAccessLevel.ADMIN))
            else:
                self.db.add(StaffProfile(user_id=user.id, department=StaffDepartment.FRONT_DESK))
            self.db.commit()
            self.db.refresh(user)

        logger.info(f"Self-registered {role.value} account {user.id}")
        return user

    # ---------- 首个管理员 ----------

    def bootstrap_admin(self, setup_token: Optional[str], data: BootstrapAdminRequest) -> User:
        """使用 SETUP_TOKEN 创建第一个超级管理员"""
        expected = settings.SETUP_TOKEN or ""
        provided = setup_token or ""
        if not expected or not hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8")):
            raise AuthorizationError("初始化令牌无效")
        fields = _required(full_name=data.full_name, email=data.email)
        if not data.password:
            raise ValidationError("缺少必填字段: password")

        with account_setup_guard(self.db, "bootstrap admin"):
            if self.admin_count() > 0:
                raise ConflictError("管理员已存在")
            user = self._create_user(UserRole.ADMIN, fields["full_name"], fields["email"], data.password,
                                     username=(data.username or "").strip() or None)
            self.db.add(AdminProfile(user_id=user.id, access_level=AdminAccessLevel.SUPER_ADMIN))
            self.db.commit()
            self.db.refresh(user)

        logger.info(f"Bootstrap admin {user.id} created")
        return user
