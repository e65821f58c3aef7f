"""
认证服务 - 登录标识解析、密码校验与服务端会话
"""
import secrets
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from smartroom.database import storage_guard, update_if
from smartroom.exceptions import AuthenticationError, ConflictError, ValidationError
from smartroom.models.ontology import User, UserRole, GuestProfile, UserSession
from smartroom.security.auth import (
    verify_password, create_session_token, decode_session_token, session_expiry
)
from smartroom.security.context import CallerContext

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "账号或密码错误"


class AuthService:
    """认证服务"""

    def __init__(self, db: Session):
        self.db = db

    def _active_users(self):
        return self.db.query(User).options(joinedload(User.guest_profile)).filter(User.active == True)

    def _find_user(self, identifier: str) -> Optional[User]:
        """
        依次按 用户名 → 房间号 → 邮箱 查找启用的账号

        房间号或邮箱对应多个账号时拒绝猜测，抛出 ConflictError
        """
        user = self._active_users().filter(User.username == identifier).first()
        if user:
            return user

        by_room = (
            self._active_users()
            .join(GuestProfile, GuestProfile.user_id == User.id)
            .filter(GuestProfile.room_number == identifier, User.role == UserRole.GUEST)
            .limit(2)
            .all()
        )
        if len(by_room) > 1:
            raise ConflictError("该房间号对应多个账号，请使用用户名登录")
        if by_room:
            return by_room[0]

        by_email = (
            self._active_users()
            .filter(func.lower(User.email) == identifier.lower())
            .limit(2)
            .all()
        )
        if len(by_email) > 1:
            raise ConflictError("该邮箱对应多个账号，请使用用户名登录")
        return by_email[0] if by_email else None

    def authenticate(self, identifier: str, password: str, role: Optional[str] = None) -> User:
        """
        校验登录凭证

        Args:
            identifier: 用户名、房间号或邮箱
            password: 密码（客人为房间访问码）
            role: 可选，要求登录的角色
        """
        identifier = (identifier or "").strip()
        if not identifier or not password:
            raise ValidationError("需要提供登录账号和密码")

        requested_role = None
        if role:
            try:
                requested_role = UserRole(role.strip().lower())
            except ValueError:
                raise ValidationError(f"无效的角色: {role}")

        with storage_guard(self.db, "authenticate"):
            user = self._find_user(identifier)

        if user is None or not verify_password(password, user.password_hash):
            logger.info(f"Failed login attempt for identifier {identifier!r}")
            raise AuthenticationError(INVALID_CREDENTIALS)
        if requested_role is not None and user.role != requested_role:
            logger.info(f"Login role mismatch for user {user.id}: requested {requested_role.value}")
            raise AuthenticationError(INVALID_CREDENTIALS)
        return user

    def create_session(self, user: User, ip_address: Optional[str] = None,
                       user_agent: Optional[str] = None) -> Tuple[UserSession, str]:
        """创建服务端会话，返回 (会话, Cookie 值)"""
        with storage_guard(self.db, "create session"):
            session = UserSession(
                id=secrets.token_urlsafe(32),
                user_id=user.id,
                expires_at=session_expiry(),
                ip_address=ip_address,
                user_agent=(user_agent or "")[:255] or None,
            )
            self.db.add(session)
            self.db.commit()
            self.db.refresh(session)

        logger.info(f"Session created for user {user.id} ({user.role.value})")
        return session, create_session_token(session.id, user.id, session.expires_at)

    def login(self, identifier: str, password: str, role: Optional[str] = None,
              ip_address: Optional[str] = None,
              user_agent: Optional[str] = None) -> Tuple[User, str]:
        user = self.authenticate(identifier, password, role)
        _, token = self.create_session(user, ip_address, user_agent)
        return user, token

    def resolve_session(self, token: str) -> Optional[CallerContext]:
        """根据 Cookie 值解析调用者；签名无效、已过期、已注销或账号停用时返回 None"""
        payload = decode_session_token(token)
        if not payload or not payload.get("sid"):
            return None

        with storage_guard(self.db, "resolve session"):
            session = (
                self.db.query(UserSession)
                .options(joinedload(UserSession.user))
                .filter(UserSession.id == payload["sid"])
                .first()
            )
            if session is None or session.revoked_at is not None:
                return None
            if session.expires_at <= datetime.utcnow():
                return None
            user = session.user
            if user is None or not user.active or str(user.id) != str(payload.get("sub")):
                return None
            return CallerContext.from_user(user, session_id=session.id)

    def destroy_session(self, token: Optional[str]) -> bool:
        """注销会话（撤销服务端记录）"""
        payload = decode_session_token(token) if token else None
        if not payload or not payload.get("sid"):
            return False
        with storage_guard(self.db, "destroy session"):
            revoked = update_if(self.db, UserSession, [
                UserSession.id == payload["sid"],
                UserSession.revoked_at.is_(None),
            ], {"revoked_at": datetime.utcnow()})
            self.db.commit()
        if revoked:
            logger.info(f"Session revoked for user {payload.get('sub')}")
        return revoked > 0

    @staticmethod
    def user_payload(user: User) -> Dict[str, Any]:
        """返回给前端的用户信息"""
        profile = user.guest_profile
        return {
            "id": user.id,
            "role": user.role.value,
            "full_name": user.full_name,
            "username": user.username,
            "email": user.email,
            "room_number": profile.room_number if profile else None,
        }
