"""
认证与授权模块
密码使用 bcrypt 加盐哈希；会话保存在服务端，Cookie 只携带 jose 签名的会话引用
"""
import bcrypt
import logging
from datetime import datetime, timedelta, UTC
from typing import Iterable, Optional
from fastapi import Depends, Request, Response
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from smartroom.config import settings
from smartroom.database import get_db
from smartroom.exceptions import AuthenticationError, AuthorizationError
from smartroom.models.ontology import UserRole
from smartroom.security.context import CallerContext

logger = logging.getLogger(__name__)


def get_password_hash(password: str) -> str:
    """密码哈希"""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """验证密码"""
    if not plain_password or not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        # 非 bcrypt 格式的哈希
        return False


def create_session_token(session_id: str, user_id: int, expires_at: datetime) -> str:
    """签发会话引用（Cookie 值）"""
    to_encode = {
        "sid": session_id,
        "sub": str(user_id),
        "exp": expires_at.replace(tzinfo=UTC) if expires_at.tzinfo is None else expires_at,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_session_token(token: str) -> Optional[dict]:
    """解码会话引用，签名无效或过期返回 None"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def session_expiry(now: Optional[datetime] = None) -> datetime:
    """新会话的过期时间（naive UTC，与数据库列一致）"""
    now = now or datetime.now(UTC).replace(tzinfo=None)
    return now + timedelta(hours=settings.SESSION_EXPIRE_HOURS)


def set_session_cookie(response: Response, token: str) -> None:
    """写入 httpOnly + SameSite=Lax 的会话 Cookie"""
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_EXPIRE_HOURS * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.SESSION_COOKIE_SECURE,
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.SESSION_COOKIE_SECURE,
    )


def require_role(caller: Optional[CallerContext], allowed_roles: Iterable[UserRole]) -> CallerContext:
    """
    角色校验

    无有效会话 → AuthenticationError；角色不在允许集合内 → AuthorizationError
    """
    if caller is None:
        raise AuthenticationError("未登录或会话已失效")
    if caller.role not in tuple(allowed_roles):
        raise AuthorizationError("权限不足")
    return caller


# ============== FastAPI 依赖 ==============

def get_optional_caller(request: Request, db: Session = Depends(get_db)) -> Optional[CallerContext]:
    """根据会话 Cookie 解析调用者，没有有效会话时返回 None"""
    from smartroom.services.auth_service import AuthService

    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        return None
    return AuthService(db).resolve_session(token)


def require_roles(*allowed_roles: UserRole):
    """角色权限依赖工厂"""
    def role_checker(caller: Optional[CallerContext] = Depends(get_optional_caller)) -> CallerContext:
        return require_role(caller, allowed_roles)
    return role_checker


# 便捷的角色检查器
require_staff = require_roles(UserRole.STAFF, UserRole.ADMIN)
require_any_role = require_roles(UserRole.GUEST, UserRole.STAFF, UserRole.ADMIN)
