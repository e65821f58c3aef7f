"""
调用者上下文 - 每次服务调用显式传入，不依赖全局会话状态
"""
from dataclasses import dataclass
from typing import Optional

from smartroom.models.ontology import UserRole


@dataclass(frozen=True)
class CallerContext:
    """
    已认证的调用者

    Attributes:
        user_id: 用户ID
        role: 角色（guest / staff / admin）
        full_name: 显示名称
        email: 邮箱
        username: 用户名
        session_id: 服务端会话ID（测试或内部调用时可为空）
    """

    user_id: int
    role: UserRole
    full_name: str = ""
    email: Optional[str] = None
    username: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def from_user(cls, user, session_id: Optional[str] = None) -> "CallerContext":
        role = user.role if isinstance(user.role, UserRole) else UserRole(user.role)
        return cls(
            user_id=user.id,
            role=role,
            full_name=user.full_name,
            email=user.email,
            username=user.username,
            session_id=session_id,
        )

    @property
    def is_guest(self) -> bool:
        return self.role == UserRole.GUEST

    def __repr__(self) -> str:
        return f"CallerContext(user_id={self.user_id}, role={self.role.value!r})"
