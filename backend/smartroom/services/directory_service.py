"""
目录服务 - 读取时把调用者解析为角色档案（客人 → 房间，员工 → 部门）
并提供按角色区分的"操作房间"解析策略
"""
from typing import Optional
import logging
from sqlalchemy.orm import Session

from smartroom.exceptions import NotFoundError, ValidationError
from smartroom.models.ontology import User, UserRole, GuestProfile, StaffProfile
from smartroom.security.context import CallerContext

logger = logging.getLogger(__name__)


class DirectoryService:
    """身份与档案查询，结果不缓存，每次都读存储"""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def guest_profile_for_user(self, user_id: int) -> Optional[GuestProfile]:
        return self.db.query(GuestProfile).filter(GuestProfile.user_id == user_id).first()

    def guest_for_room(self, room_number: str) -> Optional[GuestProfile]:
        """房间当前登记的客人（同一房间有多条档案时取最新的一条）"""
        return (
            self.db.query(GuestProfile)
            .join(User, GuestProfile.user_id == User.id)
            .filter(GuestProfile.room_number == room_number, User.active == True)
            .order_by(GuestProfile.id.desc())
            .first()
        )

    def staff_profile(self, staff_id: int) -> Optional[StaffProfile]:
        return self.db.query(StaffProfile).filter(StaffProfile.id == staff_id).first()

    def staff_profile_for_user(self, user_id: int) -> Optional[StaffProfile]:
        return self.db.query(StaffProfile).filter(StaffProfile.user_id == user_id).first()

    def active_staff_user_ids(self) -> list:
        """所有在职员工与管理员的用户ID"""
        rows = (
            self.db.query(User.id)
            .filter(User.role.in_([UserRole.STAFF, UserRole.ADMIN]), User.active == True)
            .order_by(User.id)
            .all()
        )
        return [row[0] for row in rows]


class RoomStrategy:
    """按角色解析"调用者在哪个房间上操作"的策略"""

    def __init__(self, directory: DirectoryService):
        self.directory = directory

    def acting_room(self, caller: CallerContext, requested_room: Optional[str]) -> Optional[str]:
        """读操作使用的房间，无法解析时返回 None"""
        raise NotImplementedError

    def require_room(self, caller: CallerContext, requested_room: Optional[str]) -> str:
        """写操作使用的房间，无法解析时抛出 ValidationError"""
        raise NotImplementedError

    def request_target(self, caller: CallerContext, requested_room: Optional[str]) -> GuestProfile:
        """新建服务请求的归属客人"""
        raise NotImplementedError


class GuestRoomStrategy(RoomStrategy):
    """客人：只能使用自己档案中的房间，忽略传入的房间号"""

    def acting_room(self, caller, requested_room=None):
        profile = self.directory.guest_profile_for_user(caller.user_id)
        if profile is None or not profile.room_number:
            return None
        return profile.room_number

    def require_room(self, caller, requested_room=None):
        room = self.acting_room(caller)
        if not room:
            raise ValidationError("当前客人账号未分配房间")
        return room

    def request_target(self, caller, requested_room=None):
        profile = self.directory.guest_profile_for_user(caller.user_id)
        if profile is None or not profile.room_number:
            raise ValidationError("当前客人账号缺少客人档案或房间信息")
        return profile


class StaffRoomStrategy(RoomStrategy):
    """员工/管理员：必须显式指定目标房间"""

    def acting_room(self, caller, requested_room=None):
        return requested_room or None

    def require_room(self, caller, requested_room=None):
        if not requested_room:
            raise ValidationError("缺少 room_number")
        return requested_room

    def request_target(self, caller, requested_room=None):
        room = self.require_room(caller, requested_room)
        guest = self.directory.guest_for_room(room)
        if guest is None:
            raise NotFoundError(f"房间 {room} 没有登记的客人")
        return guest


def strategy_for(caller: CallerContext, directory: DirectoryService) -> RoomStrategy:
    """根据调用者角色选择房间解析策略"""
    if caller.is_guest:
        return GuestRoomStrategy(directory)
    return StaffRoomStrategy(directory)
