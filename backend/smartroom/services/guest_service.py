"""
客人档案查询服务（员工/管理员）
"""
from datetime import date
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, contains_eager

from smartroom.database import storage_guard
from smartroom.exceptions import NotFoundError, ValidationError
from smartroom.models.ontology import GuestProfile, User
from smartroom.security.auth import require_role
from smartroom.security.context import CallerContext
from smartroom.security.permissions import GUEST_DIRECTORY_READ

logger = logging.getLogger(__name__)

LIST_LIMIT = 100
STAY_STATUSES = ("active", "checkout_today", "upcoming", "checked_out")


def stay_status(profile: GuestProfile, today: date) -> str:
    """按日期推导入住状态：checked_out > checkout_today > upcoming > active"""
    if profile.check_out_date and profile.check_out_date < today:
        return "checked_out"
    if profile.check_out_date and profile.check_out_date == today:
        return "checkout_today"
    if profile.check_in_date and profile.check_in_date > today:
        return "upcoming"
    return "active"


def _status_filter(status: str, today: date):
    out, check_in = GuestProfile.check_out_date, GuestProfile.check_in_date
    not_departed = or_(out.is_(None), out > today)
    if status == "checked_out":
        return out < today
    if status == "checkout_today":
        return out == today
    if status == "upcoming":
        return and_(check_in > today, not_departed)
    return and_(not_departed, or_(check_in.is_(None), check_in <= today))


class GuestService:
    """客人档案服务"""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return (
            self.db.query(GuestProfile)
            .join(User, GuestProfile.user_id == User.id)
            .options(contains_eager(GuestProfile.user))
        )

    def list_guests(self, caller: CallerContext, status: Optional[str] = None,
                    search: Optional[str] = None, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """在住客人列表，按入住日期倒序，最多 100 条"""
        require_role(caller, GUEST_DIRECTORY_READ)
        status = (status or "").strip().lower() or None
        if status and status not in STAY_STATUSES:
            raise ValidationError(f"无效的 status: {status}（可选值: {', '.join(STAY_STATUSES)}）")
        today = today or date.today()

        with storage_guard(self.db, "list guests"):
            query = self._query().filter(User.active == True)
            if status:
                query = query.filter(_status_filter(status, today))
            search = (search or "").strip()
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(
                    User.full_name.ilike(pattern),
                    User.email.ilike(pattern),
                    GuestProfile.room_number.ilike(pattern),
                ))
            guests = (
                query.order_by(GuestProfile.check_in_date.desc(), GuestProfile.id.desc())
                .limit(LIST_LIMIT)
                .all()
            )
            return [self.to_dict(g, today) for g in guests]

    def get_guest(self, caller: CallerContext, guest_id: int) -> Dict[str, Any]:
        require_role(caller, GUEST_DIRECTORY_READ)
        with storage_guard(self.db, "get guest"):
            guest = self._query().filter(GuestProfile.id == guest_id).first()
            if guest is None:
                raise NotFoundError(f"客人 {guest_id} 不存在")
            return self.to_dict(guest, date.today())

    @staticmethod
    def to_dict(guest: GuestProfile, today: date) -> Dict[str, Any]:
        user = guest.user
        return {
            "id": guest.id,
            "user_id": guest.user_id,
            "full_name": user.full_name,
            "email": user.email,
            "phone_number": user.phone_number,
            "room_number": guest.room_number,
            "key_card_id": guest.key_card_id,
            "check_in_date": guest.check_in_date.isoformat() if guest.check_in_date else None,
            "check_out_date": guest.check_out_date.isoformat() if guest.check_out_date else None,
            "vip_status": bool(guest.vip_status),
            "special_requests": guest.special_requests,
            "status": stay_status(guest, today),
            "created_at": user.created_at.isoformat() if user.created_at else None,
        }
