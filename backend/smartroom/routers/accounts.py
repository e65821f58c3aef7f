"""
账号路由：员工建档与自助注册
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from smartroom.database import get_db
from smartroom.models.schemas import AccountCreate, SelfRegisterRequest
from smartroom.security.auth import require_staff
from smartroom.security.context import CallerContext
from smartroom.services.account_service import AccountService
from smartroom.services.auth_service import AuthService

router = APIRouter(tags=["账号管理"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register_account(
    data: AccountCreate,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_staff)
):
    """创建客人/员工/管理员账号"""
    result = AccountService(db).register(caller, data)
    return {"ok": True, **result.to_dict()}


@router.post("/self_register", status_code=status.HTTP_201_CREATED)
def self_register(data: SelfRegisterRequest, db: Session = Depends(get_db)):
    """员工/管理员自助注册"""
    user = AccountService(db).self_register(data)
    return {"ok": True, "user": AuthService.user_payload(user)}
