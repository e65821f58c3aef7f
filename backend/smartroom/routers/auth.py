"""
认证路由：登录、注销、当前用户、首个管理员初始化
"""
from typing import Optional
from fastapi import APIRouter, Depends, Header, Request, Response, status
from sqlalchemy.orm import Session

from smartroom.config import settings
from smartroom.database import get_db
from smartroom.models.schemas import LoginRequest, BootstrapAdminRequest
from smartroom.security.auth import (
    get_optional_caller, require_any_role, set_session_cookie, clear_session_cookie
)
from smartroom.security.context import CallerContext
from smartroom.services.account_service import AccountService
from smartroom.services.auth_service import AuthService
from smartroom.services.directory_service import DirectoryService

router = APIRouter(tags=["认证"])


def _client_info(request: Request):
    ip = request.client.host if request.client else None
    return ip, request.headers.get("user-agent")


@router.post("/login")
def login(data: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    """用户登录（用户名 / 房间号 / 邮箱）"""
    ip, user_agent = _client_info(request)
    service = AuthService(db)
    user, token = service.login(data.email, data.password, data.role, ip_address=ip, user_agent=user_agent)
    set_session_cookie(response, token)
    return {"ok": True, "user": service.user_payload(user)}


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_any_role)
):
    """注销当前会话"""
    AuthService(db).destroy_session(request.cookies.get(settings.SESSION_COOKIE_NAME))
    clear_session_cookie(response)
    return {"ok": True}


@router.get("/me")
def me(db: Session = Depends(get_db), caller: Optional[CallerContext] = Depends(get_optional_caller)):
    """当前登录用户，未登录时 user 为 null"""
    if caller is None:
        return {"ok": True, "user": None}
    user = DirectoryService(db).get_user(caller.user_id)
    return {"ok": True, "user": AuthService.user_payload(user) if user else None}


@router.post("/bootstrap_admin", status_code=status.HTTP_201_CREATED)
def bootstrap_admin(
    data: BootstrapAdminRequest,
    request: Request,
    response: Response,
    x_setup_token: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """使用 X-Setup-Token 创建第一个管理员并直接登录"""
    user = AccountService(db).bootstrap_admin(x_setup_token, data)
    ip, user_agent = _client_info(request)
    service = AuthService(db)
    _, token = service.create_session(user, ip_address=ip, user_agent=user_agent)
    set_session_cookie(response, token)
    return {"ok": True, "user": service.user_payload(user)}
