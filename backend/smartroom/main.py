"""
Smart Room 后端主应用入口
服务请求台账、房间留言板与基于角色的访问控制
"""
import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from smartroom.config import settings
from smartroom.database import init_db, get_db, storage_guard
from smartroom.exceptions import ServiceError
from smartroom.routers import auth, accounts, service_requests, messages, guests, notifications

logger = logging.getLogger(__name__)

# 每个路径允许的方法（预检响应使用）
METHOD_ALLOW_LIST = {
    "/service_requests": "GET, POST, PUT, DELETE, OPTIONS",
    "/messages": "GET, POST, OPTIONS",
    "/login": "POST, OPTIONS",
    "/logout": "POST, OPTIONS",
    "/me": "GET, OPTIONS",
    "/register": "POST, OPTIONS",
    "/self_register": "POST, OPTIONS",
    "/bootstrap_admin": "POST, OPTIONS",
    "/guests": "GET, OPTIONS",
    "/notifications": "GET, DELETE, OPTIONS",
    "/notifications/read_all": "POST, OPTIONS",
    "/health": "GET, OPTIONS",
    "/": "GET, OPTIONS",
}
DEFAULT_ALLOWED_METHODS = "GET, POST, OPTIONS"


def allowed_methods_for(path: str) -> str:
    path = path.rstrip("/") or "/"
    if path in METHOD_ALLOW_LIST:
        return METHOD_ALLOW_LIST[path]
    # /guests/{id}
    parent = path.rsplit("/", 1)[0]
    return METHOD_ALLOW_LIST.get(parent, DEFAULT_ALLOWED_METHODS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logging.basicConfig(level=settings.LOG_LEVEL)

    # 初始化数据库
    init_db()

    # 注册事件处理器
    from smartroom.services.event_handlers import register_event_handlers
    register_event_handlers()

    logger.info(f"{settings.APP_NAME} started")
    yield


# 创建应用
app = FastAPI(
    title=settings.APP_NAME,
    description="酒店智能客房：服务请求与房间消息后端",
    version="1.0.0",
    lifespan=lifespan
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def answer_preflight(request: Request, call_next):
    """任意路径的 OPTIONS 预检直接返回 200 {ok: true}"""
    if request.method != "OPTIONS":
        return await call_next(request)

    origin = request.headers.get("origin")
    headers = {
        "Access-Control-Allow-Methods": allowed_methods_for(request.url.path),
        "Access-Control-Allow-Headers": request.headers.get(
            "access-control-request-headers", "Content-Type, X-Setup-Token"
        ),
        "Access-Control-Max-Age": "600",
    }
    if origin:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
        headers["Vary"] = "Origin"
    else:
        headers["Access-Control-Allow-Origin"] = "*"
    return JSONResponse({"ok": True}, headers=headers)


# ============== 异常处理 ==============

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "参数错误"
    return JSONResponse(status_code=400, content={"ok": False, "error": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


# 注册路由
app.include_router(auth.router)
app.include_router(accounts.router)
app.include_router(service_requests.router)
app.include_router(messages.router)
app.include_router(guests.router)
app.include_router(notifications.router)


@app.get("/")
def root():
    """根路径"""
    return {
        "ok": True,
        "name": settings.APP_NAME,
        "hotel": settings.HOTEL_NAME,
        "version": "1.0.0",
    }


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """健康检查：数据库可达性与当前配置（不含密码）"""
    url = make_url(settings.DATABASE_URL)
    with storage_guard(db, "health check"):
        db.execute(text("SELECT 1"))
    return {
        "ok": True,
        "status": "healthy",
        "database": {
            "backend": url.get_backend_name(),
            "name": url.database,
            "url": url.render_as_string(hide_password=True),
            "reachable": True,
        },
    }
