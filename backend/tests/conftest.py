"""
Pytest 配置和共享 fixtures
"""
import os

# 应用模块导入前指定内存数据库，避免生命周期钩子在工作目录创建文件
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import date
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from smartroom.config import settings
from smartroom.database import Base, get_db
from smartroom.models import ontology  # noqa: F401
from smartroom.models.ontology import (
    User, UserRole, GuestProfile, StaffProfile, AdminProfile, StaffDepartment, AdminAccessLevel
)
from smartroom.security.auth import get_password_hash
from smartroom.security.context import CallerContext
from smartroom.services import event_handlers
from smartroom.services.auth_service import AuthService
from smartroom.main import app


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """创建数据库会话"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db_session, session_factory):
    """创建测试客户端（事件处理器绑定到测试数据库）"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    event_handlers.register_event_handlers(session_factory)
    with TestClient(app) as test_client:
        yield test_client
    event_handlers.unregister_event_handlers()
    app.dependency_overrides.clear()


# ============== 账号 Fixtures ==============

@pytest.fixture
def guest_factory(db_session):
    """创建客人账号与档案，返回 (user, profile)"""
    def _create(room_number="205", full_name=None, email=None, password="GUEST23",
                username=None, check_in_date=None, check_out_date=None, active=True):
        user = User(
            role=UserRole.GUEST,
            full_name=full_name or f"Guest {room_number}",
            username=username,
            email=email or f"guest{room_number}@example.com",
            password_hash=get_password_hash(password),
            active=active,
        )
        db_session.add(user)
        db_session.flush()
        profile = GuestProfile(
            user_id=user.id,
            room_number=room_number,
            check_in_date=check_in_date,
            check_out_date=check_out_date,
        )
        db_session.add(profile)
        db_session.commit()
        db_session.refresh(user)
        db_session.refresh(profile)
        return user, profile
    return _create


@pytest.fixture
def staff_factory(db_session):
    """创建员工账号与档案，返回 (user, profile)"""
    def _create(username="staff1", full_name="Staff One", email=None, password="staffpass",
                department=StaffDepartment.MAINTENANCE, employee_id=None, active=True):
        user = User(
            role=UserRole.STAFF,
            full_name=full_name,
            username=username,
            email=email or f"{username}@hotel.example.com",
            password_hash=get_password_hash(password),
            active=active,
        )
        db_session.add(user)
        db_session.flush()
        profile = StaffProfile(user_id=user.id, employee_id=employee_id, department=department)
        db_session.add(profile)
        db_session.commit()
        db_session.refresh(user)
        db_session.refresh(profile)
        return user, profile
    return _create


@pytest.fixture
def admin_factory(db_session):
    """创建管理员账号与档案，返回 (user, profile)"""
    def _create(username="admin1", full_name="Admin One", email=None, password="adminpass",
                access_level=AdminAccessLevel.ADMIN):
        user = User(
            role=UserRole.ADMIN,
            full_name=full_name,
            username=username,
            email=email or f"{username}@hotel.example.com",
            password_hash=get_password_hash(password),
            active=True,
        )
        db_session.add(user)
        db_session.flush()
        profile = AdminProfile(user_id=user.id, access_level=access_level)
        db_session.add(profile)
        db_session.commit()
        db_session.refresh(user)
        return user, profile
    return _create


@pytest.fixture
def guest_205(guest_factory):
    return guest_factory(room_number="205", full_name="Ada Guest", check_in_date=date.today())


@pytest.fixture
def staff_member(staff_factory):
    return staff_factory()


@pytest.fixture
def admin_user(admin_factory):
    return admin_factory()


# ============== 调用者与会话 Fixtures ==============

def caller_for(user) -> CallerContext:
    return CallerContext.from_user(user)


@pytest.fixture
def guest_caller(guest_205):
    return caller_for(guest_205[0])


@pytest.fixture
def staff_caller(staff_member):
    return caller_for(staff_member[0])


@pytest.fixture
def admin_caller(admin_user):
    return caller_for(admin_user[0])


@pytest.fixture
def cookie_headers(db_session):
    """为指定用户创建服务端会话，返回带会话 Cookie 的请求头"""
    def _headers(user):
        _, token = AuthService(db_session).create_session(user)
        return {"Cookie": f"{settings.SESSION_COOKIE_NAME}={token}"}
    return _headers


@pytest.fixture
def guest_headers(cookie_headers, guest_205):
    return cookie_headers(guest_205[0])


@pytest.fixture
def staff_headers(cookie_headers, staff_member):
    return cookie_headers(staff_member[0])


@pytest.fixture
def admin_headers(cookie_headers, admin_user):
    return cookie_headers(admin_user[0])
