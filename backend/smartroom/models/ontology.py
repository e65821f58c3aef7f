"""
本体对象定义
用户身份、角色档案、服务请求、房间消息、会话与通知
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Time,
    ForeignKey, Text, Enum as SQLEnum, Boolean
)
from sqlalchemy.orm import relationship
from smartroom.database import Base


# ============== 枚举定义 ==============

class UserRole(str, Enum):
    """用户角色"""
    GUEST = "guest"    # 客人
    STAFF = "staff"    # 员工
    ADMIN = "admin"    # 管理员


class StaffDepartment(str, Enum):
    """员工部门"""
    FRONT_DESK = "front_desk"
    HOUSEKEEPING = "housekeeping"
    MAINTENANCE = "maintenance"
    ROOM_SERVICE = "room_service"
    SECURITY = "security"
    CONCIERGE = "concierge"
    MANAGEMENT = "management"


class AdminAccessLevel(str, Enum):
    """管理员级别"""
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"


class RequestType(str, Enum):
    """服务请求类型"""
    HOUSEKEEPING = "housekeeping"    # 客房清洁
    ROOM_SERVICE = "room_service"    # 送餐服务
    MAINTENANCE = "maintenance"      # 维修
    LAUNDRY = "laundry"              # 洗衣
    AMENITIES = "amenities"          # 客用品
    OTHER = "other"                  # 其他


class RequestPriority(str, Enum):
    """服务请求优先级"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RequestStatus(str, Enum):
    """服务请求状态"""
    PENDING = "pending"          # 待处理
    ASSIGNED = "assigned"        # 已分配
    IN_PROGRESS = "in_progress"  # 处理中
    COMPLETED = "completed"      # 已完成（终态）
    CANCELLED = "cancelled"      # 已取消（终态）


class NotificationKind(str, Enum):
    """通知类型"""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"


# ============== 身份与档案 ==============

class User(Base):
    """
    用户对象 - 所有角色共用的身份记录
    email 不唯一：同一邮箱可能对应多个账号，登录时需要消歧
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    role = Column(SQLEnum(UserRole), nullable=False, index=True)
    full_name = Column(String(120), nullable=False)
    username = Column(String(80), unique=True, nullable=True)      # 登录账号
    email = Column(String(190), nullable=False, index=True)
    phone_number = Column(String(30))
    password_hash = Column(String(255), nullable=False)            # 密码哈希
    active = Column(Boolean, default=True, nullable=False)         # 是否启用
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接
    guest_profile = relationship("GuestProfile", back_populates="user", uselist=False)
    staff_profile = relationship("StaffProfile", back_populates="user", uselist=False)
    admin_profile = relationship("AdminProfile", back_populates="user", uselist=False)


class GuestProfile(Base):
    """客人档案：客人 → 一个房间"""
    __tablename__ = "guests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    room_number = Column(String(20), index=True)
    key_card_id = Column(String(64), index=True)
    check_in_date = Column(Date)
    check_out_date = Column(Date)
    guest_code = Column(String(10))                      # 房间访问码（仅发邮件时使用）
    vip_status = Column(Boolean, default=False)
    special_requests = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="guest_profile")
    service_requests = relationship("ServiceRequest", back_populates="guest")


class StaffProfile(Base):
    """员工档案"""
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    employee_id = Column(String(20), unique=True, nullable=True)
    department = Column(SQLEnum(StaffDepartment), default=StaffDepartment.FRONT_DESK, nullable=False)
    shift = Column(String(20))                           # morning | afternoon | night
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="staff_profile")
    assigned_requests = relationship("ServiceRequest", back_populates="assignee")


class AdminProfile(Base):
    """管理员档案"""
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    access_level = Column(SQLEnum(AdminAccessLevel), default=AdminAccessLevel.ADMIN, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="admin_profile")


# ============== 核心聚合 ==============

class ServiceRequest(Base):
    """
    服务请求对象
    room_number 与 guest_id 创建后不可变；completed_at 当且仅当 status=completed 时非空
    """
    __tablename__ = "service_requests"

    id = Column(Integer, primary_key=True, index=True)
    guest_id = Column(Integer, ForeignKey("guests.id"), nullable=False, index=True)
    room_number = Column(String(20), nullable=False, index=True)
    request_type = Column(SQLEnum(RequestType), nullable=False)
    priority = Column(SQLEnum(RequestPriority), default=RequestPriority.MEDIUM, nullable=False)
    status = Column(SQLEnum(RequestStatus), default=RequestStatus.PENDING, nullable=False, index=True)
    description = Column(Text)
    assigned_to = Column(Integer, ForeignKey("staff.id"), nullable=True, index=True)
    preferred_time = Column(Time)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接
    guest = relationship("GuestProfile", back_populates="service_requests")
    assignee = relationship("StaffProfile", back_populates="assigned_requests")


class Message(Base):
    """
    房间消息对象
    is_from_guest 在写入时根据发送者角色确定，之后不再重新计算
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    room_number = Column(String(20), nullable=False, index=True)
    body = Column("message", Text, nullable=False)
    is_from_guest = Column(Boolean, default=True, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    sender = relationship("User")


# ============== 会话与通知 ==============

class UserSession(Base):
    """服务端会话，Cookie 中只保存其签名引用"""
    __tablename__ = "user_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)
    last_seen_at = Column(DateTime, default=datetime.utcnow)
    revoked_at = Column(DateTime)
    ip_address = Column(String(50))
    user_agent = Column(String(255))

    user = relationship("User")


class Notification(Base):
    """站内通知（按接收人存储）"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(SQLEnum(NotificationKind), default=NotificationKind.INFO, nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False)
    room_number = Column(String(20))
    related_entity_type = Column(String(50))             # ServiceRequest | Message
    related_entity_id = Column(Integer)
    is_read = Column(Boolean, default=False, index=True)
    dismissed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
