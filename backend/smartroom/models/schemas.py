"""
Pydantic 模式定义
用于 API 请求体解析；枚举值与必填项由服务层校验，以便统一返回 ValidationError
"""
from datetime import date
from typing import Optional, Union
from pydantic import BaseModel, Field, field_validator


def _to_optional_str(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


# ============== 认证 Schemas ==============

class LoginRequest(BaseModel):
    # 登录标识：用户名、房间号或邮箱
    email: str = ""
    password: str = ""
    role: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _strip_identifier(cls, v):
        return "" if v is None else str(v).strip()


class BootstrapAdminRequest(BaseModel):
    full_name: str = ""
    email: str = ""
    password: str = ""
    username: Optional[str] = None


# ============== 账号 Schemas ==============

class AccountCreate(BaseModel):
    role: str = ""
    full_name: str = ""
    username: Optional[str] = None
    email: str = ""
    phone_number: Optional[str] = None
    password: Optional[str] = None

    # 客人字段
    room_number: Optional[str] = None
    key_card_id: Optional[str] = None
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None

    # 员工字段
    department: Optional[str] = None
    employee_id: Optional[str] = None

    # 管理员字段
    access_level: Optional[str] = None

    @field_validator("room_number", "username", "phone_number", "key_card_id", "check_in_date", "check_out_date",
                     "department", "employee_id", "access_level", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _to_optional_str(v)


class SelfRegisterRequest(BaseModel):
    role: str = ""
    full_name: str = ""
    username: str = ""
    email: str = ""
    password: str = ""


# ============== 服务请求 Schemas ==============

class ServiceRequestCreate(BaseModel):
    request_type: str = ""
    description: Optional[str] = None
    priority: Optional[str] = None
    preferred_time: Optional[str] = None
    room_number: Optional[str] = None

    @field_validator("room_number", "preferred_time", "priority", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _to_optional_str(v)


class ServiceRequestUpdate(BaseModel):
    id: Optional[int] = None
    status: Optional[str] = None
    assigned_to: Optional[Union[int, str]] = Field(default=None)

    @field_validator("status", mode="before")
    @classmethod
    def _blank_status(cls, v):
        return _to_optional_str(v)

    @field_validator("assigned_to", mode="before")
    @classmethod
    def _coerce_assignee(cls, v):
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return v


# ============== 消息 Schemas ==============

class MessageCreate(BaseModel):
    message: str = ""
    room_number: Optional[str] = None

    @field_validator("room_number", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _to_optional_str(v)
