"""
领域事件定义
服务请求与房间消息在写入成功后发布，由事件处理器生成站内通知
"""
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any


class EventType(str, Enum):
    """事件类型枚举"""
    SERVICE_REQUEST_CREATED = "service_request.created"
    SERVICE_REQUEST_UPDATED = "service_request.updated"
    SERVICE_REQUEST_CANCELLED = "service_request.cancelled"
    MESSAGE_SENT = "message.sent"


@dataclass
class BaseEventData:
    """事件数据基类"""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result


@dataclass
class ServiceRequestCreatedData(BaseEventData):
    """服务请求创建事件数据"""
    request_id: int = 0
    room_number: str = ""
    request_type: str = ""
    priority: str = ""
    created_by: int = 0
    created_by_role: str = ""


@dataclass
class ServiceRequestUpdatedData(BaseEventData):
    """服务请求状态/分配变更事件数据"""
    request_id: int = 0
    room_number: str = ""
    guest_user_id: Optional[int] = None
    old_status: str = ""
    new_status: str = ""
    assigned_to: Optional[int] = None
    updated_by: int = 0


@dataclass
class ServiceRequestCancelledData(BaseEventData):
    """服务请求取消事件数据"""
    request_id: int = 0
    room_number: str = ""
    guest_user_id: Optional[int] = None
    cancelled_by: int = 0
    cancelled_by_role: str = ""


@dataclass
class MessageSentData(BaseEventData):
    """房间消息发送事件数据"""
    message_id: int = 0
    room_number: str = ""
    sender_id: int = 0
    sender_name: str = ""
    is_from_guest: bool = True
    preview: str = ""
