"""
领域层 - 状态机与领域实体
"""
from smartroom.domain.service_request import ServiceRequestEntity, SERVICE_REQUEST_LIFECYCLE

__all__ = ["ServiceRequestEntity", "SERVICE_REQUEST_LIFECYCLE"]
