"""
集中定义各操作允许的角色集合
"""
from smartroom.models.ontology import UserRole

ALL_ROLES = (UserRole.GUEST, UserRole.STAFF, UserRole.ADMIN)
STAFF_ROLES = (UserRole.STAFF, UserRole.ADMIN)
ADMIN_ONLY = (UserRole.ADMIN,)

# 服务请求
SERVICE_REQUEST_READ = ALL_ROLES
SERVICE_REQUEST_CREATE = ALL_ROLES
SERVICE_REQUEST_UPDATE = STAFF_ROLES
SERVICE_REQUEST_CANCEL = ALL_ROLES

# 房间消息
MESSAGE_READ = ALL_ROLES
MESSAGE_SEND = ALL_ROLES
MESSAGE_UNREAD_SUMMARY = STAFF_ROLES

# 账号与客人档案
ACCOUNT_REGISTER = STAFF_ROLES
ACCOUNT_CREATE_ADMIN = ADMIN_ONLY
GUEST_DIRECTORY_READ = STAFF_ROLES

# 站内通知
NOTIFICATION_READ = ALL_ROLES
