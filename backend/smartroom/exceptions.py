"""
业务异常定义
服务层抛出，由 main.py 中注册的异常处理器统一渲染为 {ok: false, error}
"""
from fastapi import status


class ServiceError(Exception):
    """业务异常基类"""
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "请求失败"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    """参数缺失、格式错误或枚举值非法"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "参数错误"


class AuthenticationError(ServiceError):
    """未登录、会话失效或凭证错误"""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "未登录或会话已失效"


class AuthorizationError(ServiceError):
    """已登录但角色不允许"""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "权限不足"


class NotFoundError(ServiceError):
    """指定 ID 的对象不存在"""
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "对象不存在"


class ConflictError(ServiceError):
    """邮箱歧义、唯一键冲突、管理员名额已满、状态冲突"""
    status_code = status.HTTP_409_CONFLICT
    default_message = "请求与当前状态冲突"


class StorageError(ServiceError):
    """存储层不可用或出现意外错误，详细信息仅记录在服务端日志"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "存储服务异常，请稍后重试"


class SchemaMismatchError(StorageError):
    """账号初始化时识别出的数据库结构问题，消息中给出可执行的修复提示"""
    default_message = "数据库结构与当前版本不匹配，请执行 init_db 初始化数据库"
