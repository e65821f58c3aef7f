"""
应用配置
从环境变量读取配置，支持 .env 文件
"""
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "Golden Peacock Smart Room"
    HOTEL_NAME: str = "Golden Peacock Hotel"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./smartroom.db"

    # 会话配置（Cookie 中保存签名后的会话引用，会话本身存储在服务端）
    SECRET_KEY: str = "smartroom-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    SESSION_COOKIE_NAME: str = "golden_session"
    SESSION_EXPIRE_HOURS: int = 24
    SESSION_COOKIE_SECURE: bool = False

    # 账号管理
    SETUP_TOKEN: str = ""
    ADMIN_LIMIT: int = 3
    ALLOW_SELF_REGISTER: bool = True

    # SMTP 配置（客人欢迎邮件）
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: Optional[str] = None
    SMTP_FROM_NAME: str = "Golden Peacock Hotel"
    SMTP_USE_TLS: bool = True

    model_config = ConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# 全局设置实例
settings = Settings()
