"""
数据库配置 - SQLAlchemy 持久化层
固定版本的表结构由 init_db 创建，不做运行时的列探测
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable

from sqlalchemy import create_engine, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from smartroom.config import settings
from smartroom.exceptions import ServiceError, StorageError

logger = logging.getLogger(__name__)

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

_connect_args = {"check_same_thread": False} if SQLALCHEMY_DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args=_connect_args,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """依赖注入：获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """初始化数据库表"""
    from smartroom.models import ontology  # noqa
    Base.metadata.create_all(bind=engine)

    if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
        # 启用 WAL 模式以提高并发性能
        with engine.connect() as conn:
            conn.execute(text("PRAGMA journal_mode=WAL"))
            conn.execute(text("PRAGMA synchronous=NORMAL"))
            conn.commit()


@contextmanager
def storage_guard(db: Session, operation: str):
    """操作边界：存储异常回滚并降级为 StorageError，详细信息只写日志

    业务异常（ServiceError）原样抛出。
    """
    try:
        yield
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"Storage failure during {operation}: {e}")
        raise StorageError() from e


def update_if(db: Session, model, predicate: Iterable[Any], values: Dict[str, Any]) -> int:
    """原子条件更新（compare-and-swap）

    仅当 predicate 全部成立时写入 values，返回受影响的行数。
    调用方负责提交事务。
    """
    stmt = (
        update(model)
        .where(*predicate)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    return result.rowcount or 0
