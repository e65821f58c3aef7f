"""
事件总线 - 进程内发布/订阅
服务请求与房间消息写入成功后发布事件，通知模块订阅这些事件
"""
from typing import Callable, Dict, List, Any
from dataclasses import dataclass, field
from datetime import datetime
import logging
import threading
import uuid

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """领域事件"""
    event_type: str
    timestamp: datetime
    data: Dict[str, Any]
    source: str  # 发布方服务名
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class EventBus:
    """
    线程安全的单例事件总线

    - subscribe(event_type, handler)
    - publish(event)：同步调用所有处理器，单个处理器失败只记录日志
    - unsubscribe(event_type, handler)
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._subscribers: Dict[str, List[Callable]] = {}
        self._subscriber_lock = threading.Lock()
        self._initialized = True
        logger.info("EventBus initialized")

    @staticmethod
    def _key(event_type) -> str:
        return event_type.value if hasattr(event_type, "value") else str(event_type)

    def subscribe(self, event_type, handler: Callable) -> None:
        key = self._key(event_type)
        with self._subscriber_lock:
            handlers = self._subscribers.setdefault(key, [])
            if handler not in handlers:
                handlers.append(handler)
                logger.info(f"Handler {handler.__name__} subscribed to {key}")

    def unsubscribe(self, event_type, handler: Callable) -> None:
        key = self._key(event_type)
        with self._subscriber_lock:
            if handler in self._subscribers.get(key, []):
                self._subscribers[key].remove(handler)
                logger.info(f"Handler {handler.__name__} unsubscribed from {key}")

    def publish(self, event: Event) -> None:
        """
        发布事件（同步执行所有处理器）

        通知属于附加功能，处理器异常不影响发布方已提交的业务写入
        """
        key = self._key(event.event_type)

        with self._subscriber_lock:
            handlers = list(self._subscribers.get(key, []))

        if handlers:
            logger.debug(f"Publishing {key} to {len(handlers)} handlers")

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler {handler.__name__} error for {key}: {e}", exc_info=True)

    def get_subscribers(self, event_type=None) -> Dict[str, List[str]]:
        with self._subscriber_lock:
            if event_type:
                key = self._key(event_type)
                return {key: [h.__name__ for h in self._subscribers.get(key, [])]}
            return {k: [h.__name__ for h in hs] for k, hs in self._subscribers.items()}

    def clear_subscribers(self) -> None:
        """清空所有订阅（用于测试）"""
        with self._subscriber_lock:
            self._subscribers.clear()
        logger.info("All subscribers cleared")


# 全局事件总线实例
event_bus = EventBus()
