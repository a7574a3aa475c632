"""通知协作方 -- 接收 NotificationIntent

投递（推送、偏好过滤、站内信）不在本系统内，默认实现只记录日志。
"""

from typing import Protocol

import structlog
from fieldsync.core.models import NotificationIntent

log = structlog.get_logger()


class NotificationSink(Protocol):
    """通知意图接收方"""

    async def emit(self, intent: NotificationIntent) -> None: ...


class LoggingNotificationSink:
    """默认实现：记录通知意图"""

    async def emit(self, intent: NotificationIntent) -> None:
        await log.ainfo(
            "notification_intent",
            event_type=intent.event_type,
            task_id=intent.task_id,
            recipients=intent.recipients,
        )


class RecordingNotificationSink:
    """保存全部通知意图（测试和本地调试用）"""

    def __init__(self) -> None:
        self.intents: list[NotificationIntent] = []

    async def emit(self, intent: NotificationIntent) -> None:
        self.intents.append(intent)
