"""通知意图模型 -- 交给通知协作方投递，投递本身不在本系统内"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class NotificationType(StrEnum):
    """通知事件类型"""

    TASK_ASSIGNED = "task_assigned"
    TASK_UPDATED = "task_updated"


class NotificationIntent(BaseModel):
    """通知意图"""

    event_type: NotificationType = Field(description="事件类型")
    task_id: str = Field(description="关联任务")
    recipients: list[str] = Field(default_factory=list, description="接收司机 ID 列表")
    payload: dict[str, Any] = Field(default_factory=dict, description="附加信息")
