"""变更事件模型 -- Change Event Bus 上传递的消息

每次被接受的存储写入都会产生一条或多条 ChangeEvent，
按集合（tasks / task_assignees）扇出给所有订阅者。
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class Collection(StrEnum):
    """可订阅的集合"""

    TASKS = "tasks"
    TASK_ASSIGNEES = "task_assignees"


class ChangeOperation(StrEnum):
    """变更类型"""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """变更事件

    record 为记录的 JSON 形式；delete 至少包含 id（指派记录另含 task_id）。
    origin 为发起写入的客户端会话 ID，服务端自发变更为 None。
    """

    event_id: str = Field(description="事件 ID，ULID 格式")
    collection: Collection = Field(description="所属集合")
    operation: ChangeOperation = Field(description="变更类型")
    record: dict[str, Any] = Field(default_factory=dict, description="记录内容")
    ts: datetime = Field(description="事件时间")
    actor_id: str | None = Field(default=None, description="操作者 ID")
    actor_name: str | None = Field(default=None, description="操作者显示名")
    origin: str | None = Field(default=None, description="发起写入的客户端会话 ID")

    @property
    def record_id(self) -> str | None:
        return self.record.get("id")

    @property
    def task_id(self) -> str | None:
        """事件影响的任务 ID"""
        if self.collection == Collection.TASKS:
            return self.record.get("id")
        return self.record.get("task_id")
