"""审计记录与操作者模型

task_audit_log 表 append-only，与所记录的写入在同一事务内提交。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ActorRole, AuditAction


class AuditRecord(BaseModel):
    """单条审计记录"""

    id: str = Field(description="唯一标识，ULID 格式")
    task_id: str = Field(description="关联任务")
    actor_id: str | None = Field(default=None, description="操作者 ID")
    action: AuditAction = Field(description="动作类型")
    changed_at: datetime = Field(description="变更时间")
    before: dict[str, Any] | None = Field(default=None, description="变更前快照")
    after: dict[str, Any] | None = Field(default=None, description="变更后快照")
    diff: dict[str, Any] = Field(
        default_factory=dict,
        description='字段级差异 {field: {"from": ..., "to": ...}}',
    )


class Actor(BaseModel):
    """操作者（调度员 / 司机 / 系统）"""

    id: str = Field(description="操作者 ID")
    display_name: str = Field(default="", description="显示名")
    role: ActorRole = Field(default=ActorRole.DISPATCHER, description="角色")


def compute_diff(before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
    """计算两个快照之间的字段级差异"""
    diff: dict[str, Any] = {}
    for key in sorted(set(before) | set(after)):
        old = before.get(key)
        new = after.get(key)
        if old != new:
            diff[key] = {"from": old, "to": new}
    return diff
