"""Task Domain Model

tasks 表是唯一可信数据源，每次被接受的写入都会递增 version，
客户端据此丢弃乱序到达的旧事件。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import TaskPriority, TaskStatus, TaskType


class TaskStop(BaseModel):
    """多站点任务中的一个停靠点"""

    id: str = Field(description="停靠点 ID")
    address: str = Field(description="地址")
    sort_order: int = Field(default=0, description="排序序号")
    distance_from_garage: float | None = Field(default=None, description="距车库距离（公里）")
    contact_name: str | None = Field(default=None, description="联系人")
    contact_phone: str | None = Field(default=None, description="联系电话")
    client_id: str | None = Field(default=None, description="关联客户")
    is_picked_up: bool = Field(default=False, description="是否已接载")


class Task(BaseModel):
    """Task 数据模型

    从不物理删除，软删除通过 deleted_at 标记。
    """

    id: str = Field(description="唯一标识，ULID 格式")
    type: TaskType = Field(default=TaskType.OTHER, description="任务分类")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="优先级")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    estimated_start: datetime | None = Field(default=None, description="预计开始时间")
    estimated_end: datetime | None = Field(default=None, description="预计结束时间")
    details: str = Field(default="", description="任务说明")
    address: str = Field(default="", description="主地址")
    stops: list[TaskStop] = Field(default_factory=list, description="停靠点列表")
    client_id: str | None = Field(default=None, description="客户 ID")
    vehicle_id: str | None = Field(default=None, description="车辆 ID")
    created_by: str | None = Field(default=None, description="创建者")
    updated_by: str | None = Field(default=None, description="最后修改者")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    deleted_at: datetime | None = Field(default=None, description="软删除时间")
    version: int = Field(default=1, description="写入版本号，每次被接受的写入 +1")


class TaskAssignee(BaseModel):
    """任务指派关系 -- 每个任务至多一个 lead"""

    id: str = Field(description="指派记录 ID")
    task_id: str = Field(description="关联任务")
    driver_id: str = Field(description="司机 ID")
    is_lead: bool = Field(default=False, description="是否为负责人")
    assigned_at: datetime = Field(description="指派时间")


# 可通过 update_task 修改的字段（status 走受保护的流转接口）
EDITABLE_FIELDS: frozenset[str] = frozenset(
    {
        "type",
        "priority",
        "estimated_start",
        "estimated_end",
        "details",
        "address",
        "stops",
        "client_id",
        "vehicle_id",
    }
)
