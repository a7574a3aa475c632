"""Store Protocol 接口定义

定义 TaskStore、AssigneeStore、AuditStore、EvidenceStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from datetime import datetime
from typing import Any, Protocol

from ..models.audit import AuditRecord
from ..models.task import Task, TaskAssignee
from ..models.workflow import Evidence, EvidenceSummary


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str, include_deleted: bool = False) -> Task | None:
        """根据 id 查询任务"""
        ...

    async def list_tasks(self, status: str | None = None) -> list[Task]:
        """查询未删除任务列表，支持按状态筛选"""
        ...

    async def update_fields(
        self,
        task_id: str,
        fields: dict[str, Any],
        updated_by: str | None,
        updated_at: str,
    ) -> None:
        """部分字段更新"""
        ...

    async def update_status_guarded(
        self,
        task_id: str,
        status: str,
        updated_by: str | None,
        updated_at: str,
        required_status: str | None = None,
    ) -> bool:
        """（条件）更新任务状态"""
        ...

    async def mark_deleted(self, task_id: str, deleted_by: str | None, deleted_at: str) -> None:
        """软删除"""
        ...

    async def find_vehicle_overlaps(
        self,
        vehicle_id: str,
        estimated_start: datetime,
        estimated_end: datetime,
        exclude_task_id: str | None = None,
    ) -> list[Task]:
        """查询同车辆时间重叠的任务"""
        ...


class AssigneeStore(Protocol):
    """指派记录存储接口"""

    async def add_assignee(self, assignee: TaskAssignee) -> None:
        """插入指派记录"""
        ...

    async def list_for_task(self, task_id: str) -> list[TaskAssignee]:
        """查询指定任务的指派记录"""
        ...

    async def list_active(self) -> list[TaskAssignee]:
        """查询所有未删除任务的指派记录"""
        ...

    async def delete_leads(self, task_id: str) -> list[TaskAssignee]:
        """删除任务的 lead 记录"""
        ...


class AuditStore(Protocol):
    """审计存储接口 -- append-only"""

    async def append(self, record: AuditRecord) -> None:
        """追加审计记录"""
        ...

    async def list_for_task(
        self,
        task_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditRecord]:
        """按时间倒序查询"""
        ...


class EvidenceStore(Protocol):
    """凭证存储接口"""

    async def put_evidence(self, evidence: Evidence, content: bytes) -> Evidence:
        """存储凭证（元数据 + 内容）"""
        ...

    async def list_for_task(self, task_id: str) -> list[Evidence]:
        """查询指定任务的所有凭证"""
        ...

    async def get_content(self, evidence_id: str) -> bytes | None:
        """读取凭证内容"""
        ...

    async def summary(self, task_id: str) -> EvidenceSummary:
        """统计凭证数量"""
        ...
