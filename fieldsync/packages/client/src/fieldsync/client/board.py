"""BoardState -- 客户端唯一持有的任务看板状态

所有写入只能经过三个入口：
- apply / restore：乐观变更管线（本地应用与回滚）
- merge：实时对账循环（服务端事件）
组件只拿到同一个 BoardState 实例，不直接改内部映射表。
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog
from fieldsync.core.models import ChangeEvent, Task, TaskAssignee
from fieldsync.core.projection import (
    PLACEHOLDER_PREFIX,
    MergeOutcome,
    RemovedIds,
    apply_change,
    is_placeholder,
)

log = structlog.get_logger()

UNASSIGNED_COLUMN = "unassigned"


class GroupBy(StrEnum):
    """看板分组方式"""

    STATUS = "status"
    DRIVER = "driver"


@dataclass(frozen=True)
class PatchTask:
    """覆盖任务的若干字段"""

    task_id: str
    fields: dict[str, Any]


@dataclass(frozen=True)
class ReplaceLead:
    """用占位记录替换任务 lead，等服务端事件确认"""

    task_id: str
    driver_id: str


@dataclass(frozen=True)
class RemoveTask:
    """从看板移除任务及其指派记录"""

    task_id: str


@dataclass(frozen=True)
class InsertTask:
    """插入新任务（置顶）"""

    task: Task
    assignees: list[TaskAssignee] = field(default_factory=list)


LocalChange = PatchTask | ReplaceLead | RemoveTask | InsertTask


@dataclass
class BoardSnapshot:
    """受影响任务的深拷贝，None 表示快照时任务不存在"""

    tasks: dict[str, Task | None]
    assignees: dict[str, list[TaskAssignee]]
    positions: dict[str, int]

    @property
    def task_ids(self) -> list[str]:
        return list(self.tasks)


def placeholder_id(task_id: str, driver_id: str) -> str:
    return f"{PLACEHOLDER_PREFIX}{task_id}-{driver_id}"


class BoardState:
    """看板状态存储"""

    def __init__(self, group_by: GroupBy = GroupBy.STATUS) -> None:
        self.group_by = group_by
        self._tasks: dict[str, Task] = {}
        self._assignees: dict[str, TaskAssignee] = {}
        self._order: list[str] = []
        self._removed = RemovedIds()
        self._listeners: list[Callable[[set[str]], None]] = []

    # ---- 读取 ----

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def tasks(self) -> list[Task]:
        """按看板顺序返回全部任务"""
        return [self._tasks[task_id] for task_id in self._order if task_id in self._tasks]

    def task_ids(self) -> list[str]:
        return [task_id for task_id in self._order if task_id in self._tasks]

    def assignees_for(self, task_id: str) -> list[TaskAssignee]:
        rows = [a for a in self._assignees.values() if a.task_id == task_id]
        return sorted(rows, key=lambda a: (not a.is_lead, a.assigned_at))

    def all_assignees(self) -> list[TaskAssignee]:
        return list(self._assignees.values())

    def lead_for(self, task_id: str) -> TaskAssignee | None:
        for assignee in self.assignees_for(task_id):
            if assignee.is_lead:
                return assignee
        return None

    def column_of(self, task_id: str, group_by: GroupBy | None = None) -> str | None:
        """任务当前所在列：状态分组为状态值，司机分组为 lead 司机 ID"""
        task = self._tasks.get(task_id)
        if task is None:
            return None
        if (group_by or self.group_by) == GroupBy.STATUS:
            return task.status.value
        lead = self.lead_for(task_id)
        return lead.driver_id if lead else UNASSIGNED_COLUMN

    def column_tasks(self, column: str, group_by: GroupBy | None = None) -> list[Task]:
        return [t for t in self.tasks() if self.column_of(t.id, group_by) == column]

    def add_listener(self, listener: Callable[[set[str]], None]) -> None:
        """注册变更回调，参数为受影响的任务 ID 集合"""
        self._listeners.append(listener)

    # ---- 写入 ----

    def snapshot(self, task_ids: Iterable[str]) -> BoardSnapshot:
        """对指定任务做深拷贝快照"""
        tasks: dict[str, Task | None] = {}
        assignees: dict[str, list[TaskAssignee]] = {}
        positions: dict[str, int] = {}
        for task_id in dict.fromkeys(task_ids):
            task = self._tasks.get(task_id)
            tasks[task_id] = task.model_copy(deep=True) if task is not None else None
            assignees[task_id] = [a.model_copy() for a in self.assignees_for(task_id)]
            if task_id in self._order:
                positions[task_id] = self._order.index(task_id)
        return BoardSnapshot(tasks=tasks, assignees=assignees, positions=positions)

    def restore(self, snapshot: BoardSnapshot) -> None:
        """把快照中的任务恢复原状（含指派记录和位置）

        写入在途期间已合并了更新的服务端版本（version 更高）或服务端删除的任务不回滚，
        只撤掉本地占位指派，服务端状态优先。
        """
        for task_id, task in snapshot.tasks.items():
            live = self._tasks.get(task_id)
            if task is not None and (
                task_id in self._removed or (live is not None and live.version > task.version)
            ):
                self._settle_assignees(task_id, snapshot.assignees.get(task_id, []))
                log.debug("rollback_kept_server_version", task_id=task_id)
                continue
            self._drop_assignees(task_id)
            if task is None:
                self._tasks.pop(task_id, None)
                self._remove_from_order(task_id)
                continue
            self._tasks[task_id] = task.model_copy(deep=True)
            for assignee in snapshot.assignees.get(task_id, []):
                if assignee.id not in self._removed:
                    self._assignees[assignee.id] = assignee.model_copy()
            if task_id not in self._order:
                position = snapshot.positions.get(task_id, 0)
                self._order.insert(min(position, len(self._order)), task_id)
        self._notify(set(snapshot.tasks))

    def apply(self, change: LocalChange) -> None:
        """应用一条本地乐观变更"""
        if isinstance(change, PatchTask):
            task = self._tasks.get(change.task_id)
            if task is None:
                return
            self._tasks[change.task_id] = Task.model_validate(
                {**task.model_dump(), **change.fields}
            )
            affected = {change.task_id}
        elif isinstance(change, ReplaceLead):
            for lead in [a for a in self.assignees_for(change.task_id) if a.is_lead]:
                del self._assignees[lead.id]
            placeholder = TaskAssignee(
                id=placeholder_id(change.task_id, change.driver_id),
                task_id=change.task_id,
                driver_id=change.driver_id,
                is_lead=True,
                assigned_at=datetime.now(UTC),
            )
            self._assignees[placeholder.id] = placeholder
            affected = {change.task_id}
        elif isinstance(change, RemoveTask):
            self._tasks.pop(change.task_id, None)
            self._drop_assignees(change.task_id)
            self._remove_from_order(change.task_id)
            affected = {change.task_id}
        else:
            self._tasks[change.task.id] = change.task
            for assignee in change.assignees:
                self._assignees[assignee.id] = assignee
            self._remove_from_order(change.task.id)
            self._order.insert(0, change.task.id)
            affected = {change.task.id}
        self._notify(affected)

    def merge(self, event: ChangeEvent) -> MergeOutcome:
        """合并一条服务端变更事件（幂等）"""
        outcome = apply_change(self._tasks, self._assignees, event, self._removed)
        task_id = event.task_id
        if task_id is not None:
            if task_id in self._tasks and task_id not in self._order:
                self._order.insert(0, task_id)
            elif task_id not in self._tasks:
                self._remove_from_order(task_id)
        if outcome not in (MergeOutcome.IGNORED, MergeOutcome.STALE) and task_id:
            self._notify({task_id})
        return outcome

    def _settle_assignees(self, task_id: str, previous: list[TaskAssignee]) -> None:
        """去掉本地占位指派，补回快照中服务端仍保留的记录"""
        for assignee_id in [
            a.id for a in self._assignees.values() if a.task_id == task_id and is_placeholder(a.id)
        ]:
            del self._assignees[assignee_id]
        if task_id not in self._tasks:
            return
        has_lead = self.lead_for(task_id) is not None
        for assignee in previous:
            if assignee.id in self._assignees or assignee.id in self._removed:
                continue
            if is_placeholder(assignee.id) or (assignee.is_lead and has_lead):
                continue
            self._assignees[assignee.id] = assignee.model_copy()
            has_lead = has_lead or assignee.is_lead

    def _drop_assignees(self, task_id: str) -> None:
        for assignee_id in [a.id for a in self._assignees.values() if a.task_id == task_id]:
            del self._assignees[assignee_id]

    def _remove_from_order(self, task_id: str) -> None:
        if task_id in self._order:
            self._order.remove(task_id)

    def _notify(self, task_ids: set[str]) -> None:
        for listener in self._listeners:
            try:
                listener(task_ids)
            except Exception:
                log.exception("board_listener_failed", task_ids=sorted(task_ids))
