"""Projection 合并模块

把 ChangeEvent 应用到内存中的 tasks / task_assignees 映射表。
合并按 id 进行、逐字段 last-value-wins，同一事件重复应用结果不变。
事件总线至少投递一次且不保证跨记录顺序，所以：
- 已删除的记录 ID 记在 RemovedIds 里，迟到的重复事件不会让它复活
- 每个任务最多一条 lead 指派，较早的 lead 让位给较晚的
"""

from collections.abc import Iterable
from enum import StrEnum

import structlog
from pydantic import ValidationError

from .config import REMOVED_IDS_MAX
from .models.change import ChangeEvent, ChangeOperation, Collection
from .models.task import Task, TaskAssignee

log = structlog.get_logger()

# 客户端在服务端确认前插入的占位指派记录 ID 前缀
PLACEHOLDER_PREFIX = "local-"


class MergeOutcome(StrEnum):
    """单个事件的合并结果"""

    INSERTED = "inserted"
    UPDATED = "updated"
    REMOVED = "removed"
    STALE = "stale"
    IGNORED = "ignored"


class RemovedIds:
    """最近被删除的任务 / 指派记录 ID，超过上限时淘汰最早的"""

    def __init__(self, maxlen: int = REMOVED_IDS_MAX) -> None:
        self._ids: dict[str, None] = {}
        self._maxlen = maxlen

    def add(self, record_id: str) -> None:
        self._ids.pop(record_id, None)
        self._ids[record_id] = None
        while len(self._ids) > self._maxlen:
            del self._ids[next(iter(self._ids))]

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


def is_placeholder(assignee_id: str) -> bool:
    return assignee_id.startswith(PLACEHOLDER_PREFIX)


def lead_sort_key(assignee: TaskAssignee) -> tuple:
    """lead 先后顺序：assigned_at，其次 id（ULID 单调递增）"""
    return (assignee.assigned_at, assignee.id)


def apply_change(
    tasks: dict[str, Task],
    assignees: dict[str, TaskAssignee],
    event: ChangeEvent,
    removed: RemovedIds | None = None,
) -> MergeOutcome:
    """将单个变更事件应用到内存状态（就地修改）

    Args:
        tasks: task id -> Task 的映射表
        assignees: assignee id -> TaskAssignee 的映射表
        event: 要应用的事件
        removed: 已删除记录 ID；传入时会被更新

    Returns:
        合并结果
    """
    if removed is None:
        removed = RemovedIds()
    if event.collection == Collection.TASKS:
        return _apply_task_change(tasks, assignees, event, removed)
    return _apply_assignee_change(assignees, event, removed)


def _apply_task_change(
    tasks: dict[str, Task],
    assignees: dict[str, TaskAssignee],
    event: ChangeEvent,
    removed: RemovedIds,
) -> MergeOutcome:
    task_id = event.record_id
    if not task_id:
        return MergeOutcome.IGNORED

    if event.operation == ChangeOperation.DELETE:
        return _remove_task(tasks, assignees, task_id, removed)

    local = tasks.get(task_id)

    if event.operation == ChangeOperation.INSERT and local is not None:
        return MergeOutcome.IGNORED

    if local is None:
        if task_id in removed:
            return MergeOutcome.STALE
        try:
            task = Task.model_validate(event.record)
        except ValidationError:
            # 缺字段的部分更新，本地又没有基线，只能等待全量同步
            log.debug("change_without_baseline", task_id=task_id, operation=event.operation)
            return MergeOutcome.IGNORED
        if task.deleted_at is not None:
            removed.add(task_id)
            return MergeOutcome.IGNORED
        tasks[task_id] = task
        return MergeOutcome.INSERTED

    incoming_version = event.record.get("version")
    if incoming_version is not None and int(incoming_version) < local.version:
        return MergeOutcome.STALE

    merged = Task.model_validate({**local.model_dump(), **event.record})
    if merged.deleted_at is not None:
        return _remove_task(tasks, assignees, task_id, removed)

    tasks[task_id] = merged
    return MergeOutcome.UPDATED


def _remove_task(
    tasks: dict[str, Task],
    assignees: dict[str, TaskAssignee],
    task_id: str,
    removed: RemovedIds,
) -> MergeOutcome:
    existed = tasks.pop(task_id, None) is not None
    removed.add(task_id)
    for assignee_id in [a.id for a in assignees.values() if a.task_id == task_id]:
        del assignees[assignee_id]
        if not is_placeholder(assignee_id):
            removed.add(assignee_id)
    return MergeOutcome.REMOVED if existed else MergeOutcome.IGNORED


def _apply_assignee_change(
    assignees: dict[str, TaskAssignee],
    event: ChangeEvent,
    removed: RemovedIds,
) -> MergeOutcome:
    assignee_id = event.record_id
    if not assignee_id:
        return MergeOutcome.IGNORED

    if event.operation == ChangeOperation.DELETE:
        removed.add(assignee_id)
        if assignees.pop(assignee_id, None) is None:
            return MergeOutcome.IGNORED
        return MergeOutcome.REMOVED

    local = assignees.get(assignee_id)
    if local is not None:
        if event.operation == ChangeOperation.INSERT:
            return MergeOutcome.IGNORED
        merged = TaskAssignee.model_validate({**local.model_dump(), **event.record})
        if merged.is_lead and not _settle_lead(assignees, merged):
            return MergeOutcome.STALE
        assignees[assignee_id] = merged
        return MergeOutcome.UPDATED

    if assignee_id in removed:
        return MergeOutcome.STALE

    try:
        assignee = TaskAssignee.model_validate(event.record)
    except ValidationError:
        log.debug("change_without_baseline", assignee_id=assignee_id)
        return MergeOutcome.IGNORED

    # 服务端确认的记录替换本地占位记录
    for placeholder in [
        a
        for a in assignees.values()
        if is_placeholder(a.id)
        and a.task_id == assignee.task_id
        and (a.is_lead if assignee.is_lead else a.driver_id == assignee.driver_id)
    ]:
        del assignees[placeholder.id]

    if assignee.is_lead and not _settle_lead(assignees, assignee):
        return MergeOutcome.STALE

    assignees[assignee.id] = assignee
    return MergeOutcome.INSERTED


def _settle_lead(assignees: dict[str, TaskAssignee], incoming: TaskAssignee) -> bool:
    """保证任务只有一条 lead：incoming 比现有 lead 早则放弃，否则移除较早的 lead

    Returns:
        incoming 是否可以写入
    """
    others = [
        a
        for a in assignees.values()
        if a.task_id == incoming.task_id
        and a.is_lead
        and a.id != incoming.id
        and not is_placeholder(a.id)
    ]
    if any(lead_sort_key(a) > lead_sort_key(incoming) for a in others):
        log.debug("older_lead_ignored", task_id=incoming.task_id, assignee_id=incoming.id)
        return False
    for older in others:
        del assignees[older.id]
    return True


def replay(
    events: Iterable[ChangeEvent],
    tasks: dict[str, Task] | None = None,
    assignees: dict[str, TaskAssignee] | None = None,
) -> tuple[dict[str, Task], dict[str, TaskAssignee]]:
    """按顺序重放事件，返回最终状态

    Args:
        events: 事件序列
        tasks: 初始 tasks 映射（不传则从空开始）
        assignees: 初始 assignees 映射

    Returns:
        (tasks, assignees) 元组
    """
    tasks = dict(tasks or {})
    assignees = dict(assignees or {})
    removed = RemovedIds()
    for event in events:
        apply_change(tasks, assignees, event, removed)
    return tasks, assignees
