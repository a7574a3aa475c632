"""写入 + 审计原子事务封装

每个被接受的写入与对应的审计记录在同一 SQLite 事务内提交，
失败时回滚后原样抛出。
"""

from datetime import datetime
from typing import Any

import aiosqlite
from ulid import ULID

from ..errors import InvalidStatusFlowError, TaskNotFoundError
from ..models.audit import AuditRecord, compute_diff
from ..models.enums import COMPLETION_PRECONDITION, AuditAction, TaskStatus
from ..models.task import Task, TaskAssignee
from .assignee_store import SqliteAssigneeStore
from .audit_store import SqliteAuditStore
from .task_store import SqliteTaskStore


def _audit(
    task_id: str,
    actor_id: str | None,
    action: AuditAction,
    now: datetime,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
) -> AuditRecord:
    return AuditRecord(
        id=str(ULID()),
        task_id=task_id,
        actor_id=actor_id,
        action=action,
        changed_at=now,
        before=before,
        after=after,
        diff=compute_diff(before or {}, after or {}),
    )


async def create_task_with_assignees(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    assignee_store: SqliteAssigneeStore,
    audit_store: SqliteAuditStore,
    task: Task,
    assignees: list[TaskAssignee],
) -> None:
    """在同一事务内写入任务、指派记录和 created 审计

    Raises:
        Exception: 如果事务提交失败，自动回滚
    """
    try:
        await task_store.create_task(task)
        for assignee in assignees:
            await assignee_store.add_assignee(assignee)
        await audit_store.append(
            _audit(
                task.id,
                task.created_by,
                AuditAction.CREATED,
                task.created_at,
                None,
                task.model_dump(mode="json"),
            )
        )
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise


async def update_task_fields(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    audit_store: SqliteAuditStore,
    task_id: str,
    fields: dict[str, Any],
    actor_id: str | None,
    now: datetime,
) -> tuple[Task, Task]:
    """部分字段更新 + updated 审计

    Returns:
        (before, after) 元组

    Raises:
        TaskNotFoundError: 任务不存在或已删除
    """
    try:
        before = await task_store.get_task(task_id)
        if before is None:
            raise TaskNotFoundError(task_id)

        await task_store.update_fields(task_id, fields, actor_id, now.isoformat())
        after = await task_store.get_task(task_id)
        await audit_store.append(
            _audit(
                task_id,
                actor_id,
                AuditAction.UPDATED,
                now,
                before.model_dump(mode="json"),
                after.model_dump(mode="json"),
            )
        )
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    return before, after


async def transition_status(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    audit_store: SqliteAuditStore,
    task_id: str,
    next_status: TaskStatus,
    actor_id: str | None,
    now: datetime,
    extra_fields: dict[str, Any] | None = None,
) -> tuple[Task, Task]:
    """受保护的状态流转 + status_changed 审计

    进入 completed 使用条件更新（WHERE status = 'in_progress'），
    检查与写入不可分割；其余流转无条件接受。

    Returns:
        (before, after) 元组

    Raises:
        TaskNotFoundError: 任务不存在或已删除
        InvalidStatusFlowError: 进入 completed 时存储中的状态不是 in_progress
    """
    try:
        before = await task_store.get_task(task_id)
        if before is None:
            raise TaskNotFoundError(task_id)

        required = COMPLETION_PRECONDITION.value if next_status == TaskStatus.COMPLETED else None
        updated = await task_store.update_status_guarded(
            task_id,
            next_status.value,
            actor_id,
            now.isoformat(),
            required_status=required,
        )
        if not updated:
            raise InvalidStatusFlowError(task_id, before.status.value, next_status.value)

        if extra_fields:
            await task_store.update_fields(task_id, extra_fields, actor_id, now.isoformat())

        after = await task_store.get_task(task_id)
        await audit_store.append(
            _audit(
                task_id,
                actor_id,
                AuditAction.STATUS_CHANGED,
                now,
                before.model_dump(mode="json"),
                after.model_dump(mode="json"),
            )
        )
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    return before, after


async def replace_lead(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    assignee_store: SqliteAssigneeStore,
    audit_store: SqliteAuditStore,
    task_id: str,
    driver_id: str,
    actor_id: str | None,
    now: datetime,
) -> tuple[list[TaskAssignee], TaskAssignee, Task]:
    """替换任务 lead：删除旧 lead、插入新 lead、更新任务修改者

    Returns:
        (被删除的旧 lead 列表, 新 lead, 更新后的任务)

    Raises:
        TaskNotFoundError: 任务不存在或已删除
    """
    try:
        task = await task_store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        removed = await assignee_store.delete_leads(task_id)
        lead = TaskAssignee(
            id=str(ULID()),
            task_id=task_id,
            driver_id=driver_id,
            is_lead=True,
            assigned_at=now,
        )
        await assignee_store.add_assignee(lead)
        await task_store.touch(task_id, actor_id, now.isoformat())
        after = await task_store.get_task(task_id)
        await audit_store.append(
            _audit(
                task_id,
                actor_id,
                AuditAction.ASSIGNED,
                now,
                {"lead_driver_id": removed[0].driver_id if removed else None},
                {"lead_driver_id": driver_id},
            )
        )
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    return removed, lead, after


async def soft_delete_task(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    audit_store: SqliteAuditStore,
    task_id: str,
    actor_id: str | None,
    now: datetime,
) -> Task:
    """软删除任务（只写 deleted_at）+ deleted 审计

    Returns:
        带 deleted_at 的任务

    Raises:
        TaskNotFoundError: 任务不存在或已删除
    """
    try:
        before = await task_store.get_task(task_id)
        if before is None:
            raise TaskNotFoundError(task_id)

        await task_store.mark_deleted(task_id, actor_id, now.isoformat())
        after = await task_store.get_task(task_id, include_deleted=True)
        await audit_store.append(
            _audit(
                task_id,
                actor_id,
                AuditAction.DELETED,
                now,
                before.model_dump(mode="json"),
                after.model_dump(mode="json"),
            )
        )
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    return after


async def append_side_record(
    conn: aiosqlite.Connection,
    audit_store: SqliteAuditStore,
    task_id: str,
    action: AuditAction,
    actor_id: str | None,
    now: datetime,
    write,
    summary: dict[str, Any],
) -> None:
    """写入流程附属记录（清单、凭证、签名）并追加审计

    Args:
        write: 无参协程函数，执行实际插入
        summary: 写入审计 after 字段的摘要
    """
    try:
        await write()
        await audit_store.append(_audit(task_id, actor_id, action, now, None, summary))
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
