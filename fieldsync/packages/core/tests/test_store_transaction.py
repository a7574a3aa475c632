"""写入 + 审计事务测试

1. 受保护的 completed 流转（只接受 in_progress -> completed）
2. 写入与审计同事务提交，失败整体回滚
3. 每次被接受的写入递增 version
"""

import sqlite3
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fieldsync.core.errors import InvalidStatusFlowError, TaskNotFoundError
from fieldsync.core.models import AuditAction, TaskAssignee, TaskPriority, TaskStatus
from fieldsync.core.store.assignee_store import SqliteAssigneeStore
from fieldsync.core.store.audit_store import SqliteAuditStore
from fieldsync.core.store.task_store import SqliteTaskStore
from fieldsync.core.store.transaction import (
    create_task_with_assignees,
    replace_lead,
    soft_delete_task,
    transition_status,
    update_task_fields,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def stores(db_conn):
    """提供 TaskStore / AssigneeStore / AuditStore 实例"""
    return (
        SqliteTaskStore(db_conn),
        SqliteAssigneeStore(db_conn),
        SqliteAuditStore(db_conn),
        db_conn,
    )


async def _seed(stores, make_task, status=TaskStatus.PENDING, lead="d-1"):
    task_store, assignee_store, audit_store, conn = stores
    task = make_task(status=status, created_by="disp-1")
    assignees = []
    if lead:
        assignees.append(
            TaskAssignee(
                id="a-1",
                task_id=task.id,
                driver_id=lead,
                is_lead=True,
                assigned_at=NOW,
            )
        )
    await create_task_with_assignees(
        conn, task_store, assignee_store, audit_store, task, assignees
    )
    return task


class TestCreate:
    async def test_create_writes_task_assignees_and_audit(self, stores, make_task):
        task_store, assignee_store, audit_store, _ = stores
        task = await _seed(stores, make_task)

        stored = await task_store.get_task(task.id)
        assert stored is not None
        assert stored.status == TaskStatus.PENDING

        assignees = await assignee_store.list_for_task(task.id)
        assert [a.driver_id for a in assignees] == ["d-1"]

        records = await audit_store.list_for_task(task.id)
        assert len(records) == 1
        assert records[0].action == AuditAction.CREATED
        assert records[0].actor_id == "disp-1"
        assert records[0].before is None

    async def test_duplicate_create_rolls_back(self, stores, make_task):
        task_store, assignee_store, audit_store, conn = stores
        task = await _seed(stores, make_task)

        with pytest.raises(sqlite3.IntegrityError):
            await create_task_with_assignees(
                conn, task_store, assignee_store, audit_store, task, []
            )
        assert len(await audit_store.list_for_task(task.id)) == 1


class TestGuardedCompletion:
    """进入 completed 前存储中的状态必须为 in_progress"""

    @pytest.mark.parametrize("status", [TaskStatus.PENDING, TaskStatus.BLOCKED])
    async def test_completion_rejected(self, stores, make_task, status):
        task_store, _, audit_store, conn = stores
        task = await _seed(stores, make_task, status=status)

        with pytest.raises(InvalidStatusFlowError) as exc_info:
            await transition_status(
                conn, task_store, audit_store, task.id, TaskStatus.COMPLETED, "d-1", NOW
            )

        assert exc_info.value.code == "INVALID_STATUS_FLOW"
        assert exc_info.value.current_status == status.value
        assert exc_info.value.target_status == "completed"

        stored = await task_store.get_task(task.id)
        assert stored.status == status
        assert stored.version == 1
        # 被拒绝的流转不产生审计
        assert len(await audit_store.list_for_task(task.id)) == 1

    async def test_completion_from_in_progress(self, stores, make_task):
        task_store, _, audit_store, conn = stores
        task = await _seed(stores, make_task, status=TaskStatus.IN_PROGRESS)

        before, after = await transition_status(
            conn, task_store, audit_store, task.id, TaskStatus.COMPLETED, "d-1", NOW
        )

        assert before.status == TaskStatus.IN_PROGRESS
        assert after.status == TaskStatus.COMPLETED
        assert after.version == 2
        assert after.updated_by == "d-1"

        records = await audit_store.list_for_task(task.id)
        assert records[0].action == AuditAction.STATUS_CHANGED
        assert records[0].diff["status"] == {"from": "in_progress", "to": "completed"}

    async def test_other_transitions_unconditional(self, stores, make_task):
        task_store, _, audit_store, conn = stores
        task = await _seed(stores, make_task, status=TaskStatus.COMPLETED)

        _, after = await transition_status(
            conn, task_store, audit_store, task.id, TaskStatus.PENDING, None, NOW
        )
        assert after.status == TaskStatus.PENDING

    async def test_extra_fields_written_with_status(self, stores, make_task):
        task_store, _, audit_store, conn = stores
        task = await _seed(stores, make_task)

        _, after = await transition_status(
            conn,
            task_store,
            audit_store,
            task.id,
            TaskStatus.IN_PROGRESS,
            "d-1",
            NOW,
            extra_fields={"details": "started from garage"},
        )
        assert after.status == TaskStatus.IN_PROGRESS
        assert after.details == "started from garage"

    async def test_missing_task(self, stores):
        task_store, _, audit_store, conn = stores
        with pytest.raises(TaskNotFoundError):
            await transition_status(
                conn, task_store, audit_store, "nope", TaskStatus.IN_PROGRESS, None, NOW
            )


class TestRollback:
    async def test_audit_failure_rolls_back_write(self, stores, make_task):
        """审计写入失败时任务字段不变"""
        task_store, _, audit_store, conn = stores
        task = await _seed(stores, make_task)

        failing_audit = AsyncMock(spec=SqliteAuditStore)
        failing_audit.append.side_effect = RuntimeError("disk full")

        with pytest.raises(RuntimeError, match="disk full"):
            await update_task_fields(
                conn,
                task_store,
                failing_audit,
                task.id,
                {"priority": TaskPriority.HIGH},
                "disp-1",
                NOW,
            )

        stored = await task_store.get_task(task.id)
        assert stored.priority == TaskPriority.MEDIUM
        assert stored.version == 1


class TestUpdateAndDelete:
    async def test_update_fields_bumps_version(self, stores, make_task):
        task_store, _, audit_store, conn = stores
        task = await _seed(stores, make_task)

        before, after = await update_task_fields(
            conn,
            task_store,
            audit_store,
            task.id,
            {"priority": TaskPriority.HIGH, "estimated_start": NOW},
            "disp-2",
            NOW,
        )
        assert before.priority == TaskPriority.MEDIUM
        assert after.priority == TaskPriority.HIGH
        assert after.estimated_start == NOW
        assert after.version == 2
        assert after.updated_by == "disp-2"

    async def test_replace_lead(self, stores, make_task):
        task_store, assignee_store, audit_store, conn = stores
        task = await _seed(stores, make_task)

        removed, lead, after = await replace_lead(
            conn, task_store, assignee_store, audit_store, task.id, "d-2", "disp-1", NOW
        )
        assert [a.driver_id for a in removed] == ["d-1"]
        assert lead.driver_id == "d-2"
        assert lead.is_lead
        assert after.version == 2

        leads = [a for a in await assignee_store.list_for_task(task.id) if a.is_lead]
        assert [a.driver_id for a in leads] == ["d-2"]

        records = await audit_store.list_for_task(task.id)
        assert records[0].action == AuditAction.ASSIGNED
        assert records[0].diff["lead_driver_id"] == {"from": "d-1", "to": "d-2"}

    async def test_soft_delete_keeps_row(self, stores, make_task):
        task_store, assignee_store, audit_store, conn = stores
        task = await _seed(stores, make_task)

        deleted = await soft_delete_task(
            conn, task_store, audit_store, task.id, "disp-1", NOW
        )
        assert deleted.deleted_at == NOW

        assert await task_store.get_task(task.id) is None
        assert await task_store.get_task(task.id, include_deleted=True) is not None
        assert await task_store.list_tasks() == []
        # 已删除任务的指派记录不再出现在看板
        assert await assignee_store.list_active() == []

        with pytest.raises(TaskNotFoundError):
            await soft_delete_task(conn, task_store, audit_store, task.id, None, NOW)
