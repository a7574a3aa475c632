"""AssigneeStore SQLite 实现 -- task_assignees 表"""

from datetime import datetime

import aiosqlite

from ..models.task import TaskAssignee


class SqliteAssigneeStore:
    """AssigneeStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def add_assignee(self, assignee: TaskAssignee) -> None:
        """插入指派记录"""
        await self._conn.execute(
            """
            INSERT INTO task_assignees (id, task_id, driver_id, is_lead, assigned_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                assignee.id,
                assignee.task_id,
                assignee.driver_id,
                1 if assignee.is_lead else 0,
                assignee.assigned_at.isoformat(),
            ),
        )

    async def list_for_task(self, task_id: str) -> list[TaskAssignee]:
        """查询指定任务的指派记录（lead 在前）"""
        cursor = await self._conn.execute(
            "SELECT id, task_id, driver_id, is_lead, assigned_at FROM task_assignees "
            "WHERE task_id = ? ORDER BY is_lead DESC, assigned_at ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_assignee(row) for row in rows]

    async def list_active(self) -> list[TaskAssignee]:
        """查询所有未删除任务的指派记录"""
        cursor = await self._conn.execute(
            """
            SELECT a.id, a.task_id, a.driver_id, a.is_lead, a.assigned_at
            FROM task_assignees a
            JOIN tasks t ON t.id = a.task_id
            WHERE t.deleted_at IS NULL
            ORDER BY a.assigned_at ASC
            """
        )
        rows = await cursor.fetchall()
        return [self._row_to_assignee(row) for row in rows]

    async def get_lead(self, task_id: str) -> TaskAssignee | None:
        """查询任务当前 lead"""
        cursor = await self._conn.execute(
            "SELECT id, task_id, driver_id, is_lead, assigned_at FROM task_assignees "
            "WHERE task_id = ? AND is_lead = 1",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_assignee(row)

    async def delete_leads(self, task_id: str) -> list[TaskAssignee]:
        """删除任务的 lead 记录，返回被删除的记录"""
        removed = [a for a in await self.list_for_task(task_id) if a.is_lead]
        await self._conn.execute(
            "DELETE FROM task_assignees WHERE task_id = ? AND is_lead = 1",
            (task_id,),
        )
        return removed

    async def delete_all_for_task(self, task_id: str) -> list[TaskAssignee]:
        """删除任务的全部指派记录，返回被删除的记录"""
        removed = await self.list_for_task(task_id)
        await self._conn.execute(
            "DELETE FROM task_assignees WHERE task_id = ?",
            (task_id,),
        )
        return removed

    @staticmethod
    def _row_to_assignee(row: aiosqlite.Row) -> TaskAssignee:
        """将数据库行转换为 TaskAssignee 模型"""
        return TaskAssignee(
            id=row[0],
            task_id=row[1],
            driver_id=row[2],
            is_lead=bool(row[3]),
            assigned_at=datetime.fromisoformat(row[4]),
        )
