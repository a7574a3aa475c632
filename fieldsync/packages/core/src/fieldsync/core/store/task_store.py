"""TaskStore SQLite 实现

tasks 表是唯一可信数据源。
此处仅提供数据库操作，不负责提交事务。
"""

import json
from datetime import datetime
from typing import Any

import aiosqlite

from ..models.task import Task, TaskStop

_COLUMNS = (
    "id, type, priority, status, estimated_start, estimated_end, details, address, "
    "stops, client_id, vehicle_id, created_by, updated_by, created_at, updated_at, "
    "deleted_at, version"
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        await self._conn.execute(
            f"""
            INSERT INTO tasks ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.type.value,
                task.priority.value,
                task.status.value,
                _iso(task.estimated_start),
                _iso(task.estimated_end),
                task.details,
                task.address,
                json.dumps(
                    [s.model_dump() for s in task.stops],
                    ensure_ascii=False,
                ),
                task.client_id,
                task.vehicle_id,
                task.created_by,
                task.updated_by,
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
                _iso(task.deleted_at),
                task.version,
            ),
        )

    async def get_task(self, task_id: str, include_deleted: bool = False) -> Task | None:
        """根据 id 查询任务（默认不返回已软删除的任务）"""
        sql = f"SELECT {_COLUMNS} FROM tasks WHERE id = ?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        cursor = await self._conn.execute(sql, (task_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(self, status: str | None = None) -> list[Task]:
        """查询未删除任务列表，支持按状态筛选，按 created_at 倒序"""
        if status:
            cursor = await self._conn.execute(
                f"SELECT {_COLUMNS} FROM tasks "
                "WHERE deleted_at IS NULL AND status = ? ORDER BY created_at DESC",
                (status,),
            )
        else:
            cursor = await self._conn.execute(
                f"SELECT {_COLUMNS} FROM tasks "
                "WHERE deleted_at IS NULL ORDER BY created_at DESC"
            )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def update_fields(
        self,
        task_id: str,
        fields: dict[str, Any],
        updated_by: str | None,
        updated_at: str,
    ) -> None:
        """部分字段更新，同时递增 version

        fields 的 key 必须已通过 EDITABLE_FIELDS 校验（列名直接拼入 SQL）。
        """
        assignments = []
        params: list[Any] = []
        for key, value in fields.items():
            assignments.append(f"{key} = ?")
            params.append(self._to_column(key, value))
        assignments += ["updated_by = ?", "updated_at = ?", "version = version + 1"]
        params += [updated_by, updated_at, task_id]
        await self._conn.execute(
            f"UPDATE tasks SET {', '.join(assignments)} WHERE id = ? AND deleted_at IS NULL",
            params,
        )

    async def update_status_guarded(
        self,
        task_id: str,
        status: str,
        updated_by: str | None,
        updated_at: str,
        required_status: str | None = None,
    ) -> bool:
        """更新任务状态

        required_status 不为 None 时为条件更新：只有存储中的状态等于
        required_status 才会生效。

        Returns:
            True 如果有行被更新
        """
        sql = (
            "UPDATE tasks SET status = ?, updated_by = ?, updated_at = ?, "
            "version = version + 1 WHERE id = ? AND deleted_at IS NULL"
        )
        params: list[Any] = [status, updated_by, updated_at, task_id]
        if required_status is not None:
            sql += " AND status = ?"
            params.append(required_status)
        cursor = await self._conn.execute(sql, params)
        return cursor.rowcount > 0

    async def touch(self, task_id: str, updated_by: str | None, updated_at: str) -> None:
        """仅更新修改者和时间戳（指派变更时使用）"""
        await self._conn.execute(
            "UPDATE tasks SET updated_by = ?, updated_at = ?, version = version + 1 "
            "WHERE id = ?",
            (updated_by, updated_at, task_id),
        )

    async def mark_deleted(self, task_id: str, deleted_by: str | None, deleted_at: str) -> None:
        """软删除：只写 deleted_at，不删行"""
        await self._conn.execute(
            "UPDATE tasks SET deleted_at = ?, updated_by = ?, updated_at = ?, "
            "version = version + 1 WHERE id = ? AND deleted_at IS NULL",
            (deleted_at, deleted_by, deleted_at, task_id),
        )

    async def find_vehicle_overlaps(
        self,
        vehicle_id: str,
        estimated_start: datetime,
        estimated_end: datetime,
        exclude_task_id: str | None = None,
    ) -> list[Task]:
        """查询同一车辆在同一天时间段重叠的未完成任务"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks "
            "WHERE vehicle_id = ? AND deleted_at IS NULL AND status != 'completed' "
            "AND estimated_start IS NOT NULL AND estimated_end IS NOT NULL "
            "AND id != ? ORDER BY estimated_start ASC",
            (vehicle_id, exclude_task_id or ""),
        )
        rows = await cursor.fetchall()
        overlaps = []
        for task in (self._row_to_task(row) for row in rows):
            # 两个区间重叠：start1 < end2 且 start2 < end1，且同一天
            if task.estimated_start.date() != estimated_start.date():
                continue
            if estimated_start < task.estimated_end and task.estimated_start < estimated_end:
                overlaps.append(task)
        return overlaps

    @staticmethod
    def _to_column(key: str, value: Any) -> Any:
        """把模型字段值转换为列值"""
        if key == "stops":
            return json.dumps(
                [TaskStop.model_validate(s).model_dump() for s in value or []],
                ensure_ascii=False,
            )
        if isinstance(value, datetime):
            return value.isoformat()
        if hasattr(value, "value"):
            return value.value
        return value

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        stops_data = json.loads(row[8]) if row[8] else []  # stops 列
        return Task(
            id=row[0],
            type=row[1],
            priority=row[2],
            status=row[3],
            estimated_start=_parse(row[4]),
            estimated_end=_parse(row[5]),
            details=row[6],
            address=row[7],
            stops=[TaskStop(**s) for s in stops_data],
            client_id=row[9],
            vehicle_id=row[10],
            created_by=row[11],
            updated_by=row[12],
            created_at=datetime.fromisoformat(row[13]),
            updated_at=datetime.fromisoformat(row[14]),
            deleted_at=_parse(row[15]),
            version=row[16],
        )
