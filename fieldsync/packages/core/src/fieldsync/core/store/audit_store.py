"""AuditStore SQLite 实现 -- task_audit_log 表

审计表 append-only：只允许插入，不允许更新或删除。
"""

import json
from datetime import datetime

import aiosqlite

from ..config import AUDIT_PAGE_MAX
from ..models.audit import AuditRecord


def clamp_limit(limit: int) -> int:
    """分页大小限制在 [1, AUDIT_PAGE_MAX]"""
    return max(1, min(limit, AUDIT_PAGE_MAX))


class SqliteAuditStore:
    """AuditStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append(self, record: AuditRecord) -> None:
        """追加审计记录（append-only）"""
        await self._conn.execute(
            """
            INSERT INTO task_audit_log (id, task_id, actor_id, action, changed_at,
                                        before, after, diff)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.task_id,
                record.actor_id,
                record.action.value,
                record.changed_at.isoformat(),
                json.dumps(record.before, ensure_ascii=False) if record.before else None,
                json.dumps(record.after, ensure_ascii=False) if record.after else None,
                json.dumps(record.diff, ensure_ascii=False),
            ),
        )

    async def list_for_task(
        self,
        task_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditRecord]:
        """按时间倒序查询任务审计记录"""
        cursor = await self._conn.execute(
            "SELECT id, task_id, actor_id, action, changed_at, before, after, diff "
            "FROM task_audit_log WHERE task_id = ? "
            "ORDER BY changed_at DESC, id DESC LIMIT ? OFFSET ?",
            (task_id, clamp_limit(limit), max(0, offset)),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def latest_actor(self, task_id: str) -> str | None:
        """任务最近一条带操作者的审计记录的 actor_id"""
        cursor = await self._conn.execute(
            "SELECT actor_id FROM task_audit_log "
            "WHERE task_id = ? AND actor_id IS NOT NULL "
            "ORDER BY changed_at DESC, id DESC LIMIT 1",
            (task_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> AuditRecord:
        """将数据库行转换为 AuditRecord 模型"""
        return AuditRecord(
            id=row[0],
            task_id=row[1],
            actor_id=row[2],
            action=row[3],
            changed_at=datetime.fromisoformat(row[4]),
            before=json.loads(row[5]) if row[5] else None,
            after=json.loads(row[6]) if row[6] else None,
            diff=json.loads(row[7]) if row[7] else {},
        )
