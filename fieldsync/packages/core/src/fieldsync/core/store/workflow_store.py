"""WorkflowStore SQLite 实现 -- task_forms / signatures 表"""

import json
from datetime import datetime

import aiosqlite

from ..models.workflow import ChecklistSubmission, Signature


class SqliteWorkflowStore:
    """清单提交与签名记录的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def add_submission(self, submission: ChecklistSubmission) -> None:
        """写入清单 / 弹窗提交"""
        await self._conn.execute(
            """
            INSERT INTO task_forms (id, task_id, kind, form_data, driver_id,
                                    gps_location, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                submission.id,
                submission.task_id,
                submission.kind.value,
                json.dumps(submission.values, ensure_ascii=False),
                submission.driver_id,
                json.dumps(submission.gps_location) if submission.gps_location else None,
                submission.submitted_at.isoformat(),
            ),
        )

    async def list_submissions(self, task_id: str) -> list[ChecklistSubmission]:
        """查询任务的全部提交记录"""
        cursor = await self._conn.execute(
            "SELECT id, task_id, kind, form_data, driver_id, gps_location, submitted_at "
            "FROM task_forms WHERE task_id = ? ORDER BY submitted_at ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [
            ChecklistSubmission(
                id=row[0],
                task_id=row[1],
                kind=row[2],
                values=json.loads(row[3]) if row[3] else {},
                driver_id=row[4],
                gps_location=json.loads(row[5]) if row[5] else None,
                submitted_at=datetime.fromisoformat(row[6]),
            )
            for row in rows
        ]

    async def add_signature(self, signature: Signature) -> None:
        """写入签名记录"""
        await self._conn.execute(
            """
            INSERT INTO signatures (id, task_id, driver_id, signature_url,
                                    signed_by_name, signed_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                signature.id,
                signature.task_id,
                signature.driver_id,
                signature.signature_url,
                signature.signed_by_name,
                signature.signed_at.isoformat(),
            ),
        )

    async def list_signatures(self, task_id: str) -> list[Signature]:
        """查询任务的签名记录"""
        cursor = await self._conn.execute(
            "SELECT id, task_id, driver_id, signature_url, signed_by_name, signed_at "
            "FROM signatures WHERE task_id = ? ORDER BY signed_at ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [
            Signature(
                id=row[0],
                task_id=row[1],
                driver_id=row[2],
                signature_url=row[3],
                signed_by_name=row[4],
                signed_at=datetime.fromisoformat(row[5]),
            )
            for row in rows
        ]
