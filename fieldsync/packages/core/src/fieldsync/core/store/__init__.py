"""FieldSync Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

from pathlib import Path

import aiosqlite

from .actor_store import SqliteActorStore
from .assignee_store import SqliteAssigneeStore
from .audit_store import SqliteAuditStore
from .evidence_store import SqliteEvidenceStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore
from .transaction import (
    append_side_record,
    create_task_with_assignees,
    replace_lead,
    soft_delete_task,
    transition_status,
    update_task_fields,
)
from .workflow_store import SqliteWorkflowStore


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        evidence_dir: Path,
    ) -> None:
        self.conn = conn
        self.task_store = SqliteTaskStore(conn)
        self.assignee_store = SqliteAssigneeStore(conn)
        self.audit_store = SqliteAuditStore(conn)
        self.workflow_store = SqliteWorkflowStore(conn)
        self.evidence_store = SqliteEvidenceStore(conn, evidence_dir)
        self.actor_store = SqliteActorStore(conn)


async def create_store_group(
    db_path: str,
    evidence_dir: str | Path,
) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径
        evidence_dir: 凭证文件存储目录

    Returns:
        StoreGroup 实例
    """
    evidence_path = Path(evidence_dir)
    evidence_path.mkdir(parents=True, exist_ok=True)

    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn, evidence_dir=evidence_path)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteAssigneeStore",
    "SqliteAuditStore",
    "SqliteWorkflowStore",
    "SqliteEvidenceStore",
    "SqliteActorStore",
    "init_db",
    "create_task_with_assignees",
    "update_task_fields",
    "transition_status",
    "replace_lead",
    "soft_delete_task",
    "append_side_record",
]
