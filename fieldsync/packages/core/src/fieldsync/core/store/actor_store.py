"""ActorStore SQLite 实现 -- 操作者显示名缓存"""

import aiosqlite

from ..models.audit import Actor


class SqliteActorStore:
    """ActorStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def upsert(self, actor: Actor) -> None:
        """插入或更新操作者（显示名为空时保留旧值）"""
        await self._conn.execute(
            """
            INSERT INTO actors (id, display_name, role) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                display_name = CASE
                    WHEN excluded.display_name != '' THEN excluded.display_name
                    ELSE actors.display_name
                END,
                role = excluded.role
            """,
            (actor.id, actor.display_name, actor.role.value),
        )

    async def get(self, actor_id: str) -> Actor | None:
        """根据 id 查询操作者"""
        cursor = await self._conn.execute(
            "SELECT id, display_name, role FROM actors WHERE id = ?",
            (actor_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Actor(id=row[0], display_name=row[1], role=row[2])
