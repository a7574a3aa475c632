"""EvidenceStore SQLite + 文件系统实现

照片 / 驾照照片 / 签名图片的内容写入文件系统，元数据写入 evidence 表。
hash 和 size 用于完整性校验。
"""

import hashlib
from datetime import datetime
from pathlib import Path

import aiosqlite

from ..models.workflow import Evidence, EvidenceKind, EvidenceSummary


def compute_hash_and_size(content: bytes) -> tuple[str, int]:
    """计算 SHA-256 hash 和内容大小

    Args:
        content: 原始内容字节

    Returns:
        (sha256_hex, size_bytes) 元组
    """
    return hashlib.sha256(content).hexdigest(), len(content)


class SqliteEvidenceStore:
    """EvidenceStore 的 SQLite + 文件系统实现"""

    def __init__(self, conn: aiosqlite.Connection, evidence_dir: Path) -> None:
        self._conn = conn
        self._evidence_dir = evidence_dir

    @property
    def evidence_dir(self) -> Path:
        return self._evidence_dir

    async def put_evidence(self, evidence: Evidence, content: bytes) -> Evidence:
        """写文件 + 写元数据，返回补全 hash / size / storage_ref 的副本"""
        hash_hex, size = compute_hash_and_size(content)
        file_path = self._get_evidence_path(evidence.task_id, evidence.kind, evidence.id)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(content)

        stored = evidence.model_copy(
            update={
                "hash": hash_hex,
                "size": size,
                "storage_ref": str(file_path.relative_to(self._evidence_dir)),
            }
        )
        await self._conn.execute(
            """
            INSERT INTO evidence (id, task_id, kind, content_type, storage_ref,
                                  size, hash, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                stored.id,
                stored.task_id,
                stored.kind.value,
                stored.content_type,
                stored.storage_ref,
                stored.size,
                stored.hash,
                stored.created_at.isoformat(),
            ),
        )
        return stored

    async def get_evidence(self, evidence_id: str) -> Evidence | None:
        """根据 id 查询凭证元数据"""
        cursor = await self._conn.execute(
            "SELECT id, task_id, kind, content_type, storage_ref, size, hash, created_at "
            "FROM evidence WHERE id = ?",
            (evidence_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_evidence(row)

    async def list_for_task(self, task_id: str) -> list[Evidence]:
        """查询指定任务的所有凭证"""
        cursor = await self._conn.execute(
            "SELECT id, task_id, kind, content_type, storage_ref, size, hash, created_at "
            "FROM evidence WHERE task_id = ? ORDER BY created_at ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_evidence(row) for row in rows]

    async def get_content(self, evidence_id: str) -> bytes | None:
        """读取凭证文件内容"""
        evidence = await self.get_evidence(evidence_id)
        if evidence is None:
            return None
        file_path = self._evidence_dir / evidence.storage_ref
        if not file_path.exists():
            return None
        return file_path.read_bytes()

    async def summary(self, task_id: str) -> EvidenceSummary:
        """统计任务已采集的各类凭证数量"""
        cursor = await self._conn.execute(
            "SELECT kind, COUNT(*) FROM evidence WHERE task_id = ? GROUP BY kind",
            (task_id,),
        )
        counts = {row[0]: row[1] for row in await cursor.fetchall()}
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM signatures WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        return EvidenceSummary(
            task_id=task_id,
            car_photos=counts.get(EvidenceKind.CAR_PHOTO.value, 0),
            license_photos=counts.get(EvidenceKind.LICENSE_PHOTO.value, 0),
            signatures=row[0] if row else 0,
        )

    def _get_evidence_path(self, task_id: str, kind: EvidenceKind, evidence_id: str) -> Path:
        """获取凭证文件存储路径"""
        return self._evidence_dir / task_id / kind.value / evidence_id

    @staticmethod
    def _row_to_evidence(row: aiosqlite.Row) -> Evidence:
        """将数据库行转换为 Evidence 模型"""
        return Evidence(
            id=row[0],
            task_id=row[1],
            kind=row[2],
            content_type=row[3],
            storage_ref=row[4],
            size=row[5],
            hash=row[6],
            created_at=datetime.fromisoformat(row[7]),
        )
