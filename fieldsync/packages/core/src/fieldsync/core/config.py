"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、凭证（evidence）目录、SSE 心跳间隔、冲突窗口等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("FIELDSYNC_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "FIELDSYNC_DB_PATH",
        str(_get_base_dir() / "sqlite" / "fieldsync.db"),
    )


def get_evidence_dir() -> Path:
    """获取照片 / 签名等凭证文件存储目录"""
    return Path(
        os.environ.get(
            "FIELDSYNC_EVIDENCE_DIR",
            str(_get_base_dir() / "evidence"),
        )
    )


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("FIELDSYNC_SSE_HEARTBEAT_INTERVAL", "15")
)

# 本地乐观修改后，远端更新被视为"覆盖"的时间窗口（秒）
CONFLICT_WINDOW_S: float = float(
    os.environ.get("FIELDSYNC_CONFLICT_WINDOW_S", "10")
)

# 冲突提示自动消失时间（秒）
CONFLICT_INDICATOR_TTL_S: float = 10.0

# 客户端保留的已删除记录 ID 数量上限（用于丢弃迟到的重复事件）
REMOVED_IDS_MAX: int = 2000

# 审计日志分页上限
AUDIT_PAGE_MAX: int = 500
AUDIT_PAGE_DEFAULT: int = 50

# 单个凭证文件大小上限（字节）
EVIDENCE_MAX_BYTES: int = int(
    os.environ.get("FIELDSYNC_EVIDENCE_MAX_BYTES", str(10 * 1024 * 1024))
)
