"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    id              TEXT PRIMARY KEY,
    type            TEXT NOT NULL DEFAULT 'other',
    priority        TEXT NOT NULL DEFAULT 'medium',
    status          TEXT NOT NULL DEFAULT 'pending',
    estimated_start TEXT,
    estimated_end   TEXT,
    details         TEXT NOT NULL DEFAULT '',
    address         TEXT NOT NULL DEFAULT '',
    stops           TEXT NOT NULL DEFAULT '[]',
    client_id       TEXT,
    vehicle_id      TEXT,
    created_by      TEXT,
    updated_by      TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    deleted_at      TEXT,
    version         INTEGER NOT NULL DEFAULT 1
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_vehicle_id ON tasks(vehicle_id);",
]

# task_assignees 表 DDL
_ASSIGNEES_DDL = """
CREATE TABLE IF NOT EXISTS task_assignees (
    id          TEXT PRIMARY KEY,
    task_id     TEXT NOT NULL,
    driver_id   TEXT NOT NULL,
    is_lead     INTEGER NOT NULL DEFAULT 0,
    assigned_at TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(id)
);
"""

_ASSIGNEES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_task_assignees_task_id ON task_assignees(task_id);",
    # 每个任务至多一个 lead
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_task_assignees_lead "
        "ON task_assignees(task_id) WHERE is_lead = 1;"
    ),
]

# task_audit_log 表 DDL（append-only）
_AUDIT_DDL = """
CREATE TABLE IF NOT EXISTS task_audit_log (
    id          TEXT PRIMARY KEY,
    task_id     TEXT NOT NULL,
    actor_id    TEXT,
    action      TEXT NOT NULL,
    changed_at  TEXT NOT NULL,
    before      TEXT,
    after       TEXT,
    diff        TEXT NOT NULL DEFAULT '{}',

    FOREIGN KEY (task_id) REFERENCES tasks(id)
);
"""

_AUDIT_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_task_audit_task_ts ON task_audit_log(task_id, changed_at DESC);",
]

# task_forms 表 DDL（清单 / 弹窗提交）
_FORMS_DDL = """
CREATE TABLE IF NOT EXISTS task_forms (
    id            TEXT PRIMARY KEY,
    task_id       TEXT NOT NULL,
    kind          TEXT NOT NULL,
    form_data     TEXT NOT NULL DEFAULT '{}',
    driver_id     TEXT,
    gps_location  TEXT,
    submitted_at  TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(id)
);
"""

# evidence 表 DDL（照片 / 签名图片元数据）
_EVIDENCE_DDL = """
CREATE TABLE IF NOT EXISTS evidence (
    id            TEXT PRIMARY KEY,
    task_id       TEXT NOT NULL,
    kind          TEXT NOT NULL,
    content_type  TEXT NOT NULL DEFAULT 'application/octet-stream',
    storage_ref   TEXT NOT NULL DEFAULT '',
    size          INTEGER NOT NULL DEFAULT 0,
    hash          TEXT NOT NULL DEFAULT '',
    created_at    TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(id)
);
"""

# signatures 表 DDL
_SIGNATURES_DDL = """
CREATE TABLE IF NOT EXISTS signatures (
    id              TEXT PRIMARY KEY,
    task_id         TEXT NOT NULL,
    driver_id       TEXT,
    signature_url   TEXT NOT NULL,
    signed_by_name  TEXT,
    signed_at       TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(id)
);
"""

_SIDE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_task_forms_task_id ON task_forms(task_id);",
    "CREATE INDEX IF NOT EXISTS idx_evidence_task_id ON evidence(task_id);",
    "CREATE INDEX IF NOT EXISTS idx_signatures_task_id ON signatures(task_id);",
]

# actors 表 DDL
_ACTORS_DDL = """
CREATE TABLE IF NOT EXISTS actors (
    id            TEXT PRIMARY KEY,
    display_name  TEXT NOT NULL DEFAULT '',
    role          TEXT NOT NULL DEFAULT 'dispatcher'
);
"""


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    for ddl in (
        _TASKS_DDL,
        _ASSIGNEES_DDL,
        _AUDIT_DDL,
        _FORMS_DDL,
        _EVIDENCE_DDL,
        _SIGNATURES_DDL,
        _ACTORS_DDL,
    ):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _ASSIGNEES_INDEXES + _AUDIT_INDEXES + _SIDE_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
