"""CLI 入口模块 -- python -m fieldsync.core <command>

支持的命令：
  init-db             初始化数据库（建表 + 索引）
  audit <task_id>     按时间倒序打印任务审计记录
"""

import asyncio
import json
import sys

from .config import get_db_path, get_evidence_dir


def main(argv: list[str] | None = None) -> None:
    """CLI 主入口"""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("用法: python -m fieldsync.core <command>")
        print("命令:")
        print("  init-db             初始化数据库")
        print("  audit <task_id>     打印任务审计记录")
        sys.exit(1)

    command = args[0]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "audit" and len(args) == 2:
        asyncio.run(print_audit(args[1]))
    else:
        print(f"未知命令: {' '.join(args)}")
        print("可用命令: init-db, audit <task_id>")
        sys.exit(1)


async def init_database() -> None:
    """执行数据库初始化"""
    from .store import create_store_group

    db_path = get_db_path()
    evidence_dir = get_evidence_dir()

    print(f"数据库路径: {db_path}")
    print(f"凭证目录: {evidence_dir}")

    store_group = await create_store_group(db_path, evidence_dir)
    await store_group.conn.close()
    print("初始化完成")


async def print_audit(task_id: str) -> None:
    """打印任务审计记录"""
    from .store import create_store_group

    store_group = await create_store_group(get_db_path(), get_evidence_dir())
    try:
        records = await store_group.audit_store.list_for_task(task_id, limit=500)
        for record in records:
            print(
                f"{record.changed_at.isoformat()} {record.action.value} "
                f"actor={record.actor_id or '-'} "
                f"diff={json.dumps(record.diff, ensure_ascii=False)}"
            )
        print(f"共 {len(records)} 条")
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
