"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、凭证目录、变更总线订阅数。
"""

import shutil
from pathlib import Path

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. evidence_dir: 凭证目录可访问性
    3. disk_space_mb: 磁盘剩余空间
    4. change_subscribers: 当前 SSE 订阅数（仅展示）
    """
    checks: dict = {}
    all_ok = True
    store_group = request.app.state.store_group

    try:
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("readiness_sqlite_failed", error=str(e))
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    evidence_dir = Path(store_group.evidence_store.evidence_dir)
    if evidence_dir.exists() and evidence_dir.is_dir():
        checks["evidence_dir"] = "ok"
    else:
        checks["evidence_dir"] = "error: directory does not exist"
        all_ok = False

    try:
        checks["disk_space_mb"] = shutil.disk_usage(evidence_dir).free // (1024 * 1024)
    except OSError:
        checks["disk_space_mb"] = 0
        all_ok = False

    checks["change_subscribers"] = request.app.state.change_hub.subscriber_count

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
