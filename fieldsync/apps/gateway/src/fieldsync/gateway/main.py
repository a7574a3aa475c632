"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + ChangeHub + 通知协作方 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fieldsync.core.config import get_db_path, get_evidence_dir
from fieldsync.core.store import create_store_group

from .errors import register_exception_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import health, stream, tasks, workflow
from .services.change_hub import ChangeHub
from .services.notifications import LoggingNotificationSink, NotificationSink

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 和事件总线，关闭时清理连接"""
    db_path = get_db_path()
    evidence_dir = get_evidence_dir()
    store_group = await create_store_group(db_path, evidence_dir)
    app.state.store_group = store_group
    app.state.change_hub = ChangeHub()
    if getattr(app.state, "notifications", None) is None:
        app.state.notifications = LoggingNotificationSink()
    log.info("gateway_started", db_path=db_path, evidence_dir=str(evidence_dir))

    yield

    if hasattr(app.state, "store_group") and app.state.store_group:
        await app.state.store_group.conn.close()
    log.info("gateway_stopped")


def create_app(notifications: NotificationSink | None = None) -> FastAPI:
    """创建 FastAPI 应用实例

    Args:
        notifications: 通知协作方，默认只记录日志
    """
    app = FastAPI(
        title="FieldSync Gateway",
        version="0.1.0",
        description="任务存储与变更事件总线 API",
        lifespan=lifespan,
    )
    app.state.notifications = notifications

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire(app)

    register_exception_handlers(app)

    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(workflow.router, tags=["workflow"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
