"""TraceMiddleware -- 为任务操作绑定 trace_id

trace_id 从路径 /api/tasks/{task_id}/... 中的 task_id 生成，贯穿该任务的写入日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# /api/tasks 下不是任务 ID 的路径段
_COLLECTION_ROUTES = {"vehicle-conflicts"}


def extract_task_id(path: str) -> str | None:
    """从 /api/tasks/{task_id}[/...] 提取 task_id"""
    parts = [p for p in path.split("/") if p]
    for i, part in enumerate(parts[:-1]):
        if part == "tasks":
            candidate = parts[i + 1]
            if candidate not in _COLLECTION_ROUTES:
                return candidate
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件 -- 为任务操作绑定 trace_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        task_id = extract_task_id(request.url.path)
        if task_id:
            structlog.contextvars.bind_contextvars(
                task_id=task_id,
                trace_id=f"trace-{task_id}",
            )

        return await call_next(request)
