"""LoggingMiddleware -- 请求级日志

每个请求绑定 request_id（沿用客户端传入的 X-Request-ID，否则新生成）、
操作者和客户端会话到 structlog contextvars，完成时记录状态码和耗时。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

log = structlog.get_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(ULID())
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "actor_id": request.headers.get("x-actor-id"),
            "origin": request.headers.get("x-client-origin"),
        }
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            **{k: v for k, v in context.items() if v is not None}
        )

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)

        if response.status_code >= 500:
            await log.aerror(
                "request_completed", status_code=response.status_code, duration_ms=duration_ms
            )
        else:
            await log.ainfo(
                "request_completed", status_code=response.status_code, duration_ms=duration_ms
            )

        response.headers["X-Request-ID"] = request_id
        return response
