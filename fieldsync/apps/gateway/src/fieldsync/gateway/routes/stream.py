"""变更事件流路由

GET /api/stream/changes?collections=tasks,task_assignees
SSE 实时推送订阅集合的 ChangeEvent，空闲时发送心跳注释。
订阅者队列溢出时结束流，由客户端重连并全量同步。
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fieldsync.core import config
from fieldsync.core.models import Collection
from sse_starlette.sse import EventSourceResponse

from ..deps import get_change_hub
from ..errors import error_response
from ..services.change_hub import ChangeHub

log = structlog.get_logger()

router = APIRouter()


def parse_collections(raw: str | None) -> list[Collection]:
    """解析 collections 查询参数，缺省订阅全部集合

    Raises:
        ValueError: 未知集合名
    """
    if not raw:
        return list(Collection)
    return [Collection(name.strip()) for name in raw.split(",") if name.strip()]


async def change_stream(
    hub: ChangeHub,
    collections: list[Collection],
    heartbeat_interval: float,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncIterator[dict]:
    """SSE 消息生成器：连接注释 -> 变更事件 / 心跳"""
    queue = await hub.subscribe(collections)
    log.info("change_stream_opened", collections=[c.value for c in collections])
    try:
        yield {"comment": "connected"}
        while True:
            if hub.overflowed(queue) and queue.empty():
                log.warning("change_stream_overflow_closed")
                return
            if is_disconnected is not None and await is_disconnected():
                return
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
            except TimeoutError:
                yield {"comment": "heartbeat"}
                continue
            yield {
                "id": event.event_id,
                "event": event.collection.value,
                "data": event.model_dump_json(),
            }
    finally:
        await hub.unsubscribe(queue)
        log.info("change_stream_closed")


@router.get("/api/stream/changes")
async def stream_changes(
    request: Request,
    collections: str | None = Query(default=None, description="逗号分隔的集合名"),
    hub: ChangeHub = Depends(get_change_hub),
):
    try:
        parsed = parse_collections(collections)
    except ValueError:
        return error_response(
            422,
            "VALIDATION_FAILED",
            f"Unknown collection in {collections!r}",
        )

    return EventSourceResponse(
        change_stream(
            hub,
            parsed,
            config.SSE_HEARTBEAT_INTERVAL,
            is_disconnected=request.is_disconnected,
        )
    )
