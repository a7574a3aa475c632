"""ChangeHub -- 内存中的变更事件总线

每个订阅者持有一个 asyncio.Queue，按集合（tasks / task_assignees）登记。
订阅者队列写满时被摘除并标记为溢出，对应的 SSE 流随即结束，
客户端重连后通过全量同步补齐。
"""

import asyncio
from collections import defaultdict
from collections.abc import Iterable

import structlog
from fieldsync.core.models import ChangeEvent, Collection

log = structlog.get_logger()


class ChangeHub:
    """变更事件广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 1000) -> None:
        # collection -> set of asyncio.Queue
        self._subscribers: dict[Collection, set[asyncio.Queue]] = defaultdict(set)
        self._overflowed: set[asyncio.Queue] = set()
        self._queue_maxsize = queue_maxsize

    @property
    def subscriber_count(self) -> int:
        return len({q for queues in self._subscribers.values() for q in queues})

    async def subscribe(self, collections: Iterable[Collection]) -> asyncio.Queue:
        """订阅一个或多个集合

        Args:
            collections: 要订阅的集合

        Returns:
            asyncio.Queue 实例，新事件会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        for collection in collections:
            self._subscribers[Collection(collection)].add(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        """取消订阅（所有集合）"""
        self._detach(queue)
        self._overflowed.discard(queue)

    def overflowed(self, queue: asyncio.Queue) -> bool:
        """订阅者是否因队列写满被摘除"""
        return queue in self._overflowed

    async def broadcast(self, event: ChangeEvent) -> int:
        """向订阅了该集合的所有订阅者广播事件

        Returns:
            成功投递的订阅者数量
        """
        delivered = 0
        for queue in list(self._subscribers.get(event.collection, set())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                self._detach(queue)
                self._overflowed.add(queue)
                log.warning(
                    "change_subscriber_overflowed",
                    collection=event.collection,
                    event_id=event.event_id,
                )
        return delivered

    def _detach(self, queue: asyncio.Queue) -> None:
        for collection in list(self._subscribers):
            self._subscribers[collection].discard(queue)
            if not self._subscribers[collection]:
                del self._subscribers[collection]
