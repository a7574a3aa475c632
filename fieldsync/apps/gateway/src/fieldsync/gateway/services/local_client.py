"""LocalStoreClient -- 进程内的 TaskStoreClient / WorkflowClient 实现

直接调用 TaskService 并订阅 ChangeHub，不经过 HTTP。
用于同进程嵌入同步引擎，以及多客户端集成测试。
"""

import asyncio
from collections.abc import AsyncIterator, Iterable
from typing import Any

import structlog
from fieldsync.client.transport import ClientIdentity
from fieldsync.core.errors import FieldSyncError, StoreWriteError, SubscriptionDroppedError
from fieldsync.core.models import (
    ChangeEvent,
    Collection,
    EvidenceKind,
    EvidenceSummary,
    Task,
    TaskAssignee,
    TaskStatus,
    WorkflowKind,
)
from fieldsync.core.store import StoreGroup

from .change_hub import ChangeHub
from .notifications import NotificationSink
from .task_service import RequestActor, TaskService

log = structlog.get_logger()


class LocalStoreClient:
    """进程内存储客户端"""

    def __init__(
        self,
        store_group: StoreGroup,
        change_hub: ChangeHub,
        identity: ClientIdentity,
        notifications: NotificationSink | None = None,
        heartbeat_interval: float = 15.0,
    ) -> None:
        self._hub = change_hub
        self.identity = identity
        self._heartbeat_interval = heartbeat_interval
        self._service = TaskService(
            store_group,
            change_hub,
            notifications=notifications,
            actor=RequestActor(
                actor_id=identity.actor_id,
                actor_name=identity.actor_name or None,
                role=identity.role,
                origin=identity.origin,
            ),
        )
        self._dropped = asyncio.Event()

    def drop_subscriptions(self) -> None:
        """让当前订阅流断开（模拟网络中断）"""
        self._dropped.set()

    # ---- TaskStoreClient ----

    async def load_board(self) -> tuple[list[Task], list[TaskAssignee]]:
        return await self._call(self._service.load_board())

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> Task:
        return await self._call(self._service.update_task(task_id, fields))

    async def update_task_status(
        self,
        task_id: str,
        next_status: TaskStatus,
        actor_id: str | None,
        extra_fields: dict[str, Any] | None = None,
    ) -> None:
        await self._call(
            self._service.update_status(task_id, next_status, actor_id, extra_fields)
        )

    async def reassign_lead(self, task_id: str, driver_id: str) -> None:
        await self._call(self._service.reassign_lead(task_id, driver_id))

    async def create_task(
        self,
        fields: dict[str, Any],
        lead_driver_id: str | None = None,
        co_driver_ids: list[str] | None = None,
    ) -> Task:
        return await self._call(
            self._service.create_task(fields, lead_driver_id, co_driver_ids or [])
        )

    async def soft_delete_task(self, task_id: str) -> None:
        await self._call(self._service.soft_delete(task_id))

    async def subscribe(
        self, collections: Iterable[Collection]
    ) -> AsyncIterator[ChangeEvent | None]:
        self._dropped.clear()
        queue = await self._hub.subscribe(collections)
        try:
            # 连接建立
            yield None
            while True:
                if self._dropped.is_set():
                    raise SubscriptionDroppedError("local subscription dropped")
                if self._hub.overflowed(queue) and queue.empty():
                    raise SubscriptionDroppedError("local subscription overflowed")
                try:
                    event = await asyncio.wait_for(
                        queue.get(), timeout=self._heartbeat_interval
                    )
                except TimeoutError:
                    yield None
                    continue
                yield event
        finally:
            await self._hub.unsubscribe(queue)

    # ---- WorkflowClient ----

    async def submit_checklist(
        self,
        task_id: str,
        kind: WorkflowKind,
        values: dict[str, Any],
        driver_id: str | None,
        gps_location: dict[str, float] | None = None,
    ) -> None:
        await self._call(
            self._service.submit_form(task_id, kind, values, driver_id, gps_location)
        )

    async def upload_evidence(
        self,
        task_id: str,
        kind: EvidenceKind,
        content: bytes,
        content_type: str,
    ) -> str:
        evidence = await self._call(
            self._service.add_evidence(task_id, kind, content, content_type)
        )
        return evidence.storage_ref

    async def record_signature(
        self,
        task_id: str,
        driver_id: str | None,
        storage_ref: str,
        signed_by_name: str | None,
    ) -> None:
        await self._call(
            self._service.add_signature(task_id, storage_ref, driver_id, signed_by_name)
        )

    async def evidence_summary(self, task_id: str) -> EvidenceSummary:
        return await self._call(self._service.evidence_summary(task_id))

    async def _call(self, coro):
        """存储层非领域异常在此统一转换为 StoreWriteError"""
        try:
            return await coro
        except FieldSyncError:
            raise
        except Exception as e:
            log.warning("local_store_call_failed", error_type=type(e).__name__)
            raise StoreWriteError(str(e) or type(e).__name__, original_error=e) from e
