"""集成测试配置 -- 真实 SQLite 存储 + ChangeHub + 进程内客户端

每个 SyncSession 通过 LocalStoreClient 直接调用 TaskService，
事件经同一个 ChangeHub 扇出给所有会话。
"""

import asyncio
from collections.abc import Callable

import pytest
import pytest_asyncio
from fieldsync.client.config import ClientConfig
from fieldsync.client.session import SyncSession
from fieldsync.client.transport import ClientIdentity
from fieldsync.gateway.services.change_hub import ChangeHub
from fieldsync.gateway.services.local_client import LocalStoreClient
from fieldsync.gateway.services.notifications import RecordingNotificationSink
from fieldsync.gateway.services.task_service import RequestActor, TaskService


@pytest.fixture
def change_hub() -> ChangeHub:
    return ChangeHub()


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def office(store_group, change_hub, notifications) -> TaskService:
    """后台建单用的服务（不属于任何看板会话）"""
    return TaskService(
        store_group,
        change_hub,
        notifications=notifications,
        actor=RequestActor(actor_id="office", actor_name="Office"),
    )


@pytest.fixture
def local_client(store_group, change_hub, notifications) -> Callable[..., LocalStoreClient]:
    def _make(actor_id: str, actor_name: str, origin: str) -> LocalStoreClient:
        return LocalStoreClient(
            store_group,
            change_hub,
            ClientIdentity(actor_id=actor_id, actor_name=actor_name, origin=origin),
            notifications=notifications,
            heartbeat_interval=0.05,
        )

    return _make


@pytest_asyncio.fixture
async def open_session(local_client):
    """启动一个已订阅的 SyncSession，测试结束时统一停止"""
    sessions: list[SyncSession] = []
    config = ClientConfig(
        locale="en",
        reconnect_min_s=0.01,
        reconnect_max_s=0.05,
        stall_timeout_s=1.0,
    )

    async def _open(actor_id: str, actor_name: str, origin: str) -> SyncSession:
        store = local_client(actor_id, actor_name, origin)
        session = SyncSession(store, store.identity, config=config)
        sessions.append(session)
        await session.start()
        await wait_until(lambda: session.is_fresh)
        return session

    yield _open

    for session in sessions:
        await session.stop()


@pytest.fixture
def until():
    return wait_until


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """轮询直到条件成立"""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)
