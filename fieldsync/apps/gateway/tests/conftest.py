"""apps/gateway 测试配置 -- FastAPI app + httpx AsyncClient

ASGITransport 不触发 lifespan，这里手动初始化 app.state。
"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fieldsync.core.store import create_store_group
from fieldsync.gateway.services.change_hub import ChangeHub
from fieldsync.gateway.services.notifications import RecordingNotificationSink


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def change_hub() -> ChangeHub:
    return ChangeHub()


@pytest_asyncio.fixture
async def test_app(
    tmp_path: Path,
    change_hub: ChangeHub,
    notifications: RecordingNotificationSink,
):
    os.environ["FIELDSYNC_DB_PATH"] = str(tmp_path / "test.db")
    os.environ["FIELDSYNC_EVIDENCE_DIR"] = str(tmp_path / "evidence")
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from fieldsync.gateway.main import create_app

    app = create_app(notifications=notifications)

    # 手动初始化（绕过 lifespan）
    store_group = await create_store_group(
        str(tmp_path / "test.db"),
        tmp_path / "evidence",
    )
    app.state.store_group = store_group
    app.state.change_hub = change_hub

    yield app

    await store_group.conn.close()
    for key in ["FIELDSYNC_DB_PATH", "FIELDSYNC_EVIDENCE_DIR", "LOGFIRE_SEND_TO_LOGFIRE"]:
        os.environ.pop(key, None)


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        headers={
            "X-Actor-Id": "disp-a",
            "X-Actor-Name": "Avi",
            "X-Client-Origin": "origin-a",
        },
    ) as ac:
        yield ac


@pytest.fixture
def create_task(client: AsyncClient):
    """通过 API 创建任务，返回任务 JSON"""

    async def _create(**body) -> dict:
        resp = await client.post("/api/tasks", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()["task"]

    return _create
