"""packages/client 测试配置 -- 可编排的存储替身 + 假时钟"""

import asyncio
from datetime import UTC, datetime
from typing import Any

import pytest
from fieldsync.client.board import BoardState, InsertTask
from fieldsync.client.transport import ClientIdentity
from fieldsync.core.errors import SubscriptionDroppedError, TaskNotFoundError
from fieldsync.core.models import (
    EvidenceSummary,
    Task,
    TaskAssignee,
    TaskPriority,
    TaskStatus,
    TaskType,
)

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


class FakeClock:
    """可手动推进的单调时钟"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """TaskStoreClient + WorkflowClient 替身

    - calls: 按顺序记录每次写入 (method, task_id, *args)
    - fail: {(method, task_id): 异常}，task_id 为 "*" 时匹配全部
    - gate: 设置后写入会等待 gate 被 set（模拟在途请求）
    - scripts: 每次 subscribe 取出一个脚本（事件 / None / 异常）；
      脚本耗尽后保持连接，直到 drop() 被调用
    """

    def __init__(self) -> None:
        self.tasks: dict[str, Task] = {}
        self.assignees: list[TaskAssignee] = []
        self.calls: list[tuple] = []
        self.fail: dict[tuple[str, str], Exception] = {}
        self.gate: asyncio.Event | None = None
        self.scripts: list[list[Any]] = []
        self.subscribe_count = 0
        self.load_count = 0
        self.summaries: dict[str, EvidenceSummary] = {}
        self._drop = asyncio.Event()

    def methods(self) -> list[str]:
        return [call[0] for call in self.calls]

    def drop(self) -> None:
        self._drop.set()

    async def _write(self, method: str, task_id: str, *args: Any) -> None:
        self.calls.append((method, task_id, *args))
        if self.gate is not None:
            await self.gate.wait()
        error = self.fail.get((method, task_id)) or self.fail.get((method, "*"))
        if error is not None:
            raise error

    # ---- TaskStoreClient ----

    async def load_board(self):
        self.load_count += 1
        return list(self.tasks.values()), list(self.assignees)

    async def update_task(self, task_id, fields):
        await self._write("update_task", task_id, dict(fields))
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return Task.model_validate({**task.model_dump(), **fields, "version": task.version + 1})

    async def update_task_status(self, task_id, next_status, actor_id, extra_fields=None):
        await self._write("update_task_status", task_id, next_status, actor_id, extra_fields)

    async def reassign_lead(self, task_id, driver_id):
        await self._write("reassign_lead", task_id, driver_id)

    async def create_task(self, fields, lead_driver_id=None, co_driver_ids=None):
        await self._write("create_task", "new", dict(fields), lead_driver_id, co_driver_ids)
        return Task(id="t-new", created_at=NOW, updated_at=NOW, **fields)

    async def soft_delete_task(self, task_id):
        await self._write("soft_delete_task", task_id)

    async def subscribe(self, collections):
        self.subscribe_count += 1
        self._drop.clear()
        script = self.scripts.pop(0) if self.scripts else None
        if script is None:
            raise SubscriptionDroppedError("connection refused")
        for item in script:
            if isinstance(item, Exception):
                raise item
            yield item
        await self._drop.wait()
        raise SubscriptionDroppedError("dropped")

    # ---- WorkflowClient ----

    async def submit_checklist(self, task_id, kind, values, driver_id, gps_location=None):
        await self._write("submit_checklist", task_id, kind, dict(values), driver_id, gps_location)

    async def upload_evidence(self, task_id, kind, content, content_type):
        await self._write("upload_evidence", task_id, kind, content, content_type)
        return f"{task_id}/{kind.value}/{len(self.calls)}"

    async def record_signature(self, task_id, driver_id, storage_ref, signed_by_name):
        await self._write("record_signature", task_id, driver_id, storage_ref, signed_by_name)

    async def evidence_summary(self, task_id):
        return self.summaries.get(task_id, EvidenceSummary(task_id=task_id))


def build_task(
    task_id: str,
    status: TaskStatus = TaskStatus.PENDING,
    task_type: TaskType = TaskType.OTHER,
    priority: TaskPriority = TaskPriority.MEDIUM,
    **fields: Any,
) -> Task:
    return Task(
        id=task_id,
        type=task_type,
        status=status,
        priority=priority,
        created_at=NOW,
        updated_at=NOW,
        **fields,
    )


def build_lead(task_id: str, driver_id: str, assignee_id: str | None = None) -> TaskAssignee:
    return TaskAssignee(
        id=assignee_id or f"a-{task_id}",
        task_id=task_id,
        driver_id=driver_id,
        is_lead=True,
        assigned_at=NOW,
    )


@pytest.fixture
def make_task():
    """Task 构造器"""
    return build_task


@pytest.fixture
def make_lead():
    """lead 指派记录构造器"""
    return build_lead


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def identity() -> ClientIdentity:
    return ClientIdentity(actor_id="disp-a", actor_name="Avi", origin="origin-a")


@pytest.fixture
def board() -> BoardState:
    """三个任务的看板：t-1 pending/d-1，t-2 in_progress/d-1，t-3 blocked/d-2"""
    board = BoardState()
    seed = [
        (build_task("t-3", TaskStatus.BLOCKED), build_lead("t-3", "d-2")),
        (build_task("t-2", TaskStatus.IN_PROGRESS), build_lead("t-2", "d-1")),
        (build_task("t-1", TaskStatus.PENDING), build_lead("t-1", "d-1")),
    ]
    for task, lead in seed:
        board.apply(InsertTask(task, [lead]))
    return board
