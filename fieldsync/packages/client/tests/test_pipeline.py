"""乐观变更管线测试

- 本地立即应用，成功后保留
- 失败时逐字段恢复快照，只给一条错误提示，不自动重试
- 同一任务同一字段同时只允许一个写入在途
"""

import asyncio

import pytest
from fieldsync.client.board import BoardState, PatchTask
from fieldsync.client.notices import NoticeLevel, Notifier
from fieldsync.client.pipeline import MutationPipeline
from fieldsync.core.errors import (
    InvalidStatusFlowError,
    MutationInFlightError,
    StoreWriteError,
)
from fieldsync.core.models import (
    ChangeEvent,
    ChangeOperation,
    Collection,
    TaskPriority,
    TaskStatus,
)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier("en")


@pytest.fixture
def pipeline(board: BoardState, notifier: Notifier) -> MutationPipeline:
    return MutationPipeline(board, notifier)


def _priority_change(pipeline, task_id, priority, send):
    return pipeline.run(
        name="edit_task",
        task_ids=[task_id],
        fields=["priority"],
        changes=[PatchTask(task_id, {"priority": priority})],
        send=send,
        failure_key="task_update_failed",
        success_key="task_updated",
    )


class TestOptimisticApply:
    async def test_applied_before_send_returns(self, board, pipeline):
        seen_during_send = []

        async def send():
            seen_during_send.append(board.get_task("t-1").priority)
            return "ok"

        result = await _priority_change(pipeline, "t-1", TaskPriority.HIGH, send)

        assert seen_during_send == [TaskPriority.HIGH]
        assert result.ok
        assert result.value == "ok"
        assert result.notice.level == NoticeLevel.SUCCESS
        assert board.get_task("t-1").priority == TaskPriority.HIGH

    async def test_success_marks_recent_mutation(self, pipeline):
        async def send():
            return None

        await _priority_change(pipeline, "t-1", TaskPriority.LOW, send)
        assert pipeline.recent.touched_within("t-1")


class TestRollback:
    async def test_failure_restores_exact_snapshot(self, board, pipeline, notifier):
        before = board.get_task("t-1").model_copy(deep=True)

        async def send():
            raise StoreWriteError("timeout", status_code=504)

        result = await _priority_change(pipeline, "t-1", TaskPriority.HIGH, send)

        assert not result.ok
        assert isinstance(result.error, StoreWriteError)
        assert board.get_task("t-1") == before
        errors = [n for n in notifier.history if n.level == NoticeLevel.ERROR]
        assert len(errors) == 1
        assert errors[0].key == "task_update_failed"

    async def test_not_retried(self, pipeline):
        attempts = []

        async def send():
            attempts.append(1)
            raise StoreWriteError("boom")

        await _priority_change(pipeline, "t-1", TaskPriority.HIGH, send)
        assert len(attempts) == 1

    async def test_unexpected_error_is_wrapped(self, board, pipeline):
        async def send():
            raise ConnectionResetError("reset by peer")

        result = await _priority_change(pipeline, "t-1", TaskPriority.HIGH, send)
        assert isinstance(result.error, StoreWriteError)
        assert isinstance(result.error.original_error, ConnectionResetError)
        assert board.get_task("t-1").priority == TaskPriority.MEDIUM

    async def test_invalid_status_flow_has_own_message(self, board, pipeline, notifier):
        async def send():
            raise InvalidStatusFlowError("t-1", "pending", "completed")

        result = await pipeline.run(
            name="status_change",
            task_ids=["t-1"],
            fields=["status"],
            changes=[PatchTask("t-1", {"status": TaskStatus.COMPLETED})],
            send=send,
            failure_key="task_update_failed",
        )
        assert not result.ok
        assert board.get_task("t-1").status == TaskStatus.PENDING
        assert notifier.last.key == "invalid_status_flow"

    async def test_newer_server_version_survives_rollback(self, board, pipeline, make_task):
        """写入在途时合并了别人的更新，失败回滚不能把它盖掉"""
        gate = asyncio.Event()

        async def send():
            await gate.wait()
            raise StoreWriteError("HTTP 500")

        pending = asyncio.create_task(
            _priority_change(pipeline, "t-1", TaskPriority.HIGH, send)
        )
        await asyncio.sleep(0)
        assert board.get_task("t-1").priority == TaskPriority.HIGH

        board.merge(
            ChangeEvent(
                event_id="e-remote",
                collection=Collection.TASKS,
                operation=ChangeOperation.UPDATE,
                record={"id": "t-1", "priority": "low", "version": 2},
                ts=make_task("t-1").updated_at,
            )
        )
        gate.set()
        result = await pending

        assert not result.ok
        assert board.get_task("t-1").priority == TaskPriority.LOW
        assert board.get_task("t-1").version == 2


class TestInFlight:
    async def test_second_gesture_rejected_while_in_flight(self, board, pipeline):
        gate = asyncio.Event()

        async def slow_send():
            await gate.wait()

        first = asyncio.create_task(
            _priority_change(pipeline, "t-1", TaskPriority.HIGH, slow_send)
        )
        await asyncio.sleep(0)
        assert pipeline.is_busy("t-1")
        assert pipeline.is_busy("t-1", "priority")
        assert not pipeline.is_busy("t-1", "status")
        assert pipeline.busy_task_ids() == {"t-1"}

        async def fast_send():
            return None

        second = await _priority_change(pipeline, "t-1", TaskPriority.LOW, fast_send)
        assert not second.ok
        assert isinstance(second.error, MutationInFlightError)
        assert second.notice.key == "mutation_in_flight"
        # 被拒绝的操作不改变本地状态
        assert board.get_task("t-1").priority == TaskPriority.HIGH

        gate.set()
        assert (await first).ok
        assert not pipeline.is_busy("t-1")

    async def test_other_field_not_blocked(self, pipeline):
        gate = asyncio.Event()

        async def slow_send():
            await gate.wait()

        first = asyncio.create_task(
            _priority_change(pipeline, "t-1", TaskPriority.HIGH, slow_send)
        )
        await asyncio.sleep(0)

        async def send():
            return None

        result = await pipeline.run(
            name="status_change",
            task_ids=["t-1"],
            fields=["status"],
            changes=[PatchTask("t-1", {"status": TaskStatus.IN_PROGRESS})],
            send=send,
            failure_key="task_update_failed",
        )
        assert result.ok
        gate.set()
        await first

    async def test_in_flight_released_after_failure(self, pipeline):
        async def failing():
            raise StoreWriteError("boom")

        await _priority_change(pipeline, "t-1", TaskPriority.HIGH, failing)
        assert not pipeline.is_busy("t-1")
