"""Reconciler -- 实时对账循环

订阅回调只负责把事件放进 inbox，由唯一的对账循环按到达顺序取出并合并，
所有状态修改都发生在这一个循环里。
远端写入覆盖了本客户端窗口期内的乐观修改时，产生冲突提示，但服务端状态仍然生效。
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from fieldsync.core.models import (
    ChangeEvent,
    ChangeOperation,
    Collection,
    Task,
    TaskAssignee,
)
from fieldsync.core.projection import MergeOutcome, is_placeholder
from ulid import ULID

from .board import BoardState
from .conflicts import ConflictIndicators, RecentMutations

log = structlog.get_logger()

_STATE_CHANGING = (MergeOutcome.INSERTED, MergeOutcome.UPDATED, MergeOutcome.REMOVED)


class Reconciler:
    """变更事件对账器"""

    def __init__(
        self,
        board: BoardState,
        conflicts: ConflictIndicators,
        recent: RecentMutations,
        origin: str,
        busy_task_ids: Callable[[], set[str]] | None = None,
    ) -> None:
        """
        Args:
            board: 看板状态
            conflicts: 冲突提示集合
            recent: 本客户端最近乐观修改记录
            origin: 本客户端会话 ID，用于识别自己发起的写入
            busy_task_ids: 返回当前有写入在途的任务 ID 集合的函数（全量同步时跳过这些任务）
        """
        self._board = board
        self._conflicts = conflicts
        self._recent = recent
        self.origin = origin
        self._busy_task_ids = busy_task_ids or (lambda: set())
        self._inbox: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self.applied_count = 0

    @property
    def pending(self) -> int:
        return self._inbox.qsize()

    def submit(self, event: ChangeEvent) -> None:
        """订阅回调入口：只入队，不修改状态"""
        self._inbox.put_nowait(event)

    async def run(self) -> None:
        """对账循环：逐个取出事件并合并，直到被取消"""
        while True:
            event = await self._inbox.get()
            try:
                self.apply(event)
            except Exception:
                # 单个坏事件不能拖垮整个视图
                log.exception(
                    "change_event_apply_failed",
                    event_id=event.event_id,
                    collection=event.collection,
                )
            finally:
                self._inbox.task_done()

    async def drain(self) -> int:
        """处理 inbox 中已有的全部事件，返回处理数量"""
        count = 0
        while not self._inbox.empty():
            event = self._inbox.get_nowait()
            try:
                self.apply(event)
            except Exception:
                log.exception("change_event_apply_failed", event_id=event.event_id)
            finally:
                self._inbox.task_done()
            count += 1
        await asyncio.sleep(0)
        return count

    def apply(self, event: ChangeEvent) -> MergeOutcome:
        """合并单个事件，必要时产生冲突提示"""
        task_id = event.task_id
        overridden = (
            task_id is not None
            and event.origin != self.origin
            and self._recent.touched_within(task_id)
        )

        outcome = self._board.merge(event)
        self.applied_count += 1

        if overridden and outcome in _STATE_CHANGING:
            self._conflicts.raise_for(task_id, by=event.actor_name, at=event.ts)

        log.debug(
            "change_event_applied",
            event_id=event.event_id,
            collection=event.collection,
            operation=event.operation,
            outcome=outcome,
        )
        return outcome

    def resync(self, tasks: list[Task], assignees: list[TaskAssignee]) -> None:
        """用全量数据对齐本地状态（重连成功后调用）

        走与实时事件相同的幂等合并路径；有写入在途的任务保持乐观状态不动。
        """
        busy = set(self._busy_task_ids())
        now = datetime.now(UTC)
        fresh_task_ids = {t.id for t in tasks}
        fresh_assignee_ids = {a.id for a in assignees}

        for task_id in self._board.task_ids():
            if task_id not in fresh_task_ids and task_id not in busy:
                self._board.merge(
                    self._synthetic(
                        Collection.TASKS,
                        ChangeOperation.DELETE,
                        {"id": task_id},
                        now,
                    )
                )

        for task in reversed(tasks):
            if task.id in busy:
                continue
            self._board.merge(
                self._synthetic(
                    Collection.TASKS,
                    ChangeOperation.UPDATE,
                    task.model_dump(mode="json"),
                    now,
                )
            )

        for assignee in self._board.all_assignees():
            if (
                assignee.id not in fresh_assignee_ids
                and not is_placeholder(assignee.id)
                and assignee.task_id not in busy
            ):
                self._board.merge(
                    self._synthetic(
                        Collection.TASK_ASSIGNEES,
                        ChangeOperation.DELETE,
                        {"id": assignee.id, "task_id": assignee.task_id},
                        now,
                    )
                )

        for assignee in assignees:
            if assignee.task_id in busy:
                continue
            self._board.merge(
                self._synthetic(
                    Collection.TASK_ASSIGNEES,
                    ChangeOperation.UPDATE,
                    assignee.model_dump(mode="json"),
                    now,
                )
            )

        log.info("board_resynced", task_count=len(tasks), skipped_busy=len(busy))

    def _synthetic(
        self,
        collection: Collection,
        operation: ChangeOperation,
        record: dict,
        now: datetime,
    ) -> ChangeEvent:
        return ChangeEvent(
            event_id=str(ULID()),
            collection=collection,
            operation=operation,
            record=record,
            ts=now,
            origin=self.origin,
        )
