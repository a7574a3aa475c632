"""MutationPipeline -- 乐观变更管线

所有变更走同一流程：
1. 对受影响任务做快照
2. 本地立即应用并发送写入请求
3. 成功保留乐观状态（后续到达的确认事件是幂等的）；
   失败恢复快照、给出本地化提示、记录日志，不自动重试
同一客户端同一任务同一字段同时只允许一个写入在途。
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

import structlog
from fieldsync.core.errors import (
    FieldSyncError,
    InvalidStatusFlowError,
    MutationInFlightError,
    StoreWriteError,
)

from .board import BoardState, LocalChange
from .conflicts import RecentMutations
from .notices import Notice, Notifier

log = structlog.get_logger()


@dataclass
class MutationResult:
    """一次变更的结果"""

    ok: bool
    error: FieldSyncError | None = None
    notice: Notice | None = None
    value: Any = None


class MutationPipeline:
    """乐观变更管线"""

    def __init__(
        self,
        board: BoardState,
        notifier: Notifier,
        recent: RecentMutations | None = None,
    ) -> None:
        self._board = board
        self._notifier = notifier
        self._recent = recent or RecentMutations()
        self._inflight: set[tuple[str, str]] = set()

    @property
    def recent(self) -> RecentMutations:
        return self._recent

    def is_busy(self, task_id: str, field: str | None = None) -> bool:
        """任务（某字段）是否有写入在途 -- 界面据此禁用拖拽手柄和状态按钮"""
        if field is not None:
            return (task_id, field) in self._inflight
        return any(t == task_id for t, _ in self._inflight)

    def busy_task_ids(self) -> set[str]:
        return {task_id for task_id, _ in self._inflight}

    async def run(
        self,
        *,
        name: str,
        task_ids: Iterable[str],
        fields: Iterable[str],
        changes: Iterable[LocalChange],
        send: Callable[[], Awaitable[Any]],
        failure_key: str,
        success_key: str | None = None,
        success_params: dict[str, Any] | None = None,
    ) -> MutationResult:
        """执行一次乐观变更

        Args:
            name: 变更名称（日志用）
            task_ids: 受影响任务
            fields: 受影响字段（与 task_ids 组合成在途键）
            changes: 本地应用的变更
            send: 发起存储写入的协程函数
            failure_key: 失败提示的消息 key
            success_key: 成功提示的消息 key（None 表示不提示）
            success_params: 成功提示的格式化参数

        Returns:
            MutationResult
        """
        task_ids = list(dict.fromkeys(task_ids))
        fields = list(fields)
        keys = {(task_id, field) for task_id in task_ids for field in fields}

        busy = sorted(keys & self._inflight)
        if busy:
            error = MutationInFlightError(*busy[0])
            notice = self._notifier.info("mutation_in_flight", task_ids=task_ids)
            log.info("mutation_rejected_in_flight", mutation=name, task_id=busy[0][0])
            return MutationResult(ok=False, error=error, notice=notice)

        self._inflight |= keys
        snapshot = self._board.snapshot(task_ids)
        try:
            for change in changes:
                self._board.apply(change)
            for task_id in task_ids:
                self._recent.mark(task_id)

            try:
                value = await send()
            except FieldSyncError as e:
                self._board.restore(snapshot)
                return self._fail(name, task_ids, e, failure_key)
            except Exception as e:
                self._board.restore(snapshot)
                log.exception("mutation_unexpected_error", mutation=name, task_ids=task_ids)
                wrapped = StoreWriteError(str(e) or type(e).__name__, original_error=e)
                return self._fail(name, task_ids, wrapped, failure_key)
        finally:
            self._inflight -= keys

        notice = None
        if success_key:
            notice = self._notifier.success(
                success_key, task_ids=task_ids, **(success_params or {})
            )
        log.debug("mutation_succeeded", mutation=name, task_ids=task_ids)
        return MutationResult(ok=True, notice=notice, value=value)

    def _fail(
        self,
        name: str,
        task_ids: list[str],
        error: FieldSyncError,
        failure_key: str,
    ) -> MutationResult:
        log.warning(
            "mutation_failed_rolled_back",
            mutation=name,
            task_ids=task_ids,
            code=error.code,
            error=error.message,
        )
        key = "invalid_status_flow" if isinstance(error, InvalidStatusFlowError) else failure_key
        notice = self._notifier.error(key, task_ids=task_ids)
        return MutationResult(ok=False, error=error, notice=notice)
