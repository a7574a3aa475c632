"""BulkCoordinator -- 批量操作（整批成功或整批回滚）

对选中的全部任务做快照并一次性乐观应用，每个任务独立发起一次写入并一起等待。
任一写入失败即恢复整批快照，只给出一条汇总提示；已在服务端成功的写入会由
实时事件在随后带回。
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable

import structlog
from fieldsync.core.errors import BulkWriteError
from fieldsync.core.models import TaskPriority

from .board import BoardState, GroupBy, LocalChange, PatchTask, RemoveTask, ReplaceLead
from .pipeline import MutationPipeline, MutationResult
from .transport import TaskStoreClient

log = structlog.get_logger()


class Selection:
    """批量选择集（保持选择顺序）"""

    def __init__(self, task_ids: Iterable[str] = ()) -> None:
        self._ids: dict[str, None] = dict.fromkeys(task_ids)

    @property
    def ids(self) -> list[str]:
        return list(self._ids)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def toggle(self, task_id: str) -> bool:
        """切换单个任务，返回切换后是否选中"""
        if task_id in self._ids:
            del self._ids[task_id]
            return False
        self._ids[task_id] = None
        return True

    def select_column(
        self, board: BoardState, column: str, group_by: GroupBy | None = None
    ) -> None:
        for task in board.column_tasks(column, group_by):
            self._ids.setdefault(task.id, None)

    def deselect_column(
        self, board: BoardState, column: str, group_by: GroupBy | None = None
    ) -> None:
        for task in board.column_tasks(column, group_by):
            self._ids.pop(task.id, None)

    def clear(self) -> None:
        self._ids.clear()


class BulkCoordinator:
    """批量操作协调器"""

    def __init__(
        self,
        board: BoardState,
        pipeline: MutationPipeline,
        store: TaskStoreClient,
        selection: Selection | None = None,
    ) -> None:
        self._board = board
        self._pipeline = pipeline
        self._store = store
        self.selection = selection or Selection()

    async def reassign(self, driver_id: str) -> MutationResult:
        """把选中任务的 lead 全部换成 driver_id"""
        return await self._run(
            name="bulk_reassign",
            field="lead",
            change=lambda task_id: ReplaceLead(task_id, driver_id),
            write=lambda task_id: self._store.reassign_lead(task_id, driver_id),
            key="bulk_reassign",
        )

    async def change_priority(self, priority: TaskPriority) -> MutationResult:
        priority = TaskPriority(priority)
        return await self._run(
            name="bulk_priority",
            field="priority",
            change=lambda task_id: PatchTask(task_id, {"priority": priority}),
            write=lambda task_id: self._store.update_task(task_id, {"priority": priority}),
            key="bulk_priority",
        )

    async def delete(self) -> MutationResult:
        """批量软删除，成功后清空选择"""
        return await self._run(
            name="bulk_delete",
            field="deleted_at",
            change=RemoveTask,
            write=self._store.soft_delete_task,
            key="bulk_delete",
            clear_on_success=True,
        )

    async def _run(
        self,
        name: str,
        field: str,
        change: Callable[[str], LocalChange],
        write: Callable[[str], Awaitable[object]],
        key: str,
        clear_on_success: bool = False,
    ) -> MutationResult:
        task_ids = [t for t in self.selection.ids if self._board.get_task(t) is not None]
        if not task_ids:
            log.debug("bulk_skipped_empty_selection", operation=name)
            return MutationResult(ok=True, value=0)

        async def send() -> int:
            results = await asyncio.gather(
                *(write(task_id) for task_id in task_ids),
                return_exceptions=True,
            )
            failed = {
                task_id: result
                for task_id, result in zip(task_ids, results, strict=True)
                if isinstance(result, Exception)
            }
            if failed:
                log.error(
                    "bulk_write_failed",
                    operation=name,
                    failed_ids=sorted(failed),
                    total=len(task_ids),
                )
                raise BulkWriteError(failed, total=len(task_ids))
            return len(task_ids)

        result = await self._pipeline.run(
            name=name,
            task_ids=task_ids,
            fields=[field],
            changes=[change(task_id) for task_id in task_ids],
            send=send,
            failure_key=f"{key}_failed",
            success_key=f"{key}_ok",
            success_params={"count": len(task_ids)},
        )
        if result.ok and clear_on_success:
            self.selection.clear()
        log.info("bulk_operation_finished", operation=name, ok=result.ok, count=len(task_ids))
        return result
