"""SyncSession -- 单个看板实例的同步引擎装配

持有唯一的 BoardState，把管线、守卫、批量协调器、对账器和订阅管理器
接到同一个状态对象上，对外暴露界面操作入口。
"""

import asyncio
import time
from typing import Any

import structlog
from fieldsync.core.errors import FieldSyncError, PayloadValidationError, TaskNotFoundError
from fieldsync.core.models import EDITABLE_FIELDS, TaskAssignee, TaskStatus

from .board import (
    UNASSIGNED_COLUMN,
    BoardState,
    GroupBy,
    InsertTask,
    PatchTask,
    RemoveTask,
    ReplaceLead,
    placeholder_id,
)
from .bulk import BulkCoordinator
from .config import ClientConfig
from .conflicts import Clock, ConflictIndicators, RecentMutations
from .guard import StatusGuard, WorkflowSession
from .notices import Notifier, translate
from .pipeline import MutationPipeline, MutationResult
from .reconciler import Reconciler
from .subscription import SubscriptionManager
from .transport import ClientIdentity, TaskStoreClient, WorkflowClient

log = structlog.get_logger()


class SyncSession:
    """看板同步会话"""

    def __init__(
        self,
        store: TaskStoreClient,
        identity: ClientIdentity,
        workflow: WorkflowClient | None = None,
        config: ClientConfig | None = None,
        group_by: GroupBy = GroupBy.STATUS,
        clock: Clock = time.monotonic,
    ) -> None:
        """
        Args:
            store: 任务存储客户端
            identity: 本客户端身份（origin 用于识别自己发起的写入）
            workflow: 前置流程客户端，默认与 store 相同
            config: 客户端配置
            group_by: 看板分组方式
            clock: 单调时钟（冲突窗口与提示过期）
        """
        self.config = config or ClientConfig()
        self.identity = identity
        self.store = store

        self.board = BoardState(group_by)
        self.notifier = Notifier(self.config.locale)
        self.recent = RecentMutations(self.config.conflict_window_s, clock)
        self.conflicts = ConflictIndicators(clock=clock)
        self.pipeline = MutationPipeline(self.board, self.notifier, self.recent)
        self.reconciler = Reconciler(
            self.board,
            self.conflicts,
            self.recent,
            origin=identity.origin,
            busy_task_ids=self.pipeline.busy_task_ids,
        )
        self.guard = StatusGuard(
            self.board,
            self.pipeline,
            store,
            workflow or store,
            self.notifier,
            actor_id=identity.actor_id,
        )
        self.bulk = BulkCoordinator(self.board, self.pipeline, store)
        self.subscription = SubscriptionManager(
            store,
            self.reconciler,
            min_backoff_s=self.config.reconnect_min_s,
            max_backoff_s=self.config.reconnect_max_s,
            stall_timeout_s=self.config.stall_timeout_s,
        )
        self._background: list[asyncio.Task] = []

    # ---- 生命周期 ----

    async def load(self) -> None:
        """全量加载看板"""
        tasks, assignees = await self.store.load_board()
        self.reconciler.resync(tasks, assignees)

    async def start(self) -> None:
        """启动对账循环和订阅（订阅成功后会自动全量同步）"""
        if self._background:
            return
        self._background = [
            asyncio.create_task(self.reconciler.run(), name="fieldsync-reconciler"),
            asyncio.create_task(self.subscription.run(), name="fieldsync-subscription"),
        ]
        log.info("sync_session_started", origin=self.identity.origin)

    async def stop(self) -> None:
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background = []
        self.conflicts.close()
        log.info("sync_session_stopped", origin=self.identity.origin)

    async def __aenter__(self) -> "SyncSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    @property
    def is_fresh(self) -> bool:
        return self.subscription.is_fresh

    def conflict_label(self, task_id: str) -> str | None:
        """冲突提示的显示名，None 表示没有有效提示"""
        indicator = self.conflicts.get(task_id)
        if indicator is None:
            return None
        return indicator.by or translate("updated_by_server", self.notifier.locale)

    # ---- 界面操作 ----

    async def drop(self, task_id: str, column: str) -> MutationResult | WorkflowSession | None:
        """拖放任务到某一列

        放回原列、或在司机看板放到"未分配"列时不发出任何写入，返回 None。
        """
        current = self.board.column_of(task_id)
        if current is None:
            return MutationResult(ok=False, error=TaskNotFoundError(task_id))
        if column == current:
            log.debug("drop_noop_same_column", task_id=task_id, column=column)
            return None

        if self.board.group_by == GroupBy.STATUS:
            return await self.guard.request_transition(task_id, TaskStatus(column))

        if column == UNASSIGNED_COLUMN:
            log.debug("drop_noop_unassigned", task_id=task_id)
            return None
        return await self.reassign(task_id, column)

    async def change_status(
        self, task_id: str, status: TaskStatus
    ) -> MutationResult | WorkflowSession:
        return await self.guard.request_transition(task_id, status)

    async def edit_task(self, task_id: str, fields: dict[str, Any]) -> MutationResult:
        """行内编辑若干字段"""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise PayloadValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
        return await self.pipeline.run(
            name="edit_task",
            task_ids=[task_id],
            fields=fields.keys(),
            changes=[PatchTask(task_id, dict(fields))],
            send=lambda: self.store.update_task(task_id, fields),
            failure_key="task_update_failed",
            success_key="task_updated",
        )

    async def reassign(self, task_id: str, driver_id: str) -> MutationResult:
        """替换任务 lead"""
        return await self.pipeline.run(
            name="reassign_lead",
            task_ids=[task_id],
            fields=["lead"],
            changes=[ReplaceLead(task_id, driver_id)],
            send=lambda: self.store.reassign_lead(task_id, driver_id),
            failure_key="driver_assign_failed",
            success_key="driver_assigned",
        )

    async def delete_task(self, task_id: str) -> MutationResult:
        """软删除单个任务"""
        return await self.pipeline.run(
            name="delete_task",
            task_ids=[task_id],
            fields=["deleted_at"],
            changes=[RemoveTask(task_id)],
            send=lambda: self.store.soft_delete_task(task_id),
            failure_key="task_delete_failed",
            success_key="task_deleted",
        )

    async def create_task(
        self,
        fields: dict[str, Any],
        lead_driver_id: str | None = None,
        co_driver_ids: list[str] | None = None,
    ) -> MutationResult:
        """创建任务

        不走乐观路径：服务端返回后才插入看板，指派先用占位记录，
        等实时事件带回真实记录后替换。
        """
        try:
            task = await self.store.create_task(fields, lead_driver_id, co_driver_ids)
        except FieldSyncError as e:
            log.warning("task_create_failed", code=e.code, error=e.message)
            notice = self.notifier.error("task_create_failed")
            return MutationResult(ok=False, error=e, notice=notice)

        known = {a.driver_id for a in self.board.assignees_for(task.id)}
        drivers = [(lead_driver_id, True)] if lead_driver_id else []
        drivers += [(d, False) for d in co_driver_ids or [] if d != lead_driver_id]
        placeholders = [
            TaskAssignee(
                id=placeholder_id(task.id, driver_id),
                task_id=task.id,
                driver_id=driver_id,
                is_lead=is_lead,
                assigned_at=task.created_at,
            )
            for driver_id, is_lead in drivers
            if driver_id not in known
        ]
        existing = self.board.get_task(task.id)
        if existing is None or existing.version <= task.version:
            self.board.apply(InsertTask(task, placeholders))
        notice = self.notifier.success("task_created", task_ids=[task.id])
        log.info("task_created", task_id=task.id)
        return MutationResult(ok=True, notice=notice, value=task)
