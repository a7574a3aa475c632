"""TaskService -- 任务写入 / 查询业务逻辑

每个被接受的写入：
1. 在任务级锁内执行存储事务（写入 + 审计同一事务提交）
2. 构建 ChangeEvent（带操作者显示名和发起客户端 origin）并广播到 ChangeHub
3. 必要时向通知协作方发出 NotificationIntent
"""

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import structlog
from fieldsync.core.config import EVIDENCE_MAX_BYTES
from fieldsync.core.errors import PayloadValidationError, TaskNotFoundError
from fieldsync.core.models import (
    EDITABLE_FIELDS,
    Actor,
    ActorRole,
    AuditAction,
    AuditRecord,
    ChangeEvent,
    ChangeOperation,
    ChecklistSubmission,
    Collection,
    Evidence,
    EvidenceKind,
    EvidenceSummary,
    NotificationIntent,
    NotificationType,
    Signature,
    Task,
    TaskAssignee,
    TaskStatus,
    WorkflowKind,
)
from fieldsync.core.store import (
    StoreGroup,
    append_side_record,
    create_task_with_assignees,
    replace_lead,
    soft_delete_task,
    transition_status,
    update_task_fields,
)
from pydantic import BaseModel, Field, ValidationError
from ulid import ULID

from .change_hub import ChangeHub
from .notifications import NotificationSink

log = structlog.get_logger()


class RequestActor(BaseModel):
    """发起请求的操作者（来自请求头）"""

    actor_id: str | None = Field(default=None)
    actor_name: str | None = Field(default=None)
    role: ActorRole = Field(default=ActorRole.DISPATCHER)
    origin: str | None = Field(default=None, description="发起写入的客户端会话 ID")


class TaskService:
    """任务业务服务"""

    _task_locks: dict[str, asyncio.Lock] = {}
    _task_locks_guard = asyncio.Lock()

    def __init__(
        self,
        store_group: StoreGroup,
        change_hub: ChangeHub | None = None,
        notifications: NotificationSink | None = None,
        actor: RequestActor | None = None,
    ) -> None:
        self._stores = store_group
        self._hub = change_hub
        self._notifications = notifications
        self._actor = actor or RequestActor()

    # ---- 查询 ----

    async def load_board(self) -> tuple[list[Task], list[TaskAssignee]]:
        """全量加载未删除任务和指派记录"""
        tasks = await self._stores.task_store.list_tasks()
        assignees = await self._stores.assignee_store.list_active()
        return tasks, assignees

    async def get_task(self, task_id: str) -> Task:
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def list_audit(
        self, task_id: str, limit: int = 50, offset: int = 0
    ) -> list[tuple[AuditRecord, Actor | None]]:
        """审计记录（倒序）及操作者信息"""
        records = await self._stores.audit_store.list_for_task(task_id, limit, offset)
        actors: dict[str, Actor | None] = {}
        for record in records:
            if record.actor_id and record.actor_id not in actors:
                actors[record.actor_id] = await self._stores.actor_store.get(record.actor_id)
        return [(r, actors.get(r.actor_id) if r.actor_id else None) for r in records]

    async def evidence_summary(self, task_id: str) -> EvidenceSummary:
        await self.get_task(task_id)
        return await self._stores.evidence_store.summary(task_id)

    async def vehicle_conflicts(
        self,
        vehicle_id: str,
        estimated_start: datetime,
        estimated_end: datetime,
        exclude_task_id: str | None = None,
    ) -> list[Task]:
        """同一车辆同一天时间段重叠的未完成任务"""
        if estimated_end <= estimated_start:
            raise PayloadValidationError("estimated_end must be after estimated_start")
        return await self._stores.task_store.find_vehicle_overlaps(
            vehicle_id, estimated_start, estimated_end, exclude_task_id
        )

    # ---- 写入 ----

    async def create_task(
        self,
        fields: dict[str, Any],
        lead_driver_id: str | None = None,
        co_driver_ids: Iterable[str] = (),
    ) -> Task:
        """创建任务及其指派记录"""
        self._check_editable(fields)
        now = datetime.now(UTC)
        try:
            task = Task.model_validate(
                {
                    **fields,
                    "id": str(ULID()),
                    "status": TaskStatus.PENDING,
                    "created_by": self._actor.actor_id,
                    "updated_by": self._actor.actor_id,
                    "created_at": now,
                    "updated_at": now,
                }
            )
        except ValidationError as e:
            raise PayloadValidationError(_validation_message(e)) from e

        assignees = []
        if lead_driver_id:
            assignees.append(self._new_assignee(task.id, lead_driver_id, True, now))
        for driver_id in dict.fromkeys(co_driver_ids):
            if driver_id != lead_driver_id:
                assignees.append(self._new_assignee(task.id, driver_id, False, now))

        await self._remember_actor()
        await create_task_with_assignees(
            self._stores.conn,
            self._stores.task_store,
            self._stores.assignee_store,
            self._stores.audit_store,
            task,
            assignees,
        )
        log.info("task_created", task_id=task.id, assignee_count=len(assignees))

        await self._publish(Collection.TASKS, ChangeOperation.INSERT, task, now)
        for assignee in assignees:
            await self._publish(Collection.TASK_ASSIGNEES, ChangeOperation.INSERT, assignee, now)
        await self._notify(
            NotificationType.TASK_ASSIGNED,
            task.id,
            [a.driver_id for a in assignees],
            {"type": task.type.value},
        )
        return task

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> Task:
        """部分字段更新（last-write-wins）"""
        self._check_editable(fields)
        if not fields:
            raise PayloadValidationError("No fields to update")

        async with await self._get_task_lock(task_id):
            current = await self.get_task(task_id)
            normalized = self._normalize(current, fields)
            now = datetime.now(UTC)
            await self._remember_actor()
            _, after = await update_task_fields(
                self._stores.conn,
                self._stores.task_store,
                self._stores.audit_store,
                task_id,
                normalized,
                self._actor.actor_id,
                now,
            )

        log.info("task_updated", task_id=task_id, fields=sorted(fields), version=after.version)
        await self._publish(Collection.TASKS, ChangeOperation.UPDATE, after, now)
        assignees = await self._stores.assignee_store.list_for_task(task_id)
        await self._notify(
            NotificationType.TASK_UPDATED,
            task_id,
            [a.driver_id for a in assignees],
            {"fields": sorted(fields)},
        )
        return after

    async def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        actor_id: str | None = None,
        extra_fields: dict[str, Any] | None = None,
    ) -> Task:
        """受保护的状态流转

        Raises:
            InvalidStatusFlowError: 进入 completed 时存储中的状态不是 in_progress
        """
        extra_fields = extra_fields or {}
        self._check_editable(extra_fields)
        actor_id = actor_id or self._actor.actor_id

        async with await self._get_task_lock(task_id):
            current = await self.get_task(task_id)
            normalized = self._normalize(current, extra_fields) if extra_fields else None
            now = datetime.now(UTC)
            await self._remember_actor()
            before, after = await transition_status(
                self._stores.conn,
                self._stores.task_store,
                self._stores.audit_store,
                task_id,
                TaskStatus(status),
                actor_id,
                now,
                normalized,
            )

        log.info(
            "task_status_changed",
            task_id=task_id,
            from_status=before.status,
            to_status=after.status,
        )
        await self._publish(Collection.TASKS, ChangeOperation.UPDATE, after, now, actor_id)
        return after

    async def reassign_lead(self, task_id: str, driver_id: str) -> TaskAssignee:
        """替换任务 lead"""
        if not driver_id:
            raise PayloadValidationError("driver_id is required")

        async with await self._get_task_lock(task_id):
            now = datetime.now(UTC)
            await self._remember_actor()
            removed, lead, task_after = await replace_lead(
                self._stores.conn,
                self._stores.task_store,
                self._stores.assignee_store,
                self._stores.audit_store,
                task_id,
                driver_id,
                self._actor.actor_id,
                now,
            )

        log.info(
            "task_lead_replaced",
            task_id=task_id,
            driver_id=driver_id,
            removed=[a.driver_id for a in removed],
        )
        for old in removed:
            await self._publish(
                Collection.TASK_ASSIGNEES,
                ChangeOperation.DELETE,
                {"id": old.id, "task_id": old.task_id},
                now,
            )
        await self._publish(Collection.TASK_ASSIGNEES, ChangeOperation.INSERT, lead, now)
        await self._publish(Collection.TASKS, ChangeOperation.UPDATE, task_after, now)
        await self._notify(
            NotificationType.TASK_ASSIGNED,
            task_id,
            [driver_id],
            {"is_lead": True},
        )
        return lead

    async def soft_delete(self, task_id: str) -> Task:
        """软删除（事件以 update 形式携带 deleted_at）"""
        async with await self._get_task_lock(task_id):
            now = datetime.now(UTC)
            await self._remember_actor()
            deleted = await soft_delete_task(
                self._stores.conn,
                self._stores.task_store,
                self._stores.audit_store,
                task_id,
                self._actor.actor_id,
                now,
            )

        await self._cleanup_task_lock(task_id)
        log.info("task_soft_deleted", task_id=task_id)
        await self._publish(Collection.TASKS, ChangeOperation.UPDATE, deleted, now)
        return deleted

    # ---- 前置流程附属记录 ----

    async def submit_form(
        self,
        task_id: str,
        kind: WorkflowKind,
        values: dict[str, Any],
        driver_id: str | None = None,
        gps_location: dict[str, float] | None = None,
    ) -> ChecklistSubmission:
        """写入清单 / 表单 / 弹窗提交"""
        await self.get_task(task_id)
        now = datetime.now(UTC)
        submission = ChecklistSubmission(
            id=str(ULID()),
            task_id=task_id,
            kind=kind,
            values=values,
            driver_id=driver_id or self._actor.actor_id,
            gps_location=gps_location,
            submitted_at=now,
        )
        await append_side_record(
            self._stores.conn,
            self._stores.audit_store,
            task_id,
            AuditAction.FORM_SUBMITTED,
            submission.driver_id,
            now,
            lambda: self._stores.workflow_store.add_submission(submission),
            {"kind": submission.kind.value, "form_id": submission.id},
        )
        log.info("task_form_submitted", task_id=task_id, kind=kind)
        return submission

    async def add_evidence(
        self,
        task_id: str,
        kind: EvidenceKind,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> Evidence:
        """写入凭证文件"""
        if not content:
            raise PayloadValidationError("Evidence content is empty")
        if len(content) > EVIDENCE_MAX_BYTES:
            raise PayloadValidationError(
                f"Evidence exceeds {EVIDENCE_MAX_BYTES} bytes ({len(content)})"
            )
        await self.get_task(task_id)
        now = datetime.now(UTC)
        evidence = Evidence(
            id=str(ULID()),
            task_id=task_id,
            kind=kind,
            content_type=content_type,
            created_at=now,
        )
        stored: list[Evidence] = []

        async def write() -> None:
            stored.append(await self._stores.evidence_store.put_evidence(evidence, content))

        await append_side_record(
            self._stores.conn,
            self._stores.audit_store,
            task_id,
            AuditAction.EVIDENCE_ADDED,
            self._actor.actor_id,
            now,
            write,
            {"kind": evidence.kind.value, "evidence_id": evidence.id, "size": len(content)},
        )
        log.info("task_evidence_added", task_id=task_id, kind=kind, size=len(content))
        return stored[0]

    async def add_signature(
        self,
        task_id: str,
        signature_url: str,
        driver_id: str | None = None,
        signed_by_name: str | None = None,
    ) -> Signature:
        """写入签名记录"""
        if not signature_url:
            raise PayloadValidationError("signature_url is required")
        await self.get_task(task_id)
        now = datetime.now(UTC)
        signature = Signature(
            id=str(ULID()),
            task_id=task_id,
            driver_id=driver_id or self._actor.actor_id,
            signature_url=signature_url,
            signed_by_name=signed_by_name,
            signed_at=now,
        )
        await append_side_record(
            self._stores.conn,
            self._stores.audit_store,
            task_id,
            AuditAction.SIGNATURE_ADDED,
            signature.driver_id,
            now,
            lambda: self._stores.workflow_store.add_signature(signature),
            {"signature_id": signature.id, "signed_by_name": signed_by_name},
        )
        log.info("task_signature_added", task_id=task_id)
        return signature

    # ---- 内部 ----

    @staticmethod
    def _check_editable(fields: dict[str, Any]) -> None:
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise PayloadValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

    @staticmethod
    def _normalize(current: Task, fields: dict[str, Any]) -> dict[str, Any]:
        """按 Task 模型校验并规范化待写入字段"""
        try:
            merged = Task.model_validate({**current.model_dump(), **fields})
        except ValidationError as e:
            raise PayloadValidationError(_validation_message(e)) from e
        return {key: getattr(merged, key) for key in fields}

    @staticmethod
    def _new_assignee(task_id: str, driver_id: str, is_lead: bool, now: datetime) -> TaskAssignee:
        return TaskAssignee(
            id=str(ULID()),
            task_id=task_id,
            driver_id=driver_id,
            is_lead=is_lead,
            assigned_at=now,
        )

    async def _remember_actor(self) -> None:
        """记录操作者显示名，供事件和审计展示"""
        if not self._actor.actor_id:
            return
        await self._stores.actor_store.upsert(
            Actor(
                id=self._actor.actor_id,
                display_name=self._actor.actor_name or "",
                role=self._actor.role,
            )
        )
        await self._stores.conn.commit()

    async def _actor_name(self, actor_id: str | None) -> str | None:
        if actor_id is None:
            return None
        if actor_id == self._actor.actor_id and self._actor.actor_name:
            return self._actor.actor_name
        actor = await self._stores.actor_store.get(actor_id)
        if actor is None or not actor.display_name:
            return actor_id
        return actor.display_name

    async def _publish(
        self,
        collection: Collection,
        operation: ChangeOperation,
        record: BaseModel | dict[str, Any],
        ts: datetime,
        actor_id: str | None = None,
    ) -> None:
        if self._hub is None:
            return
        actor_id = actor_id or self._actor.actor_id
        if actor_id is None:
            # 请求未带操作者时，取该任务最近的审计操作者
            task_id = _record_task_id(collection, record)
            if task_id is not None:
                actor_id = await self._stores.audit_store.latest_actor(task_id)
        event = ChangeEvent(
            event_id=str(ULID()),
            collection=collection,
            operation=operation,
            record=record.model_dump(mode="json") if isinstance(record, BaseModel) else record,
            ts=ts,
            actor_id=actor_id,
            actor_name=await self._actor_name(actor_id),
            origin=self._actor.origin,
        )
        delivered = await self._hub.broadcast(event)
        log.debug(
            "change_event_published",
            collection=collection,
            operation=operation,
            record_id=event.record_id,
            delivered=delivered,
        )

    async def _notify(
        self,
        event_type: NotificationType,
        task_id: str,
        recipients: list[str],
        payload: dict[str, Any],
    ) -> None:
        if self._notifications is None or not recipients:
            return
        intent = NotificationIntent(
            event_type=event_type,
            task_id=task_id,
            recipients=recipients,
            payload=payload,
        )
        try:
            await self._notifications.emit(intent)
        except Exception:
            # 通知失败不影响已提交的写入
            log.exception("notification_emit_failed", task_id=task_id, event_type=event_type)

    @classmethod
    async def _get_task_lock(cls, task_id: str) -> asyncio.Lock:
        """获取 task 级别锁，序列化同一任务的写入。"""
        async with cls._task_locks_guard:
            lock = cls._task_locks.get(task_id)
            if lock is None:
                lock = asyncio.Lock()
                cls._task_locks[task_id] = lock
            return lock

    @classmethod
    async def _cleanup_task_lock(cls, task_id: str) -> None:
        """任务删除后清理 lock，避免全局字典无限增长。"""
        async with cls._task_locks_guard:
            lock = cls._task_locks.get(task_id)
            if lock is not None and not lock.locked():
                cls._task_locks.pop(task_id, None)


def _validation_message(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in error.errors()
    )


def _record_task_id(collection: Collection, record: BaseModel | dict[str, Any]) -> str | None:
    data = record.model_dump() if isinstance(record, BaseModel) else record
    if collection == Collection.TASKS:
        return data.get("id")
    return data.get("task_id")
