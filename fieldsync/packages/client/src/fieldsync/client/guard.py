"""StatusGuard -- 状态流转守卫

按 (任务分类, 目标状态) 查一次前置流程表：
- 无前置流程：直接交给乐观变更管线
- 清单 / 弹窗：打开 ChecklistSession，提交成功持久化后才发出状态调用
- 多步骤完成表单：打开 CompletionFormSession，凭证和签名写入后才发出状态调用

Guard 本身从不修改任务状态。
"""

from dataclasses import dataclass
from typing import Any

import structlog
from fieldsync.core.errors import (
    ChecklistValidationError,
    FieldSyncError,
    TaskNotFoundError,
    WorkflowClosedError,
    WorkflowLockedError,
    WorkflowPersistenceError,
    WorkflowSkipNotAllowedError,
)
from fieldsync.core.models import (
    EvidenceKind,
    EvidenceSummary,
    Task,
    TaskStatus,
    WorkflowKind,
    WorkflowVariant,
)
from fieldsync.core.workflows import validate_checklist, workflow_for

from .board import BoardState, PatchTask
from .notices import Notifier, translate
from .pipeline import MutationPipeline, MutationResult
from .transport import TaskStoreClient, WorkflowClient

log = structlog.get_logger()


class StatusGuard:
    """状态流转守卫"""

    def __init__(
        self,
        board: BoardState,
        pipeline: MutationPipeline,
        store: TaskStoreClient,
        workflow: WorkflowClient,
        notifier: Notifier,
        actor_id: str | None = None,
    ) -> None:
        self._board = board
        self._pipeline = pipeline
        self._store = store
        self.workflow = workflow
        self.notifier = notifier
        self.actor_id = actor_id

    def plan(self, task: Task, target: TaskStatus) -> WorkflowVariant:
        """查询流转前需要完成的前置流程"""
        return workflow_for(task.type, target)

    async def request_transition(
        self, task_id: str, target: TaskStatus
    ) -> "MutationResult | WorkflowSession":
        """请求状态流转

        Returns:
            无前置流程时返回 MutationResult；否则返回待用户完成的流程会话
        """
        target = TaskStatus(target)
        task = self._board.get_task(task_id)
        if task is None:
            return MutationResult(ok=False, error=TaskNotFoundError(task_id))

        variant = self.plan(task, target)
        if variant.is_direct:
            return await self.transition(task_id, target)

        log.info(
            "workflow_opened",
            task_id=task_id,
            task_type=task.type,
            target_status=target,
            workflow=variant.kind,
        )
        if variant.kind == WorkflowKind.COMPLETION_FORM:
            summary = await self._load_summary(task_id)
            return CompletionFormSession(self, task_id, target, variant, summary)
        return ChecklistSession(self, task_id, target, variant)

    async def transition(
        self,
        task_id: str,
        target: TaskStatus,
        extra_fields: dict[str, Any] | None = None,
    ) -> MutationResult:
        """经乐观管线发出受保护的状态调用"""
        target = TaskStatus(target)
        return await self._pipeline.run(
            name="status_change",
            task_ids=[task_id],
            fields=["status"],
            changes=[PatchTask(task_id, {"status": target, **(extra_fields or {})})],
            send=lambda: self._store.update_task_status(
                task_id, target, self.actor_id, extra_fields
            ),
            failure_key="task_update_failed",
            success_key="task_completed" if target == TaskStatus.COMPLETED else "task_updated",
        )

    async def _load_summary(self, task_id: str) -> EvidenceSummary:
        try:
            return await self.workflow.evidence_summary(task_id)
        except FieldSyncError as e:
            # 查不到已有凭证时按"没有凭证"处理，只影响可否跳过
            log.warning("evidence_summary_unavailable", task_id=task_id, error=e.message)
            return EvidenceSummary(task_id=task_id)


class WorkflowSession:
    """前置流程会话基类"""

    def __init__(
        self,
        guard: StatusGuard,
        task_id: str,
        target: TaskStatus,
        variant: WorkflowVariant,
    ) -> None:
        self._guard = guard
        self.task_id = task_id
        self.target = target
        self.variant = variant
        self.persist_error: WorkflowPersistenceError | None = None
        self.persisted = False
        self.closed = False
        self.result: MutationResult | None = None

    @property
    def kind(self) -> WorkflowKind:
        return self.variant.kind

    @property
    def can_cancel(self) -> bool:
        """强制流程只有在持久化失败或载荷已保存后才能关闭"""
        if self.closed:
            return True
        return (
            not self.variant.force_completion
            or self.persist_error is not None
            or self.persisted
        )

    def cancel(self) -> None:
        if not self.can_cancel:
            raise WorkflowLockedError(self.task_id)
        self.closed = True
        log.info("workflow_cancelled", task_id=self.task_id, workflow=self.kind)

    async def can_skip(self) -> bool:
        if not self.variant.skippable_with_evidence:
            return False
        summary = await self._guard.workflow.evidence_summary(self.task_id)
        return summary.has_photos

    async def skip(self) -> MutationResult:
        """已有照片凭证时跳过流程，直接发出状态调用"""
        self._ensure_open()
        if not self.variant.skippable_with_evidence:
            raise WorkflowSkipNotAllowedError(f"Workflow {self.kind} cannot be skipped")
        if not await self.can_skip():
            raise WorkflowSkipNotAllowedError(
                f"Task {self.task_id} has no captured photos to skip with"
            )
        log.info("workflow_skipped", task_id=self.task_id, workflow=self.kind)
        return await self._finish()

    def _ensure_open(self) -> None:
        if self.closed:
            raise WorkflowClosedError(self.task_id)

    def _required_message(self) -> str:
        return translate("checklist_required", self._guard.notifier.locale)

    async def _persist(self, step: str, call) -> Any:
        """执行一步持久化；失败时记录在会话上并允许关闭"""
        try:
            return await call()
        except Exception as e:
            self.persist_error = WorkflowPersistenceError(self.task_id, step, e)
            log.error(
                "workflow_persist_failed",
                task_id=self.task_id,
                workflow=self.kind,
                step=step,
                error_type=type(e).__name__,
            )
            raise self.persist_error from e

    def _persist_failed(self, error: WorkflowPersistenceError) -> MutationResult:
        notice = self._guard.notifier.error("workflow_persist_failed", task_ids=[self.task_id])
        self.result = MutationResult(ok=False, error=error, notice=notice)
        return self.result

    async def _finish(self, extra_fields: dict[str, Any] | None = None) -> MutationResult:
        self.result = await self._guard.transition(self.task_id, self.target, extra_fields)
        if self.result.ok:
            self.closed = True
        return self.result


class ChecklistSession(WorkflowSession):
    """开始清单 / 完成清单 / 完成弹窗"""

    @property
    def fields(self):
        return self.variant.fields

    def validate(self, values: dict[str, Any]) -> dict[str, str]:
        return validate_checklist(self.fields, values, self._required_message())

    async def submit(
        self,
        values: dict[str, Any],
        gps_location: dict[str, float] | None = None,
    ) -> MutationResult:
        """校验 -> 持久化提交记录 -> 状态调用

        Raises:
            WorkflowClosedError: 会话已取消或已完成
            ChecklistValidationError: 必填项缺失（不发出任何写入）
        """
        self._ensure_open()
        errors = self.validate(values)
        if errors:
            raise ChecklistValidationError(errors)

        try:
            await self._persist(
                self.kind.value,
                lambda: self._guard.workflow.submit_checklist(
                    self.task_id, self.kind, values, self._guard.actor_id, gps_location
                ),
            )
        except WorkflowPersistenceError as e:
            return self._persist_failed(e)

        self.persisted = True
        self.persist_error = None
        log.info("workflow_submitted", task_id=self.task_id, workflow=self.kind)
        return await self._finish()


@dataclass
class _Capture:
    kind: EvidenceKind
    content: bytes
    content_type: str
    storage_ref: str | None = None


class CompletionFormSession(WorkflowSession):
    """多步骤完成表单：确认清单 -> 车辆照片 -> 驾照照片 -> 签名

    采集内容先暂存在会话里，提交时按顺序上传；已上传的不会重复上传，
    所以持久化失败后可以直接再次提交。已有凭证可以满足对应步骤。
    """

    def __init__(
        self,
        guard: StatusGuard,
        task_id: str,
        target: TaskStatus,
        variant: WorkflowVariant,
        summary: EvidenceSummary,
    ) -> None:
        super().__init__(guard, task_id, target, variant)
        self.summary = summary
        self.pre_checklist_values: dict[str, Any] | None = None
        self.signed_by_name: str | None = None
        self._captures: list[_Capture] = []
        self._signature_recorded = False

    @property
    def pre_checklist(self):
        return self.variant.pre_checklist

    def confirm_pre_checklist(self, values: dict[str, Any]) -> None:
        errors = validate_checklist(self.pre_checklist, values, self._required_message())
        if errors:
            raise ChecklistValidationError(errors)
        self.pre_checklist_values = dict(values)

    def add_car_photo(self, content: bytes, content_type: str = "image/jpeg") -> None:
        self._captures.append(_Capture(EvidenceKind.CAR_PHOTO, content, content_type))

    def add_license_photo(self, content: bytes, content_type: str = "image/jpeg") -> None:
        self._captures.append(_Capture(EvidenceKind.LICENSE_PHOTO, content, content_type))

    def add_signature(
        self,
        content: bytes,
        signed_by_name: str | None = None,
        content_type: str = "image/png",
    ) -> None:
        self._captures = [c for c in self._captures if c.kind != EvidenceKind.SIGNATURE]
        self._captures.append(_Capture(EvidenceKind.SIGNATURE, content, content_type))
        self.signed_by_name = signed_by_name
        self._signature_recorded = False

    def captured(self, kind: EvidenceKind) -> int:
        return sum(1 for c in self._captures if c.kind == kind)

    def missing_steps(self) -> dict[str, str]:
        """尚未满足的步骤 {step: 错误信息}"""
        form = self.variant.form
        message = self._required_message()
        missing: dict[str, str] = {}
        if self.pre_checklist and self.pre_checklist_values is None:
            missing["pre_checklist"] = message
        if form is None:
            return missing
        car_photos = self.captured(EvidenceKind.CAR_PHOTO) + self.summary.car_photos
        if car_photos < form.min_car_photos:
            missing[EvidenceKind.CAR_PHOTO.value] = message
        if form.require_license_photo and not (
            self.captured(EvidenceKind.LICENSE_PHOTO) or self.summary.license_photos
        ):
            missing[EvidenceKind.LICENSE_PHOTO.value] = message
        if form.require_signature and not (
            self.captured(EvidenceKind.SIGNATURE) or self.summary.signatures
        ):
            missing[EvidenceKind.SIGNATURE.value] = message
        return missing

    async def skip_to_completion(self) -> MutationResult:
        return await self.skip()

    async def submit(self) -> MutationResult:
        """上传凭证 -> 写签名记录 -> 写表单记录 -> 状态调用"""
        self._ensure_open()
        missing = self.missing_steps()
        if missing:
            raise ChecklistValidationError(missing)

        workflow = self._guard.workflow
        try:
            for capture in self._captures:
                if capture.storage_ref is None:
                    capture.storage_ref = await self._persist(
                        capture.kind.value,
                        lambda c=capture: workflow.upload_evidence(
                            self.task_id, c.kind, c.content, c.content_type
                        ),
                    )

            signature = next(
                (c for c in self._captures if c.kind == EvidenceKind.SIGNATURE), None
            )
            if signature is not None and not self._signature_recorded:
                await self._persist(
                    "signature_record",
                    lambda: workflow.record_signature(
                        self.task_id,
                        self._guard.actor_id,
                        signature.storage_ref,
                        self.signed_by_name,
                    ),
                )
                self._signature_recorded = True

            if not self.persisted:
                await self._persist(
                    self.kind.value,
                    lambda: workflow.submit_checklist(
                        self.task_id,
                        self.kind,
                        self._form_values(),
                        self._guard.actor_id,
                    ),
                )
        except WorkflowPersistenceError as e:
            return self._persist_failed(e)

        self.persisted = True
        self.persist_error = None
        log.info(
            "completion_form_submitted",
            task_id=self.task_id,
            uploads=len(self._captures),
        )
        return await self._finish()

    def _form_values(self) -> dict[str, Any]:
        values: dict[str, Any] = dict(self.pre_checklist_values or {})
        values["car_photos"] = [
            c.storage_ref for c in self._captures if c.kind == EvidenceKind.CAR_PHOTO
        ]
        for kind in (EvidenceKind.LICENSE_PHOTO, EvidenceKind.SIGNATURE):
            refs = [c.storage_ref for c in self._captures if c.kind == kind]
            if refs:
                values[kind.value] = refs[-1]
        if self.signed_by_name:
            values["signed_by_name"] = self.signed_by_name
        return values
