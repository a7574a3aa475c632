"""FieldSync 异常体系

所有领域异常继承 FieldSyncError，携带稳定的 code（用于 HTTP 错误体和本地化提示）
以及 recoverable 标记。
"""


class FieldSyncError(Exception):
    """FieldSync 基础异常"""

    code: str = "WRITE_FAILED"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        recoverable: bool = True,
    ) -> None:
        """
        Args:
            message: 错误描述
            code: 错误码（默认取类属性）
            recoverable: 用户是否可以通过重复操作恢复
        """
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.recoverable = recoverable


class TaskNotFoundError(FieldSyncError):
    """任务不存在或已被软删除"""

    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id {task_id} does not exist")
        self.task_id = task_id


class InvalidStatusFlowError(FieldSyncError):
    """受保护流转被拒绝：进入 completed 前任务必须处于 in_progress"""

    code = "INVALID_STATUS_FLOW"

    def __init__(self, task_id: str, current_status: str, target_status: str) -> None:
        super().__init__(
            f"Task {task_id} cannot move from {current_status} to {target_status}"
        )
        self.task_id = task_id
        self.current_status = current_status
        self.target_status = target_status


class PayloadValidationError(FieldSyncError):
    """写入载荷不合法（未知字段、类型错误等）"""

    code = "VALIDATION_FAILED"


class StoreWriteError(FieldSyncError):
    """存储写入失败（网络 / 服务端错误），在传输层边界统一转换"""

    code = "WRITE_FAILED"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, recoverable=True)
        self.status_code = status_code
        self.original_error = original_error


class MutationInFlightError(FieldSyncError):
    """同一任务同一字段已有未完成的写入"""

    code = "MUTATION_IN_FLIGHT"

    def __init__(self, task_id: str, field: str) -> None:
        super().__init__(f"A {field} change for task {task_id} is still in flight")
        self.task_id = task_id
        self.field = field


class BulkWriteError(FieldSyncError):
    """批量操作中至少一项写入失败"""

    code = "BULK_WRITE_FAILED"

    def __init__(self, failed: dict[str, Exception], total: int) -> None:
        super().__init__(f"{len(failed)} of {total} writes failed")
        self.failed = failed
        self.total = total


class WorkflowPersistenceError(FieldSyncError):
    """前置流程载荷持久化失败，状态调用不会发出"""

    code = "WORKFLOW_PERSIST_FAILED"

    def __init__(self, task_id: str, step: str, original_error: Exception) -> None:
        super().__init__(f"Failed to persist {step} for task {task_id}: {original_error}")
        self.task_id = task_id
        self.step = step
        self.original_error = original_error


class ChecklistValidationError(FieldSyncError):
    """清单必填项缺失"""

    code = "CHECKLIST_INCOMPLETE"

    def __init__(self, field_errors: dict[str, str]) -> None:
        super().__init__(f"Checklist incomplete: {', '.join(sorted(field_errors))}")
        self.field_errors = field_errors


class WorkflowLockedError(FieldSyncError):
    """强制流程在提交成功前不能关闭"""

    code = "WORKFLOW_LOCKED"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Workflow for task {task_id} must be submitted before closing")
        self.task_id = task_id


class WorkflowClosedError(FieldSyncError):
    """流程会话已关闭（已取消或已完成），不再接受提交"""

    code = "WORKFLOW_CLOSED"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Workflow for task {task_id} is already closed")
        self.task_id = task_id


class WorkflowSkipNotAllowedError(FieldSyncError):
    """流程不可跳过（分类不允许或凭证不足）"""

    code = "WORKFLOW_SKIP_NOT_ALLOWED"


class SubscriptionDroppedError(FieldSyncError):
    """变更订阅断开或停滞，仅用于触发重连，不向用户展示"""

    code = "SUBSCRIPTION_DROPPED"
