"""FieldSync Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .audit import Actor, AuditRecord, compute_diff
from .change import ChangeEvent, ChangeOperation, Collection
from .enums import (
    COMPLETION_PRECONDITION,
    LIFECYCLE_TRANSITIONS,
    ActorRole,
    AuditAction,
    TaskPriority,
    TaskStatus,
    TaskType,
    is_lifecycle_step,
    validate_transition,
)
from .notification import NotificationIntent, NotificationType
from .task import EDITABLE_FIELDS, Task, TaskAssignee, TaskStop
from .workflow import (
    ChecklistField,
    ChecklistSubmission,
    CompletionFormSpec,
    Evidence,
    EvidenceKind,
    EvidenceSummary,
    Signature,
    WorkflowKind,
    WorkflowVariant,
)

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskPriority",
    "TaskType",
    "AuditAction",
    "ActorRole",
    # 状态机
    "LIFECYCLE_TRANSITIONS",
    "COMPLETION_PRECONDITION",
    "validate_transition",
    "is_lifecycle_step",
    # Task
    "Task",
    "TaskStop",
    "TaskAssignee",
    "EDITABLE_FIELDS",
    # Audit
    "AuditRecord",
    "Actor",
    "compute_diff",
    # Change
    "ChangeEvent",
    "ChangeOperation",
    "Collection",
    # Workflow
    "WorkflowKind",
    "WorkflowVariant",
    "ChecklistField",
    "CompletionFormSpec",
    "ChecklistSubmission",
    "Evidence",
    "EvidenceKind",
    "EvidenceSummary",
    "Signature",
    # Notification
    "NotificationIntent",
    "NotificationType",
]
