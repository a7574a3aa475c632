"""FieldSync Client -- 看板同步引擎

乐观变更管线、状态守卫、实时对账与批量操作，共享同一个 BoardState。
"""

from .board import UNASSIGNED_COLUMN, BoardState, GroupBy
from .bulk import BulkCoordinator, Selection
from .config import ClientConfig, load_client_config
from .conflicts import ConflictIndicator, ConflictIndicators, RecentMutations
from .guard import ChecklistSession, CompletionFormSession, StatusGuard, WorkflowSession
from .notices import Notice, NoticeLevel, Notifier
from .pipeline import MutationPipeline, MutationResult
from .reconciler import Reconciler
from .session import SyncSession
from .subscription import SubscriptionManager, SubscriptionState
from .transport import ClientIdentity, HttpStoreClient, TaskStoreClient, WorkflowClient

__all__ = [
    "UNASSIGNED_COLUMN",
    "BoardState",
    "BulkCoordinator",
    "ChecklistSession",
    "ClientConfig",
    "ClientIdentity",
    "CompletionFormSession",
    "ConflictIndicator",
    "ConflictIndicators",
    "GroupBy",
    "HttpStoreClient",
    "MutationPipeline",
    "MutationResult",
    "Notice",
    "NoticeLevel",
    "Notifier",
    "Reconciler",
    "RecentMutations",
    "Selection",
    "StatusGuard",
    "SubscriptionManager",
    "SubscriptionState",
    "SyncSession",
    "TaskStoreClient",
    "WorkflowClient",
    "WorkflowSession",
    "load_client_config",
]
