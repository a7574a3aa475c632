"""枚举定义

包含 TaskStatus 状态机、TaskType 任务分类、TaskPriority、AuditAction、ActorRole，
以及 LIFECYCLE_TRANSITIONS 生命周期流转映射和服务端守卫规则。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"


class TaskPriority(StrEnum):
    """任务优先级"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskType(StrEnum):
    """任务分类 -- 决定开始 / 完成时需要的前置流程"""

    VEHICLE_PICKUP = "vehicle_pickup"
    VEHICLE_PICKUP_WITH_TEST = "vehicle_pickup_with_test"
    VEHICLE_PICKUP_WITH_MOBILITY_TEST = "vehicle_pickup_with_mobility_test"
    VEHICLE_RETURN = "vehicle_return"
    MOBILITY_VEHICLE_RETURN = "mobility_vehicle_return"
    REPLACEMENT_CAR_DELIVERY = "replacement_car_delivery"
    CLIENT_RIDE_HOME = "client_ride_home"
    CLIENT_RIDE_TO_GARAGE = "client_ride_to_garage"
    LICENCE_TEST = "licence_test"
    VEHICLE_RESCUE = "vehicle_rescue"
    OTHER = "other"


class AuditAction(StrEnum):
    """审计动作类型"""

    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    DELETED = "deleted"
    FORM_SUBMITTED = "form_submitted"
    EVIDENCE_ADDED = "evidence_added"
    SIGNATURE_ADDED = "signature_added"


class ActorRole(StrEnum):
    """操作者角色"""

    DISPATCHER = "dispatcher"
    DRIVER = "driver"
    SYSTEM = "system"


# 完整生命周期图（客户端展示用，服务端只强制 completed 的前置条件）
LIFECYCLE_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.BLOCKED},
    TaskStatus.BLOCKED: {TaskStatus.IN_PROGRESS},
    TaskStatus.COMPLETED: set(),
}

# 进入 completed 前存储中必须处于的状态
COMPLETION_PRECONDITION: TaskStatus = TaskStatus.IN_PROGRESS


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否被存储层接受

    只有进入 completed 受约束：当前状态必须为 in_progress。
    其余流转一律放行。

    Args:
        from_status: 当前存储中的状态
        to_status: 目标状态

    Returns:
        True 如果存储层会接受该流转
    """
    if to_status == TaskStatus.COMPLETED:
        return from_status == COMPLETION_PRECONDITION
    return True


def is_lifecycle_step(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """判断是否为生命周期图中的标准一步（用于界面提示）"""
    return to_status in LIFECYCLE_TRANSITIONS.get(from_status, set())
