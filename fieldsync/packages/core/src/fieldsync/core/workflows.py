"""任务分类 -> 前置流程查表

每个 (分类, 目标状态) 组合至多对应一个 WorkflowVariant。
未登记的组合返回 NONE（直接流转）。
"""

from .models.enums import TaskStatus, TaskType
from .models.workflow import (
    ChecklistField,
    CompletionFormSpec,
    WorkflowKind,
    WorkflowVariant,
)


def _check(field_id: str, title: str) -> ChecklistField:
    return ChecklistField(id=field_id, type="boolean", title=title, required=True)


DIRECT = WorkflowVariant(kind=WorkflowKind.NONE, force_completion=False)

START_CHECKLISTS: dict[TaskType, list[ChecklistField]] = {
    TaskType.LICENCE_TEST: [
        _check("test_invitation", "Did you take the test invitation?"),
        _check("car_license", "Did you take the vehicle licence?"),
        _check("client_id", "Did you take the client's ID (two IDs for two owners)?"),
        _check("client_power_of_attorney", "Did you take the client's power of attorney?"),
        _check("vehicle_insurance", "Did you take the compulsory insurance?"),
    ],
    TaskType.VEHICLE_PICKUP: [
        _check("client_quote", "Is there a price quote from the client?"),
        _check("transport_form", "Is there a transport form from the system?"),
    ],
    TaskType.VEHICLE_PICKUP_WITH_TEST: [
        _check("has_order", "Do you have the order?"),
    ],
    TaskType.VEHICLE_PICKUP_WITH_MOBILITY_TEST: [
        _check("new_vehicle_license", "Do you have the new vehicle licence?"),
        _check("has_insurance", "Is there insurance?"),
        _check("union_power_of_attorney", "Is there a union power of attorney?"),
    ],
    TaskType.VEHICLE_RETURN: [
        _check("invoice", "Is there an invoice?"),
        _check("postcard_gift", "Are the postcard and gift in the car?"),
        _check("vehicle_clean", "Is the vehicle washed and clean?"),
    ],
    TaskType.MOBILITY_VEHICLE_RETURN: [
        _check("mobility_maintenance_form", "Is there a mobility maintenance form?"),
    ],
    TaskType.REPLACEMENT_CAR_DELIVERY: [
        _check("signed_at_desk", "Did you sign for the car at the desk?"),
    ],
}

COMPLETION_VARIANTS: dict[TaskType, WorkflowVariant] = {
    TaskType.VEHICLE_PICKUP: WorkflowVariant(
        kind=WorkflowKind.COMPLETION_CHECKLIST,
        fields=[
            _check("signed_quote", "Is there a quote signed by the client?"),
            _check("vehicle_insurance", "Is the vehicle insured?"),
            _check("vehicle_photo", "Is there a photo of the vehicle at the garage?"),
        ],
        skippable_with_evidence=True,
    ),
    TaskType.VEHICLE_PICKUP_WITH_TEST: WorkflowVariant(
        kind=WorkflowKind.COMPLETION_CHECKLIST,
        fields=[
            _check("new_vehicle_license_paid", "Is there a paid new vehicle licence?"),
            _check("vehicle_photo_km", "Is there a photo of the vehicle including km?"),
            _check("client_id_card", "Is there the client's ID card?"),
        ],
    ),
    TaskType.VEHICLE_PICKUP_WITH_MOBILITY_TEST: WorkflowVariant(
        kind=WorkflowKind.COMPLETION_FORM,
        form=CompletionFormSpec(
            min_car_photos=0,
            require_license_photo=False,
            require_signature=False,
        ),
    ),
    TaskType.REPLACEMENT_CAR_DELIVERY: WorkflowVariant(
        kind=WorkflowKind.COMPLETION_FORM,
        pre_checklist=[
            _check("delivery_form", "Is there a vehicle delivery form?"),
        ],
        form=CompletionFormSpec(
            min_car_photos=1,
            require_license_photo=True,
            require_signature=True,
        ),
        skippable_with_evidence=True,
    ),
    TaskType.LICENCE_TEST: WorkflowVariant(
        kind=WorkflowKind.COMPLETION_POPUP,
        fields=[
            _check("signed_test_form", "Is there a signed test form?"),
            ChecklistField(id="test_result", type="string", title="Test result"),
            ChecklistField(id="notes", type="textarea", title="Notes", required=False),
        ],
    ),
}


def workflow_for(task_type: TaskType | str, target_status: TaskStatus | str) -> WorkflowVariant:
    """查询流转到目标状态前需要完成的前置流程

    Args:
        task_type: 任务分类
        target_status: 目标状态

    Returns:
        对应的 WorkflowVariant；无前置流程时 kind 为 NONE
    """
    try:
        task_type = TaskType(task_type)
        target_status = TaskStatus(target_status)
    except ValueError:
        return DIRECT

    if target_status == TaskStatus.IN_PROGRESS:
        fields = START_CHECKLISTS.get(task_type)
        if fields:
            return WorkflowVariant(kind=WorkflowKind.START_CHECKLIST, fields=fields)
        return DIRECT

    if target_status == TaskStatus.COMPLETED:
        return COMPLETION_VARIANTS.get(task_type, DIRECT)

    return DIRECT


def validate_checklist(
    fields: list[ChecklistField],
    values: dict,
    required_message: str = "required",
) -> dict[str, str]:
    """校验清单取值，返回 {field_id: 错误信息}

    必填布尔项必须为 True，必填文本项去空白后不能为空。
    """
    errors: dict[str, str] = {}
    for field in fields:
        if not field.required:
            continue
        value = values.get(field.id)
        if field.type == "boolean":
            if value is not True:
                errors[field.id] = required_message
        elif not isinstance(value, str) or not value.strip():
            errors[field.id] = required_message
    return errors
