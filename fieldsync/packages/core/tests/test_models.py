"""领域模型测试 -- Task / ChangeEvent / 审计差异"""

from datetime import UTC, datetime

import pytest
from fieldsync.core.models import (
    EDITABLE_FIELDS,
    ChangeEvent,
    ChangeOperation,
    Collection,
    EvidenceSummary,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    compute_diff,
)
from pydantic import ValidationError

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


class TestTaskModel:
    def test_defaults(self):
        task = Task(id="t-1", created_at=NOW, updated_at=NOW)
        assert task.status == TaskStatus.PENDING
        assert task.priority == TaskPriority.MEDIUM
        assert task.type == TaskType.OTHER
        assert task.version == 1
        assert task.deleted_at is None
        assert task.stops == []

    def test_invalid_status_rejected(self):
        with pytest.raises(ValidationError):
            Task(id="t-1", status="archived", created_at=NOW, updated_at=NOW)

    def test_json_roundtrip_keeps_enums(self):
        task = Task(
            id="t-1",
            type=TaskType.VEHICLE_RETURN,
            status=TaskStatus.BLOCKED,
            created_at=NOW,
            updated_at=NOW,
        )
        restored = Task.model_validate(task.model_dump(mode="json"))
        assert restored == task

    def test_status_not_editable(self):
        """status 只能通过受保护的流转接口修改"""
        assert "status" not in EDITABLE_FIELDS
        assert "priority" in EDITABLE_FIELDS


class TestChangeEvent:
    def test_task_id_for_tasks_collection(self):
        event = ChangeEvent(
            event_id="e-1",
            collection=Collection.TASKS,
            operation=ChangeOperation.UPDATE,
            record={"id": "t-1", "priority": "high"},
            ts=NOW,
        )
        assert event.record_id == "t-1"
        assert event.task_id == "t-1"

    def test_task_id_for_assignee_collection(self):
        event = ChangeEvent(
            event_id="e-2",
            collection=Collection.TASK_ASSIGNEES,
            operation=ChangeOperation.DELETE,
            record={"id": "a-1", "task_id": "t-1"},
            ts=NOW,
        )
        assert event.record_id == "a-1"
        assert event.task_id == "t-1"


class TestComputeDiff:
    def test_only_changed_fields(self):
        diff = compute_diff(
            {"status": "pending", "priority": "low"},
            {"status": "in_progress", "priority": "low"},
        )
        assert diff == {"status": {"from": "pending", "to": "in_progress"}}

    def test_added_and_removed_keys(self):
        diff = compute_diff({"a": 1}, {"b": 2})
        assert diff == {"a": {"from": 1, "to": None}, "b": {"from": None, "to": 2}}


class TestEvidenceSummary:
    def test_has_photos(self):
        assert not EvidenceSummary(task_id="t-1").has_photos
        assert EvidenceSummary(task_id="t-1", car_photos=2).has_photos
        # 只有驾照照片不算车辆照片
        assert not EvidenceSummary(task_id="t-1", license_photos=1).has_photos
