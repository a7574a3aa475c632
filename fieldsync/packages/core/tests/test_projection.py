"""Projection 合并测试

- 按 id 合并、逐字段 last-value-wins
- 重复应用同一事件结果不变
- 低版本事件被丢弃
- 软删除事件移除任务及其指派记录
- 服务端确认的指派替换本地占位记录
"""

from datetime import UTC, datetime, timedelta

from fieldsync.core.models import (
    ChangeEvent,
    ChangeOperation,
    Collection,
    Task,
    TaskAssignee,
    TaskPriority,
    TaskStatus,
)
from fieldsync.core.projection import (
    PLACEHOLDER_PREFIX,
    MergeOutcome,
    RemovedIds,
    apply_change,
    is_placeholder,
    replay,
)

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


def _task(task_id: str = "t-1", **fields) -> Task:
    return Task(id=task_id, created_at=NOW, updated_at=NOW, **fields)


def _event(
    record: dict,
    operation: ChangeOperation = ChangeOperation.UPDATE,
    collection: Collection = Collection.TASKS,
    event_id: str = "e-1",
) -> ChangeEvent:
    return ChangeEvent(
        event_id=event_id,
        collection=collection,
        operation=operation,
        record=record,
        ts=NOW,
    )


def _assignee(assignee_id: str, driver_id: str, is_lead: bool = True) -> TaskAssignee:
    return TaskAssignee(
        id=assignee_id,
        task_id="t-1",
        driver_id=driver_id,
        is_lead=is_lead,
        assigned_at=NOW,
    )


class TestTaskMerge:
    def test_insert_new_task(self):
        tasks: dict = {}
        record = _task().model_dump(mode="json")
        outcome = apply_change(tasks, {}, _event(record, ChangeOperation.INSERT))
        assert outcome == MergeOutcome.INSERTED
        assert tasks["t-1"].status == TaskStatus.PENDING

    def test_insert_existing_is_ignored(self):
        tasks = {"t-1": _task(priority=TaskPriority.HIGH)}
        record = _task(priority=TaskPriority.LOW).model_dump(mode="json")
        outcome = apply_change(tasks, {}, _event(record, ChangeOperation.INSERT))
        assert outcome == MergeOutcome.IGNORED
        assert tasks["t-1"].priority == TaskPriority.HIGH

    def test_partial_update_merges_fields(self):
        tasks = {"t-1": _task(details="keep me")}
        outcome = apply_change(
            tasks, {}, _event({"id": "t-1", "priority": "high", "version": 2})
        )
        assert outcome == MergeOutcome.UPDATED
        assert tasks["t-1"].priority == TaskPriority.HIGH
        assert tasks["t-1"].details == "keep me"
        assert tasks["t-1"].version == 2

    def test_same_event_twice_is_idempotent(self):
        tasks = {"t-1": _task()}
        event = _event({"id": "t-1", "status": "in_progress", "version": 2})
        apply_change(tasks, {}, event)
        first = tasks["t-1"]
        apply_change(tasks, {}, event)
        assert tasks["t-1"] == first

    def test_lower_version_is_stale(self):
        tasks = {"t-1": _task(priority=TaskPriority.LOW, version=5)}
        outcome = apply_change(
            tasks, {}, _event({"id": "t-1", "priority": "high", "version": 4})
        )
        assert outcome == MergeOutcome.STALE
        assert tasks["t-1"].priority == TaskPriority.LOW

    def test_partial_update_without_baseline_ignored(self):
        tasks: dict = {}
        outcome = apply_change(tasks, {}, _event({"id": "t-9", "priority": "high"}))
        assert outcome == MergeOutcome.IGNORED
        assert tasks == {}

    def test_event_without_id_ignored(self):
        assert apply_change({}, {}, _event({"priority": "high"})) == MergeOutcome.IGNORED

    def test_soft_delete_removes_task_and_assignees(self):
        tasks = {"t-1": _task(), "t-2": _task("t-2")}
        assignees = {"a-1": _assignee("a-1", "d-1")}
        outcome = apply_change(
            tasks,
            assignees,
            _event({"id": "t-1", "deleted_at": NOW.isoformat(), "version": 2}),
        )
        assert outcome == MergeOutcome.REMOVED
        assert "t-1" not in tasks
        assert "t-2" in tasks
        assert assignees == {}

    def test_deleted_insert_for_unknown_task_ignored(self):
        tasks: dict = {}
        record = _task(deleted_at=NOW).model_dump(mode="json")
        outcome = apply_change(tasks, {}, _event(record))
        assert outcome == MergeOutcome.IGNORED
        assert tasks == {}

    def test_delete_operation(self):
        tasks = {"t-1": _task()}
        outcome = apply_change(
            tasks, {}, _event({"id": "t-1"}, ChangeOperation.DELETE)
        )
        assert outcome == MergeOutcome.REMOVED
        # 再次删除无影响
        assert (
            apply_change(tasks, {}, _event({"id": "t-1"}, ChangeOperation.DELETE))
            == MergeOutcome.IGNORED
        )


class TestAssigneeMerge:
    def test_server_lead_replaces_placeholder_lead(self):
        placeholder_id = f"{PLACEHOLDER_PREFIX}abc"
        assignees = {placeholder_id: _assignee(placeholder_id, "d-2")}
        record = _assignee("a-9", "d-2").model_dump(mode="json")
        outcome = apply_change(
            {},
            assignees,
            _event(record, ChangeOperation.INSERT, Collection.TASK_ASSIGNEES),
        )
        assert outcome == MergeOutcome.INSERTED
        assert list(assignees) == ["a-9"]

    def test_co_driver_placeholder_replaced_only_for_same_driver(self):
        p1 = f"{PLACEHOLDER_PREFIX}1"
        p2 = f"{PLACEHOLDER_PREFIX}2"
        assignees = {
            p1: _assignee(p1, "d-1", is_lead=False),
            p2: _assignee(p2, "d-2", is_lead=False),
        }
        record = _assignee("a-1", "d-1", is_lead=False).model_dump(mode="json")
        apply_change(
            {},
            assignees,
            _event(record, ChangeOperation.INSERT, Collection.TASK_ASSIGNEES),
        )
        assert set(assignees) == {p2, "a-1"}

    def test_assignee_delete(self):
        assignees = {"a-1": _assignee("a-1", "d-1")}
        outcome = apply_change(
            {},
            assignees,
            _event(
                {"id": "a-1", "task_id": "t-1"},
                ChangeOperation.DELETE,
                Collection.TASK_ASSIGNEES,
            ),
        )
        assert outcome == MergeOutcome.REMOVED
        assert assignees == {}

    def test_is_placeholder(self):
        assert is_placeholder(f"{PLACEHOLDER_PREFIX}x")
        assert not is_placeholder("01JASSIGNEE")


class TestLeadUniqueness:
    """重复投递 / 乱序到达的指派事件不能让任务出现两条 lead"""

    @staticmethod
    def _lead(assignee_id: str, driver_id: str, minute: int) -> dict:
        return TaskAssignee(
            id=assignee_id,
            task_id="t-2",
            driver_id=driver_id,
            is_lead=True,
            assigned_at=NOW + timedelta(minutes=minute),
        ).model_dump(mode="json")

    @staticmethod
    def _insert(record: dict) -> ChangeEvent:
        return _event(record, ChangeOperation.INSERT, Collection.TASK_ASSIGNEES, record["id"])

    @staticmethod
    def _delete(assignee_id: str) -> ChangeEvent:
        return _event(
            {"id": assignee_id, "task_id": "t-2"},
            ChangeOperation.DELETE,
            Collection.TASK_ASSIGNEES,
            f"del-{assignee_id}",
        )

    @staticmethod
    def _leads(assignees: dict) -> list[str]:
        return [a.driver_id for a in assignees.values() if a.task_id == "t-2" and a.is_lead]

    def test_redelivered_insert_after_reassigns(self):
        events = [
            self._insert(self._lead("l-0", "d0", 0)),
            self._delete("l-0"),
            self._insert(self._lead("l-x", "dx", 1)),
            self._delete("l-x"),
            self._insert(self._lead("l-y", "dy", 2)),
            # 迟到的重复投递
            self._insert(self._lead("l-x", "dx", 1)),
        ]
        _, assignees = replay(events)
        assert self._leads(assignees) == ["dy"]

    def test_newer_lead_replaces_older_without_delete(self):
        assignees: dict = {}
        removed = RemovedIds()
        apply_change({}, assignees, self._insert(self._lead("l-x", "dx", 1)), removed)
        outcome = apply_change({}, assignees, self._insert(self._lead("l-y", "dy", 2)), removed)

        assert outcome == MergeOutcome.INSERTED
        assert self._leads(assignees) == ["dy"]

    def test_older_lead_arriving_late_is_stale(self):
        assignees: dict = {}
        removed = RemovedIds()
        apply_change({}, assignees, self._insert(self._lead("l-y", "dy", 2)), removed)
        outcome = apply_change({}, assignees, self._insert(self._lead("l-x", "dx", 1)), removed)

        assert outcome == MergeOutcome.STALE
        assert self._leads(assignees) == ["dy"]

    def test_co_driver_does_not_displace_lead(self):
        assignees: dict = {}
        apply_change({}, assignees, self._insert(self._lead("l-x", "dx", 1)))
        co_driver = {**self._lead("c-1", "dc", 3), "is_lead": False}
        apply_change({}, assignees, self._insert(co_driver))

        assert self._leads(assignees) == ["dx"]
        assert set(assignees) == {"l-x", "c-1"}


class TestRemovedIds:
    def test_deleted_task_not_revived_by_late_insert(self):
        tasks: dict = {}
        removed = RemovedIds()
        record = _task().model_dump(mode="json")
        apply_change(tasks, {}, _event(record, ChangeOperation.INSERT), removed)
        delete = _event({"id": "t-1"}, ChangeOperation.DELETE, event_id="e-2")
        apply_change(tasks, {}, delete, removed)

        outcome = apply_change(tasks, {}, _event(record, ChangeOperation.INSERT), removed)
        assert outcome == MergeOutcome.STALE
        assert tasks == {}

    def test_oldest_ids_evicted(self):
        removed = RemovedIds(maxlen=2)
        for record_id in ("a", "b", "c"):
            removed.add(record_id)
        assert "a" not in removed
        assert "b" in removed and "c" in removed
        assert len(removed) == 2


class TestReplay:
    def test_replay_does_not_mutate_input(self):
        initial = {"t-1": _task()}
        tasks, _ = replay(
            [
                _event({"id": "t-1", "priority": "high", "version": 2}),
                _event({"id": "t-1", "status": "in_progress", "version": 3}, event_id="e-2"),
            ],
            tasks=initial,
        )
        assert initial["t-1"].priority == TaskPriority.MEDIUM
        assert tasks["t-1"].priority == TaskPriority.HIGH
        assert tasks["t-1"].status == TaskStatus.IN_PROGRESS
        assert tasks["t-1"].version == 3

    def test_replay_twice_same_result(self):
        events = [
            _event(_task().model_dump(mode="json"), ChangeOperation.INSERT),
            _event({"id": "t-1", "priority": "low", "version": 2}, event_id="e-2"),
        ]
        once, _ = replay(events)
        twice, _ = replay(events + events)
        assert once == twice
