"""Store 查询测试 -- 审计分页、车辆时间冲突、操作者、清单 / 签名记录"""

from datetime import UTC, datetime, timedelta

import pytest
from fieldsync.core.config import AUDIT_PAGE_MAX
from fieldsync.core.models import (
    Actor,
    ActorRole,
    AuditAction,
    AuditRecord,
    ChecklistSubmission,
    Signature,
    TaskStatus,
    WorkflowKind,
)
from fieldsync.core.store.actor_store import SqliteActorStore
from fieldsync.core.store.audit_store import SqliteAuditStore, clamp_limit
from fieldsync.core.store.sqlite_init import verify_wal_mode
from fieldsync.core.store.task_store import SqliteTaskStore
from fieldsync.core.store.workflow_store import SqliteWorkflowStore


def _at(hour: int, day: int = 2) -> datetime:
    return datetime(2026, 3, day, hour, 0, tzinfo=UTC)


class TestInit:
    async def test_wal_mode_enabled(self, db_conn):
        assert await verify_wal_mode(db_conn)


class TestAuditPaging:
    @pytest.mark.parametrize(
        ("limit", "expected"),
        [(0, 1), (-5, 1), (50, 50), (AUDIT_PAGE_MAX + 1, AUDIT_PAGE_MAX)],
    )
    def test_clamp_limit(self, limit, expected):
        assert clamp_limit(limit) == expected

    async def test_newest_first_with_offset(self, db_conn, make_task):
        task_store = SqliteTaskStore(db_conn)
        audit_store = SqliteAuditStore(db_conn)
        await task_store.create_task(make_task(task_id="t-1"))
        for i in range(5):
            await audit_store.append(
                AuditRecord(
                    id=f"r-{i}",
                    task_id="t-1",
                    actor_id="disp-1",
                    action=AuditAction.UPDATED,
                    changed_at=_at(8) + timedelta(minutes=i),
                    diff={"priority": {"from": "low", "to": "high"}},
                )
            )
        await db_conn.commit()

        page = await audit_store.list_for_task("t-1", limit=2)
        assert [r.id for r in page] == ["r-4", "r-3"]

        page = await audit_store.list_for_task("t-1", limit=2, offset=4)
        assert [r.id for r in page] == ["r-0"]
        assert page[0].diff == {"priority": {"from": "low", "to": "high"}}

    async def test_other_task_not_returned(self, db_conn):
        audit_store = SqliteAuditStore(db_conn)
        assert await audit_store.list_for_task("t-unknown") == []

    async def test_latest_actor_skips_anonymous(self, db_conn, make_task):
        task_store = SqliteTaskStore(db_conn)
        audit_store = SqliteAuditStore(db_conn)
        await task_store.create_task(make_task(task_id="t-1"))
        for i, actor_id in enumerate(["disp-1", "disp-2", None]):
            await audit_store.append(
                AuditRecord(
                    id=f"r-{i}",
                    task_id="t-1",
                    actor_id=actor_id,
                    action=AuditAction.UPDATED,
                    changed_at=_at(8) + timedelta(minutes=i),
                )
            )
        await db_conn.commit()

        assert await audit_store.latest_actor("t-1") == "disp-2"
        assert await audit_store.latest_actor("t-unknown") is None


class TestVehicleOverlaps:
    async def _seed(self, db_conn, make_task):
        task_store = SqliteTaskStore(db_conn)
        await task_store.create_task(
            make_task(task_id="t-a", vehicle_id="v-1", estimated_start=_at(9), estimated_end=_at(11))
        )
        await task_store.create_task(
            make_task(task_id="t-b", vehicle_id="v-1", estimated_start=_at(10), estimated_end=_at(12))
        )
        # 另一天
        await task_store.create_task(
            make_task(
                task_id="t-c",
                vehicle_id="v-1",
                estimated_start=_at(10, day=3),
                estimated_end=_at(12, day=3),
            )
        )
        # 已完成
        await task_store.create_task(
            make_task(
                task_id="t-d",
                vehicle_id="v-1",
                status=TaskStatus.COMPLETED,
                estimated_start=_at(10),
                estimated_end=_at(11),
            )
        )
        # 其他车辆
        await task_store.create_task(
            make_task(task_id="t-e", vehicle_id="v-2", estimated_start=_at(10), estimated_end=_at(11))
        )
        await db_conn.commit()
        return task_store

    async def test_overlapping_same_day(self, db_conn, make_task):
        task_store = await self._seed(db_conn, make_task)
        overlaps = await task_store.find_vehicle_overlaps("v-1", _at(10), _at(10) + timedelta(minutes=30))
        assert [t.id for t in overlaps] == ["t-a", "t-b"]

    async def test_touching_intervals_do_not_overlap(self, db_conn, make_task):
        task_store = await self._seed(db_conn, make_task)
        overlaps = await task_store.find_vehicle_overlaps("v-1", _at(12), _at(13))
        assert overlaps == []

    async def test_exclude_self(self, db_conn, make_task):
        task_store = await self._seed(db_conn, make_task)
        overlaps = await task_store.find_vehicle_overlaps(
            "v-1", _at(9), _at(11), exclude_task_id="t-a"
        )
        assert [t.id for t in overlaps] == ["t-b"]


class TestActorStore:
    async def test_upsert_keeps_display_name_when_blank(self, db_conn):
        store = SqliteActorStore(db_conn)
        await store.upsert(Actor(id="disp-1", display_name="Dana", role=ActorRole.DISPATCHER))
        await store.upsert(Actor(id="disp-1", display_name="", role=ActorRole.DISPATCHER))
        await db_conn.commit()

        actor = await store.get("disp-1")
        assert actor.display_name == "Dana"
        assert actor.role == ActorRole.DISPATCHER
        assert await store.get("nobody") is None


class TestWorkflowStore:
    async def test_submission_and_signature(self, db_conn, make_task):
        await SqliteTaskStore(db_conn).create_task(make_task(task_id="t-1"))
        store = SqliteWorkflowStore(db_conn)
        await store.add_submission(
            ChecklistSubmission(
                id="f-1",
                task_id="t-1",
                kind=WorkflowKind.START_CHECKLIST,
                values={"client_quote": True},
                driver_id="d-1",
                gps_location={"lat": 32.08, "lng": 34.78, "accuracy": 12.0},
                submitted_at=_at(9),
            )
        )
        await store.add_signature(
            Signature(
                id="s-1",
                task_id="t-1",
                driver_id="d-1",
                signature_url="t-1/signature/e-1",
                signed_by_name="Noa",
                signed_at=_at(10),
            )
        )
        await db_conn.commit()

        submissions = await store.list_submissions("t-1")
        assert submissions[0].values == {"client_quote": True}
        assert submissions[0].gps_location["lat"] == 32.08
        assert submissions[0].kind == WorkflowKind.START_CHECKLIST

        signatures = await store.list_signatures("t-1")
        assert signatures[0].signed_by_name == "Noa"
