"""packages/core 测试配置 -- 核心层 fixture"""

from datetime import UTC, datetime

import pytest
from fieldsync.core.models import Task, TaskPriority, TaskStatus, TaskType


@pytest.fixture
def make_task():
    """Task 构造器"""

    def _make(
        task_id: str = "01JTASK0000000000000000001",
        status: TaskStatus = TaskStatus.PENDING,
        task_type: TaskType = TaskType.OTHER,
        **fields,
    ) -> Task:
        now = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)
        data = {
            "id": task_id,
            "type": task_type,
            "priority": TaskPriority.MEDIUM,
            "status": status,
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        return Task(**data)

    return _make
