"""任务路由

GET    /api/tasks                      看板全量（未删除任务 + 指派记录）
POST   /api/tasks                      创建任务
GET    /api/tasks/vehicle-conflicts    车辆时间冲突检查
GET    /api/tasks/{task_id}            任务详情
PATCH  /api/tasks/{task_id}            部分字段更新
POST   /api/tasks/{task_id}/status     受保护的状态流转
PATCH  /api/tasks/{task_id}/assign     替换 lead
DELETE /api/tasks/{task_id}            软删除
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from fieldsync.core.models import TaskStatus
from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import JSONResponse

from ..deps import get_task_service
from ..services.task_service import TaskService

router = APIRouter()


class CreateTaskRequest(BaseModel):
    """创建任务请求体：任务字段 + 指派"""

    model_config = ConfigDict(extra="allow")

    lead_driver_id: str | None = Field(default=None, description="负责人司机")
    co_driver_ids: list[str] = Field(default_factory=list, description="协同司机")


class StatusRequest(BaseModel):
    """状态流转请求体"""

    status: TaskStatus
    actor_id: str | None = Field(default=None, description="操作者（缺省取请求头）")
    extra_fields: dict[str, Any] = Field(default_factory=dict)


class AssignRequest(BaseModel):
    """替换 lead 请求体"""

    driver_id: str = Field(min_length=1)


@router.get("/api/tasks")
async def load_board(service: TaskService = Depends(get_task_service)):
    """看板全量：未删除任务按 created_at 倒序，附带指派记录"""
    tasks, assignees = await service.load_board()
    return {
        "tasks": [t.model_dump(mode="json") for t in tasks],
        "assignees": [a.model_dump(mode="json") for a in assignees],
    }


@router.post("/api/tasks", status_code=201)
async def create_task(
    body: CreateTaskRequest,
    service: TaskService = Depends(get_task_service),
):
    task = await service.create_task(
        dict(body.model_extra or {}),
        lead_driver_id=body.lead_driver_id,
        co_driver_ids=body.co_driver_ids,
    )
    return {"task": task.model_dump(mode="json")}


@router.get("/api/tasks/vehicle-conflicts")
async def check_vehicle_conflict(
    vehicle_id: str = Query(min_length=1),
    estimated_start: datetime = Query(),
    estimated_end: datetime = Query(),
    task_id: str | None = Query(default=None, description="编辑时排除当前任务"),
    service: TaskService = Depends(get_task_service),
):
    """同一车辆同一天时间段重叠的未完成任务"""
    conflicts = await service.vehicle_conflicts(
        vehicle_id, estimated_start, estimated_end, task_id
    )
    return {
        "has_conflict": bool(conflicts),
        "conflicting_tasks": [
            {
                "id": t.id,
                "type": t.type.value,
                "status": t.status.value,
                "estimated_start": t.estimated_start.isoformat(),
                "estimated_end": t.estimated_end.isoformat(),
            }
            for t in conflicts
        ],
    }


@router.get("/api/tasks/{task_id}")
async def get_task(task_id: str, service: TaskService = Depends(get_task_service)):
    task = await service.get_task(task_id)
    return {"task": task.model_dump(mode="json")}


@router.patch("/api/tasks/{task_id}")
async def update_task(
    task_id: str,
    fields: dict[str, Any] = Body(),
    service: TaskService = Depends(get_task_service),
):
    """部分字段更新，last-write-wins"""
    task = await service.update_task(task_id, fields)
    return {"task": task.model_dump(mode="json")}


@router.post("/api/tasks/{task_id}/status")
async def update_status(
    task_id: str,
    body: StatusRequest,
    service: TaskService = Depends(get_task_service),
):
    """受保护的状态流转

    - 进入 completed 时存储中的状态必须为 in_progress，否则 409 INVALID_STATUS_FLOW
    - 其余流转无条件接受
    """
    await service.update_status(task_id, body.status, body.actor_id, body.extra_fields)
    return {"ok": True}


@router.patch("/api/tasks/{task_id}/assign")
async def assign_lead(
    task_id: str,
    body: AssignRequest,
    service: TaskService = Depends(get_task_service),
):
    lead = await service.reassign_lead(task_id, body.driver_id)
    return {"assignee": lead.model_dump(mode="json")}


@router.delete("/api/tasks/{task_id}")
async def delete_task(task_id: str, service: TaskService = Depends(get_task_service)):
    """软删除：只写 deleted_at，订阅者收到带 deleted_at 的 update 事件"""
    await service.soft_delete(task_id)
    return JSONResponse(status_code=200, content={"ok": True})
