"""前置流程与审计路由

POST /api/tasks/{task_id}/forms        清单 / 表单 / 弹窗提交
POST /api/tasks/{task_id}/evidence     上传凭证（原始请求体，?kind=）
GET  /api/tasks/{task_id}/evidence     已采集凭证概览
POST /api/tasks/{task_id}/signatures   签名记录
GET  /api/tasks/{task_id}/audit        审计记录（倒序分页）
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fieldsync.core.config import AUDIT_PAGE_DEFAULT
from fieldsync.core.models import EvidenceKind, WorkflowKind
from pydantic import BaseModel, Field

from ..deps import get_task_service
from ..services.task_service import TaskService

router = APIRouter()


class FormRequest(BaseModel):
    """提交记录请求体"""

    kind: WorkflowKind
    form_data: dict[str, Any] = Field(default_factory=dict)
    driver_id: str | None = None
    gps_location: dict[str, float] | None = None


class SignatureRequest(BaseModel):
    """签名记录请求体"""

    signature_url: str = Field(min_length=1, description="签名图片 storage_ref")
    driver_id: str | None = None
    signed_by_name: str | None = None


@router.post("/api/tasks/{task_id}/forms", status_code=201)
async def submit_form(
    task_id: str,
    body: FormRequest,
    service: TaskService = Depends(get_task_service),
):
    submission = await service.submit_form(
        task_id, body.kind, body.form_data, body.driver_id, body.gps_location
    )
    return {"form": submission.model_dump(mode="json")}


@router.post("/api/tasks/{task_id}/evidence", status_code=201)
async def upload_evidence(
    task_id: str,
    request: Request,
    kind: EvidenceKind = Query(),
    service: TaskService = Depends(get_task_service),
):
    """上传凭证文件，请求体为原始内容"""
    content = await request.body()
    content_type = request.headers.get("content-type", "application/octet-stream")
    evidence = await service.add_evidence(task_id, kind, content, content_type)
    return {
        "storage_ref": evidence.storage_ref,
        "evidence": evidence.model_dump(mode="json"),
    }


@router.get("/api/tasks/{task_id}/evidence")
async def evidence_summary(task_id: str, service: TaskService = Depends(get_task_service)):
    summary = await service.evidence_summary(task_id)
    return {"summary": summary.model_dump(mode="json")}


@router.post("/api/tasks/{task_id}/signatures", status_code=201)
async def record_signature(
    task_id: str,
    body: SignatureRequest,
    service: TaskService = Depends(get_task_service),
):
    signature = await service.add_signature(
        task_id, body.signature_url, body.driver_id, body.signed_by_name
    )
    return {"signature": signature.model_dump(mode="json")}


@router.get("/api/tasks/{task_id}/audit")
async def list_audit(
    task_id: str,
    limit: int = Query(default=AUDIT_PAGE_DEFAULT),
    offset: int = Query(default=0),
    service: TaskService = Depends(get_task_service),
):
    """审计记录按 changed_at 倒序；limit 限制在 [1, 500]"""
    rows = await service.list_audit(task_id, limit, offset)
    return {
        "data": [
            {
                **record.model_dump(mode="json"),
                "actor": (
                    {"display_name": actor.display_name, "role": actor.role.value}
                    if actor
                    else None
                ),
            }
            for record, actor in rows
        ]
    }
