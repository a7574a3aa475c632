"""存储与流程协作方的客户端传输层

TaskStoreClient / WorkflowClient 是同步引擎依赖的抽象接口；
HttpStoreClient 通过 httpx 访问 Gateway，网络和服务端错误在此统一
转换为 FieldSyncError 子类，不向上泄漏 httpx 异常。
"""

import json
from collections.abc import AsyncIterator, Iterable
from typing import Any, Protocol

import httpx
import structlog
from fieldsync.core.errors import (
    FieldSyncError,
    InvalidStatusFlowError,
    PayloadValidationError,
    StoreWriteError,
    SubscriptionDroppedError,
    TaskNotFoundError,
)
from fieldsync.core.models import (
    ActorRole,
    ChangeEvent,
    Collection,
    EvidenceKind,
    EvidenceSummary,
    Task,
    TaskAssignee,
    TaskStatus,
    WorkflowKind,
)
from pydantic import BaseModel, Field

from .config import ClientConfig

log = structlog.get_logger()


class ClientIdentity(BaseModel):
    """客户端会话身份 -- 写入请求携带，服务端据此标记事件来源"""

    actor_id: str = Field(description="操作者 ID")
    actor_name: str = Field(default="", description="显示名")
    origin: str = Field(description="客户端会话 ID（每个看板实例唯一）")
    role: ActorRole = Field(default=ActorRole.DISPATCHER)

    def headers(self) -> dict[str, str]:
        return {
            "X-Actor-Id": self.actor_id,
            "X-Actor-Name": self.actor_name,
            "X-Actor-Role": self.role.value,
            "X-Client-Origin": self.origin,
        }


class TaskStoreClient(Protocol):
    """任务存储接口"""

    async def load_board(self) -> tuple[list[Task], list[TaskAssignee]]:
        """全量加载未删除任务和指派记录"""
        ...

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> Task:
        """部分字段更新"""
        ...

    async def update_task_status(
        self,
        task_id: str,
        next_status: TaskStatus,
        actor_id: str | None,
        extra_fields: dict[str, Any] | None = None,
    ) -> None:
        """受保护的状态流转"""
        ...

    async def reassign_lead(self, task_id: str, driver_id: str) -> None:
        """替换 lead"""
        ...

    async def create_task(
        self,
        fields: dict[str, Any],
        lead_driver_id: str | None = None,
        co_driver_ids: list[str] | None = None,
    ) -> Task:
        """创建任务"""
        ...

    async def soft_delete_task(self, task_id: str) -> None:
        """软删除"""
        ...

    def subscribe(self, collections: Iterable[Collection]) -> AsyncIterator[ChangeEvent | None]:
        """订阅变更；None 表示连接建立 / 心跳"""
        ...


class WorkflowClient(Protocol):
    """前置流程持久化接口"""

    async def submit_checklist(
        self,
        task_id: str,
        kind: WorkflowKind,
        values: dict[str, Any],
        driver_id: str | None,
        gps_location: dict[str, float] | None = None,
    ) -> None:
        """持久化清单 / 弹窗提交"""
        ...

    async def upload_evidence(
        self,
        task_id: str,
        kind: EvidenceKind,
        content: bytes,
        content_type: str,
    ) -> str:
        """上传凭证文件，返回 storage_ref"""
        ...

    async def record_signature(
        self,
        task_id: str,
        driver_id: str | None,
        storage_ref: str,
        signed_by_name: str | None,
    ) -> None:
        """写入签名记录"""
        ...

    async def evidence_summary(self, task_id: str) -> EvidenceSummary:
        """查询已采集凭证"""
        ...


async def parse_sse_lines(lines: AsyncIterator[str]) -> AsyncIterator[ChangeEvent | None]:
    """把 SSE 文本行解析为 ChangeEvent

    注释行（心跳 / ping）产出 None；data 行累积到空行后解析为一条事件。
    """
    data_lines: list[str] = []
    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if data_lines:
                payload = "\n".join(data_lines)
                data_lines = []
                yield ChangeEvent.model_validate_json(payload)
            continue
        if line.startswith(":"):
            yield None
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            data_lines.append(value)
    if data_lines:
        yield ChangeEvent.model_validate_json("\n".join(data_lines))


class HttpStoreClient:
    """基于 httpx 的 TaskStoreClient + WorkflowClient 实现"""

    def __init__(
        self,
        config: ClientConfig,
        identity: ClientIdentity,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self.identity = identity
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=config.gateway_url,
            timeout=config.request_timeout_s,
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ---- TaskStoreClient ----

    async def load_board(self) -> tuple[list[Task], list[TaskAssignee]]:
        data = await self._request("GET", "/api/tasks")
        tasks = [Task.model_validate(t) for t in data.get("tasks", [])]
        assignees = [TaskAssignee.model_validate(a) for a in data.get("assignees", [])]
        return tasks, assignees

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> Task:
        data = await self._request(
            "PATCH", f"/api/tasks/{task_id}", task_id=task_id, json=_jsonable(fields)
        )
        return Task.model_validate(data["task"])

    async def update_task_status(
        self,
        task_id: str,
        next_status: TaskStatus,
        actor_id: str | None,
        extra_fields: dict[str, Any] | None = None,
    ) -> None:
        await self._request(
            "POST",
            f"/api/tasks/{task_id}/status",
            task_id=task_id,
            json={
                "status": TaskStatus(next_status).value,
                "actor_id": actor_id,
                "extra_fields": _jsonable(extra_fields or {}),
            },
        )

    async def reassign_lead(self, task_id: str, driver_id: str) -> None:
        await self._request(
            "PATCH",
            f"/api/tasks/{task_id}/assign",
            task_id=task_id,
            json={"driver_id": driver_id},
        )

    async def create_task(
        self,
        fields: dict[str, Any],
        lead_driver_id: str | None = None,
        co_driver_ids: list[str] | None = None,
    ) -> Task:
        data = await self._request(
            "POST",
            "/api/tasks",
            json={
                **_jsonable(fields),
                "lead_driver_id": lead_driver_id,
                "co_driver_ids": co_driver_ids or [],
            },
        )
        return Task.model_validate(data["task"])

    async def soft_delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/api/tasks/{task_id}", task_id=task_id)

    async def subscribe(
        self, collections: Iterable[Collection]
    ) -> AsyncIterator[ChangeEvent | None]:
        params = {"collections": ",".join(Collection(c).value for c in collections)}
        timeout = httpx.Timeout(self._config.request_timeout_s, read=None)
        try:
            async with self._http.stream(
                "GET",
                "/api/stream/changes",
                params=params,
                headers=self.identity.headers(),
                timeout=timeout,
            ) as response:
                if response.status_code != 200:
                    raise SubscriptionDroppedError(
                        f"subscription rejected with HTTP {response.status_code}"
                    )
                # 连接建立
                yield None
                async for item in parse_sse_lines(response.aiter_lines()):
                    yield item
        except httpx.HTTPError as e:
            raise SubscriptionDroppedError(f"subscription transport error: {e}") from e
        raise SubscriptionDroppedError("subscription stream ended")

    # ---- WorkflowClient ----

    async def submit_checklist(
        self,
        task_id: str,
        kind: WorkflowKind,
        values: dict[str, Any],
        driver_id: str | None,
        gps_location: dict[str, float] | None = None,
    ) -> None:
        await self._request(
            "POST",
            f"/api/tasks/{task_id}/forms",
            task_id=task_id,
            json={
                "kind": WorkflowKind(kind).value,
                "form_data": values,
                "driver_id": driver_id,
                "gps_location": gps_location,
            },
        )

    async def upload_evidence(
        self,
        task_id: str,
        kind: EvidenceKind,
        content: bytes,
        content_type: str,
    ) -> str:
        data = await self._request(
            "POST",
            f"/api/tasks/{task_id}/evidence",
            task_id=task_id,
            params={"kind": EvidenceKind(kind).value},
            content=content,
            headers={"Content-Type": content_type},
        )
        return data["storage_ref"]

    async def record_signature(
        self,
        task_id: str,
        driver_id: str | None,
        storage_ref: str,
        signed_by_name: str | None,
    ) -> None:
        await self._request(
            "POST",
            f"/api/tasks/{task_id}/signatures",
            task_id=task_id,
            json={
                "driver_id": driver_id,
                "signature_url": storage_ref,
                "signed_by_name": signed_by_name,
            },
        )

    async def evidence_summary(self, task_id: str) -> EvidenceSummary:
        data = await self._request("GET", f"/api/tasks/{task_id}/evidence", task_id=task_id)
        return EvidenceSummary.model_validate(data["summary"])

    # ---- 内部 ----

    async def _request(
        self,
        method: str,
        path: str,
        task_id: str | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """发送请求并把错误转换为领域异常"""
        try:
            response = await self._http.request(
                method,
                path,
                headers={**self.identity.headers(), **(headers or {})},
                **kwargs,
            )
        except httpx.HTTPError as e:
            log.warning(
                "store_request_failed",
                method=method,
                path=path,
                error_type=type(e).__name__,
            )
            raise StoreWriteError(f"{method} {path} failed: {e}", original_error=e) from e

        if response.is_success:
            return response.json() if response.content else {}
        raise _error_from_response(response, task_id)


def _error_from_response(response: httpx.Response, task_id: str | None) -> FieldSyncError:
    """把 Gateway 错误体 {"error": {"code", "message"}} 映射回异常"""
    try:
        error = response.json().get("error", {})
    except (json.JSONDecodeError, AttributeError):
        error = {}
    code = error.get("code", "")
    message = error.get("message") or f"HTTP {response.status_code}"

    if code == "INVALID_STATUS_FLOW":
        details = error.get("details") or {}
        return InvalidStatusFlowError(
            task_id or details.get("task_id", ""),
            details.get("current_status", ""),
            details.get("target_status", TaskStatus.COMPLETED.value),
        )
    if code == "TASK_NOT_FOUND":
        return TaskNotFoundError(task_id or "")
    if code == "VALIDATION_FAILED":
        return PayloadValidationError(message)
    return StoreWriteError(message, status_code=response.status_code)


def _jsonable(fields: dict[str, Any]) -> dict[str, Any]:
    """把模型 / datetime / 枚举转换为 JSON 兼容值"""
    return json.loads(json.dumps(fields, default=_default))


def _default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
