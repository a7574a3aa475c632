"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store / ChangeHub / TaskService

实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Depends, Request
from fieldsync.core.models import ActorRole
from fieldsync.core.store import StoreGroup

from .services.change_hub import ChangeHub
from .services.task_service import RequestActor, TaskService


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_change_hub(request: Request) -> ChangeHub:
    """从 app.state 获取 ChangeHub 实例"""
    return request.app.state.change_hub


def get_request_actor(request: Request) -> RequestActor:
    """从请求头解析操作者与客户端会话"""
    role = request.headers.get("x-actor-role")
    return RequestActor(
        actor_id=request.headers.get("x-actor-id") or None,
        actor_name=request.headers.get("x-actor-name") or None,
        role=role if role in {r.value for r in ActorRole} else ActorRole.DISPATCHER,
        origin=request.headers.get("x-client-origin") or None,
    )


def get_task_service(
    request: Request,
    store_group: StoreGroup = Depends(get_store_group),
    change_hub: ChangeHub = Depends(get_change_hub),
    actor: RequestActor = Depends(get_request_actor),
) -> TaskService:
    """每个请求一个 TaskService（绑定请求的操作者）"""
    return TaskService(
        store_group,
        change_hub,
        notifications=request.app.state.notifications,
        actor=actor,
    )
