"""SubscriptionManager -- 变更订阅的重连状态机

disconnected -> connecting -> subscribed
断开或停滞后按有上限的指数退避重连（tenacity），每次订阅成功后做一次全量同步，
并把连接状态作为"数据新鲜度"暴露给界面。陈旧视图不是错误。
"""

import asyncio
from collections.abc import Callable, Iterable
from enum import StrEnum

import structlog
from fieldsync.core.errors import SubscriptionDroppedError
from fieldsync.core.models import Collection
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    stop_never,
    wait_exponential,
)

from .reconciler import Reconciler
from .transport import TaskStoreClient

log = structlog.get_logger()


class SubscriptionState(StrEnum):
    """订阅连接状态"""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


class _SessionEnded(SubscriptionDroppedError):
    """已订阅成功的会话断开 -- 退避计数从头开始"""


def _should_retry(error: BaseException) -> bool:
    return isinstance(error, Exception) and not isinstance(error, _SessionEnded)


class SubscriptionManager:
    """订阅生命周期管理"""

    def __init__(
        self,
        store: TaskStoreClient,
        reconciler: Reconciler,
        collections: Iterable[Collection] = (Collection.TASKS, Collection.TASK_ASSIGNEES),
        min_backoff_s: float = 1.0,
        max_backoff_s: float = 30.0,
        stall_timeout_s: float = 45.0,
        max_attempts: int | None = None,
    ) -> None:
        """
        Args:
            store: 任务存储客户端（提供 subscribe / load_board）
            reconciler: 事件入队目标
            collections: 订阅的集合
            min_backoff_s: 首次重连等待
            max_backoff_s: 重连等待上限
            stall_timeout_s: 超过该时间没有任何消息（含心跳）视为断开
            max_attempts: 连续失败次数上限，None 表示一直重试
        """
        self._store = store
        self._reconciler = reconciler
        self._collections = list(collections)
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._stall_timeout_s = stall_timeout_s
        self._max_attempts = max_attempts
        self._listeners: list[Callable[[SubscriptionState], None]] = []
        self.state = SubscriptionState.DISCONNECTED
        self.sessions = 0
        self.failed_attempts = 0

    @property
    def is_fresh(self) -> bool:
        """视图是否与服务端保持实时同步"""
        return self.state == SubscriptionState.SUBSCRIBED

    def add_listener(self, listener: Callable[[SubscriptionState], None]) -> None:
        self._listeners.append(listener)

    async def run(self) -> None:
        """保持订阅直到被取消"""
        try:
            while True:
                try:
                    async for attempt in self._retrying():
                        with attempt:
                            await self._session()
                except _SessionEnded as e:
                    log.info("subscription_session_ended", reason=e.message)
                    self._set_state(SubscriptionState.DISCONNECTED)
                    await asyncio.sleep(self._min_backoff_s)
        finally:
            self._set_state(SubscriptionState.DISCONNECTED)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(
                multiplier=self._min_backoff_s,
                min=self._min_backoff_s,
                max=self._max_backoff_s,
            ),
            stop=stop_after_attempt(self._max_attempts) if self._max_attempts else stop_never,
            retry=retry_if_exception(_should_retry),
            before_sleep=self._before_sleep,
            reraise=True,
        )

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        self.failed_attempts += 1
        self._set_state(SubscriptionState.DISCONNECTED)
        error = retry_state.outcome.exception() if retry_state.outcome else None
        log.warning(
            "subscription_retry_scheduled",
            attempt=retry_state.attempt_number,
            sleep_s=retry_state.next_action.sleep if retry_state.next_action else None,
            error_type=type(error).__name__ if error else None,
        )

    async def _session(self) -> None:
        """一次订阅会话：连接 -> 全量同步 -> 持续接收，直到断开"""
        self._set_state(SubscriptionState.CONNECTING)
        stream = self._store.subscribe(self._collections)
        subscribed = False
        try:
            while True:
                try:
                    item = await asyncio.wait_for(anext(stream), timeout=self._stall_timeout_s)
                except StopAsyncIteration:
                    raise SubscriptionDroppedError("subscription stream ended") from None
                except TimeoutError:
                    raise SubscriptionDroppedError("subscription stalled") from None

                if not subscribed:
                    subscribed = True
                    await self._on_subscribed()

                if item is not None:
                    self._reconciler.submit(item)
        except SubscriptionDroppedError as e:
            if subscribed:
                raise _SessionEnded(e.message) from e
            raise
        except Exception as e:
            if subscribed:
                raise _SessionEnded(f"{type(e).__name__}: {e}") from e
            raise
        finally:
            await stream.aclose()

    async def _on_subscribed(self) -> None:
        tasks, assignees = await self._store.load_board()
        self._reconciler.resync(tasks, assignees)
        self.sessions += 1
        self._set_state(SubscriptionState.SUBSCRIBED)
        log.info("subscription_established", session=self.sessions)

    def _set_state(self, state: SubscriptionState) -> None:
        if state == self.state:
            return
        self.state = state
        for listener in self._listeners:
            try:
                listener(state)
            except Exception:
                log.exception("subscription_listener_failed", state=state)
