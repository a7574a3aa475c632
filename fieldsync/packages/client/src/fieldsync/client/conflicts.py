"""冲突提示 -- 远端写入覆盖了本地乐观修改时的非阻塞提示

RecentMutations 记录本客户端最近一次乐观修改每个任务的时间；
ConflictIndicators 按任务 ID 保存提示，到期自动清除。
"""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime

import structlog
from fieldsync.core.config import CONFLICT_INDICATOR_TTL_S, CONFLICT_WINDOW_S
from pydantic import BaseModel, Field

log = structlog.get_logger()

Clock = Callable[[], float]


class ConflictIndicator(BaseModel):
    """单个任务上的冲突提示"""

    task_id: str
    by: str | None = Field(default=None, description="远端操作者显示名，None 表示服务端")
    at: datetime | None = Field(default=None, description="远端事件时间")
    raised_at: float = Field(description="提示产生时刻（单调时钟）")


class RecentMutations:
    """本客户端最近的乐观修改时间表"""

    def __init__(self, window_s: float = CONFLICT_WINDOW_S, clock: Clock = time.monotonic) -> None:
        self.window_s = window_s
        self._clock = clock
        self._touched: dict[str, float] = {}

    def mark(self, task_id: str) -> None:
        self._touched[task_id] = self._clock()

    def touched_within(self, task_id: str) -> bool:
        """任务是否在窗口期内被本客户端乐观修改过"""
        touched_at = self._touched.get(task_id)
        if touched_at is None:
            return False
        if self._clock() - touched_at > self.window_s:
            del self._touched[task_id]
            return False
        return True


class ConflictIndicators:
    """冲突提示集合

    到期判断在读取时进行（lazy expiry），有事件循环时另外用 call_later 主动清除，
    保证没有读取时也会按时通知监听者。同一任务再次触发会重置计时。
    """

    def __init__(
        self,
        ttl_s: float = CONFLICT_INDICATOR_TTL_S,
        clock: Clock = time.monotonic,
        schedule_expiry: bool = True,
    ) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._schedule_expiry = schedule_expiry
        self._indicators: dict[str, ConflictIndicator] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._listeners: list[Callable[[str, ConflictIndicator | None], None]] = []

    def add_listener(self, listener: Callable[[str, ConflictIndicator | None], None]) -> None:
        """注册回调：(task_id, indicator)，indicator 为 None 表示已清除"""
        self._listeners.append(listener)

    def raise_for(self, task_id: str, by: str | None, at: datetime | None) -> ConflictIndicator:
        """为任务产生（或刷新）冲突提示"""
        indicator = ConflictIndicator(task_id=task_id, by=by, at=at, raised_at=self._clock())
        self._indicators[task_id] = indicator
        self._cancel_timer(task_id)
        if self._schedule_expiry:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                self._timers[task_id] = loop.call_later(self.ttl_s, self._expire, task_id)
        log.info("conflict_indicator_raised", task_id=task_id, by=by)
        self._notify(task_id, indicator)
        return indicator

    def get(self, task_id: str) -> ConflictIndicator | None:
        indicator = self._indicators.get(task_id)
        if indicator is not None and self._is_expired(indicator):
            self._clear(task_id)
            return None
        return indicator

    def active(self) -> dict[str, ConflictIndicator]:
        """当前有效的全部提示"""
        for task_id in [t for t, i in self._indicators.items() if self._is_expired(i)]:
            self._clear(task_id)
        return dict(self._indicators)

    def dismiss(self, task_id: str) -> None:
        """用户手动关闭提示"""
        if task_id in self._indicators:
            self._clear(task_id)

    def close(self) -> None:
        """取消所有定时器（视图销毁时调用）"""
        for task_id in list(self._timers):
            self._cancel_timer(task_id)

    def _is_expired(self, indicator: ConflictIndicator) -> bool:
        return self._clock() - indicator.raised_at >= self.ttl_s

    def _expire(self, task_id: str) -> None:
        self._timers.pop(task_id, None)
        if task_id in self._indicators:
            self._clear(task_id)

    def _clear(self, task_id: str) -> None:
        self._indicators.pop(task_id, None)
        self._cancel_timer(task_id)
        self._notify(task_id, None)

    def _cancel_timer(self, task_id: str) -> None:
        timer = self._timers.pop(task_id, None)
        if timer is not None:
            timer.cancel()

    def _notify(self, task_id: str, indicator: ConflictIndicator | None) -> None:
        for listener in self._listeners:
            try:
                listener(task_id, indicator)
            except Exception:
                log.exception("conflict_listener_failed", task_id=task_id)
