"""用户提示（toast）-- 本地化消息目录 + 提示分发

传输层和存储层错误在变更边界被转换为 Notice，渲染层只消费 Notice。
"""

from collections.abc import Callable
from enum import StrEnum

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


class NoticeLevel(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "task_updated": "Task updated",
        "task_update_failed": "Failed to update task",
        "invalid_status_flow": "The task must be in progress before it can be completed",
        "task_completed": "Task completed",
        "driver_assigned": "Driver assigned",
        "driver_assign_failed": "Failed to assign driver",
        "task_deleted": "Task deleted",
        "task_delete_failed": "Failed to delete task",
        "task_created": "Task created",
        "task_create_failed": "Failed to create task",
        "bulk_reassign_ok": "{count} tasks reassigned",
        "bulk_reassign_failed": "Failed to reassign tasks, changes reverted",
        "bulk_priority_ok": "Priority updated for {count} tasks",
        "bulk_priority_failed": "Failed to update priority, changes reverted",
        "bulk_delete_ok": "{count} tasks deleted",
        "bulk_delete_failed": "Failed to delete tasks, changes reverted",
        "checklist_saved": "Checklist saved",
        "checklist_required": "Required field",
        "workflow_persist_failed": "Saving the form failed, the status was not changed",
        "mutation_in_flight": "The previous action is still in progress",
        "updated_by_server": "server",
    },
    "he": {
        "task_updated": "המשימה עודכנה",
        "task_update_failed": "שגיאה בעדכון המשימה",
        "invalid_status_flow": "יש להעביר את המשימה לסטטוס בעבודה לפני סיום",
        "task_completed": "המשימה הושלמה בהצלחה",
        "driver_assigned": "הנהג שובץ",
        "driver_assign_failed": "שגיאה בשיבוץ נהג",
        "task_deleted": "המשימה נמחקה",
        "task_delete_failed": "שגיאה במחיקת המשימה",
        "task_created": "המשימה נוצרה",
        "task_create_failed": "שגיאה ביצירת המשימה",
        "bulk_reassign_ok": "{count} משימות שובצו בהצלחה",
        "bulk_reassign_failed": "שגיאה בשיבוץ המשימות, השינויים בוטלו",
        "bulk_priority_ok": "העדיפות עודכנה עבור {count} משימות",
        "bulk_priority_failed": "שגיאה בעדכון העדיפות, השינויים בוטלו",
        "bulk_delete_ok": "{count} משימות נמחקו בהצלחה",
        "bulk_delete_failed": "שגיאה במחיקת המשימות, השינויים בוטלו",
        "checklist_saved": "הצ'קליסט נשמר",
        "checklist_required": "שדה חובה",
        "workflow_persist_failed": "שמירת הטופס נכשלה, הסטטוס לא שונה",
        "mutation_in_flight": "הפעולה הקודמת עדיין מתבצעת",
        "updated_by_server": "שרת",
    },
}


def translate(key: str, locale: str = "he", **params) -> str:
    """查消息目录，缺失时回退英文，再回退 key 本身"""
    template = MESSAGES.get(locale, {}).get(key) or MESSAGES["en"].get(key, key)
    return template.format(**params) if params else template


class Notice(BaseModel):
    """一条用户可见提示"""

    level: NoticeLevel
    key: str = Field(description="消息目录 key")
    text: str = Field(description="本地化后的文本")
    task_ids: list[str] = Field(default_factory=list)


class Notifier:
    """提示分发器

    保留最近的提示供界面 / 测试读取，并同步回调所有监听者。
    """

    def __init__(self, locale: str = "he", history_size: int = 50) -> None:
        self.locale = locale
        self._history: list[Notice] = []
        self._history_size = history_size
        self._listeners: list[Callable[[Notice], None]] = []

    @property
    def history(self) -> list[Notice]:
        return list(self._history)

    @property
    def last(self) -> Notice | None:
        return self._history[-1] if self._history else None

    def add_listener(self, listener: Callable[[Notice], None]) -> None:
        self._listeners.append(listener)

    def success(self, key: str, task_ids: list[str] | None = None, **params) -> Notice:
        return self._emit(NoticeLevel.SUCCESS, key, task_ids, params)

    def error(self, key: str, task_ids: list[str] | None = None, **params) -> Notice:
        return self._emit(NoticeLevel.ERROR, key, task_ids, params)

    def info(self, key: str, task_ids: list[str] | None = None, **params) -> Notice:
        return self._emit(NoticeLevel.INFO, key, task_ids, params)

    def _emit(
        self,
        level: NoticeLevel,
        key: str,
        task_ids: list[str] | None,
        params: dict,
    ) -> Notice:
        notice = Notice(
            level=level,
            key=key,
            text=translate(key, self.locale, **params),
            task_ids=list(task_ids or []),
        )
        self._history.append(notice)
        del self._history[: -self._history_size]
        for listener in self._listeners:
            try:
                listener(notice)
            except Exception:
                log.exception("notice_listener_failed", key=key)
        return notice
