"""本地化提示测试"""

from fieldsync.client.notices import MESSAGES, NoticeLevel, Notifier, translate


class TestTranslate:
    def test_hebrew_default(self):
        assert translate("task_updated") == MESSAGES["he"]["task_updated"]

    def test_english(self):
        assert translate("task_updated", "en") == "Task updated"

    def test_params(self):
        assert translate("bulk_delete_ok", "en", count=3) == "3 tasks deleted"

    def test_unknown_locale_falls_back_to_english(self):
        assert translate("task_deleted", "fr") == "Task deleted"

    def test_unknown_key_returns_key(self):
        assert translate("no_such_key", "en") == "no_such_key"

    def test_catalogues_have_same_keys(self):
        assert set(MESSAGES["he"]) == set(MESSAGES["en"])


class TestNotifier:
    def test_levels_and_history(self):
        notifier = Notifier("en")
        notifier.success("task_updated", task_ids=["t-1"])
        notifier.error("task_update_failed", task_ids=["t-1"])

        assert [n.level for n in notifier.history] == [NoticeLevel.SUCCESS, NoticeLevel.ERROR]
        assert notifier.last.text == "Failed to update task"
        assert notifier.last.task_ids == ["t-1"]

    def test_history_is_bounded(self):
        notifier = Notifier("en", history_size=3)
        for _ in range(5):
            notifier.info("task_updated")
        assert len(notifier.history) == 3

    def test_listener_failure_does_not_block_others(self):
        notifier = Notifier("en")
        received = []

        def broken(notice):
            raise RuntimeError("render failed")

        notifier.add_listener(broken)
        notifier.add_listener(received.append)
        notifier.success("task_deleted")

        assert [n.key for n in received] == ["task_deleted"]
