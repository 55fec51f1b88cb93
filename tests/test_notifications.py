"""
Tests for Notifier.
"""

import logging

from notebook_session.notifications import Level, Notifier


class TestNotifier:

    def test_shortcuts_set_level(self):
        notifier = Notifier()
        notifier.success("a")
        notifier.info("b")
        notifier.warning("c")
        notifier.error("d")

        assert [n.level for n in notifier.history] == [Level.SUCCESS, Level.INFO, Level.WARNING, Level.ERROR]
        assert notifier.messages() == ["a", "b", "c", "d"]
        assert notifier.last.message == "d"

    def test_history_is_bounded(self):
        notifier = Notifier(limit=3)
        for i in range(5):
            notifier.info(str(i))
        assert notifier.messages() == ["2", "3", "4"]

    def test_listeners(self):
        notifier = Notifier()
        seen = []
        unlisten = notifier.listen(seen.append)

        notifier.success("saved")
        unlisten()
        notifier.success("ignored")

        assert [n.message for n in seen] == ["saved"]

    def test_empty_last(self):
        assert Notifier().last is None

    def test_errors_are_logged(self, caplog):
        with caplog.at_level(logging.ERROR, logger="notebook_session.notifications"):
            Notifier().error("Failed to save notebook")
        assert "Failed to save notebook" in caplog.text
