# tests/test_notify.py

from __future__ import annotations

import asyncio

import pytest

from task_shells.notify import LoggingNotifier, deliver, format_notification
from task_shells.record import TaskRecord, TaskStatus

from .fakes import ExplodingNotifier, RecordingNotifier


def _finished() -> TaskRecord:
    return TaskRecord(
        id="t1",
        name="train",
        command="python train.py",
        env_type="shell",
        cwd=".",
        status=TaskStatus.COMPLETED,
        started_at=100.0,
        ended_at=142.9,
        pid=10,
        exit_code=0,
    )


def test_format_notification_layout() -> None:
    msg = format_notification(_finished(), "epoch 3 done\n")
    assert msg.subject == "Task Completed - train"
    assert "Task ID: t1\n" in msg.body
    assert "Duration: 42s\n" in msg.body
    assert "Exit Code: 0\n" in msg.body
    assert msg.body.endswith("--- Last Output ---\nepoch 3 done\n")


def test_format_notification_unknown_duration() -> None:
    rec = _finished()
    rec.ended_at = None
    rec.exit_code = None
    body = format_notification(rec, "").body
    assert "Duration: Unknown" in body
    assert "Exit Code: None" in body


@pytest.mark.asyncio
async def test_deliver_async_notifier() -> None:
    notifier = RecordingNotifier()
    assert await deliver(notifier, _finished(), "tail") is True
    assert notifier.calls[0][1] == "tail"


@pytest.mark.asyncio
async def test_deliver_swallows_failures() -> None:
    assert await deliver(ExplodingNotifier(), _finished(), "tail") is False
    assert await deliver(None, _finished(), "tail") is False


@pytest.mark.asyncio
async def test_deliver_gives_up_after_timeout() -> None:
    class Slow:
        async def notify(self, task, log_tail):
            await asyncio.sleep(10)

    assert await deliver(Slow(), _finished(), "tail", timeout=0.05) is False


@pytest.mark.asyncio
async def test_logging_notifier(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("INFO", logger="task_shells.notify"):
        assert await deliver(LoggingNotifier(), _finished(), "bye") is True
    assert "Task Completed - train" in caplog.text
