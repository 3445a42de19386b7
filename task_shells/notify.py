from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from .record import TaskRecord

logger = logging.getLogger(__name__)

ATTACHED_LOG_PLACEHOLDER = "Task attached via PID. Logs unavailable."

MaybeAwaitable = Any


class Notifier(Protocol):
    """Completion notification collaborator.

    ``notify`` may be sync or async. Delivery is best-effort: exceptions and
    timeouts are swallowed by ``deliver``.
    """

    def notify(self, task: TaskRecord, log_tail: str) -> MaybeAwaitable: ...


@dataclass(frozen=True)
class Notification:
    subject: str
    body: str


def format_notification(task: TaskRecord, log_tail: str) -> Notification:
    subject = f"Task {task.status.value} - {task.name}"
    duration = task.duration
    duration_line = f"Duration: {int(duration)}s" if duration is not None else "Duration: Unknown"
    exit_code = str(task.exit_code) if task.exit_code is not None else "None"
    body = (
        f"Task ID: {task.id}\n"
        f"Status: {task.status.value}\n"
        f"Command: {task.command}\n"
        f"{duration_line}\n"
        f"Exit Code: {exit_code}\n"
        f"\n--- Last Output ---\n{log_tail}"
    )
    return Notification(subject=subject, body=body)


class LoggingNotifier:
    """Writes the formatted notification to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def notify(self, task: TaskRecord, log_tail: str) -> None:
        message = format_notification(task, log_tail)
        logger.log(self.level, "%s\n%s", message.subject, message.body)


async def deliver(
    notifier: Optional[Notifier],
    task: TaskRecord,
    log_tail: str,
    *,
    timeout: float = 30.0,
) -> bool:
    """Best-effort delivery; never raises. Returns True when delivered."""
    if notifier is None:
        return False
    try:
        result = notifier.notify(task, log_tail)
        if inspect.isawaitable(result):
            await asyncio.wait_for(result, timeout=timeout)
        return True
    except asyncio.TimeoutError:
        logger.warning("notification for task %s timed out after %.1fs", task.id, timeout)
    except Exception:
        logger.exception("notification for task %s failed", task.id)
    return False
