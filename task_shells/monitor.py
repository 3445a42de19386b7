"""Lifecycle monitors that finalize a task once its process is gone.

Two variants share the Watching -> Finalizing -> Done progression:

* ``OwnedMonitor`` waits on a child this process spawned and records its
  (coarsened) exit code.
* ``AttachedMonitor`` polls the OS process table for a PID it did not spawn;
  the real exit status is unobservable, so no exit code is recorded.

Neither monitor can be cancelled from outside, and errors inside them are
logged rather than raised: a failed finalization leaves the task Running.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from enum import Enum
from pathlib import Path
from typing import Optional

import aiofiles
import psutil

from .notify import ATTACHED_LOG_PLACEHOLDER, Notifier, deliver
from .record import TaskRecord, TaskStatus
from .store import TaskStore

logger = logging.getLogger(__name__)


class MonitorState(Enum):
    WATCHING = "watching"
    FINALIZING = "finalizing"
    DONE = "done"


def tail_bytes(data: bytes, limit: int) -> bytes:
    """Last ``limit`` bytes of ``data`` (byte level, not line aware)."""
    if limit <= 0:
        return b""
    if len(data) <= limit:
        return data
    return data[-limit:]


async def read_log_tail(path: Path, limit: int) -> str:
    """Read at most the last ``limit`` bytes of a log file as text."""
    path = Path(path)
    if limit <= 0 or not path.exists():
        return ""
    size = await asyncio.to_thread(path.stat)
    to_read = min(size.st_size, limit)
    if to_read <= 0:
        return ""
    async with aiofiles.open(path, "rb") as fh:
        await fh.seek(-to_read, os.SEEK_END)
        data = await fh.read()
    return tail_bytes(data, limit).decode("utf-8", errors="replace")


def pid_exists(pid: int) -> bool:
    """Whether ``pid`` is still a live process.

    Zombies count as gone. A process we are not allowed to inspect counts as
    alive.
    """
    if pid <= 0 or not psutil.pid_exists(pid):
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


class _Monitor:
    def __init__(
        self,
        task_id: str,
        store: TaskStore,
        notifier: Optional[Notifier],
        *,
        notify_timeout: float = 30.0,
    ) -> None:
        self.task_id = task_id
        self.store = store
        self.notifier = notifier
        self.notify_timeout = notify_timeout
        self.state = MonitorState.WATCHING
        self.record: Optional[TaskRecord] = None

    async def _finalize(self, **fields) -> Optional[TaskRecord]:
        self.state = MonitorState.FINALIZING
        try:
            self.record = await self.store.update(self.task_id, **fields)
        except Exception:
            logger.exception("task %s: could not persist final state %r", self.task_id, fields)
            self.record = None
        return self.record


class OwnedMonitor(_Monitor):
    def __init__(
        self,
        task_id: str,
        process: asyncio.subprocess.Process,
        store: TaskStore,
        notifier: Optional[Notifier],
        *,
        log_path: Path,
        pipeline: Optional[asyncio.Task] = None,
        log_tail_bytes: int = 2000,
        drain_timeout: float = 5.0,
        notify_timeout: float = 30.0,
        persist: bool = True,
    ) -> None:
        super().__init__(task_id, store, notifier, notify_timeout=notify_timeout)
        self.process = process
        self.persist = persist
        self.log_path = Path(log_path)
        self.pipeline = pipeline
        self.log_tail_bytes = log_tail_bytes
        self.drain_timeout = drain_timeout
        self.returncode: Optional[int] = None
        self.exit_code: Optional[int] = None

    async def _wait_for_drain(self) -> None:
        if self.pipeline is None or self.pipeline.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self.pipeline), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "task %s: output still open %.1fs after exit (background children?)",
                self.task_id,
                self.drain_timeout,
            )
        except Exception:
            logger.debug("task %s: pipeline ended with an error", self.task_id, exc_info=True)

    async def run(self) -> Optional[TaskRecord]:
        try:
            self.returncode = await self.process.wait()
        except Exception:
            # No watchdog exists: the task stays Running.
            logger.exception("task %s: waiting for pid %s failed", self.task_id, self.process.pid)
            return None

        # Non-zero codes and signals (negative returncodes) both collapse to 1.
        self.exit_code = 0 if self.returncode == 0 else 1
        logger.info(
            "task %s: pid %s exited with returncode %s",
            self.task_id,
            self.process.pid,
            self.returncode,
        )
        if not self.persist:
            # The task never reached Running; only reap the child.
            self.state = MonitorState.DONE
            return None

        status = TaskStatus.COMPLETED if self.exit_code == 0 else TaskStatus.FAILED
        record = await self._finalize(status=status, ended_at=time.time(), exit_code=self.exit_code)

        await self._wait_for_drain()
        if record is not None:
            try:
                log_tail = await read_log_tail(self.log_path, self.log_tail_bytes)
            except OSError:
                logger.warning("task %s: cannot read log tail", self.task_id, exc_info=True)
                log_tail = ""
            await deliver(self.notifier, record, log_tail, timeout=self.notify_timeout)

        self.state = MonitorState.DONE
        return record


class AttachedMonitor(_Monitor):
    def __init__(
        self,
        task_id: str,
        pid: int,
        store: TaskStore,
        notifier: Optional[Notifier],
        *,
        poll_interval: float = 2.0,
        notify_timeout: float = 30.0,
    ) -> None:
        super().__init__(task_id, store, notifier, notify_timeout=notify_timeout)
        self.pid = pid
        self.poll_interval = poll_interval
        self.polls = 0

    async def _alive(self) -> bool:
        try:
            return await asyncio.to_thread(pid_exists, self.pid)
        except Exception:
            logger.warning("task %s: liveness check for pid %s failed", self.task_id, self.pid, exc_info=True)
            return True

    async def run(self) -> Optional[TaskRecord]:
        # PIDs can be recycled between polls; a reused PID reads as still alive.
        while True:
            await asyncio.sleep(self.poll_interval)
            self.polls += 1
            if not await self._alive():
                break

        logger.info("task %s: attached pid %s is gone", self.task_id, self.pid)
        record = await self._finalize(status=TaskStatus.COMPLETED, ended_at=time.time())
        if record is not None:
            await deliver(self.notifier, record, ATTACHED_LOG_PLACEHOLDER, timeout=self.notify_timeout)
        self.state = MonitorState.DONE
        return record
