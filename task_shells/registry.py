from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Union

from .broadcast import OutputBroadcast
from .monitor import AttachedMonitor, OwnedMonitor
from .pty import PtyTerminal


@dataclass
class SpawnedHandle:
    """A task whose child and PTY belong to this process."""

    task_id: str
    pid: Optional[int]
    terminal: PtyTerminal
    output: OutputBroadcast
    pipeline: Optional[asyncio.Task] = None
    monitor: Optional[OwnedMonitor] = None
    monitor_task: Optional[asyncio.Task] = None


@dataclass
class AttachedHandle:
    """A task supervised by PID only; there is no terminal to talk to."""

    task_id: str
    pid: int
    monitor: Optional[AttachedMonitor] = None
    monitor_task: Optional[asyncio.Task] = None


RunningTaskHandle = Union[SpawnedHandle, AttachedHandle]


class _ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class TaskRegistry:
    """Task id -> running handle.

    Entries are never evicted, including after the task reaches a terminal
    state.
    """

    def __init__(self) -> None:
        self._handles: Dict[str, RunningTaskHandle] = {}
        self._lock = _ReadWriteLock()

    async def insert(self, handle: RunningTaskHandle) -> Optional[RunningTaskHandle]:
        """Register ``handle``; returns whatever it replaced."""
        async with self._lock.write():
            previous = self._handles.get(handle.task_id)
            self._handles[handle.task_id] = handle
            return previous

    async def get(self, task_id: str) -> Optional[RunningTaskHandle]:
        async with self._lock.read():
            return self._handles.get(task_id)

    async def task_ids(self) -> List[str]:
        async with self._lock.read():
            return list(self._handles)

    def __len__(self) -> int:
        return len(self._handles)
