from __future__ import annotations

import asyncio
import logging
import time
import uuid
from asyncio import Queue as AsyncQueue
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import psutil

from .broadcast import OutputBroadcast
from .config import Settings
from .envs import EnvironmentKind, resolve
from .errors import InvalidTransition, TaskNotFound, UnsupportedEnvironment
from .events import EventType, TaskEvent, get_event_bus
from .monitor import AttachedMonitor, OwnedMonitor, pid_exists, read_log_tail
from .notify import LoggingNotifier, Notifier
from .pipeline import OutputPipeline
from .pty import PtyProcessHost
from .record import TaskRecord, TaskStatus
from .registry import AttachedHandle, SpawnedHandle, TaskRegistry
from .store import JsonTaskStore, RuntimeStore, TaskStore

logger = logging.getLogger(__name__)


class TaskManager:
    """Spawns, attaches to and supervises tasks.

    ``spawn`` runs a task's command in a fresh PTY and owns the child;
    ``attach`` only watches an existing PID. Running handles stay in the
    registry for the life of the manager.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        runtime: Optional[RuntimeStore] = None,
        store: Optional[TaskStore] = None,
        notifier: Optional[Notifier] = None,
        host: Optional[PtyProcessHost] = None,
    ) -> None:
        self.settings = settings or (runtime.settings if runtime else Settings.from_env())
        self.runtime = runtime or RuntimeStore(self.settings)
        self.logs_dir = self.runtime.logs_dir
        self.store: TaskStore = store or JsonTaskStore(self.runtime.tasks_dir)
        if notifier is None and self.settings.notify_log:
            notifier = LoggingNotifier()
        self.notifier = notifier
        self.host = host or PtyProcessHost()
        self.registry = TaskRegistry()
        self._event_bus = get_event_bus()

    async def _emit(self, event_type: EventType, record: TaskRecord, **extra: Any) -> None:
        event = TaskEvent(
            type=event_type,
            task_id=record.id,
            data={**record.to_payload(), **extra},
        )
        try:
            await self._event_bus.publish(event)
        except Exception:
            logger.debug("event %s for task %s not published", event_type.value, record.id, exc_info=True)

    # ------------------------------------------------------------------
    # Task records

    def log_path(self, task_id: str) -> Path:
        return self.runtime.log_path(task_id)

    async def create_task(
        self,
        name: str,
        command: str,
        *,
        env_type: str = EnvironmentKind.SHELL.value,
        env_name: Optional[str] = None,
        cwd: Optional[str] = None,
        owner: str = "admin",
    ) -> TaskRecord:
        if not command or not str(command).strip():
            raise ValueError("command must not be empty")
        try:
            EnvironmentKind(env_type)
        except ValueError:
            raise UnsupportedEnvironment(f"unsupported environment type {env_type!r}")
        record = TaskRecord(
            id=str(uuid.uuid4()),
            owner=owner,
            name=name,
            command=command,
            env_type=env_type,
            env_name=env_name or None,
            cwd=cwd or ".",
            status=TaskStatus.PENDING,
            created_at=time.time(),
        )
        await self.store.save(record)
        await self._emit(EventType.TASK_CREATED, record)
        return record

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        return await self.store.get(task_id)

    async def list_tasks(self) -> List[TaskRecord]:
        return await self.store.list()

    async def _require_task(self, task_id: str) -> TaskRecord:
        record = await self.store.get(task_id)
        if record is None:
            raise TaskNotFound(f"task {task_id} not found", task_id=task_id)
        return record

    async def _require_pending(self, task_id: str) -> TaskRecord:
        record = await self._require_task(task_id)
        if record.status is not TaskStatus.PENDING:
            raise InvalidTransition(
                f"task {task_id} is {record.status.value}, only Pending tasks can be started or attached",
                task_id=task_id,
            )
        return record

    # ------------------------------------------------------------------
    # Core

    async def _supervise(self, monitor: Union[OwnedMonitor, AttachedMonitor]) -> Optional[TaskRecord]:
        record = await monitor.run()
        if record is not None:
            extra: Dict[str, Any] = {}
            if isinstance(monitor, OwnedMonitor):
                extra["returncode"] = monitor.returncode
            await self._emit(EventType.TASK_EXITED, record, **extra)
        return record

    def _start_supervision(
        self, handle: SpawnedHandle, proc: asyncio.subprocess.Process, *, persist: bool = True
    ) -> None:
        log_path = self.log_path(handle.task_id)
        pipeline = OutputPipeline(handle.task_id, handle.terminal, handle.output, log_path)
        handle.pipeline = asyncio.create_task(pipeline.run(), name=f"task-output-{handle.task_id}")
        handle.monitor = OwnedMonitor(
            handle.task_id,
            proc,
            self.store,
            self.notifier,
            log_path=log_path,
            pipeline=handle.pipeline,
            log_tail_bytes=self.settings.log_tail_bytes,
            drain_timeout=self.settings.drain_timeout,
            notify_timeout=self.settings.notify_timeout,
            persist=persist,
        )
        handle.monitor_task = asyncio.create_task(
            self._supervise(handle.monitor), name=f"task-monitor-{handle.task_id}"
        )

    async def spawn(self, task_id: str) -> TaskRecord:
        """Start a Pending task in a new PTY.

        Resolution and spawn errors propagate before any state changes. If the
        Running update cannot be written the child is still drained and reaped,
        but the task is left Pending.
        """
        task = await self._require_pending(task_id)
        resolved = resolve(task, shell=self.settings.shell)
        terminal, proc = await self.host.spawn(task, resolved)

        output = OutputBroadcast()
        handle = SpawnedHandle(task_id=task.id, pid=proc.pid, terminal=terminal, output=output)
        await self.registry.insert(handle)

        persisted = False
        try:
            record = await self.store.update(
                task.id,
                status=TaskStatus.RUNNING,
                started_at=time.time(),
                pid=proc.pid,
            )
            persisted = True
        finally:
            self._start_supervision(handle, proc, persist=persisted)

        logger.info("task %s: spawned pid %s (%s)", task.id, proc.pid, resolved.program)
        await self._emit(EventType.TASK_RUNNING, record)
        return record

    async def attach(self, task_id: str, pid: int) -> TaskRecord:
        """Watch an already-running PID this process did not spawn."""
        if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
            raise ValueError(f"pid must be a positive integer, got {pid!r}")
        task = await self._require_pending(task_id)
        if not await asyncio.to_thread(pid_exists, pid):
            logger.warning("task %s: attaching to pid %s which does not appear to be running", task.id, pid)

        record = await self.store.update(
            task.id,
            status=TaskStatus.RUNNING,
            started_at=time.time(),
            pid=pid,
        )
        monitor = AttachedMonitor(
            task.id,
            pid,
            self.store,
            self.notifier,
            poll_interval=self.settings.attach_poll_interval,
            notify_timeout=self.settings.notify_timeout,
        )
        handle = AttachedHandle(task_id=task.id, pid=pid, monitor=monitor)
        await self.registry.insert(handle)
        handle.monitor_task = asyncio.create_task(self._supervise(monitor), name=f"task-monitor-{task.id}")

        logger.info("task %s: attached to pid %s", task.id, pid)
        await self._emit(EventType.TASK_ATTACHED, record)
        return record

    async def write_stdin(self, task_id: str, data: Union[bytes, str]) -> None:
        """Write to a spawned task's terminal; silently ignored otherwise."""
        handle = await self.registry.get(task_id)
        if not isinstance(handle, SpawnedHandle):
            return
        if isinstance(data, str):
            data = data.encode("utf-8")
        await self.host.write(handle.terminal, data)

    # ------------------------------------------------------------------
    # Live output

    async def subscribe_output(self, task_id: str) -> AsyncQueue[Optional[bytes]]:
        """Queue of output chunks for a spawned task; ``None`` ends the stream."""
        handle = await self.registry.get(task_id)
        if not isinstance(handle, SpawnedHandle):
            raise TaskNotFound(f"no terminal for task {task_id}", task_id=task_id)
        return handle.output.subscribe()

    async def unsubscribe_output(self, task_id: str, q: AsyncQueue[Optional[bytes]]) -> None:
        handle = await self.registry.get(task_id)
        if isinstance(handle, SpawnedHandle):
            handle.output.unsubscribe(q)

    async def wait(self, task_id: str, timeout: Optional[float] = None) -> Optional[TaskRecord]:
        """Wait for a supervised task's monitor to finish and return the record."""
        handle = await self.registry.get(task_id)
        if handle is None or handle.monitor_task is None:
            return await self.store.get(task_id)
        await asyncio.wait_for(asyncio.shield(handle.monitor_task), timeout=timeout)
        return await self.store.get(task_id)

    # ------------------------------------------------------------------
    # Describe / stats

    async def read_log(self, task_id: str, limit: Optional[int] = None) -> str:
        path = self.log_path(task_id)
        if limit is None:
            if not path.exists():
                return ""
            data = await asyncio.to_thread(path.read_bytes)
            return data.decode("utf-8", errors="replace")
        return await read_log_tail(path, limit)

    async def describe(self, record: TaskRecord) -> Dict[str, Any]:
        payload = record.to_payload(log_path=str(self.log_path(record.id)))
        handle = await self.registry.get(record.id)
        payload["mode"] = "spawned" if isinstance(handle, SpawnedHandle) else ("attached" if handle else None)
        payload["stats"] = await self._process_stats(record)
        return payload

    async def _process_stats(self, record: TaskRecord) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"alive": False}
        if not record.pid or record.status is not TaskStatus.RUNNING:
            return stats
        alive = await asyncio.to_thread(pid_exists, record.pid)
        stats["alive"] = alive
        if not alive:
            return stats
        if record.started_at:
            stats["uptime"] = max(0.0, time.time() - record.started_at)
        try:
            proc = await asyncio.to_thread(psutil.Process, record.pid)
            with proc.oneshot():
                stats["cpu_percent"] = proc.cpu_percent(interval=0.0)
                stats["memory_rss"] = proc.memory_info().rss
                stats["num_threads"] = proc.num_threads()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass
        return stats
