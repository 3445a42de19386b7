from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, List, Optional, Protocol

import aiofiles

from .config import Settings
from .errors import InvalidTransition, PersistenceFailure, TaskNotFound
from .record import TaskRecord, TaskStatus

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"status", "started_at", "ended_at", "pid", "exit_code"})


class RuntimeStore:
    """Storage paths for task metadata and logs."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings.from_env()
        self.root = Path(self.settings.base_dir)
        self.tasks_dir = self.root / "tasks"
        self.logs_dir = self.root / "logs"

        for d in (self.tasks_dir, self.logs_dir):
            d.mkdir(parents=True, exist_ok=True)

    def log_path(self, task_id: str) -> Path:
        return self.logs_dir / f"{task_id}.log"


class TaskStore(Protocol):
    """Read/update contract the task manager relies on."""

    async def get(self, task_id: str) -> Optional[TaskRecord]: ...

    async def save(self, record: TaskRecord) -> None: ...

    async def update(self, task_id: str, **fields: Any) -> TaskRecord: ...

    async def list(self) -> List[TaskRecord]: ...


class JsonTaskStore:
    """One ``meta.json`` per task under ``tasks_dir/<id>/``."""

    def __init__(self, tasks_dir: Path) -> None:
        self.tasks_dir = Path(tasks_dir)
        self._lock = asyncio.Lock()

    def _meta_path(self, task_id: str) -> Path:
        if not task_id or "/" in task_id or task_id in (".", ".."):
            raise TaskNotFound(f"invalid task id {task_id!r}", task_id=task_id)
        return self.tasks_dir / task_id / "meta.json"

    async def _load(self, task_id: str) -> Optional[TaskRecord]:
        meta_path = self._meta_path(task_id)
        if not meta_path.exists():
            return None
        try:
            async with aiofiles.open(meta_path, "r", encoding="utf-8") as fh:
                data = json.loads(await fh.read())
            return TaskRecord.from_dict(data)
        except (OSError, ValueError, KeyError) as exc:
            raise PersistenceFailure(f"cannot load task {task_id}: {exc}", task_id=task_id) from exc

    async def _write(self, record: TaskRecord) -> None:
        meta_path = self._meta_path(record.id)
        tmp_path = meta_path.with_name("meta.json.tmp")
        try:
            await asyncio.to_thread(meta_path.parent.mkdir, parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as fh:
                await fh.write(json.dumps(record.to_dict(), indent=2))
            await asyncio.to_thread(tmp_path.replace, meta_path)
        except OSError as exc:
            raise PersistenceFailure(f"cannot save task {record.id}: {exc}", task_id=record.id) from exc

    async def get(self, task_id: str) -> Optional[TaskRecord]:
        try:
            return await self._load(task_id)
        except TaskNotFound:
            return None

    async def save(self, record: TaskRecord) -> None:
        async with self._lock:
            await self._write(record)

    async def update(self, task_id: str, **fields: Any) -> TaskRecord:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"fields not updatable: {sorted(unknown)}")
        async with self._lock:
            record = await self._load(task_id)
            if record is None:
                raise TaskNotFound(f"task {task_id} not found", task_id=task_id)
            if "status" in fields:
                status = TaskStatus(fields["status"])
                if status is not record.status and not record.status.can_transition(status):
                    raise InvalidTransition(
                        f"task {task_id} cannot move from {record.status.value} to {status.value}",
                        task_id=task_id,
                    )
                fields["status"] = status
            for key, value in fields.items():
                setattr(record, key, value)
            await self._write(record)
            return record

    async def list(self) -> List[TaskRecord]:
        records: List[TaskRecord] = []
        for meta in sorted(self.tasks_dir.glob("*/meta.json")):
            try:
                record = await self._load(meta.parent.name)
            except PersistenceFailure:
                logger.warning("skipping unreadable task metadata %s", meta)
                continue
            if record:
                records.append(record)
        return sorted(records, key=lambda rec: rec.created_at, reverse=True)
