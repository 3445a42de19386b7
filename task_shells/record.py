from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Optional
import time


class TaskStatus(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    STOPPED = "Stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.STOPPED)

    def can_transition(self, to: "TaskStatus") -> bool:
        """Statuses only move forward: Pending -> Running -> terminal."""
        if self is TaskStatus.PENDING:
            return to is TaskStatus.RUNNING
        if self is TaskStatus.RUNNING:
            return to.is_terminal
        return False


@dataclass
class TaskRecord:
    """Persisted description of a supervised task."""

    id: str
    name: str
    command: str
    env_type: str
    cwd: str
    owner: str = "admin"
    env_name: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    created_at: float = 0.0
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    pid: Optional[int] = None
    exit_code: Optional[int] = None

    def __post_init__(self) -> None:
        if not isinstance(self.status, TaskStatus):
            self.status = TaskStatus(self.status)
        if not self.created_at:
            self.created_at = time.time()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskRecord":
        def opt_float(k):
            v = data.get(k)
            return float(v) if v is not None else None

        def opt_int(k):
            v = data.get(k)
            return int(v) if v is not None else None

        return cls(
            id=str(data["id"]),
            owner=str(data.get("owner") or "admin"),
            name=str(data.get("name") or ""),
            command=str(data.get("command") or ""),
            env_type=str(data.get("env_type") or "shell"),
            env_name=data.get("env_name"),
            cwd=str(data.get("cwd") or "."),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            created_at=float(data.get("created_at") or time.time()),
            started_at=opt_float("started_at"),
            ended_at=opt_float("ended_at"),
            pid=opt_int("pid"),
            exit_code=opt_int("exit_code"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "name": self.name,
            "command": self.command,
            "env_type": self.env_type,
            "env_name": self.env_name,
            "cwd": self.cwd,
            "status": self.status.value,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "pid": self.pid,
            "exit_code": self.exit_code,
        }

    def to_payload(self, *, log_path: Optional[str] = None) -> Dict[str, Any]:
        payload = self.to_dict()
        payload["duration"] = self.duration
        if log_path is not None:
            payload["log_path"] = log_path
        return payload

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.ended_at is None:
            return None
        return max(0.0, self.ended_at - self.started_at)
