"""Task Shells - PTY-backed supervision of long-running tasks."""

from .manager import TaskManager
from .record import TaskRecord, TaskStatus
from .config import Settings, configure_logging
from .envs import EnvironmentKind, ResolvedCommand, resolve, kernel_bin_dir, kernel_env_overrides
from .errors import (
    TaskShellError,
    TaskNotFound,
    UnsupportedEnvironment,
    MissingEnvironmentName,
    InvalidKernelSpec,
    PtyOpenFailure,
    SpawnFailure,
    WriteFailure,
    PersistenceFailure,
    InvalidTransition,
)
from .events import get_event_bus, EventBus, TaskEvent, EventType
from .notify import Notifier, LoggingNotifier, format_notification
from .store import RuntimeStore, TaskStore, JsonTaskStore
from .taskspec import TaskSpec, load_taskspec

from typing import Optional

_shared_manager: Optional[TaskManager] = None


def configure_manager(settings: Optional[Settings] = None, **kwargs) -> TaskManager:
    """Install the manager that the HTTP adapter serves.

    Replaces any manager built earlier. Running tasks of a replaced manager
    keep their monitors but are no longer reachable through the adapter.
    """
    global _shared_manager
    _shared_manager = TaskManager(settings=settings or Settings.from_env(), **kwargs)
    return _shared_manager


def get_manager() -> TaskManager:
    """The shared manager, configured from the environment on first use."""
    if _shared_manager is None:
        return configure_manager()
    return _shared_manager


__all__ = [
    "TaskManager",
    "TaskRecord",
    "TaskStatus",
    "Settings",
    "configure_logging",
    "EnvironmentKind",
    "ResolvedCommand",
    "resolve",
    "kernel_bin_dir",
    "kernel_env_overrides",
    "TaskShellError",
    "TaskNotFound",
    "UnsupportedEnvironment",
    "MissingEnvironmentName",
    "InvalidKernelSpec",
    "PtyOpenFailure",
    "SpawnFailure",
    "WriteFailure",
    "PersistenceFailure",
    "InvalidTransition",
    "get_event_bus",
    "EventBus",
    "TaskEvent",
    "EventType",
    "Notifier",
    "LoggingNotifier",
    "format_notification",
    "RuntimeStore",
    "TaskStore",
    "JsonTaskStore",
    "TaskSpec",
    "load_taskspec",
    "configure_manager",
    "get_manager",
]
