from typing import Optional


class TaskShellError(Exception):
    """Base class for task supervision errors."""

    def __init__(self, message: str, *, task_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class TaskNotFound(TaskShellError, LookupError):
    pass


class UnsupportedEnvironment(TaskShellError):
    pass


class MissingEnvironmentName(TaskShellError):
    pass


class InvalidKernelSpec(TaskShellError):
    pass


class PtyOpenFailure(TaskShellError):
    pass


class SpawnFailure(TaskShellError):
    pass


class WriteFailure(TaskShellError):
    pass


class PersistenceFailure(TaskShellError):
    pass


class InvalidTransition(TaskShellError):
    """A status change that would move a task backwards or skip Running."""
