import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

READ_CHUNK_SIZE = 4096
BROADCAST_CAPACITY = 100
PTY_COLS = 80
PTY_ROWS = 24


def _default_base_dir() -> Path:
    return Path.home() / ".cache" / "task_shells"


def truthy_env(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    val = str(raw).strip().lower()
    return val in {"1", "true", "yes", "y", "on"}


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for a task manager."""

    base_dir: Path
    shell: str = "sh"
    attach_poll_interval: float = 2.0
    log_tail_bytes: int = 2000
    notify_timeout: float = 30.0
    drain_timeout: float = 5.0
    notify_log: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, base_dir: Optional[Path] = None) -> "Settings":
        if base_dir is not None:
            base = Path(base_dir)
        elif os.environ.get("TASK_SHELLS_BASE_DIR"):
            base = Path(os.path.expanduser(os.environ["TASK_SHELLS_BASE_DIR"])).resolve()
        else:
            base = _default_base_dir()
        return cls(
            base_dir=base,
            shell=os.environ.get("TASK_SHELLS_SHELL") or "sh",
            attach_poll_interval=_float_env("TASK_SHELLS_ATTACH_POLL_INTERVAL", 2.0),
            log_tail_bytes=_int_env("TASK_SHELLS_LOG_TAIL_BYTES", 2000),
            notify_timeout=_float_env("TASK_SHELLS_NOTIFY_TIMEOUT", 30.0),
            drain_timeout=_float_env("TASK_SHELLS_DRAIN_TIMEOUT", 5.0),
            notify_log=truthy_env("TASK_SHELLS_NOTIFY_LOG", default=False),
            log_level=(os.environ.get("TASK_SHELLS_LOG_LEVEL") or "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
