from __future__ import annotations

import asyncio
import errno
import fcntl
import logging
import os
import pty
import struct
import termios
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Optional, Tuple

from .config import PTY_COLS, PTY_ROWS, READ_CHUNK_SIZE
from .envs import ResolvedCommand
from .errors import PtyOpenFailure, SpawnFailure, WriteFailure
from .record import TaskRecord

logger = logging.getLogger(__name__)


def open_pty(cols: int = PTY_COLS, rows: int = PTY_ROWS) -> Tuple[int, int]:
    """Open a master/slave pair with a fixed window size."""
    master_fd, slave_fd = pty.openpty()
    try:
        winsz = struct.pack("HHHH", rows, cols, 0, 0)
        fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, winsz)
    except OSError:
        os.close(master_fd)
        os.close(slave_fd)
        raise
    return master_fd, slave_fd


def _read_blocking(fd: int, size: int) -> bytes:
    try:
        return os.read(fd, size)
    except OSError as exc:
        # Linux reports a hung-up PTY (all slave fds closed) as EIO.
        if exc.errno == errno.EIO:
            return b""
        raise


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


class PtyTerminal:
    """Master side of a task's PTY: read, write and close.

    Reads run on a dedicated thread so a blocked read never ties up the
    event loop or the shared default executor. Writes are serialized by
    ``write_lock``.
    """

    def __init__(self, master_fd: int, *, label: Optional[str] = None) -> None:
        self.master_fd = master_fd
        self.label = label
        self.write_lock = asyncio.Lock()
        self.closed = False
        self._reader = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"pty-reader-{label or master_fd}")

    async def read(self, size: int = READ_CHUNK_SIZE) -> bytes:
        if self.closed:
            return b""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._reader, _read_blocking, self.master_fd, size)

    async def write(self, data: bytes) -> None:
        async with self.write_lock:
            if self.closed:
                raise WriteFailure("terminal is closed", task_id=self.label)
            try:
                await asyncio.to_thread(_write_all, self.master_fd, data)
            except OSError as exc:
                raise WriteFailure(f"write to terminal failed: {exc}", task_id=self.label) from exc

    async def close(self) -> None:
        async with self.write_lock:
            if self.closed:
                return
            self.closed = True
            try:
                os.close(self.master_fd)
            except OSError:
                logger.debug("master fd %s already closed", self.master_fd)
        self._reader.shutdown(wait=False)


def _prepare_env(overrides: Dict[str, str]) -> Dict[str, str]:
    env = os.environ.copy()
    env.update(overrides)
    env.setdefault("TERM", "xterm-256color")
    return env


def _resolve_cwd(cwd: Optional[str]) -> Optional[str]:
    if not cwd:
        return None
    return str(Path(os.path.expanduser(cwd)))


class PtyProcessHost:
    """Starts task children attached to a fresh pseudo-terminal.

    Children run with this process's own user and group; no privilege
    switching is attempted.
    """

    def __init__(self, *, cols: int = PTY_COLS, rows: int = PTY_ROWS) -> None:
        self.cols = cols
        self.rows = rows

    async def spawn(
        self, task: TaskRecord, resolved: ResolvedCommand
    ) -> Tuple[PtyTerminal, asyncio.subprocess.Process]:
        try:
            master_fd, slave_fd = await asyncio.to_thread(open_pty, self.cols, self.rows)
        except OSError as exc:
            raise PtyOpenFailure(f"failed to open PTY: {exc}", task_id=task.id) from exc

        env = _prepare_env(resolved.env_overrides)
        try:
            proc = await asyncio.create_subprocess_exec(
                *resolved.argv,
                cwd=_resolve_cwd(task.cwd),
                env=env,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            os.close(master_fd)
            raise SpawnFailure(f"failed to spawn {resolved.program!r}: {exc}", task_id=task.id) from exc
        finally:
            os.close(slave_fd)

        logger.debug("spawned task %s pid=%s argv=%r", task.id, proc.pid, resolved.argv)
        return PtyTerminal(master_fd, label=task.id), proc

    async def write(self, terminal: Optional[PtyTerminal], data: bytes) -> None:
        if terminal is None:
            return
        await terminal.write(data)
