from __future__ import annotations

import logging
from pathlib import Path

import aiofiles

from .broadcast import OutputBroadcast
from .config import READ_CHUNK_SIZE
from .pty import PtyTerminal

logger = logging.getLogger(__name__)


class OutputPipeline:
    """Drains a task's PTY into its log file and live viewers.

    Chunks are written and published in the order they were read. A failure
    to append or to publish is logged and the loop keeps going; only EOF or a
    read error ends it.
    """

    def __init__(
        self,
        task_id: str,
        terminal: PtyTerminal,
        broadcast: OutputBroadcast,
        log_path: Path,
        *,
        chunk_size: int = READ_CHUNK_SIZE,
    ) -> None:
        self.task_id = task_id
        self.terminal = terminal
        self.broadcast = broadcast
        self.log_path = Path(log_path)
        self.chunk_size = chunk_size
        self.bytes_read = 0

    async def _open_log(self):
        try:
            return await aiofiles.open(self.log_path, "ab")
        except OSError:
            logger.exception("task %s: cannot open log %s, output will not be persisted", self.task_id, self.log_path)
            return None

    async def run(self) -> int:
        log_fh = await self._open_log()
        try:
            while True:
                try:
                    data = await self.terminal.read(self.chunk_size)
                except OSError:
                    logger.exception("task %s: PTY read failed", self.task_id)
                    break
                if not data:
                    break
                self.bytes_read += len(data)

                if log_fh is not None:
                    try:
                        await log_fh.write(data)
                        await log_fh.flush()
                    except OSError:
                        logger.warning("task %s: log append failed", self.task_id, exc_info=True)

                try:
                    self.broadcast.publish(data)
                except Exception:
                    logger.warning("task %s: publish failed", self.task_id, exc_info=True)
        finally:
            if log_fh is not None:
                try:
                    await log_fh.close()
                except OSError:
                    logger.debug("task %s: closing log failed", self.task_id, exc_info=True)
            await self.terminal.close()
            self.broadcast.close()
        logger.debug("task %s: output pipeline finished after %d bytes", self.task_id, self.bytes_read)
        return self.bytes_read
