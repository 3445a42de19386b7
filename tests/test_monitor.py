# tests/test_monitor.py

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from task_shells.monitor import (
    AttachedMonitor,
    MonitorState,
    OwnedMonitor,
    pid_exists,
    read_log_tail,
    tail_bytes,
)
from task_shells.notify import ATTACHED_LOG_PLACEHOLDER
from task_shells.record import TaskRecord, TaskStatus
from task_shells.store import JsonTaskStore

from .fakes import BrokenUpdateStore, RecordingNotifier


async def _dead_pid() -> int:
    proc = await asyncio.create_subprocess_exec("true")
    await proc.wait()
    return proc.pid


async def _running_record(store: JsonTaskStore, pid: int) -> TaskRecord:
    rec = TaskRecord(id="t1", name="job", command="x", env_type="shell", cwd=".", status=TaskStatus.RUNNING, pid=pid)
    await store.save(rec)
    return rec


def test_tail_bytes_is_byte_level() -> None:
    assert tail_bytes(b"abc", 2000) == b"abc"
    data = b"0123456789" * 500
    assert tail_bytes(data, 2000) == data[-2000:]
    assert len(tail_bytes(data, 2000)) == 2000
    assert tail_bytes(data, 0) == b""


@pytest.mark.asyncio
async def test_read_log_tail(tmp_path: Path) -> None:
    log = tmp_path / "t.log"
    assert await read_log_tail(log, 2000) == ""

    log.write_bytes(b"a" * 3000 + b"b" * 2000)
    assert await read_log_tail(log, 2000) == "b" * 2000

    log.write_bytes(b"short")
    assert await read_log_tail(log, 2000) == "short"


@pytest.mark.asyncio
async def test_pid_exists() -> None:
    assert pid_exists(os.getpid())
    assert not pid_exists(await _dead_pid())
    assert not pid_exists(0)


@pytest.mark.asyncio
async def test_attached_monitor_completes_without_exit_code(store: JsonTaskStore) -> None:
    pid = await _dead_pid()
    await _running_record(store, pid)
    notifier = RecordingNotifier()
    monitor = AttachedMonitor("t1", pid, store, notifier, poll_interval=0.01)

    record = await asyncio.wait_for(monitor.run(), timeout=5)

    assert monitor.state is MonitorState.DONE
    assert monitor.polls == 1
    assert record.status is TaskStatus.COMPLETED
    assert record.exit_code is None
    assert record.ended_at is not None
    assert notifier.calls == [(record, ATTACHED_LOG_PLACEHOLDER)]


@pytest.mark.asyncio
async def test_attached_monitor_keeps_polling_while_alive(store: JsonTaskStore) -> None:
    proc = await asyncio.create_subprocess_exec("sleep", "0.3")
    await _running_record(store, proc.pid)
    monitor = AttachedMonitor("t1", proc.pid, store, None, poll_interval=0.05)

    task = asyncio.create_task(monitor.run())
    await asyncio.sleep(0.15)
    assert not task.done()
    assert monitor.state is MonitorState.WATCHING

    await proc.wait()
    record = await asyncio.wait_for(task, timeout=5)
    assert record.status is TaskStatus.COMPLETED
    assert monitor.polls >= 3


@pytest.mark.asyncio
async def test_attached_monitor_survives_deleted_record(store: JsonTaskStore) -> None:
    notifier = RecordingNotifier()
    monitor = AttachedMonitor("gone", await _dead_pid(), store, notifier, poll_interval=0.01)

    assert await monitor.run() is None
    assert monitor.state is MonitorState.DONE
    assert notifier.calls == []


@pytest.mark.asyncio
async def test_owned_monitor_absorbs_persistence_failure(tmp_path: Path) -> None:
    proc = await asyncio.create_subprocess_exec("sh", "-c", "exit 4")
    store = BrokenUpdateStore()
    notifier = RecordingNotifier()
    monitor = OwnedMonitor("t1", proc, store, notifier, log_path=tmp_path / "t1.log")

    assert await monitor.run() is None
    assert monitor.returncode == 4
    assert monitor.exit_code == 1
    assert store.update_calls == 1
    assert notifier.calls == []


@pytest.mark.asyncio
async def test_owned_monitor_records_coarse_exit_code(store: JsonTaskStore, tmp_path: Path) -> None:
    proc = await asyncio.create_subprocess_exec("sh", "-c", "kill -KILL $$")
    await _running_record(store, proc.pid)
    log = tmp_path / "t1.log"
    log.write_bytes(b"partial output")
    notifier = RecordingNotifier()
    monitor = OwnedMonitor("t1", proc, store, notifier, log_path=log)

    record = await monitor.run()

    assert monitor.returncode < 0
    assert record.status is TaskStatus.FAILED
    assert record.exit_code == 1
    assert notifier.calls[0][1] == "partial output"
