# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest

from task_shells.config import Settings
from task_shells.manager import TaskManager
from task_shells.store import JsonTaskStore

from .fakes import RecordingNotifier


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a per-test directory with short intervals."""
    return Settings(
        base_dir=tmp_path / "state",
        attach_poll_interval=0.05,
        drain_timeout=2.0,
        notify_timeout=2.0,
    )


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def manager(settings: Settings, notifier: RecordingNotifier) -> TaskManager:
    return TaskManager(settings=settings, notifier=notifier)


@pytest.fixture()
def store(tmp_path: Path) -> JsonTaskStore:
    tasks_dir = tmp_path / "tasks"
    tasks_dir.mkdir()
    return JsonTaskStore(tasks_dir)
