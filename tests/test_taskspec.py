# tests/test_taskspec.py

from __future__ import annotations

from pathlib import Path

import pytest

from task_shells.taskspec import TaskSpec, load_taskspec, parse_taskspec_data


def test_compose_document(tmp_path: Path) -> None:
    path = tmp_path / "tasks.yaml"
    path.write_text(
        """
tasks:
  train:
    command: python train.py --epochs 3
    env: {type: conda, name: ml}
    cwd: ~/proj
  notebook:
    command: python analyse.py
    env_type: jupyter
    env_name: /opt/kernels/py311/kernel.json
""",
        encoding="utf-8",
    )

    specs = load_taskspec(path)

    assert specs["train"] == TaskSpec(
        name="train", command="python train.py --epochs 3", env_type="conda", env_name="ml", cwd="~/proj"
    )
    assert specs["notebook"].env_type == "jupyter"
    assert specs["notebook"].env_name == "/opt/kernels/py311/kernel.json"


def test_single_task_defaults_name_to_file_stem(tmp_path: Path) -> None:
    path = tmp_path / "backup.yml"
    path.write_text("command: rsync -a src/ dst/\n", encoding="utf-8")

    assert load_taskspec(path) == {"backup": TaskSpec(name="backup", command="rsync -a src/ dst/")}


def test_directory_merge_rejects_duplicates(tmp_path: Path) -> None:
    (tmp_path / "a.yaml").write_text("name: job\ncommand: echo a\n", encoding="utf-8")
    (tmp_path / "b.yaml").write_text("name: other\ncommand: echo b\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
    assert sorted(load_taskspec(tmp_path)) == ["job", "other"]

    (tmp_path / "c.yaml").write_text("name: job\ncommand: echo c\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_taskspec(tmp_path)


def test_missing_command_is_rejected() -> None:
    with pytest.raises(ValueError):
        parse_taskspec_data({"tasks": {"x": {"cwd": "/tmp"}}})


def test_unrecognised_documents() -> None:
    assert parse_taskspec_data(["not", "a", "mapping"]) == {}
    assert parse_taskspec_data({"unrelated": 1}) == {}
    assert load_taskspec("/nonexistent/path.yaml") == {}
