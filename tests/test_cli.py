# tests/test_cli.py

from __future__ import annotations

import json
from pathlib import Path

import pytest

from task_shells.cli.main import main


def test_create_list_run_and_logs(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    base = ["--base-dir", str(tmp_path / "state")]

    assert main([*base, "create", "--name", "greet", "--", "echo", "hi-there"]) == 0
    task_id = capsys.readouterr().out.strip()

    assert main([*base, "list"]) == 0
    listing = capsys.readouterr().out
    assert task_id in listing
    assert "Pending" in listing

    assert main([*base, "run", task_id]) == 0
    assert "hi-there" in capsys.readouterr().out

    assert main([*base, "logs", task_id]) == 0
    assert "hi-there" in capsys.readouterr().out

    assert main([*base, "show", task_id]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["status"] == "Completed"
    assert shown["exit_code"] == 0


def test_run_propagates_failure_and_errors(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    base = ["--base-dir", str(tmp_path / "state")]
    assert main([*base, "create", "--name", "boom", "--", "exit 7"]) == 0
    task_id = capsys.readouterr().out.strip()

    assert main([*base, "run", task_id]) == 1
    assert main([*base, "run", "missing"]) == 1
    assert "error:" in capsys.readouterr().err


def test_create_from_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    spec = tmp_path / "tasks.yaml"
    spec.write_text("tasks:\n  a: {command: echo a}\n  b: {command: echo b}\n", encoding="utf-8")

    assert main(["--base-dir", str(tmp_path / "state"), "create", "--file", str(spec)]) == 0
    assert len(capsys.readouterr().out.split()) == 2


def test_kernel_path(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    kernel = tmp_path / "kernel.json"
    kernel.write_text(
        json.dumps({"argv": ["/opt/env/bin/python", "-m", "ipykernel_launcher"], "display_name": "py", "language": "python"}),
        encoding="utf-8",
    )
    assert main(["kernel-path", str(kernel)]) == 0
    assert capsys.readouterr().out.strip() == "/opt/env/bin"
