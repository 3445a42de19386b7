from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


@dataclass(frozen=True)
class TaskSpec:
    name: str
    command: str
    env_type: str = "shell"
    env_name: Optional[str] = None
    cwd: Optional[str] = None
    owner: str = "admin"


def _spec_from_dict(name: str, raw: Dict[str, Any]) -> TaskSpec:
    command = raw.get("command")
    if not command:
        raise ValueError(f"taskspec '{name}' missing command")
    if not isinstance(command, str):
        raise ValueError(f"taskspec '{name}' command must be a string")

    env = raw.get("env")
    env_type = raw.get("env_type")
    env_name = raw.get("env_name")
    # Compact form: env: {type: conda, name: ml}
    if isinstance(env, dict):
        env_type = env_type or env.get("type")
        env_name = env_name or env.get("name") or env.get("kernel")
    elif env is not None:
        raise ValueError(f"taskspec '{name}' env must be a mapping")

    return TaskSpec(
        name=str(raw.get("name") or name),
        command=command,
        env_type=str(env_type or "shell"),
        env_name=str(env_name) if env_name else None,
        cwd=str(raw["cwd"]) if raw.get("cwd") else None,
        owner=str(raw.get("owner") or "admin"),
    )


def parse_taskspec_data(raw: Any, *, default_name: Optional[str] = None) -> Dict[str, TaskSpec]:
    """Parse an in-memory task document into a mapping of name -> TaskSpec.

    Supported shapes:
    - Compose-like: {tasks: {name: {...}}}
    - Single-task: {name: "...", command: ...} (name optional; defaults to `default_name`)
    """
    if not isinstance(raw, dict):
        return {}

    if isinstance(raw.get("tasks"), dict):
        out: Dict[str, TaskSpec] = {}
        for task_name, task_def in raw["tasks"].items():
            if not isinstance(task_def, dict):
                continue
            spec = _spec_from_dict(str(task_name), task_def)
            out[spec.name] = spec
        return out

    if "command" in raw:
        task_name = str(raw.get("name") or default_name or "task")
        return {task_name: _spec_from_dict(task_name, raw)}

    return {}


def load_taskspec(path: Union[str, Path]) -> Dict[str, TaskSpec]:
    p = Path(path)
    if not p.exists():
        return {}

    if p.is_dir():
        merged: Dict[str, TaskSpec] = {}
        for child in sorted(p.iterdir()):
            if child.suffix.lower() not in (".yaml", ".yml"):
                continue
            for name, spec in load_taskspec(child).items():
                if name in merged:
                    raise ValueError(f"duplicate task name '{name}' in {p}")
                merged[name] = spec
        return merged

    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    return parse_taskspec_data(raw, default_name=p.stem)
