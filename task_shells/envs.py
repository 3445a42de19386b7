"""Command resolution for the supported runtime environments.

Every environment wraps the raw task command in ``<shell> -c`` so pipes and
redirections in the command string work without parsing it into argv.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Dict, List, Mapping, Optional

from .errors import InvalidKernelSpec, MissingEnvironmentName, UnsupportedEnvironment
from .record import TaskRecord


class EnvironmentKind(str, Enum):
    SHELL = "shell"
    CONDA = "conda"
    MAMBA = "mamba"
    MICROMAMBA = "micromamba"
    UV = "uv"
    JUPYTER = "jupyter"


CONDA_FAMILY = (EnvironmentKind.CONDA, EnvironmentKind.MAMBA, EnvironmentKind.MICROMAMBA)


@dataclass(frozen=True)
class ResolvedCommand:
    program: str
    args: List[str]
    env_overrides: Dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]


@dataclass(frozen=True)
class KernelSpec:
    argv: List[str]
    display_name: str
    language: str


def load_kernel_spec(path: str) -> KernelSpec:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except OSError as exc:
        raise InvalidKernelSpec(f"cannot read kernel spec {path!r}: {exc}") from exc
    except ValueError as exc:
        raise InvalidKernelSpec(f"kernel spec {path!r} is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise InvalidKernelSpec(f"kernel spec {path!r} must be a JSON object")
    argv = raw.get("argv")
    if not isinstance(argv, list) or not all(isinstance(x, str) for x in argv):
        raise InvalidKernelSpec(f"kernel spec {path!r} argv must be a list of strings")
    for key in ("display_name", "language"):
        if not isinstance(raw.get(key), str):
            raise InvalidKernelSpec(f"kernel spec {path!r} missing {key!r}")
    if not argv:
        raise InvalidKernelSpec(f"kernel spec {path!r} has an empty argv")
    return KernelSpec(argv=list(argv), display_name=raw["display_name"], language=raw["language"])


def kernel_bin_dir(path: str) -> str:
    """Directory holding the kernel's interpreter (``argv[0]``)."""
    spec = load_kernel_spec(path)
    parent = str(PurePosixPath(spec.argv[0]).parent)
    if not spec.argv[0] or parent in ("", "."):
        raise InvalidKernelSpec(f"kernel spec {path!r} argv[0] has no directory: {spec.argv[0]!r}")
    return parent


def kernel_env_overrides(path: str, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """PATH override that makes a shell find the kernel's interpreter first.

    This is the single lookup used both standalone and inside ``resolve``.
    """
    env = os.environ if environ is None else environ
    bin_dir = kernel_bin_dir(path)
    current = env.get("PATH", "")
    return {"PATH": f"{bin_dir}{os.pathsep}{current}" if current else bin_dir}


def _environment_kind(task: TaskRecord) -> EnvironmentKind:
    try:
        return EnvironmentKind(task.env_type)
    except ValueError:
        raise UnsupportedEnvironment(f"unsupported environment type {task.env_type!r}", task_id=task.id)


def _require_env_name(task: TaskRecord, what: str) -> str:
    if not task.env_name:
        raise MissingEnvironmentName(f"{what} required for {task.env_type} tasks", task_id=task.id)
    return task.env_name


def resolve(
    task: TaskRecord,
    *,
    shell: str = "sh",
    environ: Optional[Mapping[str, str]] = None,
) -> ResolvedCommand:
    kind = _environment_kind(task)
    wrapped = [shell, "-c", task.command]

    if kind is EnvironmentKind.SHELL:
        return ResolvedCommand(program=shell, args=["-c", task.command])

    if kind in CONDA_FAMILY:
        env_name = _require_env_name(task, "Environment name")
        return ResolvedCommand(
            program=kind.value,
            args=["run", "-n", env_name, "--no-capture-output", *wrapped],
        )

    if kind is EnvironmentKind.UV:
        return ResolvedCommand(program="uv", args=["run", *wrapped])

    # jupyter: env_name is the kernel.json path
    kernel_path = _require_env_name(task, "Kernel spec path")
    try:
        overrides = kernel_env_overrides(kernel_path, environ)
    except InvalidKernelSpec as exc:
        exc.task_id = task.id
        raise
    return ResolvedCommand(program=shell, args=["-c", task.command], env_overrides=overrides)
