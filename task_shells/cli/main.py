import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from ..config import Settings, configure_logging
from ..envs import EnvironmentKind, kernel_bin_dir
from ..errors import TaskShellError
from ..manager import TaskManager
from ..record import TaskRecord
from ..taskspec import load_taskspec

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Task Shells CLI")
    parser.add_argument("--base-dir", default=None, help="State directory (default: $TASK_SHELLS_BASE_DIR or ~/.cache/task_shells)")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # ts create [--file tasks.yaml] | [--name ... -- <command>]
    create_parser = subparsers.add_parser("create", help="Create Pending task(s)")
    create_parser.add_argument("--file", default=None, help="YAML task file or directory")
    create_parser.add_argument("--name", default=None, help="Task name")
    create_parser.add_argument("--env-type", choices=[k.value for k in EnvironmentKind], default="shell")
    create_parser.add_argument("--env-name", default=None, help="Environment name (conda family) or kernel.json path (jupyter)")
    create_parser.add_argument("--cwd", default=None, help="Working directory")
    create_parser.add_argument("--owner", default="admin")
    create_parser.add_argument("cmd", nargs=argparse.REMAINDER, help="Command string (prefix with --)")

    subparsers.add_parser("list", help="List tasks")

    show_parser = subparsers.add_parser("show", help="Show one task")
    show_parser.add_argument("id")

    logs_parser = subparsers.add_parser("logs", help="Print a task's persisted log")
    logs_parser.add_argument("id")
    logs_parser.add_argument("--tail", type=int, default=None, help="Only the last N bytes")

    run_parser = subparsers.add_parser("run", help="Spawn a task and stream its output until it exits")
    run_parser.add_argument("id")

    attach_parser = subparsers.add_parser("attach", help="Supervise an already-running PID until it exits")
    attach_parser.add_argument("id")
    attach_parser.add_argument("pid", type=int)

    kernel_parser = subparsers.add_parser("kernel-path", help="Print the interpreter directory of a kernel.json")
    kernel_parser.add_argument("kernel_spec")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = Settings.from_env(Path(args.base_dir).expanduser().resolve() if args.base_dir else None)
    configure_logging(settings.log_level)

    try:
        return asyncio.run(run_async(args, settings))
    except KeyboardInterrupt:
        return 130
    except (TaskShellError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


def _print_row(rec: TaskRecord) -> None:
    exit_code = "-" if rec.exit_code is None else rec.exit_code
    print(f"{rec.id:<36} {rec.name[:15]:<15} {rec.env_type:<10} {rec.status.value:<9} {rec.pid or '-':<7} {exit_code}")


async def _stream_until_exit(manager: TaskManager, task_id: str) -> None:
    q = await manager.subscribe_output(task_id)
    out = sys.stdout.buffer
    while True:
        chunk = await q.get()
        if chunk is None:
            break
        out.write(chunk)
        out.flush()


async def run_async(args, settings: Settings) -> int:
    if args.command == "kernel-path":
        print(kernel_bin_dir(args.kernel_spec))
        return 0

    manager = TaskManager(settings=settings)

    if args.command == "create":
        created: List[TaskRecord] = []
        if args.file:
            specs = load_taskspec(args.file)
            if not specs:
                print(f"No tasks found in {args.file}", file=sys.stderr)
                return 1
            for spec in specs.values():
                created.append(await manager.create_task(
                    spec.name, spec.command, env_type=spec.env_type, env_name=spec.env_name,
                    cwd=spec.cwd, owner=spec.owner,
                ))
        else:
            cmd = list(args.cmd or [])
            if cmd and cmd[0] == "--":
                cmd = cmd[1:]
            if not cmd:
                raise SystemExit("create requires a command. Example: task-shells create --name build -- 'make all'")
            command = " ".join(cmd)
            created.append(await manager.create_task(
                args.name or cmd[0], command, env_type=args.env_type, env_name=args.env_name,
                cwd=args.cwd, owner=args.owner,
            ))
        for rec in created:
            print(rec.id)
        return 0

    if args.command == "list":
        print(f"{'ID':<36} {'NAME':<15} {'ENV':<10} {'STATUS':<9} {'PID':<7} EXIT")
        for rec in await manager.list_tasks():
            _print_row(rec)
        return 0

    if args.command == "show":
        rec = await manager.get_task(args.id)
        if not rec:
            print("Task not found", file=sys.stderr)
            return 1
        print(json.dumps(await manager.describe(rec), indent=2))
        return 0

    if args.command == "logs":
        text = await manager.read_log(args.id, limit=args.tail)
        sys.stdout.write(text)
        return 0

    if args.command == "run":
        await manager.spawn(args.id)
        await _stream_until_exit(manager, args.id)
        rec = await manager.wait(args.id)
        if rec is None or rec.exit_code is None:
            return 1
        return rec.exit_code

    if args.command == "attach":
        await manager.attach(args.id, args.pid)
        print(f"Watching pid {args.pid} for task {args.id}. Press Ctrl+C to stop.")
        rec = await manager.wait(args.id)
        print(f"Task {args.id}: {rec.status.value if rec else 'unknown'}")
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
