from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import FileResponse, PlainTextResponse

from ..errors import (
    InvalidKernelSpec,
    InvalidTransition,
    MissingEnvironmentName,
    PtyOpenFailure,
    SpawnFailure,
    TaskNotFound,
    UnsupportedEnvironment,
)
from ..manager import TaskManager
from .. import get_manager as get_shared_manager

router = APIRouter()


async def get_manager_dep() -> TaskManager:
    # Hosts call configure_manager() at startup to pick settings and notifier.
    return get_shared_manager()


@router.get("/api/tasks")
async def list_tasks(mgr: TaskManager = Depends(get_manager_dep)):
    records = await mgr.list_tasks()
    return {"ok": True, "data": [r.to_payload() for r in records]}


@router.get("/api/tasks/{task_id}")
async def get_task(task_id: str, mgr: TaskManager = Depends(get_manager_dep)):
    record = await mgr.get_task(task_id)
    if not record:
        raise HTTPException(404, "Task not found")
    return {"ok": True, "data": await mgr.describe(record)}


@router.post("/api/tasks")
async def create_task(payload: dict = Body(...), mgr: TaskManager = Depends(get_manager_dep)):
    name = payload.get("name")
    command = payload.get("command")
    if not name or not command:
        raise HTTPException(400, "name and command required")
    try:
        record = await mgr.create_task(
            str(name),
            str(command),
            env_type=str(payload.get("env_type") or "shell"),
            env_name=payload.get("env_name"),
            cwd=payload.get("cwd"),
            owner=str(payload.get("owner") or "admin"),
        )
    except UnsupportedEnvironment as exc:
        raise HTTPException(400, str(exc))
    return {"ok": True, "data": record.to_payload()}


@router.post("/api/tasks/{task_id}/start")
async def start_task(task_id: str, mgr: TaskManager = Depends(get_manager_dep)):
    try:
        record = await mgr.spawn(task_id)
    except TaskNotFound:
        raise HTTPException(404, "Task not found")
    except InvalidTransition as exc:
        raise HTTPException(409, str(exc))
    except (UnsupportedEnvironment, MissingEnvironmentName, InvalidKernelSpec) as exc:
        raise HTTPException(400, str(exc))
    except (PtyOpenFailure, SpawnFailure) as exc:
        raise HTTPException(500, str(exc))
    return {"ok": True, "data": record.to_payload()}


@router.post("/api/tasks/{task_id}/attach")
async def attach_task(task_id: str, payload: dict = Body(...), mgr: TaskManager = Depends(get_manager_dep)):
    pid = payload.get("pid")
    if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
        raise HTTPException(400, "pid must be a positive integer")
    try:
        record = await mgr.attach(task_id, pid)
    except TaskNotFound:
        raise HTTPException(404, "Task not found")
    except InvalidTransition as exc:
        raise HTTPException(409, str(exc))
    return {"ok": True, "data": record.to_payload()}


@router.get("/api/tasks/{task_id}/log")
async def task_log(task_id: str, mgr: TaskManager = Depends(get_manager_dep)):
    """Serve the persisted PTY log for a task."""
    record = await mgr.get_task(task_id)
    if not record:
        raise HTTPException(404, "Task not found")
    path = mgr.log_path(task_id)
    if not path.exists():
        return PlainTextResponse("")
    return FileResponse(path, media_type="text/plain")
