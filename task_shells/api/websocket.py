import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..errors import TaskNotFound, WriteFailure
from ..events import get_event_bus
from ..manager import TaskManager
from .fastapi_router import get_manager_dep

logger = logging.getLogger(__name__)

router = APIRouter()

@router.websocket("/ws/events")
async def task_events_ws(websocket: WebSocket, task_id: Optional[str] = None):
    """Stream task lifecycle events, optionally for a single task."""
    await websocket.accept()
    bus = get_event_bus()
    q = bus.subscribe(task_id)

    try:
        while True:
            event = await q.get()
            await websocket.send_json(event.to_dict())
    except WebSocketDisconnect:
        pass
    finally:
        bus.unsubscribe(q)


async def _pump_output(websocket: WebSocket, q: asyncio.Queue) -> None:
    while True:
        chunk = await q.get()
        if chunk is None:
            await websocket.close()
            return
        await websocket.send_bytes(chunk)


@router.websocket("/api/tasks/{task_id}/pty")
async def task_pty_ws(websocket: WebSocket, task_id: str, mgr: TaskManager = Depends(get_manager_dep)):
    """Live terminal: output chunks out, keystrokes in.

    Viewers joining mid-stream only see output from that point on; the full
    history is in the task log.
    """
    await websocket.accept()
    try:
        q = await mgr.subscribe_output(task_id)
    except TaskNotFound:
        await websocket.close(code=4404)
        return

    pump = asyncio.create_task(_pump_output(websocket, q))
    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break
            data = message.get("bytes")
            if data is None and message.get("text") is not None:
                data = message["text"].encode("utf-8")
            if not data:
                continue
            try:
                await mgr.write_stdin(task_id, data)
            except WriteFailure:
                logger.debug("task %s: dropped viewer input, terminal closed", task_id)
    except WebSocketDisconnect:
        pass
    finally:
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.debug("task %s: output pump for viewer failed", task_id, exc_info=True)
        await mgr.unsubscribe_output(task_id, q)
