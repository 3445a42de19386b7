from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
from asyncio import Queue as AsyncQueue, QueueEmpty, QueueFull
import time

EVENT_QUEUE_SIZE = 256


class EventType(Enum):
    TASK_CREATED = "task.created"
    TASK_RUNNING = "task.running"
    TASK_ATTACHED = "task.attached"
    TASK_EXITED = "task.exited"


@dataclass
class TaskEvent:
    type: EventType
    task_id: str
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "task_id": self.task_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }


class EventBus:
    """Process-local lifecycle bus.

    Subscribers may filter on a single task id. A subscriber that falls
    behind loses its oldest events rather than stalling publishers.
    """

    def __init__(self, maxsize: int = EVENT_QUEUE_SIZE):
        self.maxsize = maxsize
        self._subscribers: Dict[AsyncQueue, Optional[str]] = {}

    def subscribe(self, task_id: Optional[str] = None) -> "AsyncQueue[TaskEvent]":
        q: AsyncQueue[TaskEvent] = AsyncQueue(maxsize=self.maxsize)
        self._subscribers[q] = task_id
        return q

    def unsubscribe(self, q: "AsyncQueue[TaskEvent]") -> None:
        self._subscribers.pop(q, None)

    async def publish(self, event: TaskEvent) -> None:
        for q, task_filter in list(self._subscribers.items()):
            if task_filter is not None and task_filter != event.task_id:
                continue
            while True:
                try:
                    q.put_nowait(event)
                    break
                except QueueFull:
                    try:
                        q.get_nowait()
                    except QueueEmpty:
                        pass


_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus
