# tests/test_events.py

from __future__ import annotations

import pytest

from task_shells.events import EventBus, EventType, TaskEvent


@pytest.mark.asyncio
async def test_filtered_subscriber_only_sees_its_task() -> None:
    bus = EventBus()
    everything = bus.subscribe()
    only_a = bus.subscribe("a")

    await bus.publish(TaskEvent(type=EventType.TASK_CREATED, task_id="a"))
    await bus.publish(TaskEvent(type=EventType.TASK_CREATED, task_id="b"))

    assert everything.qsize() == 2
    assert only_a.qsize() == 1
    assert only_a.get_nowait().task_id == "a"


@pytest.mark.asyncio
async def test_slow_subscriber_keeps_newest_events() -> None:
    bus = EventBus(maxsize=2)
    q = bus.subscribe()
    for i in range(4):
        await bus.publish(TaskEvent(type=EventType.TASK_RUNNING, task_id=str(i)))

    assert [q.get_nowait().task_id for _ in range(q.qsize())] == ["2", "3"]


@pytest.mark.asyncio
async def test_unsubscribed_queue_receives_nothing() -> None:
    bus = EventBus()
    q = bus.subscribe()
    bus.unsubscribe(q)
    await bus.publish(TaskEvent(type=EventType.TASK_EXITED, task_id="x"))
    assert q.empty()


def test_event_dict_uses_wire_names() -> None:
    event = TaskEvent(type=EventType.TASK_EXITED, task_id="t", timestamp=1.0, data={"exit_code": 0})
    assert event.to_dict() == {
        "type": "task.exited",
        "task_id": "t",
        "timestamp": 1.0,
        "data": {"exit_code": 0},
    }
