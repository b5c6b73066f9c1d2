"""Event system for streaming run progress.

This package provides the event infrastructure between flow execution and
the SSE stream. The event system is an async pub/sub built on asyncio.Queue.

Key Components:
    - EventType: Enum of every SSE event name
    - RunEvent: Pydantic model for events flowing through the system
    - EventBus: Async pub/sub keyed by run id
    - RunEmitter: Run-scoped ``emit`` / ``emit_state`` handed to flows

Usage:
    >>> from events import EventBus, EventType, RunEmitter
    >>>
    >>> bus = EventBus()
    >>> queue = bus.subscribe("run-1")
    >>> emitter = RunEmitter(bus, thread_id="thread-1", run_id="run-1")
    >>> await emitter.emit(EventType.PROGRESS, {"value": 25})
    >>> event = await queue.get()
    >>> print(event.to_sse())

Event Flow:
    1. Steps and the engine emit through RunEmitter
    2. RunEmitter publishes RunEvents on the EventBus
    3. The SSE endpoint drains the run's queue until RUN_CLOSED
"""

from events.bus import EventBus
from events.emitter import RunEmitter
from events.types import EventType, RunEvent

__all__ = [
    "EventType",
    "RunEvent",
    "EventBus",
    "RunEmitter",
]
