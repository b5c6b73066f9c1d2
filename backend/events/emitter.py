"""Run-scoped event emitter handed to flows and steps.

``RunEmitter`` is the seam between the state machine and the outside world:
steps call :meth:`RunEmitter.emit` for progress events, and the engine calls
:meth:`RunEmitter.emit_state` after every merged step so the thread store
always holds the last committed state.
"""

from collections.abc import Callable
from typing import Any

import structlog

from events.bus import EventBus
from events.types import EventType, RunEvent

logger = structlog.get_logger(__name__)

StateSink = Callable[[dict[str, Any]], None]
Serializer = Callable[[dict[str, Any]], dict[str, Any]]


class RunEmitter:
    """Publishes events for one run of one thread.

    Without an event bus every event is dropped, which lets a flow run
    outside an HTTP run (tests, scripts).

    Attributes:
        thread_id: Thread whose state the run mutates
        run_id: Id of the run, used as the bus key
        commit: Called with the full state on every ``emit_state``
        serialize: Renders state for the ``values`` event
    """

    def __init__(
        self,
        event_bus: EventBus | None = None,
        thread_id: str = "",
        run_id: str = "",
        commit: StateSink | None = None,
        serialize: Serializer | None = None,
    ) -> None:
        self.event_bus = event_bus
        self.thread_id = thread_id
        self.run_id = run_id
        self.commit = commit
        self.serialize = serialize
        self.events_emitted = 0

    async def emit(self, event: EventType | str, payload: Any) -> None:
        """Publish one event for this run."""
        event_type = EventType(event)
        self.events_emitted += 1
        if self.event_bus is None:
            logger.debug("event_dropped", event_type=event_type.value)
            return
        await self.event_bus.publish(
            RunEvent(
                type=event_type,
                thread_id=self.thread_id,
                run_id=self.run_id,
                data=payload,
            )
        )

    async def emit_state(self, state: dict[str, Any]) -> None:
        """Persist ``state`` and publish it as a ``values`` event."""
        if self.commit is not None:
            self.commit(state)
        payload = self.serialize(state) if self.serialize else state
        await self.emit(EventType.VALUES, payload)
