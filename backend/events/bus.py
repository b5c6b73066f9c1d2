"""Async event bus for run pub/sub.

Runs execute as background tasks while the HTTP layer streams their events.
The bus decouples the two:
- Multiple subscribers per run
- Async event delivery via asyncio.Queue
- Events published before anyone subscribes are buffered
- Closing a run wakes every subscriber with a sentinel event
"""

import asyncio
import threading
from collections import defaultdict

import structlog

from events.types import EventType, RunEvent

logger = structlog.get_logger(__name__)


class EventBus:
    """Async pub/sub event bus keyed by run id.

    Event Buffering:
        Events published before any subscriber connects are buffered and
        delivered to the first subscriber. The run manager subscribes
        before it schedules a run, so buffering only matters to callers
        that attach late.

    Thread Safety:
        The subscription registry is guarded by a threading.Lock.

    Attributes:
        _subscribers: Dict mapping run_id to list of subscriber queues
        _event_buffer: Dict mapping run_id to list of buffered events
        _event_history: Dict mapping open run_id to every event published
    """

    MAX_HISTORY_PER_RUN = 5000

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[RunEvent]]] = defaultdict(list)
        self._event_buffer: dict[str, list[RunEvent]] = defaultdict(list)
        self._event_history: dict[str, list[RunEvent]] = defaultdict(list)
        self._lock = threading.Lock()
        logger.info("event_bus_initialized")

    def subscribe(self, run_id: str) -> asyncio.Queue[RunEvent]:
        """Subscribe to events for a run.

        Buffered events for the run are delivered to the new queue
        immediately.

        Args:
            run_id: The run to subscribe to

        Returns:
            An asyncio.Queue receiving RunEvent objects for this run
        """
        queue: asyncio.Queue[RunEvent] = asyncio.Queue()
        buffered_events: list[RunEvent] = []

        with self._lock:
            self._subscribers[run_id].append(queue)
            subscriber_count = len(self._subscribers[run_id])
            if run_id in self._event_buffer:
                buffered_events = self._event_buffer.pop(run_id)

        for event in buffered_events:
            queue.put_nowait(event)

        logger.debug(
            "subscriber_added",
            run_id=run_id,
            subscriber_count=subscriber_count,
            buffered_events_delivered=len(buffered_events),
        )
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue[RunEvent]) -> None:
        """Remove a subscriber queue. Unknown queues are ignored."""
        with self._lock:
            queues = self._subscribers.get(run_id)
            if not queues or queue not in queues:
                logger.debug("unsubscribe_queue_not_found", run_id=run_id)
                return
            queues.remove(queue)
            if not queues:
                del self._subscribers[run_id]

    async def publish(self, event: RunEvent) -> None:
        """Publish an event to every subscriber of its run.

        With no subscribers the event is buffered until one connects. All
        events except the close sentinel are kept in the run's history.
        """
        with self._lock:
            if event.type != EventType.RUN_CLOSED:
                history = self._event_history[event.run_id]
                history.append(event)
                if len(history) > self.MAX_HISTORY_PER_RUN:
                    self._event_history[event.run_id] = history[-self.MAX_HISTORY_PER_RUN :]

            subscribers = list(self._subscribers.get(event.run_id, []))
            if not subscribers:
                self._event_buffer[event.run_id].append(event)
                logger.debug(
                    "event_buffered",
                    run_id=event.run_id,
                    event_type=event.type.value,
                )
                return

        for queue in subscribers:
            queue.put_nowait(event)

        logger.debug(
            "event_published",
            run_id=event.run_id,
            event_type=event.type.value,
            subscriber_count=len(subscribers),
        )

    def get_event_history(self, run_id: str) -> list[RunEvent]:
        """Get every event published for a run, in order."""
        with self._lock:
            return list(self._event_history.get(run_id, []))

    async def close_run(self, run_id: str, thread_id: str = "") -> None:
        """Close a run and wake its subscribers.

        Each subscriber receives a RUN_CLOSED sentinel so its read loop can
        end. Everything else held for the run is released.
        """
        with self._lock:
            queues_to_signal = self._subscribers.pop(run_id, [])
            buffer_count = len(self._event_buffer.pop(run_id, []))
            history_count = len(self._event_history.pop(run_id, []))

        sentinel = RunEvent(
            type=EventType.RUN_CLOSED,
            thread_id=thread_id,
            run_id=run_id,
            data={"reason": "run_closed"},
        )
        for queue in queues_to_signal:
            queue.put_nowait(sentinel)

        logger.debug(
            "run_closed",
            run_id=run_id,
            subscribers_removed=len(queues_to_signal),
            buffered_events_cleared=buffer_count,
            history_events_released=history_count,
        )

    def get_subscriber_count(self, run_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(run_id, []))
