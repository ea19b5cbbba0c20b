import asyncio
import logging

from app.models.emergency import utcnow

logger = logging.getLogger(__name__)

# Per-subscriber backlog; further events are dropped
SUBSCRIBER_QUEUE_SIZE = 256


class EmergencyEventBus:
    """In-memory fan-out of ED events to dashboard subscribers.

    Subscribers either follow one case or the whole department. Events for
    the department as a whole (e.g. an allocation pass) carry no case id
    and only reach department-wide subscribers.
    """

    def __init__(self) -> None:
        self._case_subscribers: dict[str, set[asyncio.Queue]] = {}
        self._department_subscribers: set[asyncio.Queue] = set()

    def subscribe(self, case_id: str | None = None) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        if case_id is None:
            self._department_subscribers.add(queue)
        else:
            self._case_subscribers.setdefault(case_id, set()).add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue, case_id: str | None = None) -> None:
        if case_id is None:
            self._department_subscribers.discard(queue)
            return
        subscribers = self._case_subscribers.get(case_id)
        if subscribers is not None:
            subscribers.discard(queue)
            if not subscribers:
                del self._case_subscribers[case_id]

    def subscriber_count(self) -> int:
        return len(self._department_subscribers) + sum(
            len(s) for s in self._case_subscribers.values()
        )

    async def publish(self, event_type: str, payload: dict, case_id: str | None = None) -> None:
        event = {
            "type": event_type,
            "case_id": case_id,
            "timestamp": utcnow().isoformat(),
            **payload,
        }
        targets = set(self._department_subscribers)
        if case_id is not None:
            targets |= self._case_subscribers.get(case_id, set())

        for queue in targets:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for a slow subscriber", event_type)


event_bus = EmergencyEventBus()
