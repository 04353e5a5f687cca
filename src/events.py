"""
Change Notifications - In-memory pub/sub for resource change events.

Stores publish an event for every write. Consumers such as the render
controller treat events as pure wakeups: the payload identifies what
changed, but the consumer always re-reads current state.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of resource events."""

    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class ResourceEvent:
    """Event emitted when a resource changes."""

    event_type: EventType
    kind: str
    namespace: str
    resource_id: str
    version: str
    timestamp: str

    @classmethod
    def create(
        cls,
        event_type: EventType,
        kind: str,
        namespace: str,
        resource_id: str,
        version: str,
    ) -> "ResourceEvent":
        """Create an event stamped with the current UTC time."""
        return cls(
            event_type=event_type,
            kind=kind,
            namespace=namespace,
            resource_id=resource_id,
            version=version,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


def kind_filter(kinds: Iterable[str]) -> Callable[[ResourceEvent], bool]:
    """Build a filter that passes only events for the given kinds."""
    wanted = frozenset(kinds)
    return lambda event: event.kind in wanted


class EventSubscription:
    """
    One watcher's view of the change stream.

    Iterating yields the events ``accept`` lets through until the bus closes
    the subscription, which it signals by enqueueing ``None``.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        accept: Optional[Callable[[ResourceEvent], bool]] = None,
    ):
        self._pending = queue
        self._accept = accept
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the close sentinel has been consumed."""
        return self._closed

    def _wanted(self, event: ResourceEvent) -> bool:
        return self._accept is None or self._accept(event)

    def __aiter__(self) -> AsyncIterator[ResourceEvent]:
        return self

    async def __anext__(self) -> ResourceEvent:
        while not self._closed:
            event = await self._pending.get()
            if event is None:
                self._closed = True
            elif self._wanted(event):
                return event
        raise StopAsyncIteration

    def drain(self) -> int:
        """
        Discard all queued events without blocking.

        Used to coalesce a burst of notifications into a single wakeup.

        Returns:
            Number of matching events discarded.
        """
        drained = 0
        while not self._pending.empty():
            event = self._pending.get_nowait()
            if event is None:
                self._closed = True
                break
            if self._wanted(event):
                drained += 1
        return drained


class EventBus:
    """
    Fan-out of resource events to every open watch.

    Each watch owns a bounded ``asyncio.Queue``. Publishing never blocks: when
    a watch's queue is full the event is dropped, which is harmless because
    a full queue already holds a pending wakeup.
    """

    def __init__(self, capacity: int = 256):
        self._capacity = capacity
        self._watchers: Dict[str, asyncio.Queue] = {}
        self._lock = asyncio.Lock()

    async def publish(self, event: ResourceEvent) -> None:
        """Offer ``event`` to every watcher without waiting on any of them."""
        async with self._lock:
            watchers = list(self._watchers.items())

        for watch_id, queue in watchers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug(f"Watch {watch_id} is backlogged, dropped {event.kind}")

    async def subscribe(
        self,
        accept: Optional[Callable[[ResourceEvent], bool]] = None,
    ) -> Tuple[str, EventSubscription]:
        """
        Open a watch.

        Args:
            accept: Optional predicate; events it rejects are skipped

        Returns:
            ``(watch_id, subscription)``; pass ``watch_id`` to ``unsubscribe``.
        """
        watch_id = uuid.uuid4().hex
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._capacity)

        async with self._lock:
            self._watchers[watch_id] = queue

        logger.debug(f"Opened watch {watch_id}")
        return watch_id, EventSubscription(queue, accept)

    async def unsubscribe(self, watch_id: str) -> None:
        """Close a watch; its subscription stops iterating once drained."""
        async with self._lock:
            queue = self._watchers.pop(watch_id, None)

        if queue is None:
            return

        if queue.full():
            # Room for the sentinel; pending wakeups are moot now
            queue.get_nowait()
        queue.put_nowait(None)
        logger.debug(f"Closed watch {watch_id}")

    def subscriber_count(self) -> int:
        """Number of open watches."""
        return len(self._watchers)
