"""
In-process event router.

The store, the connection manager and the webhook processors publish
`InboxEvent`s; the broadcast hub (and anything else that cares) subscribes.
Publishing never blocks: events are queued and delivered in order by a
single dispatcher task. It is safe to publish from worker threads (sync
route handlers run in a threadpool).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID

logger = logging.getLogger(__name__)

WILDCARD = "*"

NEW_MESSAGE = "new_message"
NEW_CONVERSATION = "new_conversation"
CHANNEL_STATUS = "channel_status"
MESSAGE_STATUS = "message_status"
CONVERSATION_UPDATED = "conversation_updated"


@dataclass
class InboxEvent:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    channel_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[InboxEvent], Awaitable[None]]


class EventRouter:
    def __init__(self, max_queue_size: int = 1000) -> None:
        self._max_queue_size = max_queue_size
        self._subscriptions: Dict[str, List[EventHandler]] = {}
        self._queue: Optional[asyncio.Queue[InboxEvent]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe an async handler to an event type, or to every event with '*'."""
        self._subscriptions.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        handlers = self._subscriptions.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._task = asyncio.create_task(self._run(self._queue), name="event-router")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._queue = None
        self._loop = None

    async def join(self) -> None:
        """Wait until every queued event has been dispatched."""
        if self._queue is not None:
            await self._queue.join()

    def publish(self, event: InboxEvent) -> None:
        """Queue an event for delivery. Never blocks; drops with a warning when full."""
        if self._loop is None or self._queue is None:
            logger.debug("Event router not running; dropping %s", event.type)
            return
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is self._loop:
            self._enqueue(event)
        else:
            self._loop.call_soon_threadsafe(self._enqueue, event)

    def emit(self, event_type: str, data: Dict[str, Any], **scope: Any) -> None:
        self.publish(InboxEvent(type=event_type, data=data, **scope))

    def _enqueue(self, event: InboxEvent) -> None:
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Event queue full (%d); dropping %s event", self._max_queue_size, event.type
            )

    def _handlers_for(self, event_type: str) -> List[EventHandler]:
        return list(self._subscriptions.get(event_type, [])) + list(
            self._subscriptions.get(WILDCARD, [])
        )

    async def _run(self, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            try:
                await self.dispatch(event)
            finally:
                queue.task_done()

    async def dispatch(self, event: InboxEvent) -> int:
        """Deliver one event to its handlers. Handler errors are logged, not raised."""
        delivered = 0
        for handler in self._handlers_for(event.type):
            try:
                await handler(event)
                delivered += 1
            except Exception:
                logger.exception("Event handler failed for %s", event.type)
        return delivered
