"""Document-status fan-out to long-lived SSE subscribers.

Each subscriber owns a bounded queue. Publishing never blocks: a subscriber
whose queue is full is evicted and its stream ends, others are unaffected.
There is no replay; a client connecting late sees only later transitions.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass

from docchat.models.docs import DocumentStatusUpdate
from docchat.models.events import Connected, DocumentStatusEvent, Heartbeat, NotificationEvent
from docchat.utils.metrics import sse_subscribers

logger = logging.getLogger(__name__)


@dataclass
class Subscription:
    """One connected client."""

    client_id: str
    queue: "asyncio.Queue[NotificationEvent | None]"
    heartbeat: asyncio.Task[None] | None = None
    closed: bool = False

    async def events(self) -> AsyncIterator[NotificationEvent]:
        """Yield events until the subscription is closed."""
        while True:
            item = await self.queue.get()
            if item is None:
                return
            yield item


class NotificationHub:
    """Broadcasts document status transitions to every subscriber."""

    def __init__(self, heartbeat_seconds: float = 30.0, queue_size: int = 100) -> None:
        self._heartbeat_seconds = heartbeat_seconds
        self._queue_size = queue_size
        self._subscribers: dict[str, Subscription] = {}

    def client_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, client_id: str | None = None) -> Subscription:
        """Register a client; the first queued event is ``connected``."""
        client_id = client_id or uuid.uuid4().hex
        queue: asyncio.Queue[NotificationEvent | None] = asyncio.Queue(maxsize=self._queue_size)
        queue.put_nowait(Connected())

        subscription = Subscription(client_id=client_id, queue=queue)
        if self._heartbeat_seconds > 0:
            subscription.heartbeat = asyncio.create_task(
                self._heartbeat(subscription), name=f"sse-heartbeat-{client_id}"
            )

        self._subscribers[client_id] = subscription
        sse_subscribers.set(len(self._subscribers))
        logger.info(f"SSE client connected: {client_id} ({len(self._subscribers)} total)")
        return subscription

    def unsubscribe(self, client_id: str) -> None:
        """Remove a client; unknown ids are ignored."""
        if self._close(client_id):
            logger.info(f"SSE client disconnected: {client_id} ({len(self._subscribers)} total)")

    def publish(self, update: DocumentStatusUpdate) -> int:
        """Fan a status update out to all subscribers.

        Returns:
            Number of subscribers the event was queued for
        """
        event = DocumentStatusEvent(data=update)
        delivered = 0
        for client_id, subscription in list(self._subscribers.items()):
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                self._evict(client_id, "queue full")

        logger.info(
            f"Broadcast {update.status.value} for document {update.document_id} "
            f"to {delivered} client(s)"
        )
        return delivered

    async def close(self) -> None:
        """Close every subscription and stop heartbeats."""
        tasks = [s.heartbeat for s in self._subscribers.values() if s.heartbeat is not None]
        for client_id in list(self._subscribers):
            self._close(client_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _heartbeat(self, subscription: Subscription) -> None:
        while not subscription.closed:
            await asyncio.sleep(self._heartbeat_seconds)
            try:
                subscription.queue.put_nowait(Heartbeat())
            except asyncio.QueueFull:
                self._evict(subscription.client_id, "heartbeat not delivered")
                return

    def _evict(self, client_id: str, reason: str) -> None:
        if self._close(client_id):
            logger.warning(f"SSE client evicted: {client_id} ({reason})")

    def _close(self, client_id: str) -> bool:
        subscription = self._subscribers.pop(client_id, None)
        if subscription is None:
            return False

        subscription.closed = True
        heartbeat = subscription.heartbeat
        if heartbeat is not None and heartbeat is not asyncio.current_task():
            heartbeat.cancel()

        # Drop undelivered events so the end-of-stream marker always fits
        while not subscription.queue.empty():
            subscription.queue.get_nowait()
        subscription.queue.put_nowait(None)

        sse_subscribers.set(len(self._subscribers))
        return True
