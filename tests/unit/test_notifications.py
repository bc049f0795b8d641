"""Tests for the document-status notification hub."""

import asyncio

import pytest

from docchat.docs.notifications import NotificationHub
from docchat.models.docs import DocumentStatus, DocumentStatusUpdate
from docchat.models.events import Connected, DocumentStatusEvent, Heartbeat


def update(document_id: str = "doc-1") -> DocumentStatusUpdate:
    return DocumentStatusUpdate(document_id=document_id, status=DocumentStatus.processed, chunk_count=3)


@pytest.mark.asyncio
async def test_first_event_is_connected() -> None:
    hub = NotificationHub(heartbeat_seconds=0)
    subscription = hub.subscribe("client-a")

    first = subscription.queue.get_nowait()

    assert isinstance(first, Connected)
    assert hub.client_count() == 1
    await hub.close()


@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber() -> None:
    hub = NotificationHub(heartbeat_seconds=0)
    subs = [hub.subscribe(f"client-{i}") for i in range(3)]
    for sub in subs:
        sub.queue.get_nowait()

    delivered = hub.publish(update())

    assert delivered == 3
    for sub in subs:
        event = sub.queue.get_nowait()
        assert isinstance(event, DocumentStatusEvent)
        assert event.data.document_id == "doc-1"
    await hub.close()


@pytest.mark.asyncio
async def test_full_queue_evicts_only_that_subscriber() -> None:
    hub = NotificationHub(heartbeat_seconds=0, queue_size=2)
    slow = hub.subscribe("slow")
    fast = hub.subscribe("fast")

    hub.publish(update("d1"))  # slow and fast now hold connected + d1
    fast.queue.get_nowait()
    fast.queue.get_nowait()
    delivered = hub.publish(update("d2"))

    assert delivered == 1
    assert hub.client_count() == 1
    assert [e async for e in slow.events()] == []
    event = fast.queue.get_nowait()
    assert isinstance(event, DocumentStatusEvent)
    assert event.data.document_id == "d2"
    await hub.close()


@pytest.mark.asyncio
async def test_unsubscribe_ends_event_stream() -> None:
    hub = NotificationHub(heartbeat_seconds=0)
    subscription = hub.subscribe("client-a")

    hub.unsubscribe("client-a")
    hub.unsubscribe("client-a")

    assert [e async for e in subscription.events()] == []
    assert hub.client_count() == 0


@pytest.mark.asyncio
async def test_no_replay_for_late_subscribers() -> None:
    hub = NotificationHub(heartbeat_seconds=0)
    hub.publish(update())

    late = hub.subscribe("late")
    late.queue.get_nowait()

    assert late.queue.empty()
    await hub.close()


@pytest.mark.asyncio
async def test_heartbeat_is_sent_periodically() -> None:
    hub = NotificationHub(heartbeat_seconds=0.01)
    subscription = hub.subscribe("client-a")
    subscription.queue.get_nowait()

    event = await asyncio.wait_for(subscription.queue.get(), timeout=1.0)

    assert isinstance(event, Heartbeat)
    await hub.close()
    assert hub.client_count() == 0
