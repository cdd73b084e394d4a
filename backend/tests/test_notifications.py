import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from bairro.models import NotificationEvent
from bairro.services.chat import ChatSessionManager
from bairro.services.demo_data import seed_demo_data
from bairro.services.document_store import InMemoryDocumentStore
from bairro.services.messages import MessageStream
from bairro.services.notifications import NotificationAggregator, build_feed, format_relative_time
from bairro.services.reviews import ReviewBook

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _ticking_clock():
    ticks = count()
    return lambda: NOW + timedelta(minutes=next(ticks))


def _store():
    store = InMemoryDocumentStore(clock=_ticking_clock())
    seed_demo_data(store)
    return store


def _event(kind, source_id, minutes_ago, title="t"):
    return NotificationEvent(
        id=f"{kind}-{source_id}",
        kind=kind,
        source_id=source_id,
        title=title,
        body="b",
        occurred_at=NOW - timedelta(minutes=minutes_ago),
    )


def _send(store, user_a, user_b, sender, text):
    conversation_id = asyncio.run(
        ChatSessionManager(store).create_or_get_conversation(user_a, user_b, "Maria", "Carlos")
    )
    asyncio.run(MessageStream(store).send_message(conversation_id, sender, "whoever", text))
    return conversation_id


@pytest.mark.parametrize(
    "elapsed,label",
    [
        (timedelta(seconds=30), "Agora"),
        (timedelta(minutes=5), "5m"),
        (timedelta(minutes=59, seconds=59), "59m"),
        (timedelta(minutes=60), "1h"),
        (timedelta(hours=23, minutes=59), "23h"),
        (timedelta(hours=24), "1d"),
        (timedelta(days=3, hours=5), "3d"),
    ],
)
def test_format_relative_time(elapsed, label):
    assert format_relative_time(NOW, NOW - elapsed) == label


def test_feed_is_sorted_newest_first_across_kinds():
    aggregator = NotificationAggregator(InMemoryDocumentStore(), "prov_carlos", is_provider=True)
    aggregator.ingest("message", [_event("message", "c1", 10), _event("message", "c2", 1)])
    aggregator.ingest("review", [_event("review", "r1", 5)])

    assert [event.id for event in aggregator.events()] == ["message-c2", "review-r1", "message-c1"]
    assert aggregator.unread_count == 3


def test_review_source_update_replaces_previous_review_events():
    aggregator = NotificationAggregator(InMemoryDocumentStore(), "prov_carlos", is_provider=True)
    aggregator.ingest("message", [_event("message", "c1", 10)])
    aggregator.ingest("review", [_event("review", "r1", 5)])
    aggregator.ingest("review", [_event("review", "r2", 2)])

    assert sorted(event.id for event in aggregator.events()) == ["message-c1", "review-r2"]


def test_duplicate_source_keeps_one_event():
    aggregator = NotificationAggregator(InMemoryDocumentStore(), "prov_carlos")
    aggregator.ingest("message", [_event("message", "c1", 10), _event("message", "c1", 3)])

    events = aggregator.events()
    assert len(events) == 1
    assert events[0].occurred_at == NOW - timedelta(minutes=3)


def test_repeated_review_updates_leave_one_event_per_review():
    aggregator = NotificationAggregator(InMemoryDocumentStore(), "prov_carlos", is_provider=True)
    aggregator.ingest("review", [_event("review", "r1", 5, title="first")])
    aggregator.ingest("review", [_event("review", "r1", 5, title="second")])

    reviews = [event for event in aggregator.events() if event.kind == "review"]
    assert len(reviews) == 1
    assert reviews[0].id == "review-r1"
    assert reviews[0].title == "second"
    assert aggregator.unread_count == 1


def test_duplicate_review_in_one_update_keeps_newest():
    aggregator = NotificationAggregator(InMemoryDocumentStore(), "prov_carlos", is_provider=True)
    aggregator.ingest("review", [_event("review", "r1", 8), _event("review", "r1", 2)])

    events = aggregator.events()
    assert [event.id for event in events] == ["review-r1"]
    assert events[0].occurred_at == NOW - timedelta(minutes=2)


def test_ingest_rejects_mixed_kinds():
    aggregator = NotificationAggregator(InMemoryDocumentStore(), "prov_carlos")
    with pytest.raises(ValueError):
        aggregator.ingest("message", [_event("review", "r1", 1)])


def test_mark_read_and_mark_all_read():
    aggregator = NotificationAggregator(InMemoryDocumentStore(), "prov_carlos", is_provider=True)
    aggregator.ingest("message", [_event("message", "c1", 10), _event("message", "c2", 1)])
    aggregator.ingest("review", [_event("review", "r1", 5)])

    updated = aggregator.mark_read("message-c1")
    assert updated.read is True
    assert aggregator.unread_count == 2
    assert aggregator.mark_read("message-missing") is None

    aggregator.mark_all_read()
    assert aggregator.unread_count == 0
    assert all(event.read for event in aggregator.events())


def test_read_state_survives_refresh_until_source_advances():
    aggregator = NotificationAggregator(InMemoryDocumentStore(), "prov_carlos")
    aggregator.ingest("message", [_event("message", "c1", 10)])
    aggregator.mark_read("message-c1")

    aggregator.ingest("message", [_event("message", "c1", 10), _event("message", "c2", 2)])
    assert aggregator.unread_count == 1
    assert {event.id: event.read for event in aggregator.events()} == {"message-c1": True, "message-c2": False}

    aggregator.ingest("message", [_event("message", "c1", 1), _event("message", "c2", 2)])
    assert aggregator.unread_count == 2


def test_build_feed_labels_events():
    feed = build_feed([_event("message", "c1", 5)], now=NOW)
    assert feed.unread_count == 1
    assert feed.events[0].relative_time == "5m"


def test_provider_aggregator_watches_conversations_and_reviews():
    store = _store()
    aggregator = NotificationAggregator(store, "prov_carlos", is_provider=True)
    aggregator.start()
    assert store.listener_count == 2

    conversation_id = _send(store, "cli_maria", "prov_carlos", "cli_maria", "Preciso de um encanador")
    asyncio.run(ReviewBook(store).submit_review("prov_carlos", "cli_maria", "Maria", 5, "Ótimo serviço"))

    events = aggregator.events()
    assert [event.kind for event in events] == ["review", "message"]
    review, message = events
    assert review.title == "Nova avaliação de Maria"
    assert review.body == "5 estrelas: Ótimo serviço"
    assert message.id == f"message-{conversation_id}"
    assert message.title == "Nova mensagem de Maria"
    assert message.body == "Preciso de um encanador"
    assert aggregator.unread_count == 2

    aggregator.mark_all_read()
    assert aggregator.unread_count == 0
    aggregator.stop()


def test_own_messages_do_not_notify():
    store = _store()
    aggregator = NotificationAggregator(store, "prov_carlos", is_provider=True)
    aggregator.start()

    _send(store, "cli_maria", "prov_carlos", "cli_maria", "Oi")
    assert aggregator.unread_count == 1
    _send(store, "cli_maria", "prov_carlos", "prov_carlos", "Oi, Maria")
    assert aggregator.events() == []
    assert aggregator.unread_count == 0

    _send(store, "cli_maria", "prov_carlos", "cli_maria", "Obrigada!")
    assert [event.body for event in aggregator.events()] == ["Obrigada!"]
    aggregator.stop()


def test_new_message_in_read_conversation_is_unread_again():
    store = _store()
    aggregator = NotificationAggregator(store, "prov_carlos", is_provider=True)
    aggregator.start()

    conversation_id = _send(store, "cli_maria", "prov_carlos", "cli_maria", "Oi")
    aggregator.mark_read(f"message-{conversation_id}")
    _send(store, "cli_joao", "prov_carlos", "cli_joao", "Bom dia")
    assert aggregator.unread_count == 1

    _send(store, "cli_maria", "prov_carlos", "cli_maria", "Ainda disponível?")
    assert aggregator.unread_count == 2
    aggregator.stop()


def test_client_aggregator_does_not_watch_reviews():
    store = _store()
    aggregator = NotificationAggregator(store, "cli_maria", is_provider=False)
    aggregator.start()
    assert store.listener_count == 1
    aggregator.stop()


def test_stop_releases_listeners_and_ignores_late_updates():
    store = _store()
    aggregator = NotificationAggregator(store, "prov_carlos", is_provider=True)
    aggregator.start()
    aggregator.stop()

    assert store.listener_count == 0
    assert aggregator.stopped
    aggregator.ingest("message", [_event("message", "c1", 1)])
    assert aggregator.events() == []


def test_feed_updates_publish_after_each_change():
    aggregator = NotificationAggregator(InMemoryDocumentStore(), "prov_carlos")

    async def scenario():
        subscription = aggregator.feed_updates()
        initial = await subscription.next(timeout=1)
        aggregator.ingest("message", [_event("message", "c1", 1)])
        updated = await subscription.next(timeout=1)
        subscription.cancel()
        return initial, updated

    initial, updated = asyncio.run(scenario())
    assert initial == []
    assert [event.id for event in updated] == ["message-c1"]
