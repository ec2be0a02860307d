"""Tests for the event bus: handlers, subscriptions and deferred publication."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest

from tenantdesk_api.services import event_bus as event_bus_module
from tenantdesk_api.services.event_bus import (
    EventBus,
    EventPayload,
    EventType,
    defer_event,
    discard_deferred,
    get_event_bus,
    init_event_bus,
    log_event_handler,
    publish_deferred,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def bus() -> EventBus:
    """Return a fresh EventBus instance (no built-in handlers)."""
    return EventBus()


@pytest.fixture
def payload() -> EventPayload:
    return EventPayload(
        event_type=EventType.ACTIVITY_RECORDED,
        tenant_id="tenant-test",
        data={"id": "entry-1"},
    )


def _fake_session() -> MagicMock:
    session = MagicMock()
    session.info = {}
    return session


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class TestHandlers:
    def test_register_counts(self, bus: EventBus) -> None:
        async def h1(p: EventPayload) -> None:
            pass

        async def h2(p: EventPayload) -> None:
            pass

        bus.register_handler(h1, event_type=EventType.TENANT_CREATED)
        bus.register_handler(h2)
        assert bus.handler_count == 2

    @pytest.mark.asyncio
    async def test_specific_and_wildcard_handlers_receive_event(self, bus: EventBus) -> None:
        received: list[tuple[str, EventType]] = []

        async def specific(p: EventPayload) -> None:
            received.append(("specific", p.event_type))

        async def wildcard(p: EventPayload) -> None:
            received.append(("wildcard", p.event_type))

        bus.register_handler(specific, event_type=EventType.TENANT_CREATED)
        bus.register_handler(wildcard)

        await bus.emit(EventType.TENANT_CREATED, tenant_id="t1")
        await bus.emit(EventType.SIGNED_IN)

        assert ("specific", EventType.TENANT_CREATED) in received
        assert ("wildcard", EventType.TENANT_CREATED) in received
        assert ("wildcard", EventType.SIGNED_IN) in received
        assert ("specific", EventType.SIGNED_IN) not in received

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, bus: EventBus, caplog: pytest.LogCaptureFixture) -> None:
        called: list[str] = []

        async def broken(p: EventPayload) -> None:
            raise RuntimeError("boom")

        async def healthy(p: EventPayload) -> None:
            called.append(p.event_type.value)

        bus.register_handler(broken)
        bus.register_handler(healthy)

        with caplog.at_level(logging.ERROR):
            await bus.emit(EventType.SIGNED_OUT)

        assert called == ["session.signed_out"]
        assert any("failed for event" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_log_event_handler(self, payload: EventPayload, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="tenantdesk_api.services.event_bus"):
            await log_event_handler(payload)
        assert any("activity.recorded" in r.message for r in caplog.records)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_filters_by_type_and_tenant(self, bus: EventBus) -> None:
        sub = bus.subscribe(event_types={EventType.ACTIVITY_RECORDED}, tenant_id="t1")

        await bus.emit(EventType.ACTIVITY_RECORDED, tenant_id="t2")
        await bus.emit(EventType.TENANT_CREATED, tenant_id="t1")
        await bus.emit(EventType.ACTIVITY_RECORDED, tenant_id="t1", data={"n": 1})

        got = await sub.get(timeout=0.1)
        assert got is not None and got.data == {"n": 1}
        assert await sub.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_unfiltered_subscription_receives_everything(self, bus: EventBus) -> None:
        sub = bus.subscribe()
        await bus.emit(EventType.SIGNED_IN)
        await bus.emit(EventType.TENANT_CREATED, tenant_id="t1")
        first = await sub.get(timeout=0.1)
        second = await sub.get(timeout=0.1)
        assert first is not None and second is not None
        assert [first.event_type, second.event_type] == [EventType.SIGNED_IN, EventType.TENANT_CREATED]

    @pytest.mark.asyncio
    async def test_overflow_drops_oldest(self) -> None:
        bus = EventBus(max_subscriber_queue=2)
        sub = bus.subscribe()
        for n in range(3):
            await bus.emit(EventType.ACTIVITY_RECORDED, data={"n": n})

        first = await sub.get(timeout=0.1)
        second = await sub.get(timeout=0.1)
        assert first is not None and second is not None
        assert [first.data["n"], second.data["n"]] == [1, 2]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, bus: EventBus) -> None:
        sub = bus.subscribe()
        assert bus.subscription_count == 1
        bus.unsubscribe(sub)
        bus.unsubscribe(sub)
        assert bus.subscription_count == 0
        await bus.emit(EventType.SIGNED_IN)
        assert await sub.get(timeout=0.01) is None


# ---------------------------------------------------------------------------
# Deferred events
# ---------------------------------------------------------------------------


class TestDeferred:
    @pytest.mark.asyncio
    async def test_publish_emits_in_order_and_clears(self, bus: EventBus) -> None:
        session = _fake_session()
        sub = bus.subscribe()
        defer_event(session, EventType.INVITATION_CREATED, tenant_id="t1", data={"n": 1})
        defer_event(session, EventType.INVITATION_RESOLVED, tenant_id="t1", data={"n": 2})

        await publish_deferred(session, bus)

        first = await sub.get(timeout=0.1)
        second = await sub.get(timeout=0.1)
        assert first is not None and second is not None
        assert [first.data["n"], second.data["n"]] == [1, 2]
        assert session.info == {}

    @pytest.mark.asyncio
    async def test_discard(self, bus: EventBus) -> None:
        session = _fake_session()
        sub = bus.subscribe()
        defer_event(session, EventType.TENANT_CREATED, tenant_id="t1")
        discard_deferred(session)
        await publish_deferred(session, bus)
        assert await sub.get(timeout=0.01) is None


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------


class TestSingleton:
    def test_init_registers_log_handler(self) -> None:
        bus = init_event_bus()
        assert bus.handler_count == 1
        assert get_event_bus() is bus

    def test_get_creates_when_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(event_bus_module, "_event_bus", None)
        assert isinstance(get_event_bus(), EventBus)
