"""Lightweight event bus for TenantDesk change notifications.

Provides fire-and-forget event emission with registered handlers, plus
queue-backed subscriptions for streaming consumers (the activity feed).
Handler errors are logged but never propagate to callers, ensuring
that event dispatch never disrupts the primary request path.

Usage::

    bus = get_event_bus()
    await bus.emit(EventType.ACTIVITY_RECORDED, tenant_id="t1", data={...})

    subscription = bus.subscribe(tenant_id="t1")
    try:
        async for payload in subscription:
            ...
    finally:
        bus.unsubscribe(subscription)

Events produced inside a database transaction are deferred with
:func:`defer_event` and published by :func:`publish_deferred` only after the
transaction commits, so subscribers never observe rolled-back changes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """Events emitted by the TenantDesk service."""

    SIGNED_IN = "session.signed_in"
    SIGNED_OUT = "session.signed_out"
    ACTIVITY_RECORDED = "activity.recorded"
    TENANT_CREATED = "tenant.created"
    INVITATION_CREATED = "invitation.created"
    INVITATION_RESOLVED = "invitation.resolved"
    SUBSCRIPTION_CHANGED = "subscription.changed"


# ---------------------------------------------------------------------------
# Event payload
# ---------------------------------------------------------------------------


class EventPayload(BaseModel):
    """Structured event payload dispatched to handlers and subscribers."""

    event_type: EventType
    tenant_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    correlation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    data: dict[str, Any] = Field(default_factory=dict)


EventHandler = Callable[[EventPayload], Awaitable[None]]


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class Subscription:
    """A filtered, bounded queue of events for one streaming consumer.

    When the queue is full the oldest event is dropped so a slow consumer
    cannot stall emitters.
    """

    def __init__(
        self,
        *,
        event_types: frozenset[EventType] | None,
        tenant_id: str | None,
        max_queue: int,
    ) -> None:
        self.id = uuid.uuid4().hex
        self._event_types = event_types
        self._tenant_id = tenant_id
        self._queue: asyncio.Queue[EventPayload] = asyncio.Queue(maxsize=max_queue)
        self.closed = False

    def matches(self, payload: EventPayload) -> bool:
        if self._event_types is not None and payload.event_type not in self._event_types:
            return False
        return self._tenant_id is None or payload.tenant_id == self._tenant_id

    def offer(self, payload: EventPayload) -> None:
        if self.closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            logger.warning("Subscription %s overflowed; dropped oldest event", self.id[:8])
        self._queue.put_nowait(payload)

    async def get(self, timeout: float | None = None) -> EventPayload | None:
        """Wait for the next event; returns ``None`` on timeout."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except TimeoutError:
            return None


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


class EventBus:
    """In-process event bus with async handler dispatch.

    Handlers are called concurrently via ``asyncio.gather``.  Each handler
    runs in a ``try / except`` so that a single failing handler does not
    affect others or the caller.
    """

    def __init__(self, *, max_subscriber_queue: int = 100) -> None:
        self._handlers: dict[EventType | None, list[EventHandler]] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._max_subscriber_queue = max_subscriber_queue

    def register_handler(
        self,
        handler: EventHandler,
        *,
        event_type: EventType | None = None,
    ) -> None:
        """Register a handler for a specific event type (or all events).

        Parameters
        ----------
        handler:
            Async callable that accepts an :class:`EventPayload`.
        event_type:
            If ``None``, the handler receives *all* events (wildcard).
        """
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(
            "Registered event handler %s for %s",
            handler.__name__,
            event_type or "ALL",
        )

    def subscribe(
        self,
        *,
        event_types: set[EventType] | None = None,
        tenant_id: str | None = None,
    ) -> Subscription:
        """Open a subscription receiving matching events until unsubscribed."""
        subscription = Subscription(
            event_types=frozenset(event_types) if event_types else None,
            tenant_id=tenant_id,
            max_queue=self._max_subscriber_queue,
        )
        self._subscriptions[subscription.id] = subscription
        logger.debug("Opened subscription %s tenant=%s", subscription.id[:8], tenant_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Close *subscription*.  Safe to call more than once."""
        subscription.closed = True
        if self._subscriptions.pop(subscription.id, None) is not None:
            logger.debug("Closed subscription %s", subscription.id[:8])

    async def emit(
        self,
        event_type: EventType,
        *,
        tenant_id: str | None = None,
        data: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> None:
        """Emit an event to all matching handlers and subscriptions.

        This is fire-and-forget: handler exceptions are logged, not raised.
        """
        payload = EventPayload(
            event_type=event_type,
            tenant_id=tenant_id,
            data=data or {},
            correlation_id=correlation_id or uuid.uuid4().hex,
        )

        for subscription in list(self._subscriptions.values()):
            if subscription.matches(payload):
                subscription.offer(payload)

        handlers = list(self._handlers.get(event_type, []))
        handlers.extend(self._handlers.get(None, []))

        if not handlers:
            logger.debug("No handlers for event %s", event_type.value)
            return

        logger.info(
            "Emitting %s for tenant=%s corr=%s (%d handler(s))",
            event_type.value,
            tenant_id,
            payload.correlation_id[:8],
            len(handlers),
        )

        async def _safe_call(handler: EventHandler) -> None:
            try:
                await handler(payload)
            except Exception:
                logger.exception(
                    "Handler %s failed for event %s (tenant=%s)",
                    handler.__name__,
                    event_type.value,
                    tenant_id,
                )

        await asyncio.gather(*[_safe_call(h) for h in handlers])

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers across all event types."""
        return sum(len(v) for v in self._handlers.values())

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)


# ---------------------------------------------------------------------------
# Transaction-deferred events
# ---------------------------------------------------------------------------

_DEFERRED_KEY = "tenantdesk.deferred_events"


def defer_event(
    session: AsyncSession,
    event_type: EventType,
    *,
    tenant_id: str | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    """Queue an event on *session* to be published after it commits."""
    session.info.setdefault(_DEFERRED_KEY, []).append((event_type, tenant_id, data or {}))


def discard_deferred(session: AsyncSession) -> None:
    """Drop events queued on *session* (call after a rollback)."""
    session.info.pop(_DEFERRED_KEY, None)


async def publish_deferred(session: AsyncSession, bus: EventBus | None = None) -> None:
    """Emit and clear events queued on *session*."""
    pending = session.info.pop(_DEFERRED_KEY, [])
    if not pending:
        return
    bus = bus or get_event_bus()
    for event_type, tenant_id, data in pending:
        await bus.emit(event_type, tenant_id=tenant_id, data=data)


# ---------------------------------------------------------------------------
# Built-in handlers
# ---------------------------------------------------------------------------


async def log_event_handler(payload: EventPayload) -> None:
    """Write every event to the application log."""
    logger.info(
        "EVENT: %s tenant=%s corr=%s data_keys=%s",
        payload.event_type.value,
        payload.tenant_id,
        payload.correlation_id[:8],
        sorted(payload.data.keys()),
    )


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

_event_bus: EventBus | None = None


def init_event_bus() -> EventBus:
    """Create and configure the global event bus with built-in handlers."""
    global _event_bus  # noqa: PLW0603
    _event_bus = EventBus()
    _event_bus.register_handler(log_event_handler)

    logger.info("Event bus initialised with %d handler(s)", _event_bus.handler_count)
    return _event_bus


def get_event_bus() -> EventBus:
    """Return the module-level event bus instance."""
    if _event_bus is None:
        return init_event_bus()
    return _event_bus
