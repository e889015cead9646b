"""
Custody Notification Events

Typed events emitted by the processor and a synchronous in-process bus
that plays the role of the host's logging/notification sink.

Usage
─────

    from custody.events import EventBus, BalanceReported

    bus = EventBus()

    @bus.subscribe(BalanceReported)
    def on_report(event: BalanceReported):
        print(event.locked_funds)

Handlers run synchronously in priority order before publish() returns.
A failing handler is counted, logged and reported to `on_error`; it never
aborts the invocation that published the event.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Type, TypeVar

from custody.observability import LedgerLayer, get_correlation_id, get_logger

logger = get_logger("events", LedgerLayer.BRIDGE)

E = TypeVar("E", bound="Event")


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all notifications.

    Identity fields are hex strings so events serialize without custom
    encoders.
    """
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: str = field(default_factory=get_correlation_id)

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)


# ════════════════════════════════════════════════════════════════════════════
# DOMAIN EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class FundsLocked(Event):
    """Emitted after a deposit moved into custody."""
    custody: str = ""
    depositor: str = ""
    amount: int = 0
    locked_funds: int = 0


@dataclass
class ReleaseRequested(Event):
    """
    Emitted to the bridge service when a release is requested.

    `amount`, `beneficiary` and `nonce` are set only when the request was
    recorded for the two-phase release.
    """
    custody: str = ""
    bridge: str = ""
    locked_funds: int = 0
    amount: Optional[int] = None
    beneficiary: Optional[str] = None
    nonce: Optional[int] = None


@dataclass
class BalanceReported(Event):
    """Emitted by CHECK."""
    custody: str = ""
    locked_funds: int = 0


@dataclass
class ReleaseAuthorized(Event):
    """Emitted after an authorized release moved funds out of custody."""
    custody: str = ""
    beneficiary: str = ""
    amount: int = 0
    nonce: int = 0
    locked_funds: int = 0


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    """Registration for an event handler."""
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.event_type}: {cause}")


class EventBus:
    """
    In-memory synchronous event bus.

    Example:
        bus = EventBus()

        @bus.subscribe(FundsLocked, ReleaseRequested)
        def handle(event):
            print(event.event_type)
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
        self._handlers: List[EventHandlerRegistration] = []
        self._on_error = on_error
        self._published_count = 0
        self._handled_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
    ) -> Callable[[EventHandler], EventHandler]:
        """Decorator to subscribe a handler; higher priority runs first."""
        def decorator(handler: EventHandler) -> EventHandler:
            self._handlers.append(EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
            ))
            self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        original_len = len(self._handlers)
        self._handlers = [r for r in self._handlers if r.handler != handler]
        return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers."""
        self._published_count += 1
        for registration in list(self._handlers):
            if any(isinstance(event, t) for t in registration.event_types):
                self._call_handler(registration.handler, event)

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
            self._handled_count += 1
        except Exception as e:
            self._error_count += 1
            error = EventHandlerError(event, handler, e)
            logger.error(str(error), error_code="event_handler", event_type=event.event_type)
            if self._on_error:
                self._on_error(error)

    @property
    def metrics(self) -> Dict[str, int]:
        return {
            "published_count": self._published_count,
            "handled_count": self._handled_count,
            "error_count": self._error_count,
            "handler_count": len(self._handlers),
        }


class EventRecorder:
    """Subscribes to a bus and keeps every event it sees, in order."""

    def __init__(self, bus: EventBus):
        self.events: List[Event] = []
        bus.subscribe(Event)(self.events.append)

    def of_type(self, event_type: Type[E]) -> List[E]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()
