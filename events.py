"""
Lifecycle events emitted by the simulation and a small synchronous event bus.

Subscribers are called in subscription order on the orchestrator's thread,
so the metrics aggregator sees every event in the order it happened.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    RUN_STARTED = "run-started"
    MESSAGE_APPENDED = "message-appended"
    HANDSHAKE_COMPLETED = "handshake-completed"
    HANDSHAKE_FAILED = "handshake-failed"
    HANDSHAKE_SKIPPED = "handshake-skipped"
    RUN_FINISHED = "run-finished"
    RUN_CANCELLED = "run-cancelled"
    RUN_FAILED = "run-failed"


class HandshakeKind(Enum):
    EV_REGISTRATION = "ev_registration"
    CS_REGISTRATION = "cs_registration"
    AUTHENTICATION = "authentication"


@dataclass(frozen=True)
class SimulationEvent:
    type: EventType
    timestamp: float
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def handshake(self) -> Optional[HandshakeKind]:
        return self.payload.get("handshake")


Listener = Callable[[SimulationEvent], None]


class EventBus:
    """Dispatches events to listeners, optionally filtered by event type"""

    def __init__(self):
        self._listeners: List[Tuple[Listener, Tuple[EventType, ...]]] = []

    def subscribe(self, listener: Listener, *event_types: EventType) -> Callable[[], None]:
        """
        Register a listener for the given event types (all types when none
        are given). Returns a callable that removes the subscription.
        """
        entry = (listener, tuple(event_types))
        self._listeners.append(entry)

        def unsubscribe():
            if entry in self._listeners:
                self._listeners.remove(entry)
        return unsubscribe

    def emit(self, event_type: EventType, timestamp: float, **payload) -> SimulationEvent:
        event = SimulationEvent(event_type, timestamp, payload)
        for listener, types in list(self._listeners):
            if not types or event_type in types:
                listener(event)
        return event
