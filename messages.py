"""
Protocol messages and the append-only message log.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple
from uuid import uuid4

from events import EventBus, EventType

logger = logging.getLogger(__name__)


class Phase(Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class MessageType(Enum):
    M1_EV_REGISTRATION = "M1_EV_Registration"
    M2_USP_RESPONSE = "M2_USP_Response"
    M1_CS_REGISTRATION = "M1_CS_Registration"
    M2_USP_CS_RESPONSE = "M2_USP_CS_Response"
    M1_AUTH_REQUEST = "M1_Auth_Request"
    M2_CHALLENGE_RESPONSE = "M2_Challenge_Response"
    M3_PUFF_RESPONSE = "M3_PUFF_Response"
    M4_AUTH_COMPLETE = "M4_Auth_Complete"

    @property
    def phase(self) -> Phase:
        return MESSAGE_PHASES[self]


MESSAGE_PHASES = {
    MessageType.M1_EV_REGISTRATION: Phase.REGISTRATION,
    MessageType.M2_USP_RESPONSE: Phase.REGISTRATION,
    MessageType.M1_CS_REGISTRATION: Phase.REGISTRATION,
    MessageType.M2_USP_CS_RESPONSE: Phase.REGISTRATION,
    MessageType.M1_AUTH_REQUEST: Phase.AUTHENTICATION,
    MessageType.M2_CHALLENGE_RESPONSE: Phase.AUTHENTICATION,
    MessageType.M3_PUFF_RESPONSE: Phase.AUTHENTICATION,
    MessageType.M4_AUTH_COMPLETE: Phase.AUTHENTICATION,
}


@dataclass(frozen=True)
class Message:
    """
    One directed protocol exchange. The content mapping is read-only and
    every message is flagged encrypted; the protocol has no plaintext frames.
    """
    id: str
    sender: str
    recipient: str
    type: MessageType
    content: Mapping[str, Any]
    timestamp: float
    step: int
    phase: Phase
    encrypted: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from": self.sender,
            "to": self.recipient,
            "type": self.type.value,
            "content": dict(self.content),
            "timestamp": self.timestamp,
            "encrypted": self.encrypted,
            "step": self.step,
            "phase": self.phase.value,
        }


class MessageLog:
    """
    Append-only, time-ordered record of every message in a run.

    Steps are handshake-local: open_handshake() starts a new sequence, and
    within it steps must start at 1 and strictly increase.
    """
    def __init__(self, clock: Callable[[], float], bus: Optional[EventBus] = None):
        self._clock = clock
        self._bus = bus
        self._messages: List[Message] = []
        self._last_step = 0

    def open_handshake(self):
        self._last_step = 0

    def append(self, sender: str, recipient: str, message_type: MessageType,
               content: Dict[str, Any], phase: Phase, step: int) -> Message:
        if phase is not message_type.phase:
            raise ValueError(f"{message_type.value} belongs to the {message_type.phase.value} phase")
        if self._last_step == 0 and step != 1:
            raise ValueError(f"A handshake starts at step 1, got step {step}")
        if step <= self._last_step:
            raise ValueError(f"Step {step} does not follow step {self._last_step} of the current handshake")
        self._last_step = step

        message = Message(
            id=f"msg-{uuid4().hex}",
            sender=sender,
            recipient=recipient,
            type=message_type,
            content=MappingProxyType(dict(content)),
            timestamp=self._clock(),
            step=step,
            phase=phase,
        )
        self._messages.append(message)
        logger.debug("%s %s -> %s (step %d)", message_type.value, sender, recipient, step)

        if self._bus is not None:
            self._bus.emit(EventType.MESSAGE_APPENDED, message.timestamp, message=message)
        return message

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def by_phase(self, phase: Phase) -> List[Message]:
        return [m for m in self._messages if m.phase is phase]

    def by_type(self, message_type: MessageType) -> List[Message]:
        return [m for m in self._messages if m.type is message_type]

    def to_records(self) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))
