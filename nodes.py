"""
Simulated network entities (EVs, the USP and charging stations), the
registry that holds them for a run and the per-node status state machine.
"""
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from errors import (
    ArtifactOverwriteError,
    ConfigurationError,
    HandshakeInProgressError,
    InvalidTransitionError,
)
from primitives import KeyGenerator, TokenKeyGenerator

logger = logging.getLogger(__name__)

# Topology layout: USP in the centre, EVs and stations on concentric circles
CENTER = (400.0, 300.0)
EV_RADIUS = 200.0
CS_RADIUS = 150.0


class NodeKind(Enum):
    EV = "EV"
    USP = "USP"
    CHARGING_STATION = "ChargingStation"


class NodeStatus(Enum):
    IDLE = "idle"
    REGISTERING = "registering"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


# Artifacts that may be written at most once per run
SET_ONCE_FIELDS = ("psidev", "token")
RUN_ARTIFACTS = ("psidev", "challenge", "puff_response", "nonce", "token")


@dataclass
class Node:
    """
    One simulated entity. Keys are generated once when the node is created;
    the remaining artifacts are filled in as the node moves through a run.
    """
    id: str
    kind: NodeKind
    public_key: str
    private_key: str
    position: Tuple[float, float] = (0.0, 0.0)
    status: NodeStatus = NodeStatus.IDLE
    shared_key: Optional[str] = None
    psidev: Optional[str] = None
    challenge: Optional[str] = None
    puff_response: Optional[str] = None
    nonce: Optional[str] = None
    token: Optional[str] = None

    def assign_once(self, field_name: str, value: str):
        """Set a set-once artifact, refusing to overwrite a value from earlier in the run"""
        if getattr(self, field_name) is not None:
            raise ArtifactOverwriteError(self.id, field_name)
        setattr(self, field_name, value)

    def clear_run_artifacts(self):
        """Forget everything derived during the previous run; keys are kept"""
        for name in RUN_ARTIFACTS:
            setattr(self, name, None)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "type": self.kind.value,
            "status": self.status.value,
            "position": list(self.position),
            "publicKey": self.public_key,
            "sharedKey": self.shared_key,
            "psidev": self.psidev,
            "challenge": self.challenge,
            "puffResponse": self.puff_response,
            "nonce": self.nonce,
            "token": self.token,
        }


class NodeRegistry:
    """
    Ordered set of nodes for one topology. Registry order is creation order,
    which is the order the orchestrator walks each phase in.
    """
    def __init__(self):
        self._nodes: Dict[str, Node] = {}

    def add(self, node: Node) -> Node:
        if node.id in self._nodes:
            raise ConfigurationError(f"Duplicate node id: {node.id}")
        if node.kind is NodeKind.USP and self.usp() is not None:
            raise ConfigurationError("A topology holds exactly one USP")
        self._nodes[node.id] = node
        return node

    def get(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def of_kind(self, kind: NodeKind) -> List[Node]:
        return [n for n in self._nodes.values() if n.kind is kind]

    def usp(self) -> Optional[Node]:
        return next((n for n in self._nodes.values() if n.kind is NodeKind.USP), None)

    def evs(self) -> List[Node]:
        return self.of_kind(NodeKind.EV)

    def stations(self) -> List[Node]:
        return self.of_kind(NodeKind.CHARGING_STATION)

    def snapshot(self) -> Tuple[Node, ...]:
        """Detached copies for readers outside the orchestrator"""
        return tuple(copy.copy(n) for n in self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(list(self._nodes.values()))

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes


def circle_position(index: int, count: int, radius: float, offset: float = 0.0) -> Tuple[float, float]:
    """Position of the index-th of count nodes spaced evenly on a circle around the USP"""
    angle = (index / count) * 2 * np.pi + offset
    return (float(CENTER[0] + np.cos(angle) * radius),
            float(CENTER[1] + np.sin(angle) * radius))


def build_topology(ev_count: int, cs_count: int,
                   key_generator: Optional[KeyGenerator] = None) -> NodeRegistry:
    """Create a registry with one USP, ev_count EVs and cs_count charging stations"""
    if ev_count < 0 or cs_count < 0:
        raise ConfigurationError(f"Node counts must be non-negative (got {ev_count} EVs, {cs_count} stations)")
    keys = key_generator or TokenKeyGenerator()
    registry = NodeRegistry()

    public_key, private_key = keys.generate_pair()
    registry.add(Node("USP-1", NodeKind.USP, public_key, private_key, position=CENTER))

    for i in range(ev_count):
        public_key, private_key = keys.generate_pair()
        registry.add(Node(
            f"EV-{i + 1}", NodeKind.EV, public_key, private_key,
            position=circle_position(i, ev_count, EV_RADIUS),
            shared_key=keys.generate_secret()
        ))

    for i in range(cs_count):
        public_key, private_key = keys.generate_pair()
        registry.add(Node(
            f"CS-{i + 1}", NodeKind.CHARGING_STATION, public_key, private_key,
            position=circle_position(i, cs_count, CS_RADIUS, offset=np.pi)
        ))

    logger.info("Initialized topology with %d EVs and %d charging stations", ev_count, cs_count)
    return registry


class NodeStateMachine:
    """
    Guards node status changes.

    Registration runs idle -> registering -> idle, authentication runs
    idle -> authenticating -> authenticated (or failed). An authenticated or
    failed node may start another authentication without a reset.
    """
    TRANSITIONS = {
        NodeStatus.IDLE: {NodeStatus.REGISTERING, NodeStatus.AUTHENTICATING},
        NodeStatus.REGISTERING: {NodeStatus.IDLE},
        NodeStatus.AUTHENTICATING: {NodeStatus.AUTHENTICATED, NodeStatus.FAILED},
        NodeStatus.AUTHENTICATED: {NodeStatus.AUTHENTICATING},
        NodeStatus.FAILED: {NodeStatus.AUTHENTICATING},
    }
    IN_FLIGHT = (NodeStatus.REGISTERING, NodeStatus.AUTHENTICATING)

    def can_transition(self, current: NodeStatus, requested: NodeStatus) -> bool:
        return requested in self.TRANSITIONS[current]

    def transition(self, node: Node, status: NodeStatus):
        if not self.can_transition(node.status, status):
            raise InvalidTransitionError(node.id, node.status.value, status.value)
        logger.debug("%s: %s -> %s", node.id, node.status.value, status.value)
        node.status = status

    def begin_handshake(self, node: Node, status: NodeStatus):
        """Move a node into a handshake status, refusing if it is already in one"""
        if node.status in self.IN_FLIGHT:
            raise HandshakeInProgressError(node.id, node.status.value)
        self.transition(node, status)

    def reset(self, node: Node):
        """Return a node to idle at the start of a run, whatever its status"""
        node.status = NodeStatus.IDLE
