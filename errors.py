"""
Exception hierarchy for the EV charging network simulation
"""


class SimulationError(Exception):
    """Base class for all simulation errors"""


class ConfigurationError(SimulationError, ValueError):
    """Raised when a simulation parameter is out of range"""


class InvalidTransitionError(SimulationError):
    """Raised when a node is moved along a transition the state machine forbids"""

    def __init__(self, node_id: str, current: str, requested: str):
        super().__init__(f"Node {node_id} cannot move from {current} to {requested}")
        self.node_id = node_id
        self.current = current
        self.requested = requested


class HandshakeInProgressError(SimulationError):
    """Raised when a node is asked to start a handshake while another is in flight"""

    def __init__(self, node_id: str, status: str):
        super().__init__(f"Node {node_id} is already {status}")
        self.node_id = node_id
        self.status = status


class ArtifactOverwriteError(SimulationError):
    """Raised when a set-once artifact (psidev, token) would be overwritten within a run"""

    def __init__(self, node_id: str, field_name: str):
        super().__init__(f"{field_name} of node {node_id} is already set for this run")
        self.node_id = node_id
        self.field_name = field_name


class MissingCounterpartError(SimulationError):
    """Raised in strict mode when a handshake cannot find its partner node"""

    def __init__(self, node_id: str, counterpart: str):
        super().__init__(f"No {counterpart} available for handshake with {node_id}")
        self.node_id = node_id
        self.counterpart = counterpart


class SimulationBusyError(SimulationError):
    """Raised when the topology is changed while a run is in progress"""


class SimulationCancelled(SimulationError):
    """Raised at a suspension point once the run's cancellation token is set"""
