"""
Run-wide performance counters derived from the orchestrator's event stream,
their bounded snapshot history and the record kept for each completed run.
"""
import logging
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Deque, Dict, Tuple

from events import EventBus, EventType, HandshakeKind, SimulationEvent

logger = logging.getLogger(__name__)

HISTORY_CAPACITY = 50
UTILIZATION_PER_MESSAGE = 2
MS_PER_MINUTE = 60000


@dataclass(frozen=True)
class SimulationMetrics:
    throughput: float = 0.0  # authentications per minute, accumulated per pairing
    end_to_end_delay: float = 0.0  # ms
    successful_authentications: int = 0
    failed_authentications: int = 0
    total_messages: int = 0
    average_processing_time: float = 0.0  # ms
    network_utilization: float = 0.0  # percent

    @property
    def success_rate(self) -> float:
        return success_rate(self.successful_authentications, self.failed_authentications)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def success_rate(successful: int, failed: int) -> float:
    """Percentage of successful handshakes; 0 when nothing has been attempted"""
    attempts = successful + failed
    if attempts == 0:
        return 0.0
    return successful / attempts * 100


@dataclass(frozen=True)
class MetricsSnapshot:
    timestamp: float
    throughput: float
    end_to_end_delay_s: float
    network_utilization: float
    success_rate: float

    @classmethod
    def of(cls, metrics: SimulationMetrics, timestamp: float) -> "MetricsSnapshot":
        return cls(
            timestamp=timestamp,
            throughput=metrics.throughput,
            end_to_end_delay_s=metrics.end_to_end_delay / 1000,
            network_utilization=metrics.network_utilization,
            success_rate=metrics.success_rate,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RunConfiguration:
    ev_count: int
    cs_count: int
    step_delay_ms: float


@dataclass(frozen=True)
class SimulationResult:
    """Immutable record of one completed run"""
    id: str
    name: str
    timestamp: float
    config: RunConfiguration
    final_metrics: SimulationMetrics
    metrics_history: Tuple[MetricsSnapshot, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "timestamp": self.timestamp,
            "config": asdict(self.config),
            "final_metrics": self.final_metrics.to_dict(),
            "metrics_history": [s.to_dict() for s in self.metrics_history],
        }


class MetricsAggregator:
    """
    Listens to the event bus and keeps the current SimulationMetrics.

    Every change made while a run is active appends a snapshot to a ring
    buffer holding the most recent HISTORY_CAPACITY entries. The buffer
    spans runs; only reset() empties it.
    """
    def __init__(self, bus: EventBus, clock: Callable[[], float],
                 capacity: int = HISTORY_CAPACITY):
        self._clock = clock
        self.metrics = SimulationMetrics()
        self.history: Deque[MetricsSnapshot] = deque(maxlen=capacity)
        self.active = False

        bus.subscribe(self._on_message, EventType.MESSAGE_APPENDED)
        bus.subscribe(self._on_completed, EventType.HANDSHAKE_COMPLETED)
        bus.subscribe(self._on_failed, EventType.HANDSHAKE_FAILED)

    def begin_run(self):
        """Zero the metrics for a new run; the history carries over until reset()"""
        self.active = True
        self._update(**SimulationMetrics().to_dict())

    def end_run(self):
        self.active = False

    def reset(self):
        self.metrics = SimulationMetrics()
        self.history.clear()
        self.active = False

    def history_snapshot(self) -> Tuple[MetricsSnapshot, ...]:
        return tuple(self.history)

    def _update(self, **changes):
        self.metrics = replace(self.metrics, **changes)
        if self.active:
            self.history.append(MetricsSnapshot.of(self.metrics, self._clock()))

    def _on_message(self, event: SimulationEvent):
        total = self.metrics.total_messages + 1
        self._update(
            total_messages=total,
            network_utilization=min(100, total * UTILIZATION_PER_MESSAGE),
        )

    def _on_completed(self, event: SimulationEvent):
        delay = event.payload["step_delay_ms"]
        m = self.metrics

        if event.handshake is HandshakeKind.EV_REGISTRATION:
            self._update(
                successful_authentications=m.successful_authentications + 1,
                end_to_end_delay=m.end_to_end_delay + 2 * delay,
            )
        elif event.handshake is HandshakeKind.AUTHENTICATION:
            # Recursive blend toward the latest sample, not a running mean
            self._update(
                successful_authentications=m.successful_authentications + 1,
                throughput=m.throughput + MS_PER_MINUTE / delay,
                end_to_end_delay=m.end_to_end_delay + 4 * delay,
                average_processing_time=(m.average_processing_time + 4 * delay) / 2,
            )
        # Station registration leaves the success counters untouched

    def _on_failed(self, event: SimulationEvent):
        self._update(failed_authentications=self.metrics.failed_authentications + 1)
