"""
EVNetworkSimulation: the owned simulation context and its control surface.

Holds the node registry, message log, metrics aggregator and run history.
Readers get snapshots (tuples of frozen messages, copies of nodes, immutable
metrics values); only the orchestrator mutates state, and only during a run.
"""
import logging
import random
import threading
from typing import List, Optional, Tuple

from config import SimulationConfig, validate_step_delay
from errors import SimulationBusyError, SimulationCancelled, SimulationError
from events import EventBus, EventType, Listener
from messages import Message, MessageLog
from metrics import (
    MetricsAggregator,
    MetricsSnapshot,
    RunConfiguration,
    SimulationMetrics,
    SimulationResult,
)
from nodes import Node, NodeRegistry, NodeStateMachine, build_topology
from primitives import KeyGenerator, PuffHashPrimitives, make_key_generator
from protocol import ProtocolOrchestrator
from scheduler import CancellationToken, RealTimeScheduler, Scheduler, VirtualScheduler

logger = logging.getLogger(__name__)


class EVNetworkSimulation:
    """
    Simulates registration and authentication between EVs, the USP and
    charging stations, and keeps a history of completed runs
    """
    def __init__(self, config: Optional[SimulationConfig] = None,
                 scheduler: Optional[Scheduler] = None,
                 primitives: Optional[PuffHashPrimitives] = None,
                 key_generator: Optional[KeyGenerator] = None):
        self.config = (config or SimulationConfig()).validate()
        self.scheduler = scheduler or (RealTimeScheduler() if self.config.real_time else VirtualScheduler())
        self.rng = random.Random(self.config.seed)
        self.primitives = primitives or PuffHashPrimitives()
        self.key_generator = key_generator or make_key_generator(self.config.key_scheme, self.rng)
        self.state_machine = NodeStateMachine()

        self.bus = EventBus()
        self.aggregator = MetricsAggregator(self.bus, self.scheduler.now)

        self._results: List[SimulationResult] = []
        self._runs_started = 0
        self._run_lock = threading.Lock()
        self._running = False
        self._token: Optional[CancellationToken] = None
        self._orchestrator: Optional[ProtocolOrchestrator] = None

        self.registry = NodeRegistry()
        self.log = MessageLog(self.scheduler.now, self.bus)
        self._ev_count = 0
        self._cs_count = 0
        self.initialize(self.config.ev_count, self.config.cs_count)

    # Control surface

    def initialize(self, ev_count: int, cs_count: int):
        """Build a fresh topology: one USP, ev_count EVs, cs_count charging stations"""
        self._ensure_idle("initialize")
        self.registry = build_topology(ev_count, cs_count, self.key_generator)
        self.log = MessageLog(self.scheduler.now, self.bus)
        self._orchestrator = None
        self._ev_count = ev_count
        self._cs_count = cs_count

    def start(self, step_delay_ms: Optional[float] = None) -> Optional[SimulationResult]:
        """
        Run all three protocol phases and return the recorded result.

        Returns None without doing anything if a run is already in progress,
        and None if the run is cancelled before it finishes.
        """
        delay = self.config.step_delay_ms if step_delay_ms is None else step_delay_ms
        validate_step_delay(delay)

        if not self._run_lock.acquire(blocking=False):
            logger.warning("Simulation already running; start request ignored")
            return None
        try:
            self._running = True
            return self._run(delay)
        finally:
            self._running = False
            self._token = None
            self._run_lock.release()

    def start_in_background(self, step_delay_ms: Optional[float] = None) -> threading.Thread:
        """Run start() on a daemon thread, for use with the real-time scheduler"""
        thread = threading.Thread(target=self._run_in_thread, args=(step_delay_ms,),
                                  name="ev-simulation", daemon=True)
        thread.start()
        return thread

    def cancel(self):
        """Ask the current run to stop at its next suspension point"""
        if self._token is not None:
            self._token.cancel()

    def reset(self):
        """Rebuild the topology with the current counts and zero all metrics"""
        self.initialize(self._ev_count, self._cs_count)
        self.aggregator.reset()
        logger.info("Simulation reset")

    def clear_history(self):
        self._results.clear()
        logger.info("Simulation history cleared")

    def subscribe(self, listener: Listener, *event_types: EventType):
        return self.bus.subscribe(listener, *event_types)

    # Read-only views

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def nodes(self) -> Tuple[Node, ...]:
        return self.registry.snapshot()

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self.log.snapshot()

    @property
    def metrics(self) -> SimulationMetrics:
        return self.aggregator.metrics

    @property
    def metrics_history(self) -> Tuple[MetricsSnapshot, ...]:
        return self.aggregator.history_snapshot()

    @property
    def current_step(self) -> int:
        return self._orchestrator.current_step if self._orchestrator else 0

    @property
    def results(self) -> Tuple[SimulationResult, ...]:
        return tuple(self._results)

    # Internals

    def _ensure_idle(self, operation: str):
        if self._running:
            raise SimulationBusyError(f"Cannot {operation} while a simulation run is in progress")

    def _run(self, delay: float) -> Optional[SimulationResult]:
        self._token = CancellationToken()
        self._runs_started += 1

        for node in self.registry:
            self.state_machine.reset(node)
            node.clear_run_artifacts()
        self.log = MessageLog(self.scheduler.now, self.bus)
        self.aggregator.begin_run()

        evs = len(self.registry.evs())
        stations = len(self.registry.stations())
        self._orchestrator = ProtocolOrchestrator(
            self.registry, self.log, self.bus, self.scheduler, delay,
            token=self._token,
            primitives=self.primitives,
            rng=self.rng,
            failure_probability=self.config.failure_probability,
            strict_topology=self.config.strict_topology,
            state_machine=self.state_machine,
        )

        logger.info("Simulation started with %d EVs and %d charging stations (%.0f ms per step)",
                    evs, stations, delay)
        self.bus.emit(EventType.RUN_STARTED, self.scheduler.now(),
                      ev_count=evs, cs_count=stations, step_delay_ms=delay)

        try:
            self._orchestrator.run()
        except SimulationCancelled:
            self.aggregator.end_run()
            logger.info("Simulation cancelled after %d handshakes", self._orchestrator.current_step)
            self.bus.emit(EventType.RUN_CANCELLED, self.scheduler.now(),
                          current_step=self._orchestrator.current_step)
            return None
        except SimulationError as exc:
            self.aggregator.end_run()
            logger.error("Simulation failed: %s", exc)
            self.bus.emit(EventType.RUN_FAILED, self.scheduler.now(), error=exc)
            raise

        self.aggregator.end_run()
        result = SimulationResult(
            id=f"sim-{self._runs_started}",
            name=f"Simulation {len(self._results) + 1}",
            timestamp=self.scheduler.now(),
            config=RunConfiguration(evs, stations, delay),
            final_metrics=self.aggregator.metrics,
            metrics_history=self.aggregator.history_snapshot(),
        )
        self._results.append(result)

        logger.info("Simulation complete with %d successful authentications",
                    result.final_metrics.successful_authentications)
        self.bus.emit(EventType.RUN_FINISHED, self.scheduler.now(), result=result)
        return result

    def _run_in_thread(self, step_delay_ms: Optional[float]):
        try:
            self.start(step_delay_ms)
        except SimulationError:
            logger.exception("Background simulation run failed")
