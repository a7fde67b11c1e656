"""
Tests for the simulation context: lifecycle, control surface, events,
cancellation and run history.
"""

import dataclasses
import threading

import pytest

from config import SimulationConfig
from errors import ConfigurationError, MissingCounterpartError, SimulationBusyError
from events import EventType, HandshakeKind
from metrics import SimulationMetrics
from nodes import Node, NodeKind, NodeRegistry, NodeStatus
from scheduler import RealTimeScheduler, VirtualScheduler
from simulation import EVNetworkSimulation


class TestLifecycle:
    """Test initialize, start, reset and history handling."""

    def test_initialize_builds_topology(self, make_simulation):
        simulation = make_simulation(3, 2)

        assert len(simulation.nodes) == 6
        assert simulation.messages == ()
        assert simulation.metrics == SimulationMetrics()
        assert simulation.current_step == 0
        assert not simulation.is_running

    def test_reinitialize_with_new_counts(self, make_simulation):
        simulation = make_simulation(1, 1)
        simulation.initialize(2, 3)

        assert [n.id for n in simulation.nodes] == ["USP-1", "EV-1", "EV-2", "CS-1", "CS-2", "CS-3"]

    def test_start_records_result(self, make_simulation):
        simulation = make_simulation(1, 1)
        result = simulation.start(500)

        assert simulation.results == (result,)
        assert result.id == "sim-1"
        assert result.name == "Simulation 1"
        assert result.config.ev_count == 1
        assert result.config.step_delay_ms == 500
        assert result.final_metrics == simulation.metrics
        assert len(result.metrics_history) == 1 + 8 + 2
        assert result.metrics_history == simulation.metrics_history
        assert not simulation.is_running

    def test_default_delay_comes_from_config(self, make_simulation):
        simulation = make_simulation(1, 1, step_delay_ms=250)
        result = simulation.start()

        assert result.config.step_delay_ms == 250
        assert simulation.messages[-1].timestamp == 7 * 250

    def test_invalid_delay_rejected(self, make_simulation):
        simulation = make_simulation(1, 1)

        with pytest.raises(ConfigurationError):
            simulation.start(0)
        assert simulation.results == ()

    def test_each_run_starts_clean(self, make_simulation):
        simulation = make_simulation(2, 2)
        first = simulation.start(500)
        second = simulation.start(500)

        assert len(simulation.messages) == 2 * 2 + 2 * 2 + 4 * 2
        assert second.final_metrics.total_messages == first.final_metrics.total_messages
        assert second.final_metrics == first.final_metrics
        assert second.name == "Simulation 2"

    def test_history_spans_runs_until_reset(self, make_simulation):
        simulation = make_simulation(2, 2)
        first = simulation.start(500)
        second = simulation.start(500)

        # Per run: one zero snapshot, 16 messages, 2 EV registrations, 2 authentications
        assert len(first.metrics_history) == 21
        assert len(second.metrics_history) == 42
        assert second.metrics_history[:21] == first.metrics_history
        assert second.metrics_history[21].network_utilization == 0

        simulation.reset()
        assert simulation.metrics_history == ()
        assert len(simulation.results[1].metrics_history) == 42

    def test_current_step_counts_handshakes(self, make_simulation):
        simulation = make_simulation(3, 2)
        simulation.start(500)

        assert simulation.current_step == 3 + 2 + 2

    def test_reset_is_idempotent(self, make_simulation):
        simulation = make_simulation(2, 1)
        simulation.start(500)
        simulation.reset()
        once = ([n.status for n in simulation.nodes], simulation.messages, simulation.metrics)
        simulation.reset()

        assert ([n.status for n in simulation.nodes], simulation.messages, simulation.metrics) == once
        assert simulation.messages == ()
        assert simulation.metrics == SimulationMetrics()
        assert simulation.metrics_history == ()
        assert simulation.current_step == 0
        assert all(n.status is NodeStatus.IDLE for n in simulation.nodes)
        assert len(simulation.results) == 1

    def test_clear_history_restarts_names(self, make_simulation):
        simulation = make_simulation(1, 1)
        simulation.start(500)
        simulation.start(500)
        simulation.clear_history()
        result = simulation.start(500)

        assert simulation.results == (result,)
        assert result.name == "Simulation 1"
        assert result.id == "sim-3"

    def test_results_are_read_only(self, make_simulation):
        simulation = make_simulation(1, 1)
        result = simulation.start(500)

        with pytest.raises(dataclasses.FrozenInstanceError):
            result.name = "renamed"
        assert isinstance(simulation.results, tuple)

    def test_node_views_are_copies(self, make_simulation):
        simulation = make_simulation(1, 1)
        simulation.nodes[1].status = NodeStatus.FAILED

        assert simulation.nodes[1].status is NodeStatus.IDLE


class TestControlSurface:
    """Test guards that apply while a run is in progress."""

    def test_start_while_running_is_ignored(self, make_simulation):
        simulation = make_simulation(1, 1)
        nested = []
        simulation.subscribe(lambda event: nested.append(simulation.start(500)), EventType.RUN_STARTED)
        result = simulation.start(500)

        assert nested == [None]
        assert result is not None
        assert len(simulation.results) == 1

    def test_reset_and_initialize_while_running(self, make_simulation):
        simulation = make_simulation(1, 1)
        errors = []

        def interfere(event):
            for operation in (simulation.reset, lambda: simulation.initialize(2, 2)):
                try:
                    operation()
                except SimulationBusyError as exc:
                    errors.append(exc)

        simulation.subscribe(interfere, EventType.RUN_STARTED)
        simulation.start(500)

        assert len(errors) == 2
        assert len(simulation.nodes) == 3

    def test_is_running_during_run(self, make_simulation):
        simulation = make_simulation(1, 1)
        seen = []
        simulation.subscribe(lambda event: seen.append(simulation.is_running), EventType.MESSAGE_APPENDED)
        simulation.start(500)

        assert seen and all(seen)
        assert not simulation.is_running


class TestEvents:
    """Test the lifecycle event stream."""

    def test_event_order(self, make_simulation):
        simulation = make_simulation(1, 1)
        events = []
        simulation.subscribe(events.append)
        simulation.start(500)
        types = [e.type for e in events]

        assert types[0] is EventType.RUN_STARTED
        assert types[-1] is EventType.RUN_FINISHED
        assert types.count(EventType.MESSAGE_APPENDED) == 8
        completed = [e.handshake for e in events if e.type is EventType.HANDSHAKE_COMPLETED]
        assert completed == [HandshakeKind.EV_REGISTRATION, HandshakeKind.CS_REGISTRATION,
                             HandshakeKind.AUTHENTICATION]
        # Each completion follows the last message of its handshake
        assert types[3] is EventType.HANDSHAKE_COMPLETED
        assert types[6] is EventType.HANDSHAKE_COMPLETED
        assert events[-1].payload["result"] is simulation.results[-1]

    def test_unsubscribe(self, make_simulation):
        simulation = make_simulation(1, 1)
        events = []
        unsubscribe = simulation.subscribe(events.append, EventType.RUN_FINISHED)
        simulation.start(500)
        unsubscribe()
        simulation.start(500)

        assert len(events) == 1

    def test_strict_topology_failure(self, make_simulation):
        simulation = make_simulation(1, 1, strict_topology=True)
        registry = NodeRegistry()
        registry.add(Node("EV-1", NodeKind.EV, "pub", "priv"))
        simulation.registry = registry
        failures = []
        simulation.subscribe(failures.append, EventType.RUN_FAILED)

        with pytest.raises(MissingCounterpartError):
            simulation.start(500)
        assert len(failures) == 1
        assert isinstance(failures[0].payload["error"], MissingCounterpartError)
        assert simulation.results == ()
        assert not simulation.is_running


class TestCancellation:
    """Test cooperative cancellation at suspension points."""

    def test_cancel_mid_run(self, make_simulation):
        simulation = make_simulation(2, 1)
        cancelled = []
        simulation.subscribe(cancelled.append, EventType.RUN_CANCELLED)

        def cancel_on_third(event):
            if len(simulation.messages) == 3:
                simulation.cancel()

        unsubscribe = simulation.subscribe(cancel_on_third, EventType.MESSAGE_APPENDED)
        result = simulation.start(500)

        assert result is None
        assert len(simulation.messages) == 3
        assert len(cancelled) == 1
        assert cancelled[0].payload["current_step"] == 1
        assert simulation.results == ()
        assert not simulation.is_running

        unsubscribe()
        result = simulation.start(500)
        assert len(simulation.messages) == 10
        assert result.id == "sim-2"
        assert result.name == "Simulation 1"

    def test_cancel_without_run_is_noop(self, make_simulation):
        simulation = make_simulation(1, 1)
        simulation.cancel()

        assert simulation.start(500) is not None

    def test_cancel_real_time_run(self):
        config = SimulationConfig(ev_count=1, cs_count=1, seed=7, step_delay_ms=60000, real_time=True)
        simulation = EVNetworkSimulation(config)
        started = threading.Event()
        cancelled = []
        simulation.subscribe(lambda event: started.set(), EventType.RUN_STARTED)
        simulation.subscribe(cancelled.append, EventType.RUN_CANCELLED)

        assert isinstance(simulation.scheduler, RealTimeScheduler)
        thread = simulation.start_in_background()
        assert started.wait(5)
        simulation.cancel()
        thread.join(5)

        assert not thread.is_alive()
        assert len(cancelled) == 1
        assert simulation.results == ()
        assert len(simulation.messages) <= 1

    def test_virtual_scheduler_is_default(self):
        simulation = EVNetworkSimulation(SimulationConfig(ev_count=0, cs_count=0))

        assert isinstance(simulation.scheduler, VirtualScheduler)
