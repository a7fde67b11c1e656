"""
Clocks used to suspend the orchestrator between protocol messages.

The virtual scheduler advances its clock instantly, so tests and batch runs
do not wait; the real-time scheduler actually sleeps. Both check the run's
cancellation token at every suspension point.
"""
import threading
import time
from abc import ABC, abstractmethod

from errors import SimulationCancelled


class CancellationToken:
    """Set once to ask a running simulation to stop at its next suspension point"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise SimulationCancelled("Simulation run was cancelled")

    def wait(self, seconds: float) -> bool:
        """Block up to seconds; returns True early if cancelled"""
        return self._event.wait(seconds)


class Scheduler(ABC):
    """A millisecond clock plus a cancellable sleep"""

    @abstractmethod
    def now(self) -> float:
        """Current time in milliseconds"""

    @abstractmethod
    def sleep(self, delay_ms: float, token: CancellationToken):
        """Suspend for delay_ms, raising SimulationCancelled if the token is set"""


class VirtualScheduler(Scheduler):
    """Virtual time in milliseconds, starting at start_ms; sleeping only moves the clock"""

    def __init__(self, start_ms: float = 0.0):
        self.current_ms = float(start_ms)
        self.sleeps = 0

    def now(self) -> float:
        return self.current_ms

    def sleep(self, delay_ms: float, token: CancellationToken):
        token.raise_if_cancelled()
        self.current_ms += delay_ms
        self.sleeps += 1
        token.raise_if_cancelled()


class RealTimeScheduler(Scheduler):
    """Wall-clock milliseconds since the epoch; sleeps really wait"""

    def now(self) -> float:
        return time.time() * 1000.0

    def sleep(self, delay_ms: float, token: CancellationToken):
        token.raise_if_cancelled()
        token.wait(delay_ms / 1000.0)
        token.raise_if_cancelled()
