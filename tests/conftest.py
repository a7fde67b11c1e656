import matplotlib

matplotlib.use("Agg")

import pytest

from config import SimulationConfig
from scheduler import VirtualScheduler
from simulation import EVNetworkSimulation


@pytest.fixture
def make_simulation():
    """Factory for simulations on a virtual clock with a fixed seed"""
    def factory(ev_count=1, cs_count=1, **overrides):
        config = SimulationConfig(ev_count=ev_count, cs_count=cs_count, seed=42, **overrides)
        return EVNetworkSimulation(config, scheduler=VirtualScheduler())
    return factory


def handshakes(messages):
    """Split a message sequence into handshakes; each one starts at step 1"""
    groups = []
    for message in messages:
        if message.step == 1:
            groups.append([])
        groups[-1].append(message)
    return groups
