"""Shared fixtures for the twinsim test suite."""

from __future__ import annotations

from typing import Callable, Iterable, Optional, Tuple

import pytest

from twinsim.config import EngineConfig, SimulationConfig
from twinsim.model.simulation import Simulation
from twinsim.model.topology import Connection, Device, Topology
from twinsim.simulation.context import SimulationContext
from twinsim.simulation.engine import SimulationEngine


def build_topology(
    devices: Iterable[Tuple[str, str, Optional[int]]],
    edges: Iterable[Tuple[str, str]],
    name: str = "test",
) -> Topology:
    """Build a topology from ``(id, type, criticality)`` and ``(source, target)`` tuples."""
    topo = Topology(name)
    for dev_id, dev_type, criticality in devices:
        topo.add_device(Device(dev_id, type=dev_type, criticality=criticality))
    for source, target in edges:
        topo.add_connection(Connection(f"{source}-{target}", source, target))
    return topo


@pytest.fixture
def linear_topology() -> Topology:
    """A -> B -> C, all servers with criticality 1."""
    return build_topology(
        [("A", "SERVER", 1), ("B", "SERVER", 1), ("C", "SERVER", 1)],
        [("A", "B"), ("B", "C")],
        name="linear",
    )


@pytest.fixture
def cyclic_topology() -> Topology:
    """A -> B -> C -> A plus C -> D."""
    return build_topology(
        [("A", "ROUTER", 1), ("B", "SWITCH", 3), ("C", "SERVER", 2), ("D", "IOT", None)],
        [("A", "B"), ("B", "C"), ("C", "A"), ("C", "D")],
        name="cyclic",
    )


@pytest.fixture
def mixed_topology() -> Topology:
    """Small enterprise-like network with varied types, IPs and postures."""
    topo = Topology("mixed")
    topo.add_device(
        Device(
            "fw1",
            type="FIREWALL",
            criticality=1,
            ip="10.0.0.1",
            risk_factors={"security_posture": "HIGH"},
        )
    )
    topo.add_device(
        Device(
            "r1",
            type="ROUTER",
            criticality=2,
            ip="10.0.0.2",
            risk_factors={"security_posture": "MEDIUM"},
        )
    )
    topo.add_device(
        Device(
            "srv1",
            type="SERVER",
            criticality=2,
            ip="10.0.1.10",
            metadata={"zone": "dmz"},
        )
    )
    topo.add_device(
        Device(
            "srv2",
            type="SERVER",
            criticality=4,
            ip="10.0.1.11",
            metadata={"zone": "internal"},
        )
    )
    topo.add_device(
        Device("cam1", type="IOT", criticality=5, risk_factors={"security_posture": "NONE"})
    )
    topo.add_connection(Connection("c1", "fw1", "r1", bandwidth=1000, latency=1, reliability=0.99))
    topo.add_connection(Connection("c2", "r1", "srv1", bandwidth=1000, latency=2, reliability=0.98))
    topo.add_connection(Connection("c3", "r1", "srv2", bandwidth=1000, latency=2, reliability=0.98))
    topo.add_connection(Connection("c4", "r1", "cam1", type="WIFI", bandwidth=50, reliability=0.9))
    return topo


@pytest.fixture
def make_context() -> Callable[..., SimulationContext]:
    """Factory for a running simulation context on a given topology."""

    def _make(topology: Topology, seed: Optional[int] = 42, **kwargs) -> SimulationContext:
        simulation = Simulation("test", "ATTACK", seed=seed)
        simulation.start()
        return SimulationContext(simulation, topology, **kwargs)

    return _make


@pytest.fixture
def small_engine_config() -> SimulationConfig:
    """Two workers, tiny queue, fast polling."""
    return SimulationConfig(
        engine=EngineConfig(queue_capacity=2, max_workers=2, shutdown_timeout=5.0, poll_interval=0.01)
    )


@pytest.fixture
def engine(small_engine_config):
    eng = SimulationEngine(small_engine_config)
    yield eng
    eng.shutdown(timeout=5.0)
