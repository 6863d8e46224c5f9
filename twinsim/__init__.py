"""twinsim: Digital-twin network risk simulation.

twinsim models a network as a directed graph of devices and connections and
runs probabilistic attack, failure and Monte Carlo simulations over it on a
queued, cancellable worker pool.

Primary API:
    Topology, Device, Connection - Network model
    AttackScenario, FailureScenario, MonteCarloScenario - What to simulate
    SimulationEngine - Bounded queue + worker pool executing scenarios
    SimulationResult, MonteCarloResult - Aggregated outcomes
    validate_topology() - Structural, policy and security checks

Example:
    from twinsim import (
        AttackScenario, AttackStep, Connection, Device, SimulationEngine,
        TargetCriteria, Topology,
    )

    topo = Topology("lab")
    topo.add_device(Device("A", type="FIREWALL", criticality=1))
    topo.add_device(Device("B", type="SERVER", criticality=2))
    topo.add_connection(Connection("A-B", "A", "B", reliability=0.99))

    step = AttackStep(
        "Breach",
        TargetCriteria(device_ids=("A",)),
        success_probability=0.8,
        lateral_movement=True,
    )
    with SimulationEngine() as engine:
        result = engine.run(AttackScenario("demo", [step]), topo, seed=7)
"""

from __future__ import annotations

from twinsim import cli, logging
from twinsim._version import __version__
from twinsim.config import (
    ATTACK_WEIGHTS,
    DEFAULT_CONFIG,
    FAILURE_WEIGHTS,
    EngineConfig,
    ImpactWeights,
    ProbabilityConfig,
    SimulationConfig,
)
from twinsim.dsl.loader import load_scenario_file, load_scenario_yaml
from twinsim.dsl.selectors import find_targets
from twinsim.exceptions import (
    EngineShutdownError,
    NotFoundError,
    QueueFullError,
    SimulationCancelledError,
    TwinSimError,
    ValidationError,
)
from twinsim.heartbeat import Heartbeat, HeartbeatProcessor
from twinsim.model import (
    AttackScenario,
    AttackStep,
    AttackTemplate,
    Connection,
    Device,
    DeviceStatus,
    EventType,
    FailureEvent,
    FailureScenario,
    FailureType,
    MonteCarloScenario,
    Severity,
    Simulation,
    SimulationEvent,
    SimulationStatus,
    TargetCriteria,
    Topology,
)
from twinsim.results import CompromiseRecord, MonteCarloResult, SimulationResult
from twinsim.seed_manager import SeedManager
from twinsim.simulation import (
    ProbabilityModel,
    SimulationContext,
    SimulationEngine,
    SimulationHandle,
)
from twinsim.validation import ValidationReport, validate_topology

__all__ = [
    # Version
    "__version__",
    # Model
    "Topology",
    "Device",
    "Connection",
    "DeviceStatus",
    "TargetCriteria",
    "AttackStep",
    "AttackScenario",
    "AttackTemplate",
    "FailureEvent",
    "FailureScenario",
    "FailureType",
    "MonteCarloScenario",
    "Simulation",
    "SimulationStatus",
    "SimulationEvent",
    "EventType",
    "Severity",
    # Execution
    "SimulationEngine",
    "SimulationHandle",
    "SimulationContext",
    "ProbabilityModel",
    "SeedManager",
    "find_targets",
    # Results
    "SimulationResult",
    "MonteCarloResult",
    "CompromiseRecord",
    # Configuration
    "SimulationConfig",
    "EngineConfig",
    "ProbabilityConfig",
    "ImpactWeights",
    "ATTACK_WEIGHTS",
    "FAILURE_WEIGHTS",
    "DEFAULT_CONFIG",
    # Errors
    "TwinSimError",
    "ValidationError",
    "NotFoundError",
    "SimulationCancelledError",
    "QueueFullError",
    "EngineShutdownError",
    # Supplementary features
    "Heartbeat",
    "HeartbeatProcessor",
    "ValidationReport",
    "validate_topology",
    "load_scenario_file",
    "load_scenario_yaml",
    # Utilities
    "cli",
    "logging",
]
