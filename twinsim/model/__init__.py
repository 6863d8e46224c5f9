"""Topology, scenario and simulation models."""

from __future__ import annotations

from twinsim.model.scenario import (
    DEFAULT_ATTACK_TEMPLATES,
    AttackScenario,
    AttackStep,
    AttackTemplate,
    FailureEvent,
    FailureScenario,
    FailureType,
    MonteCarloScenario,
    Scenario,
    TargetCriteria,
)
from twinsim.model.simulation import (
    EventType,
    Severity,
    Simulation,
    SimulationEvent,
    SimulationStatus,
)
from twinsim.model.topology import Connection, Device, DeviceStatus, Topology

__all__ = [
    "Connection",
    "Device",
    "DeviceStatus",
    "Topology",
    "TargetCriteria",
    "AttackStep",
    "AttackScenario",
    "AttackTemplate",
    "DEFAULT_ATTACK_TEMPLATES",
    "FailureEvent",
    "FailureScenario",
    "FailureType",
    "MonteCarloScenario",
    "Scenario",
    "EventType",
    "Severity",
    "Simulation",
    "SimulationEvent",
    "SimulationStatus",
]
