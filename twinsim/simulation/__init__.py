"""Simulation execution: probability model, context, runners and engine."""

from __future__ import annotations

from .context import SimulationContext
from .engine import SimulationEngine, SimulationHandle, SimulationTask
from .probability import ProbabilityModel, clamp
from .runners import (
    AttackRunner,
    FailureRunner,
    MonteCarloRunner,
    generate_random_attack_scenarios,
    random_target_criteria,
    runner_for,
)

__all__ = [
    "AttackRunner",
    "FailureRunner",
    "MonteCarloRunner",
    "ProbabilityModel",
    "SimulationContext",
    "SimulationEngine",
    "SimulationHandle",
    "SimulationTask",
    "clamp",
    "generate_random_attack_scenarios",
    "random_target_criteria",
    "runner_for",
]
