"""Simulation result aggregation."""

from __future__ import annotations

from .results import CompromiseRecord, MonteCarloResult, SimulationResult

__all__ = [
    "CompromiseRecord",
    "MonteCarloResult",
    "SimulationResult",
]
