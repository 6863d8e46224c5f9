"""Configuration classes for twinsim components."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class ImpactWeights:
    """Constants turning a set of hit devices into impact figures.

    ``total = count * base_weight + sum(criticality)``,
    ``expected_loss = total * loss_factor`` and
    ``downtime = count * hours_per_device``.
    """

    base_weight: float
    loss_factor: float
    hours_per_device: float

    # Used for devices without a criticality rating
    default_criticality: int = 3


ATTACK_WEIGHTS = ImpactWeights(base_weight=10.0, loss_factor=0.10, hours_per_device=2.0)
FAILURE_WEIGHTS = ImpactWeights(base_weight=8.0, loss_factor=0.15, hours_per_device=3.0)


def _attack_security_factors() -> Dict[str, float]:
    return {"HIGH": 0.7, "MEDIUM": 0.9, "LOW": 1.1, "NONE": 1.3}


def _propagation_security_factors() -> Dict[str, float]:
    return {"HIGH": 0.6, "MEDIUM": 0.8, "LOW": 1.2, "NONE": 1.4}


@dataclass(frozen=True)
class ProbabilityConfig:
    """Risk-adjustment tables used by the probability model."""

    # security_posture -> multiplier on the step's base success probability
    attack_security_factors: Dict[str, float] = field(
        default_factory=_attack_security_factors
    )

    # security_posture of the target -> multiplier on propagation probability
    propagation_security_factors: Dict[str, float] = field(
        default_factory=_propagation_security_factors
    )

    # Each criticality level above 1 removes this much from the factor
    criticality_step: float = 0.1

    # Connection multiplier when the connection carries no security_factor
    default_connection_factor: float = 1.0


@dataclass(frozen=True)
class EngineConfig:
    """Sizing of the engine queue and worker pool."""

    # Bounded queue capacity; submit blocks (or fails fast) when full
    queue_capacity: int = 100

    # Workers = available CPUs * multiplier unless max_workers is set
    worker_multiplier: int = 2
    max_workers: Optional[int] = None

    # Upper bound on how long shutdown waits for in-flight simulations
    shutdown_timeout: float = 60.0

    # How often idle workers wake up to check for shutdown
    poll_interval: float = 0.1

    def resolve_workers(self) -> int:
        """Number of worker threads to start."""
        if self.max_workers is not None:
            return max(1, self.max_workers)
        return max(1, (os.cpu_count() or 1) * self.worker_multiplier)


@dataclass(frozen=True)
class SimulationConfig:
    """Everything a simulation engine needs to know about tunable constants."""

    attack_weights: ImpactWeights = ATTACK_WEIGHTS
    failure_weights: ImpactWeights = FAILURE_WEIGHTS
    probability: ProbabilityConfig = field(default_factory=ProbabilityConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)

    # Percentiles reported by Monte Carlo statistics
    monte_carlo_percentiles: tuple[float, ...] = (50.0, 90.0, 95.0, 99.0)


# Global configuration instance
DEFAULT_CONFIG = SimulationConfig()
