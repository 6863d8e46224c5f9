"""Success and propagation probabilities for attack steps.

Both probabilities start from a base probability carried by the step and are
scaled by device risk factors. Results are always clamped to [0, 1].

Randomness is never drawn here from the global ``random`` module: callers
pass the ``random.Random`` owned by their simulation context.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Mapping, Optional

from twinsim.config import ProbabilityConfig

if TYPE_CHECKING:
    from twinsim.model.scenario import AttackStep
    from twinsim.model.topology import Connection, Device


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class ProbabilityModel:
    """Computes per-device attack and propagation probabilities.

    Attributes:
        config: Factor tables and constants.
    """

    def __init__(self, config: Optional[ProbabilityConfig] = None) -> None:
        self.config = config or ProbabilityConfig()

    @staticmethod
    def _posture_factor(device: "Device", table: Mapping[str, float]) -> float:
        posture = device.security_posture
        if posture is None:
            return 1.0
        return table.get(posture, 1.0)

    def security_factor(self, device: "Device") -> float:
        """HIGH 0.7, MEDIUM 0.9, LOW 1.1, NONE 1.3, anything else 1.0."""
        return self._posture_factor(device, self.config.attack_security_factors)

    def criticality_factor(self, device: "Device") -> float:
        """1.0 for criticality 1 down to 0.6 for criticality 5."""
        if device.criticality is None:
            return 1.0
        return 1.0 - (device.criticality - 1) * self.config.criticality_step

    def target_security_factor(self, device: "Device") -> float:
        """HIGH 0.6, MEDIUM 0.8, LOW 1.2, NONE 1.4, anything else 1.0."""
        return self._posture_factor(device, self.config.propagation_security_factors)

    def connection_security_factor(self, connection: Optional["Connection"]) -> float:
        if connection is None:
            return self.config.default_connection_factor
        factor = connection.properties.get("security_factor")
        if isinstance(factor, (int, float)) and not isinstance(factor, bool):
            return float(factor)
        return self.config.default_connection_factor

    def attack_success_probability(self, device: "Device", step: "AttackStep") -> float:
        """Probability that ``step`` compromises ``device``."""
        probability = (
            step.success_probability
            * self.security_factor(device)
            * self.criticality_factor(device)
        )
        return clamp(probability)

    def propagation_probability(
        self,
        source: "Device",
        target: "Device",
        step: "AttackStep",
        connection: Optional["Connection"] = None,
    ) -> float:
        """Probability that lateral movement from ``source`` takes ``target``.

        ``source`` does not change the figure today; it is part of the
        signature so connection-aware models can be swapped in.
        """
        probability = (
            step.base_propagation_probability
            * self.connection_security_factor(connection)
            * self.target_security_factor(target)
        )
        return clamp(probability)

    @staticmethod
    def bernoulli(probability: float, rng: random.Random) -> bool:
        """Single Bernoulli draw. ``probability`` 1.0 always succeeds."""
        return rng.random() < probability
