"""Result aggregation for attack, failure and Monte Carlo simulations.

``SimulationResult`` accumulates one run: which devices were compromised or
affected, step counters, and impact figures. ``MonteCarloResult`` collects one
``SimulationResult`` per iteration and derives distribution statistics from
them once the run is over.

Device sets are ordered dictionaries keyed by device id, so membership checks
are O(1), re-adding a device is a no-op, and iteration order follows the
order in which devices were hit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from twinsim.config import ImpactWeights
from twinsim.model.simulation import utcnow

if TYPE_CHECKING:
    from twinsim.interfaces import ThreatRef
    from twinsim.model.topology import Device


@dataclass(frozen=True)
class CompromiseRecord:
    """A device compromise, optionally tagged with the threat behind it.

    Attributes:
        device_id: Compromised device.
        step_name: Attack step that produced the compromise.
        threat: Catalogued threat, or None when the lookup found nothing.
        source_device_id: Device the attack moved from (lateral movement only).
        timestamp: When the compromise was recorded.
    """

    device_id: str
    step_name: str
    threat: Optional["ThreatRef"] = None
    source_device_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "step_name": self.step_name,
            "threat_id": self.threat.id if self.threat else None,
            "source_device_id": self.source_device_id,
            "timestamp": self.timestamp.isoformat(),
        }


class SimulationResult:
    """Aggregated outcome of one attack or failure run.

    ``step_impact`` is the running sum of per-step impact scores fed through
    ``add_impact``. ``impact_score``, ``expected_loss`` and
    ``downtime_impact`` are set by ``calculate_impact`` at the end of a run.
    """

    def __init__(
        self,
        simulation_id: str,
        scenario_name: str = "",
        scenario_type: str = "",
    ) -> None:
        self.simulation_id = simulation_id
        self.scenario_name = scenario_name
        self.scenario_type = scenario_type

        # device id -> criticality (None when unrated)
        self._compromised: Dict[str, Optional[int]] = {}
        self._affected: Dict[str, Optional[int]] = {}
        self.compromise_records: List[CompromiseRecord] = []

        self.processed_steps = 0
        self.successful_attacks = 0
        self.failed_attacks = 0

        self.step_impact = 0.0
        self.impact_score = 0.0
        self.expected_loss = 0.0
        self.downtime_impact = 0.0

    def __repr__(self) -> str:
        return (
            f"SimulationResult(simulation_id={self.simulation_id!r}, "
            f"compromised={len(self._compromised)}, affected={len(self._affected)}, "
            f"impact_score={self.impact_score:.2f})"
        )

    @property
    def compromised_devices(self) -> List[str]:
        return list(self._compromised)

    @property
    def affected_devices(self) -> List[str]:
        return list(self._affected)

    @property
    def compromised_criticality(self) -> Mapping[str, Optional[int]]:
        return dict(self._compromised)

    @property
    def affected_criticality(self) -> Mapping[str, Optional[int]]:
        return dict(self._affected)

    def add_compromised_device(
        self, device: "Device", record: Optional[CompromiseRecord] = None
    ) -> bool:
        """Record a compromise. Returns False if the device was already recorded."""
        if device.id in self._compromised:
            return False
        self._compromised[device.id] = device.criticality
        if record is not None:
            self.compromise_records.append(record)
        return True

    def add_affected_device(self, device: "Device") -> bool:
        """Record an affected device. Returns False if already recorded."""
        if device.id in self._affected:
            return False
        self._affected[device.id] = device.criticality
        return True

    def is_device_compromised(self, device_id: str) -> bool:
        return device_id in self._compromised

    def is_device_affected(self, device_id: str) -> bool:
        return device_id in self._affected

    def add_impact(self, delta: float) -> None:
        """Add a step's impact score. Impact only ever accumulates."""
        if delta < 0:
            raise ValueError(f"Impact delta must be non-negative, got {delta}")
        self.step_impact += delta

    def increment_processed_steps(self) -> None:
        self.processed_steps += 1

    def increment_successful_attacks(self) -> None:
        self.successful_attacks += 1

    def increment_failed_attacks(self) -> None:
        self.failed_attacks += 1

    def calculate_impact(
        self, weights: ImpactWeights, devices: Mapping[str, Optional[int]]
    ) -> float:
        """Set the final impact figures from a set of hit devices.

        Args:
            weights: Impact constants (attack or failure).
            devices: Device id -> criticality of the devices to count.

        Returns:
            The computed impact score.
        """
        count = len(devices)
        criticality_sum = sum(
            weights.default_criticality if crit is None else crit
            for crit in devices.values()
        )
        total = count * weights.base_weight + criticality_sum
        self.impact_score = float(total)
        self.expected_loss = float(total * weights.loss_factor)
        self.downtime_impact = float(count * weights.hours_per_device)
        return self.impact_score

    def merge(self, other: SimulationResult) -> None:
        """Fold another result into this one.

        Device sets are unioned (first criticality wins); counters and impact
        figures are added.
        """
        for dev_id, crit in other._compromised.items():
            self._compromised.setdefault(dev_id, crit)
        for dev_id, crit in other._affected.items():
            self._affected.setdefault(dev_id, crit)
        self.compromise_records.extend(other.compromise_records)

        self.processed_steps += other.processed_steps
        self.successful_attacks += other.successful_attacks
        self.failed_attacks += other.failed_attacks

        self.step_impact += other.step_impact
        self.impact_score += other.impact_score
        self.expected_loss += other.expected_loss
        self.downtime_impact += other.downtime_impact

    def to_dict(self) -> Dict[str, Any]:
        return {
            "simulation_id": self.simulation_id,
            "scenario_name": self.scenario_name,
            "scenario_type": self.scenario_type,
            "compromised_devices": self.compromised_devices,
            "affected_devices": self.affected_devices,
            "processed_steps": self.processed_steps,
            "successful_attacks": self.successful_attacks,
            "failed_attacks": self.failed_attacks,
            "step_impact": self.step_impact,
            "impact_score": self.impact_score,
            "expected_loss": self.expected_loss,
            "downtime_impact": self.downtime_impact,
            "compromise_records": [r.to_dict() for r in self.compromise_records],
        }


def _describe(values: Iterable[float], percentiles: Iterable[float]) -> Dict[str, float]:
    arr = np.asarray(list(values), dtype=float)
    stats: Dict[str, float] = {
        "mean": float(arr.mean()),
        "min": float(arr.min()),
        "max": float(arr.max()),
        # Population standard deviation
        "std": float(arr.std()),
    }
    for p in percentiles:
        stats[_percentile_key(p)] = float(np.percentile(arr, p))
    return stats


def _percentile_key(p: float) -> str:
    return f"p{p:g}".replace(".", "_")


class MonteCarloResult:
    """Distribution of outcomes over Monte Carlo iterations.

    Each iteration is added with ``add_iteration`` as soon as it finishes.
    After the last iteration the runner calls ``calculate_statistics`` exactly
    once; that call freezes the statistics and any later merge raises.
    Statistics read before that call are not meaningful.

    Attributes:
        simulation_id: Owning simulation.
        scenario_name: Monte Carlo scenario name.
        iterations: Per-iteration results in execution order.
        totals: Additive aggregate over every iteration.
        device_hit_counts: Device id -> number of iterations that compromised it.
        statistics: Frozen statistics (empty until finalized).
    """

    def __init__(self, simulation_id: str, scenario_name: str = "") -> None:
        self.simulation_id = simulation_id
        self.scenario_name = scenario_name
        self.iterations: List[SimulationResult] = []
        self.totals = SimulationResult(simulation_id, scenario_name, "MONTE_CARLO")
        self.device_hit_counts: Dict[str, int] = {}
        self.successful_iterations = 0
        self.statistics: Dict[str, Any] = {}
        self._frozen = False

    def __repr__(self) -> str:
        return (
            f"MonteCarloResult(simulation_id={self.simulation_id!r}, "
            f"iterations={len(self.iterations)}, frozen={self._frozen})"
        )

    @property
    def is_finalized(self) -> bool:
        return self._frozen

    @property
    def impact_scores(self) -> List[float]:
        return [r.impact_score for r in self.iterations]

    @property
    def expected_losses(self) -> List[float]:
        return [r.expected_loss for r in self.iterations]

    def add_iteration(self, iteration_result: SimulationResult) -> None:
        """Add one iteration's result to the aggregate.

        Raises:
            RuntimeError: If statistics were already calculated.
        """
        if self._frozen:
            raise RuntimeError(
                "Monte Carlo statistics are frozen; no further iterations can be merged"
            )
        self.iterations.append(iteration_result)
        self.totals.merge(iteration_result)
        for dev_id in iteration_result.compromised_devices:
            self.device_hit_counts[dev_id] = self.device_hit_counts.get(dev_id, 0) + 1
        if iteration_result.compromised_devices:
            self.successful_iterations += 1

    merge = add_iteration

    def calculate_statistics(
        self, percentiles: Iterable[float] = (50.0, 90.0, 95.0, 99.0)
    ) -> Dict[str, Any]:
        """Compute and freeze distribution statistics.

        Args:
            percentiles: Percentiles (0-100) of the impact and loss
                distributions to report.

        Returns:
            The statistics dictionary.

        Raises:
            RuntimeError: If called a second time.
        """
        if self._frozen:
            raise RuntimeError("Monte Carlo statistics were already calculated")

        percentiles = tuple(percentiles)
        count = len(self.iterations)
        stats: Dict[str, Any] = {"iterations": count}
        if count:
            stats["impact"] = _describe(self.impact_scores, percentiles)
            stats["expected_loss"] = _describe(self.expected_losses, percentiles)
            stats["success_rate"] = self.successful_iterations / count
            stats["device_compromise_probability"] = {
                dev_id: hits / count for dev_id, hits in self.device_hit_counts.items()
            }
        else:
            empty = {"mean": 0.0, "min": 0.0, "max": 0.0, "std": 0.0}
            empty.update({_percentile_key(p): 0.0 for p in percentiles})
            stats["impact"] = dict(empty)
            stats["expected_loss"] = dict(empty)
            stats["success_rate"] = 0.0
            stats["device_compromise_probability"] = {}
        stats["risk_level"] = self._risk_level(stats["success_rate"])

        self.statistics = stats
        self._frozen = True
        return stats

    @staticmethod
    def _risk_level(success_rate: float) -> str:
        if success_rate >= 0.8:
            return "HIGH"
        if success_rate >= 0.4:
            return "MEDIUM"
        return "LOW"

    @property
    def mean_impact(self) -> float:
        return float(self.statistics.get("impact", {}).get("mean", 0.0))

    @property
    def success_rate(self) -> float:
        return float(self.statistics.get("success_rate", 0.0))

    @property
    def risk_level(self) -> Optional[str]:
        return self.statistics.get("risk_level")

    def get_percentile_impact(self, percentile: float) -> float:
        """Impact at ``percentile`` (0-100) over the iteration distribution.

        Uses the frozen value when that percentile was precomputed.

        Raises:
            ValueError: If ``percentile`` is outside [0, 100].
        """
        if not 0 <= percentile <= 100:
            raise ValueError(f"Percentile must be within [0, 100], got {percentile}")
        frozen = self.statistics.get("impact", {}).get(_percentile_key(percentile))
        if frozen is not None:
            return float(frozen)
        if not self.iterations:
            return 0.0
        return float(np.percentile(np.asarray(self.impact_scores, dtype=float), percentile))

    def to_dataframe(self) -> pd.DataFrame:
        """One row per iteration."""
        rows = [
            {
                "iteration": index,
                "compromised": len(result.compromised_devices),
                "successful_attacks": result.successful_attacks,
                "failed_attacks": result.failed_attacks,
                "step_impact": result.step_impact,
                "impact_score": result.impact_score,
                "expected_loss": result.expected_loss,
                "downtime_impact": result.downtime_impact,
            }
            for index, result in enumerate(self.iterations)
        ]
        return pd.DataFrame(
            rows,
            columns=[
                "iteration",
                "compromised",
                "successful_attacks",
                "failed_attacks",
                "step_impact",
                "impact_score",
                "expected_loss",
                "downtime_impact",
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "simulation_id": self.simulation_id,
            "scenario_name": self.scenario_name,
            "iterations": len(self.iterations),
            "successful_iterations": self.successful_iterations,
            "totals": self.totals.to_dict(),
            "statistics": self.statistics,
        }
