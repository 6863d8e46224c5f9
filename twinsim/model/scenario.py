"""Attack, failure and Monte Carlo scenario definitions.

Scenarios are plain dataclasses. ``validate()`` runs before a scenario is
queued and raises ``ValidationError`` for anything the runners could not
process, so a bad request never creates a simulation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Union

from twinsim.exceptions import ValidationError
from twinsim.model.topology import DeviceStatus


@dataclass(frozen=True)
class TargetCriteria:
    """Declarative device filter. All set fields must match (AND).

    Attributes:
        device_types: Accepted device types (case-insensitive).
        min_criticality: Inclusive lower bound on criticality.
        max_criticality: Inclusive upper bound on criticality.
        status: Exact status the device must have.
        ip_pattern: Regular expression the whole IP must match.
        metadata: Key/value pairs that must equal the device metadata.
        device_ids: Explicit device ids; unknown ids are a NotFoundError.
    """

    device_types: FrozenSet[str] = frozenset()
    min_criticality: Optional[int] = None
    max_criticality: Optional[int] = None
    status: Optional[DeviceStatus] = None
    ip_pattern: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    device_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Normalize so callers can pass lists or a single plain string
        device_types = self.device_types
        if isinstance(device_types, str):
            device_types = (device_types,)
        object.__setattr__(self, "device_types", frozenset(t.upper() for t in device_types))
        device_ids = self.device_ids
        if isinstance(device_ids, str):
            device_ids = (device_ids,)
        object.__setattr__(self, "device_ids", tuple(device_ids))
        if self.status is not None:
            object.__setattr__(self, "status", DeviceStatus.from_string(self.status))

    @property
    def is_empty(self) -> bool:
        return not (
            self.device_types
            or self.min_criticality is not None
            or self.max_criticality is not None
            or self.status is not None
            or self.ip_pattern is not None
            or self.metadata
            or self.device_ids
        )

    def validate(self) -> None:
        """Raise ValidationError when the criteria can never be evaluated."""
        for bound in (self.min_criticality, self.max_criticality):
            if bound is not None and not 1 <= bound <= 5:
                raise ValidationError(f"Criticality bound {bound} outside 1..5")
        if (
            self.min_criticality is not None
            and self.max_criticality is not None
            and self.min_criticality > self.max_criticality
        ):
            raise ValidationError(
                f"min_criticality {self.min_criticality} exceeds "
                f"max_criticality {self.max_criticality}"
            )
        if self.ip_pattern is not None:
            try:
                re.compile(self.ip_pattern)
            except re.error as exc:
                raise ValidationError(f"Invalid ip_pattern '{self.ip_pattern}': {exc}") from exc

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> TargetCriteria:
        if not data:
            return cls()
        return cls(
            device_types=frozenset(data.get("device_types") or ()),
            min_criticality=data.get("min_criticality"),
            max_criticality=data.get("max_criticality"),
            status=data.get("status"),
            ip_pattern=data.get("ip_pattern"),
            metadata=dict(data.get("metadata") or {}),
            device_ids=tuple(str(d) for d in data.get("device_ids") or ()),
        )


def _check_probability(name: str, value: float, owner: str) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{owner}: {name} must be within [0, 1], got {value}")


@dataclass
class AttackStep:
    """One step of an attack scenario.

    ``propagation_probability`` drives lateral movement; when unset the
    step's success probability is used.
    """

    name: str
    target_criteria: TargetCriteria = field(default_factory=TargetCriteria)
    success_probability: float = 0.5
    impact_score: float = 1.0
    threat_id: Optional[str] = None
    lateral_movement: bool = False
    multi_hop: bool = False
    propagation_probability: Optional[float] = None

    @property
    def base_propagation_probability(self) -> float:
        if self.propagation_probability is None:
            return self.success_probability
        return self.propagation_probability

    def validate(self) -> None:
        owner = f"Attack step '{self.name}'"
        _check_probability("success_probability", self.success_probability, owner)
        if self.propagation_probability is not None:
            _check_probability(
                "propagation_probability", self.propagation_probability, owner
            )
        if self.impact_score < 0:
            raise ValidationError(f"{owner}: impact_score must be non-negative")
        if self.multi_hop and not self.lateral_movement:
            raise ValidationError(f"{owner}: multi_hop requires lateral_movement")
        self.target_criteria.validate()


@dataclass
class AttackScenario:
    """Ordered list of attack steps."""

    name: str
    steps: List[AttackStep] = field(default_factory=list)
    type: str = "GENERIC"

    kind = "ATTACK"

    def validate(self) -> None:
        if not self.steps:
            raise ValidationError(f"Attack scenario '{self.name}' has no steps")
        for step in self.steps:
            step.validate()

    @property
    def total_units(self) -> int:
        return len(self.steps)


class FailureType(str, Enum):
    """Kinds of device failure a failure event can inject."""

    DEVICE_DOWN = "DEVICE_DOWN"
    DEVICE_COMPROMISED = "DEVICE_COMPROMISED"
    DEVICE_MISCONFIGURED = "DEVICE_MISCONFIGURED"

    @classmethod
    def from_string(cls, value: "str | FailureType") -> "FailureType":
        if isinstance(value, FailureType):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            valid = ", ".join(e.name for e in cls)
            raise ValidationError(
                f"Invalid failure_type '{value}'. Valid values are: {valid}"
            ) from None

    @property
    def resulting_status(self) -> DeviceStatus:
        """Status a directly failed device ends up in."""
        if self is FailureType.DEVICE_COMPROMISED:
            return DeviceStatus.COMPROMISED
        return DeviceStatus.UNHEALTHY


@dataclass
class FailureEvent:
    """One event of a failure scenario."""

    name: str
    target_criteria: TargetCriteria = field(default_factory=TargetCriteria)
    failure_type: FailureType = FailureType.DEVICE_DOWN
    impact_score: float = 1.0
    downstream_impact_score: float = 0.5

    def __post_init__(self) -> None:
        self.failure_type = FailureType.from_string(self.failure_type)

    def validate(self) -> None:
        if self.impact_score < 0 or self.downstream_impact_score < 0:
            raise ValidationError(
                f"Failure event '{self.name}': impact scores must be non-negative"
            )
        self.target_criteria.validate()


@dataclass
class FailureScenario:
    """Ordered list of failure events."""

    name: str
    events: List[FailureEvent] = field(default_factory=list)

    kind = "FAILURE"

    def validate(self) -> None:
        if not self.events:
            raise ValidationError(f"Failure scenario '{self.name}' has no events")
        for event in self.events:
            event.validate()

    @property
    def total_units(self) -> int:
        return len(self.events)


@dataclass
class AttackTemplate:
    """Blueprint for the randomized attack scenarios of a Monte Carlo run.

    Each entry of ``steps`` is ``(name, success_probability, impact_score,
    lateral_movement)``. Target criteria are drawn at random per iteration.
    """

    name: str
    type: str
    steps: Sequence[tuple[str, float, float, bool]]


DEFAULT_ATTACK_TEMPLATES: tuple[AttackTemplate, ...] = (
    AttackTemplate(
        name="Random DDoS Attack",
        type="DDOS",
        steps=(
            ("Initial Compromise", 0.3, 5.0, False),
            ("Lateral Movement", 0.2, 7.0, True),
            ("DDoS Attack", 0.5, 15.0, False),
        ),
    ),
    AttackTemplate(
        name="Random Ransomware Attack",
        type="RANSOMWARE",
        steps=(
            ("Phishing Email", 0.1, 3.0, False),
            ("Initial Access", 0.4, 8.0, False),
            ("Privilege Escalation", 0.3, 10.0, True),
            ("Ransomware Deployment", 0.6, 20.0, False),
        ),
    ),
)


@dataclass
class MonteCarloScenario:
    """Repeat randomized attack scenarios ``iterations`` times."""

    name: str = "Monte Carlo"
    iterations: int = 100
    templates: Sequence[AttackTemplate] = DEFAULT_ATTACK_TEMPLATES

    kind = "MONTE_CARLO"

    def validate(self) -> None:
        if self.iterations <= 0:
            raise ValidationError(
                f"Monte Carlo scenario '{self.name}' needs a positive iteration count"
            )
        if not self.templates:
            raise ValidationError(f"Monte Carlo scenario '{self.name}' has no templates")
        for template in self.templates:
            if not template.steps:
                raise ValidationError(f"Attack template '{template.name}' has no steps")
            for step_name, probability, impact, _ in template.steps:
                _check_probability(
                    "success_probability", probability, f"Template step '{step_name}'"
                )
                if impact < 0:
                    raise ValidationError(
                        f"Template step '{step_name}': impact_score must be non-negative"
                    )

    @property
    def total_units(self) -> int:
        return self.iterations


Scenario = Union[AttackScenario, FailureScenario, MonteCarloScenario]
