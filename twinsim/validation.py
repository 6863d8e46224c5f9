"""Topology validation rules.

Rules read the same ``networkx`` graph the simulations run on and report
findings as ``ValidationAlert`` objects collected in a ``ValidationReport``.
A rule that raises is recorded as ERROR in the report; the remaining rules
still run.

Rules:
    CONNECTIVITY: devices without connections, high-criticality devices with a
        single connection (single point of failure).
    LOOP_DETECTION: directed loops (one alert per strongly connected group).
    POLICY_COMPLIANCE: low bandwidth, high latency, low reliability, and
        high-criticality devices sharing a subnet with low-criticality ones.
    SECURITY: WIFI connections not marked encrypted, high-criticality devices
        marked exposed.

Criticality runs from 1 (most critical) to 5, so "high criticality" means a
rating at or below ``ValidationThresholds.high_criticality``.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import networkx as nx
import pandas as pd

from twinsim.logging import get_logger
from twinsim.model.simulation import Severity
from twinsim.model.topology import Device, Topology

LOGGER = get_logger(__name__)


class RuleType(str, Enum):
    CONNECTIVITY = "CONNECTIVITY"
    LOOP_DETECTION = "LOOP_DETECTION"
    POLICY_COMPLIANCE = "POLICY_COMPLIANCE"
    SECURITY = "SECURITY"

    @classmethod
    def from_string(cls, value: "str | RuleType") -> "RuleType":
        if isinstance(value, RuleType):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            valid = ", ".join(e.name for e in cls)
            raise ValueError(f"Invalid rule '{value}'. Valid values are: {valid}") from None


@dataclass(frozen=True)
class ValidationThresholds:
    """Limits used by the policy and criticality checks."""

    min_bandwidth: float = 100.0
    max_latency: float = 100.0
    min_reliability: float = 0.95

    # Criticality at or below this value counts as high
    high_criticality: int = 2

    # Criticality at or above this value counts as low
    low_criticality: int = 4


@dataclass(frozen=True)
class ValidationAlert:
    """One finding of a validation rule."""

    rule: RuleType
    kind: str
    severity: Severity
    message: str
    device_ids: Tuple[str, ...] = ()
    connection_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule.value,
            "kind": self.kind,
            "severity": self.severity.value,
            "message": self.message,
            "device_ids": list(self.device_ids),
            "connection_ids": list(self.connection_ids),
        }


@dataclass
class ValidationReport:
    """Alerts and per-rule status of one validation run."""

    alerts: List[ValidationAlert] = field(default_factory=list)
    rule_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return all(r["status"] == "PASSED" for r in self.rule_results.values())

    def alerts_for(self, rule: "str | RuleType") -> List[ValidationAlert]:
        rule = RuleType.from_string(rule)
        return [alert for alert in self.alerts if alert.rule is rule]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "rules": self.rule_results,
            "alerts": [alert.to_dict() for alert in self.alerts],
        }

    def to_dataframe(self) -> pd.DataFrame:
        columns = ["rule", "kind", "severity", "message", "device_ids", "connection_ids"]
        return pd.DataFrame([alert.to_dict() for alert in self.alerts], columns=columns)


def _is_high(device: Device, thresholds: ValidationThresholds) -> bool:
    return device.criticality is not None and device.criticality <= thresholds.high_criticality


def _is_low(device: Device, thresholds: ValidationThresholds) -> bool:
    return device.criticality is not None and device.criticality >= thresholds.low_criticality


def _between(topology: Topology, source: str, target: str) -> str:
    src = topology.get_device(source)
    dst = topology.get_device(target)
    return f"'{src.name if src else source}' and '{dst.name if dst else target}'"


def check_connectivity(
    topology: Topology, thresholds: ValidationThresholds
) -> List[ValidationAlert]:
    alerts: List[ValidationAlert] = []
    degree: Counter[str] = Counter()
    for conn in topology.connections():
        degree[conn.source] += 1
        degree[conn.target] += 1

    for device in topology.devices():
        count = degree.get(device.id, 0)
        if count == 0:
            alerts.append(
                ValidationAlert(
                    RuleType.CONNECTIVITY,
                    "CONNECTIVITY_ISSUE",
                    Severity.WARNING,
                    f"Device '{device.name}' has no network connections",
                    (device.id,),
                )
            )
        elif count == 1 and _is_high(device, thresholds):
            alerts.append(
                ValidationAlert(
                    RuleType.CONNECTIVITY,
                    "CONNECTIVITY_ISSUE",
                    Severity.ERROR,
                    f"High-criticality device '{device.name}' has only one connection "
                    "(single point of failure)",
                    (device.id,),
                )
            )
    return alerts


def check_loops(topology: Topology, thresholds: ValidationThresholds) -> List[ValidationAlert]:
    alerts: List[ValidationAlert] = []
    order = {dev.id: index for index, dev in enumerate(topology.devices())}
    for component in nx.strongly_connected_components(topology.graph):
        if len(component) < 2:
            continue
        members = tuple(sorted(component, key=order.__getitem__))
        alerts.append(
            ValidationAlert(
                RuleType.LOOP_DETECTION,
                "TOPOLOGY_VIOLATION",
                Severity.WARNING,
                f"Network loop detected involving {len(members)} devices: "
                + ", ".join(members),
                members,
            )
        )
    alerts.sort(key=lambda a: order[a.device_ids[0]])
    return alerts


def check_policy_compliance(
    topology: Topology, thresholds: ValidationThresholds
) -> List[ValidationAlert]:
    alerts: List[ValidationAlert] = []

    subnets: Dict[str, List[Device]] = {}
    for device in topology.devices():
        if device.ip and "." in device.ip:
            subnets.setdefault(device.ip.rsplit(".", 1)[0], []).append(device)
    for subnet, members in subnets.items():
        if not any(_is_low(d, thresholds) for d in members):
            continue
        for device in members:
            if _is_high(device, thresholds):
                alerts.append(
                    ValidationAlert(
                        RuleType.POLICY_COMPLIANCE,
                        "POLICY_VIOLATION",
                        Severity.WARNING,
                        f"High-criticality device '{device.name}' shares subnet "
                        f"{subnet} with low-criticality devices",
                        (device.id,),
                    )
                )

    for conn in topology.connections():
        pair = _between(topology, conn.source, conn.target)
        findings: List[str] = []
        if conn.bandwidth is not None and conn.bandwidth < thresholds.min_bandwidth:
            findings.append(f"has low bandwidth ({conn.bandwidth:g} Mbps)")
        if conn.latency is not None and conn.latency > thresholds.max_latency:
            findings.append(f"has high latency ({conn.latency:g} ms)")
        if conn.reliability is not None and conn.reliability < thresholds.min_reliability:
            findings.append(f"has low reliability ({conn.reliability:g})")
        for finding in findings:
            alerts.append(
                ValidationAlert(
                    RuleType.POLICY_COMPLIANCE,
                    "POLICY_VIOLATION",
                    Severity.WARNING,
                    f"Connection between {pair} {finding}",
                    (conn.source, conn.target),
                    (conn.id,),
                )
            )
    return alerts


def check_security(topology: Topology, thresholds: ValidationThresholds) -> List[ValidationAlert]:
    alerts: List[ValidationAlert] = []
    for conn in topology.connections():
        if conn.type.upper() == "WIFI" and conn.properties.get("encrypted") is not True:
            alerts.append(
                ValidationAlert(
                    RuleType.SECURITY,
                    "SECURITY_ISSUE",
                    Severity.ERROR,
                    f"WiFi connection between {_between(topology, conn.source, conn.target)} "
                    "lacks encryption",
                    (conn.source, conn.target),
                    (conn.id,),
                )
            )
    for device in topology.devices():
        if _is_high(device, thresholds) and device.metadata.get("exposed") is True:
            alerts.append(
                ValidationAlert(
                    RuleType.SECURITY,
                    "SECURITY_ISSUE",
                    Severity.CRITICAL,
                    f"High-criticality device '{device.name}' is exposed to external network",
                    (device.id,),
                )
            )
    return alerts


RuleFunc = Callable[[Topology, ValidationThresholds], List[ValidationAlert]]

RULES: Dict[RuleType, RuleFunc] = {
    RuleType.CONNECTIVITY: check_connectivity,
    RuleType.LOOP_DETECTION: check_loops,
    RuleType.POLICY_COMPLIANCE: check_policy_compliance,
    RuleType.SECURITY: check_security,
}


def validate_topology(
    topology: Topology,
    rules: Optional[Iterable["str | RuleType"]] = None,
    thresholds: Optional[ValidationThresholds] = None,
) -> ValidationReport:
    """Run validation rules against a topology.

    Args:
        topology: Topology to check.
        rules: Rules to run (names or ``RuleType``); all rules when None.
        thresholds: Policy limits; defaults to ``ValidationThresholds()``.

    Returns:
        Report with every alert and a status per rule (PASSED, FAILED or
        ERROR).
    """
    thresholds = thresholds or ValidationThresholds()
    selected = list(RULES) if rules is None else [RuleType.from_string(r) for r in rules]

    report = ValidationReport()
    for rule in selected:
        LOGGER.debug("Running validation rule %s", rule.value)
        try:
            alerts = RULES[rule](topology, thresholds)
        except Exception as exc:
            LOGGER.error("Validation rule %s failed: %s", rule.value, exc)
            report.rule_results[rule.value] = {"status": "ERROR", "error": str(exc)}
            continue
        report.alerts.extend(alerts)
        report.rule_results[rule.value] = {
            "status": "FAILED" if alerts else "PASSED",
            "alert_count": len(alerts),
        }

    LOGGER.info(
        "Validated topology '%s': %d alert(s) from %d rule(s)",
        topology.name,
        len(report.alerts),
        len(selected),
    )
    return report
