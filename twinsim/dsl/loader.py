"""YAML loader + schema validation for scenario files.

A scenario file holds a topology and the simulations to run on it:

    seed: 42
    topology:
      name: lab
      devices:
        - {id: fw1, type: FIREWALL, criticality: 1}
        - {id: srv1, type: SERVER, criticality: 2}
      connections:
        - {source: fw1, target: srv1, reliability: 0.99}
    simulations:
      - type: attack
        name: Breach
        steps:
          - {name: Entry, success_probability: 0.5, impact_score: 5,
             target_criteria: {device_types: [FIREWALL]}, lateral_movement: true}
      - type: failure
        events:
          - {name: Outage, failure_type: DEVICE_DOWN,
             target_criteria: {device_ids: [fw1]}}
      - type: monte_carlo
        iterations: 200

``load_scenario_yaml`` validates the raw document against the packaged JSON
schema; ``load_scenario_file`` goes on to build the model objects.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import jsonschema
import yaml

from twinsim.exceptions import ValidationError
from twinsim.model.scenario import (
    DEFAULT_ATTACK_TEMPLATES,
    AttackScenario,
    AttackStep,
    AttackTemplate,
    FailureEvent,
    FailureScenario,
    MonteCarloScenario,
    Scenario,
    TargetCriteria,
)
from twinsim.model.topology import Topology


@dataclass
class SimulationSpec:
    """One entry of the ``simulations`` section."""

    scenario: Scenario
    seed: Optional[int] = None
    user: Optional[str] = None


@dataclass
class ScenarioFile:
    """Parsed scenario file."""

    topology: Topology
    simulations: List[SimulationSpec] = field(default_factory=list)
    seed: Optional[int] = None


@lru_cache(maxsize=1)
def _schema() -> Dict[str, Any]:
    try:
        with (
            resources.files("twinsim")
            .joinpath("schemas/scenario.json")
            .open("r", encoding="utf-8")
        ) as f:
            return json.load(f)
    except OSError as exc:  # pragma: no cover
        raise RuntimeError(
            "Failed to locate packaged scenario schema 'twinsim/schemas/scenario.json'."
        ) from exc


def load_scenario_yaml(yaml_str: str) -> Dict[str, Any]:
    """Parse a scenario YAML string and validate it against the schema.

    Raises:
        ValidationError: If the document is not a mapping or fails the schema.
    """
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as exc:
        raise ValidationError(f"Invalid YAML: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("The provided YAML must map to a dictionary at top-level.")

    try:
        jsonschema.validate(data, _schema())
    except jsonschema.ValidationError as exc:
        location = "/".join(str(p) for p in exc.absolute_path) or "<root>"
        raise ValidationError(f"Scenario schema violation at {location}: {exc.message}") from exc
    return data


def _build_attack(entry: Dict[str, Any], index: int) -> AttackScenario:
    steps = [
        AttackStep(
            name=step["name"],
            target_criteria=TargetCriteria.from_dict(step.get("target_criteria")),
            success_probability=step.get("success_probability", 0.5),
            impact_score=step.get("impact_score", 1.0),
            threat_id=step.get("threat_id"),
            lateral_movement=step.get("lateral_movement", False),
            multi_hop=step.get("multi_hop", False),
            propagation_probability=step.get("propagation_probability"),
        )
        for step in entry["steps"]
    ]
    return AttackScenario(
        name=entry.get("name") or f"attack-{index}",
        steps=steps,
        type=entry.get("scenario_type", "GENERIC"),
    )


def _build_failure(entry: Dict[str, Any], index: int) -> FailureScenario:
    events = [
        FailureEvent(
            name=event["name"],
            target_criteria=TargetCriteria.from_dict(event.get("target_criteria")),
            failure_type=event.get("failure_type", "DEVICE_DOWN"),
            impact_score=event.get("impact_score", 1.0),
            downstream_impact_score=event.get("downstream_impact_score", 0.5),
        )
        for event in entry["events"]
    ]
    return FailureScenario(name=entry.get("name") or f"failure-{index}", events=events)


def _build_monte_carlo(entry: Dict[str, Any], index: int) -> MonteCarloScenario:
    templates = DEFAULT_ATTACK_TEMPLATES
    if entry.get("templates"):
        templates = tuple(
            AttackTemplate(
                name=tpl["name"],
                type=tpl.get("type", "GENERIC"),
                steps=tuple(
                    (
                        s["name"],
                        s["success_probability"],
                        s["impact_score"],
                        s.get("lateral_movement", False),
                    )
                    for s in tpl["steps"]
                ),
            )
            for tpl in entry["templates"]
        )
    return MonteCarloScenario(
        name=entry.get("name") or f"monte-carlo-{index}",
        iterations=entry.get("iterations", 100),
        templates=templates,
    )


_BUILDERS = {
    "attack": _build_attack,
    "failure": _build_failure,
    "monte_carlo": _build_monte_carlo,
}


def build_scenario(entry: Dict[str, Any], index: int = 0) -> Scenario:
    """Build and validate a scenario from one ``simulations`` entry."""
    try:
        builder = _BUILDERS[entry["type"]]
    except KeyError:
        raise ValidationError(f"Unknown simulation type '{entry.get('type')}'") from None
    try:
        scenario = builder(entry, index)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    scenario.validate()
    return scenario


def parse_scenario(data: Dict[str, Any]) -> ScenarioFile:
    """Turn a validated scenario document into model objects."""
    try:
        topology = Topology.from_dict(data.get("topology") or {})
    except ValueError as exc:
        raise ValidationError(f"Invalid topology: {exc}") from exc

    seed = data.get("seed")
    simulations = [
        SimulationSpec(
            scenario=build_scenario(entry, index),
            seed=entry.get("seed", seed),
            user=entry.get("user"),
        )
        for index, entry in enumerate(data.get("simulations") or [])
    ]
    return ScenarioFile(topology=topology, simulations=simulations, seed=seed)


def load_scenario_file(path: Union[str, Path]) -> ScenarioFile:
    """Read, validate and parse a scenario file from disk."""
    text = Path(path).read_text(encoding="utf-8")
    return parse_scenario(load_scenario_yaml(text))
