"""Attack, failure and Monte Carlo runners.

Each runner executes one scenario inside a ``SimulationContext`` and returns
its aggregated result. Runners mutate device statuses on the context's
topology in place; Monte Carlo iterations therefore run on private clones.

Cancellation is checked before every step or event, before every target
device, and before every lateral-movement attempt. ``SimulationCancelledError``
propagates unchanged; the engine turns it into the CANCELLED state.
"""

from __future__ import annotations

import random
import uuid
from collections import deque
from typing import TYPE_CHECKING, Deque, List, Optional, Sequence, Union

from twinsim.dsl.selectors import find_targets
from twinsim.exceptions import NotFoundError, SimulationCancelledError
from twinsim.logging import get_logger
from twinsim.model.scenario import (
    DEFAULT_ATTACK_TEMPLATES,
    AttackScenario,
    AttackStep,
    AttackTemplate,
    FailureEvent,
    FailureScenario,
    MonteCarloScenario,
    TargetCriteria,
)
from twinsim.model.simulation import EventType, Severity
from twinsim.model.topology import DeviceStatus
from twinsim.results.results import CompromiseRecord, MonteCarloResult, SimulationResult

if TYPE_CHECKING:
    from twinsim.interfaces import ThreatRef
    from twinsim.model.topology import Device, Topology
    from twinsim.simulation.context import SimulationContext

LOGGER = get_logger(__name__)

# Device types used for random criteria when the topology has none
FALLBACK_DEVICE_TYPES = ("ROUTER", "SWITCH", "FIREWALL", "SERVER", "IOT")

# None means "any status"
RANDOM_STATUS_CHOICES = (
    None,
    DeviceStatus.HEALTHY,
    DeviceStatus.UNHEALTHY,
    DeviceStatus.COMPROMISED,
)


class AttackRunner:
    """Runs the steps of an attack scenario in order."""

    def __init__(self, scenario: AttackScenario) -> None:
        self.scenario = scenario

    def run(self, ctx: "SimulationContext") -> SimulationResult:
        scenario = self.scenario
        result = SimulationResult(ctx.simulation.id, scenario.name, scenario.kind)
        ctx.emit(
            EventType.ATTACK_START,
            Severity.INFO,
            f"Attack simulation started: {scenario.name}",
        )

        try:
            total = len(scenario.steps)
            for index, step in enumerate(scenario.steps):
                ctx.check_cancelled()
                self._run_step(ctx, step, result)
                result.increment_processed_steps()
                ctx.advance(index + 1, total)
        except SimulationCancelledError:
            raise
        except Exception as exc:
            ctx.emit(
                EventType.ATTACK_FAILURE,
                Severity.ERROR,
                f"Attack simulation failed: {scenario.name}",
                detail=str(exc),
            )
            raise

        result.calculate_impact(ctx.config.attack_weights, result.compromised_criticality)
        ctx.emit(
            EventType.ATTACK_COMPLETE,
            Severity.INFO,
            f"Attack simulation completed: {scenario.name}",
            detail=(
                f"{len(result.compromised_devices)} devices compromised, "
                f"impact {result.impact_score:.2f}"
            ),
        )
        return result

    def _run_step(
        self, ctx: "SimulationContext", step: AttackStep, result: SimulationResult
    ) -> None:
        ctx.emit(EventType.STEP_START, Severity.INFO, f"Attack step started: {step.name}")
        try:
            targets = find_targets(ctx.topology, step.target_criteria)
        except NotFoundError as exc:
            LOGGER.warning(
                "Skipping step '%s' of simulation %s: %s", step.name, ctx.simulation.id, exc
            )
            ctx.emit(
                EventType.STEP_SKIPPED,
                Severity.WARNING,
                f"Attack step skipped: {step.name}",
                detail=str(exc),
            )
            return

        LOGGER.debug("Step '%s' selected %d target(s)", step.name, len(targets))
        threat = ctx.lookup_threat(step.threat_id)

        try:
            for device in targets:
                ctx.check_cancelled()
                if result.is_device_compromised(device.id):
                    continue

                probability = ctx.probability.attack_success_probability(device, step)
                if ctx.probability.bernoulli(probability, ctx.rng):
                    self._compromise(ctx, result, device, step, threat)
                    result.increment_successful_attacks()
                    if step.lateral_movement:
                        self._propagate(ctx, result, device, step, threat)
                else:
                    result.increment_failed_attacks()
                    ctx.emit(
                        EventType.DEVICE_ATTACK_FAILED,
                        Severity.INFO,
                        f"Attack on {device.name} failed",
                        detail=f"p={probability:.3f}",
                        device_id=device.id,
                    )
        except SimulationCancelledError:
            raise
        except Exception as exc:
            ctx.emit(
                EventType.STEP_FAILURE,
                Severity.ERROR,
                f"Attack step failed: {step.name}",
                detail=str(exc),
            )
            raise

    def _propagate(
        self,
        ctx: "SimulationContext",
        result: SimulationResult,
        origin: "Device",
        step: AttackStep,
        threat: Optional["ThreatRef"],
    ) -> None:
        """Lateral movement from ``origin`` to its neighbors.

        Only newly compromised devices are put back on the worklist, and only
        when the step is multi-hop, so every device is expanded at most once
        and cycles terminate.
        """
        worklist: Deque["Device"] = deque([origin])
        while worklist:
            source = worklist.popleft()
            for neighbor in ctx.topology.get_connected_devices(source.id):
                ctx.check_cancelled()
                if result.is_device_compromised(neighbor.id):
                    continue

                connection = ctx.topology.get_connection_between(source.id, neighbor.id)
                probability = ctx.probability.propagation_probability(
                    source, neighbor, step, connection
                )
                if ctx.probability.bernoulli(probability, ctx.rng):
                    self._compromise(ctx, result, neighbor, step, threat, source=source)
                    result.increment_successful_attacks()
                    if step.multi_hop:
                        worklist.append(neighbor)
                else:
                    result.increment_failed_attacks()

    @staticmethod
    def _compromise(
        ctx: "SimulationContext",
        result: SimulationResult,
        device: "Device",
        step: AttackStep,
        threat: Optional["ThreatRef"],
        source: Optional["Device"] = None,
    ) -> None:
        record = CompromiseRecord(
            device_id=device.id,
            step_name=step.name,
            threat=threat,
            source_device_id=source.id if source else None,
        )
        if not result.add_compromised_device(device, record):
            return
        device.status = DeviceStatus.COMPROMISED
        result.add_impact(step.impact_score)
        if source is None:
            title = f"Device compromised: {device.name}"
        else:
            title = f"Device compromised via lateral movement: {device.name}"
        ctx.emit(
            EventType.DEVICE_COMPROMISED,
            Severity.WARNING,
            title,
            detail=f"step={step.name}",
            device_id=device.id,
        )


class FailureRunner:
    """Runs the events of a failure scenario in order.

    Downstream impact is deterministic: every device reachable from a failed
    device is marked affected, with no random draw.
    """

    def __init__(self, scenario: FailureScenario) -> None:
        self.scenario = scenario

    def run(self, ctx: "SimulationContext") -> SimulationResult:
        scenario = self.scenario
        result = SimulationResult(ctx.simulation.id, scenario.name, scenario.kind)
        ctx.emit(
            EventType.FAILURE_START,
            Severity.INFO,
            f"Failure simulation started: {scenario.name}",
        )

        try:
            total = len(scenario.events)
            for index, event in enumerate(scenario.events):
                ctx.check_cancelled()
                self._run_event(ctx, event, result)
                result.increment_processed_steps()
                ctx.advance(index + 1, total)
        except SimulationCancelledError:
            raise
        except Exception as exc:
            ctx.emit(
                EventType.FAILURE_FAILURE,
                Severity.ERROR,
                f"Failure simulation failed: {scenario.name}",
                detail=str(exc),
            )
            raise

        result.calculate_impact(ctx.config.failure_weights, result.affected_criticality)
        ctx.emit(
            EventType.FAILURE_COMPLETE,
            Severity.INFO,
            f"Failure simulation completed: {scenario.name}",
            detail=(
                f"{len(result.affected_devices)} devices affected, "
                f"impact {result.impact_score:.2f}"
            ),
        )
        return result

    def _run_event(
        self, ctx: "SimulationContext", event: FailureEvent, result: SimulationResult
    ) -> None:
        ctx.emit(EventType.EVENT_START, Severity.INFO, f"Failure event started: {event.name}")
        try:
            targets = find_targets(ctx.topology, event.target_criteria)
        except NotFoundError as exc:
            LOGGER.warning(
                "Skipping event '%s' of simulation %s: %s", event.name, ctx.simulation.id, exc
            )
            ctx.emit(
                EventType.STEP_SKIPPED,
                Severity.WARNING,
                f"Failure event skipped: {event.name}",
                detail=str(exc),
            )
            return

        try:
            for device in targets:
                ctx.check_cancelled()
                if result.is_device_affected(device.id):
                    continue

                device.status = event.failure_type.resulting_status
                result.add_affected_device(device)
                result.add_impact(event.impact_score)
                ctx.emit(
                    EventType.DEVICE_FAILURE,
                    Severity.ERROR,
                    f"Device failure: {device.name}",
                    detail=event.failure_type.value,
                    device_id=device.id,
                )
                self._mark_downstream(ctx, result, device, event)
        except SimulationCancelledError:
            raise
        except Exception as exc:
            ctx.emit(
                EventType.EVENT_FAILURE,
                Severity.ERROR,
                f"Failure event failed: {event.name}",
                detail=str(exc),
            )
            raise

    @staticmethod
    def _mark_downstream(
        ctx: "SimulationContext",
        result: SimulationResult,
        device: "Device",
        event: FailureEvent,
    ) -> None:
        for downstream in ctx.topology.find_reachable_devices(device.id):
            ctx.check_cancelled()
            if result.is_device_affected(downstream.id):
                continue
            downstream.status = DeviceStatus.UNHEALTHY
            result.add_affected_device(downstream)
            result.add_impact(event.downstream_impact_score)
            ctx.emit(
                EventType.DOWNSTREAM_IMPACT,
                Severity.WARNING,
                f"Downstream impact: {downstream.name}",
                detail=f"caused by {device.id}",
                device_id=downstream.id,
            )


def random_target_criteria(
    rng: random.Random, device_types: Sequence[str] = ()
) -> TargetCriteria:
    """Random criteria: 1-3 device types, a criticality window and a status.

    Args:
        rng: Random state to draw from.
        device_types: Types to choose from; falls back to
            ``FALLBACK_DEVICE_TYPES`` when empty.
    """
    pool = list(dict.fromkeys(t.upper() for t in device_types)) or list(
        FALLBACK_DEVICE_TYPES
    )
    type_count = min(rng.randint(1, 3), len(pool))
    chosen = rng.sample(pool, type_count)

    min_criticality = rng.randint(1, 3)
    max_criticality = min(min_criticality + rng.randint(1, 3), 5)

    return TargetCriteria(
        device_types=frozenset(chosen),
        min_criticality=min_criticality,
        max_criticality=max_criticality,
        status=rng.choice(RANDOM_STATUS_CHOICES),
    )


def _random_threat_id(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


def generate_random_attack_scenarios(
    topology: "Topology",
    rng: random.Random,
    templates: Sequence[AttackTemplate] = DEFAULT_ATTACK_TEMPLATES,
) -> List[AttackScenario]:
    """Instantiate every template with random target criteria.

    Criteria draw from the device types present in ``topology`` so that
    generated steps can actually select something.
    """
    device_types = topology.device_types()
    scenarios: List[AttackScenario] = []
    for template in templates:
        steps = [
            AttackStep(
                name=step_name,
                target_criteria=random_target_criteria(rng, device_types),
                success_probability=probability,
                impact_score=impact,
                threat_id=_random_threat_id(rng),
                lateral_movement=lateral,
            )
            for step_name, probability, impact, lateral in template.steps
        ]
        scenarios.append(AttackScenario(name=template.name, steps=steps, type=template.type))
    return scenarios


class MonteCarloRunner:
    """Repeats randomized attack scenarios on private topology clones."""

    def __init__(self, scenario: MonteCarloScenario) -> None:
        self.scenario = scenario

    def run(self, ctx: "SimulationContext") -> MonteCarloResult:
        scenario = self.scenario
        aggregate = MonteCarloResult(ctx.simulation.id, scenario.name)
        ctx.emit(
            EventType.MONTE_CARLO_START,
            Severity.INFO,
            f"Monte Carlo simulation started: {scenario.name}",
            detail=f"iterations={scenario.iterations}",
        )

        try:
            for iteration in range(scenario.iterations):
                ctx.check_cancelled()
                aggregate.add_iteration(self._run_iteration(ctx, iteration))
                ctx.advance(iteration + 1, scenario.iterations)
        except SimulationCancelledError:
            raise
        except Exception as exc:
            ctx.emit(
                EventType.MONTE_CARLO_FAILURE,
                Severity.ERROR,
                f"Monte Carlo simulation failed: {scenario.name}",
                detail=str(exc),
            )
            raise

        stats = aggregate.calculate_statistics(ctx.config.monte_carlo_percentiles)
        ctx.emit(
            EventType.MONTE_CARLO_COMPLETE,
            Severity.INFO,
            f"Monte Carlo simulation completed: {scenario.name}",
            detail=(
                f"mean impact {stats['impact']['mean']:.2f}, "
                f"success rate {stats['success_rate']:.2%}, risk {stats['risk_level']}"
            ),
        )
        return aggregate

    def _run_iteration(self, ctx: "SimulationContext", iteration: int) -> SimulationResult:
        rng = ctx.seeds.create_random_state("monte_carlo", iteration)
        clone = ctx.topology.copy()
        child = ctx.child(clone, rng)

        result = SimulationResult(
            ctx.simulation.id, f"{self.scenario.name} #{iteration}", AttackScenario.kind
        )
        for attack in generate_random_attack_scenarios(clone, rng, self.scenario.templates):
            result.merge(AttackRunner(attack).run(child))

        # Impact of the iteration covers the union of compromised devices
        result.calculate_impact(ctx.config.attack_weights, result.compromised_criticality)
        child.finish()
        LOGGER.debug(
            "Iteration %d of %s: %d compromised, impact %.2f",
            iteration,
            ctx.simulation.id,
            len(result.compromised_devices),
            result.impact_score,
        )
        return result


Runner = Union[AttackRunner, FailureRunner, MonteCarloRunner]


def runner_for(scenario) -> Runner:
    """Pick the runner matching a scenario's kind."""
    if isinstance(scenario, AttackScenario):
        return AttackRunner(scenario)
    if isinstance(scenario, FailureScenario):
        return FailureRunner(scenario)
    if isinstance(scenario, MonteCarloScenario):
        return MonteCarloRunner(scenario)
    raise TypeError(f"Unsupported scenario type: {type(scenario).__name__}")
