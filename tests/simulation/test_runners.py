"""Tests for attack, failure and Monte Carlo runners."""

import random

import pytest

from twinsim.exceptions import SimulationCancelledError
from twinsim.interfaces import InMemoryEventSink, InMemoryThreatCatalog, ThreatRef
from twinsim.model.scenario import (
    AttackScenario,
    AttackStep,
    FailureEvent,
    FailureScenario,
    FailureType,
    MonteCarloScenario,
    TargetCriteria,
)
from twinsim.model.simulation import EventType
from twinsim.model.topology import DeviceStatus
from twinsim.results.results import MonteCarloResult
from twinsim.simulation.runners import (
    FALLBACK_DEVICE_TYPES,
    AttackRunner,
    FailureRunner,
    MonteCarloRunner,
    generate_random_attack_scenarios,
    random_target_criteria,
    runner_for,
)


def _lateral_step(target: str, multi_hop: bool = True, impact: float = 5.0) -> AttackStep:
    return AttackStep(
        "Breach",
        TargetCriteria(device_ids=(target,)),
        success_probability=1.0,
        impact_score=impact,
        lateral_movement=True,
        multi_hop=multi_hop,
    )


def _event_types(ctx):
    return [e.type for e in ctx.events]


class TestAttackRunner:
    def test_linear_multi_hop_compromises_everything(self, linear_topology, make_context):
        ctx = make_context(linear_topology)
        result = AttackRunner(AttackScenario("linear", [_lateral_step("A")])).run(ctx)

        assert result.compromised_devices == ["A", "B", "C"]
        assert result.processed_steps == 1
        assert result.successful_attacks == 3
        assert result.failed_attacks == 0
        assert result.step_impact == pytest.approx(15.0)
        # 3 * 10 + (1 + 1 + 1)
        assert result.impact_score == pytest.approx(33.0)
        assert result.expected_loss == pytest.approx(3.3)
        assert result.downtime_impact == pytest.approx(6.0)
        assert all(d.status is DeviceStatus.COMPROMISED for d in linear_topology.devices())

    def test_single_hop_stops_at_neighbors(self, cyclic_topology, make_context):
        ctx = make_context(cyclic_topology)
        result = AttackRunner(AttackScenario("one-hop", [_lateral_step("A", multi_hop=False)])).run(ctx)
        # A's neighbors in either direction: B (successor) and C (predecessor)
        assert result.compromised_devices == ["A", "B", "C"]
        assert cyclic_topology.get_device("D").status is DeviceStatus.HEALTHY

    def test_cycle_terminates(self, cyclic_topology, make_context):
        ctx = make_context(cyclic_topology)
        result = AttackRunner(AttackScenario("cycle", [_lateral_step("A")])).run(ctx)
        assert sorted(result.compromised_devices) == ["A", "B", "C", "D"]
        assert len(result.compromised_devices) == len(set(result.compromised_devices))

    def test_zero_probability_counts_failures(self, linear_topology, make_context):
        ctx = make_context(linear_topology)
        step = AttackStep("noop", success_probability=0.0)
        result = AttackRunner(AttackScenario("none", [step])).run(ctx)
        assert result.compromised_devices == []
        assert result.failed_attacks == 3
        assert result.impact_score == 0.0
        assert EventType.DEVICE_ATTACK_FAILED in _event_types(ctx)

    def test_already_compromised_devices_are_skipped(self, linear_topology, make_context):
        ctx = make_context(linear_topology)
        steps = [
            AttackStep("first", success_probability=1.0, impact_score=2.0),
            AttackStep("second", success_probability=1.0, impact_score=2.0),
        ]
        result = AttackRunner(AttackScenario("twice", steps)).run(ctx)
        assert result.processed_steps == 2
        assert result.successful_attacks == 3
        assert result.step_impact == pytest.approx(6.0)

    def test_missing_device_skips_step(self, linear_topology, make_context):
        ctx = make_context(linear_topology)
        steps = [
            AttackStep("ghost", TargetCriteria(device_ids=("ghost",)), success_probability=1.0),
            AttackStep("real", TargetCriteria(device_ids=("C",)), success_probability=1.0),
        ]
        result = AttackRunner(AttackScenario("partial", steps)).run(ctx)
        assert result.processed_steps == 2
        assert result.compromised_devices == ["C"]
        assert EventType.STEP_SKIPPED in _event_types(ctx)

    def test_threat_attached_to_records(self, linear_topology, make_context):
        catalog = InMemoryThreatCatalog([ThreatRef("T-1", "Worm")])
        ctx = make_context(linear_topology, threat_catalog=catalog)
        step = _lateral_step("A")
        step.threat_id = "T-1"
        result = AttackRunner(AttackScenario("tagged", [step])).run(ctx)
        assert [r.threat.id for r in result.compromise_records] == ["T-1"] * 3
        assert result.compromise_records[1].source_device_id == "A"

    def test_unknown_threat_tolerated(self, linear_topology, make_context):
        ctx = make_context(linear_topology, threat_catalog=InMemoryThreatCatalog())
        step = _lateral_step("A", multi_hop=False)
        step.threat_id = "missing"
        result = AttackRunner(AttackScenario("untagged", [step])).run(ctx)
        assert all(r.threat is None for r in result.compromise_records)

    def test_cancellation_stops_processing(self, linear_topology, make_context):
        class CancellingSink:
            def record_event(self, event):
                if event.type is EventType.DEVICE_COMPROMISED:
                    ctx.simulation.request_cancel()

        ctx = make_context(linear_topology, event_sink=CancellingSink())
        with pytest.raises(SimulationCancelledError):
            AttackRunner(AttackScenario("cancel", [_lateral_step("A")])).run(ctx)
        statuses = {d.id: d.status for d in linear_topology.devices()}
        assert statuses == {
            "A": DeviceStatus.COMPROMISED,
            "B": DeviceStatus.HEALTHY,
            "C": DeviceStatus.HEALTHY,
        }

    def test_cancelled_before_first_step(self, linear_topology, make_context):
        ctx = make_context(linear_topology)
        ctx.simulation.request_cancel()
        with pytest.raises(SimulationCancelledError):
            AttackRunner(AttackScenario("cancel", [_lateral_step("A")])).run(ctx)
        assert linear_topology.get_device("A").status is DeviceStatus.HEALTHY

    def test_progress_advances_per_step(self, linear_topology, make_context):
        ctx = make_context(linear_topology)
        steps = [AttackStep(f"s{i}", success_probability=0.0) for i in range(4)]
        AttackRunner(AttackScenario("progress", steps)).run(ctx)
        assert ctx.simulation.progress == pytest.approx(100.0)

    def test_unexpected_error_emits_step_failure(self, linear_topology, make_context, monkeypatch):
        ctx = make_context(linear_topology)

        def explode(device, step):
            raise RuntimeError("model exploded")

        monkeypatch.setattr(ctx.probability, "attack_success_probability", explode)
        with pytest.raises(RuntimeError, match="model exploded"):
            AttackRunner(AttackScenario("boom", [AttackStep("s")])).run(ctx)
        types = _event_types(ctx)
        assert EventType.STEP_FAILURE in types
        assert EventType.ATTACK_FAILURE in types

    def test_events_forwarded_to_sink(self, linear_topology, make_context):
        sink = InMemoryEventSink()
        ctx = make_context(linear_topology, event_sink=sink)
        AttackRunner(AttackScenario("events", [_lateral_step("A")])).run(ctx)
        types = [e.type for e in sink.events(ctx.simulation.id)]
        assert types[0] is EventType.ATTACK_START
        assert types[-1] is EventType.ATTACK_COMPLETE
        assert types.count(EventType.DEVICE_COMPROMISED) == 3


class TestFailureRunner:
    def test_downstream_is_deterministic(self, linear_topology, make_context):
        ctx = make_context(linear_topology)
        event = FailureEvent("outage", TargetCriteria(device_ids=("A",)), impact_score=1.0)
        result = FailureRunner(FailureScenario("f", [event])).run(ctx)

        assert result.affected_devices == ["A", "B", "C"]
        assert result.processed_steps == 1
        assert result.step_impact == pytest.approx(1.0 + 2 * 0.5)
        # 3 * 8 + 3
        assert result.impact_score == pytest.approx(27.0)
        assert result.expected_loss == pytest.approx(27 * 0.15)
        assert result.downtime_impact == pytest.approx(9.0)
        assert {d.status for d in linear_topology.devices()} == {DeviceStatus.UNHEALTHY}

    def test_compromised_failure_type(self, linear_topology, make_context):
        ctx = make_context(linear_topology)
        event = FailureEvent(
            "implant",
            TargetCriteria(device_ids=("B",)),
            failure_type=FailureType.DEVICE_COMPROMISED,
        )
        FailureRunner(FailureScenario("f", [event])).run(ctx)
        assert linear_topology.get_device("A").status is DeviceStatus.HEALTHY
        assert linear_topology.get_device("B").status is DeviceStatus.COMPROMISED
        assert linear_topology.get_device("C").status is DeviceStatus.UNHEALTHY

    def test_affected_devices_not_repeated(self, linear_topology, make_context):
        ctx = make_context(linear_topology)
        events = [
            FailureEvent("first", TargetCriteria(device_ids=("A",))),
            FailureEvent("second", TargetCriteria(device_ids=("B",))),
        ]
        result = FailureRunner(FailureScenario("f", events)).run(ctx)
        assert result.affected_devices == ["A", "B", "C"]
        assert result.processed_steps == 2
        assert [e.type for e in ctx.events].count(EventType.DEVICE_FAILURE) == 1

    def test_cycle_downstream_terminates(self, cyclic_topology, make_context):
        ctx = make_context(cyclic_topology)
        event = FailureEvent("outage", TargetCriteria(device_ids=("B",)))
        result = FailureRunner(FailureScenario("f", [event])).run(ctx)
        assert sorted(result.affected_devices) == ["A", "B", "C", "D"]

    def test_missing_device_skips_event(self, linear_topology, make_context):
        ctx = make_context(linear_topology)
        event = FailureEvent("ghost", TargetCriteria(device_ids=("ghost",)))
        result = FailureRunner(FailureScenario("f", [event])).run(ctx)
        assert result.affected_devices == []
        assert result.processed_steps == 1
        assert EventType.STEP_SKIPPED in _event_types(ctx)


class TestScenarioGeneration:
    def test_random_criteria_uses_given_types(self):
        rng = random.Random(1)
        for _ in range(50):
            criteria = random_target_criteria(rng, ["SERVER", "IOT"])
            assert criteria.device_types <= {"SERVER", "IOT"}
            assert 1 <= len(criteria.device_types) <= 2
            assert 1 <= criteria.min_criticality <= 3
            assert criteria.min_criticality < criteria.max_criticality <= 5

    def test_random_criteria_fallback_types(self):
        criteria = random_target_criteria(random.Random(3), [])
        assert criteria.device_types <= set(FALLBACK_DEVICE_TYPES)

    def test_status_includes_any(self):
        rng = random.Random(5)
        statuses = {random_target_criteria(rng, ["SERVER"]).status for _ in range(200)}
        assert None in statuses
        assert DeviceStatus.HEALTHY in statuses

    def test_templates_instantiated(self, mixed_topology):
        scenarios = generate_random_attack_scenarios(mixed_topology, random.Random(9))
        assert [s.name for s in scenarios] == ["Random DDoS Attack", "Random Ransomware Attack"]
        assert [len(s.steps) for s in scenarios] == [3, 4]
        assert scenarios[0].steps[1].lateral_movement
        for scenario in scenarios:
            scenario.validate()

    def test_generation_is_reproducible(self, mixed_topology):
        first = generate_random_attack_scenarios(mixed_topology, random.Random(9))
        second = generate_random_attack_scenarios(mixed_topology, random.Random(9))
        assert first == second


class TestMonteCarloRunner:
    def test_reproducible_with_seed(self, mixed_topology, make_context):
        scenario = MonteCarloScenario("mc", iterations=25)
        first = MonteCarloRunner(scenario).run(make_context(mixed_topology, seed=1234))
        second = MonteCarloRunner(scenario).run(make_context(mixed_topology, seed=1234))
        assert isinstance(first, MonteCarloResult)
        assert first.impact_scores == second.impact_scores
        assert first.statistics == second.statistics

    def test_hundred_iterations_give_stable_summary(self, mixed_topology, make_context):
        scenario = MonteCarloScenario("mc", iterations=100)
        first = MonteCarloRunner(scenario).run(make_context(mixed_topology, seed=2024))
        second = MonteCarloRunner(scenario).run(make_context(mixed_topology, seed=2024))
        assert len(first.iterations) == 100
        assert first.mean_impact == second.mean_impact
        assert first.get_percentile_impact(95) == second.get_percentile_impact(95)
        assert first.risk_level == second.risk_level

    def test_does_not_touch_shared_topology(self, mixed_topology, make_context):
        before = mixed_topology.to_dict()
        MonteCarloRunner(MonteCarloScenario(iterations=10)).run(make_context(mixed_topology))
        assert mixed_topology.to_dict() == before

    def test_statistics_finalized_once(self, mixed_topology, make_context):
        ctx = make_context(mixed_topology)
        result = MonteCarloRunner(MonteCarloScenario(iterations=5)).run(ctx)
        assert result.is_finalized
        assert len(result.iterations) == 5
        assert set(result.statistics["impact"]) >= {"mean", "p50", "p90", "p95", "p99"}
        assert ctx.simulation.progress == pytest.approx(100.0)
        assert EventType.MONTE_CARLO_COMPLETE in _event_types(ctx)

    def test_iterations_keep_events_local(self, mixed_topology, make_context):
        sink = InMemoryEventSink()
        ctx = make_context(mixed_topology, event_sink=sink)
        MonteCarloRunner(MonteCarloScenario(iterations=3)).run(ctx)
        types = {e.type for e in sink.events()}
        assert types == {EventType.MONTE_CARLO_START, EventType.MONTE_CARLO_COMPLETE}

    def test_cancellation_between_iterations(self, mixed_topology, make_context):
        ctx = make_context(mixed_topology)
        ctx.simulation.request_cancel()
        with pytest.raises(SimulationCancelledError):
            MonteCarloRunner(MonteCarloScenario(iterations=3)).run(ctx)


def test_runner_for_dispatch():
    assert isinstance(runner_for(AttackScenario("a")), AttackRunner)
    assert isinstance(runner_for(FailureScenario("f")), FailureRunner)
    assert isinstance(runner_for(MonteCarloScenario()), MonteCarloRunner)
    with pytest.raises(TypeError):
        runner_for(object())
