"""Tests for scenario dataclasses and their validation."""

import pytest

from twinsim.exceptions import ValidationError
from twinsim.model.scenario import (
    AttackScenario,
    AttackStep,
    AttackTemplate,
    FailureEvent,
    FailureScenario,
    FailureType,
    MonteCarloScenario,
    TargetCriteria,
)
from twinsim.model.topology import DeviceStatus


class TestTargetCriteria:
    def test_empty(self):
        assert TargetCriteria().is_empty
        assert not TargetCriteria(device_types={"server"}).is_empty

    def test_normalization(self):
        criteria = TargetCriteria(device_types=["server", "Router"], status="healthy", device_ids=["a"])
        assert criteria.device_types == frozenset({"SERVER", "ROUTER"})
        assert criteria.status is DeviceStatus.HEALTHY
        assert criteria.device_ids == ("a",)

    def test_single_string_values(self):
        criteria = TargetCriteria(device_types="router", device_ids="core-1")
        assert criteria.device_types == frozenset({"ROUTER"})
        assert criteria.device_ids == ("core-1",)

    def test_invalid_bounds(self):
        with pytest.raises(ValidationError):
            TargetCriteria(min_criticality=0).validate()
        with pytest.raises(ValidationError):
            TargetCriteria(min_criticality=4, max_criticality=2).validate()

    def test_invalid_regex(self):
        with pytest.raises(ValidationError, match="ip_pattern"):
            TargetCriteria(ip_pattern="10.(").validate()

    def test_from_dict(self):
        criteria = TargetCriteria.from_dict(
            {"device_types": ["iot"], "min_criticality": 2, "metadata": {"zone": "dmz"}}
        )
        assert criteria.device_types == frozenset({"IOT"})
        assert criteria.min_criticality == 2
        assert criteria.metadata == {"zone": "dmz"}
        assert TargetCriteria.from_dict(None).is_empty


class TestAttackModels:
    def test_propagation_defaults_to_success(self):
        step = AttackStep("s", success_probability=0.4)
        assert step.base_propagation_probability == 0.4
        step.propagation_probability = 0.9
        assert step.base_propagation_probability == 0.9

    @pytest.mark.parametrize("probability", [-0.1, 1.1])
    def test_probability_out_of_range(self, probability):
        with pytest.raises(ValidationError):
            AttackStep("s", success_probability=probability).validate()

    def test_multi_hop_requires_lateral(self):
        with pytest.raises(ValidationError, match="multi_hop"):
            AttackStep("s", multi_hop=True).validate()

    def test_scenario_needs_steps(self):
        with pytest.raises(ValidationError):
            AttackScenario("empty").validate()

    def test_total_units(self):
        scenario = AttackScenario("two", [AttackStep("a"), AttackStep("b")])
        assert scenario.total_units == 2
        assert scenario.kind == "ATTACK"


class TestFailureModels:
    def test_failure_type_parsing(self):
        assert FailureType.from_string("device_down") is FailureType.DEVICE_DOWN
        with pytest.raises(ValidationError):
            FailureType.from_string("explode")

    def test_resulting_status(self):
        assert FailureType.DEVICE_DOWN.resulting_status is DeviceStatus.UNHEALTHY
        assert FailureType.DEVICE_MISCONFIGURED.resulting_status is DeviceStatus.UNHEALTHY
        assert FailureType.DEVICE_COMPROMISED.resulting_status is DeviceStatus.COMPROMISED

    def test_event_parses_failure_type(self):
        assert FailureEvent("e", failure_type="DEVICE_COMPROMISED").failure_type is (
            FailureType.DEVICE_COMPROMISED
        )

    def test_negative_impact_rejected(self):
        with pytest.raises(ValidationError):
            FailureScenario("f", [FailureEvent("e", impact_score=-1)]).validate()

    def test_scenario_needs_events(self):
        with pytest.raises(ValidationError):
            FailureScenario("f").validate()


class TestMonteCarloScenario:
    def test_defaults(self):
        scenario = MonteCarloScenario()
        scenario.validate()
        assert scenario.iterations == 100
        assert [t.type for t in scenario.templates] == ["DDOS", "RANSOMWARE"]
        assert scenario.total_units == 100

    def test_iterations_must_be_positive(self):
        with pytest.raises(ValidationError):
            MonteCarloScenario(iterations=0).validate()

    def test_template_probability_checked(self):
        bad = AttackTemplate("bad", "X", (("s", 1.5, 1.0, False),))
        with pytest.raises(ValidationError):
            MonteCarloScenario(templates=(bad,)).validate()
