"""Tests for the Simulation state machine."""

import threading

import pytest

from twinsim.model.simulation import EventType, Severity, Simulation, SimulationEvent, SimulationStatus


def _running() -> Simulation:
    sim = Simulation("s", "ATTACK")
    sim.start()
    return sim


class TestTransitions:
    def test_initial_state(self):
        sim = Simulation("s", "ATTACK", seed=3)
        assert sim.status is SimulationStatus.DRAFT
        assert sim.progress == 0.0
        assert sim.seed == 3
        assert sim.duration is None

    def test_complete(self):
        sim = _running()
        sim.complete()
        assert sim.status is SimulationStatus.COMPLETED
        assert sim.progress == 100.0
        assert sim.duration is not None and sim.duration >= 0

    def test_fail_captures_message(self):
        sim = _running()
        sim.fail("boom")
        assert sim.status is SimulationStatus.FAILED
        assert sim.error_message == "boom"

    def test_cannot_start_twice(self):
        sim = _running()
        with pytest.raises(RuntimeError):
            sim.start()

    @pytest.mark.parametrize("finish", ["complete", "mark_cancelled"])
    def test_terminal_states_are_final(self, finish):
        sim = _running()
        getattr(sim, finish)()
        with pytest.raises(RuntimeError):
            sim.fail("late")
        assert sim.status.is_terminal

    def test_discard_only_from_draft(self):
        sim = Simulation("s", "ATTACK")
        assert sim.discard()
        assert sim.status is SimulationStatus.CANCELLED
        assert not _running().discard()


class TestCancellation:
    def test_request_cancel_while_running(self):
        sim = _running()
        assert sim.request_cancel()
        assert sim.is_cancel_requested

    def test_request_cancel_noop_when_not_running(self):
        draft = Simulation("s", "ATTACK")
        assert not draft.request_cancel()
        done = _running()
        done.complete()
        assert not done.request_cancel()
        assert done.status is SimulationStatus.COMPLETED


class TestProgress:
    def test_monotonic_and_clamped(self):
        sim = _running()
        assert sim.update_progress(40) == 40
        assert sim.update_progress(20) == 40
        assert sim.update_progress(250) == 100
        assert sim.update_progress(-5) == 100

    def test_ignored_outside_running(self):
        sim = Simulation("s", "ATTACK")
        assert sim.update_progress(50) == 0.0

    def test_concurrent_updates_never_decrease(self):
        sim = _running()
        seen = []

        def worker(values):
            for value in values:
                seen.append(sim.update_progress(value))

        threads = [
            threading.Thread(target=worker, args=(range(0, 100, step),)) for step in (1, 3, 7)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sim.progress == 99


class TestSimulationEvent:
    def test_to_dict(self):
        event = SimulationEvent("sim", EventType.STEP_START, Severity.INFO, "Step", device_id="A")
        data = event.to_dict()
        assert data["type"] == "STEP_START"
        assert data["severity"] == "INFO"
        assert data["device_id"] == "A"
        assert "timestamp" in data
