"""Tests for collaborator protocols and their in-memory implementations."""

import threading

from twinsim.interfaces import (
    DeviceStore,
    EventSink,
    InMemoryDeviceStore,
    InMemoryEventSink,
    InMemoryNotifier,
    InMemoryThreatCatalog,
    Notifier,
    ThreatCatalog,
    ThreatRef,
)
from twinsim.model.simulation import EventType, Severity, SimulationEvent
from twinsim.model.topology import Device, DeviceStatus


def _event(sim_id: str) -> SimulationEvent:
    return SimulationEvent(sim_id, EventType.STEP_START, Severity.INFO, "step")


def test_in_memory_implementations_satisfy_protocols():
    assert isinstance(InMemoryEventSink(), EventSink)
    assert isinstance(InMemoryNotifier(), Notifier)
    assert isinstance(InMemoryThreatCatalog(), ThreatCatalog)
    assert isinstance(InMemoryDeviceStore(), DeviceStore)


def test_event_sink_filters_by_simulation():
    sink = InMemoryEventSink()
    sink.record_event(_event("a"))
    sink.record_event(_event("b"))
    sink.record_event(_event("a"))
    assert len(sink.events()) == 3
    assert len(sink.events("a")) == 2


def test_event_sink_is_thread_safe():
    sink = InMemoryEventSink()

    def record():
        for _ in range(200):
            sink.record_event(_event("x"))

    threads = [threading.Thread(target=record) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(sink.events()) == 800


def test_notifier_copies_payload():
    notifier = InMemoryNotifier()
    payload = {"progress": 10.0}
    notifier.publish("simulation.progress", payload)
    payload["progress"] = 99.0
    assert notifier.messages("simulation.progress") == [
        ("simulation.progress", {"progress": 10.0})
    ]
    assert notifier.messages("other") == []


def test_threat_catalog():
    catalog = InMemoryThreatCatalog([ThreatRef("T-1", "Worm", severity="HIGH")])
    catalog.add(ThreatRef("T-2", "Phish"))
    assert catalog.get_threat("T-1").severity == "HIGH"
    assert catalog.get_threat("T-2").name == "Phish"
    assert catalog.get_threat("T-3") is None


def test_device_store_keeps_snapshots():
    device = Device("A", status=DeviceStatus.HEALTHY)
    store = InMemoryDeviceStore([device])
    device.status = DeviceStatus.COMPROMISED
    assert store.find_by_id("A").status is DeviceStatus.HEALTHY

    store.save(device)
    assert store.find_by_id("A").status is DeviceStatus.COMPROMISED
    assert [d.id for d in store.find_all()] == ["A"]
    assert store.find_by_id("missing") is None
