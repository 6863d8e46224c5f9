"""Collaborator contracts used by the simulation engine.

Persistence, event storage, threat intelligence and notification delivery
live outside twinsim. The engine only talks to them through the protocols
below and treats every call as best-effort: a failing collaborator is logged
and never fails a simulation.

In-memory implementations are provided for tests and the command line.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

if TYPE_CHECKING:
    from twinsim.model.simulation import SimulationEvent
    from twinsim.model.topology import Device


@dataclass(frozen=True)
class ThreatRef:
    """Reference to a catalogued threat, used to tag compromise records."""

    id: str
    name: str = ""
    severity: Optional[str] = None
    attrs: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class EventSink(Protocol):
    """Append-only store of simulation events."""

    def record_event(self, event: "SimulationEvent") -> None: ...


@runtime_checkable
class Notifier(Protocol):
    """Publishes lifecycle notifications (start, progress, completion, failure)."""

    def publish(self, topic: str, payload: Dict[str, Any]) -> None: ...


@runtime_checkable
class ThreatCatalog(Protocol):
    """Looks up threats referenced by attack steps."""

    def get_threat(self, threat_id: str) -> Optional[ThreatRef]: ...


@runtime_checkable
class DeviceStore(Protocol):
    """Device persistence. The engine reads and writes final states only."""

    def find_by_id(self, device_id: str) -> Optional["Device"]: ...

    def save(self, device: "Device") -> None: ...

    def find_all(self) -> List["Device"]: ...


class InMemoryEventSink:
    """Thread-safe list of recorded events."""

    def __init__(self) -> None:
        self._events: List["SimulationEvent"] = []
        self._lock = threading.Lock()

    def record_event(self, event: "SimulationEvent") -> None:
        with self._lock:
            self._events.append(event)

    def events(self, simulation_id: Optional[str] = None) -> List["SimulationEvent"]:
        with self._lock:
            if simulation_id is None:
                return list(self._events)
            return [e for e in self._events if e.simulation_id == simulation_id]


class InMemoryNotifier:
    """Keeps published ``(topic, payload)`` pairs."""

    def __init__(self) -> None:
        self._messages: List[Tuple[str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._messages.append((topic, dict(payload)))

    def messages(self, topic: Optional[str] = None) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            if topic is None:
                return list(self._messages)
            return [m for m in self._messages if m[0] == topic]


class InMemoryThreatCatalog:
    def __init__(self, threats: Iterable[ThreatRef] = ()) -> None:
        self._threats = {threat.id: threat for threat in threats}

    def add(self, threat: ThreatRef) -> None:
        self._threats[threat.id] = threat

    def get_threat(self, threat_id: str) -> Optional[ThreatRef]:
        return self._threats.get(threat_id)


class InMemoryDeviceStore:
    """Dictionary-backed device store; ``save`` keeps an independent copy."""

    def __init__(self, devices: Iterable["Device"] = ()) -> None:
        self._devices: Dict[str, "Device"] = {}
        self._lock = threading.Lock()
        for device in devices:
            self.save(device)

    def find_by_id(self, device_id: str) -> Optional["Device"]:
        with self._lock:
            return self._devices.get(device_id)

    def save(self, device: "Device") -> None:
        with self._lock:
            self._devices[device.id] = device.clone()

    def find_all(self) -> List["Device"]:
        with self._lock:
            return list(self._devices.values())
