"""Simulation lifecycle and timestamped simulation events."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from twinsim.logging import get_logger

LOGGER = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SimulationStatus(str, Enum):
    """Lifecycle states of a simulation."""

    DRAFT = "DRAFT"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SimulationStatus.COMPLETED,
            SimulationStatus.FAILED,
            SimulationStatus.CANCELLED,
        )


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EventType(str, Enum):
    """Kinds of events a simulation emits."""

    ATTACK_START = "ATTACK_START"
    ATTACK_COMPLETE = "ATTACK_COMPLETE"
    ATTACK_FAILURE = "ATTACK_FAILURE"
    STEP_START = "STEP_START"
    STEP_SKIPPED = "STEP_SKIPPED"
    STEP_FAILURE = "STEP_FAILURE"
    DEVICE_COMPROMISED = "DEVICE_COMPROMISED"
    DEVICE_ATTACK_FAILED = "DEVICE_ATTACK_FAILED"
    FAILURE_START = "FAILURE_START"
    FAILURE_COMPLETE = "FAILURE_COMPLETE"
    FAILURE_FAILURE = "FAILURE_FAILURE"
    EVENT_START = "EVENT_START"
    EVENT_FAILURE = "EVENT_FAILURE"
    DEVICE_FAILURE = "DEVICE_FAILURE"
    DOWNSTREAM_IMPACT = "DOWNSTREAM_IMPACT"
    MONTE_CARLO_START = "MONTE_CARLO_START"
    MONTE_CARLO_COMPLETE = "MONTE_CARLO_COMPLETE"
    MONTE_CARLO_FAILURE = "MONTE_CARLO_FAILURE"
    SIMULATION_CANCELLED = "SIMULATION_CANCELLED"


@dataclass(frozen=True)
class SimulationEvent:
    """Immutable, timestamped record of something that happened in a run."""

    simulation_id: str
    type: EventType
    severity: Severity
    title: str
    detail: str = ""
    device_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "simulation_id": self.simulation_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "detail": self.detail,
            "device_id": self.device_id,
            "timestamp": self.timestamp.isoformat(),
        }


class Simulation:
    """One requested simulation and its lifecycle.

    Transitions are guarded by a lock because the owning worker moves the
    simulation forward while other threads may request cancellation or read
    its status. Allowed transitions:

    - DRAFT -> RUNNING (``start``)
    - RUNNING -> COMPLETED / FAILED / CANCELLED
    - DRAFT -> CANCELLED (``discard``, used when a queued task is drained)

    Once terminal, the simulation never changes state again.
    """

    def __init__(
        self,
        name: str,
        scenario_type: str,
        *,
        user: Optional[str] = None,
        seed: Optional[int] = None,
        total_units: int = 0,
        simulation_id: Optional[str] = None,
    ) -> None:
        self.id = simulation_id or str(uuid.uuid4())
        self.name = name
        self.scenario_type = scenario_type
        self.user = user
        self.seed = seed
        self.total_units = total_units

        self.created_at = utcnow()
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.error_message: Optional[str] = None

        self._status = SimulationStatus.DRAFT
        self._progress = 0.0
        self._cancel_requested = threading.Event()
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"Simulation(id={self.id!r}, name={self.name!r}, "
            f"status={self._status.value}, progress={self._progress:.1f})"
        )

    @property
    def status(self) -> SimulationStatus:
        return self._status

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def duration(self) -> Optional[float]:
        """Run time in seconds, once both timestamps are known."""
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def is_cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def start(self) -> None:
        with self._lock:
            if self._status is not SimulationStatus.DRAFT:
                raise RuntimeError(
                    f"Cannot start simulation {self.id} from state {self._status.value}"
                )
            self._status = SimulationStatus.RUNNING
            self._progress = 0.0
            self.started_at = utcnow()

    def update_progress(self, value: float) -> float:
        """Raise progress to ``value`` (clamped to [0, 100]); never lowers it."""
        with self._lock:
            if self._status is SimulationStatus.RUNNING:
                self._progress = max(self._progress, min(100.0, max(0.0, value)))
            return self._progress

    def request_cancel(self) -> bool:
        """Ask a running simulation to stop at its next checkpoint.

        Returns:
            True if the request was registered, False if the simulation is
            not running (terminal or never started).
        """
        with self._lock:
            if self._status is not SimulationStatus.RUNNING:
                return False
            self._cancel_requested.set()
            return True

    def complete(self) -> None:
        with self._lock:
            self._require_running("complete")
            self._status = SimulationStatus.COMPLETED
            self._progress = 100.0
            self.completed_at = utcnow()

    def fail(self, error_message: str) -> None:
        with self._lock:
            self._require_running("fail")
            self._status = SimulationStatus.FAILED
            self.error_message = error_message
            self.completed_at = utcnow()

    def mark_cancelled(self) -> None:
        with self._lock:
            self._require_running("cancel")
            self._status = SimulationStatus.CANCELLED
            self.completed_at = utcnow()

    def discard(self) -> bool:
        """Cancel a simulation that never left the queue."""
        with self._lock:
            if self._status is not SimulationStatus.DRAFT:
                return False
            self._cancel_requested.set()
            self._status = SimulationStatus.CANCELLED
            self.completed_at = utcnow()
            return True

    def _require_running(self, action: str) -> None:
        if self._status is not SimulationStatus.RUNNING:
            raise RuntimeError(
                f"Cannot {action} simulation {self.id} from state {self._status.value}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "scenario_type": self.scenario_type,
            "status": self._status.value,
            "progress": self._progress,
            "user": self.user,
            "seed": self.seed,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration": self.duration,
            "error_message": self.error_message,
        }
