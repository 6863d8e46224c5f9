"""Per-run execution state shared by the runners.

A ``SimulationContext`` lives for exactly one run. It borrows the topology,
owns the random state, records events and forwards them to the configured
sink, and exposes the cancellation checkpoint the runners call before every
step, event and target device.

Monte Carlo iterations run inside child contexts: they share the parent's
simulation (and therefore its cancel flag) but get their own topology clone
and random state, do not move the simulation progress, and keep their events
local.
"""

from __future__ import annotations

import random
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from twinsim.config import DEFAULT_CONFIG, SimulationConfig
from twinsim.exceptions import SimulationCancelledError
from twinsim.logging import get_logger
from twinsim.model.simulation import EventType, Severity, SimulationEvent, utcnow
from twinsim.seed_manager import SeedManager
from twinsim.simulation.probability import ProbabilityModel

if TYPE_CHECKING:
    from twinsim.interfaces import EventSink, Notifier, ThreatCatalog, ThreatRef
    from twinsim.model.simulation import Simulation
    from twinsim.model.topology import Topology

LOGGER = get_logger(__name__)


class SimulationContext:
    """Execution state of one simulation run.

    Attributes:
        id: Context id (distinct from the simulation id).
        simulation: Simulation being executed.
        topology: Topology the runners read and mutate.
        user: Initiating user, if any.
        state: Free-form scratch space for runners.
        seeds: Seed manager for deriving child random states.
        rng: Random state used for every draw of this run.
        config: Tunable constants.
        probability: Probability model built from ``config``.
        events: Events emitted through this context, in order.
        started_at: When the context was created.
        ended_at: When ``finish`` was called.
    """

    def __init__(
        self,
        simulation: "Simulation",
        topology: "Topology",
        *,
        user: Optional[str] = None,
        seeds: Optional[SeedManager] = None,
        rng: Optional[random.Random] = None,
        config: Optional[SimulationConfig] = None,
        event_sink: Optional["EventSink"] = None,
        notifier: Optional["Notifier"] = None,
        threat_catalog: Optional["ThreatCatalog"] = None,
        track_progress: bool = True,
    ) -> None:
        self.id = str(uuid.uuid4())
        self.simulation = simulation
        self.topology = topology
        self.user = user
        self.state: Dict[str, Any] = {}
        self.seeds = seeds or SeedManager(simulation.seed)
        self.rng = rng or self.seeds.create_random_state("simulation", simulation.scenario_type)
        self.config = config or DEFAULT_CONFIG
        self.probability = ProbabilityModel(self.config.probability)
        self.events: List[SimulationEvent] = []
        self.started_at: datetime = utcnow()
        self.ended_at: Optional[datetime] = None

        self._event_sink = event_sink
        self._notifier = notifier
        self._threat_catalog = threat_catalog
        self._track_progress = track_progress

    def __repr__(self) -> str:
        return (
            f"SimulationContext(id={self.id!r}, simulation={self.simulation.id!r}, "
            f"events={len(self.events)})"
        )

    def child(self, topology: "Topology", rng: random.Random) -> SimulationContext:
        """Context for one Monte Carlo iteration.

        Shares the simulation, configuration and threat catalog. Progress and
        event forwarding stay with the parent.
        """
        return SimulationContext(
            self.simulation,
            topology,
            user=self.user,
            seeds=self.seeds,
            rng=rng,
            config=self.config,
            threat_catalog=self._threat_catalog,
            track_progress=False,
        )

    #
    # Cancellation
    #
    @property
    def is_cancelled(self) -> bool:
        return self.simulation.is_cancel_requested

    def check_cancelled(self) -> None:
        """Raise ``SimulationCancelledError`` if cancellation was requested."""
        if self.simulation.is_cancel_requested:
            raise SimulationCancelledError(self.simulation.id)

    #
    # Events, progress and collaborators
    #
    def emit(
        self,
        event_type: EventType,
        severity: Severity,
        title: str,
        detail: str = "",
        device_id: Optional[str] = None,
    ) -> SimulationEvent:
        """Record an event and forward it to the event sink, if any.

        A failing sink is logged and otherwise ignored.
        """
        event = SimulationEvent(
            simulation_id=self.simulation.id,
            type=event_type,
            severity=severity,
            title=title,
            detail=detail,
            device_id=device_id,
        )
        self.events.append(event)
        if self._event_sink is not None:
            try:
                self._event_sink.record_event(event)
            except Exception as exc:
                LOGGER.warning(
                    "Event sink rejected %s for simulation %s: %s",
                    event_type.value,
                    self.simulation.id,
                    exc,
                )
        return event

    def advance(self, completed_units: int, total_units: int) -> None:
        """Move simulation progress to ``completed_units / total_units``."""
        if not self._track_progress or total_units <= 0:
            return
        progress = self.simulation.update_progress(completed_units / total_units * 100.0)
        self.publish(
            "simulation.progress",
            {"simulation_id": self.simulation.id, "progress": progress},
        )

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        """Best-effort notification."""
        if self._notifier is None:
            return
        try:
            self._notifier.publish(topic, payload)
        except Exception as exc:
            LOGGER.warning("Notifier failed to publish '%s': %s", topic, exc)

    def lookup_threat(self, threat_id: Optional[str]) -> Optional["ThreatRef"]:
        """Resolve a threat id through the catalog; None when unknown or unavailable."""
        if threat_id is None or self._threat_catalog is None:
            return None
        try:
            threat = self._threat_catalog.get_threat(threat_id)
        except Exception as exc:
            LOGGER.warning("Threat lookup for '%s' failed: %s", threat_id, exc)
            return None
        if threat is None:
            LOGGER.debug("Threat '%s' not found in catalog", threat_id)
        return threat

    def finish(self) -> None:
        if self.ended_at is None:
            self.ended_at = utcnow()
