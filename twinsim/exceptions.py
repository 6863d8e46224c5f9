"""Error taxonomy for twinsim.

Runners and the engine convert failures into one of these types so the
engine can decide whether a problem rejects a request, skips a step, cancels
a simulation, or fails it.
"""

from __future__ import annotations


class TwinSimError(Exception):
    """Base class for all twinsim errors."""


class ValidationError(TwinSimError, ValueError):
    """Invalid scenario, criteria or input. Raised before anything is queued."""


class NotFoundError(TwinSimError, KeyError):
    """A referenced device, connection or topology does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep plain messages readable
        return str(self.args[0]) if self.args else ""


class SimulationCancelledError(TwinSimError):
    """Cooperative cancellation was observed while a simulation was running."""

    def __init__(self, simulation_id: str) -> None:
        super().__init__(f"Simulation {simulation_id} was cancelled")
        self.simulation_id = simulation_id


class QueueFullError(TwinSimError):
    """The engine queue stayed full for the whole submission timeout."""


class EngineShutdownError(TwinSimError, RuntimeError):
    """A submission arrived after the engine started shutting down."""
