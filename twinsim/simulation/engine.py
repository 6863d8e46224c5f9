"""Simulation engine: bounded task queue, worker pool and cancellation.

Submitted scenarios are validated, wrapped in a ``Simulation`` and placed on a
bounded queue. A fixed pool of worker threads takes one task at a time, runs
the matching runner and resolves the task's future with the result.

Submission policy:
    ``submit`` blocks while the queue is full. With ``block=False``, or when a
    ``timeout`` expires, it raises ``QueueFullError`` instead.

Cancellation policy:
    ``cancel`` only acts on running simulations. Queued, unknown and finished
    simulations are "not active" and ``cancel`` returns False for them. Queued
    simulations are only cancelled by ``shutdown``. Cancellation is observed
    at checkpoints (before each step, event, target device and iteration). A
    request that arrives after the last checkpoint is accepted but the
    simulation still finishes COMPLETED; a warning is logged in that case.

Every task's future resolves exactly once: with the result on completion, or
with None when the simulation failed or was cancelled. Inspect
``handle.simulation.status`` to tell the two apart.
"""

from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from twinsim.config import DEFAULT_CONFIG, SimulationConfig
from twinsim.exceptions import (
    EngineShutdownError,
    NotFoundError,
    QueueFullError,
    SimulationCancelledError,
    ValidationError,
)
from twinsim.interfaces import DeviceStore, EventSink, Notifier, ThreatCatalog
from twinsim.logging import get_logger
from twinsim.model.scenario import MonteCarloScenario, Scenario
from twinsim.model.simulation import (
    EventType,
    Severity,
    Simulation,
    SimulationEvent,
    SimulationStatus,
)
from twinsim.model.topology import Topology
from twinsim.results.results import MonteCarloResult, SimulationResult
from twinsim.simulation.context import SimulationContext
from twinsim.simulation.runners import runner_for

LOGGER = get_logger(__name__)

TopologyRef = Union[Topology, str]
Outcome = Union[SimulationResult, MonteCarloResult, None]


@dataclass
class SimulationTask:
    """Unit of work on the engine queue."""

    simulation: Simulation
    scenario: Scenario
    topology: TopologyRef
    user: Optional[str]
    future: "Future[Outcome]"


class SimulationHandle:
    """Caller-side view of a submitted simulation.

    Attributes:
        simulation: The simulation (status and progress update live).
        future: Resolves to the result, or None on failure/cancellation.
    """

    def __init__(
        self, simulation: Simulation, future: "Future[Outcome]", engine: SimulationEngine
    ) -> None:
        self.simulation = simulation
        self.future = future
        self._engine = engine

    def __repr__(self) -> str:
        return f"SimulationHandle(id={self.id!r}, status={self.status.value})"

    @property
    def id(self) -> str:
        return self.simulation.id

    @property
    def status(self) -> SimulationStatus:
        return self.simulation.status

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> Outcome:
        """Wait for the simulation to finish and return its result."""
        return self.future.result(timeout=timeout)

    def cancel(self) -> bool:
        return self._engine.cancel(self.simulation.id)


class SimulationEngine:
    """Runs simulations on a pool of worker threads.

    Example:
        with SimulationEngine() as engine:
            handle = engine.submit(scenario, topology, seed=42)
            result = handle.result()

    Args:
        config: Tunable constants; engine sizing comes from ``config.engine``.
        event_sink: Receives every simulation event (best-effort).
        notifier: Receives lifecycle notifications (best-effort).
        threat_catalog: Resolves attack-step threat ids.
        device_store: Receives final device states after attack and failure
            runs (best-effort).
        autostart: Start worker threads immediately.
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        *,
        event_sink: Optional[EventSink] = None,
        notifier: Optional[Notifier] = None,
        threat_catalog: Optional[ThreatCatalog] = None,
        device_store: Optional[DeviceStore] = None,
        autostart: bool = True,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self._event_sink = event_sink
        self._notifier = notifier
        self._threat_catalog = threat_catalog
        self._device_store = device_store

        engine_cfg = self.config.engine
        self._queue: "queue.Queue[SimulationTask]" = queue.Queue(
            maxsize=engine_cfg.queue_capacity
        )
        self._worker_count = engine_cfg.resolve_workers()
        self._workers: List[threading.Thread] = []
        self._active: Dict[str, SimulationTask] = {}
        self._topologies: Dict[str, Topology] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._shutting_down = False

        if autostart:
            self.start()

    def __enter__(self) -> SimulationEngine:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return (
            f"SimulationEngine(workers={self._worker_count}, "
            f"queued={self.queue_size}, active={len(self._active)})"
        )

    #
    # Lifecycle
    #
    def start(self) -> None:
        """Start the worker threads. Calling it again is a no-op."""
        with self._lock:
            if self._workers:
                return
            if self._shutting_down:
                raise EngineShutdownError("Engine has been shut down")
            for index in range(self._worker_count):
                worker = threading.Thread(
                    target=self._worker_loop,
                    name=f"twinsim-worker-{index}",
                    daemon=True,
                )
                self._workers.append(worker)
                worker.start()
        LOGGER.info(
            "Simulation engine started with %d workers (queue capacity %d)",
            self._worker_count,
            self.config.engine.queue_capacity,
        )

    @property
    def is_running(self) -> bool:
        return bool(self._workers) and not self._shutting_down

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop accepting work, cancel everything and join the workers.

        Active simulations are asked to cancel and stop at their next
        checkpoint. Queued simulations are marked CANCELLED without running.
        Workers are joined for at most ``timeout`` seconds in total (default
        ``config.engine.shutdown_timeout``).
        """
        with self._lock:
            if self._shutting_down:
                return
            self._shutting_down = True
            # Set under the lock so a dequeued task is either discarded or
            # already in _active when the snapshot is taken
            self._stop.set()
            active = list(self._active.values())

        LOGGER.info(
            "Shutting down simulation engine (%d active, %d queued)",
            len(active),
            self.queue_size,
        )
        for task in active:
            task.simulation.request_cancel()
        drained = self._drain_queue()
        if drained:
            LOGGER.info("Cancelled %d queued simulation(s)", drained)

        if timeout is None:
            timeout = self.config.engine.shutdown_timeout
        deadline = time.monotonic() + timeout
        for worker in self._workers:
            worker.join(max(0.0, deadline - time.monotonic()))

        alive = [w.name for w in self._workers if w.is_alive()]
        if alive:
            LOGGER.warning(
                "Workers still running after %.1fs shutdown timeout: %s",
                timeout,
                ", ".join(alive),
            )
        # Submissions racing the shutdown flag
        self._drain_queue()
        LOGGER.info("Simulation engine stopped")

    def _drain_queue(self) -> int:
        drained = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                return drained
            try:
                self._discard(task)
                drained += 1
            finally:
                self._queue.task_done()

    def _discard(self, task: SimulationTask) -> None:
        if task.simulation.discard():
            self._record(
                task.simulation,
                EventType.SIMULATION_CANCELLED,
                Severity.WARNING,
                "Simulation cancelled before it started",
            )
            self._publish("simulation.cancelled", task.simulation)
        if not task.future.done():
            task.future.set_result(None)

    #
    # Topology registry
    #
    def register_topology(self, topology: Topology, name: Optional[str] = None) -> str:
        """Make a topology available to ``submit`` by name."""
        key = name or topology.name
        if not key:
            raise ValidationError("A registered topology needs a name")
        with self._lock:
            self._topologies[key] = topology
        return key

    def unregister_topology(self, name: str) -> bool:
        with self._lock:
            return self._topologies.pop(name, None) is not None

    def get_topology(self, name: str) -> Optional[Topology]:
        with self._lock:
            return self._topologies.get(name)

    def _resolve_topology(self, ref: TopologyRef) -> Topology:
        if isinstance(ref, Topology):
            return ref
        topology = self.get_topology(ref)
        if topology is None:
            raise NotFoundError(f"Topology '{ref}' is not registered")
        return topology

    #
    # Submission and cancellation
    #
    def submit(
        self,
        scenario: Scenario,
        topology: TopologyRef,
        *,
        name: Optional[str] = None,
        user: Optional[str] = None,
        seed: Optional[int] = None,
        block: bool = True,
        timeout: Optional[float] = None,
    ) -> SimulationHandle:
        """Validate a scenario and queue it for execution.

        Args:
            scenario: Attack, failure or Monte Carlo scenario.
            topology: Topology to run on, or the name of a registered one.
            name: Simulation name (defaults to the scenario name).
            user: Initiating user.
            seed: Master seed; equal seeds give equal results.
            block: Wait for queue space when the queue is full.
            timeout: Longest wait for queue space when ``block`` is True.

        Returns:
            Handle on the queued simulation.

        Raises:
            ValidationError: If the scenario or topology reference is invalid.
            QueueFullError: If no queue space became available.
            EngineShutdownError: If the engine is shutting down.
        """
        if self._shutting_down:
            raise EngineShutdownError("Engine is shutting down; submission rejected")

        validate = getattr(scenario, "validate", None)
        if validate is None:
            raise ValidationError(f"Unsupported scenario type: {type(scenario).__name__}")
        validate()
        if not isinstance(topology, (Topology, str)):
            raise ValidationError(
                f"topology must be a Topology or a registered name, got {type(topology).__name__}"
            )

        simulation = Simulation(
            name or scenario.name,
            scenario.kind,
            user=user,
            seed=seed,
            total_units=scenario.total_units,
        )
        future: "Future[Outcome]" = Future()
        # Callers cancel through the engine, never through the future
        future.set_running_or_notify_cancel()
        task = SimulationTask(simulation, scenario, topology, user, future)

        try:
            self._queue.put(task, block=block, timeout=timeout)
        except queue.Full:
            raise QueueFullError(
                f"Simulation queue is full ({self.config.engine.queue_capacity} tasks)"
            ) from None

        if self._shutting_down:
            # Lost the race with shutdown; make sure the task is not stranded
            self._drain_queue()
        else:
            LOGGER.info(
                "Queued %s simulation %s ('%s')",
                scenario.kind,
                simulation.id,
                simulation.name,
            )
        return SimulationHandle(simulation, future, self)

    def run(
        self,
        scenario: Scenario,
        topology: TopologyRef,
        *,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> Outcome:
        """Submit and wait for the result."""
        return self.submit(scenario, topology, **kwargs).result(timeout=timeout)

    def cancel(self, simulation_id: str) -> bool:
        """Request cancellation of a running simulation.

        Returns:
            True if the simulation is running and the request was registered.
            False if it is queued, unknown or already finished.
        """
        with self._lock:
            task = self._active.get(simulation_id)
        if task is None:
            LOGGER.debug("Cancel ignored: simulation %s is not active", simulation_id)
            return False
        accepted = task.simulation.request_cancel()
        if accepted:
            LOGGER.info("Cancellation requested for simulation %s", simulation_id)
        return accepted

    def get_active_simulation(self, simulation_id: str) -> Optional[Simulation]:
        with self._lock:
            task = self._active.get(simulation_id)
        return task.simulation if task else None

    def active_simulations(self) -> List[Simulation]:
        with self._lock:
            return [task.simulation for task in self._active.values()]

    #
    # Workers
    #
    def _worker_loop(self) -> None:
        poll = self.config.engine.poll_interval
        while not self._stop.is_set():
            try:
                task = self._queue.get(timeout=poll)
            except queue.Empty:
                continue
            try:
                self._execute(task)
            except Exception:
                # _execute resolves the future itself; this only guards the worker
                LOGGER.exception("Unexpected error while finalizing a simulation")
                if not task.future.done():
                    task.future.set_result(None)
            finally:
                self._queue.task_done()

    def _execute(self, task: SimulationTask) -> None:
        simulation = task.simulation
        with self._lock:
            stopped = self._stop.is_set()
            if not stopped:
                self._active[simulation.id] = task
        if stopped:
            self._discard(task)
            return

        simulation.start()
        LOGGER.info("Simulation %s started ('%s')", simulation.id, simulation.name)
        self._publish("simulation.started", simulation)

        ctx: Optional[SimulationContext] = None
        outcome: Outcome = None
        try:
            topology = self._resolve_topology(task.topology)
            ctx = SimulationContext(
                simulation,
                topology,
                user=task.user,
                config=self.config,
                event_sink=self._event_sink,
                notifier=self._notifier,
                threat_catalog=self._threat_catalog,
            )
            outcome = runner_for(task.scenario).run(ctx)
        except SimulationCancelledError:
            outcome = None
            simulation.mark_cancelled()
            LOGGER.info("Simulation %s cancelled", simulation.id)
            self._record(
                simulation,
                EventType.SIMULATION_CANCELLED,
                Severity.WARNING,
                "Simulation cancelled",
                ctx=ctx,
            )
            self._publish("simulation.cancelled", simulation)
        except Exception as exc:
            outcome = None
            simulation.fail(str(exc) or type(exc).__name__)
            LOGGER.error("Simulation %s failed: %s", simulation.id, exc)
            self._publish("simulation.failed", simulation)
        else:
            if simulation.is_cancel_requested:
                LOGGER.warning(
                    "Simulation %s completed before observing its cancellation request",
                    simulation.id,
                )
            simulation.complete()
            LOGGER.info(
                "Simulation %s completed in %.3fs",
                simulation.id,
                simulation.duration or 0.0,
            )
            if not isinstance(task.scenario, MonteCarloScenario):
                self._persist_devices(ctx, outcome)
            self._publish("simulation.completed", simulation)
        finally:
            if ctx is not None:
                ctx.finish()
            with self._lock:
                self._active.pop(simulation.id, None)

        task.future.set_result(outcome)

    #
    # Best-effort collaborators
    #
    def _record(
        self,
        simulation: Simulation,
        event_type: EventType,
        severity: Severity,
        title: str,
        ctx: Optional[SimulationContext] = None,
    ) -> None:
        if ctx is not None:
            ctx.emit(event_type, severity, title)
            return
        if self._event_sink is None:
            return
        try:
            self._event_sink.record_event(
                SimulationEvent(simulation.id, event_type, severity, title)
            )
        except Exception as exc:
            LOGGER.warning("Event sink rejected %s: %s", event_type.value, exc)

    def _publish(self, topic: str, simulation: Simulation) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.publish(topic, simulation.to_dict())
        except Exception as exc:
            LOGGER.warning("Notifier failed to publish '%s': %s", topic, exc)

    def _persist_devices(self, ctx: Optional[SimulationContext], outcome: Outcome) -> None:
        if self._device_store is None or ctx is None or not isinstance(outcome, SimulationResult):
            return
        device_ids = dict.fromkeys(outcome.compromised_devices + outcome.affected_devices)
        for device_id in device_ids:
            device = ctx.topology.get_device(device_id)
            if device is None:
                continue
            try:
                self._device_store.save(device)
            except Exception as exc:
                LOGGER.warning("Device store failed to save '%s': %s", device_id, exc)
