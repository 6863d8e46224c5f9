"""Device heartbeat ingest.

Heartbeats update the live status and ``last_seen`` timestamp of topology
devices. Timestamps more than ``max_future_skew`` ahead of the clock are
rejected; timestamps older than the device's last heartbeat are logged and
accepted, but ``last_seen`` never moves backwards. A heartbeat id seen
before for the same device is ignored.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Set

from twinsim.exceptions import ValidationError
from twinsim.interfaces import DeviceStore, Notifier
from twinsim.logging import get_logger
from twinsim.model.simulation import utcnow
from twinsim.model.topology import DeviceStatus, Topology

LOGGER = get_logger(__name__)

DEFAULT_MAX_FUTURE_SKEW = timedelta(minutes=5)


def parse_timestamp(value: "str | datetime") -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid heartbeat timestamp '{value}'") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Heartbeat:
    """One status report from a device agent."""

    device_id: str
    timestamp: datetime
    status: DeviceStatus
    heartbeat_id: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, device_id: str, data: Mapping[str, Any]) -> Heartbeat:
        """Build a heartbeat from an agent payload.

        Raises:
            ValidationError: If ``timestamp``, ``status`` or ``metrics`` is
                missing, or a value cannot be parsed.
        """
        for key in ("timestamp", "status", "metrics"):
            if key not in data:
                raise ValidationError(f"Heartbeat {key} is required")
        try:
            status = DeviceStatus.from_string(data["status"])
        except ValueError as exc:
            raise ValidationError(str(exc)) from None
        return cls(
            device_id=device_id,
            timestamp=parse_timestamp(data["timestamp"]),
            status=status,
            heartbeat_id=data.get("heartbeat_id"),
            metrics=dict(data.get("metrics") or {}),
            metadata=dict(data.get("metadata") or {}),
        )


class HeartbeatProcessor:
    """Applies heartbeats to the devices of a topology.

    Args:
        topology: Topology whose devices are updated in place.
        device_store: Receives updated devices (best-effort).
        notifier: Receives a ``device.heartbeat`` notification (best-effort).
        max_future_skew: Largest accepted distance into the future.
        clock: Current-time source.
    """

    def __init__(
        self,
        topology: Topology,
        *,
        device_store: Optional[DeviceStore] = None,
        notifier: Optional[Notifier] = None,
        max_future_skew: timedelta = DEFAULT_MAX_FUTURE_SKEW,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.topology = topology
        self.max_future_skew = max_future_skew
        self._device_store = device_store
        self._notifier = notifier
        self._clock = clock
        self._seen_ids: Dict[str, Set[str]] = {}
        self._metrics: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def latest_metrics(self, device_id: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self._metrics.get(device_id, {}))

    def process(self, heartbeat: Heartbeat) -> bool:
        """Apply a heartbeat.

        Returns:
            False when the heartbeat was a duplicate and ignored.

        Raises:
            NotFoundError: If the device is not in the topology.
            ValidationError: If the timestamp is too far in the future.
        """
        device = self.topology.require_device(heartbeat.device_id)

        now = self._clock()
        if heartbeat.timestamp > now + self.max_future_skew:
            raise ValidationError(
                f"Heartbeat timestamp {heartbeat.timestamp.isoformat()} for device "
                f"'{device.id}' is too far in the future"
            )

        with self._lock:
            seen = self._seen_ids.setdefault(device.id, set())
            if heartbeat.heartbeat_id is not None:
                if heartbeat.heartbeat_id in seen:
                    LOGGER.warning(
                        "Duplicate heartbeat '%s' for device '%s' ignored",
                        heartbeat.heartbeat_id,
                        device.id,
                    )
                    return False
                seen.add(heartbeat.heartbeat_id)

            previous = device.last_seen
            if previous is not None and previous.tzinfo is None:
                previous = previous.replace(tzinfo=timezone.utc)
            if previous is not None and heartbeat.timestamp < previous:
                LOGGER.warning(
                    "Out-of-order heartbeat for device '%s': %s is before %s",
                    device.id,
                    heartbeat.timestamp.isoformat(),
                    previous.isoformat(),
                )
            else:
                device.last_seen = heartbeat.timestamp
            device.status = heartbeat.status
            self._metrics[device.id] = dict(heartbeat.metrics)

        LOGGER.debug("Heartbeat for device '%s': %s", device.id, heartbeat.status.value)
        self._persist(device)
        self._notify(heartbeat)
        return True

    def process_payload(self, device_id: str, payload: Mapping[str, Any]) -> bool:
        return self.process(Heartbeat.from_dict(device_id, payload))

    def _persist(self, device) -> None:
        if self._device_store is None:
            return
        try:
            self._device_store.save(device)
        except Exception as exc:
            LOGGER.warning("Device store failed to save '%s': %s", device.id, exc)

    def _notify(self, heartbeat: Heartbeat) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.publish(
                "device.heartbeat",
                {
                    "device_id": heartbeat.device_id,
                    "status": heartbeat.status.value,
                    "timestamp": heartbeat.timestamp.isoformat(),
                    "heartbeat_id": heartbeat.heartbeat_id,
                },
            )
        except Exception as exc:
            LOGGER.warning("Notifier failed to publish heartbeat: %s", exc)
