"""Network topology model: Device, Connection and the Topology graph.

The topology is a directed graph of devices joined by connections. It is
backed by ``networkx.MultiDiGraph`` keyed by connection id, so parallel
connections between the same pair of devices are kept apart and can be
removed individually.

Lookups on unknown ids never raise: they return ``False``, ``None`` or an
empty collection. ``require_device`` is the single strict accessor and raises
``NotFoundError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import networkx as nx

from twinsim.exceptions import NotFoundError
from twinsim.logging import get_logger

LOGGER = get_logger(__name__)


class DeviceStatus(str, Enum):
    """Operational status of a device."""

    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"
    COMPROMISED = "COMPROMISED"
    DEGRADED = "DEGRADED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_string(cls, value: "str | DeviceStatus") -> "DeviceStatus":
        """Parse a case-insensitive status name.

        Raises:
            ValueError: If the string doesn't match any member.
        """
        if isinstance(value, DeviceStatus):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            valid = ", ".join(e.name for e in cls)
            raise ValueError(
                f"Invalid device status '{value}'. Valid values are: {valid}"
            ) from None


@dataclass
class Device:
    """A node of the topology.

    Attributes:
        id: Unique identifier, used as the graph node key.
        name: Display name (defaults to the id).
        type: Device type such as ROUTER, SWITCH, FIREWALL, SERVER or IOT.
        criticality: 1 (most critical) to 5 (least critical), or None.
        status: Current operational status.
        risk_factors: Risk inputs, notably ``security_posture``.
        ip: IP address, if known.
        metadata: Free-form attributes matched by target criteria.
        last_seen: Timestamp of the last accepted heartbeat.
    """

    id: str
    name: str = ""
    type: str = "UNKNOWN"
    criticality: Optional[int] = None
    status: DeviceStatus = DeviceStatus.HEALTHY
    risk_factors: Dict[str, Any] = field(default_factory=dict)
    ip: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    last_seen: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.id
        self.status = DeviceStatus.from_string(self.status)
        if self.criticality is not None and not 1 <= self.criticality <= 5:
            raise ValueError(
                f"Device '{self.id}' criticality must be within 1..5, got {self.criticality}"
            )

    @property
    def security_posture(self) -> Optional[str]:
        """Upper-cased ``security_posture`` risk factor, or None when unset."""
        posture = self.risk_factors.get("security_posture")
        if isinstance(posture, str):
            return posture.upper()
        return None

    def clone(self) -> Device:
        """Return an independent copy of this device."""
        return Device(
            id=self.id,
            name=self.name,
            type=self.type,
            criticality=self.criticality,
            status=self.status,
            risk_factors=dict(self.risk_factors),
            ip=self.ip,
            metadata=dict(self.metadata),
            last_seen=self.last_seen,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "criticality": self.criticality,
            "status": self.status.value,
            "risk_factors": dict(self.risk_factors),
            "ip": self.ip,
            "metadata": dict(self.metadata),
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }


@dataclass
class Connection:
    """One directed connection between two devices.

    Attributes:
        id: Unique identifier, used as the graph edge key.
        source: Id of the source device.
        target: Id of the target device.
        type: Connection type (ETHERNET, WIFI, VPN, ...).
        bandwidth: Bandwidth in Mbps.
        latency: Latency in milliseconds.
        reliability: Reliability in [0, 1]; also the shortest-path weight.
        status: Connection status string.
        properties: Extra attributes. ``security_factor`` scales lateral
            movement across this connection.
    """

    id: str
    source: str
    target: str
    type: str = "ETHERNET"
    bandwidth: Optional[float] = None
    latency: Optional[float] = None
    reliability: Optional[float] = None
    status: str = "ACTIVE"
    properties: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.reliability is not None and not 0.0 <= self.reliability <= 1.0:
            raise ValueError(
                f"Connection '{self.id}' reliability must be within [0, 1], got {self.reliability}"
            )

    @property
    def weight(self) -> float:
        """Edge weight used for shortest-path search."""
        return self.reliability if self.reliability is not None else 1.0

    def clone(self) -> Connection:
        """Return an independent copy of this connection."""
        return Connection(
            id=self.id,
            source=self.source,
            target=self.target,
            type=self.type,
            bandwidth=self.bandwidth,
            latency=self.latency,
            reliability=self.reliability,
            status=self.status,
            properties=dict(self.properties),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "type": self.type,
            "bandwidth": self.bandwidth,
            "latency": self.latency,
            "reliability": self.reliability,
            "status": self.status,
            "properties": dict(self.properties),
        }


class Topology:
    """Directed, weighted graph of devices and connections.

    Devices are stored by id in insertion order; every query that returns
    several devices preserves that order so seeded simulations are
    reproducible.

    Attributes:
        name: Optional topology name (used by the engine registry).
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._graph = nx.MultiDiGraph()
        self._devices: Dict[str, Device] = {}
        self._connections: Dict[str, Connection] = {}

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        return iter(list(self._devices.values()))

    def __repr__(self) -> str:
        return (
            f"Topology(name={self.name!r}, devices={self.device_count}, "
            f"connections={self.connection_count})"
        )

    #
    # Device management
    #
    def add_device(self, device: Device) -> bool:
        """Add a device. Returns False if a device with the same id exists."""
        if device.id in self._devices:
            LOGGER.debug("Device '%s' already present; not added", device.id)
            return False
        self._graph.add_node(device.id)
        self._devices[device.id] = device
        return True

    def remove_device(self, device_id: str) -> bool:
        """Remove a device and every connection that touches it.

        Returns:
            False if the device is unknown.
        """
        if device_id not in self._devices:
            return False
        incident = [
            conn_id
            for conn_id, conn in self._connections.items()
            if conn.source == device_id or conn.target == device_id
        ]
        for conn_id in incident:
            del self._connections[conn_id]
        self._graph.remove_node(device_id)
        del self._devices[device_id]
        return True

    def get_device(self, device_id: str) -> Optional[Device]:
        return self._devices.get(device_id)

    def require_device(self, device_id: str) -> Device:
        """Return the device or raise ``NotFoundError``."""
        try:
            return self._devices[device_id]
        except KeyError:
            raise NotFoundError(f"Device '{device_id}' not found in topology") from None

    def devices(self) -> List[Device]:
        return list(self._devices.values())

    @property
    def device_count(self) -> int:
        return len(self._devices)

    @property
    def graph(self) -> nx.MultiDiGraph:
        """Underlying graph (nodes are device ids, edge keys connection ids).

        Shared with the topology; treat it as read-only.
        """
        return self._graph

    #
    # Connection management
    #
    def add_connection(self, connection: Connection) -> bool:
        """Add a directed connection.

        Rejected without touching the graph when either endpoint is unknown,
        the id is already in use, or the connection is a self-loop.
        """
        if connection.source == connection.target:
            LOGGER.warning(
                "Rejected self-loop connection '%s' on device '%s'",
                connection.id,
                connection.source,
            )
            return False
        if connection.source not in self._devices or connection.target not in self._devices:
            LOGGER.debug(
                "Rejected connection '%s': endpoint missing (%s -> %s)",
                connection.id,
                connection.source,
                connection.target,
            )
            return False
        if connection.id in self._connections:
            return False

        self._graph.add_edge(
            connection.source,
            connection.target,
            key=connection.id,
            weight=connection.weight,
        )
        self._connections[connection.id] = connection
        return True

    def remove_connection(self, connection_id: str) -> bool:
        """Remove a connection by id. Returns False if it is unknown."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return False
        self._graph.remove_edge(connection.source, connection.target, key=connection_id)
        return True

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get_connection_between(self, a: str, b: str) -> Optional[Connection]:
        """Return the first connection a->b, else b->a, else None."""
        for u, v in ((a, b), (b, a)):
            if self._graph.has_edge(u, v):
                key = next(iter(self._graph[u][v]))
                return self._connections[key]
        return None

    def get_incoming_connections(self, device_id: str) -> List[Connection]:
        if device_id not in self._devices:
            return []
        return [
            self._connections[key]
            for _, _, key in self._graph.in_edges(device_id, keys=True)
        ]

    def get_outgoing_connections(self, device_id: str) -> List[Connection]:
        if device_id not in self._devices:
            return []
        return [
            self._connections[key]
            for _, _, key in self._graph.out_edges(device_id, keys=True)
        ]

    #
    # Graph queries
    #
    def get_connected_devices(self, device_id: str) -> List[Device]:
        """Direct neighbors in either direction, without duplicates.

        Successors come first, then predecessors, each in graph order.
        """
        if device_id not in self._devices:
            return []
        seen: Dict[str, Device] = {}
        for neighbor in self._graph.successors(device_id):
            seen.setdefault(neighbor, self._devices[neighbor])
        for neighbor in self._graph.predecessors(device_id):
            seen.setdefault(neighbor, self._devices[neighbor])
        return list(seen.values())

    def find_shortest_path(self, from_id: str, to_id: str) -> List[Device]:
        """Reliability-weighted shortest path (Dijkstra).

        Returns:
            Ordered devices from ``from_id`` to ``to_id`` inclusive, or an
            empty list when either device is unknown or no path exists.
        """
        if from_id not in self._devices or to_id not in self._devices:
            return []
        try:
            path = nx.dijkstra_path(self._graph, from_id, to_id, weight="weight")
        except nx.NetworkXNoPath:
            return []
        return [self._devices[node] for node in path]

    def find_reachable_devices(self, from_id: str) -> List[Device]:
        """All devices reachable from ``from_id`` over directed edges.

        The starting device itself is never included, even on a cycle.
        """
        if from_id not in self._devices:
            return []
        reachable = nx.descendants(self._graph, from_id)
        reachable.discard(from_id)
        return [device for dev_id, device in self._devices.items() if dev_id in reachable]

    def is_device_reachable(self, from_id: str, to_id: str) -> bool:
        if from_id not in self._devices or to_id not in self._devices:
            return False
        return nx.has_path(self._graph, from_id, to_id)

    def get_hops_between(self, from_id: str, to_id: str) -> int:
        """Number of hops on the weighted shortest path, or -1 if none."""
        path = self.find_shortest_path(from_id, to_id)
        return len(path) - 1 if path else -1

    def device_types(self) -> List[str]:
        """Distinct device types in insertion order."""
        return list(dict.fromkeys(device.type for device in self._devices.values()))

    #
    # Copy and serialization
    #
    def copy(self) -> Topology:
        """Structural deep copy.

        The copy gets a new graph and fresh Device/Connection objects, so a
        Monte Carlo iteration can flip statuses without touching the shared
        topology.
        """
        clone = Topology(name=self.name)
        for device in self._devices.values():
            clone.add_device(device.clone())
        for connection in self._connections.values():
            clone.add_connection(connection.clone())
        return clone

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-friendly dictionary."""
        return {
            "name": self.name,
            "devices": [device.to_dict() for device in self._devices.values()],
            "connections": [conn.to_dict() for conn in self._connections.values()],
            "device_count": self.device_count,
            "connection_count": self.connection_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Topology:
        """Build a topology from the layout produced by ``to_dict``.

        Connection entries may omit ``id``; one is generated from the
        endpoints and position.

        Raises:
            ValueError: If a connection references an unknown device or is a
                self-loop.
        """
        topology = cls(name=data.get("name", ""))
        for entry in data.get("devices", []):
            last_seen = entry.get("last_seen")
            device = Device(
                id=str(entry["id"]),
                name=entry.get("name") or "",
                type=entry.get("type", "UNKNOWN"),
                criticality=entry.get("criticality"),
                status=entry.get("status", DeviceStatus.HEALTHY),
                risk_factors=dict(entry.get("risk_factors") or {}),
                ip=entry.get("ip"),
                metadata=dict(entry.get("metadata") or {}),
                last_seen=datetime.fromisoformat(last_seen) if last_seen else None,
            )
            if not topology.add_device(device):
                raise ValueError(f"Duplicate device id '{device.id}'")
        for index, entry in enumerate(data.get("connections", [])):
            source, target = str(entry["source"]), str(entry["target"])
            connection = Connection(
                id=str(entry.get("id") or f"{source}|{target}|{index}"),
                source=source,
                target=target,
                type=entry.get("type", "ETHERNET"),
                bandwidth=entry.get("bandwidth"),
                latency=entry.get("latency"),
                reliability=entry.get("reliability"),
                status=entry.get("status", "ACTIVE"),
                properties=dict(entry.get("properties") or {}),
            )
            if not topology.add_connection(connection):
                raise ValueError(
                    f"Invalid connection '{connection.id}' ({source} -> {target})"
                )
        return topology
