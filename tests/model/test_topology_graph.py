"""Tests for the Topology graph."""

import pytest

from twinsim.exceptions import NotFoundError
from twinsim.model.topology import Connection, Device, DeviceStatus, Topology


class TestDevice:
    def test_name_defaults_to_id(self):
        assert Device("d1").name == "d1"

    def test_status_parsed_from_string(self):
        assert Device("d1", status="compromised").status is DeviceStatus.COMPROMISED

    def test_invalid_criticality_rejected(self):
        with pytest.raises(ValueError):
            Device("d1", criticality=0)
        with pytest.raises(ValueError):
            Device("d1", criticality=6)

    def test_security_posture_is_upper_cased(self):
        device = Device("d1", risk_factors={"security_posture": "high"})
        assert device.security_posture == "HIGH"
        assert Device("d2").security_posture is None

    def test_clone_is_independent(self):
        device = Device("d1", metadata={"zone": "a"}, risk_factors={"security_posture": "LOW"})
        clone = device.clone()
        clone.metadata["zone"] = "b"
        clone.status = DeviceStatus.COMPROMISED
        assert device.metadata["zone"] == "a"
        assert device.status is DeviceStatus.HEALTHY


class TestDeviceManagement:
    def test_add_and_get(self):
        topo = Topology()
        assert topo.add_device(Device("A"))
        assert topo.get_device("A").id == "A"
        assert "A" in topo
        assert topo.device_count == 1

    def test_duplicate_device_rejected(self):
        topo = Topology()
        topo.add_device(Device("A", type="ROUTER"))
        assert not topo.add_device(Device("A", type="SERVER"))
        assert topo.get_device("A").type == "ROUTER"

    def test_unknown_lookups_do_not_raise(self):
        topo = Topology()
        assert topo.get_device("missing") is None
        assert topo.get_connection("missing") is None
        assert topo.get_connected_devices("missing") == []
        assert topo.find_reachable_devices("missing") == []
        assert topo.find_shortest_path("missing", "other") == []
        assert not topo.remove_device("missing")
        assert not topo.remove_connection("missing")

    def test_require_device_raises(self):
        with pytest.raises(NotFoundError, match="missing"):
            Topology().require_device("missing")

    def test_remove_device_cascades(self, linear_topology):
        assert linear_topology.remove_device("B")
        assert linear_topology.connection_count == 0
        assert linear_topology.get_connection("A-B") is None
        assert linear_topology.find_reachable_devices("A") == []


class TestConnectionManagement:
    def test_self_loop_rejected(self):
        topo = Topology()
        topo.add_device(Device("A"))
        assert not topo.add_connection(Connection("loop", "A", "A"))
        assert topo.connection_count == 0

    def test_missing_endpoint_rejected(self):
        topo = Topology()
        topo.add_device(Device("A"))
        assert not topo.add_connection(Connection("c", "A", "B"))
        assert topo.connection_count == 0
        assert topo.graph.number_of_edges() == 0

    def test_duplicate_id_rejected(self, linear_topology):
        assert not linear_topology.add_connection(Connection("A-B", "B", "C"))
        assert linear_topology.connection_count == 2

    def test_parallel_connections_kept_apart(self):
        topo = Topology()
        topo.add_device(Device("A"))
        topo.add_device(Device("B"))
        assert topo.add_connection(Connection("c1", "A", "B"))
        assert topo.add_connection(Connection("c2", "A", "B"))
        assert topo.remove_connection("c1")
        assert topo.get_connection_between("A", "B").id == "c2"

    def test_invalid_reliability(self):
        with pytest.raises(ValueError):
            Connection("c", "A", "B", reliability=1.5)

    def test_incoming_and_outgoing(self, linear_topology):
        assert [c.id for c in linear_topology.get_outgoing_connections("B")] == ["B-C"]
        assert [c.id for c in linear_topology.get_incoming_connections("B")] == ["A-B"]

    def test_connection_between_either_direction(self, linear_topology):
        assert linear_topology.get_connection_between("A", "B").id == "A-B"
        assert linear_topology.get_connection_between("B", "A").id == "A-B"
        assert linear_topology.get_connection_between("A", "C") is None


class TestGraphQueries:
    def test_connected_devices_both_directions(self, linear_topology):
        assert [d.id for d in linear_topology.get_connected_devices("B")] == ["C", "A"]

    def test_connected_devices_no_duplicates(self, cyclic_topology):
        cyclic_topology.add_connection(Connection("A-C", "A", "C"))
        ids = [d.id for d in cyclic_topology.get_connected_devices("A")]
        assert len(ids) == len(set(ids))
        assert set(ids) == {"B", "C"}

    def test_reachable_excludes_start_on_cycle(self, cyclic_topology):
        ids = {d.id for d in cyclic_topology.find_reachable_devices("A")}
        assert ids == {"B", "C", "D"}

    def test_reachability_is_directed(self, linear_topology):
        assert linear_topology.is_device_reachable("A", "C")
        assert not linear_topology.is_device_reachable("C", "A")
        assert linear_topology.find_reachable_devices("C") == []

    def test_shortest_path_uses_reliability_weight(self):
        topo = Topology()
        for dev_id in "ABCD":
            topo.add_device(Device(dev_id))
        topo.add_connection(Connection("ab", "A", "B", reliability=0.9))
        topo.add_connection(Connection("bd", "B", "D", reliability=0.9))
        topo.add_connection(Connection("ac", "A", "C", reliability=0.1))
        topo.add_connection(Connection("cd", "C", "D", reliability=0.1))
        path = topo.find_shortest_path("A", "D")
        assert [d.id for d in path] == ["A", "C", "D"]
        assert topo.get_hops_between("A", "D") == 2

    def test_shortest_path_unreachable(self, linear_topology):
        assert linear_topology.find_shortest_path("C", "A") == []
        assert linear_topology.get_hops_between("C", "A") == -1

    def test_device_types_in_insertion_order(self, cyclic_topology):
        assert cyclic_topology.device_types() == ["ROUTER", "SWITCH", "SERVER", "IOT"]


class TestCopyAndSerialization:
    def test_copy_is_deep(self, linear_topology):
        clone = linear_topology.copy()
        clone.get_device("A").status = DeviceStatus.COMPROMISED
        clone.remove_device("C")
        assert linear_topology.get_device("A").status is DeviceStatus.HEALTHY
        assert linear_topology.device_count == 3
        assert clone.graph is not linear_topology.graph

    def test_round_trip(self, mixed_topology):
        restored = Topology.from_dict(mixed_topology.to_dict())
        assert restored.device_count == mixed_topology.device_count
        assert restored.connection_count == mixed_topology.connection_count
        assert restored.get_device("srv1").metadata == {"zone": "dmz"}
        assert restored.get_connection("c4").type == "WIFI"

    def test_from_dict_generates_connection_ids(self):
        topo = Topology.from_dict(
            {
                "devices": [{"id": "A"}, {"id": "B"}],
                "connections": [{"source": "A", "target": "B"}],
            }
        )
        assert topo.get_connection("A|B|0") is not None

    def test_from_dict_rejects_self_loop(self):
        with pytest.raises(ValueError):
            Topology.from_dict(
                {"devices": [{"id": "A"}], "connections": [{"source": "A", "target": "A"}]}
            )
