"""Target selection.

``find_targets`` is a pure filter: it never mutates devices or the topology,
so a runner may call it repeatedly while processing one step.

Evaluation order (all conditions are ANDed):
1. Explicit ``device_ids`` (unknown ids raise NotFoundError)
2. Device type membership
3. Criticality range
4. Exact status
5. IP regex (full match)
6. Metadata equality
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from twinsim.model.scenario import TargetCriteria
    from twinsim.model.topology import Device, Topology

__all__ = [
    "find_targets",
    "device_matches",
]


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def find_targets(
    topology: "Topology",
    criteria: Optional["TargetCriteria"],
) -> List["Device"]:
    """Return the devices matching ``criteria`` in topology order.

    Args:
        topology: Topology to search.
        criteria: Criteria to apply. ``None`` or empty criteria select every
            device.

    Returns:
        Matching devices.

    Raises:
        NotFoundError: If ``criteria.device_ids`` names an unknown device.
    """
    if criteria is None or criteria.is_empty:
        return topology.devices()

    if criteria.device_ids:
        candidates = [topology.require_device(dev_id) for dev_id in criteria.device_ids]
    else:
        candidates = topology.devices()

    return [device for device in candidates if device_matches(device, criteria)]


def device_matches(device: "Device", criteria: "TargetCriteria") -> bool:
    """Check one device against every set field of ``criteria``."""
    if criteria.device_types and device.type.upper() not in criteria.device_types:
        return False

    if criteria.min_criticality is not None or criteria.max_criticality is not None:
        # Unrated devices never satisfy a criticality bound
        if device.criticality is None:
            return False
        if criteria.min_criticality is not None and device.criticality < criteria.min_criticality:
            return False
        if criteria.max_criticality is not None and device.criticality > criteria.max_criticality:
            return False

    if criteria.status is not None and device.status is not criteria.status:
        return False

    # Devices without an IP are not excluded by an IP pattern
    if criteria.ip_pattern is not None and device.ip is not None:
        if _compile(criteria.ip_pattern).fullmatch(device.ip) is None:
            return False

    for key, expected in criteria.metadata.items():
        if key not in device.metadata or device.metadata[key] != expected:
            return False

    return True
