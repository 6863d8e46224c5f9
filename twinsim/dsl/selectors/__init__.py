"""Device selection for attack steps and failure events.

Usage:
    from twinsim.dsl.selectors import find_targets

    targets = find_targets(topology, step.target_criteria)
"""

from __future__ import annotations

from .select import device_matches, find_targets

__all__ = [
    "find_targets",
    "device_matches",
]
