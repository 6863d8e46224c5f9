"""Deterministic seed derivation for simulations and Monte Carlo iterations."""

from __future__ import annotations

import hashlib
import random
from typing import Any, Optional


class SeedManager:
    """Derives per-component seeds from a master seed.

    Every simulation, and every Monte Carlo iteration inside it, draws from its
    own ``random.Random`` so results do not depend on worker scheduling or on
    how many other simulations share the engine.

    Usage:
        seed_mgr = SeedManager(42)
        rng = seed_mgr.create_random_state("monte_carlo", 7)
    """

    def __init__(self, master_seed: Optional[int] = None) -> None:
        """Initialize the seed manager.

        Args:
            master_seed: Master seed. If None, derivation returns None and the
                random states it creates are unseeded.
        """
        self.master_seed = master_seed

    def derive_seed(self, *components: Any) -> Optional[int]:
        """Derive a deterministic seed from the master seed and component ids.

        Args:
            *components: Identifiers (strings, integers, ...) naming the
                consumer of the seed.

        Returns:
            Positive 31-bit integer seed, or None if no master seed is set.
        """
        if self.master_seed is None:
            return None

        seed_input = f"{self.master_seed}:" + ":".join(str(c) for c in components)
        hash_digest = hashlib.sha256(seed_input.encode()).digest()

        seed_value = int.from_bytes(hash_digest[:4], byteorder="big")
        return seed_value & 0x7FFFFFFF

    def create_random_state(self, *components: Any) -> random.Random:
        """Create a new Random instance with a derived seed.

        Args:
            *components: Component identifiers for seed derivation.

        Returns:
            Random instance seeded with the derived seed, or unseeded if no
            master seed is set.
        """
        derived_seed = self.derive_seed(*components)
        rng = random.Random()
        if derived_seed is not None:
            rng.seed(derived_seed)
        return rng
