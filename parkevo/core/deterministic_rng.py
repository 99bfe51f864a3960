"""Per-world deterministic random streams."""

from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass, field


@dataclass
class DeterministicRNG:
    """Named ``random.Random`` streams scoped to one evolution world.

    A stream is seeded from ``(seed, world_index, name)`` only, never from
    global random state or ``hash()``, so the same world replays the same
    draws in any process. Entering a new world forgets every stream.
    """

    seed: int
    world_index: int = 0
    _streams: dict[str, random.Random] = field(default_factory=dict, init=False, repr=False)

    def stream(self, name: str) -> random.Random:
        rng = self._streams.get(name)
        if rng is None:
            key = f"{self.seed}:{self.world_index}:{name}".encode("utf-8")
            rng = random.Random(int.from_bytes(hashlib.sha256(key).digest()[:8], "big"))
            self._streams[name] = rng
        return rng

    def enter_world(self, world_index: int) -> None:
        self.world_index = int(world_index)
        self._streams = {}
