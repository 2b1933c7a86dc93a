from __future__ import annotations

import numpy as np

DEFAULT_CAPACITY = 1024


class ParticleStore:
    """
    Append-only particle arrays indexed by insertion order.

    Positions and radii are float32. ``join_attempts`` and ``parents`` grow in
    lockstep with the positions; a seed particle has parent -1.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        capacity = max(int(capacity), 1)
        self._count = 0
        self._positions = np.zeros((capacity, 3), dtype=np.float32)
        self._radii = np.zeros(capacity, dtype=np.float32)
        self._join_attempts = np.zeros(capacity, dtype=np.int64)
        self._parents = np.full(capacity, -1, dtype=np.int64)

    def __len__(self) -> int:
        return self._count

    def _grow(self) -> None:
        capacity = 2 * self._positions.shape[0]
        n = self._count
        positions = np.zeros((capacity, 3), dtype=np.float32)
        positions[:n] = self._positions[:n]
        radii = np.zeros(capacity, dtype=np.float32)
        radii[:n] = self._radii[:n]
        join_attempts = np.zeros(capacity, dtype=np.int64)
        join_attempts[:n] = self._join_attempts[:n]
        parents = np.full(capacity, -1, dtype=np.int64)
        parents[:n] = self._parents[:n]
        self._positions = positions
        self._radii = radii
        self._join_attempts = join_attempts
        self._parents = parents

    def append(self, position, radius: float, parent: int = -1) -> int:
        """Store a particle and return its identity."""
        if self._count == self._positions.shape[0]:
            self._grow()
        idx = self._count
        self._positions[idx] = np.asarray(position, dtype=np.float32)
        self._radii[idx] = radius
        self._join_attempts[idx] = 0
        self._parents[idx] = parent
        self._count += 1
        return idx

    def position(self, idx: int) -> np.ndarray:
        """Stored position of particle ``idx`` widened to float64."""
        if not 0 <= idx < self._count:
            raise IndexError(f"particle {idx} out of range (0..{self._count - 1})")
        return self._positions[idx].astype(np.float64)

    def increment_attempts(self, idx: int) -> int:
        """Bump the join-attempt counter of ``idx`` and return the new count."""
        if not 0 <= idx < self._count:
            raise IndexError(f"particle {idx} out of range (0..{self._count - 1})")
        self._join_attempts[idx] += 1
        return int(self._join_attempts[idx])

    @property
    def positions(self) -> np.ndarray:
        return self._positions[: self._count].copy()

    @property
    def radii(self) -> np.ndarray:
        return self._radii[: self._count].copy()

    @property
    def join_attempts(self) -> np.ndarray:
        return self._join_attempts[: self._count].copy()

    @property
    def parents(self) -> np.ndarray:
        return self._parents[: self._count].copy()
