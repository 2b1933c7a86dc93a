from __future__ import annotations

import math

import numpy as np

DEFAULT_SEED = 42


class RandomSource:
    """
    Seeded random stream owned by a single model instance.

    Wraps a PCG64 ``numpy.random.Generator`` so that no global numpy state is
    touched. For a fixed seed and a fixed call order every draw is
    reproducible.
    """

    def __init__(self, seed: int = DEFAULT_SEED) -> None:
        self.seed = int(seed)
        self._rng = np.random.Generator(np.random.PCG64(self.seed))

    def uniform(self) -> float:
        """One draw in [0, 1)."""
        return float(self._rng.random())

    def unit_vector(self) -> np.ndarray:
        """
        Uniformly distributed point on the surface of the unit sphere.

        Marsaglia (1972): sample (u, v) in the unit disc by rejection, then
        map it onto the sphere. The number of underlying draws per call
        varies but is fixed by the seed.
        """
        while True:
            u, v = self._rng.uniform(-1.0, 1.0, size=2)
            s = u * u + v * v
            if s < 1.0:
                break
        factor = 2.0 * math.sqrt(1.0 - s)
        return np.array([u * factor, v * factor, 1.0 - 2.0 * s], dtype=np.float64)
