"""
Off-lattice 3-D diffusion-limited aggregation engine.

The model owns every piece of mutable state of a run: the particle store, the
spatial index over the same positions, the per-particle join-attempt counters
and the random source. It is the only writer to any of them, so the index
always holds exactly the stored positions.
"""

from __future__ import annotations

import math
import time
from collections.abc import Mapping
from typing import Any, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from . import utils
from .diffusion import JoinPolicy, diffuse_particle
from .errors import AggregationError, InvalidParameterError
from .params import AggregationParams, params_from_mapping
from .random_source import RandomSource
from .spatial import SpatialIndex
from .store import ParticleStore


def lerp(a: float, b: float, t: float) -> float:
    return a * (1.0 - t) + b * t


class AggregationModel:
    """
    Grows a point cloud one particle at a time.

    Usage::

        model = AggregationModel(AggregationParams(particles=500))
        model.run()
        points = model.positions()
    """

    def __init__(self, params: AggregationParams | Mapping[str, Any] | None = None) -> None:
        if params is None:
            params = AggregationParams()
        elif isinstance(params, Mapping):
            params = params_from_mapping(params)
        # Private copy: later changes to the caller's object never reach run().
        self._params = params.captured()

        self.rng = RandomSource(self._params.random_seed)
        self.store = ParticleStore()
        self.index = SpatialIndex()
        self.join_policy = JoinPolicy(
            self.store, self.rng, self._params.stickiness, self._params.stubbornness
        )

        self._particle_spacing = float(self._params.spacing[0])
        self._bounding_radius = 0.0
        self._has_run = False

    # ------------------------------------------------------------------ state

    @property
    def params(self) -> AggregationParams:
        return self._params

    @property
    def bounding_radius(self) -> float:
        return self._bounding_radius

    @property
    def particle_spacing(self) -> float:
        return self._particle_spacing

    @property
    def num_particles(self) -> int:
        return len(self.store)

    @property
    def join_attempts(self) -> np.ndarray:
        return self.store.join_attempts

    # -------------------------------------------------------------- insertion

    def add(self, position, scale: float, parent: int = -1) -> int:
        """
        Insert a particle directly, bypassing the walk.

        Updates the spatial index, the counters and the bounding radius the
        same way an accepted walker does.
        """
        identity = self.store.append(position, scale, parent)
        stored = self.store.position(identity)
        self.index.insert(stored, identity)
        self._bounding_radius = max(
            self._bounding_radius,
            math.sqrt(float(stored @ stored)) + self.params.attraction_distance,
        )
        return identity

    def _seed(self, scale: float, progress: tqdm) -> int:
        shape = self.params.start_shape
        if shape.shape == "ring":
            radius = 0.5 * shape.diameter
            count = shape.particles
            for i in range(count):
                angle = (i / count) * 2.0 * math.pi
                self.add((math.cos(angle) * radius, math.sin(angle) * radius, 0.0), scale)
                progress.update(1)
            return count

        self.add((0.0, 0.0, 0.0), scale)
        progress.update(1)
        return 1

    # -------------------------------------------------------------------- run

    def run(self, particle_budget: Optional[int] = None) -> None:
        """
        Seed the aggregate and diffuse particles until the budget is spent.

        Seed particles count against ``particle_budget`` (defaults to
        ``params.particles``).
        """
        if self._has_run:
            raise AggregationError("run() may only be called once per model")

        budget = self.params.particles if particle_budget is None else particle_budget
        if isinstance(budget, bool) or not isinstance(budget, int) or budget < 1:
            raise InvalidParameterError(f"particle budget must be an integer >= 1, got {budget!r}")
        seeds = self.params.seed_count()
        if seeds > budget:
            raise InvalidParameterError(
                f"start shape places {seeds} particles but the budget is {budget}"
            )
        self._has_run = True

        scale_start, scale_end = self.params.scale
        spacing_start, spacing_end = self.params.spacing

        with tqdm(
            total=budget,
            desc="Aggregating",
            unit="particle",
            disable=not self.params.show_progress,
        ) as progress:
            remaining = budget - self._seed(scale_start, progress)
            for p in range(remaining):
                t = p / remaining
                self._particle_spacing = lerp(spacing_start, spacing_end, t)
                diffuse_particle(
                    self,
                    lerp(scale_start, scale_end, t),
                    max_steps=self.params.max_walk_steps,
                )
                progress.update(1)

    # ---------------------------------------------------------------- results

    def particles(self) -> List[Tuple[np.ndarray, float]]:
        """Ordered ``(position, radius)`` snapshot."""
        positions = self.store.positions
        radii = self.store.radii
        return [(positions[i], float(radii[i])) for i in range(len(radii))]

    def positions(self) -> np.ndarray:
        """Particle centres as an (N, 3) float32 array."""
        return self.store.positions

    def radii(self) -> np.ndarray:
        return self.store.radii

    def parents(self) -> np.ndarray:
        """Accepting parent of each particle, -1 for seeds."""
        return self.store.parents

    def result(self, time_elapsed: Optional[float] = None) -> utils.ClusterResult:
        """Package the current particles for the exporters."""
        meta = {
            "model": "dla3d",
            "num": self.num_particles,
            "seed": int(self.params.random_seed),
            "bounding_radius": float(self._bounding_radius),
            "time_elapsed": time_elapsed,
            "params": self.params.to_dict(),
        }
        return utils.ClusterResult(
            positions=self.positions(),
            radii=self.radii(),
            parents=self.parents(),
            meta=meta,
        )


def run_model(params: AggregationParams | Mapping[str, Any] | None = None) -> utils.ClusterResult:
    """
    Run one aggregation and return a ClusterResult.
    """
    model = AggregationModel(params)
    t_start = time.perf_counter()
    model.run()
    return model.result(time_elapsed=time.perf_counter() - t_start)
