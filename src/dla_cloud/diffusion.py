"""
Random walk of a single particle from release to adherence.

One call to :func:`diffuse_particle` releases a walker on the bounding sphere
and moves it until it sticks to the aggregate:

    SPAWN -> WALK <-> JOIN_CHECK -> ACCEPTED

Draw order per particle, which the reproducibility of a run depends on: one
unit vector at every (re)spawn, one unit vector per free move, and one
uniform per join evaluation that gets past the stubbornness gate.
"""

from __future__ import annotations

import enum
import math
from typing import TYPE_CHECKING, Optional

import numpy as np

from .errors import StuckParticleError
from .random_source import RandomSource
from .store import ParticleStore

if TYPE_CHECKING:  # pragma: no cover
    from .model import AggregationModel

X_AXIS = np.array([1.0, 0.0, 0.0], dtype=np.float64)


class WalkState(enum.Enum):
    SPAWN = "spawn"
    WALK = "walk"
    JOIN_CHECK = "join_check"
    ACCEPTED = "accepted"


def lerp_points(a: np.ndarray, b: np.ndarray, distance: float) -> np.ndarray:
    """
    Point at ``distance`` from ``a`` in the direction of ``b``.

    If ``b`` coincides with ``a`` the direction is taken along +x.
    """
    offset = b - a
    length = math.sqrt(float(offset @ offset))
    if length == 0.0:
        return a + X_AXIS * distance
    return a + offset * (distance / length)


class JoinPolicy:
    """Decides whether a walker touching ``parent`` adheres now."""

    def __init__(
        self,
        store: ParticleStore,
        rng: RandomSource,
        stickiness: float,
        stubbornness: int,
    ) -> None:
        self.store = store
        self.rng = rng
        self.stickiness = stickiness
        self.stubbornness = stubbornness

    def decide(self, parent: int) -> bool:
        attempts = self.store.increment_attempts(parent)
        if attempts < self.stubbornness:
            return False
        return self.rng.uniform() <= self.stickiness


class DiffusionStep:
    """
    One walker driven from release to adherence.

    Each ``spawn``/``walk``/``join_check`` call handles exactly one state and
    sets the next one; ``run`` loops until ``ACCEPTED``.
    """

    def __init__(
        self,
        model: "AggregationModel",
        scale: float,
        max_steps: Optional[int] = None,
    ) -> None:
        self.model = model
        self.scale = scale
        self.max_steps = max_steps

        attraction = model.params.attraction_distance
        self._attraction = attraction
        self._attraction_sq = attraction * attraction
        self._repulsion = model.params.repulsion_distance
        self._push_away = attraction + self._repulsion

        self.state = WalkState.SPAWN
        self.walker = np.zeros(3, dtype=np.float64)
        self.parent = -1
        self.identity = -1
        self.steps = 0

    def spawn(self) -> None:
        """Release the walker on the bounding sphere surface."""
        self.walker = self.model.rng.unit_vector() * self.model.bounding_radius
        self.state = WalkState.WALK

    def walk(self) -> None:
        """Find the nearest particle; either touch it or take a free move."""
        model = self.model
        self.steps += 1
        if self.max_steps is not None and self.steps > self.max_steps:
            raise StuckParticleError(len(model.store), self.steps - 1)

        self.parent = model.index.nearest(self.walker)
        offset = self.walker - model.store.position(self.parent)
        distance_sq = float(offset @ offset)

        if distance_sq < self._attraction_sq:
            self.state = WalkState.JOIN_CHECK
            return

        move = max(self._repulsion, math.sqrt(distance_sq) - self._attraction)
        self.walker = self.walker + move * model.rng.unit_vector()

        escape = 2.0 * model.bounding_radius
        if float(self.walker @ self.walker) > escape * escape:
            self.state = WalkState.SPAWN

    def join_check(self) -> None:
        """Adhere to ``parent`` or get pushed back out of contact range."""
        model = self.model
        anchor = model.store.position(self.parent)
        if not model.join_policy.decide(self.parent):
            # Repositioning only, no draw.
            self.walker = lerp_points(anchor, self.walker, self._push_away)
            self.state = WalkState.WALK
            return

        resting = lerp_points(anchor, self.walker, model.particle_spacing)
        self.identity = model.add(resting, self.scale, parent=self.parent)
        self.state = WalkState.ACCEPTED

    def run(self) -> int:
        handlers = {
            WalkState.SPAWN: self.spawn,
            WalkState.WALK: self.walk,
            WalkState.JOIN_CHECK: self.join_check,
        }
        while self.state is not WalkState.ACCEPTED:
            handlers[self.state]()
        return self.identity


def diffuse_particle(
    model: "AggregationModel",
    scale: float,
    max_steps: Optional[int] = None,
) -> int:
    """
    Walk one particle until it adheres and add it to ``model``.

    Args:
        model: Engine owning the store, index, random source and schedule.
        scale: Radius recorded for the new particle.
        max_steps: Cap on walk iterations (nearest-neighbour queries) for this
            particle; None walks without limit.

    Returns:
        Identity of the inserted particle.

    Raises:
        StuckParticleError: ``max_steps`` exceeded.
    """
    return DiffusionStep(model, scale, max_steps=max_steps).run()
