"""Exception types raised by the aggregation core."""

from __future__ import annotations


class AggregationError(Exception):
    """Base class for every failure raised by ``dla_cloud``."""


class InvalidParameterError(AggregationError, ValueError):
    """A run parameter is out of range, malformed or not finite."""


class StuckParticleError(AggregationError, RuntimeError):
    """A walker exceeded the configured walk-step cap without adhering."""

    def __init__(self, particle: int, steps: int) -> None:
        super().__init__(
            f"particle {particle} did not adhere after {steps} walk steps"
        )
        self.particle = particle
        self.steps = steps


class EmptyIndexError(AggregationError, LookupError):
    """Nearest-neighbour query on an index holding no points."""
