"""
3-D Diffusion-Limited Aggregation point-cloud generator.

Particles are released on a sphere around the aggregate, random-walk until
they touch it and adhere after a configurable number of contacts:
- AggregationModel: the engine (seeding, parameter schedule, growth loop)
- SpatialIndex: incremental nearest-neighbour index over placed particles
- RandomSource: per-model seeded random stream
"""

from .errors import (
    AggregationError,
    EmptyIndexError,
    InvalidParameterError,
    StuckParticleError,
)
from .model import AggregationModel, run_model
from .params import (
    AggregationParams,
    StartShape,
    load_aggregation_params,
    params_from_mapping,
)
from .random_source import RandomSource
from .spatial import SpatialIndex
from . import utils

__all__ = [
    # Engine
    "AggregationModel",
    "run_model",
    "SpatialIndex",
    "RandomSource",
    # Configuration
    "AggregationParams",
    "StartShape",
    "load_aggregation_params",
    "params_from_mapping",
    # Errors
    "AggregationError",
    "InvalidParameterError",
    "StuckParticleError",
    "EmptyIndexError",
    # Utilities
    "utils",
]
