from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple

from . import utils
from .errors import InvalidParameterError

START_SHAPES = ("point", "ring")

# Sections of the renderer-facing config layout that the generator ignores.
IGNORED_SECTIONS = ("material", "environment", "nsi_render")
IGNORED_PARTICLE_KEYS = ("instance_geo", "subdivision")

MAX_SEED = 2**64 - 1


@dataclass(frozen=True)
class StartShape:
    """Seed geometry placed before the first walker is released."""

    shape: str = "point"
    diameter: float = 100.0
    particles: int = 360


@dataclass(frozen=True)
class AggregationParams:
    """
    Read-only run parameters for :class:`dla_cloud.AggregationModel`.

    Frozen; derive variants with ``dataclasses.replace``.
    """

    random_seed: int = 42
    particles: int = 1000
    spacing: Tuple[float, float] = (1.0, 1.0)
    scale: Tuple[float, float] = (2.0, 2.0)
    attraction_distance: float = 3.0
    repulsion_distance: float = 1.0
    stickiness: float = 1.0
    stubbornness: int = 0
    start_shape: StartShape = field(default_factory=StartShape)
    max_walk_steps: Optional[int] = None
    show_progress: bool = True

    def validate(self) -> "AggregationParams":
        """Raise :class:`InvalidParameterError` on the first bad value."""
        _check_int("random_seed", self.random_seed, 0, MAX_SEED)
        _check_int("particles", self.particles, 1)
        _check_range_pair("spacing", self.spacing, strictly_positive=True)
        _check_range_pair("scale", self.scale, strictly_positive=False)
        _check_float("attraction_distance", self.attraction_distance, strictly_positive=True)
        _check_float("repulsion_distance", self.repulsion_distance)
        _check_float("stickiness", self.stickiness)
        if self.stickiness > 1.0:
            raise InvalidParameterError(
                f"stickiness must lie in [0, 1], got {self.stickiness!r}"
            )
        _check_int("stubbornness", self.stubbornness, 0)
        if self.max_walk_steps is not None:
            _check_int("max_walk_steps", self.max_walk_steps, 1)

        shape = self.start_shape
        if not isinstance(shape, StartShape):
            raise InvalidParameterError(f"start_shape must be a StartShape, got {shape!r}")
        if shape.shape not in START_SHAPES:
            raise InvalidParameterError(
                f"unknown start shape {shape.shape!r}; expected one of {START_SHAPES}"
            )
        if shape.shape == "ring":
            _check_float("start_shape.diameter", shape.diameter, strictly_positive=True)
            _check_int("start_shape.particles", shape.particles, 1)
        return self

    def captured(self) -> "AggregationParams":
        """
        Validated copy that shares no mutable state with ``self``.

        Range pairs given as lists are frozen into tuples.
        """
        self.validate()
        return replace(
            self,
            spacing=tuple(self.spacing),
            scale=tuple(self.scale),
            start_shape=replace(self.start_shape),
        )

    def seed_count(self) -> int:
        """Number of particles placed by seeding."""
        if self.start_shape.shape == "ring":
            return int(self.start_shape.particles)
        return 1

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["spacing"] = list(self.spacing)
        out["scale"] = list(self.scale)
        return out


###############################################################################
# Validation helpers
###############################################################################


def _check_float(name: str, value: Any, *, strictly_positive: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameterError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidParameterError(f"{name} must be finite, got {value!r}")
    if strictly_positive and value <= 0.0:
        raise InvalidParameterError(f"{name} must be > 0, got {value!r}")
    if value < 0.0:
        raise InvalidParameterError(f"{name} must be >= 0, got {value!r}")


def _check_int(name: str, value: Any, minimum: int, maximum: Optional[int] = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameterError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise InvalidParameterError(f"{name} must be >= {minimum}, got {value!r}")
    if maximum is not None and value > maximum:
        raise InvalidParameterError(f"{name} must be <= {maximum}, got {value!r}")


def _check_range_pair(name: str, value: Any, *, strictly_positive: bool) -> None:
    try:
        start, end = value
    except (TypeError, ValueError):
        raise InvalidParameterError(
            f"{name} must be a [start, end] pair, got {value!r}"
        ) from None
    _check_float(f"{name}[0]", start, strictly_positive=strictly_positive)
    _check_float(f"{name}[1]", end, strictly_positive=strictly_positive)


###############################################################################
# Loading
###############################################################################


def _start_shape_from_mapping(data: Any) -> StartShape:
    if isinstance(data, StartShape):
        return data
    if not isinstance(data, Mapping):
        raise InvalidParameterError(f"start_shape must be a table, got {data!r}")
    known = {f.name for f in fields(StartShape)}
    unknown = set(data) - known
    if unknown:
        raise InvalidParameterError(f"unknown start_shape keys: {sorted(unknown)}")
    return StartShape(**data)


def _flatten_sections(mapping: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge the ``[aggregation]``/``[particle]`` layout into flat keys."""
    flat: Dict[str, Any] = {}
    for key, value in mapping.items():
        if key in IGNORED_SECTIONS:
            continue
        if key == "aggregation":
            if not isinstance(value, Mapping):
                raise InvalidParameterError("[aggregation] must be a table")
            flat.update(value)
        elif key == "particle":
            if not isinstance(value, Mapping):
                raise InvalidParameterError("[particle] must be a table")
            for pkey, pvalue in value.items():
                if pkey in IGNORED_PARTICLE_KEYS:
                    continue
                flat[pkey] = pvalue
        else:
            flat[key] = value
    return flat


def params_from_mapping(mapping: Mapping[str, Any]) -> AggregationParams:
    """
    Build validated parameters from a plain or sectioned mapping.

    Accepts either flat ``AggregationParams`` keys or the sectioned layout
    (``[aggregation]``, ``[aggregation.start_shape]``, ``[particle]``).
    Renderer sections are skipped; any other unknown key is an error.
    """
    flat = _flatten_sections(mapping)
    known = {f.name for f in fields(AggregationParams)}
    unknown = set(flat) - known
    if unknown:
        raise InvalidParameterError(f"unknown parameter keys: {sorted(unknown)}")

    if "start_shape" in flat:
        flat["start_shape"] = _start_shape_from_mapping(flat["start_shape"])
    for key in ("spacing", "scale"):
        if key in flat and isinstance(flat[key], list):
            flat[key] = tuple(flat[key])

    return AggregationParams(**flat).validate()


def load_aggregation_params(path: str | os.PathLike[str]) -> AggregationParams:
    """Read a TOML or JSON parameter file into validated parameters."""
    try:
        mapping = utils.load_params(path)
    except (OSError, ValueError) as exc:
        raise InvalidParameterError(f"config file error in '{path}': {exc}") from exc
    if not isinstance(mapping, Mapping):
        raise InvalidParameterError(f"config file '{path}' must hold a table at top level")
    return params_from_mapping(mapping)
