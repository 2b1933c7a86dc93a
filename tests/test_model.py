"""
Behavioural tests for the aggregation engine.
"""

import dataclasses
import math

import numpy as np
import pytest

from dla_cloud import (
    AggregationError,
    AggregationModel,
    AggregationParams,
    InvalidParameterError,
    StartShape,
    StuckParticleError,
    run_model,
)
from dla_cloud.diffusion import (
    DiffusionStep,
    JoinPolicy,
    WalkState,
    diffuse_particle,
    lerp_points,
)
from dla_cloud.model import lerp
from dla_cloud.random_source import RandomSource
from dla_cloud.store import ParticleStore


def _params(**overrides) -> AggregationParams:
    base = dict(
        random_seed=42,
        particles=100,
        attraction_distance=3.0,
        repulsion_distance=1.0,
        stickiness=1.0,
        stubbornness=0,
        show_progress=False,
    )
    base.update(overrides)
    return AggregationParams(**base)


def test_lerp():
    assert lerp(1.0, 3.0, 0.0) == 1.0
    assert lerp(1.0, 3.0, 0.5) == 2.0
    assert lerp(1.0, 3.0, 1.0) == 3.0


def test_lerp_points():
    a = np.array([1.0, 1.0, 1.0])
    b = np.array([1.0, 5.0, 1.0])
    np.testing.assert_allclose(lerp_points(a, b, 2.0), [1.0, 3.0, 1.0])
    # Coincident points fall back to +x.
    np.testing.assert_allclose(lerp_points(a, a.copy(), 2.0), [3.0, 1.0, 1.0])


def test_end_to_end_scenario():
    """Point seed, 100 particles, seed 42: exact count, origin first, reproducible."""
    first = run_model(_params())
    second = run_model(_params())

    assert first.positions.shape == (100, 3)
    assert first.positions.dtype == np.float32
    np.testing.assert_array_equal(first.positions[0], [0.0, 0.0, 0.0])
    np.testing.assert_array_equal(first.positions, second.positions)
    np.testing.assert_array_equal(first.radii, second.radii)
    assert np.all(np.isfinite(first.positions))


def test_different_seed_differs():
    a = run_model(_params(particles=30))
    b = run_model(_params(particles=30, random_seed=43))
    assert not np.array_equal(a.positions, b.positions)


def test_spacing_law():
    """Each non-seed particle sits exactly the scheduled spacing from its parent."""
    budget = 80
    model = AggregationModel(_params(particles=budget, spacing=(1.0, 2.5)))
    model.run()

    positions = model.positions().astype(np.float64)
    parents = model.parents()
    assert parents[0] == -1
    remaining = budget - 1
    for p in range(remaining):
        i = p + 1
        assert 0 <= parents[i] < i
        expected = lerp(1.0, 2.5, p / remaining)
        distance = np.linalg.norm(positions[i] - positions[parents[i]])
        assert distance == pytest.approx(expected, abs=1e-4)


def test_scale_schedule():
    budget = 40
    model = AggregationModel(_params(particles=budget, scale=(2.0, 0.5)))
    model.run()
    radii = model.radii()
    remaining = budget - 1
    assert radii[0] == pytest.approx(2.0)
    for p in range(remaining):
        assert radii[p + 1] == pytest.approx(lerp(2.0, 0.5, p / remaining), rel=1e-6)
    # Tapering: radii never grow when the range shrinks.
    assert np.all(np.diff(radii) <= 1e-6)


def test_bounding_radius_monotonic():
    params = _params(particles=60)
    model = AggregationModel(params)
    model.add((0.0, 0.0, 0.0), 1.0)
    assert model.bounding_radius == pytest.approx(params.attraction_distance)

    previous = model.bounding_radius
    for _ in range(60):
        identity = diffuse_particle(model, 1.0)
        assert model.bounding_radius >= previous
        previous = model.bounding_radius
        norm = np.linalg.norm(model.positions()[identity].astype(np.float64))
        assert model.bounding_radius >= norm + params.attraction_distance - 1e-9

    norms = np.linalg.norm(model.positions().astype(np.float64), axis=1)
    assert model.bounding_radius == pytest.approx(norms.max() + params.attraction_distance)


def test_index_mirrors_store():
    model = AggregationModel(_params(particles=50))
    model.run()
    n = model.num_particles
    assert n == 50
    assert len(model.index) == n
    assert len(model.join_attempts) == n
    np.testing.assert_array_equal(model.index.identities(), np.arange(n))
    np.testing.assert_array_equal(
        model.index.points(), model.positions().astype(np.float64)
    )


def test_join_policy_stubbornness_gate():
    store = ParticleStore()
    store.append((0.0, 0.0, 0.0), 1.0)
    policy = JoinPolicy(store, RandomSource(1), stickiness=1.0, stubbornness=3)

    assert policy.decide(0) is False
    assert policy.decide(0) is False
    # Third attempt reaches the threshold, stickiness 1.0 always accepts.
    assert policy.decide(0) is True
    assert store.join_attempts[0] == 3


def test_join_policy_gate_consumes_no_draws():
    """Rejections below the stubbornness threshold never touch the stream."""
    store = ParticleStore()
    store.append((0.0, 0.0, 0.0), 1.0)
    rng = RandomSource(11)
    reference = RandomSource(11)
    policy = JoinPolicy(store, rng, stickiness=0.5, stubbornness=5)
    for _ in range(4):
        assert policy.decide(0) is False
    policy.decide(0)
    reference.uniform()
    assert rng.uniform() == reference.uniform()


def test_join_policy_stickiness_zero_never_accepts():
    store = ParticleStore()
    store.append((0.0, 0.0, 0.0), 1.0)
    policy = JoinPolicy(store, RandomSource(3), stickiness=0.0, stubbornness=0)
    assert not any(policy.decide(0) for _ in range(200))
    assert store.join_attempts[0] == 200


def test_stubbornness_in_full_run():
    k = 4
    model = AggregationModel(_params(particles=40, stubbornness=k))
    model.run()
    parents = model.parents()[1:]
    attempts = model.join_attempts
    # Every parent that accepted was evaluated at least k times.
    for parent in np.unique(parents):
        assert attempts[parent] >= k


def test_immediate_acceptance():
    """Stickiness 1 and stubbornness 0: one evaluation per accepted particle."""
    model = AggregationModel(_params(particles=60))
    model.run()
    attempts = model.join_attempts
    assert attempts.sum() == model.num_particles - 1
    counts = np.bincount(model.parents()[1:], minlength=model.num_particles)
    np.testing.assert_array_equal(attempts, counts)


def test_ring_seeding():
    n, diameter = 12, 20.0
    model = AggregationModel(
        _params(
            particles=n,
            start_shape=StartShape(shape="ring", diameter=diameter, particles=n),
        )
    )
    model.run()
    positions = model.positions().astype(np.float64)
    assert positions.shape == (n, 3)
    np.testing.assert_array_equal(positions[:, 2], 0.0)
    np.testing.assert_allclose(np.linalg.norm(positions, axis=1), diameter / 2, rtol=1e-6)
    angles = np.arctan2(positions[:, 1], positions[:, 0])
    assert angles[0] == pytest.approx(0.0, abs=1e-6)
    steps = np.mod(np.diff(angles), 2.0 * math.pi)
    np.testing.assert_allclose(steps, 2.0 * math.pi / n, atol=1e-5)
    np.testing.assert_array_equal(model.parents(), -1)


def test_ring_seed_then_growth():
    model = AggregationModel(
        _params(
            particles=40,
            start_shape=StartShape(shape="ring", diameter=30.0, particles=16),
        )
    )
    model.run()
    assert model.num_particles == 40
    assert np.all(model.parents()[16:] >= 0)


def test_ring_larger_than_budget_rejected():
    model = AggregationModel(
        _params(particles=10, start_shape=StartShape(shape="ring", particles=20))
    )
    with pytest.raises(InvalidParameterError):
        model.run()
    assert model.num_particles == 0


def test_run_budget_override():
    model = AggregationModel(_params(particles=500))
    model.run(25)
    assert model.num_particles == 25


def test_run_twice_rejected():
    model = AggregationModel(_params(particles=5))
    model.run()
    with pytest.raises(AggregationError):
        model.run()


@pytest.mark.parametrize("budget", [0, -3, 2.5])
def test_bad_budget_rejected(budget):
    model = AggregationModel(_params())
    with pytest.raises(InvalidParameterError):
        model.run(budget)


def test_invalid_params_rejected_at_construction():
    with pytest.raises(InvalidParameterError):
        AggregationModel(_params(stickiness=1.2))
    with pytest.raises(InvalidParameterError):
        AggregationModel({"attraction_distance": -3.0})


def test_stuck_particle_reported():
    model = AggregationModel(_params(particles=5, stickiness=0.0, max_walk_steps=500))
    with pytest.raises(StuckParticleError) as excinfo:
        model.run()
    assert excinfo.value.particle == 1
    assert excinfo.value.steps == 500
    # Seed was placed before the walk gave up.
    assert model.num_particles == 1


def test_walk_cap_not_hit_for_sticky_runs():
    model = AggregationModel(_params(particles=30, max_walk_steps=1_000_000))
    model.run()
    assert model.num_particles == 30


def test_particles_snapshot():
    model = AggregationModel(_params(particles=10, scale=(3.0, 3.0)))
    model.run()
    snapshot = model.particles()
    assert len(snapshot) == 10
    position, radius = snapshot[0]
    np.testing.assert_array_equal(position, [0.0, 0.0, 0.0])
    assert radius == pytest.approx(3.0)
    # Snapshot is a copy.
    position[0] = 99.0
    assert model.positions()[0, 0] == 0.0


def test_manual_add_updates_state():
    model = AggregationModel(_params())
    idx = model.add((3.0, 4.0, 0.0), 1.5)
    assert idx == 0
    assert model.bounding_radius == pytest.approx(5.0 + 3.0)
    assert model.index.nearest((3.0, 4.0, 1.0)) == 0
    model.add((0.0, 0.0, 1.0), 1.5)
    assert model.bounding_radius == pytest.approx(8.0)
    assert list(model.join_attempts) == [0, 0]


def test_params_captured_at_construction():
    """Changes to the caller's parameter objects never reach run()."""
    spacing = [1.0, 1.0]
    params = AggregationParams(particles=20, spacing=spacing, show_progress=False)
    model = AggregationModel(params)

    spacing[0] = spacing[1] = -5.0
    with pytest.raises(dataclasses.FrozenInstanceError):
        params.particles = 7
    with pytest.raises(dataclasses.FrozenInstanceError):
        model.params.spacing = (-5.0, -5.0)

    assert model.params.spacing == (1.0, 1.0)
    model.run()
    assert model.num_particles == 20
    positions = model.positions().astype(np.float64)
    parents = model.parents()
    for i in range(1, 20):
        distance = np.linalg.norm(positions[i] - positions[parents[i]])
        assert distance == pytest.approx(1.0, abs=1e-4)


def test_walk_contact_enters_join_check():
    model = AggregationModel(_params())
    model.add((0.0, 0.0, 0.0), 1.0)
    step = DiffusionStep(model, 1.0)
    step.walker = np.array([1.0, 1.0, 1.0])
    step.state = WalkState.WALK

    reference = RandomSource(42)
    step.walk()
    assert step.state is WalkState.JOIN_CHECK
    assert step.parent == 0
    # Contact test consumes no draw.
    np.testing.assert_array_equal(model.rng.unit_vector(), reference.unit_vector())


def test_rejected_walker_repositioned_without_draw():
    """Rejection pushes the walker out to attraction + repulsion along parent->walker."""
    params = _params(stubbornness=3, attraction_distance=3.0, repulsion_distance=1.0)
    model = AggregationModel(params)
    model.add((2.0, -1.0, 0.5), 1.0)
    anchor = np.array([2.0, -1.0, 0.5])

    step = DiffusionStep(model, 1.0)
    step.walker = anchor + np.array([1.0, 1.0, 1.0])
    step.parent = 0
    step.state = WalkState.JOIN_CHECK

    reference = RandomSource(params.random_seed)
    step.join_check()

    assert step.state is WalkState.WALK
    assert model.num_particles == 1
    assert model.join_attempts[0] == 1
    expected = anchor + np.array([1.0, 1.0, 1.0]) / math.sqrt(3.0) * 4.0
    np.testing.assert_allclose(step.walker, expected, rtol=1e-12)
    assert np.linalg.norm(step.walker - anchor) == pytest.approx(4.0, rel=1e-12)
    # Stream untouched: next draws match a fresh stream draw-for-draw.
    np.testing.assert_array_equal(model.rng.unit_vector(), reference.unit_vector())
    assert model.rng.uniform() == reference.uniform()


def test_escaped_walker_respawns():
    """A walker beyond twice the bounding radius is discarded and freshly spawned."""
    # Repulsion 20 forces a move long enough to leave the escape sphere (radius 6).
    params = _params(attraction_distance=3.0, repulsion_distance=20.0)
    model = AggregationModel(params)
    model.add((0.0, 0.0, 0.0), 1.0)
    assert model.bounding_radius == pytest.approx(3.0)

    step = DiffusionStep(model, 1.0)
    step.walker = np.array([5.0, 0.0, 0.0])
    step.state = WalkState.WALK

    reference = RandomSource(params.random_seed)
    step.walk()
    moved = np.array([5.0, 0.0, 0.0]) + 20.0 * reference.unit_vector()
    assert float(moved @ moved) > 6.0**2
    assert step.state is WalkState.SPAWN
    np.testing.assert_allclose(step.walker, moved, rtol=1e-12)

    step.spawn()
    assert step.state is WalkState.WALK
    np.testing.assert_allclose(step.walker, reference.unit_vector() * 3.0, rtol=1e-12)
    assert np.linalg.norm(step.walker) == pytest.approx(model.bounding_radius)
    assert step.steps == 1


def test_walk_without_escape_keeps_walking():
    params = _params(attraction_distance=3.0, repulsion_distance=1.0)
    model = AggregationModel(params)
    model.add((0.0, 0.0, 0.0), 1.0)
    step = DiffusionStep(model, 1.0)
    step.walker = np.array([3.5, 0.0, 0.0])
    step.state = WalkState.WALK

    reference = RandomSource(params.random_seed)
    step.walk()
    # Move length max(repulsion, d - attraction) = 1.0, stays inside radius 6.
    expected = np.array([3.5, 0.0, 0.0]) + 1.0 * reference.unit_vector()
    np.testing.assert_allclose(step.walker, expected, rtol=1e-12)
    assert step.state is WalkState.WALK
