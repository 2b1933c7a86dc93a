"""
Incremental nearest-neighbour index over 3-D points.

An unbalanced k-d tree stored in flat arrays: node ``i`` is the ``i``-th
inserted point, ``left``/``right`` hold child node indices (-1 for none) and
``axes`` the splitting axis of each node. Points are only ever appended, so
insertion is a single root-to-leaf descent and every inserted point is visible
to the next query without any rebuild. DLA growth spreads outward in random
directions, which keeps the tree shallow in practice.

The descent and the search are compiled with numba; the Python class only
manages capacity and identities.
"""

from __future__ import annotations

import math

import numpy as np
from numba import njit

from .errors import EmptyIndexError

DEFAULT_CAPACITY = 1024

###############################################################################
# Tree kernels
###############################################################################


@njit(cache=True)
def _insert_node(
    points: np.ndarray,
    left: np.ndarray,
    right: np.ndarray,
    axes: np.ndarray,
    node_idx: int,
) -> int:
    """
    Link node ``node_idx`` (already written to ``points``) into the tree.

    Returns:
        Depth at which the node was attached (0 for the root).
    """
    if node_idx == 0:
        axes[0] = 0
        return 0

    node = 0
    depth = 0
    while node != -1:
        depth += 1
        ax = axes[node]
        if points[node_idx, ax] < points[node, ax]:
            child = left[node]
            if child == -1:
                left[node] = node_idx
        else:
            child = right[node]
            if child == -1:
                right[node] = node_idx
        if child == -1:
            axes[node_idx] = (ax + 1) % 3
        node = child
    return depth


@njit(cache=True)
def _nearest_node(
    points: np.ndarray,
    left: np.ndarray,
    right: np.ndarray,
    axes: np.ndarray,
    qx: float,
    qy: float,
    qz: float,
    stack_nodes: np.ndarray,
    stack_bounds: np.ndarray,
):
    """
    Depth-first branch-and-bound search for the closest node.

    ``stack_bounds`` holds a lower bound on the squared distance from the
    query to anything below the stacked node; subtrees whose bound is not
    below the best distance found so far are skipped.

    Returns:
        (node, dist_sq) of the nearest node.
    """
    best = -1
    best_dist_sq = math.inf

    stack_nodes[0] = 0
    stack_bounds[0] = 0.0
    top = 1

    while top > 0:
        top -= 1
        node = stack_nodes[top]
        bound = stack_bounds[top]
        if bound >= best_dist_sq:
            continue

        dx = qx - points[node, 0]
        dy = qy - points[node, 1]
        dz = qz - points[node, 2]
        dist_sq = dx * dx + dy * dy + dz * dz
        if dist_sq < best_dist_sq:
            best = node
            best_dist_sq = dist_sq

        ax = axes[node]
        if ax == 0:
            diff = dx
        elif ax == 1:
            diff = dy
        else:
            diff = dz

        if diff < 0.0:
            near = left[node]
            far = right[node]
        else:
            near = right[node]
            far = left[node]

        # Far side first so the near side is popped next.
        if far != -1:
            plane_sq = diff * diff
            stack_nodes[top] = far
            stack_bounds[top] = plane_sq if plane_sq > bound else bound
            top += 1
        if near != -1:
            stack_nodes[top] = near
            stack_bounds[top] = bound
            top += 1

    return best, best_dist_sq


###############################################################################
# Index
###############################################################################


class SpatialIndex:
    """Exact Euclidean nearest-neighbour index supporting live insertion."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        capacity = max(int(capacity), 1)
        self._count = 0
        self._max_depth = 0
        self._points = np.zeros((capacity, 3), dtype=np.float64)
        self._left = np.full(capacity, -1, dtype=np.int64)
        self._right = np.full(capacity, -1, dtype=np.int64)
        self._axes = np.zeros(capacity, dtype=np.int64)
        self._ids = np.zeros(capacity, dtype=np.int64)
        # Stack depth never exceeds tree depth + 2.
        self._stack_nodes = np.zeros(capacity + 2, dtype=np.int64)
        self._stack_bounds = np.zeros(capacity + 2, dtype=np.float64)

    def __len__(self) -> int:
        return self._count

    @property
    def depth(self) -> int:
        """Deepest attachment level seen so far."""
        return self._max_depth

    def _grow(self) -> None:
        capacity = 2 * self._points.shape[0]
        n = self._count

        points = np.zeros((capacity, 3), dtype=np.float64)
        points[:n] = self._points[:n]
        left = np.full(capacity, -1, dtype=np.int64)
        left[:n] = self._left[:n]
        right = np.full(capacity, -1, dtype=np.int64)
        right[:n] = self._right[:n]
        axes = np.zeros(capacity, dtype=np.int64)
        axes[:n] = self._axes[:n]
        ids = np.zeros(capacity, dtype=np.int64)
        ids[:n] = self._ids[:n]

        self._points = points
        self._left = left
        self._right = right
        self._axes = axes
        self._ids = ids
        self._stack_nodes = np.zeros(capacity + 2, dtype=np.int64)
        self._stack_bounds = np.zeros(capacity + 2, dtype=np.float64)

    def insert(self, position, identity: int) -> None:
        """Add ``position`` tagged with ``identity``."""
        if self._count == self._points.shape[0]:
            self._grow()
        node_idx = self._count
        self._points[node_idx] = np.asarray(position, dtype=np.float64)
        self._ids[node_idx] = identity
        depth = _insert_node(self._points, self._left, self._right, self._axes, node_idx)
        self._max_depth = max(self._max_depth, depth)
        self._count += 1

    def nearest_with_distance(self, query) -> tuple[int, float]:
        """Return ``(identity, squared distance)`` of the closest point."""
        if self._count == 0:
            raise EmptyIndexError("nearest() called on an empty spatial index")
        qx, qy, qz = (float(c) for c in query)
        node, dist_sq = _nearest_node(
            self._points,
            self._left,
            self._right,
            self._axes,
            qx,
            qy,
            qz,
            self._stack_nodes,
            self._stack_bounds,
        )
        return int(self._ids[node]), float(dist_sq)

    def nearest(self, query) -> int:
        """Identity of the indexed point closest to ``query``."""
        identity, _ = self.nearest_with_distance(query)
        return identity

    def points(self) -> np.ndarray:
        """Copy of the indexed points in insertion order."""
        return self._points[: self._count].copy()

    def identities(self) -> np.ndarray:
        """Copy of the identities in insertion order."""
        return self._ids[: self._count].copy()
