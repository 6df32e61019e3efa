"""Bounding volume hierarchies over triangles and spheres.

Both hierarchies share one node arena layout. Each node is either an
``InternalNode`` with two child nodes or a ``PreLeafNode`` that owns exactly
two ``Leaf`` buckets. Nodes live in a flat list in pre-order, so the root is
index 0 and an internal node's left child always directly follows it.

The two hierarchies differ only in their construction policy:

- Triangles split along the axis of largest extent (ties resolve x, y, z)
  after sorting by each triangle's first vertex. A node stops splitting when
  its half-size is at most ``leaf_size`` or the depth budget is spent.
- Spheres cycle the split axis y, z, x, ... (the root splits on y) after
  sorting by center. A node stops splitting when its half-size is at most 1.

In every split the first half of the sorted order (``size = n // 2``
primitives) goes to the left side. Traversal only ever needs a
conservative superset of the primitives a ray can hit, so the order of the
children is not significant.

``flatten`` converts the arena into numpy arrays with "skip" links, which
lets device code walk the tree without a stack.

Example:
    >>> bvh = TriangleBVH.build(positions, leaf_size=100, max_depth=24)
    >>> leaves = bvh.query(origin, direction, 1e-4, 1e30)
    >>> flat = bvh.flatten()
"""

from dataclasses import dataclass

import numpy as np
import numpy.typing as npt

from src.pathtracer.geometry.aabb import AABB

# Node kind tags shared with device traversal
NODE_INTERNAL = 0
NODE_PRE_LEAF = 1


@dataclass(eq=False)
class Leaf:
    """Bucket of primitive indices with its bounding box."""

    bounds: AABB
    indices: npt.NDArray[np.int64]

    def __len__(self) -> int:
        return len(self.indices)


@dataclass(frozen=True, eq=False)
class InternalNode:
    bounds: AABB
    depth: int
    left: int
    right: int


@dataclass(frozen=True, eq=False)
class PreLeafNode:
    bounds: AABB
    depth: int
    leaf_a: int
    leaf_b: int


BVHNode = InternalNode | PreLeafNode


@dataclass
class FlatBVH:
    """Array form of a BVH arena for upload to device fields.

    ``node_children`` holds (left, right) for internal nodes and
    (leaf_a, leaf_b) for pre-leaves. ``node_skip`` is the pre-order index of
    the next node outside the subtree, or -1 past the end. A leaf's
    primitives are ``prim_indices[leaf_start:leaf_start + leaf_count]``.
    """

    node_min: npt.NDArray[np.float32]
    node_max: npt.NDArray[np.float32]
    node_kind: npt.NDArray[np.int32]
    node_children: npt.NDArray[np.int32]
    node_skip: npt.NDArray[np.int32]
    leaf_min: npt.NDArray[np.float32]
    leaf_max: npt.NDArray[np.float32]
    leaf_start: npt.NDArray[np.int32]
    leaf_count: npt.NDArray[np.int32]
    prim_indices: npt.NDArray[np.int32]

    @property
    def num_nodes(self) -> int:
        return len(self.node_kind)

    @property
    def num_leaves(self) -> int:
        return len(self.leaf_count)


class _BVH:
    """Shared arena, construction and query logic."""

    def __init__(self) -> None:
        self.nodes: list[BVHNode] = []
        self.leaves: list[Leaf] = []
        self.max_depth = 0
        self.num_primitives = 0

    # -- construction policy hooks ------------------------------------------

    def _bounds(self, indices: npt.NDArray[np.int64]) -> AABB:
        raise NotImplementedError

    def _split(self, indices: npt.NDArray[np.int64], bounds: AABB, axis_state: int) -> tuple[npt.NDArray[np.int64], int]:
        """Return indices sorted for splitting and the axis state for children."""
        raise NotImplementedError

    def _is_small(self, size: int) -> bool:
        raise NotImplementedError

    # -- construction -------------------------------------------------------

    def _build(self, num_primitives: int, max_depth: int) -> None:
        if max_depth < 0:
            raise ValueError(f"max_depth must be non-negative, got {max_depth}")
        self.max_depth = max_depth
        self.num_primitives = num_primitives
        self._build_node(np.arange(num_primitives, dtype=np.int64), max_depth, 0)

    def _build_node(self, indices: npt.NDArray[np.int64], depth: int, axis_state: int) -> int:
        index = len(self.nodes)
        self.nodes.append(None)  # placeholder keeps pre-order numbering
        bounds = self._bounds(indices)
        ordered, child_state = self._split(indices, bounds, axis_state)
        size = len(ordered) // 2
        lower, upper = ordered[:size], ordered[size:]

        if self._is_small(size) or depth == 0:
            leaf_a = self._add_leaf(lower)
            leaf_b = self._add_leaf(upper)
            self.nodes[index] = PreLeafNode(bounds, depth, leaf_a, leaf_b)
        else:
            left = self._build_node(lower, depth - 1, child_state)
            right = self._build_node(upper, depth - 1, child_state)
            self.nodes[index] = InternalNode(bounds, depth, left, right)
        return index

    def _add_leaf(self, indices: npt.NDArray[np.int64]) -> int:
        self.leaves.append(Leaf(self._bounds(indices), np.asarray(indices, dtype=np.int64)))
        return len(self.leaves) - 1

    # -- inspection ---------------------------------------------------------

    @property
    def root(self) -> BVHNode:
        return self.nodes[0]

    def primitive_indices(self) -> npt.NDArray[np.int64]:
        """All primitive indices stored in leaves, in leaf order."""
        if not self.leaves:
            return np.zeros(0, dtype=np.int64)
        return np.concatenate([leaf.indices for leaf in self.leaves])

    # -- queries ------------------------------------------------------------

    def query(
        self,
        origin: npt.ArrayLike,
        direction: npt.ArrayLike,
        t_min: float = 0.0,
        t_max: float = np.inf,
    ) -> list[int]:
        """Indices of leaves whose boxes the ray overlaps.

        Descends from the root while the node depth counter is positive. A
        pre-leaf is reported only if its own box and the leaf's box are hit.

        Args:
            origin: Ray origin, shape (3,).
            direction: Ray direction, shape (3,).
            t_min: Lower bound of the ray interval.
            t_max: Upper bound of the ray interval.

        Returns:
            Leaf indices into ``self.leaves``; a superset of the leaves
            holding primitives the ray actually hits.
        """
        found: list[int] = []
        if self.nodes:
            self._query_node(0, self.max_depth, origin, direction, t_min, t_max, found)
        return found

    def _query_node(self, index, level, origin, direction, t_min, t_max, found) -> None:
        node = self.nodes[index]
        if isinstance(node, PreLeafNode):
            if node.bounds.hit(origin, direction, t_min, t_max):
                for leaf in (node.leaf_a, node.leaf_b):
                    if self.leaves[leaf].bounds.hit(origin, direction, t_min, t_max):
                        found.append(leaf)
        elif level > 0:
            for child in (node.left, node.right):
                if self.nodes[child].bounds.hit(origin, direction, t_min, t_max):
                    self._query_node(child, level - 1, origin, direction, t_min, t_max, found)

    def query_primitives(self, origin, direction, t_min: float = 0.0, t_max: float = np.inf) -> npt.NDArray[np.int64]:
        """Primitive indices from every leaf returned by ``query``."""
        leaves = self.query(origin, direction, t_min, t_max)
        if not leaves:
            return np.zeros(0, dtype=np.int64)
        return np.concatenate([self.leaves[i].indices for i in leaves])

    # -- device layout ------------------------------------------------------

    def flatten(self) -> FlatBVH:
        """Convert the arena into arrays with stackless skip links."""
        n = len(self.nodes)
        node_min = np.zeros((n, 3), dtype=np.float32)
        node_max = np.zeros((n, 3), dtype=np.float32)
        node_kind = np.zeros(n, dtype=np.int32)
        node_children = np.zeros((n, 2), dtype=np.int32)
        subtree_end = np.zeros(n, dtype=np.int64)

        # Children always have larger indices, so a reverse sweep sees them first
        for i in range(n - 1, -1, -1):
            node = self.nodes[i]
            node_min[i] = node.bounds.min
            node_max[i] = node.bounds.max
            if isinstance(node, PreLeafNode):
                node_kind[i] = NODE_PRE_LEAF
                node_children[i] = (node.leaf_a, node.leaf_b)
                subtree_end[i] = i + 1
            else:
                node_kind[i] = NODE_INTERNAL
                node_children[i] = (node.left, node.right)
                subtree_end[i] = subtree_end[node.right]
        node_skip = np.where(subtree_end >= n, -1, subtree_end).astype(np.int32)

        m = len(self.leaves)
        leaf_min = np.zeros((m, 3), dtype=np.float32)
        leaf_max = np.zeros((m, 3), dtype=np.float32)
        leaf_count = np.zeros(m, dtype=np.int32)
        for j, leaf in enumerate(self.leaves):
            leaf_min[j] = leaf.bounds.min
            leaf_max[j] = leaf.bounds.max
            leaf_count[j] = len(leaf)
        leaf_start = np.zeros(m, dtype=np.int32)
        if m:
            leaf_start[1:] = np.cumsum(leaf_count)[:-1]

        return FlatBVH(
            node_min=node_min,
            node_max=node_max,
            node_kind=node_kind,
            node_children=node_children,
            node_skip=node_skip,
            leaf_min=leaf_min,
            leaf_max=leaf_max,
            leaf_start=leaf_start,
            leaf_count=leaf_count,
            prim_indices=self.primitive_indices().astype(np.int32),
        )


class TriangleBVH(_BVH):
    """BVH over an (N, 3, 3) array of triangle vertex positions."""

    def __init__(self, positions: npt.ArrayLike, leaf_size: int = 100) -> None:
        super().__init__()
        self.positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3, 3)
        self.leaf_size = leaf_size

    @classmethod
    def build(cls, positions: npt.ArrayLike, leaf_size: int = 100, max_depth: int = 24) -> "TriangleBVH":
        """Build a triangle hierarchy.

        Args:
            positions: Triangle vertices, shape (N, 3, 3).
            leaf_size: A node becomes a pre-leaf once its half-size is at
                most this many triangles.
            max_depth: Depth budget; a node at depth 0 is always a pre-leaf.

        Returns:
            The constructed hierarchy.

        Raises:
            ValueError: If leaf_size is not positive or max_depth is negative.
        """
        if leaf_size < 1:
            raise ValueError(f"leaf_size must be at least 1, got {leaf_size}")
        bvh = cls(positions, leaf_size)
        bvh._build(len(bvh.positions), max_depth)
        return bvh

    def _bounds(self, indices):
        return AABB.from_triangles(self.positions[indices])

    def _split(self, indices, bounds, axis_state):
        axis = bounds.longest_axis()
        keys = self.positions[indices, 0, axis]
        return indices[np.argsort(keys, kind="stable")], axis_state

    def _is_small(self, size: int) -> bool:
        return size <= self.leaf_size


class SphereBVH(_BVH):
    """BVH over spheres given as (N, 3) centers and (N,) radii."""

    def __init__(self, centers: npt.ArrayLike, radii: npt.ArrayLike) -> None:
        super().__init__()
        self.centers = np.asarray(centers, dtype=np.float64).reshape(-1, 3)
        self.radii = np.asarray(radii, dtype=np.float64).reshape(-1)
        if len(self.centers) != len(self.radii):
            raise ValueError(f"Got {len(self.centers)} centers but {len(self.radii)} radii")

    @classmethod
    def build(cls, centers: npt.ArrayLike, radii: npt.ArrayLike, max_depth: int = 24) -> "SphereBVH":
        """Build a sphere hierarchy with a cycling split axis."""
        bvh = cls(centers, radii)
        bvh._build(len(bvh.centers), max_depth)
        return bvh

    def _bounds(self, indices):
        return AABB.from_spheres(self.centers[indices], self.radii[indices])

    def _split(self, indices, bounds, axis_state):
        axis = (axis_state + 1) % 3
        keys = self.centers[indices, axis]
        return indices[np.argsort(keys, kind="stable")], axis

    def _is_small(self, size: int) -> bool:
        return size <= 1
