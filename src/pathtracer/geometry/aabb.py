"""Axis-aligned bounding boxes.

Boxes are built on the host (numpy, float64) while the BVH is constructed,
then uploaded as float32 min/max pairs so that traversal kernels can run the
same slab test on the device.

The slab test relies on the reciprocal of the direction: an axis-parallel ray
produces +-inf slab distances and the interval logic still resolves. An empty
box (min > max on any axis) never reports a hit.
"""

from dataclasses import dataclass

import numpy as np
import numpy.typing as npt
import taichi as ti

from src.pathtracer.core.vector import vec3

# Stand-in for +inf in device code
T_INF = 1e30


@dataclass(frozen=True, eq=False)
class AABB:
    """Axis-aligned box with inclusive corners.

    Attributes:
        min: Lower corner, shape (3,).
        max: Upper corner, shape (3,).
    """

    min: npt.NDArray[np.float64]
    max: npt.NDArray[np.float64]

    @classmethod
    def empty(cls) -> "AABB":
        """A box that contains nothing and is never hit."""
        return cls(np.full(3, np.inf), np.full(3, -np.inf))

    @classmethod
    def from_points(cls, points: npt.ArrayLike) -> "AABB":
        """Smallest box enclosing an array of points of shape (..., 3)."""
        p = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(p) == 0:
            return cls.empty()
        return cls(p.min(axis=0), p.max(axis=0))

    @classmethod
    def from_triangles(cls, positions: npt.ArrayLike) -> "AABB":
        """Box enclosing every vertex of an (N, 3, 3) triangle array."""
        return cls.from_points(positions)

    @classmethod
    def from_spheres(cls, centers: npt.ArrayLike, radii: npt.ArrayLike) -> "AABB":
        """Box enclosing spheres given (N, 3) centers and (N,) radii."""
        c = np.asarray(centers, dtype=np.float64).reshape(-1, 3)
        r = np.asarray(radii, dtype=np.float64).reshape(-1, 1)
        if len(c) == 0:
            return cls.empty()
        return cls((c - r).min(axis=0), (c + r).max(axis=0))

    @property
    def is_empty(self) -> bool:
        return bool(np.any(self.min > self.max))

    def extent(self) -> npt.NDArray[np.float64]:
        """Per-axis size; zeros for an empty box."""
        if self.is_empty:
            return np.zeros(3)
        return self.max - self.min

    def longest_axis(self) -> int:
        """Index of the largest extent; ties resolve in x, y, z order."""
        return int(np.argmax(self.extent()))

    def slab_interval(self, origin: npt.ArrayLike, direction: npt.ArrayLike) -> tuple[float, float]:
        """Entry and exit ray parameters of the unbounded slab intersection.

        Args:
            origin: Ray origin, shape (3,).
            direction: Ray direction, shape (3,). Zero components are allowed.

        Returns:
            (t_enter, t_exit). The ray misses when t_enter > t_exit.
        """
        o = np.asarray(origin, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        with np.errstate(divide="ignore", invalid="ignore"):
            inv = 1.0 / d
            t0 = (self.min - o) * inv
            t1 = (self.max - o) * inv
        # 0 * inf appears when the origin lies on a slab plane of a zero axis
        near = np.where(np.isnan(t0) | np.isnan(t1), -np.inf, np.minimum(t0, t1))
        far = np.where(np.isnan(t0) | np.isnan(t1), np.inf, np.maximum(t0, t1))
        return float(near.max()), float(far.min())

    def hit(
        self,
        origin: npt.ArrayLike,
        direction: npt.ArrayLike,
        t_min: float = 0.0,
        t_max: float = np.inf,
    ) -> bool:
        """Slab test of a ray against the box within [t_min, t_max].

        Returns:
            False for an empty box, for a box entirely behind the origin, or
            when the slab interval does not overlap [t_min, t_max].
        """
        if self.is_empty:
            return False
        t_enter, t_exit = self.slab_interval(origin, direction)
        if t_exit < 0.0 or t_enter > t_exit:
            return False
        return max(t_enter, t_min) <= min(t_exit, t_max)

    def to_dict(self) -> dict:
        return {"min": self.min.tolist(), "max": self.max.tolist()}


# =============================================================================
# Device Slab Test
# =============================================================================


@ti.func
def hit_aabb(box_min: vec3, box_max: vec3, origin: vec3, direction: vec3, t_min: ti.f32, t_max: ti.f32) -> ti.i32:
    """Slab test on the device.

    A zero direction component is resolved without the reciprocal: the ray
    either lies inside that slab for all t or misses the box outright.

    Args:
        box_min: Lower corner. An inverted box (min.x > max.x) never hits.
        box_max: Upper corner.
        origin: Ray origin.
        direction: Ray direction (any length).
        t_min: Lower bound of the accepted ray interval.
        t_max: Upper bound of the accepted ray interval.

    Returns:
        1 if the ray overlaps the box within [t_min, t_max], 0 otherwise.
    """
    t_enter = -T_INF
    t_exit = T_INF
    missed = 0
    if box_min.x > box_max.x:
        missed = 1
    for k in ti.static(range(3)):
        if direction[k] == 0.0:
            if origin[k] < box_min[k] or origin[k] > box_max[k]:
                missed = 1
        else:
            inv = 1.0 / direction[k]
            t0 = (box_min[k] - origin[k]) * inv
            t1 = (box_max[k] - origin[k]) * inv
            t_enter = ti.max(t_enter, ti.min(t0, t1))
            t_exit = ti.min(t_exit, ti.max(t0, t1))
    result = 0
    if missed == 0 and t_exit >= 0.0 and t_enter <= t_exit:
        if ti.max(t_enter, t_min) <= ti.min(t_exit, t_max):
            result = 1
    return result
