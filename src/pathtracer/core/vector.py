"""Ray data structure, vector utilities and host-side transforms.

This module provides the Ray dataclass and the vector helpers shared by every
device-side stage of the path tracer (intersection, scattering, sky). All
``@ti.func`` helpers are meant to be called from inside Taichi kernels.

Host-side helpers at the bottom of the module build 4x4 homogeneous matrices
with numpy. They are used when loading meshes so that vertices can be placed
in the world before the acceleration structures are built.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> origin = ti.math.vec3(0.0, 0.0, 0.0)
    >>> direction = ti.math.vec3(0.0, 0.0, -1.0)
    >>> ray = Ray(origin=origin, direction=direction)
    >>> point = ray_at(ray, 5.0)  # Point 5 units along the ray
"""

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

# Type aliases for vectors using Taichi's math module
vec3 = tm.vec3
vec2 = tm.vec2


@ti.dataclass
class Ray:
    """A ray with an origin point and direction vector.

    Attributes:
        origin: The starting point of the ray (vec3).
        direction: The direction vector of the ray (vec3). Camera rays are not
            normalized, so every consumer must tolerate non-unit directions.
    """

    origin: vec3
    direction: vec3


@ti.func
def ray_at(ray: Ray, t: ti.f32) -> vec3:
    """Compute the point along the ray at parameter t.

    Args:
        ray: The ray to evaluate.
        t: The parameter value. Positive values are in front of the origin.

    Returns:
        The point ray.origin + t * ray.direction.
    """
    return ray.origin + t * ray.direction


@ti.func
def make_ray(origin: vec3, direction: vec3) -> Ray:
    """Create a ray from origin and direction inside a kernel."""
    return Ray(origin=origin, direction=direction)


# =============================================================================
# Vector Utility Functions
# =============================================================================


@ti.func
def length_squared(v: vec3) -> ti.f32:
    """Squared Euclidean length, avoiding the square root."""
    return tm.dot(v, v)


@ti.func
def reflect(incident: vec3, normal: vec3) -> vec3:
    """Reflect an incident vector about a normal.

    Args:
        incident: The incoming direction vector (pointing toward the surface).
        normal: The surface normal (should be normalized).

    Returns:
        The reflected direction vector, v - 2(v.n)n.
    """
    return incident - 2.0 * tm.dot(incident, normal) * normal


@ti.func
def refract(incident: vec3, normal: vec3, ni_over_nt: ti.f32):
    """Refract an incident vector through a surface using Snell's law.

    The incident direction is normalized first. When the discriminant
    1 - eta^2 (1 - cos^2) is not positive the ray undergoes total internal
    reflection and no refracted direction exists.

    Args:
        incident: The incoming direction vector (any length).
        normal: The surface normal on the incident side (normalized).
        ni_over_nt: Ratio of refractive indices n_incident / n_transmitted.

    Returns:
        A tuple (direction, refracted) where refracted is 1 on success and 0
        on total internal reflection (direction is then zero).
    """
    uv = tm.normalize(incident)
    dt = tm.dot(uv, normal)
    discriminant = 1.0 - ni_over_nt * ni_over_nt * (1.0 - dt * dt)
    result = vec3(0.0, 0.0, 0.0)
    refracted = 0
    if discriminant > 0.0:
        result = ni_over_nt * (uv - normal * dt) - normal * ti.sqrt(discriminant)
        refracted = 1
    return result, refracted


@ti.func
def schlick(cosine: ti.f32, ref_idx: ti.f32) -> ti.f32:
    """Compute Fresnel reflectance using Schlick's approximation.

    Args:
        cosine: Cosine of the angle between incident direction and normal.
        ref_idx: Index of refraction of the medium.

    Returns:
        The approximate Fresnel reflectance coefficient.
    """
    r0 = ((1.0 - ref_idx) / (1.0 + ref_idx)) ** 2
    return r0 + (1.0 - r0) * ((1.0 - cosine) ** 5)


@ti.func
def fresnel(n1: ti.f32, n2: ti.f32, normal: vec3, incident: vec3) -> ti.f32:
    """Schlick reflectance with an explicit total internal reflection check.

    Used by the layered BSDF, where the indices on either side of the
    interface are chosen from the orientation of the incoming ray.

    Args:
        n1: Index of refraction on the incident side.
        n2: Index of refraction on the transmitted side.
        normal: Surface normal (normalized).
        incident: Incoming direction (normalized).

    Returns:
        Reflectance in [0, 1]; exactly 1 under total internal reflection.
    """
    r0 = ((n1 - n2) / (n1 + n2)) ** 2
    cos_x = -tm.dot(normal, incident)
    result = 1.0
    total_internal = 0
    if n1 > n2:
        n = n1 / n2
        sin_t2 = n * n * (1.0 - cos_x * cos_x)
        if sin_t2 > 1.0:
            total_internal = 1
        else:
            cos_x = ti.sqrt(1.0 - sin_t2)
    if total_internal == 0:
        x = 1.0 - cos_x
        result = r0 + (1.0 - r0) * x * x * x * x * x
    return result


@ti.func
def near_zero(v: vec3) -> ti.i32:
    """Return 1 if all components of v are within 1e-8 of zero."""
    s = 1e-8
    return ti.abs(v.x) < s and ti.abs(v.y) < s and ti.abs(v.z) < s


@ti.func
def spherical_uv(d: vec3):
    """Map a unit direction to equirectangular (u, v) coordinates.

    u = 0.5 - atan2(d.z, d.x) / 2pi and v = 0.5 + asin(d.y) / pi, so both
    coordinates lie in [0, 1].

    Args:
        d: A unit-length direction.

    Returns:
        A tuple (u, v).
    """
    u = 0.5 - ti.atan2(d.z, d.x) / (2.0 * tm.pi)
    v = 0.5 + ti.asin(tm.clamp(d.y, -1.0, 1.0)) / tm.pi
    return u, v


# =============================================================================
# Random Sampling Utilities for Monte Carlo
# =============================================================================


@ti.func
def random_in_unit_sphere() -> vec3:
    """Generate a random point strictly inside the unit sphere.

    Uses rejection sampling; the loop is bounded so kernels always terminate.

    Returns:
        A random point with length < 1.
    """
    p = vec3(0.0, 0.0, 0.0)
    found = False
    for _ in range(100):
        if not found:
            candidate = vec3(
                ti.random(ti.f32) * 2.0 - 1.0,
                ti.random(ti.f32) * 2.0 - 1.0,
                ti.random(ti.f32) * 2.0 - 1.0,
            )
            if length_squared(candidate) < 1.0:
                p = candidate
                found = True
    return p


@ti.func
def random_in_unit_disk() -> vec3:
    """Generate a random point (x, y, 0) inside the unit disk.

    Used by the thin-lens camera to jitter ray origins across the aperture.
    """
    p = vec3(0.0, 0.0, 0.0)
    found = False
    for _ in range(100):
        if not found:
            candidate = vec3(
                ti.random(ti.f32) * 2.0 - 1.0,
                ti.random(ti.f32) * 2.0 - 1.0,
                0.0,
            )
            if candidate.x * candidate.x + candidate.y * candidate.y < 1.0:
                p = candidate
                found = True
    return p


# =============================================================================
# Host-side Homogeneous Transforms
# =============================================================================


def point(x: float, y: float, z: float) -> npt.NDArray[np.float64]:
    """Homogeneous point (x, y, z, 1)."""
    return np.array([x, y, z, 1.0], dtype=np.float64)


def direction(x: float, y: float, z: float) -> npt.NDArray[np.float64]:
    """Homogeneous direction (x, y, z, 0); unaffected by translation."""
    return np.array([x, y, z, 0.0], dtype=np.float64)


def translation(dx: float, dy: float, dz: float) -> npt.NDArray[np.float64]:
    """4x4 translation matrix."""
    m = np.eye(4, dtype=np.float64)
    m[:3, 3] = (dx, dy, dz)
    return m


def scaling(sx: float, sy: float, sz: float) -> npt.NDArray[np.float64]:
    """4x4 non-uniform scaling matrix."""
    return np.diag([sx, sy, sz, 1.0]).astype(np.float64)


def rotation(axis: str, degrees: float) -> npt.NDArray[np.float64]:
    """4x4 right-handed rotation about a principal axis.

    Args:
        axis: One of "x", "y" or "z".
        degrees: Rotation angle in degrees.

    Returns:
        The rotation matrix.

    Raises:
        ValueError: If axis is not a principal axis name.
    """
    theta = np.radians(degrees)
    c, s = np.cos(theta), np.sin(theta)
    m = np.eye(4, dtype=np.float64)
    if axis == "x":
        m[1:3, 1:3] = [[c, -s], [s, c]]
    elif axis == "y":
        m[0, 0], m[0, 2], m[2, 0], m[2, 2] = c, s, -s, c
    elif axis == "z":
        m[0:2, 0:2] = [[c, -s], [s, c]]
    else:
        raise ValueError(f"Unknown rotation axis '{axis}', expected 'x', 'y' or 'z'")
    return m


def transform_points(matrix: npt.ArrayLike, points: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Apply a 4x4 transform to an array of 3D points (w = 1).

    Args:
        matrix: 4x4 homogeneous transform.
        points: Array of shape (..., 3).

    Returns:
        Transformed points with the same shape as the input.
    """
    m = np.asarray(matrix, dtype=np.float64)
    p = np.asarray(points, dtype=np.float64)
    return p @ m[:3, :3].T + m[:3, 3]


def transform_directions(matrix: npt.ArrayLike, directions: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Apply the linear part of a 4x4 transform to directions (w = 0).

    Args:
        matrix: 4x4 homogeneous transform.
        directions: Array of shape (..., 3).

    Returns:
        Transformed directions (not renormalized).
    """
    m = np.asarray(matrix, dtype=np.float64)
    d = np.asarray(directions, dtype=np.float64)
    return d @ m[:3, :3].T
