"""Triangle primitive with Moller-Trumbore intersection.

Each triangle stores its three vertex positions, optional per-vertex
texture coordinates and normals, a flat normal and a smooth-shading flag.
Barycentric weights (1 - u - v, u, v) belong to vertices (0, 1, 2).

Texture UVs are interpolated from the vertex coordinates only when the
material needs them (image textures and normal maps); otherwise the
barycentric (u, v) is used directly as the surface coordinate.
"""

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from src.pathtracer.core.vector import Ray, ray_at, vec2, vec3
from src.pathtracer.geometry.sphere import HitRecord
from src.pathtracer.materials.material import apply_normal_map, needs_texture_uv

# Rays with |det| below this are treated as parallel to the triangle plane
PARALLEL_EPSILON = 1e-8


@ti.dataclass
class Triangle:
    """A triangle with per-vertex attributes.

    Attributes:
        v0, v1, v2: Vertex positions.
        t0, t1, t2: Vertex texture coordinates.
        n0, n1, n2: Vertex normals (unit length).
        normal: Flat normal used when smooth shading is off.
        smooth: 1 to interpolate vertex normals.
        material_id: Id of the triangle's material.
    """

    v0: vec3
    v1: vec3
    v2: vec3
    t0: vec2
    t1: vec2
    t2: vec2
    n0: vec3
    n1: vec3
    n2: vec3
    normal: vec3
    smooth: ti.i32
    material_id: ti.i32


@ti.func
def hit_triangle(ray: Ray, tri: Triangle, t_min: ti.f32, t_max: ti.f32, rec: HitRecord) -> HitRecord:
    """Test a ray against a triangle within the open interval (t_min, t_max).

    Args:
        ray: The ray to test (direction need not be unit length).
        tri: The triangle.
        t_min: Lower bound of accepted t.
        t_max: Upper bound of accepted t (the closest hit so far).
        rec: Current nearest-hit record.

    Returns:
        A new record for this triangle if the hit is accepted, otherwise rec
        unchanged.
    """
    result = rec
    edge1 = tri.v1 - tri.v0
    edge2 = tri.v2 - tri.v0
    h = tm.cross(ray.direction, edge2)
    det = tm.dot(edge1, h)
    if ti.abs(det) >= PARALLEL_EPSILON:
        f = 1.0 / det
        s = ray.origin - tri.v0
        u = f * tm.dot(s, h)
        if u >= 0.0 and u <= 1.0:
            q = tm.cross(s, edge1)
            v = f * tm.dot(ray.direction, q)
            if v >= 0.0 and u + v <= 1.0:
                t = f * tm.dot(edge2, q)
                if t > t_min and t < t_max:
                    result = _triangle_record(ray, tri, t, u, v)
    return result


@ti.func
def _triangle_record(ray: Ray, tri: Triangle, t: ti.f32, u: ti.f32, v: ti.f32) -> HitRecord:
    w = 1.0 - u - v
    u_tex = u
    v_tex = v
    if needs_texture_uv(tri.material_id):
        uv = tri.t0 * w + tri.t1 * u + tri.t2 * v
        u_tex = uv.x
        v_tex = uv.y

    normal = tri.normal
    if tri.smooth == 1:
        normal = tm.normalize(tri.n0 * w + tri.n1 * u + tri.n2 * v)
    normal = apply_normal_map(normal, tri.material_id, u_tex, v_tex)

    return HitRecord(
        hit=1,
        t=t,
        point=ray_at(ray, t),
        normal=normal,
        u=u,
        v=v,
        u_tex=u_tex,
        v_tex=v_tex,
        material_id=tri.material_id,
    )


# =============================================================================
# Host-side Helpers
# =============================================================================


def face_normals(positions: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Unit geometric normals (v1 - v0) x (v2 - v0) for (N, 3, 3) positions.

    Degenerate triangles get a zero normal.
    """
    p = np.asarray(positions, dtype=np.float64).reshape(-1, 3, 3)
    n = np.cross(p[:, 1] - p[:, 0], p[:, 2] - p[:, 0])
    length = np.linalg.norm(n, axis=1, keepdims=True)
    return np.divide(n, length, out=np.zeros_like(n), where=length > 0.0)


def flat_normals(vertex_normals: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Flat normals as the normalized sum of (N, 3, 3) vertex normals."""
    n = np.asarray(vertex_normals, dtype=np.float64).reshape(-1, 3, 3).sum(axis=1)
    length = np.linalg.norm(n, axis=1, keepdims=True)
    return np.divide(n, length, out=np.zeros_like(n), where=length > 0.0)
