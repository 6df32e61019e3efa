"""Sphere primitive and the shared hit record.

Intersection solves |o + t d - c|^2 = r^2 with the robust quadratic formula
from Ray Tracing Gems to avoid catastrophic cancellation. The same solver is
reused by the sky model for the planet and atmosphere shells.

A tangent ray (zero discriminant) is treated as a miss. Normals are always
the outward geometric normal; materials decide which side of the surface a
ray is on from the sign of dot(d, n).

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from src.pathtracer.geometry.sphere import Sphere, HitRecord, hit_sphere
    >>> sphere = Sphere(center=ti.math.vec3(0, 0, -1), radius=0.5, material_id=0)
    >>> # rec = hit_sphere(ray, sphere, 1e-4, 1e30, rec) inside a kernel
"""

import taichi as ti
import taichi.math as tm

from src.pathtracer.core.vector import Ray, ray_at, spherical_uv, vec3
from src.pathtracer.materials.material import apply_normal_map


@ti.dataclass
class Sphere:
    """A sphere defined by center point, radius and material.

    Attributes:
        center: The center point of the sphere (vec3).
        radius: The radius of the sphere (positive float).
        material_id: Id of the sphere's material.
    """

    center: vec3
    radius: ti.f32
    material_id: ti.i32


@ti.dataclass
class HitRecord:
    """Record of the nearest ray-primitive intersection found so far.

    Attributes:
        hit: 1 once any primitive has been accepted, 0 otherwise.
        t: Ray parameter of the hit.
        point: World-space hit point.
        normal: Unit shading normal (outward, possibly normal-mapped).
        u: Primitive-local coordinate (sphere u or barycentric u).
        v: Primitive-local coordinate (sphere v or barycentric v).
        u_tex: Texture-space u used for texture lookups.
        v_tex: Texture-space v used for texture lookups.
        material_id: Id of the hit material.
    """

    hit: ti.i32
    t: ti.f32
    point: vec3
    normal: vec3
    u: ti.f32
    v: ti.f32
    u_tex: ti.f32
    v_tex: ti.f32
    material_id: ti.i32


@ti.func
def empty_hit_record() -> HitRecord:
    zero = vec3(0.0, 0.0, 0.0)
    return HitRecord(hit=0, t=0.0, point=zero, normal=zero, u=0.0, v=0.0, u_tex=0.0, v_tex=0.0, material_id=-1)


@ti.func
def _solve_quadratic_robust(h: ti.f32, a: ti.f32, c: ti.f32, sqrt_d: ti.f32):
    """Solve a*t^2 + 2*h*t + c = 0 given sqrt(h^2 - a*c).

    Returns:
        Tuple of (t0, t1) where t0 <= t1.
    """
    sign_h = ti.select(h < 0.0, -1.0, 1.0)
    q = -(h + sign_h * sqrt_d)

    t0 = 0.0
    t1 = 0.0
    if ti.abs(q) < 1e-10:
        t0 = (-h - sqrt_d) / a
        t1 = (-h + sqrt_d) / a
    else:
        t0 = q / a
        t1 = c / q

    if t0 > t1:
        temp = t0
        t0 = t1
        t1 = temp
    return t0, t1


@ti.func
def solve_sphere(origin: vec3, direction: vec3, center: vec3, radius: ti.f32):
    """Intersect a ray's supporting line with a sphere.

    Args:
        origin: Ray origin.
        direction: Ray direction (any non-zero length).
        center: Sphere center.
        radius: Sphere radius.

    Returns:
        A tuple (hit, t0, t1) with t0 <= t1. hit is 0 when the discriminant
        is not strictly positive.
    """
    oc = origin - center
    a = tm.dot(direction, direction)
    h = tm.dot(direction, oc)
    c = tm.dot(oc, oc) - radius * radius
    discriminant = h * h - a * c

    hit = 0
    t0 = 0.0
    t1 = 0.0
    if discriminant > 0.0:
        t0, t1 = _solve_quadratic_robust(h, a, c, ti.sqrt(discriminant))
        hit = 1
    return hit, t0, t1


@ti.func
def hit_sphere(ray: Ray, sphere: Sphere, t_min: ti.f32, t_max: ti.f32, rec: HitRecord) -> HitRecord:
    """Test a ray against a sphere within the open interval (t_min, t_max).

    The near root is preferred; the far root is used when the near one falls
    outside the interval (a ray starting inside the sphere).

    Args:
        ray: The ray to test.
        sphere: The sphere.
        t_min: Lower bound of accepted t.
        t_max: Upper bound of accepted t (the closest hit so far).
        rec: Current nearest-hit record.

    Returns:
        A new record for this sphere if the hit is accepted, otherwise rec
        unchanged.
    """
    result = rec
    hit, t0, t1 = solve_sphere(ray.origin, ray.direction, sphere.center, sphere.radius)
    if hit == 1:
        t = t0
        valid = t > t_min and t < t_max
        if not valid:
            t = t1
            valid = t > t_min and t < t_max
        if valid:
            p = ray_at(ray, t)
            normal = tm.normalize((p - sphere.center) / sphere.radius)
            u, v = spherical_uv(tm.normalize(sphere.center - p))
            normal = apply_normal_map(normal, sphere.material_id, u, v)
            result = HitRecord(
                hit=1,
                t=t,
                point=p,
                normal=normal,
                u=u,
                v=v,
                u_tex=u,
                v_tex=v,
                material_id=sphere.material_id,
            )
    return result
