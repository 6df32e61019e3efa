"""Core rendering module.

Components:
    vector: Ray structure, vector algebra, sampling helpers and homogeneous transforms
    onb: Orthonormal basis around a normal
    integrator: Path tracing radiance estimate and per-pass kernels
    renderer: Parallel sample accumulation and image output

All compute-intensive operations use Taichi kernels.
"""

from .onb import build_from_w, onb_local
from .vector import (
    Ray,
    direction,
    fresnel,
    length_squared,
    make_ray,
    near_zero,
    point,
    random_in_unit_disk,
    random_in_unit_sphere,
    ray_at,
    reflect,
    refract,
    rotation,
    scaling,
    schlick,
    spherical_uv,
    transform_directions,
    transform_points,
    translation,
    vec2,
    vec3,
)

# Note: integrator and renderer are NOT imported here to avoid circular imports.
# Import them from src.pathtracer.core.integrator / src.pathtracer.core.renderer.

__all__ = [
    "Ray",
    "ray_at",
    "make_ray",
    "vec2",
    "vec3",
    "length_squared",
    "reflect",
    "refract",
    "schlick",
    "fresnel",
    "near_zero",
    "spherical_uv",
    "random_in_unit_sphere",
    "random_in_unit_disk",
    "point",
    "direction",
    "translation",
    "scaling",
    "rotation",
    "transform_points",
    "transform_directions",
    "build_from_w",
    "onb_local",
]
