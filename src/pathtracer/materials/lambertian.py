"""Lambertian (ideal diffuse) scattering.

The scattered direction is the surface normal plus a uniformly distributed
point inside the unit sphere, which yields a cosine-weighted distribution
about the normal. Because the sampling density matches the BRDF's cosine
term, the per-bounce throughput weight is simply the albedo.

Example:
    >>> # Within a Taichi kernel:
    >>> # direction, attenuation, did_scatter = scatter_lambertian(albedo, normal)
"""

import taichi as ti
import taichi.math as tm

from src.pathtracer.core.vector import near_zero, random_in_unit_sphere, vec3


@ti.func
def scatter_lambertian(albedo: vec3, normal: vec3):
    """Sample a diffuse bounce.

    Args:
        albedo: The diffuse reflectance color (RGB).
        normal: The surface normal at the hit point (unit length).

    Returns:
        A tuple of (scattered_direction, attenuation, did_scatter). Diffuse
        surfaces always scatter.
    """
    scattered_direction = normal + random_in_unit_sphere()

    # The sample can cancel the normal almost exactly
    if near_zero(scattered_direction):
        scattered_direction = normal

    return tm.normalize(scattered_direction), albedo, 1
