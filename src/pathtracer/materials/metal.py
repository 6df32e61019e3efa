"""Metal (specular reflective) scattering.

Metals reflect the incident ray about the surface normal, then fuzz the
reflected direction by ``roughness`` times a random point in the unit sphere.
Rays perturbed below the surface are absorbed.

Example:
    >>> # Within a Taichi kernel:
    >>> # direction, attenuation, did_scatter = scatter_metal(
    >>> #     albedo, roughness, incident_dir, normal
    >>> # )
"""

import taichi as ti
import taichi.math as tm

from src.pathtracer.core.vector import random_in_unit_sphere, reflect, vec3


@ti.func
def scatter_metal(albedo: vec3, roughness: ti.f32, incident_direction: vec3, normal: vec3):
    """Compute a fuzzed mirror reflection.

    Args:
        albedo: The reflective color (RGB).
        roughness: Fuzz radius in [0, 1]. 0 is a perfect mirror.
        incident_direction: The incoming ray direction (any length).
        normal: The surface normal (unit length).

    Returns:
        A tuple of (scattered_direction, attenuation, did_scatter) where
        did_scatter is 0 if the fuzzed direction points below the surface.
    """
    reflected = reflect(tm.normalize(incident_direction), normal)
    scattered_direction = tm.normalize(reflected + roughness * random_in_unit_sphere())

    did_scatter = 1
    if tm.dot(scattered_direction, normal) <= 0.0:
        did_scatter = 0

    return scattered_direction, albedo, did_scatter
