"""Dielectric (glass/water) scattering.

Key physics:
    - Snell's law for refraction: n1 * sin(theta1) = n2 * sin(theta2)
    - Schlick's approximation for Fresnel reflectance
    - Total internal reflection when sin(theta_t) > 1

Hit records carry geometric normals that are not flipped toward the viewer,
so the side of the interface is decided here from the sign of dot(d, n).
The reflection probability is the Schlick reflectance raised by the
material's specularity; reflected rays are white and refracted rays carry
the albedo, which tints coloured glass.

Example:
    >>> # Within a Taichi kernel:
    >>> # direction, attenuation, did_scatter = scatter_dielectric(
    >>> #     albedo, ior, specularity, incident_dir, normal
    >>> # )
"""

import taichi as ti
import taichi.math as tm

from src.pathtracer.core.vector import reflect, refract, schlick, vec3


@ti.func
def orient_interface(incident: vec3, normal: vec3, ior: ti.f32):
    """Pick the normal facing the incident ray and the index ratio.

    Args:
        incident: Unit incoming direction.
        normal: Unit outward geometric normal.
        ior: Index of refraction of the material.

    Returns:
        A tuple (outward_normal, ni_over_nt, cosine) where cosine is the
        value fed to Schlick's approximation.
    """
    d_dot_n = tm.dot(incident, normal)
    outward_normal = normal
    ni_over_nt = 1.0 / ior
    cosine = -d_dot_n
    if d_dot_n > 0.0:
        # Leaving the material
        outward_normal = -normal
        ni_over_nt = ior
        cosine = ior * d_dot_n
    return outward_normal, ni_over_nt, cosine


@ti.func
def scatter_dielectric(albedo: vec3, ior: ti.f32, specularity: ti.f32, incident_direction: vec3, normal: vec3):
    """Choose between Fresnel reflection and refraction.

    Args:
        albedo: Tint applied to refracted rays.
        ior: Index of refraction of the material.
        specularity: Extra reflection probability in [0, 1].
        incident_direction: The incoming ray direction (any length).
        normal: The outward surface normal (unit length).

    Returns:
        A tuple of (scattered_direction, attenuation, did_scatter). Dielectrics
        always scatter.
    """
    incident = tm.normalize(incident_direction)
    outward_normal, ni_over_nt, cosine = orient_interface(incident, normal, ior)
    refracted, did_refract = refract(incident, outward_normal, ni_over_nt)

    reflect_prob = 1.0
    if did_refract == 1:
        reflect_prob = tm.clamp(schlick(cosine, ior) + specularity, 0.0, 1.0)

    scattered_direction = refracted
    attenuation = albedo
    if ti.random(ti.f32) < reflect_prob:
        scattered_direction = reflect(incident, normal)
        attenuation = vec3(1.0, 1.0, 1.0)

    return tm.normalize(scattered_direction), attenuation, 1
