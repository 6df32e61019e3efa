"""Layered BSDF: clearcoat over a metallic, transmissive or diffuse base.

Two microfacet normals are drawn from the GGX distribution around the
shading normal: one with the clearcoat roughness for the coat layer and one
with the base roughness for everything underneath. The coat reflects with
probability

    p = fresnel(n1, n2, n', d) * max(0, 1 - theta_c) * specularity^(1 / 2.2)

where theta_c is the polar angle of the clearcoat half-vector, so rough
coats reflect less often. Coat reflections are white; all other lobes are
tinted by the albedo.

The base lobe is chosen in a fixed order with one uniform draw per decision:

1. metallic: coat reflection or a mirror reflection about n'. Fails if the
   result points below n'.
2. transmission: coat reflection or refraction through n'. Total internal
   reflection always takes the reflection.
3. otherwise: coat reflection or a diffuse bounce about n'.

Example:
    >>> # Within a Taichi kernel:
    >>> # direction, attenuation, did_scatter = scatter_bsdf(
    >>> #     albedo, roughness, ior, specularity, clearcoat_roughness,
    >>> #     metallic, transmission, incident_dir, normal
    >>> # )
"""

import taichi as ti
import taichi.math as tm

from src.pathtracer.core.onb import build_from_w, onb_local
from src.pathtracer.core.vector import (
    fresnel,
    near_zero,
    random_in_unit_sphere,
    reflect,
    refract,
    schlick,
    vec3,
)
from src.pathtracer.materials.dielectric import orient_interface

CLEARCOAT_GAMMA = 1.0 / 2.2


@ti.func
def sample_ggx(xi1: ti.f32, xi2: ti.f32, a: ti.f32):
    """Sample GGX microfacet spherical angles.

    Args:
        xi1: Uniform sample in [0, 1) for the azimuth.
        xi2: Uniform sample in [0, 1) for the polar angle.
        a: GGX width parameter (roughness squared).

    Returns:
        A tuple (phi, theta) with phi in [0, 2pi) and theta in [0, pi/2].
    """
    phi = 2.0 * tm.pi * xi1
    cos2 = (1.0 - xi2) / ((a * a - 1.0) * xi2 + 1.0)
    theta = ti.acos(ti.sqrt(tm.clamp(cos2, 0.0, 1.0)))
    return phi, theta


@ti.func
def generate_ggx_normal(normal: vec3, roughness: ti.f32):
    """Draw a GGX half-vector around a normal.

    Returns:
        A tuple (half_vector, theta) where half_vector is a unit world-space
        direction in the hemisphere of normal and theta its polar angle.
    """
    phi, theta = sample_ggx(ti.random(ti.f32), ti.random(ti.f32), roughness * roughness)
    sin_theta = ti.sin(theta)
    local = vec3(sin_theta * ti.cos(phi), sin_theta * ti.sin(phi), ti.cos(theta))
    u, v, w = build_from_w(normal)
    return tm.normalize(onb_local(u, v, w, local)), theta


@ti.func
def scatter_bsdf(
    albedo: vec3,
    roughness: ti.f32,
    ior: ti.f32,
    specularity: ti.f32,
    clearcoat_roughness: ti.f32,
    metallic: ti.f32,
    transmission: ti.f32,
    incident_direction: vec3,
    normal: vec3,
):
    """Sample the layered BSDF.

    Args:
        albedo: Base colour (RGB).
        roughness: GGX roughness of the base layer.
        ior: Index of refraction for Fresnel and refraction.
        specularity: Clearcoat strength in [0, 1].
        clearcoat_roughness: GGX roughness of the coat.
        metallic: Probability of the metallic lobe.
        transmission: Probability of the transmissive lobe.
        incident_direction: Incoming ray direction (any length).
        normal: Shading normal (unit length).

    Returns:
        A tuple of (scattered_direction, attenuation, did_scatter).
    """
    incident = tm.normalize(incident_direction)
    clearcoat_normal, clearcoat_theta = generate_ggx_normal(normal, clearcoat_roughness)
    micro_normal, _ = generate_ggx_normal(normal, roughness)

    n1 = 1.0
    n2 = ior
    if tm.dot(incident, micro_normal) > 0.0:
        n1 = ior
        n2 = 1.0

    reflected = reflect(incident, micro_normal)
    reflected_clearcoat = reflect(incident, clearcoat_normal)
    clearcoat = specularity**CLEARCOAT_GAMMA
    reflect_prob = fresnel(n1, n2, micro_normal, incident) * ti.max(0.0, 1.0 - clearcoat_theta) * clearcoat

    white = vec3(1.0, 1.0, 1.0)
    scattered_direction = reflected
    attenuation = albedo
    did_scatter = 1

    if ti.random(ti.f32) < metallic:
        if ti.random(ti.f32) < reflect_prob:
            scattered_direction = reflected_clearcoat
            attenuation = white
        if tm.dot(scattered_direction, micro_normal) <= 0.0:
            did_scatter = 0
    elif ti.random(ti.f32) < transmission:
        outward_normal, ni_over_nt, cosine = orient_interface(incident, micro_normal, ior)
        refracted, did_refract = refract(incident, outward_normal, ni_over_nt)
        transmit_reflect_prob = 1.0
        if did_refract == 1:
            transmit_reflect_prob = ti.min(1.0, clearcoat * schlick(cosine, ior))
        if ti.random(ti.f32) < transmit_reflect_prob:
            scattered_direction = reflected_clearcoat
            attenuation = white
        else:
            scattered_direction = refracted
    else:
        if ti.random(ti.f32) < reflect_prob:
            scattered_direction = reflected_clearcoat
            attenuation = white
        else:
            diffuse = micro_normal + random_in_unit_sphere()
            if near_zero(diffuse):
                diffuse = micro_normal
            scattered_direction = diffuse

    return tm.normalize(scattered_direction), attenuation, did_scatter
