"""Environment lighting for rays that escape the scene.

Three sources are supported, checked in order:

1. An analytic single-scattering atmosphere (Rayleigh + Mie) around a
   planet, evaluated from a viewer standing just above the ground.
2. An environment texture evaluated at the ray direction, with spherical
   (u, v) coordinates and the unit direction as the world point.
3. A flat background colour (black unless configured).

The atmosphere integrates optical depth along the view ray in 16 segments
and, from the midpoint of each segment, toward the sun in 8 segments. View
samples whose sun ray passes below the ground are in shadow and contribute
nothing. Directions within ``sun_size`` of the sun direction are multiplied
by the sun colour.
"""

from dataclasses import asdict, dataclass

import numpy as np
import taichi as ti
import taichi.math as tm

from src.pathtracer.core.vector import spherical_uv, vec3
from src.pathtracer.geometry.sphere import solve_sphere
from src.pathtracer.materials.texture import get_texture_count, texture_color

NUM_VIEW_SAMPLES = 16
NUM_LIGHT_SAMPLES = 8

# Returned when the view ray never reaches the atmosphere shell
FALLBACK_COLOR = (0.1, 0.0, 0.0)


@dataclass
class Atmosphere:
    """Parameters of the Earth-like atmosphere model (SI units).

    Attributes:
        sun_direction: Direction toward the sun; normalized on upload.
        sun_size: Angular radius of the visible sun disk, in radians.
        sun_color: Multiplier applied inside the sun disk.
        earth_radius: Planet radius.
        atmosphere_radius: Outer radius of the atmosphere shell.
        rayleigh_scale_height: Density falloff height for Rayleigh scattering.
        mie_scale_height: Density falloff height for Mie scattering.
        beta_r: Rayleigh scattering coefficients per RGB channel.
        beta_m: Mie scattering coefficients per RGB channel.
        mul_r: Rayleigh contribution multiplier.
        mul_m: Mie contribution multiplier.
        mul_all: Overall brightness multiplier.
        g: Mie phase anisotropy.
        altitude: Viewer height above the ground.
    """

    sun_direction: tuple[float, float, float] = (0.0, 0.5, -1.0)
    sun_size: float = float(np.radians(2.0))
    sun_color: tuple[float, float, float] = (200.0, 200.0, 200.0)
    earth_radius: float = 6360e3
    atmosphere_radius: float = 6420e3
    rayleigh_scale_height: float = 7994.0
    mie_scale_height: float = 1200.0
    beta_r: tuple[float, float, float] = (3.8e-6, 13.5e-6, 33.1e-6)
    beta_m: tuple[float, float, float] = (21e-6, 21e-6, 21e-6)
    mul_r: float = 1.0
    mul_m: float = 10.0
    mul_all: float = 20.0
    g: float = 0.76
    altitude: float = 1.0

    def validate(self) -> None:
        """Raises ValueError for a degenerate sun direction or shell radii."""
        if np.linalg.norm(self.sun_direction) == 0.0:
            raise ValueError("sun_direction must be non-zero")
        if not 0.0 < self.earth_radius < self.atmosphere_radius:
            raise ValueError(
                f"Need 0 < earth_radius < atmosphere_radius, got {self.earth_radius} and {self.atmosphere_radius}"
            )
        if self.rayleigh_scale_height <= 0.0 or self.mie_scale_height <= 0.0:
            raise ValueError("Scale heights must be positive")
        if not -1.0 < self.g < 1.0:
            raise ValueError(f"Mie anisotropy g must be in (-1, 1), got {self.g}")

    def to_dict(self) -> dict:
        return {k: (list(v) if isinstance(v, tuple) else v) for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict) -> "Atmosphere":
        return cls(**{k: (tuple(v) if isinstance(v, list) else v) for k, v in data.items()})


# =============================================================================
# Field Storage
# =============================================================================

_atmosphere_enabled = ti.field(dtype=ti.i32, shape=())
_sun_direction = ti.Vector.field(3, dtype=ti.f32, shape=())
_sun_color = ti.Vector.field(3, dtype=ti.f32, shape=())
_beta_r = ti.Vector.field(3, dtype=ti.f32, shape=())
_beta_m = ti.Vector.field(3, dtype=ti.f32, shape=())
# sun_size, earth_radius, atmosphere_radius, h_r, h_m, mul_r, mul_m, mul_all, g, altitude
_params = ti.field(dtype=ti.f32, shape=10)

_environment_texture = ti.field(dtype=ti.i32, shape=())
_background = ti.Vector.field(3, dtype=ti.f32, shape=())


def clear_sky() -> None:
    """Disable the atmosphere and environment; background becomes black."""
    _atmosphere_enabled[None] = 0
    _environment_texture[None] = -1
    _background[None] = vec3(0.0, 0.0, 0.0)


def set_atmosphere(atmosphere: Atmosphere | None) -> None:
    """Enable the analytic sky, or disable it with None.

    Raises:
        ValueError: If the atmosphere parameters are invalid.
    """
    if atmosphere is None:
        _atmosphere_enabled[None] = 0
        return
    atmosphere.validate()
    sun = np.asarray(atmosphere.sun_direction, dtype=np.float64)
    _sun_direction[None] = (sun / np.linalg.norm(sun)).tolist()
    _sun_color[None] = list(atmosphere.sun_color)
    _beta_r[None] = list(atmosphere.beta_r)
    _beta_m[None] = list(atmosphere.beta_m)
    values = (
        atmosphere.sun_size,
        atmosphere.earth_radius,
        atmosphere.atmosphere_radius,
        atmosphere.rayleigh_scale_height,
        atmosphere.mie_scale_height,
        atmosphere.mul_r,
        atmosphere.mul_m,
        atmosphere.mul_all,
        atmosphere.g,
        atmosphere.altitude,
    )
    for i, value in enumerate(values):
        _params[i] = value
    _atmosphere_enabled[None] = 1


def set_environment(texture: int | None = None, background: tuple[float, float, float] = (0.0, 0.0, 0.0)) -> None:
    """Configure the environment texture and flat background colour.

    Raises:
        ValueError: If the texture id is not registered.
    """
    if texture is not None and not 0 <= texture < get_texture_count():
        raise ValueError(f"Unknown environment texture id {texture}")
    _environment_texture[None] = -1 if texture is None else texture
    _background[None] = list(background)


def is_atmosphere_enabled() -> bool:
    return bool(_atmosphere_enabled[None])


# =============================================================================
# Device Evaluation
# =============================================================================


@ti.func
def compute_incident_light(origin: vec3, direction: vec3, t_min: ti.f32, t_max: ti.f32) -> vec3:
    """Single-scattering radiance arriving at origin from direction.

    Args:
        origin: Viewer position relative to the planet center.
        direction: Unit view direction.
        t_min: Start of the integrated interval.
        t_max: End of the integrated interval.

    Returns:
        RGB radiance, or the fallback colour if the view ray misses the
        atmosphere shell entirely or the shell lies behind the viewer.
    """
    sun_size = _params[0]
    earth_radius = _params[1]
    atmosphere_radius = _params[2]
    h_r = _params[3]
    h_m = _params[4]
    g = _params[8]
    sun_dir = _sun_direction[None]
    beta_r = _beta_r[None]
    beta_m = _beta_m[None]

    result = vec3(ti.static(FALLBACK_COLOR[0]), ti.static(FALLBACK_COLOR[1]), ti.static(FALLBACK_COLOR[2]))
    hit, t0, t1 = solve_sphere(origin, direction, vec3(0.0, 0.0, 0.0), atmosphere_radius)
    if hit == 1 and t1 >= 0.0:
        start = t_min
        end = t_max
        if t0 > start and t0 > 0.0:
            start = t0
        if t1 < end:
            end = t1

        segment = (end - start) / NUM_VIEW_SAMPLES
        t_current = start
        sum_r = vec3(0.0, 0.0, 0.0)
        sum_m = vec3(0.0, 0.0, 0.0)
        optical_r = 0.0
        optical_m = 0.0

        mu = tm.dot(direction, sun_dir)
        phase_r = 3.0 / (16.0 * tm.pi) * (1.0 + mu * mu)
        phase_m = (
            3.0
            / (8.0 * tm.pi)
            * ((1.0 - g * g) * (1.0 + mu * mu))
            / ((2.0 + g * g) * ti.pow(1.0 + g * g - 2.0 * g * mu, 1.5))
        )

        for i in range(NUM_VIEW_SAMPLES):
            sample = origin + direction * (t_current + segment * 0.5)
            height = tm.length(sample) - earth_radius
            hr = ti.exp(-height / h_r) * segment
            hm = ti.exp(-height / h_m) * segment
            optical_r += hr
            optical_m += hm

            _, _, t_light = solve_sphere(sample, sun_dir, vec3(0.0, 0.0, 0.0), atmosphere_radius)
            segment_light = t_light / NUM_LIGHT_SAMPLES
            t_current_light = 0.0
            optical_light_r = 0.0
            optical_light_m = 0.0
            shadowed = 0
            for j in range(NUM_LIGHT_SAMPLES):
                if shadowed == 0:
                    sample_light = sample + sun_dir * (t_current_light + segment_light * 0.5)
                    height_light = tm.length(sample_light) - earth_radius
                    if height_light < 0.0:
                        shadowed = 1
                    else:
                        optical_light_r += ti.exp(-height_light / h_r) * segment_light
                        optical_light_m += ti.exp(-height_light / h_m) * segment_light
                        t_current_light += segment_light

            if shadowed == 0:
                tau = beta_r * (optical_r + optical_light_r) + beta_m * 1.1 * (optical_m + optical_light_m)
                attenuation = ti.exp(-tau)
                sum_r += attenuation * hr
                sum_m += attenuation * hm
            t_current += segment

        result = (sum_r * beta_r * phase_r * _params[5] + sum_m * beta_m * phase_m * _params[6]) * _params[7]
        if tm.length(direction - sun_dir) <= sun_size:
            result *= _sun_color[None]
    return result


@ti.func
def miss_color(direction: vec3) -> vec3:
    """Radiance for a ray that hit nothing."""
    d = tm.normalize(direction)
    result = _background[None]
    if _atmosphere_enabled[None] == 1:
        viewer = vec3(0.0, _params[1] + _params[9], 0.0)
        result = compute_incident_light(viewer, d, 0.0, 1e30)
    elif _environment_texture[None] >= 0:
        u, v = spherical_uv(d)
        result = texture_color(_environment_texture[None], d, u, v)
    return result
