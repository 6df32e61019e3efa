"""Thin-lens camera model with depth of field.

The camera builds an orthonormal basis (u, v, w) from the view parameters:
- w: points from lookat toward lookfrom (opposite view direction)
- u: points right in the image plane
- v: points up in the image plane

The viewport is placed at the focus distance. Each ray starts at a random
point on a lens disk of radius ``aperture / 2`` and passes through the
viewport point for (s, t), so geometry at the focus distance stays sharp.
An aperture of zero gives a pinhole camera.

Ray directions are not normalized.

Example:
    >>> camera = ThinLensCamera(
    ...     lookfrom=(0.0, 1.0, 3.0),
    ...     lookat=(0.0, 0.0, 0.0),
    ...     vup=(0.0, 1.0, 0.0),
    ...     vfov=70.0,
    ...     aspect_ratio=16.0 / 9.0,
    ...     aperture=0.05,
    ... )
    >>> setup_camera(camera)
    >>> # ray = get_ray(s, t) inside a kernel
"""

import math
from dataclasses import asdict, dataclass

import numpy as np
import taichi as ti

from src.pathtracer.core.vector import Ray, make_ray, random_in_unit_disk

# =============================================================================
# Camera Data Structures
# =============================================================================


@dataclass
class ThinLensCamera:
    """Configuration for a thin-lens (perspective) camera.

    Attributes:
        lookfrom: Camera position in world space (x, y, z).
        lookat: Point the camera is looking at in world space (x, y, z).
        vup: Up direction vector for camera orientation (typically (0, 1, 0)).
        vfov: Vertical field of view in degrees.
        aspect_ratio: Width divided by height of the output image.
        aperture: Lens diameter; 0 disables depth of field.
        focus_distance: Distance to the plane in focus. Defaults to the
            distance from lookfrom to lookat.
    """

    lookfrom: tuple[float, float, float]
    lookat: tuple[float, float, float]
    vup: tuple[float, float, float] = (0.0, 1.0, 0.0)
    vfov: float = 70.0
    aspect_ratio: float = 16.0 / 9.0
    aperture: float = 0.0
    focus_distance: float | None = None

    def to_dict(self) -> dict:
        return {k: (list(v) if isinstance(v, tuple) else v) for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict) -> "ThinLensCamera":
        fields = dict(data)
        for key in ("lookfrom", "lookat", "vup"):
            if key in fields:
                fields[key] = tuple(fields[key])
        return cls(**fields)


# =============================================================================
# Taichi Fields for Camera State
# =============================================================================

_camera_origin = ti.Vector.field(3, dtype=ti.f32, shape=())
_camera_u = ti.Vector.field(3, dtype=ti.f32, shape=())
_camera_v = ti.Vector.field(3, dtype=ti.f32, shape=())
_viewport_horizontal = ti.Vector.field(3, dtype=ti.f32, shape=())
_viewport_vertical = ti.Vector.field(3, dtype=ti.f32, shape=())
_lower_left_corner = ti.Vector.field(3, dtype=ti.f32, shape=())
_lens_radius = ti.field(dtype=ti.f32, shape=())
_camera_ready = ti.field(dtype=ti.i32, shape=())


def setup_camera(camera: ThinLensCamera) -> None:
    """Initialize camera state from configuration.

    Raises:
        ValueError: If the view direction is degenerate, vup is parallel to
            it, or vfov, aspect ratio, aperture or focus distance are out of
            range.
    """
    if not 0.0 < camera.vfov < 180.0:
        raise ValueError(f"vfov must be in (0, 180) degrees, got {camera.vfov}")
    if camera.aspect_ratio <= 0.0:
        raise ValueError(f"aspect_ratio must be positive, got {camera.aspect_ratio}")
    if camera.aperture < 0.0:
        raise ValueError(f"aperture must be non-negative, got {camera.aperture}")

    lookfrom = np.array(camera.lookfrom, dtype=np.float64)
    lookat = np.array(camera.lookat, dtype=np.float64)
    vup = np.array(camera.vup, dtype=np.float64)

    w = lookfrom - lookat
    distance = np.linalg.norm(w)
    if distance == 0.0:
        raise ValueError("lookfrom and lookat must differ")
    w = w / distance
    u = np.cross(vup, w)
    if np.linalg.norm(u) == 0.0:
        raise ValueError("vup must not be parallel to the view direction")
    u = u / np.linalg.norm(u)
    v = np.cross(w, u)

    focus = distance if camera.focus_distance is None else camera.focus_distance
    if focus <= 0.0:
        raise ValueError(f"focus_distance must be positive, got {focus}")

    half_height = math.tan(math.radians(camera.vfov) / 2.0)
    half_width = camera.aspect_ratio * half_height
    horizontal = 2.0 * half_width * focus * u
    vertical = 2.0 * half_height * focus * v
    lower_left = lookfrom - horizontal / 2.0 - vertical / 2.0 - focus * w

    _camera_origin[None] = lookfrom.tolist()
    _camera_u[None] = u.tolist()
    _camera_v[None] = v.tolist()
    _viewport_horizontal[None] = horizontal.tolist()
    _viewport_vertical[None] = vertical.tolist()
    _lower_left_corner[None] = lower_left.tolist()
    _lens_radius[None] = camera.aperture / 2.0
    _camera_ready[None] = 1


def is_camera_ready() -> bool:
    return bool(_camera_ready[None])


def reset_camera() -> None:
    _camera_ready[None] = 0


# =============================================================================
# Ray Generation
# =============================================================================


@ti.func
def get_ray(s: ti.f32, t: ti.f32) -> Ray:
    """Generate a ray through normalized image coordinates (s, t).

    s = 0 is the left edge and t = 0 the bottom edge of the image.

    Args:
        s: Horizontal coordinate in [0, 1].
        t: Vertical coordinate in [0, 1].

    Returns:
        A ray from a random lens point through the focus-plane point.
    """
    rd = _lens_radius[None] * random_in_unit_disk()
    offset = _camera_u[None] * rd.x + _camera_v[None] * rd.y
    origin = _camera_origin[None] + offset
    target = _lower_left_corner[None] + s * _viewport_horizontal[None] + t * _viewport_vertical[None]
    return make_ray(origin, target - origin)


def get_camera_info() -> dict[str, tuple[float, float, float] | float]:
    """Current camera state as plain Python values, for inspection."""

    def as_tuple(field) -> tuple[float, float, float]:
        value = field[None]
        return (float(value[0]), float(value[1]), float(value[2]))

    return {
        "origin": as_tuple(_camera_origin),
        "u": as_tuple(_camera_u),
        "v": as_tuple(_camera_v),
        "horizontal": as_tuple(_viewport_horizontal),
        "vertical": as_tuple(_viewport_vertical),
        "lower_left": as_tuple(_lower_left_corner),
        "lens_radius": float(_lens_radius[None]),
    }
