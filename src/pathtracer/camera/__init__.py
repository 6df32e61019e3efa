"""Camera module.

Components:
    thin_lens: Thin-lens perspective camera with depth of field
"""

from .thin_lens import (
    ThinLensCamera,
    get_camera_info,
    get_ray,
    is_camera_ready,
    reset_camera,
    setup_camera,
)

__all__ = [
    "ThinLensCamera",
    "setup_camera",
    "reset_camera",
    "is_camera_ready",
    "get_ray",
    "get_camera_info",
]
