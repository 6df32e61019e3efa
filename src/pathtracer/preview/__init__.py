"""Output utilities: tone mapping and image export."""

from .export import (
    ToneMapMethod,
    apply_gamma,
    compute_rmse,
    image_to_uint8,
    process_image,
    save_png_from_array,
    tone_map_exposure,
    tone_map_reinhard,
)

__all__ = [
    "ToneMapMethod",
    "tone_map_reinhard",
    "tone_map_exposure",
    "apply_gamma",
    "process_image",
    "image_to_uint8",
    "save_png_from_array",
    "compute_rmse",
]
