"""Tone mapping and image export for rendered canvases.

Renders produce linear, unbounded radiance. Before writing an 8-bit file
the image passes through an optional tone mapping operator, gamma encoding
and clamping to [0, 1].

Supported formats:
    - PNG (8-bit sRGB via Pillow); other extensions Pillow understands work too

Example:
    >>> from src.pathtracer.preview.export import save_png_from_array
    >>> save_png_from_array(renderer.get_image_numpy(), "output.png", tone_map="reinhard")
"""

import logging
from pathlib import Path
from typing import Literal

import numpy as np
import numpy.typing as npt
from PIL import Image as PILImage

logger = logging.getLogger(__name__)

# Type alias for tone mapping options
ToneMapMethod = Literal["none", "reinhard", "exposure"]


def tone_map_reinhard(image: npt.NDArray[np.float32]) -> npt.NDArray[np.float32]:
    """Apply Reinhard tone mapping: L / (1 + L)."""
    image = np.maximum(image, 0.0)
    return (image / (1.0 + image)).astype(np.float32)


def tone_map_exposure(image: npt.NDArray[np.float32], exposure: float = 1.0) -> npt.NDArray[np.float32]:
    """Apply exposure tone mapping: 1 - exp(-c * exposure).

    Args:
        image: Linear HDR image array of shape (H, W, 3).
        exposure: Higher values brighten the image.

    Returns:
        Tone mapped image in [0, 1].
    """
    image = np.maximum(image, 0.0)
    return (1.0 - np.exp(-image * exposure)).astype(np.float32)


def apply_gamma(image: npt.NDArray[np.float32], gamma: float = 2.2) -> npt.NDArray[np.float32]:
    """Clamp to [0, 1] and gamma encode: out = in^(1/gamma)."""
    image = np.clip(image, 0.0, 1.0)
    if gamma == 1.0:
        return image.astype(np.float32)
    return np.power(image, 1.0 / gamma).astype(np.float32)


def process_image(
    image: npt.NDArray[np.float32],
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> npt.NDArray[np.float32]:
    """Tone map, gamma encode and clamp a linear image.

    Raises:
        ValueError: If tone_map is not a known method or gamma is not positive.
    """
    if gamma <= 0.0:
        raise ValueError(f"gamma must be positive, got {gamma}")
    result = np.asarray(image, dtype=np.float32)
    # Non-finite samples are zeroed in the kernel, but canvases may come from elsewhere
    result = np.nan_to_num(result, nan=0.0, posinf=1.0, neginf=0.0)

    if tone_map == "reinhard":
        result = tone_map_reinhard(result)
    elif tone_map == "exposure":
        result = tone_map_exposure(result, exposure)
    elif tone_map != "none":
        raise ValueError(f"Unknown tone mapping method '{tone_map}'")

    return apply_gamma(result, gamma)


def image_to_uint8(
    image: npt.NDArray[np.float32],
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> npt.NDArray[np.uint8]:
    """Convert a linear float image to 8-bit for export."""
    processed = process_image(image, tone_map=tone_map, gamma=gamma, exposure=exposure)
    return np.round(processed * 255.0).astype(np.uint8)


def save_png_from_array(
    image: npt.NDArray[np.float32],
    filepath: str | Path,
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> Path:
    """Save a linear (H, W, 3) image, top row first.

    Parent directories are created as needed.

    Returns:
        The written path.
    """
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    image_uint8 = image_to_uint8(image, tone_map=tone_map, gamma=gamma, exposure=exposure)
    PILImage.fromarray(image_uint8).save(path)
    logger.info("Saved %dx%d image to %s", image_uint8.shape[1], image_uint8.shape[0], path)
    return path


def compute_rmse(
    image_a: npt.NDArray[np.floating],
    image_b: npt.NDArray[np.floating],
) -> float:
    """Root mean squared error between two images of the same shape.

    Raises:
        ValueError: If image shapes don't match.
    """
    if image_a.shape != image_b.shape:
        raise ValueError(f"Image shapes must match: {image_a.shape} vs {image_b.shape}")
    diff = image_a.astype(np.float64) - image_b.astype(np.float64)
    return float(np.sqrt(np.mean(diff**2)))
