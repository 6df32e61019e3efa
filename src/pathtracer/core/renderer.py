"""Parallel sample accumulation into per-worker buffers.

The total sample budget is split across workers in at most two waves:

- fewer samples than workers: one wave of ``samples`` workers, one sample each;
- otherwise a wave of ``workers`` workers taking ``samples // workers``
  samples each, followed by a wave of ``samples % workers`` workers taking
  one sample each when the division leaves a remainder.

Every worker owns a private row of the ``(workers, height * width)``
accumulation buffer, so no pixel slot is written by two workers. Each
kernel launch adds one sample per pixel for every worker in the current
wave and returns only when all of them are done, which acts as the barrier
between waves. After the last wave the buffers are summed over workers and
divided by the total sample count.

Example:
    >>> setup_camera(camera)
    >>> scene.build()
    >>> renderer = ParallelRenderer(RenderConfig(width=320, height=180, samples=64))
    >>> renderer.render()
    >>> renderer.save_image("out.png")
"""

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import numpy.typing as npt

from src.pathtracer.camera.thin_lens import is_camera_ready
from src.pathtracer.core.integrator import render_pass
from src.pathtracer.preview.export import ToneMapMethod, apply_gamma, image_to_uint8, save_png_from_array
from src.pathtracer.scene.intersection import is_scene_ready

logger = logging.getLogger(__name__)

# Callback receives (samples_done, samples_total)
ProgressCallback = Callable[[int, int], None]


@dataclass
class RenderConfig:
    """Image size, sample budget and path depth of a render.

    Attributes:
        width: Image width in pixels.
        height: Image height in pixels.
        samples: Total samples per pixel.
        max_depth: Maximum number of bounces per path.
        workers: Number of parallel accumulation buffers. Defaults to the
            number of CPUs.
    """

    width: int
    height: int
    samples: int
    max_depth: int = 8
    workers: int | None = None

    def __post_init__(self) -> None:
        if self.workers is None:
            self.workers = os.cpu_count() or 1
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Image size must be positive, got {self.width}x{self.height}")
        if self.samples <= 0:
            raise ValueError(f"samples must be positive, got {self.samples}")
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be non-negative, got {self.max_depth}")
        if self.workers <= 0:
            raise ValueError(f"workers must be positive, got {self.workers}")


def plan_waves(samples: int, workers: int) -> list[tuple[int, int]]:
    """Split a sample budget into waves of (worker_count, samples_each).

    Raises:
        ValueError: If samples or workers is not positive.
    """
    if samples <= 0:
        raise ValueError(f"samples must be positive, got {samples}")
    if workers <= 0:
        raise ValueError(f"workers must be positive, got {workers}")
    if samples < workers:
        return [(samples, 1)]
    waves = [(workers, samples // workers)]
    remainder = samples % workers
    if remainder:
        waves.append((remainder, 1))
    return waves


class ParallelRenderer:
    """Renders the uploaded scene through the configured camera.

    Attributes:
        config: The render configuration.
    """

    def __init__(self, config: RenderConfig) -> None:
        self.config = config
        self._canvas: npt.NDArray[np.float32] | None = None

    @property
    def width(self) -> int:
        return self.config.width

    @property
    def height(self) -> int:
        return self.config.height

    @property
    def canvas(self) -> npt.NDArray[np.float32] | None:
        """Averaged linear radiance, shape (height * width, 3), row 0 at the bottom."""
        return self._canvas

    def render(self, callback: ProgressCallback | None = None) -> npt.NDArray[np.float32]:
        """Render the full sample budget and return the canvas.

        Args:
            callback: Optional function called after every pass with
                (samples_done, samples_total).

        Returns:
            The averaged canvas, shape (height * width, 3).

        Raises:
            RuntimeError: If the scene has not been built or the camera has
                not been set up.
        """
        if not is_scene_ready():
            raise RuntimeError("Scene has not been built; call SceneManager.build() first")
        if not is_camera_ready():
            raise RuntimeError("Camera has not been set up; call setup_camera() first")

        cfg = self.config
        waves = plan_waves(cfg.samples, cfg.workers)
        active_workers = waves[0][0]
        buffers = np.zeros((active_workers, cfg.width * cfg.height, 3), dtype=np.float32)

        logger.info(
            "Rendering %dx%d at %d samples on %d workers (max depth %d)",
            cfg.width,
            cfg.height,
            cfg.samples,
            active_workers,
            cfg.max_depth,
        )
        start = time.perf_counter()
        done = 0
        for wave, (count, samples_each) in enumerate(waves):
            if wave > 0:
                logger.info("Rendering additional %d samples", count * samples_each)
            for _ in range(samples_each):
                pass_start = time.perf_counter()
                render_pass(buffers, count, cfg.width, cfg.height, cfg.max_depth)
                done += count
                pass_time = time.perf_counter() - pass_start
                eta = pass_time * (cfg.samples - done) / count
                logger.debug(
                    "%.2f%% (%d/%d) %.3fs/pass, ETA %.1fs",
                    100.0 * done / cfg.samples,
                    done,
                    cfg.samples,
                    pass_time,
                    eta,
                )
                if callback is not None:
                    callback(done, cfg.samples)

        self._canvas = (buffers.sum(axis=0, dtype=np.float64) / cfg.samples).astype(np.float32)
        elapsed = time.perf_counter() - start
        logger.info("Rendering took %.2fs (%.4fs per sample)", elapsed, elapsed / cfg.samples)
        return self._canvas

    def _require_canvas(self) -> npt.NDArray[np.float32]:
        if self._canvas is None:
            raise RuntimeError("Nothing rendered yet; call render() first")
        return self._canvas

    def get_linear_image(self) -> npt.NDArray[np.float32]:
        """Unclamped linear canvas as (height, width, 3), top row first."""
        return np.flipud(self._require_canvas().reshape(self.height, self.width, 3)).copy()

    def get_image_numpy(self, gamma: float = 1.0) -> npt.NDArray[np.float32]:
        """Canvas as an (height, width, 3) image with the top row first.

        Values are clamped to [0, 1] and optionally gamma corrected.
        """
        return apply_gamma(self.get_linear_image(), gamma)

    def get_image_uint8(
        self,
        gamma: float = 2.2,
        tone_map: ToneMapMethod = "none",
        exposure: float = 1.0,
    ) -> npt.NDArray[np.uint8]:
        """Tone-mapped 8-bit image, top row first."""
        return image_to_uint8(self.get_linear_image(), tone_map=tone_map, gamma=gamma, exposure=exposure)

    def save_image(
        self,
        filepath: str | Path,
        gamma: float = 2.2,
        tone_map: ToneMapMethod = "none",
        exposure: float = 1.0,
    ) -> Path:
        """Tone map the canvas and write it as an image file."""
        return save_png_from_array(self.get_linear_image(), filepath, tone_map=tone_map, gamma=gamma, exposure=exposure)

    def __repr__(self) -> str:
        return (
            f"ParallelRenderer(width={self.width}, height={self.height}, "
            f"samples={self.config.samples}, workers={self.config.workers})"
        )
