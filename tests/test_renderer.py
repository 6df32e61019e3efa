"""Unit tests for the parallel renderer.

Tests cover:
- Splitting the sample budget into worker waves
- Render configuration validation
- Readiness checks before rendering
- Canvas averaging, orientation and image output
"""

import numpy as np
import pytest


def _ready_scene(background=(0.25, 0.5, 0.75), environment=None):
    from src.pathtracer.camera.thin_lens import ThinLensCamera
    from src.pathtracer.scene.manager import SceneManager

    scene = SceneManager()
    texture = None if environment is None else scene.add_texture(environment)
    scene.set_environment(texture, background=background)
    scene.set_camera(
        ThinLensCamera(lookfrom=(0.0, 0.0, 0.0), lookat=(0.0, 0.0, -1.0), vfov=90.0, aspect_ratio=1.5)
    )
    scene.build()
    return scene


class TestPlanWaves:
    """Tests for plan_waves."""

    @pytest.mark.parametrize(
        "samples, workers, expected",
        [
            (10, 4, [(4, 2), (2, 1)]),
            (8, 4, [(4, 2)]),
            (3, 8, [(3, 1)]),
            (1, 1, [(1, 1)]),
        ],
    )
    def test_waves(self, samples, workers, expected):
        from src.pathtracer.core.renderer import plan_waves

        waves = plan_waves(samples, workers)
        assert waves == expected
        assert sum(count * each for count, each in waves) == samples

    def test_invalid(self):
        from src.pathtracer.core.renderer import plan_waves

        with pytest.raises(ValueError):
            plan_waves(0, 4)
        with pytest.raises(ValueError):
            plan_waves(4, 0)


class TestRenderConfig:
    """Tests for RenderConfig validation."""

    def test_defaults(self):
        from src.pathtracer.core.renderer import RenderConfig

        config = RenderConfig(width=8, height=4, samples=2)
        assert config.max_depth == 8
        assert config.workers >= 1

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"width": 0, "height": 4, "samples": 1},
            {"width": 4, "height": -1, "samples": 1},
            {"width": 4, "height": 4, "samples": 0},
            {"width": 4, "height": 4, "samples": 1, "max_depth": -1},
            {"width": 4, "height": 4, "samples": 1, "workers": 0},
        ],
    )
    def test_invalid(self, kwargs):
        from src.pathtracer.core.renderer import RenderConfig

        with pytest.raises(ValueError):
            RenderConfig(**kwargs)


class TestParallelRenderer:
    """Tests for ParallelRenderer."""

    def test_requires_built_scene(self):
        from src.pathtracer.camera.thin_lens import ThinLensCamera, setup_camera
        from src.pathtracer.core.renderer import ParallelRenderer, RenderConfig

        setup_camera(ThinLensCamera(lookfrom=(0.0, 0.0, 0.0), lookat=(0.0, 0.0, -1.0)))
        renderer = ParallelRenderer(RenderConfig(width=4, height=4, samples=1, workers=1))
        with pytest.raises(RuntimeError):
            renderer.render()

    def test_requires_camera(self):
        from src.pathtracer.core.renderer import ParallelRenderer, RenderConfig
        from src.pathtracer.scene.manager import SceneManager

        SceneManager().build()
        renderer = ParallelRenderer(RenderConfig(width=4, height=4, samples=1, workers=1))
        with pytest.raises(RuntimeError):
            renderer.render()

    def test_image_before_render(self):
        from src.pathtracer.core.renderer import ParallelRenderer, RenderConfig

        renderer = ParallelRenderer(RenderConfig(width=4, height=4, samples=1, workers=1))
        assert renderer.canvas is None
        with pytest.raises(RuntimeError):
            renderer.get_linear_image()

    def test_constant_background_is_uniform(self):
        from src.pathtracer.core.renderer import ParallelRenderer, RenderConfig

        _ready_scene()
        renderer = ParallelRenderer(RenderConfig(width=6, height=4, samples=5, workers=2))
        canvas = renderer.render()
        assert canvas.shape == (24, 3)
        assert np.allclose(canvas, [0.25, 0.5, 0.75], atol=1e-5)

    def test_progress_callback(self):
        from src.pathtracer.core.renderer import ParallelRenderer, RenderConfig

        _ready_scene()
        progress = []
        renderer = ParallelRenderer(RenderConfig(width=3, height=2, samples=5, workers=2))
        renderer.render(callback=lambda done, total: progress.append((done, total)))
        assert progress == [(2, 5), (4, 5), (5, 5)]

    def test_render_pass_fills_only_active_worker_slots(self):
        """Each pass adds one sample per pixel to the first num_workers buffers."""
        from src.pathtracer.core.integrator import render_pass

        _ready_scene()
        width, height = 3, 2
        buffers = np.zeros((3, width * height, 3), dtype=np.float32)
        # Waves for 5 samples on 2 workers: two passes of 2 workers, one of 1
        render_pass(buffers, 2, width, height, 8)
        render_pass(buffers, 2, width, height, 8)
        render_pass(buffers, 1, width, height, 8)
        assert np.allclose(buffers[0], [0.75, 1.5, 2.25], atol=1e-5)
        assert np.allclose(buffers[1], [0.5, 1.0, 1.5], atol=1e-5)
        assert np.all(buffers[2] == 0.0)

        serial = np.zeros((1, width * height, 3), dtype=np.float32)
        for _ in range(5):
            render_pass(serial, 1, width, height, 8)
        assert np.allclose(buffers.sum(axis=0), serial[0], atol=1e-5)

    @pytest.mark.parametrize("workers", [1, 2, 3, 5, 8])
    def test_canvas_is_sum_over_workers_divided_by_samples(self, monkeypatch, workers):
        """Every sample lands in exactly one worker slot whatever the wave plan."""
        from src.pathtracer.core import renderer as renderer_module
        from src.pathtracer.core.renderer import ParallelRenderer, RenderConfig

        counter = [0]

        def numbered_pass(buffers, num_workers, width, height, max_depth):
            # Sample k contributes the value k
            for w in range(num_workers):
                counter[0] += 1
                buffers[w] += counter[0]

        monkeypatch.setattr(renderer_module, "render_pass", numbered_pass)
        _ready_scene()
        renderer = ParallelRenderer(RenderConfig(width=2, height=2, samples=5, workers=workers))
        canvas = renderer.render()
        assert counter[0] == 5
        assert np.allclose(canvas, (1 + 2 + 3 + 4 + 5) / 5.0)

    def test_top_row_comes_first(self):
        """A sky gradient is bluer towards the top of the returned image."""
        from src.pathtracer.core.renderer import ParallelRenderer, RenderConfig
        from src.pathtracer.materials.texture import gradient

        _ready_scene(environment=gradient(bottom=(1.0, 1.0, 1.0), top=(0.0, 0.0, 1.0)))
        renderer = ParallelRenderer(RenderConfig(width=6, height=4, samples=4, workers=2))
        renderer.render()
        image = renderer.get_linear_image()
        assert image.shape == (4, 6, 3)
        assert image[0, :, 0].mean() < image[-1, :, 0].mean()
        assert np.allclose(image[:, :, 2], 1.0, atol=1e-5)

    def test_image_outputs(self, tmp_path):
        from PIL import Image

        from src.pathtracer.core.renderer import ParallelRenderer, RenderConfig

        _ready_scene(background=(2.0, 0.25, 0.0))
        renderer = ParallelRenderer(RenderConfig(width=5, height=3, samples=2, workers=1))
        renderer.render()

        clamped = renderer.get_image_numpy()
        assert clamped.shape == (3, 5, 3)
        assert np.allclose(clamped, [1.0, 0.25, 0.0], atol=1e-5)
        assert renderer.get_linear_image().max() > 1.9

        pixels = renderer.get_image_uint8(gamma=1.0)
        assert pixels.dtype == np.uint8
        assert np.all(pixels == [255, 64, 0])

        path = renderer.save_image(tmp_path / "render.png", gamma=1.0)
        with Image.open(path) as img:
            assert img.size == (5, 3)
