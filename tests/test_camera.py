"""Unit tests for the thin-lens camera.

Tests cover:
- Viewport basis and corner placement
- Ray generation through image coordinates
- Lens sampling for depth of field
- Validation of degenerate configurations
"""

import numpy as np
import pytest
import taichi as ti


def _camera(**overrides):
    from src.pathtracer.camera.thin_lens import ThinLensCamera

    params = dict(
        lookfrom=(0.0, 0.0, 0.0),
        lookat=(0.0, 0.0, -1.0),
        vup=(0.0, 1.0, 0.0),
        vfov=90.0,
        aspect_ratio=2.0,
        aperture=0.0,
    )
    params.update(overrides)
    return ThinLensCamera(**params)


def _rays(coords):
    """Generate one ray per (s, t) pair; returns (origins, directions)."""
    from src.pathtracer.camera.thin_lens import get_ray

    coords = np.asarray(coords, dtype=np.float32).reshape(-1, 2)
    n = len(coords)
    st = ti.Vector.field(2, dtype=ti.f32, shape=n)
    origins = ti.Vector.field(3, dtype=ti.f32, shape=n)
    directions = ti.Vector.field(3, dtype=ti.f32, shape=n)
    st.from_numpy(coords)

    @ti.kernel
    def test_kernel():
        for i in range(n):
            ray = get_ray(st[i][0], st[i][1])
            origins[i] = ray.origin
            directions[i] = ray.direction

    test_kernel()
    return origins.to_numpy(), directions.to_numpy()


class TestCameraSetup:
    """Tests for setup_camera and get_camera_info."""

    def test_viewport(self):
        from src.pathtracer.camera.thin_lens import get_camera_info, is_camera_ready, setup_camera

        assert not is_camera_ready()
        setup_camera(_camera())
        assert is_camera_ready()
        info = get_camera_info()
        assert np.allclose(info["u"], [1.0, 0.0, 0.0])
        assert np.allclose(info["v"], [0.0, 1.0, 0.0])
        assert np.allclose(info["horizontal"], [4.0, 0.0, 0.0], atol=1e-5)
        assert np.allclose(info["vertical"], [0.0, 2.0, 0.0], atol=1e-5)
        assert np.allclose(info["lower_left"], [-2.0, -1.0, -1.0], atol=1e-5)
        assert info["lens_radius"] == 0.0

    def test_focus_distance_scales_viewport(self):
        from src.pathtracer.camera.thin_lens import get_camera_info, setup_camera

        setup_camera(_camera(focus_distance=3.0, aperture=0.5))
        info = get_camera_info()
        assert np.allclose(info["horizontal"], [12.0, 0.0, 0.0], atol=1e-5)
        assert np.allclose(info["lower_left"], [-6.0, -3.0, -3.0], atol=1e-5)
        assert abs(info["lens_radius"] - 0.25) < 1e-6

    @pytest.mark.parametrize(
        "overrides",
        [
            {"vfov": 0.0},
            {"vfov": 180.0},
            {"aspect_ratio": 0.0},
            {"aperture": -0.1},
            {"lookat": (0.0, 0.0, 0.0)},
            {"vup": (0.0, 0.0, 1.0)},
            {"focus_distance": 0.0},
        ],
    )
    def test_invalid_configuration(self, overrides):
        from src.pathtracer.camera.thin_lens import is_camera_ready, setup_camera

        with pytest.raises(ValueError):
            setup_camera(_camera(**overrides))
        assert not is_camera_ready()

    def test_dict_roundtrip(self):
        from src.pathtracer.camera.thin_lens import ThinLensCamera

        camera = _camera(focus_distance=2.5)
        data = camera.to_dict()
        assert data["lookat"] == [0.0, 0.0, -1.0]
        assert ThinLensCamera.from_dict(data) == camera


class TestRayGeneration:
    """Tests for get_ray."""

    def test_center_and_corners(self):
        from src.pathtracer.camera.thin_lens import setup_camera

        setup_camera(_camera())
        origins, directions = _rays([[0.5, 0.5], [0.0, 0.0], [1.0, 1.0]])
        assert np.allclose(origins, 0.0)
        assert np.allclose(directions[0], [0.0, 0.0, -1.0], atol=1e-5)
        assert np.allclose(directions[1], [-2.0, -1.0, -1.0], atol=1e-5)
        assert np.allclose(directions[2], [2.0, 1.0, -1.0], atol=1e-5)

    def test_lens_origins_stay_on_disk(self):
        from src.pathtracer.camera.thin_lens import setup_camera

        setup_camera(_camera(aperture=1.0))
        origins, directions = _rays(np.full((500, 2), 0.5))
        assert np.all(np.linalg.norm(origins[:, :2], axis=1) < 0.5 + 1e-6)
        assert np.allclose(origins[:, 2], 0.0)
        assert np.linalg.norm(origins, axis=1).max() > 0.1
        # Every ray passes through the in-focus point
        focus_points = origins + directions
        assert np.allclose(focus_points, [0.0, 0.0, -1.0], atol=1e-5)
