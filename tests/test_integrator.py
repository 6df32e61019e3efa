"""Unit tests for the path tracing integrator.

Tests cover:
- Escaped rays returning the environment radiance
- Emissive surfaces ending paths with their albedo
- The depth cutoff returning black for every material kind
- Throughput attenuation along a mirror bounce
"""

import numpy as np
import pytest


def _sample(x=2, y=2, width=4, height=4, max_depth=8):
    from src.pathtracer.core.integrator import render_single_sample

    value = render_single_sample(x, y, width, height, max_depth)
    return np.array([value[0], value[1], value[2]], dtype=np.float64)


def _scene_with_camera():
    from src.pathtracer.camera.thin_lens import ThinLensCamera
    from src.pathtracer.scene.manager import SceneManager

    scene = SceneManager()
    scene.set_camera(
        ThinLensCamera(lookfrom=(0.0, 0.0, 0.0), lookat=(0.0, 0.0, -1.0), vfov=60.0, aspect_ratio=1.0)
    )
    return scene


class TestRadiance:
    """Tests for radiance estimates."""

    def test_miss_returns_background(self):
        scene = _scene_with_camera()
        scene.set_environment(background=(0.2, 0.3, 0.4))
        scene.build()
        assert np.allclose(_sample(), [0.2, 0.3, 0.4], atol=1e-6)

    def test_emitter_returns_its_albedo(self):
        from src.pathtracer.materials.material import emission
        from src.pathtracer.materials.texture import constant

        scene = _scene_with_camera()
        lamp = scene.add_material(emission(scene.add_texture(constant((2.0, 1.0, 0.5)))))
        # The camera sits inside the emitter, so every ray hits it
        scene.add_sphere((0.0, 0.0, 0.0), 10.0, lamp)
        scene.build()
        for x, y in [(0, 0), (3, 1), (2, 2)]:
            assert np.allclose(_sample(x, y), [2.0, 1.0, 0.5], atol=1e-6)

    def test_depth_limit_returns_black(self):
        from src.pathtracer.materials.material import emission
        from src.pathtracer.materials.texture import constant

        scene = _scene_with_camera()
        scene.set_environment(background=(1.0, 1.0, 1.0))
        lamp = scene.add_material(emission(scene.add_texture(constant((2.0, 1.0, 0.5)))))
        scene.add_sphere((0.0, 0.0, 0.0), 10.0, lamp)
        scene.build()
        assert np.allclose(_sample(max_depth=0), 0.0)

    @pytest.mark.parametrize("kind", ["lambertian", "metal", "dielectric", "glossy", "brushed_metal"])
    def test_depth_limit_applies_to_scattering_surfaces(self, kind):
        """A single facing panel under a white sky: black only when the cutoff is hit."""
        from src.pathtracer.materials import material
        from src.pathtracer.materials.texture import constant

        factories = {
            "lambertian": lambda tex: material.lambertian(tex),
            "metal": lambda tex: material.metal(tex, roughness=0.0),
            "dielectric": lambda tex: material.dielectric(tex, ior=1.5),
            "glossy": lambda tex: material.glossy(tex, roughness=0.0, clearcoat=0.5),
            "brushed_metal": lambda tex: material.brushed_metal(
                tex, roughness=0.0, clearcoat=0.5, clearcoat_roughness=0.0
            ),
        }
        scene = _scene_with_camera()
        scene.set_environment(background=(1.0, 1.0, 1.0))
        panel = scene.add_material(factories[kind](scene.add_texture(constant((0.5, 0.5, 0.5)))))
        scene.add_mesh([[[-100.0, -100.0, -2.0], [100.0, -100.0, -2.0], [0.0, 100.0, -2.0]]], panel)
        scene.build()

        assert np.allclose(_sample(max_depth=0), 0.0)
        # One bounce is enough to escape to the sky
        for _ in range(20):
            color = _sample(max_depth=1)
            assert np.all(color >= 0.5 - 1e-5)

    def test_closed_diffuse_room_is_black(self):
        """Without a light source or a sky nothing contributes radiance."""
        from src.pathtracer.materials.material import lambertian
        from src.pathtracer.materials.texture import constant

        scene = _scene_with_camera()
        wall = scene.add_material(lambertian(scene.add_texture(constant((0.9, 0.9, 0.9)))))
        scene.add_sphere((0.0, 0.0, 0.0), 10.0, wall)
        scene.build()
        assert np.allclose(_sample(max_depth=4), 0.0)

    def test_mirror_attenuates_background(self):
        from src.pathtracer.materials.material import metal
        from src.pathtracer.materials.texture import constant

        scene = _scene_with_camera()
        scene.set_environment(background=(1.0, 1.0, 1.0))
        mirror = scene.add_material(metal(scene.add_texture(constant((0.5, 0.25, 1.0))), roughness=0.0))
        scene.add_mesh([[[-100.0, -100.0, -2.0], [100.0, -100.0, -2.0], [0.0, 100.0, -2.0]]], mirror)
        scene.build()
        assert np.allclose(_sample(), [0.5, 0.25, 1.0], atol=1e-5)

    def test_samples_are_finite_and_non_negative(self):
        from src.pathtracer.materials.material import dielectric, lambertian
        from src.pathtracer.materials.texture import checkerboard, constant, gradient
        from src.pathtracer.scene.sky import Atmosphere

        scene = _scene_with_camera()
        scene.set_atmosphere(Atmosphere())
        ground = scene.add_material(lambertian(scene.add_texture(checkerboard((0.9, 0.9, 0.9), (0.1, 0.1, 0.1)))))
        glass = scene.add_material(dielectric(scene.add_texture(constant((1.0, 1.0, 1.0)))))
        scene.set_environment(scene.add_texture(gradient()))
        scene.add_sphere((0.0, -100.5, -1.0), 100.0, ground)
        scene.add_sphere((0.0, 0.0, -1.0), 0.5, glass)
        scene.build()
        for x in range(4):
            for y in range(4):
                color = _sample(x, y)
                assert np.all(np.isfinite(color))
                assert np.all(color >= 0.0)
