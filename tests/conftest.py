"""Pytest configuration for path tracer tests.

This module provides shared fixtures for all test modules, including
Taichi initialization which must happen once per session.

Note: Package modules declare Taichi fields at import time, so tests import
them inside test functions, after the session fixture has run ti.init().
"""

import pytest
import taichi as ti


@pytest.fixture(scope="session", autouse=True)
def init_taichi_session():
    """Initialize Taichi once for the entire test session.

    Using session scope prevents multiple ti.init() calls which can cause
    segmentation faults due to Taichi runtime conflicts.
    """
    ti.init(arch=ti.cpu, random_seed=42)
    yield


@pytest.fixture(autouse=True)
def clear_all_scene_data():
    """Clear every device registry before and after each test."""
    from src.pathtracer.camera.thin_lens import reset_camera
    from src.pathtracer.materials.material import clear_materials
    from src.pathtracer.materials.texture import clear_textures
    from src.pathtracer.scene.intersection import clear_scene
    from src.pathtracer.scene.sky import clear_sky

    def _clear_all():
        clear_scene()
        clear_materials()
        clear_textures()
        clear_sky()
        reset_camera()

    _clear_all()
    yield
    _clear_all()


@pytest.fixture
def grey_material():
    """Register a constant grey texture with a Lambertian material; returns the material id."""
    from src.pathtracer.materials.material import add_material, lambertian
    from src.pathtracer.materials.texture import add_texture, constant

    texture = add_texture(constant((0.5, 0.5, 0.5)))
    return add_material(lambertian(texture))
