"""Unit tests for vector and ray utilities.

Tests cover:
- Ray evaluation
- Reflection and refraction, including total internal reflection
- Schlick and Fresnel reflectance
- Spherical (u, v) mapping
- Random sampling in the unit sphere and disk
- Host-side homogeneous transforms
"""

import math

import numpy as np
import pytest
import taichi as ti


class TestRay:
    """Tests for Ray and ray_at."""

    def test_ray_at(self):
        from src.pathtracer.core.vector import make_ray, ray_at, vec3

        result = ti.Vector.field(3, dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            ray = make_ray(vec3(1.0, 2.0, 3.0), vec3(0.0, 0.0, -2.0))
            result[None] = ray_at(ray, 2.5)

        test_kernel()
        p = result[None]
        assert abs(p[0] - 1.0) < 1e-6
        assert abs(p[1] - 2.0) < 1e-6
        assert abs(p[2] - (-2.0)) < 1e-6


class TestReflectRefract:
    """Tests for reflect and refract."""

    def test_reflect_about_up_normal(self):
        from src.pathtracer.core.vector import reflect, vec3

        result = ti.Vector.field(3, dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            result[None] = reflect(vec3(1.0, -1.0, 0.0), vec3(0.0, 1.0, 0.0))

        test_kernel()
        r = result[None]
        assert abs(r[0] - 1.0) < 1e-6
        assert abs(r[1] - 1.0) < 1e-6
        assert abs(r[2]) < 1e-6

    def test_refract_normal_incidence_passes_straight(self):
        """A ray along the normal is not bent."""
        from src.pathtracer.core.vector import refract, vec3

        direction = ti.Vector.field(3, dtype=ti.f32, shape=())
        ok = ti.field(dtype=ti.i32, shape=())

        @ti.kernel
        def test_kernel():
            d, flag = refract(vec3(0.0, 0.0, -3.0), vec3(0.0, 0.0, 1.0), 1.0 / 1.5)
            direction[None] = d
            ok[None] = flag

        test_kernel()
        assert ok[None] == 1
        d = direction[None]
        assert abs(d[0]) < 1e-5
        assert abs(d[1]) < 1e-5
        assert abs(d[2] + 1.0) < 1e-5

    def test_refract_total_internal_reflection(self):
        """Grazing rays leaving a dense medium cannot refract."""
        from src.pathtracer.core.vector import refract, vec3

        direction = ti.Vector.field(3, dtype=ti.f32, shape=())
        ok = ti.field(dtype=ti.i32, shape=())

        @ti.kernel
        def test_kernel():
            d, flag = refract(vec3(1.0, 0.0, -0.1), vec3(0.0, 0.0, 1.0), 1.5)
            direction[None] = d
            ok[None] = flag

        test_kernel()
        assert ok[None] == 0
        d = direction[None]
        assert abs(d[0]) < 1e-6 and abs(d[1]) < 1e-6 and abs(d[2]) < 1e-6

    def test_refract_obeys_snell(self):
        """sin(theta_t) = eta * sin(theta_i)."""
        from src.pathtracer.core.vector import refract, vec3

        direction = ti.Vector.field(3, dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            d, _ = refract(vec3(1.0, 0.0, -1.0), vec3(0.0, 0.0, 1.0), 1.0 / 1.5)
            direction[None] = d

        test_kernel()
        d = direction[None]
        sin_t = math.sqrt(d[0] ** 2 + d[1] ** 2) / math.sqrt(d[0] ** 2 + d[1] ** 2 + d[2] ** 2)
        assert abs(sin_t - math.sin(math.pi / 4) / 1.5) < 1e-5


class TestReflectance:
    """Tests for schlick and fresnel."""

    def test_schlick_normal_incidence(self):
        from src.pathtracer.core.vector import schlick

        result = ti.field(dtype=ti.f32, shape=2)

        @ti.kernel
        def test_kernel():
            result[0] = schlick(1.0, 1.5)
            result[1] = schlick(0.0, 1.5)

        test_kernel()
        assert abs(result[0] - 0.04) < 1e-6
        assert abs(result[1] - 1.0) < 1e-6

    def test_fresnel_normal_incidence(self):
        from src.pathtracer.core.vector import fresnel, vec3

        result = ti.field(dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            result[None] = fresnel(1.0, 1.5, vec3(0.0, 0.0, 1.0), vec3(0.0, 0.0, -1.0))

        test_kernel()
        assert abs(result[None] - 0.04) < 1e-6

    def test_fresnel_total_internal_reflection(self):
        from src.pathtracer.core.vector import fresnel, vec3

        result = ti.field(dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            incident = ti.math.normalize(vec3(1.0, 0.0, -0.1))
            result[None] = fresnel(1.5, 1.0, vec3(0.0, 0.0, 1.0), incident)

        test_kernel()
        assert result[None] == 1.0


class TestSphericalUV:
    """Tests for spherical_uv."""

    @pytest.mark.parametrize(
        "direction,expected",
        [
            ((1.0, 0.0, 0.0), (0.5, 0.5)),
            ((0.0, 0.0, 1.0), (0.25, 0.5)),
            ((0.0, 1.0, 0.0), (0.5, 1.0)),
            ((0.0, -1.0, 0.0), (0.5, 0.0)),
        ],
    )
    def test_known_directions(self, direction, expected):
        from src.pathtracer.core.vector import spherical_uv, vec3

        result = ti.field(dtype=ti.f32, shape=2)

        @ti.kernel
        def test_kernel(x: ti.f32, y: ti.f32, z: ti.f32):
            u, v = spherical_uv(vec3(x, y, z))
            result[0] = u
            result[1] = v

        test_kernel(*direction)
        assert abs(result[0] - expected[0]) < 1e-5
        assert abs(result[1] - expected[1]) < 1e-5


class TestRandomSampling:
    """Tests for rejection samplers."""

    def test_random_in_unit_sphere(self):
        from src.pathtracer.core.vector import random_in_unit_sphere

        n = 1000
        samples = ti.Vector.field(3, dtype=ti.f32, shape=n)

        @ti.kernel
        def test_kernel():
            for i in range(n):
                samples[i] = random_in_unit_sphere()

        test_kernel()
        data = samples.to_numpy()
        lengths = np.linalg.norm(data, axis=1)
        assert np.all(lengths < 1.0)
        # Samples should spread over the whole ball
        assert np.abs(data.mean(axis=0)).max() < 0.1
        assert lengths.max() > 0.9

    def test_random_in_unit_disk(self):
        from src.pathtracer.core.vector import random_in_unit_disk

        n = 1000
        samples = ti.Vector.field(3, dtype=ti.f32, shape=n)

        @ti.kernel
        def test_kernel():
            for i in range(n):
                samples[i] = random_in_unit_disk()

        test_kernel()
        data = samples.to_numpy()
        assert np.all(data[:, 2] == 0.0)
        assert np.all(np.linalg.norm(data[:, :2], axis=1) < 1.0)


class TestTransforms:
    """Tests for host-side homogeneous transforms."""

    def test_point_and_direction_tags(self):
        from src.pathtracer.core.vector import direction, point

        assert point(1.0, 2.0, 3.0)[3] == 1.0
        assert direction(1.0, 2.0, 3.0)[3] == 0.0

    def test_translation_moves_points_not_directions(self):
        from src.pathtracer.core.vector import transform_directions, transform_points, translation

        m = translation(1.0, 2.0, 3.0)
        assert np.allclose(transform_points(m, [[0.0, 0.0, 0.0]]), [[1.0, 2.0, 3.0]])
        assert np.allclose(transform_directions(m, [[0.0, 0.0, 1.0]]), [[0.0, 0.0, 1.0]])

    def test_transform_matches_homogeneous_product(self):
        from src.pathtracer.core.vector import point, rotation, scaling, transform_points, translation

        m = translation(1.0, 0.0, 0.0) @ rotation("y", 30.0) @ scaling(2.0, 1.0, 1.0)
        p = point(0.5, -1.0, 2.0)
        expected = (m @ p)[:3]
        assert np.allclose(transform_points(m, p[:3]), expected)

    def test_rotation_about_z(self):
        from src.pathtracer.core.vector import rotation, transform_directions

        result = transform_directions(rotation("z", 90.0), [1.0, 0.0, 0.0])
        assert np.allclose(result, [0.0, 1.0, 0.0], atol=1e-12)

    def test_transform_preserves_batch_shape(self):
        from src.pathtracer.core.vector import scaling, transform_points

        triangles = np.ones((4, 3, 3))
        result = transform_points(scaling(2.0, 3.0, 4.0), triangles)
        assert result.shape == (4, 3, 3)
        assert np.allclose(result[..., 1], 3.0)

    def test_rotation_rejects_unknown_axis(self):
        from src.pathtracer.core.vector import rotation

        with pytest.raises(ValueError):
            rotation("w", 10.0)
