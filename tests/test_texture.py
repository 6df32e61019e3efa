"""Unit tests for textures and the image atlas.

Tests cover:
- Constant, checkerboard, grid and gradient lookups
- Image lookups with and without the row flip, and border clamping
- Normal map decoding
- Registration errors and image loading through Pillow
"""

import numpy as np
import pytest
import taichi as ti

RED = (1.0, 0.0, 0.0)
GREEN = (0.0, 1.0, 0.0)
BLUE = (0.0, 0.0, 1.0)
WHITE = (1.0, 1.0, 1.0)


def _lookup(tex, points, uvs=None):
    """Evaluate texture_color for each (point, uv) pair in a kernel."""
    from src.pathtracer.materials.texture import texture_color

    points = np.asarray(points, dtype=np.float32).reshape(-1, 3)
    if uvs is None:
        uvs = np.zeros((len(points), 2))
    uvs = np.asarray(uvs, dtype=np.float32).reshape(-1, 2)
    n = len(points)
    p_field = ti.Vector.field(3, dtype=ti.f32, shape=n)
    uv_field = ti.Vector.field(2, dtype=ti.f32, shape=n)
    out = ti.Vector.field(3, dtype=ti.f32, shape=n)
    p_field.from_numpy(points)
    uv_field.from_numpy(uvs)

    @ti.kernel
    def test_kernel(tex_id: ti.i32):
        for i in range(n):
            out[i] = texture_color(tex_id, p_field[i], uv_field[i][0], uv_field[i][1])

    test_kernel(tex)
    return out.to_numpy()


def _two_by_two():
    """2x2 image: top row red, green; bottom row blue, white."""
    return np.array([[RED, GREEN], [BLUE, WHITE]], dtype=np.float32)


class TestProceduralTextures:
    """Tests for constant and lattice textures."""

    def test_constant(self):
        from src.pathtracer.materials.texture import add_texture, constant

        tex = add_texture(constant((0.2, 0.4, 0.6)))
        colors = _lookup(tex, [[0.0, 0.0, 0.0], [5.0, -3.0, 2.0]])
        assert np.allclose(colors, [0.2, 0.4, 0.6])

    def test_checkerboard_world_space(self):
        from src.pathtracer.materials.texture import add_texture, checkerboard

        tex = add_texture(checkerboard(RED, BLUE))
        colors = _lookup(
            tex,
            [
                [0.5, 0.5, 0.5],  # floor sum 0
                [1.5, 0.5, 0.5],  # floor sum 1
                [1.5, 1.5, 0.5],  # floor sum 2
                [-0.5, 0.5, 0.5],  # floor sum -1
            ],
        )
        assert np.allclose(colors[0], RED)
        assert np.allclose(colors[1], BLUE)
        assert np.allclose(colors[2], RED)
        assert np.allclose(colors[3], BLUE)

    def test_checkerboard_scale(self):
        from src.pathtracer.materials.texture import add_texture, checkerboard

        tex = add_texture(checkerboard(RED, BLUE, scale=(2.0, 2.0, 2.0)))
        colors = _lookup(tex, [[1.5, 0.5, 0.5], [2.5, 0.5, 0.5]])
        assert np.allclose(colors[0], RED)
        assert np.allclose(colors[1], BLUE)

    def test_checkerboard_uv(self):
        from src.pathtracer.materials.texture import add_texture, checkerboard

        tex = add_texture(checkerboard(RED, BLUE, scale=(0.5, 0.5, 1.0), uv=True))
        colors = _lookup(tex, np.zeros((2, 3)), uvs=[[0.25, 0.25], [0.75, 0.25]])
        assert np.allclose(colors[0], RED)
        assert np.allclose(colors[1], BLUE)

    def test_grid_lines_and_cells(self):
        from src.pathtracer.materials.texture import add_texture, grid

        tex = add_texture(grid(WHITE, BLUE, line_width=0.1))
        colors = _lookup(tex, [[0.05, 0.5, 0.5], [0.5, 0.5, 0.5], [0.5, 0.5, 2.05]])
        assert np.allclose(colors[0], WHITE)
        assert np.allclose(colors[1], BLUE)
        assert np.allclose(colors[2], WHITE)

    def test_grid_uv_ignores_depth(self):
        from src.pathtracer.materials.texture import add_texture, grid

        tex = add_texture(grid(WHITE, BLUE, line_width=0.1, uv=True))
        colors = _lookup(tex, [[0.0, 0.0, 0.05], [0.0, 0.0, 0.05]], uvs=[[0.5, 0.5], [0.5, 0.02]])
        assert np.allclose(colors[0], BLUE)
        assert np.allclose(colors[1], WHITE)

    def test_gradient_blends_bottom_to_top(self):
        from src.pathtracer.materials.texture import add_texture, gradient

        tex = add_texture(gradient(bottom=WHITE, top=BLUE))
        colors = _lookup(tex, [[0.0, 1.0, 0.0], [0.0, -3.0, 0.0], [2.0, 0.0, 0.0]])
        assert np.allclose(colors[0], BLUE, atol=1e-6)
        assert np.allclose(colors[1], WHITE, atol=1e-6)
        assert np.allclose(colors[2], [0.5, 0.5, 1.0], atol=1e-6)


class TestImageTextures:
    """Tests for atlas-backed image lookups."""

    def test_add_image_records_size(self):
        from src.pathtracer.materials.texture import add_image, get_image_count, get_image_size

        first = add_image(np.zeros((4, 8, 3)))
        second = add_image(_two_by_two())
        assert (first, second) == (0, 1)
        assert get_image_count() == 2
        assert get_image_size(first) == (8, 4)

    def test_spherical_lookup_keeps_top_row_at_v_zero(self):
        from src.pathtracer.materials.texture import add_image, add_texture, image_texture

        # A leading image makes sure the atlas offset is honoured
        add_image(np.full((3, 3, 3), 0.5))
        tex = add_texture(image_texture(add_image(_two_by_two()), spherical=True))
        colors = _lookup(tex, np.zeros((4, 3)), uvs=[[0.25, 0.25], [0.75, 0.25], [0.25, 0.75], [0.75, 0.75]])
        assert np.allclose(colors, [RED, GREEN, BLUE, WHITE])

    def test_triangle_lookup_flips_rows(self):
        from src.pathtracer.materials.texture import add_image, add_texture, image_texture

        tex = add_texture(image_texture(add_image(_two_by_two())))
        colors = _lookup(tex, np.zeros((4, 3)), uvs=[[0.25, 0.25], [0.75, 0.25], [0.25, 0.75], [0.75, 0.75]])
        assert np.allclose(colors, [BLUE, WHITE, RED, GREEN])

    def test_coordinates_clamp_to_border(self):
        from src.pathtracer.materials.texture import add_image, add_texture, image_texture

        tex = add_texture(image_texture(add_image(_two_by_two()), spherical=True))
        colors = _lookup(tex, np.zeros((3, 3)), uvs=[[1.0, 0.0], [-2.0, 5.0], [1.5, 1.0]])
        assert np.allclose(colors, [GREEN, BLUE, WHITE])

    def test_normal_map_decoding(self):
        from src.pathtracer.materials.texture import add_image, add_texture, constant, texture_normal

        flat = add_texture(constant(WHITE, normal_image=add_image(np.array([[[0.5, 0.5, 1.0]]]))))
        tilted = add_texture(constant(WHITE, normal_image=add_image(np.array([[[1.0, 0.5, 0.5]]]))))
        out = ti.Vector.field(3, dtype=ti.f32, shape=2)

        @ti.kernel
        def test_kernel(a: ti.i32, b: ti.i32):
            out[0] = texture_normal(a, 0.5, 0.5)
            out[1] = texture_normal(b, 0.5, 0.5)

        test_kernel(flat, tilted)
        normals = out.to_numpy()
        assert np.allclose(normals[0], [0.0, 0.0, 1.0], atol=1e-6)
        assert np.allclose(normals[1], [1.0, 0.0, 0.0], atol=1e-6)

    def test_load_image_through_pillow(self, tmp_path):
        from PIL import Image

        from src.pathtracer.materials.texture import load_image

        path = tmp_path / "red.png"
        Image.new("RGB", (3, 2), (255, 0, 0)).save(path)
        pixels = load_image(path)
        assert pixels.shape == (2, 3, 3)
        assert np.allclose(pixels[..., 0], 1.0)
        assert np.allclose(pixels[..., 1:], 0.0)

    def test_load_missing_image(self, tmp_path):
        from src.pathtracer.materials.texture import load_image

        with pytest.raises(OSError):
            load_image(tmp_path / "missing.png")


class TestTextureValidation:
    """Tests for registration errors."""

    def test_image_kind_requires_image(self):
        from src.pathtracer.materials.texture import add_texture, image_texture

        with pytest.raises(ValueError):
            add_texture(image_texture(0))

    def test_unknown_normal_map(self):
        from src.pathtracer.materials.texture import add_texture, constant

        with pytest.raises(ValueError):
            add_texture(constant(WHITE, normal_image=3))

    def test_zero_scale(self):
        from src.pathtracer.materials.texture import add_texture, checkerboard

        with pytest.raises(ValueError):
            add_texture(checkerboard(RED, BLUE, scale=(1.0, 0.0, 1.0)))

    def test_negative_color(self):
        from src.pathtracer.materials.texture import add_texture, constant

        with pytest.raises(ValueError):
            add_texture(constant((-0.1, 0.0, 0.0)))

    def test_bad_image_shapes(self):
        from src.pathtracer.materials.texture import add_image

        with pytest.raises(ValueError):
            add_image(np.zeros((4, 4)))
        with pytest.raises(ValueError):
            add_image(np.zeros((0, 4, 3)))

    def test_clear_textures(self):
        from src.pathtracer.materials.texture import add_image, add_texture, clear_textures, constant, get_texture_count

        add_image(_two_by_two())
        add_texture(constant(WHITE))
        clear_textures()
        assert get_texture_count() == 0
        assert add_image(_two_by_two()) == 0

    def test_dict_roundtrip(self):
        from src.pathtracer.materials.texture import Texture, checkerboard

        texture = checkerboard(RED, BLUE, scale=(2.0, 1.0, 0.5), uv=True)
        data = texture.to_dict()
        assert data["kind"] == "checkerboard_uv"
        assert Texture.from_dict(data) == texture
