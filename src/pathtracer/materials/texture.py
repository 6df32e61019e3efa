"""Procedural and image-mapped textures.

A texture maps a hit (world point plus surface coordinates) to an RGB colour,
and image-backed textures can also supply a tangent-space normal map.

Supported kinds:
    CONSTANT: A single colour.
    CHECKERBOARD / CHECKERBOARD_UV: Alternating colours on a 3D (world) or
        2D (surface) lattice. Cells whose floor sum is even get colour_a.
    GRID / GRID_UV: colour_a on lines of the given width, colour_b inside
        the cells.
    SPHERE_IMAGE_UV: Equirectangular image sampled with spherical (u, v).
    TRIANGLE_IMAGE_UV: Image sampled with interpolated vertex UVs; rows are
        flipped so v = 0 is the bottom of the image.
    GRADIENT: Vertical blend from colour_a to colour_b over the direction
        of the world point, used for background skies.

Images are stored in one texel atlas. Each image occupies a contiguous run
of ``width * height`` texels indexed column-major as ``x * height + y``.

Example:
    >>> import numpy as np
    >>> image = add_image(np.ones((4, 8, 3), dtype=np.float32))
    >>> tex = add_texture(image_texture(image))
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm
from PIL import Image

from src.pathtracer.core.vector import vec3

logger = logging.getLogger(__name__)


class TextureKind(IntEnum):
    CONSTANT = 0
    CHECKERBOARD = 1
    CHECKERBOARD_UV = 2
    GRID = 3
    GRID_UV = 4
    SPHERE_IMAGE_UV = 5
    TRIANGLE_IMAGE_UV = 6
    GRADIENT = 7


IMAGE_KINDS = (TextureKind.SPHERE_IMAGE_UV, TextureKind.TRIANGLE_IMAGE_UV)

# Offset applied to the row coordinate before truncation
ROW_OFFSET = 0.001


@dataclass
class Texture:
    """Host description of a texture.

    Attributes:
        kind: Which lookup rule to apply.
        color_a: Constant colour, even checker cells, grid lines, gradient bottom.
        color_b: Odd checker cells, grid interior, gradient top.
        scale: Per-axis lattice period for checkerboards and grids.
        line_width: Grid line width as a fraction of a cell.
        image: Atlas image id for image kinds, -1 otherwise.
        normal_image: Atlas image id of a normal map, -1 for none.
    """

    kind: TextureKind = TextureKind.CONSTANT
    color_a: tuple[float, float, float] = (0.5, 0.5, 0.5)
    color_b: tuple[float, float, float] = (0.0, 0.0, 0.0)
    scale: tuple[float, float, float] = (1.0, 1.0, 1.0)
    line_width: float = 0.1
    image: int = -1
    normal_image: int = -1

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.name.lower(),
            "color_a": list(self.color_a),
            "color_b": list(self.color_b),
            "scale": list(self.scale),
            "line_width": self.line_width,
            "image": self.image,
            "normal_image": self.normal_image,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Texture":
        return cls(
            kind=TextureKind[data.get("kind", "constant").upper()],
            color_a=tuple(data.get("color_a", (0.5, 0.5, 0.5))),
            color_b=tuple(data.get("color_b", (0.0, 0.0, 0.0))),
            scale=tuple(data.get("scale", (1.0, 1.0, 1.0))),
            line_width=float(data.get("line_width", 0.1)),
            image=int(data.get("image", -1)),
            normal_image=int(data.get("normal_image", -1)),
        )


def constant(color, normal_image: int = -1) -> Texture:
    return Texture(TextureKind.CONSTANT, color_a=tuple(color), normal_image=normal_image)


def checkerboard(even, odd, scale=(1.0, 1.0, 1.0), uv: bool = False) -> Texture:
    kind = TextureKind.CHECKERBOARD_UV if uv else TextureKind.CHECKERBOARD
    return Texture(kind, color_a=tuple(even), color_b=tuple(odd), scale=tuple(scale))


def grid(line, cell, scale=(1.0, 1.0, 1.0), line_width: float = 0.1, uv: bool = False) -> Texture:
    kind = TextureKind.GRID_UV if uv else TextureKind.GRID
    return Texture(kind, color_a=tuple(line), color_b=tuple(cell), scale=tuple(scale), line_width=line_width)


def image_texture(image: int, normal_image: int = -1, spherical: bool = False) -> Texture:
    kind = TextureKind.SPHERE_IMAGE_UV if spherical else TextureKind.TRIANGLE_IMAGE_UV
    return Texture(kind, image=image, normal_image=normal_image)


def gradient(bottom=(1.0, 1.0, 1.0), top=(0.5, 0.7, 1.0)) -> Texture:
    return Texture(TextureKind.GRADIENT, color_a=tuple(bottom), color_b=tuple(top))


# =============================================================================
# Field Storage
# =============================================================================

MAX_TEXTURES = 256
MAX_IMAGES = 64
MAX_TEXELS = 1 << 22

texture_kinds = ti.field(dtype=ti.i32, shape=MAX_TEXTURES)
texture_color_a = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TEXTURES)
texture_color_b = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TEXTURES)
texture_scale = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TEXTURES)
texture_line_width = ti.field(dtype=ti.f32, shape=MAX_TEXTURES)
texture_image = ti.field(dtype=ti.i32, shape=MAX_TEXTURES)
texture_normal_image = ti.field(dtype=ti.i32, shape=MAX_TEXTURES)
num_textures = ti.field(dtype=ti.i32, shape=())

image_offset = ti.field(dtype=ti.i32, shape=MAX_IMAGES)
image_width = ti.field(dtype=ti.i32, shape=MAX_IMAGES)
image_height = ti.field(dtype=ti.i32, shape=MAX_IMAGES)
num_images = ti.field(dtype=ti.i32, shape=())
num_texels = ti.field(dtype=ti.i32, shape=())
texels = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TEXELS)


@ti.kernel
def _upload_texels(data: ti.types.ndarray(dtype=vec3, ndim=1), offset: ti.i32):
    for k in range(data.shape[0]):
        texels[offset + k] = data[k]


def clear_textures() -> None:
    """Clear all textures and images."""
    num_textures[None] = 0
    num_images[None] = 0
    num_texels[None] = 0


def get_texture_count() -> int:
    return int(num_textures[None])


def get_image_count() -> int:
    return int(num_images[None])


def get_image_size(image: int) -> tuple[int, int]:
    """(width, height) of a registered image."""
    return int(image_width[image]), int(image_height[image])


def add_image(pixels: npt.ArrayLike) -> int:
    """Register an RGB image in the texel atlas.

    Args:
        pixels: Array of shape (height, width, 3) with the top row first.
            Values are linear colours, typically in [0, 1].

    Returns:
        The image id.

    Raises:
        ValueError: If the array is not (H, W, 3) or is empty.
        RuntimeError: If the image or texel capacity is exceeded.
    """
    data = np.asarray(pixels, dtype=np.float32)
    if data.ndim != 3 or data.shape[2] != 3:
        raise ValueError(f"Image must have shape (height, width, 3), got {data.shape}")
    height, width = data.shape[:2]
    if height == 0 or width == 0:
        raise ValueError("Image must not be empty")

    idx = num_images[None]
    if idx >= MAX_IMAGES:
        raise RuntimeError(f"Maximum number of images ({MAX_IMAGES}) exceeded")
    offset = num_texels[None]
    if offset + width * height > MAX_TEXELS:
        raise RuntimeError(f"Texel atlas capacity ({MAX_TEXELS}) exceeded by {width}x{height} image")

    # Column-major: texel (x, y) lives at x * height + y
    column_major = np.ascontiguousarray(data.transpose(1, 0, 2).reshape(-1, 3))
    _upload_texels(column_major, offset)

    image_offset[idx] = offset
    image_width[idx] = width
    image_height[idx] = height
    num_texels[None] = offset + width * height
    num_images[None] = idx + 1
    logger.debug("Registered image %d (%dx%d) at texel offset %d", idx, width, height, offset)
    return idx


def load_image(path: str | Path) -> npt.NDArray[np.float32]:
    """Decode an image file into a float (H, W, 3) array in [0, 1].

    Raises:
        OSError: If the file cannot be opened or decoded.
    """
    with Image.open(path) as img:
        rgb = img.convert("RGB")
        return np.asarray(rgb, dtype=np.float32) / 255.0


def add_texture(texture: Texture) -> int:
    """Register a texture and return its id.

    Raises:
        ValueError: If an image kind lacks a valid image, a referenced image
            id is unknown, the scale has a zero component, or a colour is
            negative.
        RuntimeError: If the maximum number of textures is exceeded.
    """
    images = num_images[None]
    if texture.kind in IMAGE_KINDS and not 0 <= texture.image < images:
        raise ValueError(f"Texture kind {texture.kind.name} needs a registered image, got id {texture.image}")
    if texture.normal_image != -1 and not 0 <= texture.normal_image < images:
        raise ValueError(f"Unknown normal map image id {texture.normal_image}")
    if any(s == 0.0 for s in texture.scale):
        raise ValueError(f"Texture scale components must be non-zero, got {texture.scale}")
    for name, color in (("color_a", texture.color_a), ("color_b", texture.color_b)):
        if len(color) != 3 or any(c < 0.0 for c in color):
            raise ValueError(f"Texture {name} must be three non-negative components, got {color}")

    idx = num_textures[None]
    if idx >= MAX_TEXTURES:
        raise RuntimeError(f"Maximum number of textures ({MAX_TEXTURES}) exceeded")

    texture_kinds[idx] = int(texture.kind)
    texture_color_a[idx] = vec3(*texture.color_a)
    texture_color_b[idx] = vec3(*texture.color_b)
    texture_scale[idx] = vec3(*texture.scale)
    texture_line_width[idx] = texture.line_width
    texture_image[idx] = texture.image
    texture_normal_image[idx] = texture.normal_image
    num_textures[None] = idx + 1
    return idx


# =============================================================================
# Device Lookups
# =============================================================================


@ti.func
def _image_texel(image: ti.i32, u: ti.f32, v: ti.f32, flip: ti.i32):
    """Fetch the texel under (u, v); returns (colour, valid).

    Coordinates outside [0, 1] clamp to the border. A NaN coordinate yields
    an invalid lookup.
    """
    w = ti.cast(image_width[image], ti.f32)
    h = ti.cast(image_height[image], ti.f32)
    i = u * w
    j = v * h - ROW_OFFSET
    if flip == 1:
        j = h - v * h - ROW_OFFSET
    color = vec3(0.0, 0.0, 0.0)
    valid = 0
    if not (tm.isnan(i) or tm.isnan(j)):
        i = tm.clamp(i, 0.0, w - 1.0)
        j = tm.clamp(j, 0.0, h - 1.0)
        x = ti.cast(i, ti.i32)
        y = ti.cast(j, ti.i32)
        color = texels[image_offset[image] + x * image_height[image] + y]
        valid = 1
    return color, valid


@ti.func
def _checker(a: vec3, b: vec3, x: ti.f32, y: ti.f32, z: ti.f32) -> vec3:
    cell = ti.cast(ti.floor(x) + ti.floor(y) + ti.floor(z), ti.i32)
    result = b
    if cell % 2 == 0:
        result = a
    return result


@ti.func
def _grid(a: vec3, b: vec3, width: ti.f32, x: ti.f32, y: ti.f32, z: ti.f32, use_z: ti.i32) -> vec3:
    result = b
    if x - ti.floor(x) < width or y - ti.floor(y) < width:
        result = a
    if use_z == 1 and z - ti.floor(z) < width:
        result = a
    return result


@ti.func
def texture_color(tex: ti.i32, p: vec3, u: ti.f32, v: ti.f32) -> vec3:
    """Evaluate a texture at a hit.

    Args:
        tex: Texture id.
        p: World-space hit point (used by world-space kinds).
        u: Surface u coordinate (used by UV kinds).
        v: Surface v coordinate (used by UV kinds).

    Returns:
        The RGB colour. Image lookups with NaN coordinates return black.
    """
    kind = texture_kinds[tex]
    a = texture_color_a[tex]
    b = texture_color_b[tex]
    s = texture_scale[tex]
    result = a
    if kind == int(TextureKind.CHECKERBOARD):
        result = _checker(a, b, p.x / s.x, p.y / s.y, p.z / s.z)
    elif kind == int(TextureKind.CHECKERBOARD_UV):
        result = _checker(a, b, u / s.x, v / s.y, 0.0)
    elif kind == int(TextureKind.GRID):
        result = _grid(a, b, texture_line_width[tex], p.x / s.x, p.y / s.y, p.z / s.z, 1)
    elif kind == int(TextureKind.GRID_UV):
        result = _grid(a, b, texture_line_width[tex], u / s.x, v / s.y, 0.0, 0)
    elif kind == int(TextureKind.SPHERE_IMAGE_UV) or kind == int(TextureKind.TRIANGLE_IMAGE_UV):
        flip = 0
        if kind == int(TextureKind.TRIANGLE_IMAGE_UV):
            flip = 1
        color, _ = _image_texel(texture_image[tex], u, v, flip)
        result = color
    elif kind == int(TextureKind.GRADIENT):
        t = 0.5 * (tm.normalize(p).y + 1.0)
        result = (1.0 - t) * a + t * b
    return result


@ti.func
def has_normal_map(tex: ti.i32) -> ti.i32:
    return texture_normal_image[tex] >= 0


@ti.func
def texture_normal(tex: ti.i32, u: ti.f32, v: ti.f32) -> vec3:
    """Decode a tangent-space normal from the texture's normal map.

    Texels are mapped from [0, 1] to [-1, 1] and normalized. Rows are flipped
    unless the texture is spherical. Returns (0, 0, 1) when the lookup is
    invalid.
    """
    flip = 1
    if texture_kinds[tex] == int(TextureKind.SPHERE_IMAGE_UV):
        flip = 0
    color, valid = _image_texel(texture_normal_image[tex], u, v, flip)
    result = vec3(0.0, 0.0, 1.0)
    if valid == 1:
        decoded = 2.0 * color - 1.0
        if tm.dot(decoded, decoded) > 0.0:
            result = tm.normalize(decoded)
    return result
