"""Wavefront OBJ and MTL loading.

Only the subset needed for rendering is understood:

- ``v``, ``vt``, ``vn`` vertex data, ``f`` faces in any of the
  ``v``, ``v/vt``, ``v//vn`` and ``v/vt/vn`` forms, with negative
  (relative) indices. Polygons are fan triangulated around their first
  vertex.
- ``o`` starts a new object group. Each group becomes its own mesh and
  therefore its own BVH.
- ``mtllib`` and ``usemtl`` attach MTL materials to the following faces.

MTL statements map onto the renderer's material model:

    Kd          diffuse colour
    Ke          emission colour; any positive channel makes the material emissive
    Ks          clearcoat strength (mean of the three channels)
    Ns          roughness r solving 900r^2 - 1800r + 900 - Ns = 0, clamped to [0, 1]
    Ni          index of refraction
    d / Tr      transmission (1 - d, or Tr directly)
    illum       1 Lambertian; 2, 4, 6, 7, 9 BSDF; 3 metallic BSDF
    map_Kd      diffuse image (map_Ke is treated the same way)
    map_Bump    normal map (also bump, map_bump)

Relative file names are resolved against the directory of the file that
mentions them. Missing material libraries and texture images are skipped
with a warning; a missing OBJ file raises FileNotFoundError.

Example:
    >>> scene = load_obj("models/teapot.obj", transform=scaling(0.5, 0.5, 0.5))
    >>> for group in scene.groups:
    ...     print(group.name, len(group))
"""

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import numpy.typing as npt

from src.pathtracer.core.vector import transform_directions, transform_points
from src.pathtracer.geometry.triangle import face_normals
from src.pathtracer.materials.material import Material, MaterialKind

logger = logging.getLogger(__name__)

BSDF_ILLUM_MODELS = (2, 4, 6, 7, 9)
METALLIC_ILLUM_MODEL = 3


@dataclass
class MtlMaterial:
    """One ``newmtl`` block of a material library.

    Attributes:
        name: Material name used by ``usemtl``.
        diffuse: Kd colour.
        emission: Ke colour, or None when the material does not emit.
        specularity: Clearcoat strength from Ks.
        roughness: Roughness derived from Ns; also used for the coat.
        ior: Index of refraction from Ni.
        transmission: Transmission probability from d or Tr.
        illum: The illumination model number, if given.
        diffuse_map: Image file from map_Kd or map_Ke.
        bump_map: Normal map image file.
        library: The material library file that defined the material.
    """

    name: str
    diffuse: tuple[float, float, float] = (0.8, 0.8, 0.8)
    emission: tuple[float, float, float] | None = None
    specularity: float = 0.0
    roughness: float = 0.0
    ior: float = 1.5
    transmission: float = 0.0
    illum: int | None = None
    diffuse_map: Path | None = None
    bump_map: Path | None = None
    library: Path | None = None

    @property
    def kind(self) -> MaterialKind:
        if self.emission is not None:
            return MaterialKind.EMISSION
        if self.illum in BSDF_ILLUM_MODELS or self.illum == METALLIC_ILLUM_MODEL:
            return MaterialKind.BSDF
        return MaterialKind.LAMBERTIAN

    @property
    def color(self) -> tuple[float, float, float]:
        """Albedo colour: the emission colour for emitters, Kd otherwise."""
        return self.emission if self.emission is not None else self.diffuse

    def to_material(self, texture: int) -> Material:
        """Renderer material using the given albedo texture id."""
        kind = self.kind
        return Material(
            kind,
            texture,
            roughness=self.roughness,
            ior=self.ior,
            specularity=self.specularity,
            clearcoat_roughness=self.roughness,
            metallic=1.0 if kind == MaterialKind.BSDF and self.illum == METALLIC_ILLUM_MODEL else 0.0,
            transmission=self.transmission,
        )


@dataclass
class ObjGroup:
    """Triangles of one OBJ object.

    Attributes:
        name: Object name from the ``o`` statement.
        positions: Vertex positions, shape (N, 3, 3).
        texcoords: Texture coordinates, shape (N, 3, 2); zero where the face
            has none.
        normals: Vertex normals, shape (N, 3, 3); the face normal where the
            face has none.
        materials: MTL material name per triangle, None for the default.
    """

    name: str
    positions: npt.NDArray[np.float64]
    texcoords: npt.NDArray[np.float64]
    normals: npt.NDArray[np.float64]
    materials: list[str | None]

    def __len__(self) -> int:
        return len(self.positions)


@dataclass
class ObjScene:
    groups: list[ObjGroup] = field(default_factory=list)
    materials: dict[str, MtlMaterial] = field(default_factory=dict)

    @property
    def num_triangles(self) -> int:
        return sum(len(g) for g in self.groups)


# =============================================================================
# MTL Parsing
# =============================================================================


def roughness_from_shininess(ns: float) -> float:
    """Map a Phong exponent to roughness via the smaller root of
    900r^2 - 1800r + 900 - Ns = 0, clamped to [0, 1].

    A negative exponent has no real root and maps to 1.
    """
    if ns < 0.0:
        return 1.0
    return min(max(1.0 - math.sqrt(ns) / 30.0, 0.0), 1.0)


def _color(fields: list[str]) -> tuple[float, float, float]:
    values = [float(x) for x in fields[1:4]]
    if len(values) == 1:
        values *= 3
    if len(values) != 3:
        raise ValueError(f"Expected a colour, got '{' '.join(fields)}'")
    return (values[0], values[1], values[2])


def _map_path(fields: list[str], base_dir: Path) -> Path | None:
    # Map options (-bm 1.0, -s 1 1 1, ...) precede the file name
    path = base_dir / fields[-1]
    if not path.is_file():
        logger.warning("Texture image %s not found; ignoring", path)
        return None
    return path


def parse_mtl(path: str | Path) -> dict[str, MtlMaterial]:
    """Parse every ``newmtl`` block of a material library.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a numeric statement cannot be parsed.
    """
    path = Path(path)
    base_dir = path.parent
    materials: dict[str, MtlMaterial] = {}
    current: MtlMaterial | None = None

    with open(path, encoding="utf-8") as f:
        for line in f:
            fields = line.split()
            if not fields or fields[0].startswith("#"):
                continue
            key = fields[0]
            if key == "newmtl":
                current = MtlMaterial(name=" ".join(fields[1:]), library=path.resolve())
                materials[current.name] = current
                continue
            if current is None:
                continue

            if key == "Kd":
                current.diffuse = _color(fields)
            elif key == "Ke":
                ke = _color(fields)
                if any(c > 0.0 for c in ke):
                    current.emission = ke
            elif key == "Ks":
                current.specularity = min(max(sum(_color(fields)) / 3.0, 0.0), 1.0)
            elif key == "Ns":
                current.roughness = roughness_from_shininess(float(fields[1]))
            elif key == "Ni":
                current.ior = float(fields[1])
            elif key == "d":
                current.transmission = min(max(1.0 - float(fields[1]), 0.0), 1.0)
            elif key == "Tr":
                current.transmission = min(max(float(fields[1]), 0.0), 1.0)
            elif key == "illum":
                current.illum = int(fields[1])
            elif key in ("map_Kd", "map_Ke"):
                current.diffuse_map = _map_path(fields, base_dir)
            elif key in ("map_Bump", "map_bump", "bump"):
                current.bump_map = _map_path(fields, base_dir)

    logger.debug("Parsed %d materials from %s", len(materials), path)
    return materials


# =============================================================================
# OBJ Parsing
# =============================================================================


def _resolve(token: str, count: int, what: str, line_no: int) -> int:
    """Zero-based index for a 1-based (or negative, relative) OBJ index."""
    index = int(token)
    if index < 0:
        index = count + index + 1
    if not 1 <= index <= count:
        raise ValueError(f"Line {line_no}: {what} index {token} out of range (have {count})")
    return index - 1


class _GroupBuilder:
    def __init__(self, name: str) -> None:
        self.name = name
        self.positions: list[list[int]] = []
        self.texcoords: list[list[int] | None] = []
        self.normals: list[list[int] | None] = []
        self.materials: list[str | None] = []

    def __len__(self) -> int:
        return len(self.positions)

    def finish(self, vertices, uvs, vertex_normals, transform) -> ObjGroup:
        n = len(self.positions)
        positions = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)[np.asarray(self.positions, dtype=np.int64)]
        positions = positions.reshape(n, 3, 3)
        texcoords = np.zeros((n, 3, 2))
        normals = np.zeros((n, 3, 3))
        uv_table = np.asarray(uvs, dtype=np.float64).reshape(-1, 2)
        normal_table = np.asarray(vertex_normals, dtype=np.float64).reshape(-1, 3)
        missing = np.zeros(n, dtype=bool)
        for i in range(n):
            if self.texcoords[i] is not None:
                texcoords[i] = uv_table[self.texcoords[i]]
            if self.normals[i] is not None:
                normals[i] = normal_table[self.normals[i]]
            else:
                missing[i] = True

        if transform is not None:
            positions = transform_points(transform, positions)
            normals = transform_directions(transform, normals)
            length = np.linalg.norm(normals, axis=2, keepdims=True)
            normals = np.divide(normals, length, out=np.zeros_like(normals), where=length > 0.0)

        if missing.any():
            normals[missing] = face_normals(positions[missing])[:, None, :]

        return ObjGroup(self.name, positions, texcoords, normals, list(self.materials))


def load_obj(path: str | Path, transform: npt.ArrayLike | None = None) -> ObjScene:
    """Load the triangles and materials of an OBJ file.

    Args:
        path: The OBJ file.
        transform: Optional 4x4 matrix applied to positions (as points) and
            normals (as directions, renormalized).

    Returns:
        The object groups in file order (empty groups are dropped) and the
        materials of every referenced library.

    Raises:
        FileNotFoundError: If the OBJ file does not exist.
        ValueError: If a statement is malformed or an index is out of range.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"OBJ file not found: {path}")
    logger.info("Loading 3D scene from %s", path)

    base_dir = path.parent
    scene = ObjScene()
    vertices: list[tuple[float, float, float]] = []
    uvs: list[tuple[float, float]] = []
    vertex_normals: list[tuple[float, float, float]] = []
    builders = [_GroupBuilder(path.stem)]
    material: str | None = None

    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            fields = line.split()
            if not fields or fields[0].startswith("#"):
                continue
            key = fields[0]

            if key == "v":
                vertices.append((float(fields[1]), float(fields[2]), float(fields[3])))
            elif key == "vt":
                v = float(fields[2]) if len(fields) > 2 else 0.0
                uvs.append((float(fields[1]), v))
            elif key == "vn":
                vertex_normals.append((float(fields[1]), float(fields[2]), float(fields[3])))
            elif key == "o":
                name = " ".join(fields[1:]) or f"{path.stem}.{len(builders)}"
                if len(builders[-1]) > 0:
                    builders.append(_GroupBuilder(name))
                else:
                    builders[-1].name = name
            elif key == "mtllib":
                for library in fields[1:]:
                    mtl_path = base_dir / library
                    if mtl_path.is_file():
                        logger.info("Opening material library file %s", mtl_path)
                        scene.materials.update(parse_mtl(mtl_path))
                    else:
                        logger.warning("Material library %s not found; ignoring", mtl_path)
            elif key == "usemtl":
                name = " ".join(fields[1:])
                material = name if name in scene.materials else None
                if material is None:
                    logger.warning("Line %d: unknown material '%s'; using the default", line_no, name)
            elif key == "f":
                if len(fields) < 4:
                    raise ValueError(f"Line {line_no}: face needs at least 3 vertices")
                corners = [_parse_corner(c, vertices, uvs, vertex_normals, line_no) for c in fields[1:]]
                group = builders[-1]
                for i in range(1, len(corners) - 1):
                    tri = (corners[0], corners[i], corners[i + 1])
                    group.positions.append([c[0] for c in tri])
                    group.texcoords.append([c[1] for c in tri] if all(c[1] is not None for c in tri) else None)
                    group.normals.append([c[2] for c in tri] if all(c[2] is not None for c in tri) else None)
                    group.materials.append(material)

    for builder in builders:
        if len(builder) > 0:
            scene.groups.append(builder.finish(vertices, uvs, vertex_normals, transform))
    logger.info(
        "Loaded %d triangles in %d objects from %s", scene.num_triangles, len(scene.groups), path.name
    )
    return scene


def _parse_corner(token: str, vertices, uvs, vertex_normals, line_no: int) -> tuple[int, int | None, int | None]:
    parts = token.split("/")
    v = _resolve(parts[0], len(vertices), "vertex", line_no)
    vt = _resolve(parts[1], len(uvs), "texture", line_no) if len(parts) > 1 and parts[1] else None
    vn = _resolve(parts[2], len(vertex_normals), "normal", line_no) if len(parts) > 2 and parts[2] else None
    return v, vt, vn
