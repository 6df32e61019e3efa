"""Scene manager coordinating images, textures, materials and geometry.

The SceneManager is the host-side entry point for building a scene. It
registers images, textures and materials in the device registries (one
unified id space each), collects spheres and triangle meshes on the host,
and on ``build()`` constructs one sphere BVH plus one triangle BVH per mesh
and uploads everything for rendering.

Geometry changes after a build mark the device scene as stale; rendering
requires another ``build()``.

Example:
    >>> scene = SceneManager()
    >>> red = scene.add_texture(constant((0.8, 0.1, 0.1)))
    >>> diffuse = scene.add_material(lambertian(red))
    >>> scene.add_sphere((0.0, 0.0, -1.0), 0.5, diffuse)
    >>> scene.load_obj("models/bunny.obj")
    >>> scene.set_environment(scene.add_texture(gradient()))
    >>> scene.build()
"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import numpy.typing as npt

from src.pathtracer.camera.thin_lens import ThinLensCamera, reset_camera, setup_camera
from src.pathtracer.geometry.bvh import SphereBVH, TriangleBVH
from src.pathtracer.geometry.triangle import face_normals, flat_normals
from src.pathtracer.materials.material import (
    MAX_MATERIALS,
    Material,
    add_material,
    clear_materials,
    get_material_count,
    lambertian,
)
from src.pathtracer.materials.texture import (
    MAX_IMAGES,
    MAX_TEXTURES,
    Texture,
    add_image,
    add_texture,
    clear_textures,
    constant,
    image_texture,
    load_image,
)
from src.pathtracer.scene.intersection import (
    MAX_OBJECTS,
    MAX_SPHERES,
    MAX_TRIANGLES,
    clear_scene,
    is_scene_ready,
    mark_scene_ready,
    upload_spheres,
    upload_triangles,
)
from src.pathtracer.scene.obj import MtlMaterial
from src.pathtracer.scene.obj import load_obj as read_obj
from src.pathtracer.scene.sky import Atmosphere, clear_sky, set_atmosphere, set_environment

logger = logging.getLogger(__name__)

# Albedo of OBJ faces that carry no material
DEFAULT_OBJ_COLOR = (0.8, 0.8, 0.8)


@dataclass
class SceneConfig:
    """BVH construction parameters.

    Attributes:
        leaf_size: Triangle nodes become pre-leaves at this half-size.
        triangle_max_depth: Depth budget of every triangle hierarchy.
        sphere_max_depth: Depth budget of the sphere hierarchy.
    """

    leaf_size: int = 100
    triangle_max_depth: int = 24
    sphere_max_depth: int = 24


@dataclass
class SphereInfo:
    center: tuple[float, float, float]
    radius: float
    material_id: int


@dataclass
class MeshInfo:
    """A triangle mesh kept on the host until the scene is built.

    Attributes:
        name: Mesh name, for logs.
        positions: Vertex positions, shape (N, 3, 3).
        texcoords: Texture coordinates, shape (N, 3, 2).
        normals: Vertex normals, shape (N, 3, 3).
        material_ids: Material id per triangle, shape (N,).
        smooth: Interpolate vertex normals when shading.
        obj_source: Index into the manager's OBJ loads when the mesh came
            from a file, None for meshes added directly.
    """

    name: str
    positions: npt.NDArray[np.float64]
    texcoords: npt.NDArray[np.float64]
    normals: npt.NDArray[np.float64]
    material_ids: npt.NDArray[np.int32]
    smooth: bool
    obj_source: int | None = None

    def __len__(self) -> int:
        return len(self.positions)


@dataclass
class _ObjLoad:
    path: Path
    material_id: int | None
    transform: list[list[float]] | None
    smooth: bool


@dataclass
class _Derived:
    """Registry ids created implicitly while loading OBJ files."""

    images: set[int] = field(default_factory=set)
    textures: set[int] = field(default_factory=set)
    materials: set[int] = field(default_factory=set)


class SceneManager:
    """Host-side scene builder.

    Attributes:
        config: BVH construction parameters used by build().
        images: Source of every registered image: {"path": ...} or
            {"pixels": array}.
        textures: Every registered texture, indexed by texture id.
        materials: Every registered material, indexed by material id.
        spheres: Spheres in insertion order.
        meshes: Triangle meshes in insertion order.
        atmosphere: The analytic sky, if enabled.
        environment: Environment texture id, if any.
        background: Flat colour for escaped rays when neither is set.
        camera: The camera last passed to set_camera().
        sphere_bvh: Sphere hierarchy of the last build.
        mesh_bvhs: One hierarchy per mesh from the last build.
    """

    def __init__(self, config: SceneConfig | None = None) -> None:
        self.config = config or SceneConfig()
        self.images: list[dict[str, Any]] = []
        self.textures: list[Texture] = []
        self.materials: list[Material] = []
        self.spheres: list[SphereInfo] = []
        self.meshes: list[MeshInfo] = []
        self.atmosphere: Atmosphere | None = None
        self.environment: int | None = None
        self.background: tuple[float, float, float] = (0.0, 0.0, 0.0)
        self.camera: ThinLensCamera | None = None
        self.sphere_bvh: SphereBVH | None = None
        self.mesh_bvhs: list[TriangleBVH] = []
        self._obj_loads: list[_ObjLoad] = []
        self._derived = _Derived()
        self._image_cache: dict[Path, int] = {}
        self._obj_materials: dict[tuple[Path | None, str], int] = {}
        self._default_obj_material: int | None = None
        self._clear_all()

    def _clear_all(self) -> None:
        clear_scene()
        clear_materials()
        clear_textures()
        clear_sky()
        reset_camera()
        self.images.clear()
        self.textures.clear()
        self.materials.clear()
        self.spheres.clear()
        self.meshes.clear()
        self.atmosphere = None
        self.environment = None
        self.background = (0.0, 0.0, 0.0)
        self.camera = None
        self.sphere_bvh = None
        self.mesh_bvhs = []
        self._obj_loads.clear()
        self._derived = _Derived()
        self._image_cache.clear()
        self._obj_materials.clear()
        self._default_obj_material = None

    def clear(self) -> None:
        """Remove everything: geometry, registries, sky and camera."""
        self._clear_all()

    def _invalidate(self) -> None:
        # Device geometry no longer matches the host lists
        if is_scene_ready():
            clear_scene()

    # =========================================================================
    # Images, Textures and Materials
    # =========================================================================

    def add_image(self, pixels: npt.ArrayLike) -> int:
        """Register an (H, W, 3) float image, top row first, and return its id."""
        pixels = np.asarray(pixels, dtype=np.float32)
        image_id = add_image(pixels)
        self.images.append({"pixels": pixels})
        return image_id

    def load_image(self, path: str | Path) -> int:
        """Register an image file, reusing the id if the same file was loaded before.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        return self._load_image(path, derived=False)

    def _load_image(self, path: str | Path, derived: bool) -> int:
        resolved = Path(path).resolve()
        if resolved in self._image_cache:
            image_id = self._image_cache[resolved]
            if not derived:
                self._derived.images.discard(image_id)
            return image_id
        if not resolved.is_file():
            raise FileNotFoundError(f"Image file not found: {path}")
        logger.info("Loading image %s", path)
        image_id = add_image(load_image(resolved))
        self.images.append({"path": str(path)})
        self._image_cache[resolved] = image_id
        if derived:
            self._derived.images.add(image_id)
        return image_id

    def add_texture(self, texture: Texture) -> int:
        """Register a texture and return its id."""
        texture_id = add_texture(texture)
        self.textures.append(texture)
        return texture_id

    def add_material(self, material: Material) -> int:
        """Register a material and return its id."""
        material_id = add_material(material)
        self.materials.append(material)
        return material_id

    def get_material_count(self) -> int:
        return get_material_count()

    def _check_material(self, material_id: int) -> None:
        if not 0 <= material_id < get_material_count():
            raise ValueError(f"Invalid material_id: {material_id}")

    # =========================================================================
    # Geometry
    # =========================================================================

    def add_sphere(self, center: tuple[float, float, float], radius: float, material_id: int) -> int:
        """Add a sphere and return its index.

        Raises:
            ValueError: If the radius is not positive or material_id is invalid.
            RuntimeError: If the maximum number of spheres is exceeded.
        """
        if radius <= 0.0:
            raise ValueError(f"Sphere radius must be positive, got {radius}")
        self._check_material(material_id)
        if len(self.spheres) >= MAX_SPHERES:
            raise RuntimeError(f"Maximum number of spheres ({MAX_SPHERES}) exceeded")
        self.spheres.append(SphereInfo(tuple(float(c) for c in center), float(radius), material_id))
        self._invalidate()
        return len(self.spheres) - 1

    def add_mesh(
        self,
        positions: npt.ArrayLike,
        material_id: int | npt.ArrayLike,
        texcoords: npt.ArrayLike | None = None,
        normals: npt.ArrayLike | None = None,
        smooth: bool = False,
        name: str | None = None,
    ) -> int:
        """Add a triangle mesh and return its index.

        Each mesh gets its own BVH on build().

        Args:
            positions: Triangle vertices, shape (N, 3, 3).
            material_id: One material id for all triangles, or one per triangle.
            texcoords: Per-vertex texture coordinates (N, 3, 2); zeros if omitted.
            normals: Per-vertex normals (N, 3, 3); face normals if omitted.
            smooth: Interpolate vertex normals when shading.
            name: Optional mesh name.

        Raises:
            ValueError: If the mesh is empty, array shapes disagree or a
                material id is invalid.
            RuntimeError: If the triangle or object capacity is exceeded.
        """
        return self._add_mesh(positions, material_id, texcoords, normals, smooth, name, None)

    def _add_mesh(self, positions, material_id, texcoords, normals, smooth, name, obj_source) -> int:
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3, 3)
        n = len(positions)
        if n == 0:
            raise ValueError("Mesh must contain at least one triangle")

        ids = np.asarray(material_id, dtype=np.int32).reshape(-1)
        if ids.size == 1:
            ids = np.full(n, ids[0], dtype=np.int32)
        if len(ids) != n:
            raise ValueError(f"Got {len(ids)} material ids for {n} triangles")
        for mid in np.unique(ids):
            self._check_material(int(mid))

        if texcoords is None:
            texcoords = np.zeros((n, 3, 2))
        texcoords = np.asarray(texcoords, dtype=np.float64).reshape(-1, 3, 2)
        if normals is None:
            normals = np.repeat(face_normals(positions)[:, None, :], 3, axis=1)
        normals = np.asarray(normals, dtype=np.float64).reshape(-1, 3, 3)
        if len(texcoords) != n or len(normals) != n:
            raise ValueError(f"texcoords and normals must cover all {n} triangles")

        if len(self.meshes) >= MAX_OBJECTS:
            raise RuntimeError(f"Maximum number of objects ({MAX_OBJECTS}) exceeded")
        total = sum(len(m) for m in self.meshes) + n
        if total > MAX_TRIANGLES:
            raise RuntimeError(f"Maximum number of triangles ({MAX_TRIANGLES}) exceeded")

        mesh_name = name or f"mesh{len(self.meshes)}"
        self.meshes.append(MeshInfo(mesh_name, positions, texcoords, normals, ids, bool(smooth), obj_source))
        self._invalidate()
        return len(self.meshes) - 1

    def load_obj(
        self,
        path: str | Path,
        material_id: int | None = None,
        transform: npt.ArrayLike | None = None,
        smooth: bool = True,
    ) -> list[int]:
        """Load every object of an OBJ file as a separate mesh.

        Args:
            path: The OBJ file.
            material_id: Material for every face, overriding the file's
                materials. None uses the MTL materials.
            transform: Optional 4x4 matrix applied to the geometry.
            smooth: Interpolate vertex normals when shading.

        Returns:
            The mesh indices, one per object group.

        Raises:
            FileNotFoundError: If the OBJ file does not exist.
        """
        if material_id is not None:
            self._check_material(material_id)
        obj = read_obj(path, transform)
        source = len(self._obj_loads)
        self._obj_loads.append(
            _ObjLoad(
                Path(path),
                material_id,
                None if transform is None else np.asarray(transform, dtype=np.float64).tolist(),
                smooth,
            )
        )

        mesh_ids = []
        for group in obj.groups:
            if material_id is not None:
                ids = np.full(len(group), material_id, dtype=np.int32)
            else:
                ids = np.array([self._obj_material(name, obj.materials) for name in group.materials], dtype=np.int32)
            mesh_ids.append(
                self._add_mesh(group.positions, ids, group.texcoords, group.normals, smooth, group.name, source)
            )
        return mesh_ids

    def _obj_material(self, name: str | None, library: dict[str, MtlMaterial]) -> int:
        if name is None:
            if self._default_obj_material is None:
                texture = self._add_derived_texture(constant(DEFAULT_OBJ_COLOR))
                self._default_obj_material = self._add_derived_material(lambertian(texture))
            return self._default_obj_material

        mtl = library[name]
        # Libraries of different files may reuse a material name
        key = (mtl.library, name)
        if key in self._obj_materials:
            return self._obj_materials[key]

        logger.info("Loading new material: %s", name)
        normal_image = -1 if mtl.bump_map is None else self._load_image(mtl.bump_map, derived=True)
        if mtl.diffuse_map is not None:
            texture = image_texture(self._load_image(mtl.diffuse_map, derived=True), normal_image)
        else:
            texture = constant(mtl.color, normal_image)
        material_id = self._add_derived_material(mtl.to_material(self._add_derived_texture(texture)))
        self._obj_materials[key] = material_id
        return material_id

    def _add_derived_texture(self, texture: Texture) -> int:
        texture_id = self.add_texture(texture)
        self._derived.textures.add(texture_id)
        return texture_id

    def _add_derived_material(self, material: Material) -> int:
        material_id = self.add_material(material)
        self._derived.materials.add(material_id)
        return material_id

    # =========================================================================
    # Sky and Camera
    # =========================================================================

    def set_atmosphere(self, atmosphere: Atmosphere | None) -> None:
        """Enable the analytic sky, or disable it with None."""
        set_atmosphere(atmosphere)
        self.atmosphere = atmosphere

    def set_environment(
        self, texture: int | None = None, background: tuple[float, float, float] = (0.0, 0.0, 0.0)
    ) -> None:
        """Set the environment texture and background colour for escaped rays."""
        set_environment(texture, background)
        self.environment = texture
        self.background = tuple(background)

    def set_camera(self, camera: ThinLensCamera) -> None:
        """Validate and upload the camera."""
        setup_camera(camera)
        self.camera = camera

    # =========================================================================
    # Build
    # =========================================================================

    def build(self) -> None:
        """Construct all hierarchies and upload the scene for rendering.

        Raises:
            RuntimeError: If a device capacity is exceeded.
        """
        cfg = self.config
        centers = np.array([s.center for s in self.spheres], dtype=np.float64).reshape(-1, 3)
        radii = np.array([s.radius for s in self.spheres], dtype=np.float64)
        sphere_ids = np.array([s.material_id for s in self.spheres], dtype=np.int32)
        self.sphere_bvh = SphereBVH.build(centers, radii, cfg.sphere_max_depth)
        self.mesh_bvhs = [TriangleBVH.build(m.positions, cfg.leaf_size, cfg.triangle_max_depth) for m in self.meshes]

        offsets = np.cumsum([0] + [len(m) for m in self.meshes])[:-1].tolist()
        if self.meshes:
            normals = np.concatenate([m.normals for m in self.meshes])
            triangles = {
                "positions": np.concatenate([m.positions for m in self.meshes]),
                "texcoords": np.concatenate([m.texcoords for m in self.meshes]),
                "normals": normals,
                "flat_normals": flat_normals(normals),
                "smooth": np.concatenate([np.full(len(m), int(m.smooth)) for m in self.meshes]),
                "material_ids": np.concatenate([m.material_ids for m in self.meshes]),
            }
        else:
            triangles = {
                "positions": np.zeros((0, 3, 3)),
                "texcoords": np.zeros((0, 3, 2)),
                "normals": np.zeros((0, 3, 3)),
                "flat_normals": np.zeros((0, 3)),
                "smooth": np.zeros(0),
                "material_ids": np.zeros(0),
            }

        clear_scene()
        upload_spheres(centers, radii, sphere_ids, self.sphere_bvh.flatten())
        upload_triangles(triangles, [bvh.flatten() for bvh in self.mesh_bvhs], offsets)
        mark_scene_ready()
        logger.info(
            "Built scene: %d spheres, %d triangles in %d objects, %d materials",
            len(self.spheres),
            self.get_triangle_count(),
            len(self.meshes),
            get_material_count(),
        )

    # =========================================================================
    # Scene Queries
    # =========================================================================

    def get_sphere_count(self) -> int:
        return len(self.spheres)

    def get_triangle_count(self) -> int:
        return sum(len(m) for m in self.meshes)

    def get_object_count(self) -> int:
        return len(self.meshes)

    @staticmethod
    def get_max_spheres() -> int:
        return MAX_SPHERES

    @staticmethod
    def get_max_triangles() -> int:
        return MAX_TRIANGLES

    @staticmethod
    def get_max_materials() -> int:
        return MAX_MATERIALS

    @staticmethod
    def get_max_textures() -> int:
        return MAX_TEXTURES

    @staticmethod
    def get_max_images() -> int:
        return MAX_IMAGES

    # =========================================================================
    # Scene Serialization
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        """Export the scene as a JSON-friendly dictionary.

        Resources created while loading OBJ files are not written; the
        "objs" entries recreate them. Explicit resources are renumbered so
        that they come first, which is the order from_dict() registers them.

        Raises:
            ValueError: If an explicit resource or a sphere refers to a
                resource that was created by an OBJ load.
        """
        image_map = _renumber(len(self.images), self._derived.images)
        texture_map = _renumber(len(self.textures), self._derived.textures)
        material_map = _renumber(len(self.materials), self._derived.materials)

        def remap(mapping: dict[int, int], old: int, what: str) -> int:
            if old < 0:
                return old
            if old not in mapping:
                raise ValueError(f"Cannot serialize a reference to {what} {old} created by an OBJ load")
            return mapping[old]

        images = []
        for i, source in enumerate(self.images):
            if i in image_map:
                if "path" in source:
                    images.append({"path": source["path"]})
                else:
                    images.append({"pixels": source["pixels"].tolist()})

        textures = []
        for i, texture in enumerate(self.textures):
            if i in texture_map:
                data = texture.to_dict()
                data["image"] = remap(image_map, texture.image, "image")
                data["normal_image"] = remap(image_map, texture.normal_image, "image")
                textures.append(data)

        materials = []
        for i, material in enumerate(self.materials):
            if i in material_map:
                data = material.to_dict()
                data["texture"] = remap(texture_map, material.texture, "texture")
                materials.append(data)

        spheres = [
            {
                "center": list(s.center),
                "radius": s.radius,
                "material_id": remap(material_map, s.material_id, "material"),
            }
            for s in self.spheres
        ]

        meshes = []
        for mesh in self.meshes:
            if mesh.obj_source is not None:
                continue
            meshes.append(
                {
                    "name": mesh.name,
                    "positions": mesh.positions.tolist(),
                    "texcoords": mesh.texcoords.tolist(),
                    "normals": mesh.normals.tolist(),
                    "material_id": [remap(material_map, int(m), "material") for m in mesh.material_ids],
                    "smooth": mesh.smooth,
                }
            )

        objs = [
            {
                "path": str(load.path),
                "material_id": None if load.material_id is None else remap(material_map, load.material_id, "material"),
                "transform": load.transform,
                "smooth": load.smooth,
            }
            for load in self._obj_loads
        ]

        return {
            "config": asdict(self.config),
            "images": images,
            "textures": textures,
            "materials": materials,
            "spheres": spheres,
            "meshes": meshes,
            "objs": objs,
            "sky": {
                "atmosphere": None if self.atmosphere is None else self.atmosphere.to_dict(),
                "environment": None if self.environment is None else remap(texture_map, self.environment, "texture"),
                "background": list(self.background),
            },
            "camera": None if self.camera is None else self.camera.to_dict(),
        }

    def from_dict(self, data: dict[str, Any], base_dir: str | Path | None = None) -> None:
        """Replace the scene with one described by to_dict() output.

        Args:
            data: The scene description. Every section is optional.
            base_dir: Directory that relative image and OBJ paths are
                resolved against. Defaults to the working directory.

        Raises:
            ValueError: If the description contains invalid data.
            FileNotFoundError: If a referenced file is missing.
        """
        self.clear()
        base = Path(base_dir) if base_dir is not None else Path(".")

        def resolve(p: str) -> Path:
            path = Path(p)
            return path if path.is_absolute() else base / path

        if "config" in data:
            self.config = SceneConfig(**data["config"])
        for image in data.get("images", []):
            if "path" in image:
                self.load_image(resolve(image["path"]))
            else:
                self.add_image(image["pixels"])
        for texture in data.get("textures", []):
            self.add_texture(Texture.from_dict(texture))
        for material in data.get("materials", []):
            self.add_material(Material.from_dict(material))
        for sphere in data.get("spheres", []):
            self.add_sphere(tuple(sphere["center"]), sphere["radius"], sphere["material_id"])
        for mesh in data.get("meshes", []):
            self.add_mesh(
                mesh["positions"],
                mesh["material_id"],
                texcoords=mesh.get("texcoords"),
                normals=mesh.get("normals"),
                smooth=mesh.get("smooth", False),
                name=mesh.get("name"),
            )
        for obj in data.get("objs", []):
            self.load_obj(
                resolve(obj["path"]),
                material_id=obj.get("material_id"),
                transform=obj.get("transform"),
                smooth=obj.get("smooth", True),
            )

        sky = data.get("sky", {})
        if sky.get("atmosphere") is not None:
            self.set_atmosphere(Atmosphere.from_dict(sky["atmosphere"]))
        if "environment" in sky or "background" in sky:
            self.set_environment(sky.get("environment"), tuple(sky.get("background", (0.0, 0.0, 0.0))))
        if data.get("camera") is not None:
            self.set_camera(ThinLensCamera.from_dict(data["camera"]))

    def __repr__(self) -> str:
        return (
            f"SceneManager(spheres={len(self.spheres)}, meshes={len(self.meshes)}, "
            f"triangles={self.get_triangle_count()}, materials={len(self.materials)})"
        )


def _renumber(count: int, derived: set[int]) -> dict[int, int]:
    """Map the ids not in derived onto 0, 1, ... in order."""
    explicit = [i for i in range(count) if i not in derived]
    return {old: new for new, old in enumerate(explicit)}
