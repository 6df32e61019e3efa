"""Scene module: the renderable world and how it is assembled.

Components:
    intersection: Device storage of primitives and hierarchies, nearest-hit queries
    sky: Atmosphere model, environment texture and background colour
    obj: Wavefront OBJ/MTL loading
    manager: Host-side scene builder and JSON scene descriptions
"""

from .intersection import (
    MAX_OBJECTS,
    MAX_SPHERES,
    MAX_TRIANGLES,
    T_MAX,
    T_MIN,
    clear_scene,
    get_object_count,
    get_sphere_count,
    get_triangle_count,
    intersect_scene,
    is_scene_ready,
)
from .manager import MeshInfo, SceneConfig, SceneManager, SphereInfo
from .obj import MtlMaterial, ObjGroup, ObjScene, load_obj, parse_mtl
from .sky import Atmosphere, clear_sky, miss_color, set_atmosphere, set_environment

__all__ = [
    # Intersection module
    "intersect_scene",
    "clear_scene",
    "is_scene_ready",
    "get_sphere_count",
    "get_triangle_count",
    "get_object_count",
    "T_MIN",
    "T_MAX",
    "MAX_SPHERES",
    "MAX_TRIANGLES",
    "MAX_OBJECTS",
    # Sky module
    "Atmosphere",
    "clear_sky",
    "set_atmosphere",
    "set_environment",
    "miss_color",
    # OBJ module
    "load_obj",
    "parse_mtl",
    "MtlMaterial",
    "ObjGroup",
    "ObjScene",
    # Manager module
    "SceneManager",
    "SceneConfig",
    "SphereInfo",
    "MeshInfo",
]
