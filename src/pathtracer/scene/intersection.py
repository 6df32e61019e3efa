"""Scene-level nearest-hit queries over the uploaded hierarchies.

Primitives and BVH arenas live in Taichi fields (Structure of Arrays). All
triangle meshes share one triangle arena and one node/leaf arena; each mesh
records the index of its own root node. Spheres have a single hierarchy.

Traversal is stackless: nodes are stored in pre-order, an internal node's
left child is the next node, and every node carries a skip link to the first
node outside its subtree. A pre-leaf tests the boxes of its two leaves and
then the primitives inside the leaves that were hit.

Resolution order is fixed: spheres first, then every mesh in insertion
order, with the accepted interval shrinking to the closest hit so far. A
later candidate therefore replaces the record only when strictly closer.

Example:
    >>> clear_scene()
    >>> upload_spheres(centers, radii, material_ids, sphere_bvh.flatten())
    >>> upload_triangles(triangles, [mesh_bvh.flatten()], [0])
    >>> # rec = intersect_scene(ray, T_MIN, T_MAX) inside a kernel
"""

import logging
from collections.abc import Sequence

import numpy as np
import numpy.typing as npt
import taichi as ti

from src.pathtracer.core.vector import Ray
from src.pathtracer.geometry.aabb import hit_aabb
from src.pathtracer.geometry.bvh import NODE_PRE_LEAF, FlatBVH
from src.pathtracer.geometry.sphere import HitRecord, Sphere, empty_hit_record, hit_sphere
from src.pathtracer.geometry.triangle import Triangle, hit_triangle

logger = logging.getLogger(__name__)

# Ray interval used for camera and scattered rays
T_MIN = 1e-4
T_MAX = 1e30

MAX_SPHERES = 4096
MAX_TRIANGLES = 1 << 17
MAX_OBJECTS = 256
MAX_SPHERE_NODES = MAX_SPHERES + 1
MAX_SPHERE_LEAVES = 2 * MAX_SPHERE_NODES
MAX_TRIANGLE_NODES = MAX_TRIANGLES + MAX_OBJECTS
MAX_TRIANGLE_LEAVES = 2 * MAX_TRIANGLE_NODES

# Sphere storage
sphere_centers = ti.Vector.field(3, dtype=ti.f32, shape=MAX_SPHERES)
sphere_radii = ti.field(dtype=ti.f32, shape=MAX_SPHERES)
sphere_material_ids = ti.field(dtype=ti.i32, shape=MAX_SPHERES)
num_spheres = ti.field(dtype=ti.i32, shape=())

# Triangle storage
tri_v0 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_v1 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_v2 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_t0 = ti.Vector.field(2, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_t1 = ti.Vector.field(2, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_t2 = ti.Vector.field(2, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_n0 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_n1 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_n2 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_normal = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLES)
tri_smooth = ti.field(dtype=ti.i32, shape=MAX_TRIANGLES)
tri_material_ids = ti.field(dtype=ti.i32, shape=MAX_TRIANGLES)
num_triangles = ti.field(dtype=ti.i32, shape=())

# Sphere hierarchy
sphere_node_min = ti.Vector.field(3, dtype=ti.f32, shape=MAX_SPHERE_NODES)
sphere_node_max = ti.Vector.field(3, dtype=ti.f32, shape=MAX_SPHERE_NODES)
sphere_node_kind = ti.field(dtype=ti.i32, shape=MAX_SPHERE_NODES)
sphere_node_children = ti.Vector.field(2, dtype=ti.i32, shape=MAX_SPHERE_NODES)
sphere_node_skip = ti.field(dtype=ti.i32, shape=MAX_SPHERE_NODES)
sphere_leaf_min = ti.Vector.field(3, dtype=ti.f32, shape=MAX_SPHERE_LEAVES)
sphere_leaf_max = ti.Vector.field(3, dtype=ti.f32, shape=MAX_SPHERE_LEAVES)
sphere_leaf_start = ti.field(dtype=ti.i32, shape=MAX_SPHERE_LEAVES)
sphere_leaf_count = ti.field(dtype=ti.i32, shape=MAX_SPHERE_LEAVES)
sphere_prim_index = ti.field(dtype=ti.i32, shape=MAX_SPHERES)
sphere_root = ti.field(dtype=ti.i32, shape=())

# Triangle hierarchies (one root per mesh)
tri_node_min = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLE_NODES)
tri_node_max = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLE_NODES)
tri_node_kind = ti.field(dtype=ti.i32, shape=MAX_TRIANGLE_NODES)
tri_node_children = ti.Vector.field(2, dtype=ti.i32, shape=MAX_TRIANGLE_NODES)
tri_node_skip = ti.field(dtype=ti.i32, shape=MAX_TRIANGLE_NODES)
tri_leaf_min = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLE_LEAVES)
tri_leaf_max = ti.Vector.field(3, dtype=ti.f32, shape=MAX_TRIANGLE_LEAVES)
tri_leaf_start = ti.field(dtype=ti.i32, shape=MAX_TRIANGLE_LEAVES)
tri_leaf_count = ti.field(dtype=ti.i32, shape=MAX_TRIANGLE_LEAVES)
tri_prim_index = ti.field(dtype=ti.i32, shape=MAX_TRIANGLES)
object_roots = ti.field(dtype=ti.i32, shape=MAX_OBJECTS)
num_objects = ti.field(dtype=ti.i32, shape=())

_scene_ready = ti.field(dtype=ti.i32, shape=())


def clear_scene() -> None:
    """Remove all primitives and hierarchies from the device scene."""
    num_spheres[None] = 0
    num_triangles[None] = 0
    num_objects[None] = 0
    sphere_root[None] = -1
    _scene_ready[None] = 0


def is_scene_ready() -> bool:
    return bool(_scene_ready[None])


def mark_scene_ready() -> None:
    _scene_ready[None] = 1


def get_sphere_count() -> int:
    return int(num_spheres[None])


def get_triangle_count() -> int:
    return int(num_triangles[None])


def get_object_count() -> int:
    return int(num_objects[None])


def _upload(field, values: npt.ArrayLike, dtype) -> None:
    """Copy values into the head of a fixed-capacity field."""
    data = np.asarray(values, dtype=dtype)
    buffer = np.zeros(field.shape + data.shape[1:], dtype=dtype)
    buffer[: len(data)] = data
    field.from_numpy(buffer)


def _check_capacity(what: str, needed: int, capacity: int) -> None:
    if needed > capacity:
        raise RuntimeError(f"Maximum number of {what} ({capacity}) exceeded: scene needs {needed}")


def upload_spheres(
    centers: npt.ArrayLike,
    radii: npt.ArrayLike,
    material_ids: npt.ArrayLike,
    bvh: FlatBVH,
) -> None:
    """Upload all spheres and their hierarchy.

    Args:
        centers: Sphere centers, shape (N, 3).
        radii: Sphere radii, shape (N,).
        material_ids: Material id per sphere, shape (N,).
        bvh: Flattened sphere hierarchy over the same N spheres.

    Raises:
        RuntimeError: If a capacity is exceeded.
    """
    centers = np.asarray(centers, dtype=np.float32).reshape(-1, 3)
    n = len(centers)
    _check_capacity("spheres", n, MAX_SPHERES)
    _check_capacity("sphere BVH nodes", bvh.num_nodes, MAX_SPHERE_NODES)
    _check_capacity("sphere BVH leaves", bvh.num_leaves, MAX_SPHERE_LEAVES)

    _upload(sphere_centers, centers, np.float32)
    _upload(sphere_radii, np.asarray(radii).reshape(-1), np.float32)
    _upload(sphere_material_ids, np.asarray(material_ids).reshape(-1), np.int32)
    _upload(sphere_node_min, bvh.node_min, np.float32)
    _upload(sphere_node_max, bvh.node_max, np.float32)
    _upload(sphere_node_kind, bvh.node_kind, np.int32)
    _upload(sphere_node_children, bvh.node_children, np.int32)
    _upload(sphere_node_skip, bvh.node_skip, np.int32)
    _upload(sphere_leaf_min, bvh.leaf_min, np.float32)
    _upload(sphere_leaf_max, bvh.leaf_max, np.float32)
    _upload(sphere_leaf_start, bvh.leaf_start, np.int32)
    _upload(sphere_leaf_count, bvh.leaf_count, np.int32)
    _upload(sphere_prim_index, bvh.prim_indices, np.int32)
    num_spheres[None] = n
    sphere_root[None] = 0 if n > 0 else -1
    logger.debug("Uploaded %d spheres in %d BVH nodes", n, bvh.num_nodes)


def upload_triangles(
    triangles: dict[str, npt.NDArray],
    bvhs: Sequence[FlatBVH],
    offsets: Sequence[int],
) -> None:
    """Upload every mesh's triangles and hierarchies into shared arenas.

    Args:
        triangles: Concatenated per-triangle arrays for all meshes with keys
            "positions" (N, 3, 3), "texcoords" (N, 3, 2), "normals" (N, 3, 3),
            "flat_normals" (N, 3), "smooth" (N,) and "material_ids" (N,).
        bvhs: One flattened hierarchy per mesh, built on mesh-local indices.
        offsets: Index of each mesh's first triangle in the arrays.

    Raises:
        ValueError: If bvhs and offsets differ in length.
        RuntimeError: If a capacity is exceeded.
    """
    if len(bvhs) != len(offsets):
        raise ValueError(f"Got {len(bvhs)} hierarchies but {len(offsets)} offsets")
    positions = np.asarray(triangles["positions"], dtype=np.float32).reshape(-1, 3, 3)
    n = len(positions)
    _check_capacity("triangles", n, MAX_TRIANGLES)
    _check_capacity("objects", len(bvhs), MAX_OBJECTS)

    roots, node_parts, leaf_parts = [], [], []
    node_base = leaf_base = 0
    for bvh, offset in zip(bvhs, offsets):
        children = bvh.node_children.copy()
        internal = bvh.node_kind != NODE_PRE_LEAF
        children[internal] += node_base
        children[~internal] += leaf_base
        skip = np.where(bvh.node_skip >= 0, bvh.node_skip + node_base, -1)
        node_parts.append((bvh.node_min, bvh.node_max, bvh.node_kind, children, skip))
        leaf_parts.append((bvh.leaf_min, bvh.leaf_max, bvh.leaf_start + offset, bvh.leaf_count, bvh.prim_indices + offset))
        roots.append(node_base)
        node_base += bvh.num_nodes
        leaf_base += bvh.num_leaves
    _check_capacity("triangle BVH nodes", node_base, MAX_TRIANGLE_NODES)
    _check_capacity("triangle BVH leaves", leaf_base, MAX_TRIANGLE_LEAVES)

    def stack(parts, k, width):
        if not parts:
            return np.zeros((0,) + width)
        return np.concatenate([p[k] for p in parts])

    _upload(tri_v0, positions[:, 0], np.float32)
    _upload(tri_v1, positions[:, 1], np.float32)
    _upload(tri_v2, positions[:, 2], np.float32)
    texcoords = np.asarray(triangles["texcoords"], dtype=np.float32).reshape(-1, 3, 2)
    _upload(tri_t0, texcoords[:, 0], np.float32)
    _upload(tri_t1, texcoords[:, 1], np.float32)
    _upload(tri_t2, texcoords[:, 2], np.float32)
    normals = np.asarray(triangles["normals"], dtype=np.float32).reshape(-1, 3, 3)
    _upload(tri_n0, normals[:, 0], np.float32)
    _upload(tri_n1, normals[:, 1], np.float32)
    _upload(tri_n2, normals[:, 2], np.float32)
    _upload(tri_normal, np.asarray(triangles["flat_normals"]).reshape(-1, 3), np.float32)
    _upload(tri_smooth, np.asarray(triangles["smooth"]).reshape(-1), np.int32)
    _upload(tri_material_ids, np.asarray(triangles["material_ids"]).reshape(-1), np.int32)

    _upload(tri_node_min, stack(node_parts, 0, (3,)), np.float32)
    _upload(tri_node_max, stack(node_parts, 1, (3,)), np.float32)
    _upload(tri_node_kind, stack(node_parts, 2, ()), np.int32)
    _upload(tri_node_children, stack(node_parts, 3, (2,)), np.int32)
    _upload(tri_node_skip, stack(node_parts, 4, ()), np.int32)
    _upload(tri_leaf_min, stack(leaf_parts, 0, (3,)), np.float32)
    _upload(tri_leaf_max, stack(leaf_parts, 1, (3,)), np.float32)
    _upload(tri_leaf_start, stack(leaf_parts, 2, ()), np.int32)
    _upload(tri_leaf_count, stack(leaf_parts, 3, ()), np.int32)
    _upload(tri_prim_index, stack(leaf_parts, 4, ()), np.int32)
    _upload(object_roots, np.asarray(roots), np.int32)

    num_triangles[None] = n
    num_objects[None] = len(bvhs)
    logger.debug("Uploaded %d triangles in %d objects (%d BVH nodes)", n, len(bvhs), node_base)


# =============================================================================
# Device Traversal
# =============================================================================


@ti.func
def _load_sphere(i: ti.i32) -> Sphere:
    return Sphere(center=sphere_centers[i], radius=sphere_radii[i], material_id=sphere_material_ids[i])


@ti.func
def _load_triangle(i: ti.i32) -> Triangle:
    return Triangle(
        v0=tri_v0[i],
        v1=tri_v1[i],
        v2=tri_v2[i],
        t0=tri_t0[i],
        t1=tri_t1[i],
        t2=tri_t2[i],
        n0=tri_n0[i],
        n1=tri_n1[i],
        n2=tri_n2[i],
        normal=tri_normal[i],
        smooth=tri_smooth[i],
        material_id=tri_material_ids[i],
    )


@ti.func
def _intersect_spheres(ray: Ray, t_min: ti.f32, t_max: ti.f32, rec: HitRecord) -> HitRecord:
    result = rec
    closest = t_max
    if result.hit == 1:
        closest = result.t
    node = sphere_root[None]
    while node >= 0:
        next_node = sphere_node_skip[node]
        if hit_aabb(sphere_node_min[node], sphere_node_max[node], ray.origin, ray.direction, t_min, closest):
            if sphere_node_kind[node] == NODE_PRE_LEAF:
                for s in ti.static(range(2)):
                    leaf = sphere_node_children[node][s]
                    count = sphere_leaf_count[leaf]
                    if count > 0:
                        if hit_aabb(sphere_leaf_min[leaf], sphere_leaf_max[leaf], ray.origin, ray.direction, t_min, closest):
                            start = sphere_leaf_start[leaf]
                            for k in range(count):
                                sphere = _load_sphere(sphere_prim_index[start + k])
                                result = hit_sphere(ray, sphere, t_min, closest, result)
                                if result.hit == 1:
                                    closest = result.t
            else:
                next_node = node + 1
        node = next_node
    return result


@ti.func
def _intersect_mesh(root: ti.i32, ray: Ray, t_min: ti.f32, t_max: ti.f32, rec: HitRecord) -> HitRecord:
    result = rec
    closest = t_max
    if result.hit == 1:
        closest = result.t
    node = root
    while node >= 0:
        next_node = tri_node_skip[node]
        if hit_aabb(tri_node_min[node], tri_node_max[node], ray.origin, ray.direction, t_min, closest):
            if tri_node_kind[node] == NODE_PRE_LEAF:
                for s in ti.static(range(2)):
                    leaf = tri_node_children[node][s]
                    count = tri_leaf_count[leaf]
                    if count > 0:
                        if hit_aabb(tri_leaf_min[leaf], tri_leaf_max[leaf], ray.origin, ray.direction, t_min, closest):
                            start = tri_leaf_start[leaf]
                            for k in range(count):
                                tri = _load_triangle(tri_prim_index[start + k])
                                result = hit_triangle(ray, tri, t_min, closest, result)
                                if result.hit == 1:
                                    closest = result.t
            else:
                next_node = node + 1
        node = next_node
    return result


@ti.func
def intersect_scene(ray: Ray, t_min: ti.f32, t_max: ti.f32) -> HitRecord:
    """Find the nearest hit across all spheres and meshes.

    Args:
        ray: The ray to trace.
        t_min: Lower bound of accepted t (self-intersection guard).
        t_max: Upper bound of accepted t.

    Returns:
        The nearest hit record; hit == 0 if nothing was hit.
    """
    rec = _intersect_spheres(ray, t_min, t_max, empty_hit_record())
    for obj in range(num_objects[None]):
        rec = _intersect_mesh(object_roots[obj], ray, t_min, t_max, rec)
    return rec
