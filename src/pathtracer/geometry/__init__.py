"""Geometry module for primitives and spatial acceleration.

Components:
    aabb: Axis-aligned bounding boxes and the slab test
    bvh: Triangle and sphere bounding volume hierarchies
    sphere: Sphere primitive, hit records and ray-sphere intersection
    triangle: Triangle primitive with Moller-Trumbore intersection

Hierarchies are built on the host with NumPy and flattened for stackless
traversal inside Taichi kernels.
"""

from .aabb import AABB, hit_aabb
from .bvh import BVHNode, FlatBVH, InternalNode, Leaf, PreLeafNode, SphereBVH, TriangleBVH
from .sphere import HitRecord, Sphere, empty_hit_record, hit_sphere, solve_sphere
from .triangle import Triangle, face_normals, flat_normals, hit_triangle

__all__ = [
    "AABB",
    "hit_aabb",
    "BVHNode",
    "FlatBVH",
    "InternalNode",
    "Leaf",
    "PreLeafNode",
    "SphereBVH",
    "TriangleBVH",
    "HitRecord",
    "Sphere",
    "empty_hit_record",
    "hit_sphere",
    "solve_sphere",
    "Triangle",
    "face_normals",
    "flat_normals",
    "hit_triangle",
]
