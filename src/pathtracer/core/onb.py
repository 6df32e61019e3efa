"""Orthonormal basis construction around a surface normal.

The basis is used to carry tangent-space samples (GGX half-vectors, normal
map texels) into world space. The helper axis is (1, 0, 0) unless the normal
already points mostly along +x, in which case (0, 1, 0) is used so the cross
product never degenerates.
"""

import taichi as ti
import taichi.math as tm

from src.pathtracer.core.vector import vec3


@ti.func
def build_from_w(n: vec3):
    """Build an orthonormal basis (u, v, w) with w along n.

    Args:
        n: Direction for the w axis. Need not be unit length.

    Returns:
        A tuple (u, v, w) of mutually orthogonal unit vectors.
    """
    w = tm.normalize(n)
    a = vec3(1.0, 0.0, 0.0)
    if w.x > 0.9:
        a = vec3(0.0, 1.0, 0.0)
    v = tm.normalize(tm.cross(w, a))
    u = tm.cross(w, v)
    return u, v, w


@ti.func
def onb_local(u: vec3, v: vec3, w: vec3, a: vec3) -> vec3:
    """Express local coordinates a in world space: a.x u + a.y v + a.z w."""
    return a.x * u + a.y * v + a.z * w
