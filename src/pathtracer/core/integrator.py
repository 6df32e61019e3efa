"""Path tracing integrator.

Each camera sample follows a single stochastic path:

1. Find the nearest hit over spheres and meshes.
2. On a miss, the environment (atmosphere, environment texture or flat
   background) supplies the radiance.
3. On a hit below the depth limit, the material scatters. Emissive
   materials end the path and contribute their albedo; every other material
   multiplies the path throughput by its attenuation and continues.
4. Absorption (scatter failure) or reaching the depth limit yields black.

There is no Russian roulette and no light sampling; the fixed depth cutoff
is the only early stop. The recursion is expressed as an iterative loop
carrying the product of attenuations, which gives the same estimate.

Example:
    >>> # Within a Taichi kernel:
    >>> # color = radiance(get_ray(s, t), 0, max_depth)
"""

import taichi as ti
import taichi.math as tm

from src.pathtracer.camera.thin_lens import get_ray
from src.pathtracer.core.vector import Ray, make_ray, vec3
from src.pathtracer.materials.material import MaterialKind, get_material_kind, scatter
from src.pathtracer.scene.intersection import T_MAX, T_MIN, intersect_scene
from src.pathtracer.scene.sky import miss_color


@ti.func
def radiance(ray: Ray, depth: ti.i32, max_depth: ti.i32) -> vec3:
    """Estimate the radiance arriving along a ray.

    Args:
        ray: The ray to trace.
        depth: Bounce count already spent (0 for camera rays).
        max_depth: Hits at this depth or deeper return black.

    Returns:
        The radiance estimate (RGB).
    """
    color = vec3(0.0, 0.0, 0.0)
    throughput = vec3(1.0, 1.0, 1.0)
    current = ray
    bounce = depth
    active = 1

    while active == 1:
        rec = intersect_scene(current, T_MIN, T_MAX)
        if rec.hit == 0:
            color = throughput * miss_color(current.direction)
            active = 0
        elif bounce >= max_depth:
            active = 0
        else:
            direction, attenuation, did_scatter = scatter(
                rec.material_id, current.direction, rec.point, rec.normal, rec.u_tex, rec.v_tex
            )
            if did_scatter == 0:
                active = 0
            elif get_material_kind(rec.material_id) == int(MaterialKind.EMISSION):
                color = throughput * attenuation
                active = 0
            else:
                throughput *= attenuation
                current = make_ray(rec.point, direction)
                bounce += 1

    return color


@ti.func
def render_sample_impl(x: ti.i32, y: ti.i32, width: ti.i32, height: ti.i32, max_depth: ti.i32) -> vec3:
    """One jittered sample for pixel (x, y), with y = 0 the bottom row.

    Non-finite and negative channels are zeroed so a single bad path cannot
    poison the accumulated pixel.
    """
    s = (ti.cast(x, ti.f32) + ti.random(ti.f32)) / ti.cast(width, ti.f32)
    t = (ti.cast(y, ti.f32) + ti.random(ti.f32)) / ti.cast(height, ti.f32)
    color = radiance(get_ray(s, t), 0, max_depth)

    color = tm.max(color, vec3(0.0, 0.0, 0.0))
    for c in ti.static(range(3)):
        if tm.isnan(color[c]) or tm.isinf(color[c]):
            color[c] = 0.0
    return color


# =============================================================================
# Rendering Kernels
# =============================================================================


@ti.kernel
def render_pass(
    buffers: ti.types.ndarray(dtype=vec3, ndim=2),
    num_workers: ti.i32,
    width: ti.i32,
    height: ti.i32,
    max_depth: ti.i32,
):
    """Add one sample per pixel to each of the first num_workers buffers.

    Args:
        buffers: Per-worker accumulation buffers, shape (workers, width * height).
            Pixel (x, y) lives at index y * width + x.
        num_workers: Number of worker buffers taking part in this pass.
        width: Image width in pixels.
        height: Image height in pixels.
        max_depth: Maximum number of bounces per path.
    """
    for w, p in ti.ndrange(num_workers, width * height):
        x = p % width
        y = p // width
        buffers[w, p] += render_sample_impl(x, y, width, height, max_depth)


@ti.kernel
def render_single_sample(x: ti.i32, y: ti.i32, width: ti.i32, height: ti.i32, max_depth: ti.i32) -> vec3:
    """Render a single sample for a specific pixel, for tests and debugging."""
    return render_sample_impl(x, y, width, height, max_depth)
