"""Taichi-based Monte Carlo path tracer.

This package renders triangle meshes and spheres by tracing stochastic light
paths, with support for:
- Two bounding volume hierarchies (triangles and spheres) with pre-leaf nodes
- Lambertian, metal, dielectric, emissive and layered BSDF materials
- Procedural and image-mapped textures, including normal maps
- A single-scattering Rayleigh/Mie sky model
- Parallel sample accumulation into per-worker buffers

Subpackages:
    core: Vector/ray algebra, orthonormal bases, the integrator and the renderer
    geometry: Bounding boxes, BVH construction and primitive intersection
    materials: Textures and scattering models
    scene: Scene aggregate, sky model, scene manager and OBJ loading
    camera: Thin-lens camera ray generation
    preview: Tone mapping and image export
"""

__version__ = "0.1.0"
