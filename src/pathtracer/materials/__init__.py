"""Materials module for textures and scattering models.

Components:
    texture: Procedural and image textures, normal maps, the image atlas
    material: Material registry and scatter dispatch
    lambertian: Diffuse scattering
    metal: Fuzzy specular reflection
    dielectric: Schlick-weighted reflection and refraction
    bsdf: Layered GGX model with clearcoat, metallic and transmissive lobes

Every scatter function returns (direction, attenuation, did_scatter).
"""

from .bsdf import generate_ggx_normal, sample_ggx, scatter_bsdf
from .dielectric import scatter_dielectric
from .lambertian import scatter_lambertian
from .material import (
    MAX_MATERIALS,
    Material,
    MaterialKind,
    add_material,
    brushed_metal,
    clear_materials,
    dielectric,
    emission,
    get_material_count,
    get_material_kind,
    glass,
    glossy,
    lambertian,
    metal,
    scatter,
)
from .metal import scatter_metal
from .texture import (
    MAX_IMAGES,
    MAX_TEXTURES,
    Texture,
    TextureKind,
    add_image,
    add_texture,
    checkerboard,
    clear_textures,
    constant,
    gradient,
    grid,
    image_texture,
    load_image,
    texture_color,
    texture_normal,
)

__all__ = [
    # Textures
    "Texture",
    "TextureKind",
    "add_image",
    "add_texture",
    "clear_textures",
    "load_image",
    "constant",
    "checkerboard",
    "grid",
    "image_texture",
    "gradient",
    "texture_color",
    "texture_normal",
    "MAX_TEXTURES",
    "MAX_IMAGES",
    # Materials
    "Material",
    "MaterialKind",
    "add_material",
    "clear_materials",
    "get_material_count",
    "get_material_kind",
    "scatter",
    "lambertian",
    "metal",
    "dielectric",
    "emission",
    "glossy",
    "glass",
    "brushed_metal",
    "MAX_MATERIALS",
    # Scattering models
    "scatter_lambertian",
    "scatter_metal",
    "scatter_dielectric",
    "scatter_bsdf",
    "sample_ggx",
    "generate_ggx_normal",
]
