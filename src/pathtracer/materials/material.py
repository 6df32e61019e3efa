"""Material registry and scatter dispatch.

Every material references a texture for its albedo and carries the full set
of layered-BSDF parameters; simpler kinds ignore the ones they do not use.
Materials are stored in Taichi fields (Structure of Arrays) and addressed
by integer id from hit records.

Material kinds:
    LAMBERTIAN: Diffuse bounce, tinted by the albedo.
    METAL: Fuzzed mirror reflection (``roughness`` is the fuzz radius).
    DIELECTRIC: Fresnel-weighted reflection or refraction.
    EMISSION: Terminates the path and contributes the albedo as radiance.
    BSDF: Clearcoat over metallic/transmissive/diffuse base layers.

Example:
    >>> tex = add_texture(constant((0.8, 0.2, 0.2)))
    >>> red = add_material(lambertian(tex))
    >>> lamp = add_material(emission(add_texture(constant((4.0, 4.0, 4.0)))))
"""

from dataclasses import asdict, dataclass
from enum import IntEnum

import taichi as ti
import taichi.math as tm

from src.pathtracer.core.onb import build_from_w, onb_local
from src.pathtracer.core.vector import vec3
from src.pathtracer.materials.bsdf import scatter_bsdf
from src.pathtracer.materials.dielectric import scatter_dielectric
from src.pathtracer.materials.lambertian import scatter_lambertian
from src.pathtracer.materials.metal import scatter_metal
from src.pathtracer.materials.texture import (
    TextureKind,
    get_texture_count,
    has_normal_map,
    texture_color,
    texture_kinds,
    texture_normal,
)


class MaterialKind(IntEnum):
    LAMBERTIAN = 0
    METAL = 1
    DIELECTRIC = 2
    EMISSION = 3
    BSDF = 4


@dataclass
class Material:
    """Host description of a material.

    Attributes:
        kind: Scattering model.
        texture: Texture id supplying the albedo (and optional normal map).
        roughness: Metal fuzz radius, or GGX roughness of the BSDF base.
        ior: Index of refraction.
        specularity: Dielectric reflection boost, or BSDF clearcoat strength.
        clearcoat_roughness: GGX roughness of the BSDF coat.
        metallic: Probability of the BSDF metallic lobe.
        transmission: Probability of the BSDF transmissive lobe.
    """

    kind: MaterialKind
    texture: int
    roughness: float = 0.0
    ior: float = 1.5
    specularity: float = 0.0
    clearcoat_roughness: float = 0.0
    metallic: float = 0.0
    transmission: float = 0.0

    def validate(self) -> None:
        """Check parameter ranges.

        Raises:
            ValueError: If a probability or roughness lies outside [0, 1] or
                the index of refraction is not positive.
        """
        for name in ("roughness", "specularity", "clearcoat_roughness", "metallic", "transmission"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"Material {name} = {value} is outside [0, 1]")
        if self.ior <= 0.0:
            raise ValueError(f"Material ior must be positive, got {self.ior}")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.name.lower()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Material":
        fields = dict(data)
        fields["kind"] = MaterialKind[fields["kind"].upper()]
        return cls(**fields)


def lambertian(texture: int) -> Material:
    return Material(MaterialKind.LAMBERTIAN, texture)


def metal(texture: int, roughness: float = 0.0) -> Material:
    return Material(MaterialKind.METAL, texture, roughness=roughness)


def dielectric(texture: int, ior: float = 1.5, specularity: float = 0.0) -> Material:
    return Material(MaterialKind.DIELECTRIC, texture, ior=ior, specularity=specularity)


def emission(texture: int) -> Material:
    return Material(MaterialKind.EMISSION, texture)


def glossy(texture: int, roughness: float, clearcoat: float, ior: float = 1.5) -> Material:
    """Diffuse base under a clearcoat."""
    return Material(
        MaterialKind.BSDF,
        texture,
        roughness=roughness,
        ior=ior,
        specularity=clearcoat,
        clearcoat_roughness=roughness,
    )


def glass(texture: int, roughness: float, clearcoat: float, ior: float = 1.5) -> Material:
    """Fully transmissive BSDF."""
    return Material(
        MaterialKind.BSDF,
        texture,
        roughness=roughness,
        ior=ior,
        specularity=clearcoat,
        clearcoat_roughness=roughness,
        transmission=1.0,
    )


def brushed_metal(texture: int, roughness: float, clearcoat: float, clearcoat_roughness: float) -> Material:
    """Fully metallic BSDF with an independent coat roughness."""
    return Material(
        MaterialKind.BSDF,
        texture,
        roughness=roughness,
        specularity=clearcoat,
        clearcoat_roughness=clearcoat_roughness,
        metallic=1.0,
    )


# =============================================================================
# Field Storage
# =============================================================================

MAX_MATERIALS = 256

material_kinds = ti.field(dtype=ti.i32, shape=MAX_MATERIALS)
material_textures = ti.field(dtype=ti.i32, shape=MAX_MATERIALS)
material_roughness = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
material_ior = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
material_specularity = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
material_clearcoat_roughness = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
material_metallic = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
material_transmission = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
num_materials = ti.field(dtype=ti.i32, shape=())


def clear_materials() -> None:
    """Clear all materials. Field data is overwritten by later additions."""
    num_materials[None] = 0


def get_material_count() -> int:
    return int(num_materials[None])


def add_material(material: Material) -> int:
    """Register a material and return its id.

    Raises:
        ValueError: If the parameters are out of range or the texture id is
            not registered.
        RuntimeError: If the maximum number of materials is exceeded.
    """
    material.validate()
    if not 0 <= material.texture < get_texture_count():
        raise ValueError(f"Material references unknown texture id {material.texture}")

    idx = num_materials[None]
    if idx >= MAX_MATERIALS:
        raise RuntimeError(f"Maximum number of materials ({MAX_MATERIALS}) exceeded")

    material_kinds[idx] = int(material.kind)
    material_textures[idx] = material.texture
    material_roughness[idx] = material.roughness
    material_ior[idx] = material.ior
    material_specularity[idx] = material.specularity
    material_clearcoat_roughness[idx] = material.clearcoat_roughness
    material_metallic[idx] = material.metallic
    material_transmission[idx] = material.transmission
    num_materials[None] = idx + 1
    return idx


def get_material_kind_python(material_id: int) -> MaterialKind | None:
    """Kind of a registered material, or None for an unknown id."""
    if not 0 <= material_id < get_material_count():
        return None
    return MaterialKind(int(material_kinds[material_id]))


# =============================================================================
# Device Dispatch
# =============================================================================


@ti.func
def get_material_kind(material_id: ti.i32) -> ti.i32:
    return material_kinds[material_id]


@ti.func
def needs_texture_uv(material_id: ti.i32) -> ti.i32:
    """1 if hits on this material need interpolated vertex texture UVs."""
    tex = material_textures[material_id]
    return texture_kinds[tex] == int(TextureKind.TRIANGLE_IMAGE_UV) or has_normal_map(tex)


@ti.func
def apply_normal_map(normal: vec3, material_id: ti.i32, u: ti.f32, v: ti.f32) -> vec3:
    """Perturb a geometric normal by the material's normal map, if any.

    The decoded tangent-space normal is carried into world space through the
    orthonormal basis built around the geometric normal.
    """
    tex = material_textures[material_id]
    result = normal
    if has_normal_map(tex):
        u_axis, v_axis, w_axis = build_from_w(normal)
        result = tm.normalize(onb_local(u_axis, v_axis, w_axis, texture_normal(tex, u, v)))
    return result


@ti.func
def scatter(material_id: ti.i32, incident_direction: vec3, p: vec3, normal: vec3, u: ti.f32, v: ti.f32):
    """Scatter an incoming ray at a hit according to its material.

    Args:
        material_id: Id of the hit material.
        incident_direction: Direction of the incoming ray (any length).
        p: World-space hit point (for world-space textures).
        normal: Outward shading normal (unit length).
        u: Surface u coordinate for texture lookup.
        v: Surface v coordinate for texture lookup.

    Returns:
        A tuple of (scattered_direction, attenuation, did_scatter). For
        EMISSION the attenuation is the emitted radiance and the path ends.
    """
    kind = material_kinds[material_id]
    albedo = texture_color(material_textures[material_id], p, u, v)

    scattered_direction = normal
    attenuation = albedo
    did_scatter = 1

    if kind == int(MaterialKind.LAMBERTIAN):
        scattered_direction, attenuation, did_scatter = scatter_lambertian(albedo, normal)
    elif kind == int(MaterialKind.METAL):
        scattered_direction, attenuation, did_scatter = scatter_metal(
            albedo, material_roughness[material_id], incident_direction, normal
        )
    elif kind == int(MaterialKind.DIELECTRIC):
        scattered_direction, attenuation, did_scatter = scatter_dielectric(
            albedo, material_ior[material_id], material_specularity[material_id], incident_direction, normal
        )
    elif kind == int(MaterialKind.BSDF):
        scattered_direction, attenuation, did_scatter = scatter_bsdf(
            albedo,
            material_roughness[material_id],
            material_ior[material_id],
            material_specularity[material_id],
            material_clearcoat_roughness[material_id],
            material_metallic[material_id],
            material_transmission[material_id],
            incident_direction,
            normal,
        )

    return scattered_direction, attenuation, did_scatter
