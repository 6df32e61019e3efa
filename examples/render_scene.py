#!/usr/bin/env python3
"""Render a scene with the path tracer.

Without --scene a small demo scene is rendered: a checkered ground sphere,
diffuse, metal, glass and clearcoat spheres, and a sky gradient. With
--scene a JSON scene description (see SceneManager.to_dict) is loaded;
relative file paths in it are resolved against the JSON file's directory.

Usage:
    python -m examples.render_scene [options]

Options:
    --scene FILE        JSON scene description (default: built-in demo)
    --width WIDTH       Image width in pixels (default: 640)
    --height HEIGHT     Image height in pixels (default: 360)
    --samples SAMPLES   Samples per pixel (default: 64)
    --depth DEPTH       Maximum bounces per path (default: 8)
    --workers N         Parallel accumulation buffers (default: CPU count)
    --output OUTPUT     Output file path (default: render.png)
    --tone-map METHOD   none, reinhard or exposure (default: none)
    --gamma GAMMA       Output gamma (default: 2.2)
    --seed SEED         Random seed (default: derived from the clock)
    --cpu               Force the CPU backend
    --quiet             Only log warnings and errors

Example:
    python -m examples.render_scene --width 320 --height 180 --samples 16
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
import time
from pathlib import Path

import taichi as ti

logger = logging.getLogger("render_scene")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Render a scene with the path tracer.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--scene", type=Path, default=None, help="JSON scene description (default: built-in demo)")
    parser.add_argument("--width", type=int, default=640, help="Image width in pixels (default: 640)")
    parser.add_argument("--height", type=int, default=360, help="Image height in pixels (default: 360)")
    parser.add_argument("--samples", type=int, default=64, help="Samples per pixel (default: 64)")
    parser.add_argument("--depth", type=int, default=8, help="Maximum bounces per path (default: 8)")
    parser.add_argument("--workers", type=int, default=None, help="Parallel accumulation buffers (default: CPU count)")
    parser.add_argument("--output", type=str, default="render.png", help="Output file path (default: render.png)")
    parser.add_argument(
        "--tone-map",
        choices=("none", "reinhard", "exposure"),
        default="none",
        help="Tone mapping operator (default: none)",
    )
    parser.add_argument("--gamma", type=float, default=2.2, help="Output gamma (default: 2.2)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed (default: derived from the clock)")
    parser.add_argument("--cpu", action="store_true", help="Force the CPU backend")
    parser.add_argument("--quiet", action="store_true", help="Only log warnings and errors")
    return parser.parse_args(argv)


def build_demo_scene(scene) -> None:
    """Populate a SceneManager with the built-in demo scene."""
    from src.pathtracer.camera.thin_lens import ThinLensCamera
    from src.pathtracer.materials.material import dielectric, glossy, lambertian, metal
    from src.pathtracer.materials.texture import checkerboard, constant, gradient

    ground = scene.add_texture(checkerboard((0.2, 0.3, 0.1), (0.9, 0.9, 0.9), scale=(10.0, 10.0, 10.0)))
    blue = scene.add_texture(constant((0.1, 0.2, 0.5)))
    gold = scene.add_texture(constant((0.8, 0.6, 0.2)))
    white = scene.add_texture(constant((1.0, 1.0, 1.0)))
    red = scene.add_texture(constant((0.7, 0.1, 0.1)))

    scene.add_sphere((0.0, -1000.5, -1.0), 1000.0, scene.add_material(lambertian(ground)))
    scene.add_sphere((0.0, 0.0, -1.0), 0.5, scene.add_material(lambertian(blue)))
    scene.add_sphere((1.0, 0.0, -1.0), 0.5, scene.add_material(metal(gold, roughness=0.1)))
    scene.add_sphere((-1.0, 0.0, -1.0), 0.5, scene.add_material(dielectric(white, ior=1.5)))
    scene.add_sphere((0.0, -0.3, -0.3), 0.2, scene.add_material(glossy(red, roughness=0.2, clearcoat=0.8)))

    scene.set_environment(scene.add_texture(gradient()))
    scene.set_camera(
        ThinLensCamera(
            lookfrom=(0.0, 0.6, 1.5),
            lookat=(0.0, 0.0, -1.0),
            vfov=70.0,
            aperture=0.05,
        )
    )


def render(args: argparse.Namespace) -> Path:
    """Build the scene, render it and save the image.

    Returns:
        Path to the saved image file.
    """
    # Lazy imports so that Taichi is initialized before any field is created
    from src.pathtracer.camera.thin_lens import ThinLensCamera
    from src.pathtracer.core.renderer import ParallelRenderer, RenderConfig
    from src.pathtracer.scene.manager import SceneManager

    config = RenderConfig(
        width=args.width,
        height=args.height,
        samples=args.samples,
        max_depth=args.depth,
        workers=args.workers,
    )

    scene = SceneManager()
    if args.scene is None:
        logger.info("Creating demo scene")
        build_demo_scene(scene)
    else:
        logger.info("Loading scene %s", args.scene)
        with open(args.scene, encoding="utf-8") as f:
            data = json.load(f)
        scene.from_dict(data, base_dir=args.scene.parent)

    camera = scene.camera or ThinLensCamera(lookfrom=(0.0, 0.0, 0.0), lookat=(0.0, 0.0, -1.0))
    # The image size decides the aspect ratio
    scene.set_camera(dataclasses.replace(camera, aspect_ratio=args.width / args.height))
    scene.build()

    renderer = ParallelRenderer(config)
    renderer.render()
    return renderer.save_image(args.output, gamma=args.gamma, tone_map=args.tone_map)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    seed = args.seed if args.seed is not None else time.time_ns() % (2**31)
    arch = ti.cpu if args.cpu else ti.gpu
    ti.init(arch=arch, random_seed=seed)
    logger.info("Using random seed %d", seed)

    try:
        output = render(args)
    except (ValueError, RuntimeError, OSError) as e:
        logger.error("%s", e)
        return 1
    logger.info("Saved to %s", output.absolute())
    return 0


if __name__ == "__main__":
    sys.exit(main())
