#!/usr/bin/env python3
"""
Script to remap one container of a parsed document offline and render it.

Usage:
    python scripts/remap_document.py <source.json> <target.json> --source-container NAME
        --target-container NAME [--strategy strategy.json] [--pixels DIR]
        [--output render.png] [--payload payload.json]
    python scripts/remap_document.py <source.json> <target.json> --list

Documents are parser output: {"width", "height", "layers": [...]} with a
"!!TEMPLATE" group declaring the containers. Pixel buffers are read from
DIR/<layer_id>.png when present.

Examples:
    # List containers of both documents
    python scripts/remap_document.py banner.json story.json --list

    # Remap HERO into the story's HERO slot and render a preview
    python scripts/remap_document.py banner.json story.json \\
        --source-container HERO --target-container HERO \\
        --strategy hero_strategy.json --pixels ./layers --output hero.png
"""

import argparse
import json
import sys
from pathlib import Path

import cv2

# Add parent directory to path to import procedural_remap modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from procedural_remap.models.strategy import Strategy
from procedural_remap.models.template import RawDocument
from procedural_remap.services.compositor import compositor_service
from procedural_remap.services.geometry import GeometryPreconditionError
from procedural_remap.services.remap import remap_service
from procedural_remap.services.template import (
    extract_template_metadata,
    normalize_layer_tree,
    resolve_container_layers,
)


def load_document(path: Path) -> RawDocument:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    return RawDocument.model_validate(json.loads(path.read_text()))


def list_containers(source: RawDocument, target: RawDocument) -> None:
    """Print the containers declared by both documents."""
    for label, doc in (("Source", source), ("Target", target)):
        template = extract_template_metadata(doc.layers, doc.width, doc.height)
        print(f"{label} ({doc.width}x{doc.height}): {len(template.containers)} containers")
        for container in template.containers:
            b = container.bounds
            print(f"  {container.name:<24} x={b.x:.0f} y={b.y:.0f} w={b.w:.0f} h={b.h:.0f}")


def load_pixels(pixels_dir: Path):
    """Return a lookup reading DIR/<layer_id>.png as RGBA."""
    def lookup(layer_id: str):
        path = pixels_dir / f"{layer_id}.png"
        if not path.exists():
            return None
        image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if image is None:
            return None
        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
        if image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    return lookup


def remap(args) -> None:
    source = load_document(args.source)
    target = load_document(args.target)

    source_template = extract_template_metadata(source.layers, source.width, source.height)
    target_template = extract_template_metadata(target.layers, target.width, target.height)

    source_container = source_template.container(args.source_container)
    target_container = target_template.container(args.target_container)
    if source_container is None or target_container is None:
        print("Error: unknown container (use --list to see available names)", file=sys.stderr)
        sys.exit(1)

    tree = normalize_layer_tree(source.layers)
    resolver_status, group, counts = resolve_container_layers(args.source_container, tree)
    print(f"Design group: {resolver_status.value} ({counts['total']} layers)")
    layers = (group.children or []) if group is not None else []

    strategy = None
    if args.strategy:
        strategy = Strategy.model_validate(json.loads(args.strategy.read_text()))

    try:
        payload = remap_service.remap(
            layers,
            source_container.bounds,
            target_container.bounds,
            strategy=strategy,
            source_container=source_container.name,
            target_container=target_container.name,
        )
    except GeometryPreconditionError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    print(f"✓ Remapped {source_container.name} -> {target_container.name}")
    print(f"  Scale: {payload.scale_factor:.3f}")
    print(f"  Requires generation: {payload.requires_generation}")

    if args.payload:
        args.payload.write_text(payload.model_dump_json(indent=2))
        print(f"  Payload: {args.payload}")

    if args.output:
        pixels_of = load_pixels(args.pixels) if args.pixels else (lambda layer_id: None)
        result = compositor_service.composite(payload, pixels_of)
        args.output.write_bytes(result.to_png_bytes())
        print(f"  Render: {args.output} ({result.width}x{result.height})")
        for diagnostic in result.diagnostics:
            print(f"  ! {diagnostic.layer_id}: {diagnostic.message}")


def main():
    parser = argparse.ArgumentParser(
        description="Remap a container of a parsed document into a target template",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("source", type=Path, help="Source document JSON")
    parser.add_argument("target", type=Path, help="Target template JSON")
    parser.add_argument("--list", action="store_true", help="List containers and exit")
    parser.add_argument("--source-container", help="Source container name (without '!!')")
    parser.add_argument("--target-container", help="Target container name (without '!!')")
    parser.add_argument("--strategy", type=Path, help="Strategy JSON")
    parser.add_argument("--pixels", type=Path, help="Directory of <layer_id>.png pixel buffers")
    parser.add_argument("--output", type=Path, help="Write the rendered PNG here")
    parser.add_argument("--payload", type=Path, help="Write the payload JSON here")

    args = parser.parse_args()

    if args.list:
        list_containers(load_document(args.source), load_document(args.target))
        return

    if not args.source_container or not args.target_container:
        parser.error("--source-container and --target-container are required")

    remap(args)


if __name__ == "__main__":
    main()
