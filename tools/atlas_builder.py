#!/usr/bin/env python3
"""Build texture atlases and their Rust descriptor from source assets.

Each build listed in the config file runs the whole pipeline on its own:
discover sources -> decode/flatten/slice/rasterize -> pack -> render ->
crop -> save PNG. When every build has run, the collected results are
merged into a single generated Rust descriptor.

Source files are always processed in lexicographic order of their path
relative to the build's source directory, so enumerated names are stable
as long as the file set is.

Build kinds:
    sprites   Aseprite frames flattened into one texture each, plus PNGs
    ui        every visible Aseprite layer exported as its own texture
    tileset   images cut into fixed-size tiles, blank tiles dropped
    font      glyphs rasterized from TrueType/OpenType fonts

Usage:
    python3 tools/atlas_builder.py
    python3 tools/atlas_builder.py --config tools/atlas_config.json --only game
    python3 tools/atlas_builder.py --dry-run

Requires: Pillow (PIL)
"""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from ase_document import DocumentError, read_document
from atlas_packer import SWATCH_SIZE, collect_items, pack_items
from atlas_renderer import crop_atlas, crop_extent, default_policies, render_atlas, save_atlas
from atlas_types import Animation, BuildResult, Glyph, SwatchItem, TextureData, Tileset, make_name
from descriptor_emitter import emit_descriptor, merge_results, write_descriptor
from frame_compositor import (
    document_animations,
    flatten_document,
    load_static_texture,
    make_context,
    render_canvas,
    split_layers,
)
from glyph_extractor import FONT_EXTENSIONS, extract_glyphs
from rect_packer import Packer, pack
from tileset_slicer import TilesetError, slice_tileset

SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
CONFIG_NAME = "atlas_config.json"
DEFAULT_CONFIG = SCRIPT_DIR / CONFIG_NAME

DEFAULT_BIN_SIZE = 2048
DEFAULT_DESCRIPTOR = "atlas.rs"

DOCUMENT_EXTENSIONS = (".ase", ".aseprite")
IMAGE_EXTENSIONS = (".png",)
KINDS = ("sprites", "ui", "tileset", "font")


class ConfigError(ValueError):
    """Raised for an unusable config file or build entry."""


@dataclass
class BuildConfig:
    name: str
    kind: str
    source: Path
    output: Path
    output_label: str  # output path exactly as written in the config
    label: str
    prefix: str | None = None
    recursive: bool = True
    bin_size: int = DEFAULT_BIN_SIZE
    crop: bool = True
    tile_size: int | None = None
    bleed: bool = False
    font_size: int | None = None
    charset: str | None = None


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _positive_int(entry: dict, key: str, name: str, default: int | None = None) -> int:
    value = entry.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigError(f"build '{name}': '{key}' must be a positive integer, got {value!r}")
    return value


def parse_build(entry: dict, base_dir: Path) -> BuildConfig:
    """Validate one build entry; relative paths resolve against ``base_dir``."""
    if not isinstance(entry, dict):
        raise ConfigError(f"build entry must be an object, got {entry!r}")
    name = entry.get("name")
    if not name or not isinstance(name, str):
        raise ConfigError(f"build entry without a name: {entry!r}")
    kind = entry.get("kind")
    if kind not in KINDS:
        raise ConfigError(f"build '{name}': unknown kind {kind!r} (expected one of {', '.join(KINDS)})")
    for key in ("source", "output"):
        if not entry.get(key):
            raise ConfigError(f"build '{name}': missing '{key}'")

    config = BuildConfig(
        name=name,
        kind=kind,
        source=base_dir / entry["source"],
        output=base_dir / entry["output"],
        output_label=entry["output"],
        label=entry.get("label") or name,
        prefix=entry.get("prefix"),
        recursive=bool(entry.get("recursive", True)),
        bin_size=_positive_int(entry, "bin_size", name, DEFAULT_BIN_SIZE),
        crop=bool(entry.get("crop", True)),
        bleed=bool(entry.get("bleed", False)),
    )
    if kind == "tileset":
        config.tile_size = _positive_int(entry, "tile_size", name)
    if kind == "font":
        config.font_size = _positive_int(entry, "font_size", name)
        charset = entry.get("charset")
        if not charset or not isinstance(charset, str):
            raise ConfigError(f"build '{name}': font builds need a non-empty 'charset'")
        config.charset = charset
    return config


def load_config(config_path: Path) -> tuple[Path, list[BuildConfig]]:
    """Load the config file. Returns (descriptor path, build list)."""
    try:
        with open(config_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{config_path}: invalid JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("builds", []), list):
        raise ConfigError(f"{config_path}: expected an object with a 'builds' list")

    base_dir = config_path.resolve().parent
    builds = [parse_build(entry, base_dir) for entry in data.get("builds", [])]

    labels = [make_name(b.label) for b in builds]
    duplicates = sorted({label for label in labels if labels.count(label) > 1})
    if duplicates:
        raise ConfigError(f"duplicate build labels: {', '.join(duplicates)}")

    descriptor = base_dir / data.get("descriptor", DEFAULT_DESCRIPTOR)
    return descriptor, builds


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


def discover_sources(
    root: Path,
    extensions: tuple[str, ...],
    prefix: str | None = None,
    recursive: bool = True,
) -> list[Path]:
    """Matching files under ``root``, sorted by relative path.

    Raises FileNotFoundError if ``root`` is not a directory.
    """
    if not root.is_dir():
        raise FileNotFoundError(f"source directory not found: {root}")
    candidates = root.rglob("*") if recursive else root.iterdir()
    found = [
        p for p in candidates
        if p.is_file()
        and p.suffix.lower() in extensions
        and (not prefix or p.name.startswith(prefix))
    ]
    return sorted(found, key=lambda p: p.relative_to(root).as_posix())


def source_name(root: Path, path: Path) -> str:
    """Identifier for a source file: its relative path without extension."""
    return make_name(*path.relative_to(root).with_suffix("").parts)


def collect_textures(config: BuildConfig) -> tuple[list[TextureData], list[Animation]]:
    """Textures and animations for sprites/ui builds."""
    textures: list[TextureData] = []
    animations: list[Animation] = []
    paths = discover_sources(config.source, DOCUMENT_EXTENSIONS + IMAGE_EXTENSIONS, config.prefix, config.recursive)
    for path in paths:
        name = source_name(config.source, path)
        if path.suffix.lower() in IMAGE_EXTENSIONS:
            texture = load_static_texture(path, name)
            if texture is not None:
                textures.append(texture)
            continue

        document = read_document(path)
        context = make_context(name, document)
        if config.kind == "ui":
            textures.extend(split_layers(context, document))
        else:
            doc_textures = flatten_document(context, document)
            textures.extend(doc_textures)
            animations.extend(document_animations(context, document, doc_textures))
    return textures, animations


def load_tileset_image(path: Path, name: str) -> Image.Image:
    if path.suffix.lower() in IMAGE_EXTENSIONS:
        with Image.open(path) as src:
            return src.convert("RGBA")
    document = read_document(path)
    return render_canvas(make_context(name, document), document)


def collect_tilesets(config: BuildConfig) -> list[Tileset]:
    tilesets = []
    paths = discover_sources(config.source, DOCUMENT_EXTENSIONS + IMAGE_EXTENSIONS, config.prefix, config.recursive)
    for path in paths:
        name = source_name(config.source, path)
        tileset = slice_tileset(name, load_tileset_image(path, name), config.tile_size)
        print(f"  Tileset:     {tileset.name} ({len(tileset.tiles)} of {tileset.columns * tileset.rows} tiles)")
        tilesets.append(tileset)
    return tilesets


def collect_glyphs(config: BuildConfig) -> list[Glyph]:
    fonts = discover_sources(config.source, FONT_EXTENSIONS, config.prefix, config.recursive)
    return extract_glyphs(fonts, config.font_size, config.charset)


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


def build_atlas(config: BuildConfig, packer: Packer = pack, dry_run: bool = False) -> BuildResult:
    """Run the full pipeline for one build and return its result.

    Raises DocumentError, TilesetError or OSError on fatal input problems.
    """
    textures: list[TextureData] = []
    animations: list[Animation] = []
    tilesets: list[Tileset] = []
    glyphs: list[Glyph] = []
    if config.kind in ("sprites", "ui"):
        textures, animations = collect_textures(config)
    elif config.kind == "tileset":
        tilesets = collect_tilesets(config)
    else:
        glyphs = collect_glyphs(config)

    print(f"  Textures:    {len(textures)}")
    print(f"  Animations:  {len(animations)}")
    if config.kind == "font":
        print(f"  Glyphs:      {len(glyphs)}")

    policies = default_policies(tile_bleed=config.bleed)
    swatch = SwatchItem(size=SWATCH_SIZE)
    items = collect_items(textures, tilesets, glyphs, swatch)
    pack_items(config.name, items, config.bin_size, policies, packer)

    atlas = render_atlas(items, (config.bin_size, config.bin_size), policies)
    if config.crop:
        placed = [item.placement for item in items if item.placement is not None]
        atlas = crop_atlas(atlas, crop_extent(atlas, placed))
    width, height = atlas.size
    print(f"  Atlas:       {width}x{height}")

    if dry_run:
        print(f"  [DRY RUN] Would write: {config.output}")
    else:
        save_atlas(atlas, config.output)
        print(f"  Wrote: {config.output}")

    return BuildResult(
        name=config.name,
        label=config.label,
        kind=config.kind,
        atlas_path=config.output_label,
        width=width,
        height=height,
        textures=textures,
        animations=animations,
        tilesets=tilesets,
        glyphs=glyphs,
        swatch=swatch.placement,
        font_size=config.font_size,
        charset=config.charset,
    )


def run_builds(
    builds: list[BuildConfig],
    packer: Packer = pack,
    dry_run: bool = False,
) -> tuple[list[BuildResult], list[str]]:
    """Run every build; a failing build is reported and skipped.

    Returns (results, names of failed builds).
    """
    results = []
    failed = []
    for i, config in enumerate(builds, 1):
        print(f"\n--- Build {i}/{len(builds)}: {config.name} ({config.kind}) ---")
        print(f"  Source:      {config.source}")
        print(f"  Bin size:    {config.bin_size}x{config.bin_size}")
        try:
            results.append(build_atlas(config, packer=packer, dry_run=dry_run))
        except (DocumentError, TilesetError, OSError) as e:
            print(f"Error: build '{config.name}' failed: {e}", file=sys.stderr)
            failed.append(config.name)
    return results, failed


def default_config() -> Path:
    """Config beside this script in a checkout, else the one in the working directory."""
    if DEFAULT_CONFIG.is_file():
        return DEFAULT_CONFIG
    return Path(CONFIG_NAME)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Pack sprites, tilesets and glyphs into atlases and generate a Rust descriptor."
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help=f"Build config JSON (default: tools/{CONFIG_NAME}, else ./{CONFIG_NAME})"
    )
    parser.add_argument(
        "--descriptor", type=Path, default=None,
        help="Descriptor output path (default: 'descriptor' from the config)"
    )
    parser.add_argument(
        "--only", nargs="+", default=None, metavar="NAME",
        help="Run only the named builds"
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Run the pipeline without writing any files"
    )
    args = parser.parse_args(argv)
    config_path = args.config or default_config()

    if not config_path.is_file():
        print(f"Error: config not found: {config_path} (pass --config)", file=sys.stderr)
        return 1
    try:
        descriptor_path, builds = load_config(config_path)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if args.descriptor is not None:
        descriptor_path = args.descriptor

    if args.only:
        unknown = sorted(set(args.only) - {b.name for b in builds})
        if unknown:
            print(f"Error: unknown build(s): {', '.join(unknown)}", file=sys.stderr)
            return 1
        builds = [b for b in builds if b.name in args.only]

    prefix = "[DRY RUN] " if args.dry_run else ""
    print(f"=== {prefix}Atlas Builder ===")
    print(f"  Config:      {config_path}")
    print(f"  Builds:      {len(builds)}")

    results, failed = run_builds(builds, dry_run=args.dry_run)

    print("\n--- Descriptor ---")
    merge_results(results)
    text = emit_descriptor(results)
    if args.dry_run:
        print(f"  [DRY RUN] Would write: {descriptor_path}")
    else:
        write_descriptor(descriptor_path, text)
        print(f"  Wrote: {descriptor_path}")

    if failed:
        print(f"\n=== {prefix}Done with errors: {', '.join(failed)} failed ===", file=sys.stderr)
        return 1
    print(f"\n=== {prefix}Done: {len(results)} atlas(es) ===")
    return 0


if __name__ == "__main__":
    sys.exit(main())
