"""Gather every rectangle of one build and place it with a single packer call.

Textures, non-blank tiles, glyphs and the reserved white swatch go into one
list; each is padded by its item-kind margin, packed into a square bin, and
the returned slot is routed straight back onto the owning record as its
``placement`` (the body rectangle inside the slot).
"""
from __future__ import annotations

import math

from atlas_renderer import ItemPolicy, item_size, slot_size
from atlas_types import Glyph, PackItem, Rect, SwatchItem, TextureData, Tileset, item_kind
from rect_packer import Packer, pack

SWATCH_SIZE = 10


def collect_items(
    textures: list[TextureData],
    tilesets: list[Tileset],
    glyphs: list[Glyph],
    swatch: SwatchItem | None = None,
) -> list[PackItem]:
    """Pack list in a fixed order: textures, tiles, glyphs, then the swatch."""
    items: list[PackItem] = list(textures)
    for tileset in tilesets:
        items.extend(tileset.tiles)
    items.extend(glyphs)
    items.append(swatch if swatch is not None else SwatchItem(size=SWATCH_SIZE))
    return items


def required_bin_size(sizes: list[tuple[int, int]]) -> int:
    """Lower bound on the square bin side that could hold ``sizes``."""
    if not sizes:
        return 0
    area = sum(w * h for w, h in sizes)
    widest = max(max(w, h) for w, h in sizes)
    return max(widest, math.ceil(math.sqrt(area)))


def pack_items(
    name: str,
    items: list[PackItem],
    bin_size: int,
    policies: dict[str, ItemPolicy],
    packer: Packer = pack,
) -> bool:
    """Place ``items`` into a ``bin_size`` square.

    Returns False on overflow. Items that were placed keep their placement;
    the rest keep ``placement = None`` and are left out of the build.
    """
    sizes = [slot_size(item, policies) for item in items]
    result = packer(sizes, bin_size, bin_size)

    for item, slot in zip(items, result.placements):
        if slot is None:
            item.placement = None
            continue
        inset = policies[item_kind(item)].inset
        w, h = item_size(item)
        item.placement = Rect(slot.x + inset, slot.y + inset, w, h)

    if not result.ok:
        needed = required_bin_size(sizes)
        print(
            f"  WARNING: {name}: atlas overflow, placed {result.placed_count} of {len(items)} "
            f"items in {bin_size}x{bin_size} (needs at least {needed}x{needed})"
        )
    return result.ok
