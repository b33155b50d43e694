"""Draw packed items into the atlas image and compute its crop.

How an item sits inside its packed slot is decided by an ItemPolicy looked
up by item kind, so the drawing code has no per-kind branches:

    margin  extra pixels reserved on the slot's width and height
    inset   offset of the item body from the slot's top-left corner
    bleed   copy the body's edge pixels into the 1px ring around it
    fill    draw a solid colour instead of the item's own pixels

Requires: Pillow (PIL)
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from atlas_types import PackItem, Rect, SwatchItem, item_kind

WHITE = (255, 255, 255, 255)


@dataclass(frozen=True)
class ItemPolicy:
    margin: int = 1
    inset: int = 0
    bleed: bool = False
    fill: tuple[int, int, int, int] | None = None


def default_policies(tile_bleed: bool = False) -> dict[str, ItemPolicy]:
    """Policy table for one build; tiles get a bleed ring when asked for."""
    return {
        "texture": ItemPolicy(margin=1),
        "tile": ItemPolicy(margin=3, inset=1, bleed=True) if tile_bleed else ItemPolicy(margin=1),
        "glyph": ItemPolicy(margin=2, inset=1),
        "swatch": ItemPolicy(margin=2, inset=1, bleed=True, fill=WHITE),
    }


def item_size(item: PackItem) -> tuple[int, int]:
    """Body size of an item, without margin."""
    if isinstance(item, SwatchItem):
        return (item.size, item.size)
    return item.image.size


def slot_size(item: PackItem, policies: dict[str, ItemPolicy]) -> tuple[int, int]:
    policy = policies[item_kind(item)]
    w, h = item_size(item)
    return (w + policy.margin, h + policy.margin)


def bleed_border(atlas: Image.Image, body: Rect) -> None:
    """Duplicate the outermost rows and columns of ``body`` one pixel outward.

    Rows go first so the column copies also fill the four corners.
    """
    atlas.paste(atlas.crop((body.x, body.y, body.right, body.y + 1)), (body.x, body.y - 1))
    atlas.paste(atlas.crop((body.x, body.bottom - 1, body.right, body.bottom)), (body.x, body.bottom))
    atlas.paste(atlas.crop((body.x, body.y - 1, body.x + 1, body.bottom + 1)), (body.x - 1, body.y - 1))
    atlas.paste(atlas.crop((body.right - 1, body.y - 1, body.right, body.bottom + 1)), (body.right, body.y - 1))


def draw_item(atlas: Image.Image, item: PackItem, policy: ItemPolicy) -> None:
    body = item.placement
    if policy.fill is not None:
        atlas.paste(policy.fill, body.box())
    else:
        atlas.paste(item.image, (body.x, body.y))
    if policy.bleed:
        bleed_border(atlas, body)


def render_atlas(items: list[PackItem], size: tuple[int, int], policies: dict[str, ItemPolicy]) -> Image.Image:
    """Draw every placed item; unplaced items are skipped."""
    atlas = Image.new("RGBA", size, (0, 0, 0, 0))
    for item in items:
        if item.placement is None:
            continue
        draw_item(atlas, item, policies[item_kind(item)])
    return atlas


def crop_extent(atlas: Image.Image, rects: list[Rect] = ()) -> tuple[int, int]:
    """Smallest (width, height) anchored at the origin that keeps all content.

    Covers every pixel with non-zero alpha and every rectangle in ``rects``
    (so descriptor entries stay inside the cropped image even when they are
    fully transparent). The origin never moves.
    """
    bbox = atlas.getchannel("A").getbbox()
    max_x, max_y = (bbox[2], bbox[3]) if bbox else (0, 0)
    for rect in rects:
        max_x = max(max_x, rect.right)
        max_y = max(max_y, rect.bottom)
    return (max(1, max_x), max(1, max_y))


def crop_atlas(atlas: Image.Image, extent: tuple[int, int]) -> Image.Image:
    if extent == atlas.size:
        return atlas
    return atlas.crop((0, 0, extent[0], extent[1]))


def save_atlas(atlas: Image.Image, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    atlas.save(path, "PNG")
