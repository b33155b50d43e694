"""Flatten Aseprite frames into RGBA buffers.

Two export modes:

- flatten: every visible layer of a frame is alpha-blended into one
  texture, trimmed to the union of its cels and clipped to the canvas.
- split: every visible layer cel becomes its own texture (interface
  assets), with no blending between layers.

Per-document state (visible layers, palette) is computed once and passed
around in a CompositeContext.

Requires: Pillow (PIL)
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
from pathlib import Path

from PIL import Image

from ase_document import LAYER_GROUP, CelChunk, Document
from atlas_types import LOOP_DIRECTIONS, Animation, Rect, TextureData, make_name

TRANSPARENT = (0, 0, 0, 0)


@dataclass
class CompositeContext:
    """Document-wide state shared by every frame of one document."""

    name: str
    size: tuple[int, int]
    visible: frozenset[int]
    layer_names: dict[int, str]
    indexed: bool = False
    palette: list[tuple[int, int, int, int]] | None = None
    transparent_index: int = 0

    @property
    def bounds(self) -> Rect:
        return Rect(0, 0, self.size[0], self.size[1])


@dataclass
class CompositeFrame:
    image: Image.Image  # already cut to source_rect
    source_rect: Rect  # document coordinates
    trim_offset: tuple[int, int]


def visible_layers(document: Document) -> frozenset[int]:
    """Indices of layers that contribute pixels.

    A layer counts when it is flagged visible, is not a reference layer,
    and every group it is nested in is visible too. Group layers never
    contribute pixels themselves.
    """
    visible = set()
    group_visible: list[bool] = []
    for layer in document.layers():
        del group_visible[layer.child_level:]
        shown = layer.visible and not layer.reference and all(group_visible)
        if layer.layer_type == LAYER_GROUP:
            group_visible.append(shown)
        elif shown:
            visible.add(layer.index)
    return frozenset(visible)


def make_context(name: str, document: Document) -> CompositeContext:
    """Scan a document once and build its compositing context."""
    header = document.header
    palette = None
    if header.indexed:
        palette = document.palette()
        if palette is None:
            print(f"  WARNING: {name}: indexed document has no palette, pixels will be transparent")

    visible = visible_layers(document)
    if not visible:
        print(f"  WARNING: {name}: no visible layers")

    return CompositeContext(
        name=name,
        size=document.size,
        visible=visible,
        layer_names={layer.index: layer.name for layer in document.layers()},
        indexed=header.indexed,
        palette=palette,
        transparent_index=header.transparent_index,
    )


# ---------------------------------------------------------------------------
# Pixels
# ---------------------------------------------------------------------------


def _palette_lut(context: CompositeContext) -> list[bytes]:
    """256-entry RGBA lookup; unused and transparent slots are transparent."""
    lut = [bytes(TRANSPARENT)] * 256
    # The transparent slot comes from the header; it is 0 in most documents.
    for i, color in enumerate(context.palette[:256]):
        if i != context.transparent_index:
            lut[i] = bytes(color)
    return lut


def cel_image(context: CompositeContext, cel: CelChunk) -> Image.Image:
    """Decode a cel's raw pixels into an RGBA image.

    Indexed pixels are looked up in the document palette: the transparent
    index and any index outside the palette become transparent, the latter
    with a warning.
    """
    img = cel.image
    size = (img.width, img.height)
    if not context.indexed:
        rgba = Image.frombytes("RGBA", size, img.data)
    else:
        palette = context.palette
        if palette:
            lut = _palette_lut(context)
            out_of_range = sorted(
                i for i in set(img.data) if i >= len(palette) and i != context.transparent_index
            )
            if out_of_range:
                print(
                    f"  WARNING: {context.name}: layer {cel.layer_index} uses palette "
                    f"index {out_of_range[0]} but the palette has {len(palette)} entries"
                )
            rgba = Image.frombytes("RGBA", size, b"".join(lut[i] for i in img.data))
        else:
            rgba = Image.new("RGBA", size, TRANSPARENT)

    if cel.opacity < 255:
        alpha = rgba.getchannel("A").point(lambda a: round(a * cel.opacity / 255))
        rgba.putalpha(alpha)
    return rgba


def blend_pixel(dst: tuple, src: tuple) -> tuple:
    """Paint src over dst.

    Colour channels follow dst * (1 - a) + src * a; alpha accumulates as
    a + dst_a * (1 - a). An untouched (alpha 0) destination is a plain copy.
    """
    src_a = src[3]
    if src_a == 0:
        return dst
    if dst[3] == 0 or src_a == 255:
        return src
    a = src_a / 255.0
    inv = 1.0 - a
    return (
        round(dst[0] * inv + src[0] * a),
        round(dst[1] * inv + src[1] * a),
        round(dst[2] * inv + src[2] * a),
        round(src_a + dst[3] * inv),
    )


def paint(canvas: Image.Image, image: Image.Image, x: int, y: int) -> None:
    """Blend ``image`` onto ``canvas`` with its top-left at (x, y)."""
    dst = canvas.load()
    src = image.load()
    for sy in range(image.height):
        ty = y + sy
        if ty < 0 or ty >= canvas.height:
            continue
        for sx in range(image.width):
            tx = x + sx
            if tx < 0 or tx >= canvas.width:
                continue
            pixel = src[sx, sy]
            if pixel[3] == 0:
                continue
            dst[tx, ty] = blend_pixel(dst[tx, ty], pixel)


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


def frame_cels(context: CompositeContext, document: Document, frame_index: int) -> list[CelChunk]:
    """Cels on visible layers for one frame, linked cels resolved, in paint order."""
    cels = []
    for cel in document.frames[frame_index].cels():
        if cel.layer_index not in context.visible:
            continue
        if cel.linked_frame is not None:
            cel = _resolve_link(document, cel)
            if cel is None:
                continue
        if cel.image is None or cel.image.width == 0 or cel.image.height == 0:
            continue
        cels.append(cel)
    cels.sort(key=lambda c: c.layer_index)
    return cels


def _resolve_link(document: Document, cel: CelChunk) -> CelChunk | None:
    seen = set()
    while cel.linked_frame is not None:
        if cel.linked_frame in seen or cel.linked_frame >= len(document.frames):
            return None
        seen.add(cel.linked_frame)
        target = [c for c in document.frames[cel.linked_frame].cels() if c.layer_index == cel.layer_index]
        if not target:
            return None
        cel = target[0]
    return cel


def _cel_rect(cel: CelChunk) -> Rect:
    return Rect(cel.x, cel.y, cel.image.width, cel.image.height)


def _clip(context: CompositeContext, canvas: Image.Image, area: Rect) -> CompositeFrame | None:
    """Cut a buffer covering ``area`` down to the part inside the document."""
    source = area.intersect(context.bounds)
    if source.is_empty():
        return None
    local = Rect(source.x - area.x, source.y - area.y, source.w, source.h)
    image = canvas.crop(local.box())
    return CompositeFrame(image=image, source_rect=source, trim_offset=(source.x, source.y))


def composite_frame(context: CompositeContext, document: Document, frame_index: int) -> CompositeFrame | None:
    """Flatten one frame. Returns None when the frame has no visible content."""
    cels = frame_cels(context, document, frame_index)
    if not cels:
        return None

    union = reduce(Rect.union, (_cel_rect(c) for c in cels))
    canvas = Image.new("RGBA", (union.w, union.h), TRANSPARENT)
    for cel in cels:
        paint(canvas, cel_image(context, cel), cel.x - union.x, cel.y - union.y)
    return _clip(context, canvas, union)


def render_canvas(context: CompositeContext, document: Document, frame_index: int = 0) -> Image.Image:
    """Flatten one frame onto a transparent buffer the size of the document."""
    canvas = Image.new("RGBA", context.size, TRANSPARENT)
    if frame_index < len(document.frames):
        flat = composite_frame(context, document, frame_index)
        if flat is not None:
            canvas.paste(flat.image, (flat.source_rect.x, flat.source_rect.y))
    return canvas


def flatten_document(context: CompositeContext, document: Document) -> list[TextureData]:
    """One texture per frame that has visible content."""
    multi = len(document.frames) > 1
    textures = []
    for i, frame in enumerate(document.frames):
        flat = composite_frame(context, document, i)
        if flat is None:
            continue
        textures.append(TextureData(
            name=make_name(context.name, i) if multi else make_name(context.name),
            image=flat.image,
            source_rect=flat.source_rect,
            document_size=context.size,
            trim_offset=flat.trim_offset,
            duration=frame.duration,
            frame=i,
        ))
    return textures


def split_layers(context: CompositeContext, document: Document) -> list[TextureData]:
    """One texture per visible layer cel, named after document and layer."""
    multi = len(document.frames) > 1
    textures = []
    for i, frame in enumerate(document.frames):
        for cel in frame_cels(context, document, i):
            area = _cel_rect(cel)
            clipped = _clip(context, cel_image(context, cel), area)
            if clipped is None:
                continue
            layer = context.layer_names.get(cel.layer_index, str(cel.layer_index))
            parts = [context.name, layer] + ([i] if multi else [])
            textures.append(TextureData(
                name=make_name(*parts),
                image=clipped.image,
                source_rect=clipped.source_rect,
                document_size=context.size,
                trim_offset=clipped.trim_offset,
                duration=frame.duration,
                frame=i,
            ))
    return textures


def document_animations(context: CompositeContext, document: Document, textures: list[TextureData]) -> list[Animation]:
    """Animations for a flattened document.

    Each tag becomes one animation spanning the first and last frame in its
    range that produced a texture. A multi-frame document without tags gets
    one implicit animation covering all of its textures.
    """
    by_frame = {t.frame: t.name for t in textures}
    tags = document.tags()
    animations = []

    if not tags:
        if len(document.frames) > 1 and by_frame:
            frames = sorted(by_frame)
            animations.append(Animation(
                name=make_name(context.name),
                first=by_frame[frames[0]],
                last=by_frame[frames[-1]],
                document_size=context.size,
            ))
        return animations

    for tag in tags:
        frames = [f for f in sorted(by_frame) if tag.first <= f <= tag.last]
        if not frames:
            print(f"  WARNING: {context.name}: tag '{tag.name}' covers no visible frames")
            continue
        direction = LOOP_DIRECTIONS[tag.direction] if tag.direction < len(LOOP_DIRECTIONS) else LOOP_DIRECTIONS[0]
        animations.append(Animation(
            name=make_name(context.name, tag.name),
            first=by_frame[frames[0]],
            last=by_frame[frames[-1]],
            direction=direction,
            repeat=tag.repeat,
            document_size=context.size,
        ))
    return animations


def load_static_texture(path: Path, name: str) -> TextureData | None:
    """Load a PNG as a single texture trimmed to its non-transparent pixels."""
    with Image.open(path) as src:
        img = src.convert("RGBA")
    bbox = img.getchannel("A").getbbox()
    if bbox is None:
        print(f"  WARNING: {path.name}: image is fully transparent, skipped")
        return None
    left, top, right, bottom = bbox
    return TextureData(
        name=make_name(name),
        image=img.crop(bbox),
        source_rect=Rect(left, top, right - left, bottom - top),
        document_size=img.size,
        trim_offset=(left, top),
    )
