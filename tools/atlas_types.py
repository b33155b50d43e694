"""Derived records shared by the atlas build stages.

Everything here is produced by one stage and consumed by a later one:
the compositor and slicer create textures and tiles, the packer fills in
placements, the renderer draws them, and the descriptor emitter reads the
final BuildResult.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Union

# Loop directions as stored in the document tag chunk.
LOOP_DIRECTIONS = ["Forward", "Reverse", "PingPong", "PingPongReverse"]

_NON_IDENT_RE = re.compile(r"[^a-z0-9]+")


def make_name(*parts: object) -> str:
    """Join parts into a lowercase snake_case identifier.

    make_name("Hero Walk", 3) -> "hero_walk_3"
    """
    words = []
    for part in parts:
        word = _NON_IDENT_RE.sub("_", str(part).lower()).strip("_")
        if word:
            words.append(word)
    name = "_".join(words) or "unnamed"
    if name[0].isdigit():
        name = "n" + name
    return name


@dataclass(frozen=True)
class Rect:
    """Axis-aligned pixel rectangle."""

    x: int
    y: int
    w: int
    h: int

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def bottom(self) -> int:
        return self.y + self.h

    def is_empty(self) -> bool:
        return self.w <= 0 or self.h <= 0

    def union(self, other: Rect) -> Rect:
        x = min(self.x, other.x)
        y = min(self.y, other.y)
        return Rect(x, y, max(self.right, other.right) - x, max(self.bottom, other.bottom) - y)

    def intersect(self, other: Rect) -> Rect:
        """Intersection; an empty result has zero width or height."""
        x = max(self.x, other.x)
        y = max(self.y, other.y)
        w = max(0, min(self.right, other.right) - x)
        h = max(0, min(self.bottom, other.bottom) - y)
        return Rect(x, y, w, h)

    def box(self) -> tuple[int, int, int, int]:
        """(left, top, right, bottom) as Pillow expects it."""
        return (self.x, self.y, self.right, self.bottom)


@dataclass
class TextureData:
    """One exported frame (or layer) of a document."""

    name: str
    image: Any  # PIL.Image.Image cut to source_rect
    source_rect: Rect  # in document coordinates
    document_size: tuple[int, int]
    trim_offset: tuple[int, int]
    duration: int | None = None
    frame: int = 0
    placement: Rect | None = None

    def trim_edges(self) -> tuple[int, int, int, int]:
        """Distance from each document edge to the content: left, top, right, bottom."""
        doc_w, doc_h = self.document_size
        return (
            self.source_rect.x,
            self.source_rect.y,
            doc_w - self.source_rect.right,
            doc_h - self.source_rect.bottom,
        )


@dataclass
class TileRecord:
    column: int
    row: int
    image: Any
    placement: Rect | None = None


@dataclass
class Tileset:
    name: str
    image: Any
    tile_size: int
    tiles: list[TileRecord] = field(default_factory=list)

    @property
    def columns(self) -> int:
        return self.image.width // self.tile_size

    @property
    def rows(self) -> int:
        return self.image.height // self.tile_size


@dataclass
class Animation:
    name: str
    first: str
    last: str
    direction: str = "Forward"
    repeat: int = 0
    document_size: tuple[int, int] = (0, 0)


@dataclass
class Glyph:
    char: str
    image: Any
    offset_x: int
    offset_y: int
    advance: float
    placement: Rect | None = None


@dataclass
class SwatchItem:
    """The reserved opaque white region."""

    size: int = 10
    placement: Rect | None = None


# Pack items are the owning records themselves; the kind is derived from
# the record type so routing a placement back needs no extra bookkeeping.
PackItem = Union[TextureData, TileRecord, Glyph, SwatchItem]


def item_kind(item: PackItem) -> str:
    """Return the policy key for a pack item."""
    if isinstance(item, TextureData):
        return "texture"
    if isinstance(item, TileRecord):
        return "tile"
    if isinstance(item, Glyph):
        return "glyph"
    if isinstance(item, SwatchItem):
        return "swatch"
    raise TypeError(f"Not a pack item: {item!r}")


@dataclass
class BuildResult:
    """Everything one configuration contributes to the descriptor."""

    name: str
    label: str
    kind: str
    atlas_path: str
    width: int
    height: int
    textures: list[TextureData] = field(default_factory=list)
    animations: list[Animation] = field(default_factory=list)
    tilesets: list[Tileset] = field(default_factory=list)
    glyphs: list[Glyph] = field(default_factory=list)
    swatch: Rect | None = None
    font_size: int | None = None
    charset: str | None = None

    def placed_textures(self) -> list[TextureData]:
        return [t for t in self.textures if t.placement is not None]

    def placed_glyphs(self) -> list[Glyph]:
        return [g for g in self.glyphs if g.placement is not None]
