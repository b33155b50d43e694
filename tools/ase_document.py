#!/usr/bin/env python3
"""Decode Aseprite (.ase / .aseprite) documents into an in-memory model.

This is a structural decode only: cel pixels are kept as raw bytes in the
document's colour depth (RGBA or palette indices). Resolving indices to
colours happens in frame_compositor.

File layout (all integers little-endian):

    header   128 bytes, magic 0xA5E0
    frame    16-byte header (magic 0xF1FA) followed by its chunks
    chunk    DWORD size (incl. 6-byte header), WORD type, payload

Usage:
    python3 tools/ase_document.py <file.aseprite>
"""
from __future__ import annotations

import argparse
import struct
import sys
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

HEADER_MAGIC = 0xA5E0
FRAME_MAGIC = 0xF1FA
HEADER_SIZE = 128
FRAME_HEADER_SIZE = 16
CHUNK_HEADER_SIZE = 6

DEPTH_RGBA = 32
DEPTH_GRAYSCALE = 16
DEPTH_INDEXED = 8

CHUNK_OLD_PALETTE = 0x0004
CHUNK_LAYER = 0x2004
CHUNK_CEL = 0x2005
CHUNK_TAGS = 0x2018
CHUNK_PALETTE = 0x2019

CEL_RAW = 0
CEL_LINKED = 1
CEL_COMPRESSED = 2

LAYER_FLAG_VISIBLE = 1
LAYER_FLAG_REFERENCE = 64

LAYER_NORMAL = 0
LAYER_GROUP = 1

# Upper bound on a declared palette size; entry indices are WORD-sized.
MAX_PALETTE_SIZE = 0x10000


class DocumentError(ValueError):
    """Raised when a document cannot be decoded."""


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Header:
    width: int
    height: int
    color_depth: int
    frame_count: int
    transparent_index: int = 0
    color_count: int = 0

    @property
    def indexed(self) -> bool:
        return self.color_depth == DEPTH_INDEXED

    @property
    def bytes_per_pixel(self) -> int:
        return self.color_depth // 8


@dataclass(frozen=True)
class LayerChunk:
    index: int
    visible: bool
    reference: bool
    name: str
    layer_type: int = LAYER_NORMAL
    child_level: int = 0
    opacity: int = 255


@dataclass(frozen=True)
class CelImage:
    width: int
    height: int
    data: bytes  # width * height * bytes_per_pixel


@dataclass(frozen=True)
class CelChunk:
    layer_index: int
    x: int
    y: int
    opacity: int = 255
    image: CelImage | None = None
    linked_frame: int | None = None


@dataclass(frozen=True)
class TagRange:
    name: str
    first: int
    last: int
    direction: int = 0
    repeat: int = 0


@dataclass(frozen=True)
class TagsChunk:
    tags: tuple[TagRange, ...]


@dataclass(frozen=True)
class PaletteChunk:
    first: int
    colors: tuple[tuple[int, int, int, int], ...]
    size: int
    legacy: bool = False  # pre-1.2 chunk 0x0004, RGB only


Chunk = Union[LayerChunk, CelChunk, TagsChunk, PaletteChunk]


@dataclass(frozen=True)
class Frame:
    duration: int
    chunks: tuple[Chunk, ...] = ()

    def cels(self) -> list[CelChunk]:
        return [c for c in self.chunks if isinstance(c, CelChunk)]


@dataclass(frozen=True)
class Document:
    header: Header
    frames: tuple[Frame, ...] = field(default_factory=tuple)

    @property
    def size(self) -> tuple[int, int]:
        return (self.header.width, self.header.height)

    def layers(self) -> list[LayerChunk]:
        """Every layer declaration, in declaration order."""
        return [c for f in self.frames for c in f.chunks if isinstance(c, LayerChunk)]

    def tags(self) -> list[TagRange]:
        return [t for f in self.frames for c in f.chunks if isinstance(c, TagsChunk) for t in c.tags]

    def palette(self) -> list[tuple[int, int, int, int]] | None:
        """Resolve the document palette, or None if no palette chunk is present.

        New-style palette chunks win; the old chunk is only consulted when
        the document carries no new-style one.
        """
        chunks = [c for f in self.frames for c in f.chunks if isinstance(c, PaletteChunk)]
        current = [c for c in chunks if not c.legacy]
        chunks = current or chunks
        if not chunks:
            return None
        colors: list[tuple[int, int, int, int]] = []
        for chunk in chunks:
            size = min(MAX_PALETTE_SIZE, max(chunk.size, chunk.first + len(chunk.colors)))
            if len(colors) < size:
                colors.extend([(0, 0, 0, 0)] * (size - len(colors)))
            for i, color in enumerate(chunk.colors[:max(0, size - chunk.first)]):
                colors[chunk.first + i] = color
        return colors or None


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class _Reader:
    """Little-endian cursor over one bounded region of the file."""

    def __init__(self, data: bytes, start: int = 0, end: int | None = None, what: str = "document"):
        self.data = data
        self.pos = start
        self.end = len(data) if end is None else end
        self.what = what

    def take(self, n: int) -> bytes:
        if n < 0 or self.pos + n > self.end:
            raise DocumentError(f"Truncated {self.what} at offset {self.pos}")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def unpack(self, fmt: str) -> tuple:
        return struct.unpack("<" + fmt, self.take(struct.calcsize("<" + fmt)))

    def byte(self) -> int:
        return self.unpack("B")[0]

    def word(self) -> int:
        return self.unpack("H")[0]

    def short(self) -> int:
        return self.unpack("h")[0]

    def dword(self) -> int:
        return self.unpack("I")[0]

    def skip(self, n: int) -> None:
        self.take(n)

    def string(self) -> str:
        length = self.word()
        return self.take(length).decode("utf-8", errors="replace")

    def remaining(self) -> int:
        return self.end - self.pos


def _parse_header(data: bytes) -> Header:
    r = _Reader(data, 0, min(len(data), HEADER_SIZE), "header")
    _file_size = r.dword()
    magic = r.word()
    if magic != HEADER_MAGIC:
        raise DocumentError(f"Bad header magic 0x{magic:04X} (expected 0x{HEADER_MAGIC:04X})")
    frame_count = r.word()
    width = r.word()
    height = r.word()
    depth = r.word()
    if depth not in (DEPTH_RGBA, DEPTH_INDEXED):
        raise DocumentError(f"Unsupported color depth: {depth} bpp")
    r.skip(4 + 2 + 4 + 4)  # flags, speed, two reserved dwords
    transparent_index = r.byte()
    r.skip(3)
    color_count = r.word()
    if width == 0 or height == 0:
        raise DocumentError(f"Invalid document size {width}x{height}")
    return Header(
        width=width,
        height=height,
        color_depth=depth,
        frame_count=frame_count,
        transparent_index=transparent_index,
        color_count=color_count,
    )


def _parse_layer(r: _Reader, index: int) -> LayerChunk:
    flags = r.word()
    layer_type = r.word()
    child_level = r.word()
    r.skip(2 + 2)  # default width/height, ignored
    r.skip(2)  # blend mode
    opacity = r.byte()
    r.skip(3)
    name = r.string()
    return LayerChunk(
        index=index,
        visible=bool(flags & LAYER_FLAG_VISIBLE),
        reference=bool(flags & LAYER_FLAG_REFERENCE),
        name=name,
        layer_type=layer_type,
        child_level=child_level,
        opacity=opacity,
    )


def _parse_cel(r: _Reader, header: Header) -> CelChunk | None:
    layer_index = r.word()
    x = r.short()
    y = r.short()
    opacity = r.byte()
    cel_type = r.word()
    r.skip(2 + 5)  # z-index, reserved

    if cel_type == CEL_LINKED:
        return CelChunk(layer_index, x, y, opacity, linked_frame=r.word())

    if cel_type not in (CEL_RAW, CEL_COMPRESSED):
        # Tilemap cels and future types carry nothing we can draw.
        return None

    width = r.word()
    height = r.word()
    expected = width * height * header.bytes_per_pixel
    if cel_type == CEL_RAW:
        pixels = r.take(expected)
    else:
        try:
            pixels = zlib.decompress(r.take(r.remaining()))
        except zlib.error as e:
            raise DocumentError(f"Corrupt compressed cel on layer {layer_index}: {e}") from e
        if len(pixels) < expected:
            raise DocumentError(
                f"Compressed cel on layer {layer_index} holds {len(pixels)} bytes, expected {expected}"
            )
        pixels = pixels[:expected]
    return CelChunk(layer_index, x, y, opacity, image=CelImage(width, height, pixels))


def _parse_tags(r: _Reader) -> TagsChunk:
    count = r.word()
    r.skip(8)
    tags = []
    for _ in range(count):
        first = r.word()
        last = r.word()
        direction = r.byte()
        repeat = r.word()
        r.skip(6 + 3 + 1)  # reserved, deprecated colour, extra byte
        name = r.string()
        tags.append(TagRange(name, first, last, direction, repeat))
    return TagsChunk(tuple(tags))


def _parse_palette(r: _Reader) -> PaletteChunk:
    size = r.dword()
    first = r.dword()
    last = r.dword()
    if size > MAX_PALETTE_SIZE:
        raise DocumentError(f"Palette size {size} exceeds {MAX_PALETTE_SIZE} entries")
    if last < first or last >= size:
        raise DocumentError(f"Palette range {first}-{last} does not fit a palette of {size} entries")
    r.skip(8)
    colors = []
    for _ in range(first, last + 1):
        flags = r.word()
        rgba = r.unpack("BBBB")
        if flags & 1:
            r.string()  # entry name, unused
        colors.append(tuple(rgba))
    return PaletteChunk(first=first, colors=tuple(colors), size=size)


def _parse_old_palette(r: _Reader) -> PaletteChunk:
    packets = r.word()
    colors: list[tuple[int, int, int, int]] = []
    index = 0
    for _ in range(packets):
        index += r.byte()
        count = r.byte() or 256
        # Entries skipped by a packet keep their position as transparent black.
        while len(colors) < index:
            colors.append((0, 0, 0, 0))
        for _ in range(count):
            red, green, blue = r.unpack("BBB")
            colors.append((red, green, blue, 255))
        index += count
    return PaletteChunk(first=0, colors=tuple(colors), size=len(colors), legacy=True)


def _parse_frame(data: bytes, pos: int, header: Header, layer_count: int) -> tuple[Frame, int, int]:
    """Decode one frame starting at ``pos``.

    Returns (frame, next frame offset, layers declared so far).
    """
    r = _Reader(data, pos, what="frame header")
    frame_size = r.dword()
    magic = r.word()
    if magic != FRAME_MAGIC:
        raise DocumentError(f"Bad frame magic 0x{magic:04X} at offset {pos}")
    old_count = r.word()
    duration = r.word()
    r.skip(2)
    new_count = r.dword()
    chunk_count = new_count or old_count

    frame_end = pos + frame_size
    if frame_size < FRAME_HEADER_SIZE or frame_end > len(data):
        raise DocumentError(f"Truncated frame at offset {pos}")

    chunks: list[Chunk] = []
    cursor = r.pos
    for _ in range(chunk_count):
        head = _Reader(data, cursor, frame_end, "chunk header")
        chunk_size = head.dword()
        chunk_type = head.word()
        chunk_end = cursor + chunk_size
        if chunk_size < CHUNK_HEADER_SIZE or chunk_end > frame_end:
            raise DocumentError(f"Truncated chunk 0x{chunk_type:04X} at offset {cursor}")
        body = _Reader(data, head.pos, chunk_end, f"chunk 0x{chunk_type:04X}")

        if chunk_type == CHUNK_LAYER:
            chunks.append(_parse_layer(body, layer_count))
            layer_count += 1
        elif chunk_type == CHUNK_CEL:
            cel = _parse_cel(body, header)
            if cel is not None:
                chunks.append(cel)
        elif chunk_type == CHUNK_TAGS:
            chunks.append(_parse_tags(body))
        elif chunk_type == CHUNK_PALETTE:
            chunks.append(_parse_palette(body))
        elif chunk_type == CHUNK_OLD_PALETTE:
            chunks.append(_parse_old_palette(body))
        cursor = chunk_end

    return Frame(duration=duration, chunks=tuple(chunks)), frame_end, layer_count


def parse_document(data: bytes) -> Document:
    """Decode a whole document.

    Raises DocumentError on a malformed header, unsupported colour depth,
    or any truncated frame or chunk. Nothing is returned on failure.
    """
    if len(data) < HEADER_SIZE:
        raise DocumentError(f"Truncated header ({len(data)} bytes)")
    header = _parse_header(data)

    frames = []
    pos = HEADER_SIZE
    layer_count = 0
    for _ in range(header.frame_count):
        frame, pos, layer_count = _parse_frame(data, pos, header, layer_count)
        frames.append(frame)

    return Document(header=header, frames=tuple(frames))


def read_document(path: Path) -> Document:
    """Read and decode a document from disk."""
    with open(path, "rb") as f:
        data = f.read()
    try:
        return parse_document(data)
    except DocumentError as e:
        raise DocumentError(f"{path.name}: {e}") from e


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print the structure of an Aseprite document.")
    parser.add_argument("document", type=Path, help="Path to .ase/.aseprite file")
    args = parser.parse_args(argv)

    if not args.document.is_file():
        print(f"Error: document not found: {args.document}", file=sys.stderr)
        return 1
    try:
        doc = read_document(args.document)
    except DocumentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    depth = "indexed" if doc.header.indexed else "rgba"
    print(f"{args.document.name}: {doc.header.width}x{doc.header.height} {depth}, {len(doc.frames)} frame(s)")
    for layer in doc.layers():
        flags = []
        if not layer.visible:
            flags.append("hidden")
        if layer.reference:
            flags.append("reference")
        suffix = f" ({', '.join(flags)})" if flags else ""
        print(f"  layer {layer.index}: {layer.name}{suffix}")
    for tag in doc.tags():
        print(f"  tag {tag.name}: frames {tag.first}-{tag.last}")
    for i, frame in enumerate(doc.frames):
        print(f"  frame {i}: {frame.duration}ms, {len(frame.cels())} cel(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
