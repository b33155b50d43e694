"""Guillotine rectangle packer.

pack(sizes, bin_w, bin_h) places each (width, height) into a fixed bin and
returns one placement per input index. Free space is a list of disjoint
rectangles; each placement takes the best short-side fit and splits the
leftover along the shorter axis, so placed rectangles never overlap.

When something does not fit the result reports ok=False; every rectangle
that did fit keeps its placement.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from atlas_types import Rect


@dataclass
class PackResult:
    placements: list[Rect | None]
    ok: bool

    @property
    def placed_count(self) -> int:
        return sum(1 for p in self.placements if p is not None)


Packer = Callable[[list[tuple[int, int]], int, int], PackResult]


def _choose(free: list[Rect], w: int, h: int) -> int | None:
    best = None
    best_key = None
    for i, f in enumerate(free):
        if w > f.w or h > f.h:
            continue
        key = (min(f.w - w, f.h - h), f.w * f.h)
        if best_key is None or key < best_key:
            best, best_key = i, key
    return best


def _split(f: Rect, w: int, h: int) -> list[Rect]:
    if f.w - w < f.h - h:
        parts = [Rect(f.x, f.y + h, f.w, f.h - h), Rect(f.x + w, f.y, f.w - w, h)]
    else:
        parts = [Rect(f.x + w, f.y, f.w - w, f.h), Rect(f.x, f.y + h, w, f.h - h)]
    return [p for p in parts if not p.is_empty()]


def pack(sizes: list[tuple[int, int]], bin_w: int, bin_h: int) -> PackResult:
    """Pack rectangles into one bin, tallest and widest first."""
    for w, h in sizes:
        if w <= 0 or h <= 0:
            raise ValueError(f"Cannot pack a {w}x{h} rectangle")

    order = sorted(range(len(sizes)), key=lambda i: (-sizes[i][1], -sizes[i][0], i))
    placements: list[Rect | None] = [None] * len(sizes)
    free = [Rect(0, 0, bin_w, bin_h)] if bin_w > 0 and bin_h > 0 else []
    ok = True

    for i in order:
        w, h = sizes[i]
        slot = _choose(free, w, h)
        if slot is None:
            ok = False
            continue
        f = free.pop(slot)
        placements[i] = Rect(f.x, f.y, w, h)
        free.extend(_split(f, w, h))

    return PackResult(placements=placements, ok=ok)
