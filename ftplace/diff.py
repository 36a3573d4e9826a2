"""
ftplace — diff.py
─────────────────────────────────────────────────────────────────
Diff Engine: which pixels of an art still need a write?

Pure functions: no I/O, no state. Recomputed against every new
BoardSnapshot, so vandalism by other users shows up by itself.

For every pattern pixel:
  - absolute coord = anchor + (dx, dy)
  - skip if outside the board
  - skip if the target color is background/transparent
  - skip if the board already shows the target color
Result is sorted row-major by (y, x).
─────────────────────────────────────────────────────────────────
"""

from typing import Iterable, Iterator, List, NamedTuple, Optional, Tuple

from ftplace.models.art import PixelArt
from ftplace.models.board import BoardSnapshot


class PixelWrite(NamedTuple):
    x:     int
    y:     int
    color: int


def _targets(
    art: PixelArt,
    anchor: Tuple[int, int],
    board: BoardSnapshot,
    background: Iterable[int],
) -> Iterator[PixelWrite]:
    ax, ay = anchor
    seen = set()
    for pixel in art.pattern:
        x, y = ax + pixel.x, ay + pixel.y
        # Duplicate coordinates: first occurrence wins
        if (x, y) in seen:
            continue
        seen.add((x, y))

        if not board.in_bounds(x, y):
            continue
        if pixel.color in background:
            continue
        yield PixelWrite(x, y, pixel.color)


def compute_diff(
    art: PixelArt,
    anchor: Tuple[int, int],
    board: BoardSnapshot,
    background: Optional[Iterable[int]] = None,
) -> List[PixelWrite]:
    background = board.background_ids if background is None else frozenset(background)
    pending = [
        write for write in _targets(art, anchor, board, background)
        if board.color_at(write.x, write.y) != write.color
    ]
    pending.sort(key=lambda w: (w.y, w.x))
    return pending


def count_targets(
    art: PixelArt,
    anchor: Tuple[int, int],
    board: BoardSnapshot,
    background: Optional[Iterable[int]] = None,
) -> int:
    """Meaningful pixels of the art that land on the board (the progress denominator)."""
    background = board.background_ids if background is None else frozenset(background)
    return sum(1 for _ in _targets(art, anchor, board, background))
