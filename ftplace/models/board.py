"""
ftplace — models/board.py
─────────────────────────────────────────────────────────────────
BoardSnapshot — the scheduler's view of "current truth".

Immutable: a refresh builds a brand new snapshot and swaps it in.
Readers never see a half-updated grid.
─────────────────────────────────────────────────────────────────
"""

import time
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Optional, Tuple

from ftplace.models.art import TRANSPARENT

# Palette names the server uses for "nothing here"
BACKGROUND_NAME_HINTS = ("transparent", "background", "empty", "alpha")


@dataclass(frozen=True)
class ColorInfo:
    id:    int
    name:  str
    red:   int = 0
    green: int = 0
    blue:  int = 0

    @property
    def is_background(self) -> bool:
        lowered = self.name.lower()
        return lowered == "none" or any(hint in lowered for hint in BACKGROUND_NAME_HINTS)


@dataclass(frozen=True)
class BoardSnapshot:
    width:       int
    height:      int
    colors:      Tuple[int, ...]          # row-major: colors[y * width + x]
    palette:     Tuple[ColorInfo, ...] = ()
    captured_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if len(self.colors) != self.width * self.height:
            raise ValueError(
                f"Board grid has {len(self.colors)} cells, "
                f"expected {self.width}x{self.height}"
            )

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def color_at(self, x: int, y: int) -> int:
        return self.colors[y * self.width + x]

    @property
    def background_ids(self) -> FrozenSet[int]:
        ids = {c.id for c in self.palette if c.is_background}
        ids.add(TRANSPARENT)
        return frozenset(ids)

    def with_pixels(self, overlay: Dict[Tuple[int, int], int]) -> "BoardSnapshot":
        """New snapshot with `overlay` applied. `self` is left untouched."""
        if not overlay:
            return self
        cells = list(self.colors)
        for (x, y), color in overlay.items():
            if self.in_bounds(x, y):
                cells[y * self.width + x] = color
        return replace(self, colors=tuple(cells))

    # ─────────────────────────────────────────────
    # Decoding /api/get
    # ─────────────────────────────────────────────
    @classmethod
    def from_api(cls, payload: dict, captured_at: Optional[float] = None) -> "BoardSnapshot":
        """
        The server sends the board column-major:
            board[x][y] = {"c": color_id, "u": username, "t": set_time} | null
        """
        columns = payload.get("board") or []
        width   = len(columns)
        height  = len(columns[0]) if width else 0

        cells = [TRANSPARENT] * (width * height)
        for x, column in enumerate(columns):
            for y, pixel in enumerate(column[:height]):
                if pixel is not None:
                    cells[y * width + x] = int(pixel["c"])

        palette = tuple(
            ColorInfo(
                id    = int(c["id"]),
                name  = str(c.get("name", "")),
                red   = int(c.get("red", 0)),
                green = int(c.get("green", 0)),
                blue  = int(c.get("blue", 0)),
            )
            for c in payload.get("colors") or []
        )

        return cls(
            width       = width,
            height      = height,
            colors      = tuple(cells),
            palette     = palette,
            captured_at = time.time() if captured_at is None else captured_at,
        )

    @classmethod
    def blank(cls, width: int, height: int, fill: int = TRANSPARENT, **kwargs) -> "BoardSnapshot":
        return cls(width=width, height=height, colors=(fill,) * (width * height), **kwargs)
