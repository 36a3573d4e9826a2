"""
ftplace — models/art.py
─────────────────────────────────────────────────────────────────
Pixel art schema + on-disk loader.
No placement logic here, only structure.

File format (pixel_arts/<name>.json):
    {
      "name": "Smiley",
      "width": 3, "height": 3,
      "pattern": [{"x": 0, "y": 0, "color": 2}, ...]
    }
─────────────────────────────────────────────────────────────────
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator

logger = logging.getLogger("ftplace.art")

# Color value art authors use to punch holes; never written to the board.
TRANSPARENT = -1


class ArtFileError(Exception):
    """Art file missing or malformed."""


class ArtPixel(BaseModel):
    x:     int
    y:     int
    color: int = Field(validation_alias=AliasChoices("color", "color_id"))


class PixelArt(BaseModel):
    name:    str = "untitled"
    width:   int = 0
    height:  int = 0
    pattern: List[ArtPixel] = Field(default_factory=list)

    @model_validator(mode="after")
    def _derive_size(self):
        if self.pattern and (self.width <= 0 or self.height <= 0):
            self.width  = max(p.x for p in self.pattern) - min(p.x for p in self.pattern) + 1
            self.height = max(p.y for p in self.pattern) - min(p.y for p in self.pattern) + 1
        return self

    @classmethod
    def from_tuples(cls, pixels, name: str = "untitled") -> "PixelArt":
        """Build from [(dx, dy, color), ...], handy for tests and scripts."""
        return cls(
            name    = name,
            pattern = [ArtPixel(x=dx, y=dy, color=c) for dx, dy, c in pixels],
        )


# ─────────────────────────────────────────────
# Loader
# ─────────────────────────────────────────────
def load_art_file(path) -> PixelArt:
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        raise ArtFileError(f"Art file not found: {path}")
    except json.JSONDecodeError as e:
        raise ArtFileError(f"Art file {path} is not valid JSON: {e}")

    try:
        art = PixelArt.model_validate(data)
    except ValidationError as e:
        raise ArtFileError(f"Art file {path} does not match the art schema: {e}")

    if art.name == "untitled":
        art.name = path.stem
    return art


def list_art_files(art_dir) -> List[PixelArt]:
    """All parseable arts in a directory. Broken files are logged and skipped."""
    folder = Path(art_dir)
    if not folder.is_dir():
        return []

    arts = []
    for file in sorted(folder.glob("*.json")):
        try:
            arts.append(load_art_file(file))
        except ArtFileError as e:
            logger.warning(f"Skipping art file: {e}")
    return arts


def find_art(art_dir, name: str) -> Optional[PixelArt]:
    for art in list_art_files(art_dir):
        if art.name == name:
            return art
    return None
