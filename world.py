"""
World model owned by one bot session.

The session mutates a ``GameMap`` in place as patches arrive; the decision
layer only ever sees the frozen ``MapView`` / ``Snapshot`` built from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from protocol import Cell, MapMessage, ProtocolError, Tile, WorldState


class MapNotInitialized(Exception):
    """A map patch arrived before any full map."""


class PatchOutOfBounds(ProtocolError):
    """A map patch addressed a cell outside the grid."""


@dataclass(frozen=True)
class Identity:
    id:       int
    username: str


@dataclass(frozen=True)
class MapView:
    """Read-only, row-major grid of tile bytes."""
    width:  int
    height: int
    tiles:  bytes

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def index(self, x: int, y: int) -> int:
        return y * self.width + x

    def tile(self, x: int, y: int) -> int:
        return self.tiles[y * self.width + x]

    def is_wall(self, x: int, y: int) -> bool:
        return self.tiles[y * self.width + x] == Tile.WALL

    def is_walkable(self, x: int, y: int) -> bool:
        return self.in_bounds(x, y) and not self.is_wall(x, y)


class GameMap:
    """Mutable tile buffer; replaced wholesale by Map, patched by Shot."""

    def __init__(self, width: int, height: int, tiles: bytes):
        if len(tiles) != width * height:
            raise ValueError(
                f"map of {width}x{height} needs {width * height} tiles, got {len(tiles)}"
            )
        self.width  = width
        self.height = height
        self._tiles = bytearray(tiles)
        self._view: Optional[MapView] = None

    @classmethod
    def from_message(cls, msg: MapMessage) -> "GameMap":
        return cls(msg.width, msg.height, msg.tiles)

    def __getitem__(self, xy) -> int:
        x, y = xy
        return self._tiles[y * self.width + x]

    def apply_patch(self, cells: Iterable[Cell]) -> int:
        """Write every cell, or none of them if any is out of bounds."""
        cells = list(cells)
        for cell in cells:
            if not (0 <= cell.x < self.width and 0 <= cell.y < self.height):
                raise PatchOutOfBounds(
                    f"cell ({cell.x}, {cell.y}) outside {self.width}x{self.height} map"
                )
        for cell in cells:
            self._tiles[cell.y * self.width + cell.x] = cell.state
        if cells:
            self._view = None
        return len(cells)

    def view(self) -> MapView:
        # cached until the next patch
        if self._view is None:
            self._view = MapView(self.width, self.height, bytes(self._tiles))
        return self._view


@dataclass(frozen=True)
class Snapshot:
    """Everything a strategy may look at for one tick."""
    id:    int
    map:   MapView
    world: WorldState
