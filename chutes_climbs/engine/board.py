"""
Chutes & Climbs - Board Topology

Fixed maps of chutes (head -> tail) and climbs (bottom -> top) over a linear
track of tiles. The 10x10 boustrophedon layout only matters for rendering;
rules work on tile indices 1..max_tile.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Sequence

START_TILE = 1


@dataclass(frozen=True)
class BoardTopology:
    """
    Immutable board variant.

    Attributes:
        theme_id: Identifier stored on the room record
        name: Human-readable theme name
        chutes: Map of chute head -> tail (always moves down)
        climbs: Map of climb bottom -> top (always moves up)
        max_tile: Final (winning) tile
        size: Tiles per row, used for rendering coordinates
    """
    theme_id: str
    name: str
    chutes: Mapping[int, int] = field(default_factory=dict)
    climbs: Mapping[int, int] = field(default_factory=dict)
    max_tile: int = 100
    size: int = 10

    def __post_init__(self) -> None:
        """Validate the topology and freeze the maps."""
        if self.max_tile != self.size * self.size:
            raise ValueError(
                f"max_tile {self.max_tile} does not match a {self.size}x{self.size} board."
            )

        for head, tail in self.chutes.items():
            self._check_tile(head, "Chute head")
            self._check_tile(tail, "Chute tail")
            if tail >= head:
                raise ValueError(f"Chute {head}->{tail} must move down.")

        for bottom, top in self.climbs.items():
            self._check_tile(bottom, "Climb bottom")
            self._check_tile(top, "Climb top")
            if top <= bottom:
                raise ValueError(f"Climb {bottom}->{top} must move up.")

        overlap = set(self.chutes) & set(self.climbs)
        if overlap:
            raise ValueError(f"Tiles {sorted(overlap)} are both chute heads and climb bottoms.")

        for tile in (START_TILE, self.max_tile):
            if tile in self.chutes or tile in self.climbs:
                raise ValueError(f"Tile {tile} cannot be a chute head or climb bottom.")

        object.__setattr__(self, "chutes", MappingProxyType(dict(self.chutes)))
        object.__setattr__(self, "climbs", MappingProxyType(dict(self.climbs)))

    def _check_tile(self, tile: int, label: str) -> None:
        if not (START_TILE <= tile <= self.max_tile):
            raise ValueError(f"{label} {tile} is off the board (1-{self.max_tile}).")

    def tile_kind(self, tile: int) -> str:
        """Return ``"chute"``, ``"climb"`` or ``"plain"`` for a tile."""
        if tile in self.chutes:
            return "chute"
        if tile in self.climbs:
            return "climb"
        return "plain"

    def square_coordinates(self, tile: int) -> tuple[int, int]:
        """
        Map a tile to its (row, col) on the rendered board.

        Row 0 is the bottom row. Even rows run left-to-right, odd rows
        right-to-left.
        """
        self._check_tile(tile, "Tile")
        row, col = divmod(tile - 1, self.size)
        if row % 2 == 1:
            col = self.size - 1 - col
        return row, col

    def board_squares(self) -> list[dict]:
        """List every tile with its entry-tile flags, in order."""
        return [
            {
                "number": tile,
                "is_chute_head": tile in self.chutes,
                "is_climb_bottom": tile in self.climbs,
            }
            for tile in range(START_TILE, self.max_tile + 1)
        ]


def players_on_square(players: Sequence, tile: int) -> list:
    """Return the players whose position equals ``tile``."""
    return [p for p in players if p.position == tile]


# Every theme is a different picture of the same layout
CLASSIC_CHUTES = {17: 7, 54: 34, 62: 19, 87: 36, 93: 73, 99: 79}
CLASSIC_CLIMBS = {3: 22, 5: 14, 20: 39, 27: 84, 51: 67, 72: 91, 88: 99}

JUNGLE = BoardTopology(
    theme_id="default", name="Classic Jungle", chutes=CLASSIC_CHUTES, climbs=CLASSIC_CLIMBS
)

BOARD_THEMES: dict[str, BoardTopology] = {
    board.theme_id: board
    for board in (
        JUNGLE,
        BoardTopology("candy", "Candy World", CLASSIC_CHUTES, CLASSIC_CLIMBS),
        BoardTopology("candy2", "Candy World 2", CLASSIC_CHUTES, CLASSIC_CLIMBS),
        BoardTopology("edukasi", "Kids' Learning", CLASSIC_CHUTES, CLASSIC_CLIMBS),
        BoardTopology("jawa", "Javanese", CLASSIC_CHUTES, CLASSIC_CLIMBS),
    )
}

DEFAULT_BOARD = JUNGLE


def get_board(theme_id: str | None) -> BoardTopology:
    """Look up a board theme, falling back to the default for unknown ids."""
    if theme_id is None:
        return DEFAULT_BOARD
    return BOARD_THEMES.get(theme_id, DEFAULT_BOARD)
