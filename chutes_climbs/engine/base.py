"""
Chutes & Climbs - Game Engine Base Classes

This module defines the foundational data structures and enums used throughout
the game engine. All classes are immutable (frozen dataclasses); transitions
return new instances instead of mutating state in place.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from chutes_climbs.engine.board import DEFAULT_BOARD, START_TILE, BoardTopology

DIE_FACES = 6
MAX_PLAYERS = 4
MIN_PLAYERS = 2
BUMP_DISTANCE = 2


class GameStatus(str, Enum):
    """Lifecycle of a room. ``finished`` is terminal."""
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


class TurnPhase(str, Enum):
    """Sub-state of a ``playing`` game."""
    AWAITING_ROLL = "awaiting_roll"
    MOVE_IN_FLIGHT = "move_in_flight"


class MoveType(str, Enum):
    """How a piece arrived at its new tile."""
    NORMAL = "normal"
    CHUTE = "chute"
    CLIMB = "climb"
    BOUNCE = "bounce"
    COLLISION = "collision"
    TELEPORT = "teleport"


# Avatar index -> colour token
AVATAR_COLORS: dict[int, str] = {
    1: "#4ECDC4",
    2: "#FF6B6B",
    3: "#45B7D1",
    4: "#FF8C00",
    5: "#96CEB4",
    6: "#9370DB",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MoveResult:
    """Outcome of resolving a single die roll from a position."""
    position: int
    move_type: MoveType


@dataclass(frozen=True)
class CollisionEvent:
    """
    A resting player displaced by another player landing on their tile.

    Attributes:
        bumped_player_id: Player being pushed back
        bumped_player_name: Their display name
        bumped_from_position: Tile they were resting on
        bumped_to_position: Tile they are pushed back to (never below 1)
    """
    bumped_player_id: str
    bumped_player_name: str
    bumped_from_position: int
    bumped_to_position: int


@dataclass(frozen=True)
class MoveEvent:
    """Append-only record of a position change."""
    player_id: str
    player_name: str
    previous_position: int
    new_position: int
    dice_roll: int
    move_type: MoveType
    timestamp: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True)
class PlayerState:
    """
    A participant as seen by the rules core.

    Attributes:
        id: Player record id
        name: Display name
        player_order: Join order (host is 0); fixes turn order
        color: Colour token
        avatar: Avatar token, unique within a room when set
        position: Current tile (1-100)
        is_host: Whether this player created the room
        is_bot: Whether rolls are issued automatically by the host client
        dice_result: Last face rolled during the current turn
    """
    id: str
    name: str
    player_order: int = 0
    color: str = AVATAR_COLORS[1]
    avatar: int | None = None
    position: int = START_TILE
    is_host: bool = False
    is_bot: bool = False
    dice_result: int | None = None

    def moved_to(self, position: int) -> "PlayerState":
        return replace(self, position=position)


@dataclass(frozen=True)
class GameState:
    """
    Complete replica state of one game.

    Attributes:
        players: Participants ordered by player_order
        status: Room lifecycle status
        current_index: Index into players of whose turn it is
        phase: Awaiting a roll, or a move is animating
        paused: Local-only pause flag
        last_roll: Face value of the most recent roll this turn
        bonus_pending: A max-face roll still owes one extra roll
        winner_id: Player id of the winner, once finished
        winner_name: Winner display name (host-authoritative string)
        history: Append-only move events
        board: Board topology in use
    """
    players: tuple[PlayerState, ...] = ()
    status: GameStatus = GameStatus.WAITING
    current_index: int = 0
    phase: TurnPhase = TurnPhase.AWAITING_ROLL
    paused: bool = False
    last_roll: int | None = None
    bonus_pending: bool = False
    winner_id: str | None = None
    winner_name: str | None = None
    history: tuple[MoveEvent, ...] = ()
    board: BoardTopology = DEFAULT_BOARD

    @property
    def current_player(self) -> PlayerState | None:
        """Player whose turn it is, or None outside of play."""
        if self.status != GameStatus.PLAYING or not self.players:
            return None
        return self.players[self.current_index % len(self.players)]

    @property
    def winner(self) -> PlayerState | None:
        return self.find_player(self.winner_id) if self.winner_id else None

    def is_current_turn(self, player_id: str) -> bool:
        current = self.current_player
        return current is not None and current.id == player_id

    def find_player(self, player_id: str) -> PlayerState | None:
        return next((p for p in self.players if p.id == player_id), None)

    def index_of(self, player_id: str) -> int:
        """Index of a player in turn order, or -1 if absent."""
        for i, p in enumerate(self.players):
            if p.id == player_id:
                return i
        return -1

    def positions(self) -> dict[str, int]:
        return {p.id: p.position for p in self.players}
