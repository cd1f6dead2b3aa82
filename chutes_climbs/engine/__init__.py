"""
Chutes & Climbs Game Engine.

Pure Python game logic with zero UI/database dependencies.
Handles board topology, move resolution, collisions, and turn order.
"""

from chutes_climbs.engine.base import (
    CollisionEvent,
    GameState,
    GameStatus,
    MoveEvent,
    MoveResult,
    MoveType,
    PlayerState,
    TurnPhase,
)
from chutes_climbs.engine.board import BOARD_THEMES, BoardTopology, get_board
from chutes_climbs.engine.powerups import PowerUp, PowerUpEngine, PowerUpState, RollModifier
from chutes_climbs.engine.rules import (
    detect_collision,
    is_winning_position,
    next_player_index,
    resolve_move,
    roll_die,
)
from chutes_climbs.engine.turn import TurnEngine, TurnOutcome

__all__ = [
    # Data Classes
    "CollisionEvent",
    "GameState",
    "MoveEvent",
    "MoveResult",
    "PlayerState",
    "PowerUpState",
    "RollModifier",
    "TurnOutcome",
    # Enums
    "GameStatus",
    "MoveType",
    "PowerUp",
    "TurnPhase",
    # Board
    "BOARD_THEMES",
    "BoardTopology",
    "get_board",
    # Rules
    "detect_collision",
    "is_winning_position",
    "next_player_index",
    "resolve_move",
    "roll_die",
    # Engines
    "PowerUpEngine",
    "TurnEngine",
]
