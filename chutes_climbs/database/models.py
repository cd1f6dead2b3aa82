"""
Chutes & Climbs - Database Models

Pydantic models that mirror the Supabase table schemas.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from chutes_climbs.engine.base import GameStatus, MoveEvent, MoveType, PlayerState


class Room(BaseModel):
    """Mirrors the `game_rooms` table."""

    id: UUID
    room_code: str = Field(min_length=6, max_length=6)
    name: str
    host_name: str
    status: GameStatus = GameStatus.WAITING
    current_players: int = 1
    max_players: int = 4
    board_theme: str = "default"
    winner_name: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    last_activity: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def is_full(self) -> bool:
        return self.current_players >= self.max_players


class Player(BaseModel):
    """Mirrors the `game_players` table."""

    id: UUID
    room_id: UUID
    player_name: str = Field(max_length=30)
    player_color: str
    avatar: int | None = None
    position: int = Field(default=1, ge=1, le=100)
    is_host: bool = False
    is_bot: bool = False
    is_current_turn: bool = False
    player_order: int = 0
    joined_at: datetime | None = None
    last_active: datetime | None = None

    model_config = {"from_attributes": True}

    def to_state(self) -> PlayerState:
        """Convert to the rules-core representation."""
        return PlayerState(
            id=str(self.id),
            name=self.player_name,
            player_order=self.player_order,
            color=self.player_color,
            avatar=self.avatar,
            position=self.position,
            is_host=self.is_host,
            is_bot=self.is_bot,
        )


class MoveRecord(BaseModel):
    """Mirrors the append-only `move_history` table."""

    id: UUID
    room_id: UUID
    player_id: UUID
    player_name: str
    previous_position: int
    new_position: int
    dice_roll: int
    move_type: MoveType
    created_at: datetime

    model_config = {"from_attributes": True}

    def to_event(self) -> MoveEvent:
        return MoveEvent(
            player_id=str(self.player_id),
            player_name=self.player_name,
            previous_position=self.previous_position,
            new_position=self.new_position,
            dice_roll=self.dice_roll,
            move_type=self.move_type,
            timestamp=self.created_at,
        )


class LeaderboardEntry(BaseModel):
    """Mirrors the materialized `leaderboard` view."""

    username: str
    total_games_played: int = 0
    total_games_won: int = 0
    total_games_lost: int = 0
    win_percentage: float = 0.0
    rank: int = 0

    model_config = {"from_attributes": True}
