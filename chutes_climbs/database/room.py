"""
Chutes & Climbs - Room Manager

CRUD operations for the `game_rooms` table.
"""

import logging
import secrets
import string
from datetime import datetime, timezone

from postgrest.exceptions import APIError
from supabase import Client

from chutes_climbs.database.models import Room
from chutes_climbs.engine.base import GameStatus
from chutes_climbs.errors import JoinCodeExhausted

logger = logging.getLogger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


def generate_room_code(length: int = 6) -> str:
    """Generate an alphanumeric room code, avoiding ambiguous characters."""
    alphabet = string.ascii_uppercase.replace("O", "").replace("I", "")
    alphabet += string.digits.replace("0", "").replace("1", "")
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RoomManager:
    """Manages room lifecycle in Supabase."""

    def __init__(self, client: Client) -> None:
        self.client = client
        self.table = client.table("game_rooms")

    def create(
        self,
        name: str,
        host_name: str,
        *,
        board_theme: str = "default",
        max_players: int = 4,
        attempts: int = 10,
    ) -> Room:
        """
        Create a new room with a unique join code.

        Uniqueness is enforced by the table's unique constraint on
        ``room_code``; a collision just draws another code.

        Raises:
            JoinCodeExhausted: If every attempt collided
        """
        for attempt in range(1, attempts + 1):
            code = generate_room_code()
            now = _now()
            try:
                data = (
                    self.table
                    .insert({
                        "room_code": code,
                        "name": name,
                        "host_name": host_name,
                        "status": GameStatus.WAITING.value,
                        "current_players": 1,
                        "max_players": max_players,
                        "board_theme": board_theme,
                        "created_at": now,
                        "last_activity": now,
                    })
                    .execute()
                )
            except APIError as exc:
                if exc.code != UNIQUE_VIOLATION:
                    raise
                logger.debug("Room code %s taken (attempt %d/%d)", code, attempt, attempts)
                continue
            return Room.model_validate(data.data[0])

        raise JoinCodeExhausted(f"No free room code after {attempts} attempts.")

    def get_by_code(self, code: str, status: GameStatus | None = GameStatus.WAITING) -> Room | None:
        """Look up a room by its join code (waiting rooms only by default)."""
        query = self.table.select("*").eq("room_code", code.upper())
        if status is not None:
            query = query.eq("status", status.value)
        data = query.execute()
        if data.data:
            return Room.model_validate(data.data[0])
        return None

    def get_by_id(self, room_id: str) -> Room | None:
        """Look up a room by its UUID."""
        data = (
            self.table
            .select("*")
            .eq("id", room_id)
            .execute()
        )
        if data.data:
            return Room.model_validate(data.data[0])
        return None

    def list_open(self, limit: int = 20) -> list[Room]:
        """Newest waiting rooms first."""
        data = (
            self.table
            .select("*")
            .eq("status", GameStatus.WAITING.value)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [Room.model_validate(row) for row in data.data]

    def start(self, room_id: str) -> Room:
        """Mark the room as playing."""
        now = _now()
        return self._update(room_id, {
            "status": GameStatus.PLAYING.value,
            "started_at": now,
            "last_activity": now,
        })

    def finish(self, room_id: str, winner_name: str | None = None) -> Room:
        """Mark the room as finished and record the winner, if any."""
        now = _now()
        return self._update(room_id, {
            "status": GameStatus.FINISHED.value,
            "winner_name": winner_name,
            "ended_at": now,
            "last_activity": now,
        })

    def set_player_count(self, room_id: str, count: int) -> Room:
        return self._update(room_id, {"current_players": count, "last_activity": _now()})

    def touch(self, room_id: str) -> Room:
        """Bump last_activity so idle cleanup leaves the room alone."""
        return self._update(room_id, {"last_activity": _now()})

    def delete(self, room_id: str) -> None:
        """Delete the room row only; see RoomJanitor.delete_room for the full cascade."""
        self.table.delete().eq("id", room_id).execute()

    # -- Cleanup queries -------------------------------------------------

    def list_finished_before(self, cutoff: datetime) -> list[Room]:
        data = (
            self.table
            .select("*")
            .eq("status", GameStatus.FINISHED.value)
            .lt("ended_at", cutoff.isoformat())
            .execute()
        )
        return [Room.model_validate(row) for row in data.data]

    def list_empty(self) -> list[Room]:
        data = (
            self.table
            .select("*")
            .eq("current_players", 0)
            .execute()
        )
        return [Room.model_validate(row) for row in data.data]

    def list_idle_waiting(self, cutoff: datetime) -> list[Room]:
        data = (
            self.table
            .select("*")
            .eq("status", GameStatus.WAITING.value)
            .lt("last_activity", cutoff.isoformat())
            .execute()
        )
        return [Room.model_validate(row) for row in data.data]

    def _update(self, room_id: str, values: dict) -> Room:
        data = (
            self.table
            .update(values)
            .eq("id", room_id)
            .execute()
        )
        return Room.model_validate(data.data[0])
