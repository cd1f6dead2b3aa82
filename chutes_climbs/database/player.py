"""
Chutes & Climbs - Player Manager

CRUD operations for the `game_players` table.
"""

from datetime import datetime, timezone

from supabase import Client

from chutes_climbs.database.models import Player
from chutes_climbs.engine.board import START_TILE


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PlayerManager:
    """Manages player records in Supabase."""

    def __init__(self, client: Client) -> None:
        self.client = client
        self.table = client.table("game_players")

    def join(
        self,
        room_id: str,
        player_name: str,
        *,
        player_color: str,
        player_order: int,
        avatar: int | None = None,
        is_host: bool = False,
        is_bot: bool = False,
    ) -> Player:
        """Add a player to a room."""
        now = _now()
        data = (
            self.table
            .insert({
                "room_id": room_id,
                "player_name": player_name,
                "player_color": player_color,
                "avatar": avatar,
                "position": START_TILE,
                "is_host": is_host,
                "is_bot": is_bot,
                "is_current_turn": False,
                "player_order": player_order,
                "joined_at": now,
                "last_active": now,
            })
            .execute()
        )
        return Player.model_validate(data.data[0])

    def get(self, player_id: str) -> Player | None:
        """Get a single player by ID."""
        data = (
            self.table
            .select("*")
            .eq("id", player_id)
            .execute()
        )
        if data.data:
            return Player.model_validate(data.data[0])
        return None

    def list_by_room(self, room_id: str) -> list[Player]:
        """Get all players in a room, ordered by turn."""
        data = (
            self.table
            .select("*")
            .eq("room_id", room_id)
            .order("player_order")
            .execute()
        )
        return [Player.model_validate(row) for row in data.data]

    def count_in_room(self, room_id: str) -> int:
        """Count players currently in a room."""
        data = (
            self.table
            .select("id", count="exact")
            .eq("room_id", room_id)
            .execute()
        )
        return data.count or 0

    def taken_avatars(self, room_id: str) -> set[int]:
        """Avatars already used in a room."""
        data = (
            self.table
            .select("avatar")
            .eq("room_id", room_id)
            .execute()
        )
        return {row["avatar"] for row in data.data if row.get("avatar") is not None}

    def update_position(self, player_id: str, position: int) -> Player:
        """Set a player's absolute position (idempotent)."""
        data = (
            self.table
            .update({"position": position, "last_active": _now()})
            .eq("id", player_id)
            .execute()
        )
        return Player.model_validate(data.data[0])

    def set_turn(self, room_id: str, player_id: str | None) -> None:
        """Give the turn to one player and clear it for everyone else."""
        query = self.table.update({"is_current_turn": False}).eq("room_id", room_id)
        if player_id is not None:
            query = query.neq("id", player_id)
        query.execute()

        if player_id is not None:
            (
                self.table
                .update({"is_current_turn": True})
                .eq("id", player_id)
                .execute()
            )

    def reset_positions(self, room_id: str) -> None:
        """Send every player in a room back to the start tile."""
        (
            self.table
            .update({"position": START_TILE})
            .eq("room_id", room_id)
            .execute()
        )

    def heartbeat(self, player_id: str) -> None:
        """Refresh a player's liveness timestamp."""
        (
            self.table
            .update({"last_active": _now()})
            .eq("id", player_id)
            .execute()
        )

    def delete(self, player_id: str) -> None:
        self.table.delete().eq("id", player_id).execute()

    def delete_by_room(self, room_id: str) -> None:
        self.table.delete().eq("room_id", room_id).execute()

    def list_stale(self, cutoff: datetime) -> list[Player]:
        """Players whose last heartbeat is older than ``cutoff``."""
        data = (
            self.table
            .select("*")
            .lt("last_active", cutoff.isoformat())
            .execute()
        )
        return [Player.model_validate(row) for row in data.data]
