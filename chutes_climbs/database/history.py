"""
Chutes & Climbs - Move History Manager

Append-only writes to the `move_history` table.
"""

from supabase import Client

from chutes_climbs.database.models import MoveRecord
from chutes_climbs.engine.base import MoveEvent


class MoveHistoryManager:
    """Records and reads the move audit trail."""

    def __init__(self, client: Client) -> None:
        self.client = client
        self.table = client.table("move_history")

    def record(self, room_id: str, move: MoveEvent) -> MoveRecord:
        """Append one move. Rows are never updated."""
        data = (
            self.table
            .insert({
                "room_id": room_id,
                "player_id": move.player_id,
                "player_name": move.player_name,
                "previous_position": move.previous_position,
                "new_position": move.new_position,
                "dice_roll": move.dice_roll,
                "move_type": move.move_type.value,
                "created_at": move.timestamp.isoformat(),
            })
            .execute()
        )
        return MoveRecord.model_validate(data.data[0])

    def list_by_room(self, room_id: str) -> list[MoveRecord]:
        """All moves in a room, oldest first."""
        data = (
            self.table
            .select("*")
            .eq("room_id", room_id)
            .order("created_at")
            .execute()
        )
        return [MoveRecord.model_validate(row) for row in data.data]

    def count_for_player(self, room_id: str, player_id: str) -> int:
        data = (
            self.table
            .select("id", count="exact")
            .eq("room_id", room_id)
            .eq("player_id", player_id)
            .execute()
        )
        return data.count or 0

    def delete_by_room(self, room_id: str) -> None:
        self.table.delete().eq("room_id", room_id).execute()
