"""
Chutes & Climbs - Leaderboard Manager

Reads the `leaderboard` view and updates per-player stats after a game.
"""

import logging

from supabase import Client

from chutes_climbs.database.models import LeaderboardEntry

logger = logging.getLogger(__name__)


class LeaderboardManager:
    """Post-game statistics."""

    def __init__(self, client: Client) -> None:
        self.client = client
        self.table = client.table("leaderboard")

    def top(self, limit: int = 50) -> list[LeaderboardEntry]:
        """Best players first. Missing ranks fall back to list order."""
        data = (
            self.table
            .select("*")
            .order("rank")
            .limit(limit)
            .execute()
        )
        entries = []
        for index, row in enumerate(data.data, start=1):
            row = {k: v for k, v in row.items() if v is not None}
            row.setdefault("rank", index)
            entries.append(LeaderboardEntry.model_validate(row))
        return entries

    def record_result(self, player_name: str, won: bool, total_moves: int) -> None:
        """Add one finished game to a player's stats."""
        self.client.rpc(
            "update_player_stats",
            {"p_player_name": player_name, "p_won": won, "p_moves": total_moves},
        ).execute()
        logger.debug("Recorded %s for %s", "win" if won else "loss", player_name)
