"""
Chutes & Climbs Database Layer.

Supabase integration for rooms, players, move history, and leaderboards.
"""

from chutes_climbs.database.cleanup import CleanupReport, RoomJanitor
from chutes_climbs.database.client import get_supabase_client
from chutes_climbs.database.history import MoveHistoryManager
from chutes_climbs.database.leaderboard import LeaderboardManager
from chutes_climbs.database.models import LeaderboardEntry, MoveRecord, Player, Room
from chutes_climbs.database.player import PlayerManager
from chutes_climbs.database.retry import with_retry
from chutes_climbs.database.room import RoomManager

__all__ = [
    "get_supabase_client",
    "with_retry",
    "CleanupReport",
    "LeaderboardEntry",
    "LeaderboardManager",
    "MoveHistoryManager",
    "MoveRecord",
    "Player",
    "PlayerManager",
    "Room",
    "RoomJanitor",
    "RoomManager",
]
