"""
Chutes & Climbs - Room Cleanup

Garbage collection for abandoned rooms and players. Run opportunistically,
e.g. whenever the open-room list is refreshed.

Order of passes:
1. Players whose heartbeat is older than ``stale_after`` are removed; rooms
   they leave empty are deleted, other rooms get a fresh player count.
   Running games they leave behind are settled so play can go on, or
   closed when the host is gone.
2. Rooms with zero players are deleted.
3. Finished rooms are deleted once ``finished_grace`` has passed since they
   ended, so clients can see the final state first.
4. Waiting rooms idle for longer than ``waiting_idle_timeout`` are deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from supabase import Client

from chutes_climbs.config.settings import Settings, get_settings
from chutes_climbs.database.history import MoveHistoryManager
from chutes_climbs.database.models import Player
from chutes_climbs.database.player import PlayerManager
from chutes_climbs.database.room import RoomManager
from chutes_climbs.engine.base import GameStatus

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """What a cleanup run removed."""

    stale_players: list[str] = field(default_factory=list)
    deleted_rooms: list[str] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted_rooms)


class RoomJanitor:
    """Deletes stale players and dead rooms."""

    def __init__(self, client: Client, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._rooms = RoomManager(client)
        self._players = PlayerManager(client)
        self._history = MoveHistoryManager(client)

    def delete_room(self, room_id: str) -> None:
        """Delete a room and everything that references it."""
        self._history.delete_by_room(room_id)
        self._players.delete_by_room(room_id)
        self._rooms.delete(room_id)
        logger.info("Room deleted: %s", room_id)

    def run(self, now: datetime | None = None) -> CleanupReport:
        """Run every cleanup pass once."""
        now = now or datetime.now(timezone.utc)
        report = CleanupReport()

        self._reap_stale_players(now, report)

        for room in self._rooms.list_empty():
            self._delete_once(str(room.id), report)

        finished_cutoff = now - timedelta(seconds=self._settings.finished_grace)
        for room in self._rooms.list_finished_before(finished_cutoff):
            self._delete_once(str(room.id), report)

        idle_cutoff = now - timedelta(seconds=self._settings.waiting_idle_timeout)
        for room in self._rooms.list_idle_waiting(idle_cutoff):
            self._delete_once(str(room.id), report)

        if report.deleted_rooms or report.stale_players:
            logger.info(
                "Cleanup removed %d stale players and %d rooms",
                len(report.stale_players), report.deleted_count,
            )
        return report

    def _reap_stale_players(self, now: datetime, report: CleanupReport) -> None:
        cutoff = now - timedelta(seconds=self._settings.stale_after)
        stale = self._players.list_stale(cutoff)
        if not stale:
            return

        logger.info("Found %d stale players to clean up", len(stale))
        room_ids = {str(p.room_id) for p in stale}
        for player in stale:
            self._players.delete(str(player.id))
            report.stale_players.append(str(player.id))

        for room_id in sorted(room_ids):
            remaining = self._players.count_in_room(room_id)
            if remaining == 0:
                self._delete_once(room_id, report)
                continue
            room = self._rooms.get_by_id(room_id)
            if room is None:
                continue
            self._rooms.set_player_count(room_id, remaining)
            if room.status == GameStatus.PLAYING:
                gone = [p for p in stale if str(p.room_id) == room_id]
                self._settle_running_game(room_id, gone)

    def _settle_running_game(self, room_id: str, gone: list[Player]) -> None:
        """
        Keep a running game consistent after its stale players were removed.

        A timed-out host closes the room and a lone survivor wins. Otherwise
        a lost turn passes to the next player in turn order.
        """
        remaining = self._players.list_by_room(room_id)
        if any(p.is_host for p in gone):
            self._rooms.finish(room_id)
            self._players.set_turn(room_id, None)
            logger.info("Host of room %s timed out, room closed", room_id)
        elif len(remaining) < 2:
            winner = remaining[0].player_name
            self._rooms.finish(room_id, winner)
            self._players.set_turn(room_id, None)
            logger.info("Room %s finished by forfeit, winner: %s", room_id, winner)
        elif not any(p.is_current_turn for p in remaining):
            holder = next((p for p in gone if p.is_current_turn), None)
            after = holder.player_order if holder else -1
            successor = next((p for p in remaining if p.player_order > after), remaining[0])
            self._players.set_turn(room_id, str(successor.id))
            logger.info("Turn in room %s passed to %s", room_id, successor.player_name)

    def _delete_once(self, room_id: str, report: CleanupReport) -> None:
        if room_id in report.deleted_rooms:
            return
        self.delete_room(room_id)
        report.deleted_rooms.append(room_id)
