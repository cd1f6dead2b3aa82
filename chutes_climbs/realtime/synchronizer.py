"""
Chutes & Climbs - Session Synchronizer

Creates and joins rooms, persists each locally applied transition to the
store and broadcasts it on the room channel.

Writes of absolute values (positions, turn flags, heartbeats) are retried
with backoff. Broadcasts of critical events (game started, turn changed,
game ended, host left) are retried as well and raise ChannelUnavailable
once retries run out; other broadcasts are best-effort.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Sequence

from postgrest.exceptions import APIError
from supabase import Client

from chutes_climbs.config.settings import Settings, get_settings
from chutes_climbs.database.cleanup import RoomJanitor
from chutes_climbs.database.history import MoveHistoryManager
from chutes_climbs.database.leaderboard import LeaderboardManager
from chutes_climbs.database.models import Player, Room
from chutes_climbs.database.player import PlayerManager
from chutes_climbs.database.retry import TRANSIENT_ERRORS, with_retry
from chutes_climbs.database.room import RoomManager, generate_room_code
from chutes_climbs.engine.base import AVATAR_COLORS, GameStatus, MoveEvent, PlayerState, utcnow
from chutes_climbs.engine.board import START_TILE, get_board
from chutes_climbs.engine.validators import validate_display_name, validate_join_code
from chutes_climbs.errors import (
    AvatarTaken,
    ChannelUnavailable,
    JoinCodeExhausted,
    RoomFull,
    RoomNotFound,
)
from chutes_climbs.realtime import events
from chutes_climbs.realtime.events import EventPayload
from chutes_climbs.realtime.sync_manager import RealtimeManager

logger = logging.getLogger(__name__)

HOST_LEFT_MESSAGE = "The host left the game."


def _check_avatar(avatar: int | None, taken: set[int]) -> None:
    if avatar is not None and avatar in taken:
        raise AvatarTaken(avatar)


def _default_color(color: str | None, avatar: int | None, player_order: int) -> str:
    """Use the avatar's colour, or cycle through the palette by join order."""
    if color:
        return color
    if avatar in AVATAR_COLORS:
        return AVATAR_COLORS[avatar]
    palette = list(AVATAR_COLORS.values())
    return palette[player_order % len(palette)]


def _normalize_code(code: str) -> str:
    try:
        return validate_join_code(code)
    except ValueError:
        raise RoomNotFound(code) from None


class SessionSynchronizer(ABC):
    """Persistence and propagation of one client's view of a room."""

    @abstractmethod
    def create_session(
        self,
        name: str,
        host_name: str,
        *,
        color: str | None = None,
        avatar: int | None = None,
        board_theme_id: str | None = None,
    ) -> tuple[Room, Player]:
        """Create a waiting room with the host as player 0."""

    @abstractmethod
    def join_session(
        self,
        code: str,
        name: str,
        *,
        color: str | None = None,
        avatar: int | None = None,
        is_bot: bool = False,
    ) -> tuple[Room, Player, list[Player]]:
        """
        Join a waiting room by its code.

        The caller announces the join with a ``player_joined`` broadcast
        once it is subscribed to the room.

        Raises:
            RoomNotFound: No waiting room has this code
            RoomFull: The room is at capacity
            AvatarTaken: Another player in the room uses this avatar
        """

    @abstractmethod
    def list_open_sessions(self, limit: int = 20) -> list[Room]:
        """Waiting rooms, newest first."""

    @abstractmethod
    def taken_avatars(self, code: str) -> set[int]:
        """Avatars already in use in the waiting room with this code."""

    @abstractmethod
    def start_session(self, room_id: str, first_player_id: str, *, sender_id: str | None = None) -> None:
        """Mark the room playing and give the first player the turn."""

    @abstractmethod
    def report_move(
        self,
        room_id: str,
        move: MoveEvent,
        bump_move: MoveEvent | None = None,
        *,
        sender_id: str | None = None,
    ) -> None:
        """Persist and broadcast a move (and the displacement it caused)."""

    @abstractmethod
    def advance_turn(
        self, room_id: str, next_index: int, next_player_id: str, *, sender_id: str | None = None
    ) -> None:
        """Persist and broadcast a turn change."""

    @abstractmethod
    def end_session(
        self,
        room_id: str,
        winner_name: str | None,
        players: Sequence[PlayerState] = (),
        *,
        sender_id: str | None = None,
    ) -> None:
        """
        Mark the room finished, broadcast the result and schedule deletion.

        No player keeps the turn flag once the room is finished.
        """

    @abstractmethod
    def leave_session(
        self,
        room_id: str,
        player_id: str,
        *,
        is_host: bool = False,
        next_player_id: str | None = None,
        sender_id: str | None = None,
    ) -> None:
        """Remove a player; a departing host ends the room for everyone."""

    @abstractmethod
    def heartbeat(self, player_id: str) -> None:
        """Refresh a player's liveness timestamp."""

    @abstractmethod
    def get_snapshot(self, room_id: str) -> dict[str, Any]:
        """Current room, players (in turn order) and MoveEvent history."""

    @abstractmethod
    def subscribe(self, room_id: str, on_event: Callable[[EventPayload], None]) -> None:
        """Start delivering room events to ``on_event``."""

    @abstractmethod
    def unsubscribe(
        self, room_id: str, on_event: Callable[[EventPayload], None] | None = None
    ) -> None:
        """Stop delivering room events (to ``on_event`` only, when given)."""

    @abstractmethod
    def broadcast(self, payload: EventPayload) -> None:
        """Publish an event to every client in the room."""


class SupabaseSynchronizer(SessionSynchronizer):
    """Synchronizer backed by Supabase tables and a Realtime channel."""

    def __init__(
        self,
        client: Client,
        settings: Settings | None = None,
        realtime: RealtimeManager | None = None,
        janitor: RoomJanitor | None = None,
        timer_factory: Callable[..., Any] = threading.Timer,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._rooms = RoomManager(client)
        self._players = PlayerManager(client)
        self._history = MoveHistoryManager(client)
        self._leaderboard = LeaderboardManager(client)
        self._realtime = realtime or RealtimeManager(client)
        self._janitor = janitor or RoomJanitor(client, self._settings)
        self._timer_factory = timer_factory
        self._sleep = sleep

    # -- Rooms -----------------------------------------------------------

    def create_session(
        self,
        name: str,
        host_name: str,
        *,
        color: str | None = None,
        avatar: int | None = None,
        board_theme_id: str | None = None,
    ) -> tuple[Room, Player]:
        host_name = validate_display_name(host_name)
        name = validate_display_name(name or f"{host_name}'s room")
        board = get_board(board_theme_id or self._settings.default_board_theme)

        room = self._rooms.create(
            name,
            host_name,
            board_theme=board.theme_id,
            max_players=self._settings.max_players,
            attempts=self._settings.join_code_attempts,
        )
        host = self._players.join(
            str(room.id),
            host_name,
            player_color=_default_color(color, avatar, 0),
            player_order=0,
            avatar=avatar,
            is_host=True,
        )
        logger.info("Room %s created by %s", room.room_code, host_name)
        return room, host

    def join_session(
        self,
        code: str,
        name: str,
        *,
        color: str | None = None,
        avatar: int | None = None,
        is_bot: bool = False,
    ) -> tuple[Room, Player, list[Player]]:
        name = validate_display_name(name)
        room = self._rooms.get_by_code(_normalize_code(code))
        if room is None:
            raise RoomNotFound(code)

        room_id = str(room.id)
        existing = self._players.list_by_room(room_id)
        if len(existing) >= room.max_players:
            raise RoomFull(room.room_code, room.max_players)
        _check_avatar(avatar, {p.avatar for p in existing if p.avatar is not None})

        order = max((p.player_order for p in existing), default=-1) + 1
        player = self._players.join(
            room_id,
            name,
            player_color=_default_color(color, avatar, order),
            player_order=order,
            avatar=avatar,
            is_bot=is_bot,
        )
        players = existing + [player]
        room = self._retry(self._rooms.set_player_count, room_id, len(players))
        logger.info("%s joined room %s as player %d", name, room.room_code, order)
        return room, player, players

    def list_open_sessions(self, limit: int = 20) -> list[Room]:
        try:
            self._janitor.run()
        except (APIError, *TRANSIENT_ERRORS):
            logger.exception("Room cleanup failed; listing rooms anyway")
        return self._rooms.list_open(limit)

    def taken_avatars(self, code: str) -> set[int]:
        room = self._rooms.get_by_code(_normalize_code(code))
        if room is None:
            raise RoomNotFound(code)
        return self._players.taken_avatars(str(room.id))

    # -- Game flow -------------------------------------------------------

    def start_session(self, room_id: str, first_player_id: str, *, sender_id: str | None = None) -> None:
        self._retry(self._rooms.start, room_id)
        self._retry(self._players.reset_positions, room_id)
        self._retry(self._players.set_turn, room_id, first_player_id)
        self.broadcast(events.game_started(room_id, sender_id=sender_id))
        logger.info("Game started in room %s", room_id)

    def report_move(
        self,
        room_id: str,
        move: MoveEvent,
        bump_move: MoveEvent | None = None,
        *,
        sender_id: str | None = None,
    ) -> None:
        moves = [move] if bump_move is None else [move, bump_move]
        for m in moves:
            self._retry(self._players.update_position, m.player_id, m.new_position)
        for m in moves:
            self._record_history(room_id, m)
        for m in moves:
            self.broadcast(events.player_moved(
                room_id,
                m.player_id,
                m.new_position,
                dice_roll=m.dice_roll,
                move_type=m.move_type.value,
                sender_id=sender_id,
            ))
        self._retry(self._rooms.touch, room_id)

    def advance_turn(
        self, room_id: str, next_index: int, next_player_id: str, *, sender_id: str | None = None
    ) -> None:
        self._retry(self._players.set_turn, room_id, next_player_id)
        self.broadcast(events.turn_changed(room_id, next_index, next_player_id, sender_id=sender_id))

    def end_session(
        self,
        room_id: str,
        winner_name: str | None,
        players: Sequence[PlayerState] = (),
        *,
        sender_id: str | None = None,
    ) -> None:
        self._retry(self._rooms.finish, room_id, winner_name)
        self._retry(self._players.set_turn, room_id, None)
        try:
            self.broadcast(events.game_ended(room_id, winner_name, sender_id=sender_id))
        finally:
            self._record_results(room_id, winner_name, players)
            self._schedule_delete(room_id, self._settings.finished_grace)
        logger.info("Game over in room %s, winner: %s", room_id, winner_name)

    def leave_session(
        self,
        room_id: str,
        player_id: str,
        *,
        is_host: bool = False,
        next_player_id: str | None = None,
        sender_id: str | None = None,
    ) -> None:
        if is_host:
            try:
                self.broadcast(events.host_left(room_id, HOST_LEFT_MESSAGE, sender_id=sender_id))
            finally:
                self._retry(self._rooms.finish, room_id)
                self._retry(self._players.set_turn, room_id, None)
                self._retry(self._players.delete, player_id)
                self._schedule_delete(room_id, self._settings.host_left_grace)
            logger.info("Host left room %s", room_id)
            return

        self._retry(self._players.delete, player_id)
        remaining = self._retry(self._players.list_by_room, room_id)
        if not remaining:
            self._retry(self._janitor.delete_room, room_id)
            return

        self._retry(self._rooms.set_player_count, room_id, len(remaining))
        self.broadcast(events.player_left(room_id, player_id, sender_id=sender_id))
        if next_player_id is not None:
            index = next(
                (i for i, p in enumerate(remaining) if str(p.id) == next_player_id), 0
            )
            self.advance_turn(room_id, index, next_player_id, sender_id=sender_id)
        logger.info("Player %s left room %s", player_id, room_id)

    def heartbeat(self, player_id: str) -> None:
        self._retry(self._players.heartbeat, player_id)

    # -- Channel ---------------------------------------------------------

    def get_snapshot(self, room_id: str) -> dict[str, Any]:
        snapshot = self._realtime.get_snapshot(room_id)
        snapshot["history"] = [record.to_event() for record in snapshot["history"]]
        return snapshot

    def subscribe(self, room_id: str, on_event: Callable[[EventPayload], None]) -> None:
        self._realtime.subscribe(room_id, on_event)

    def unsubscribe(
        self, room_id: str, on_event: Callable[[EventPayload], None] | None = None
    ) -> None:
        # One channel per client, so the callback does not matter here
        self._realtime.unsubscribe(room_id)

    def broadcast(self, payload: EventPayload) -> None:
        """
        Publish an event on the room channel.

        Raises:
            ChannelUnavailable: A critical event could not be sent after retries
        """
        attempts = self._settings.store_retries + 1 if payload.is_critical else 1
        for attempt in range(attempts):
            try:
                self._realtime.publish(payload)
                return
            except ChannelUnavailable as exc:
                if not payload.is_critical:
                    logger.warning("Dropped %s for room %s: %s", payload.event.value, payload.room_id, exc)
                    return
                if attempt == attempts - 1:
                    logger.error(
                        "Could not broadcast %s for room %s after %d attempts: %s",
                        payload.event.value, payload.room_id, attempts, exc,
                    )
                    raise
                delay = self._settings.retry_backoff * (2 ** attempt)
                logger.warning(
                    "Broadcast of %s failed, retrying in %.2fs", payload.event.value, delay
                )
                self._sleep(delay)

    # -- Internals -------------------------------------------------------

    def _retry(self, fn: Callable[..., Any], *args: Any) -> Any:
        return with_retry(
            fn,
            *args,
            retries=self._settings.store_retries,
            backoff=self._settings.retry_backoff,
            sleep=self._sleep,
        )

    def _record_history(self, room_id: str, move: MoveEvent) -> None:
        try:
            self._history.record(room_id, move)
        except (APIError, *TRANSIENT_ERRORS) as exc:
            logger.warning("Move history not recorded for room %s: %s", room_id, exc)

    def _record_results(
        self, room_id: str, winner_name: str | None, players: Sequence[PlayerState]
    ) -> None:
        for player in players:
            if player.is_bot:
                continue
            try:
                moves = self._history.count_for_player(room_id, player.id)
                self._leaderboard.record_result(player.name, player.name == winner_name, moves)
            except (APIError, *TRANSIENT_ERRORS) as exc:
                logger.warning("Stats not updated for %s: %s", player.name, exc)

    def _schedule_delete(self, room_id: str, delay: float) -> None:
        timer = self._timer_factory(delay, self._delete_room, args=(room_id,))
        timer.daemon = True
        timer.start()

    def _delete_room(self, room_id: str) -> None:
        try:
            self._janitor.delete_room(room_id)
        except Exception:
            logger.exception("Deferred delete of room %s failed; cleanup will retry", room_id)


class LocalSynchronizer(SessionSynchronizer):
    """
    In-memory synchronizer for offline games and tests.

    Rooms and players live in dictionaries and broadcasts are delivered
    synchronously to every subscriber of the room, so several GameSession
    replicas in one process behave like separate clients.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self.rooms: dict[str, Room] = {}
        self.players: dict[str, Player] = {}
        self.history: dict[str, list[MoveEvent]] = {}
        self.sent: list[EventPayload] = []
        self._subscribers: dict[str, list[Callable[[EventPayload], None]]] = {}
        self._lock = threading.RLock()

    def create_session(
        self,
        name: str,
        host_name: str,
        *,
        color: str | None = None,
        avatar: int | None = None,
        board_theme_id: str | None = None,
    ) -> tuple[Room, Player]:
        host_name = validate_display_name(host_name)
        name = validate_display_name(name or f"{host_name}'s room")
        board = get_board(board_theme_id or self._settings.default_board_theme)

        with self._lock:
            taken = {r.room_code for r in self.rooms.values()}
            for _ in range(self._settings.join_code_attempts):
                code = generate_room_code()
                if code not in taken:
                    break
            else:
                raise JoinCodeExhausted("No free room code.")

            now = utcnow()
            room = Room(
                id=uuid.uuid4(),
                room_code=code,
                name=name,
                host_name=host_name,
                max_players=self._settings.max_players,
                board_theme=board.theme_id,
                created_at=now,
                last_activity=now,
            )
            self.rooms[str(room.id)] = room
            self.history[str(room.id)] = []
            host = self._add_player(room, host_name, color, avatar, 0, is_host=True)
        return room, host

    def join_session(
        self,
        code: str,
        name: str,
        *,
        color: str | None = None,
        avatar: int | None = None,
        is_bot: bool = False,
    ) -> tuple[Room, Player, list[Player]]:
        name = validate_display_name(name)
        with self._lock:
            room = self._find_waiting(code)
            existing = self._room_players(str(room.id))
            if len(existing) >= room.max_players:
                raise RoomFull(room.room_code, room.max_players)
            _check_avatar(avatar, {p.avatar for p in existing if p.avatar is not None})

            order = max((p.player_order for p in existing), default=-1) + 1
            player = self._add_player(room, name, color, avatar, order, is_bot=is_bot)
            players = existing + [player]
            room = self._update_room(str(room.id), current_players=len(players))
        return room, player, players

    def list_open_sessions(self, limit: int = 20) -> list[Room]:
        with self._lock:
            waiting = [r for r in self.rooms.values() if r.status == GameStatus.WAITING]
        waiting.sort(key=lambda r: r.created_at, reverse=True)
        return waiting[:limit]

    def taken_avatars(self, code: str) -> set[int]:
        with self._lock:
            room = self._find_waiting(code)
            return {
                p.avatar for p in self._room_players(str(room.id)) if p.avatar is not None
            }

    def start_session(self, room_id: str, first_player_id: str, *, sender_id: str | None = None) -> None:
        with self._lock:
            self._update_room(room_id, status=GameStatus.PLAYING, started_at=utcnow())
            for p in self._room_players(room_id):
                self._update_player(
                    str(p.id), position=START_TILE, is_current_turn=str(p.id) == first_player_id
                )
        self.broadcast(events.game_started(room_id, sender_id=sender_id))

    def report_move(
        self,
        room_id: str,
        move: MoveEvent,
        bump_move: MoveEvent | None = None,
        *,
        sender_id: str | None = None,
    ) -> None:
        moves = [move] if bump_move is None else [move, bump_move]
        with self._lock:
            for m in moves:
                self._update_player(m.player_id, position=m.new_position)
                self.history.setdefault(room_id, []).append(m)
        for m in moves:
            self.broadcast(events.player_moved(
                room_id,
                m.player_id,
                m.new_position,
                dice_roll=m.dice_roll,
                move_type=m.move_type.value,
                sender_id=sender_id,
            ))

    def advance_turn(
        self, room_id: str, next_index: int, next_player_id: str, *, sender_id: str | None = None
    ) -> None:
        with self._lock:
            for p in self._room_players(room_id):
                self._update_player(str(p.id), is_current_turn=str(p.id) == next_player_id)
        self.broadcast(events.turn_changed(room_id, next_index, next_player_id, sender_id=sender_id))

    def end_session(
        self,
        room_id: str,
        winner_name: str | None,
        players: Sequence[PlayerState] = (),
        *,
        sender_id: str | None = None,
    ) -> None:
        with self._lock:
            self._update_room(
                room_id, status=GameStatus.FINISHED, winner_name=winner_name, ended_at=utcnow()
            )
            for p in self._room_players(room_id):
                self._update_player(str(p.id), is_current_turn=False)
        self.broadcast(events.game_ended(room_id, winner_name, sender_id=sender_id))

    def leave_session(
        self,
        room_id: str,
        player_id: str,
        *,
        is_host: bool = False,
        next_player_id: str | None = None,
        sender_id: str | None = None,
    ) -> None:
        if is_host:
            self.broadcast(events.host_left(room_id, HOST_LEFT_MESSAGE, sender_id=sender_id))
            with self._lock:
                self.players.pop(player_id, None)
                self._delete_room(room_id)
            return

        with self._lock:
            self.players.pop(player_id, None)
            remaining = self._room_players(room_id)
            if not remaining:
                self._delete_room(room_id)
                return
            self._update_room(room_id, current_players=len(remaining))
        self.broadcast(events.player_left(room_id, player_id, sender_id=sender_id))
        if next_player_id is not None:
            index = next(
                (i for i, p in enumerate(remaining) if str(p.id) == next_player_id), 0
            )
            self.advance_turn(room_id, index, next_player_id, sender_id=sender_id)

    def heartbeat(self, player_id: str) -> None:
        with self._lock:
            if player_id in self.players:
                self._update_player(player_id, last_active=utcnow())

    def get_snapshot(self, room_id: str) -> dict[str, Any]:
        with self._lock:
            return {
                "room": self.rooms.get(room_id),
                "players": self._room_players(room_id),
                "history": list(self.history.get(room_id, [])),
            }

    def subscribe(self, room_id: str, on_event: Callable[[EventPayload], None]) -> None:
        with self._lock:
            self._subscribers.setdefault(room_id, []).append(on_event)

    def unsubscribe(
        self, room_id: str, on_event: Callable[[EventPayload], None] | None = None
    ) -> None:
        with self._lock:
            if on_event is None:
                self._subscribers.pop(room_id, None)
                return
            listeners = self._subscribers.get(room_id, [])
            if on_event in listeners:
                listeners.remove(on_event)

    def broadcast(self, payload: EventPayload) -> None:
        with self._lock:
            self.sent.append(payload)
            listeners = list(self._subscribers.get(payload.room_id, []))
        for listener in listeners:
            listener(payload)

    # -- Internals -------------------------------------------------------

    def _find_waiting(self, code: str) -> Room:
        normalized = _normalize_code(code)
        for room in self.rooms.values():
            if room.room_code == normalized and room.status == GameStatus.WAITING:
                return room
        raise RoomNotFound(code)

    def _room_players(self, room_id: str) -> list[Player]:
        players = [p for p in self.players.values() if str(p.room_id) == room_id]
        return sorted(players, key=lambda p: p.player_order)

    def _add_player(
        self,
        room: Room,
        name: str,
        color: str | None,
        avatar: int | None,
        order: int,
        *,
        is_host: bool = False,
        is_bot: bool = False,
    ) -> Player:
        now = utcnow()
        player = Player(
            id=uuid.uuid4(),
            room_id=room.id,
            player_name=name,
            player_color=_default_color(color, avatar, order),
            avatar=avatar,
            is_host=is_host,
            is_bot=is_bot,
            player_order=order,
            joined_at=now,
            last_active=now,
        )
        self.players[str(player.id)] = player
        return player

    def _update_room(self, room_id: str, **values: Any) -> Room:
        room = self.rooms[room_id].model_copy(update={"last_activity": utcnow(), **values})
        self.rooms[room_id] = room
        return room

    def _update_player(self, player_id: str, **values: Any) -> None:
        player = self.players.get(player_id)
        if player is not None:
            self.players[player_id] = player.model_copy(update=values)

    def _delete_room(self, room_id: str) -> None:
        self.rooms.pop(room_id, None)
        self.history.pop(room_id, None)
        self._subscribers.pop(room_id, None)
        for player_id in [pid for pid, p in self.players.items() if str(p.room_id) == room_id]:
            del self.players[player_id]
