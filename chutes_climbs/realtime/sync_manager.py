"""
Chutes & Climbs - Realtime Sync Manager

High-level manager that ties together channel subscriptions with
store snapshots. Provides a polling fallback when WebSocket connections
fail, and publishes game events on the room channel.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from supabase import Client

from chutes_climbs.database.history import MoveHistoryManager
from chutes_climbs.database.models import Player, Room
from chutes_climbs.database.player import PlayerManager
from chutes_climbs.database.room import RoomManager
from chutes_climbs.realtime.events import EventPayload, GameEvent
from chutes_climbs.realtime.subscriptions import ChannelManager

logger = logging.getLogger(__name__)


class RealtimeManager:
    """Coordinates realtime subscriptions, publishing and snapshots.

    Wraps ChannelManager with higher-level game logic: snapshot
    fetching on subscribe, polling fallback, and clean teardown.
    """

    def __init__(
        self,
        client: Client,
        channel_manager: ChannelManager | None = None,
    ) -> None:
        self._client = client
        self._channel_mgr = channel_manager or ChannelManager(client)
        self._room_mgr = RoomManager(client)
        self._player_mgr = PlayerManager(client)
        self._history_mgr = MoveHistoryManager(client)
        self._poll_threads: dict[str, threading.Event] = {}

    def subscribe(
        self,
        room_id: str,
        on_event: Callable[[EventPayload], None],
        *,
        use_polling_fallback: bool = True,
        poll_interval: float = 2.0,
    ) -> None:
        """Subscribe to live updates for a room.

        Attempts WebSocket subscription first. If it fails and
        use_polling_fallback is True, starts a polling thread instead.

        Args:
            room_id: UUID of the room to watch.
            on_event: Callback receiving EventPayload for each change.
            use_polling_fallback: Fall back to polling on WS failure.
            poll_interval: Seconds between polls (fallback only).
        """
        try:
            self._channel_mgr.subscribe(room_id, on_event)
            logger.info("Realtime subscription active for room %s", room_id)
        except Exception:
            logger.exception("WebSocket subscription failed for room %s", room_id)
            if use_polling_fallback:
                logger.info("Falling back to polling for room %s", room_id)
                self._start_polling(room_id, on_event, poll_interval)
            else:
                raise

    def unsubscribe(self, room_id: str) -> None:
        """Unsubscribe from a room (both WS and polling)."""
        self._channel_mgr.unsubscribe(room_id)
        self._stop_polling(room_id)

    def publish(self, payload: EventPayload) -> None:
        """Broadcast an event on the room channel.

        Raises:
            ChannelUnavailable: The channel is not connected or the send failed.
        """
        self._channel_mgr.send(payload.room_id, payload.to_message())
        logger.debug("Published %s to room %s", payload.event.value, payload.room_id)

    def is_polling(self, room_id: str) -> bool:
        return room_id in self._poll_threads

    def get_snapshot(self, room_id: str) -> dict[str, Any]:
        """Fetch the current full state of a room from the database.

        Useful for initial state load on subscribe and for
        reconciliation after reconnects.

        Returns:
            Dict with 'room', 'players', and 'history' keys.
        """
        room = self._room_mgr.get_by_id(room_id)
        players = self._player_mgr.list_by_room(room_id)
        history = self._history_mgr.list_by_room(room_id)

        return {
            "room": room,
            "players": players,
            "history": history,
        }

    def shutdown(self) -> None:
        """Clean up all subscriptions and background threads."""
        for room_id in list(self._poll_threads.keys()):
            self._stop_polling(room_id)
        self._channel_mgr.shutdown()

    # -- Polling fallback ------------------------------------------------

    def _start_polling(
        self,
        room_id: str,
        on_event: Callable[[EventPayload], None],
        interval: float,
    ) -> None:
        """Start a background polling thread for a room."""
        if room_id in self._poll_threads:
            return

        stop_event = threading.Event()
        self._poll_threads[room_id] = stop_event

        thread = threading.Thread(
            target=self._poll_loop,
            args=(room_id, on_event, interval, stop_event),
            daemon=True,
            name=f"poll-{room_id[:8]}",
        )
        thread.start()

    def _stop_polling(self, room_id: str) -> None:
        """Signal a polling thread to stop."""
        stop_event = self._poll_threads.pop(room_id, None)
        if stop_event:
            stop_event.set()

    def _poll_loop(
        self,
        room_id: str,
        on_event: Callable[[EventPayload], None],
        interval: float,
        stop_event: threading.Event,
    ) -> None:
        """Poll the database for changes and emit events."""
        last_state: dict[str, Any] | None = None

        while not stop_event.is_set():
            try:
                room = self._room_mgr.get_by_id(room_id)
                players = self._player_mgr.list_by_room(room_id)

                if last_state:
                    self._diff_and_emit(room_id, room, players, last_state, on_event)

                last_state = {
                    "room": room,
                    "players": players,
                }
            except Exception:
                logger.exception("Polling error for room %s", room_id)

            stop_event.wait(interval)

    def _diff_and_emit(
        self,
        room_id: str,
        room: Room | None,
        players: list[Player],
        last_state: dict[str, Any],
        on_event: Callable[[EventPayload], None],
    ) -> None:
        """Compare current state to previous and emit events for differences."""
        prev_room: Room | None = last_state.get("room")
        prev_players = {str(p.id): p for p in last_state.get("players", [])}
        current = {str(p.id): p for p in players}

        for player_id, player in current.items():
            prev = prev_players.get(player_id)
            if prev is None:
                on_event(EventPayload(
                    event=GameEvent.PLAYER_JOINED,
                    room_id=room_id,
                    player_id=player_id,
                    data={"player": player.model_dump(mode="json")},
                ))
                continue
            if player.position != prev.position:
                on_event(EventPayload(
                    event=GameEvent.PLAYER_MOVED,
                    room_id=room_id,
                    player_id=player_id,
                    data={"new_position": player.position},
                ))
            if player.is_current_turn and not prev.is_current_turn:
                on_event(EventPayload(
                    event=GameEvent.TURN_CHANGED,
                    room_id=room_id,
                    player_id=player_id,
                ))

        for player_id in prev_players.keys() - current.keys():
            on_event(EventPayload(
                event=GameEvent.PLAYER_LEFT,
                room_id=room_id,
                player_id=player_id,
            ))

        if prev_room and room and room.status != prev_room.status:
            if room.status == "playing":
                on_event(EventPayload(
                    event=GameEvent.GAME_STARTED,
                    room_id=room_id,
                    data={"record": room.model_dump(mode="json")},
                ))
            elif room.status == "finished":
                on_event(EventPayload(
                    event=GameEvent.GAME_ENDED,
                    room_id=room_id,
                    data={"winner_name": room.winner_name},
                ))


# -- Module-level convenience functions ----------------------------------

_manager_instance: RealtimeManager | None = None
_manager_lock = threading.Lock()


def _get_manager(client: Client) -> RealtimeManager:
    """Get or create the singleton RealtimeManager."""
    global _manager_instance
    with _manager_lock:
        if _manager_instance is None:
            _manager_instance = RealtimeManager(client)
        return _manager_instance


def subscribe_to_room(
    client: Client,
    room_id: str,
    on_event: Callable[[EventPayload], None],
) -> RealtimeManager:
    """Subscribe to realtime updates for a room.

    Args:
        client: Supabase client instance.
        room_id: UUID of the room to watch.
        on_event: Callback for game events.

    Returns:
        The RealtimeManager instance (for snapshot access, etc.)
    """
    manager = _get_manager(client)
    manager.subscribe(room_id, on_event)
    return manager


def unsubscribe_from_room(client: Client, room_id: str) -> None:
    """Unsubscribe from realtime updates for a room."""
    manager = _get_manager(client)
    manager.unsubscribe(room_id)
