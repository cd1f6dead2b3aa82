"""
Chutes & Climbs - Channel Subscription Management

Manages Supabase Realtime channel subscriptions for live multiplayer.
Uses a background thread with an asyncio event loop since the sync
Realtime client in supabase 2.x is not implemented.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable

from supabase import Client

from chutes_climbs.errors import ChannelUnavailable
from chutes_climbs.realtime.events import BROADCAST_EVENT, EventPayload, payload_from_change

logger = logging.getLogger(__name__)

# Tables whose row changes we listen to, with the column that holds the room id
_WATCHED_TABLES = {
    "game_rooms": "id",
    "game_players": "room_id",
}


class ChannelManager:
    """Manages one Supabase Realtime channel per room.

    Bridges async Realtime API with sync code by running an asyncio
    event loop in a daemon thread. Callbacks are invoked from that
    background thread; callers should handle thread safety.
    """

    def __init__(self, client: Client, timeout: float = 10.0) -> None:
        self._client = client
        self._timeout = timeout
        self._channels: dict[str, Any] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        """Start the background event loop if not running."""
        with self._lock:
            if self._loop is None or not self._loop.is_running():
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._run_loop, daemon=True, name="realtime-loop"
                )
                self._thread.start()
            return self._loop

    def _run_loop(self) -> None:
        """Run the asyncio event loop in the background thread."""
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def subscribe(
        self,
        room_id: str,
        on_event: Callable[[EventPayload], None],
    ) -> None:
        """Subscribe to broadcasts and table changes for a room.

        Args:
            room_id: UUID of the room to watch.
            on_event: Callback receiving EventPayload for each change.
        """
        if room_id in self._channels:
            logger.warning("Already subscribed to room %s", room_id)
            return

        loop = self._ensure_loop()
        future = asyncio.run_coroutine_threadsafe(
            self._subscribe_async(room_id, on_event), loop
        )
        future.result(timeout=self._timeout)

    async def _subscribe_async(
        self,
        room_id: str,
        on_event: Callable[[EventPayload], None],
    ) -> None:
        """Set up the async channel for a room."""
        channel = self._client.realtime.channel(f"room:{room_id}")

        channel.on_broadcast(
            BROADCAST_EVENT,
            lambda payload: self._handle_broadcast(payload, room_id, on_event),
        )

        for table, column in _WATCHED_TABLES.items():
            channel.on_postgres_changes(
                event="*",
                callback=lambda payload, t=table: self._handle_change(
                    payload, t, room_id, on_event
                ),
                table=table,
                schema="public",
                filter=f"{column}=eq.{room_id}",
            )

        await channel.subscribe(
            callback=lambda state, err: self._on_subscribe_state(state, err, room_id)
        )

        self._channels[room_id] = channel
        logger.info("Subscribed to room %s", room_id)

    def _handle_broadcast(
        self,
        payload: dict[str, Any],
        room_id: str,
        on_event: Callable[[EventPayload], None],
    ) -> None:
        """Process a broadcast message into an EventPayload."""
        try:
            message = payload.get("payload", payload)
            event_payload = EventPayload.from_message(room_id, message)
            if event_payload is None:
                logger.debug("Ignoring unknown broadcast in room %s: %s", room_id, message)
                return
            on_event(event_payload)
        except Exception:
            logger.exception("Error handling broadcast for room %s", room_id)

    def _handle_change(
        self,
        payload: dict[str, Any],
        table: str,
        room_id: str,
        on_event: Callable[[EventPayload], None],
    ) -> None:
        """Process a postgres_changes payload into an EventPayload."""
        try:
            data = payload.get("data", payload)
            change_type = data.get("type", data.get("eventType", ""))
            record = data.get("record") or {}
            old_record = data.get("old_record") or {}

            event_payload = payload_from_change(table, change_type, record, old_record, room_id)
            if event_payload is None:
                return

            on_event(event_payload)
        except Exception:
            logger.exception("Error handling change for table %s", table)

    def _on_subscribe_state(
        self, state: Any, error: Exception | None, room_id: str
    ) -> None:
        """Log subscription state changes."""
        if error:
            logger.error("Subscription error for room %s: %s", room_id, error)
        else:
            logger.debug("Channel room:%s state: %s", room_id, state)

    def send(self, room_id: str, message: dict[str, Any]) -> None:
        """Broadcast a message to everyone subscribed to a room.

        Raises:
            ChannelUnavailable: Not subscribed, or the send failed.
        """
        channel = self._channels.get(room_id)
        if channel is None:
            raise ChannelUnavailable(f"Not subscribed to room {room_id}.")

        loop = self._ensure_loop()
        future = asyncio.run_coroutine_threadsafe(
            channel.send_broadcast(BROADCAST_EVENT, message), loop
        )
        try:
            future.result(timeout=self._timeout)
        except Exception as exc:
            raise ChannelUnavailable(f"Broadcast to room {room_id} failed: {exc}") from exc

    def unsubscribe(self, room_id: str) -> None:
        """Unsubscribe from the channel for a room."""
        channel = self._channels.pop(room_id, None)
        if channel is None:
            return

        loop = self._ensure_loop()
        future = asyncio.run_coroutine_threadsafe(
            self._unsubscribe_async(channel), loop
        )
        try:
            future.result(timeout=self._timeout)
        except Exception:
            logger.exception("Error unsubscribing from room %s", room_id)

        logger.info("Unsubscribed from room %s", room_id)

    async def _unsubscribe_async(self, channel: Any) -> None:
        """Unsubscribe and remove a channel."""
        try:
            await channel.unsubscribe()
            await self._client.realtime.remove_channel(channel)
        except Exception:
            logger.exception("Error removing channel")

    def unsubscribe_all(self) -> None:
        """Unsubscribe from all rooms."""
        for room_id in list(self._channels.keys()):
            self.unsubscribe(room_id)

    @property
    def active_subscriptions(self) -> list[str]:
        """Return list of room IDs with active subscriptions."""
        return list(self._channels.keys())

    def shutdown(self) -> None:
        """Stop the background event loop and clean up."""
        self.unsubscribe_all()
        if self._loop and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._loop = None
        self._thread = None
