"""
Chutes & Climbs - Realtime Event Definitions

Event types and payloads for multiplayer game state changes. Events arrive
two ways: explicit broadcasts on the room channel, and row changes on the
`game_rooms` / `game_players` tables. Both are turned into EventPayload.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Broadcast event name on the room channel
BROADCAST_EVENT = "game_update"


class GameEvent(str, Enum):
    """Events that can occur during a game."""

    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    GAME_STARTED = "game_started"
    PLAYER_MOVED = "player_moved"
    TURN_CHANGED = "turn_changed"
    GAME_ENDED = "game_ended"
    HOST_LEFT = "host_left"


# Events whose loss desynchronizes every replica
CRITICAL_EVENTS = frozenset({
    GameEvent.GAME_STARTED,
    GameEvent.TURN_CHANGED,
    GameEvent.GAME_ENDED,
    GameEvent.HOST_LEFT,
})


@dataclass
class EventPayload:
    """Wrapper for realtime event data."""

    event: GameEvent
    room_id: str
    player_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    sender_id: str | None = None
    sent_at: float = field(default_factory=time.time)

    @property
    def is_critical(self) -> bool:
        return self.event in CRITICAL_EVENTS

    def to_message(self) -> dict[str, Any]:
        """Serialize for a channel broadcast."""
        data = dict(self.data)
        if self.player_id is not None:
            data.setdefault("player_id", self.player_id)
        return {
            "type": self.event.value,
            "data": data,
            "sender_id": self.sender_id,
            "sent_at": self.sent_at,
        }

    @classmethod
    def from_message(cls, room_id: str, message: dict[str, Any]) -> "EventPayload | None":
        """Parse a broadcast message; unknown event types give None."""
        try:
            event = GameEvent(message.get("type"))
        except ValueError:
            return None
        data = dict(message.get("data") or {})
        return cls(
            event=event,
            room_id=room_id,
            player_id=data.get("player_id"),
            data=data,
            sender_id=message.get("sender_id"),
            sent_at=message.get("sent_at") or time.time(),
        )


# -- Store change classification ----------------------------------------

_PLAYER_EVENT_MAP: dict[str, GameEvent] = {
    "INSERT": GameEvent.PLAYER_JOINED,
    "DELETE": GameEvent.PLAYER_LEFT,
}

_ROOM_EVENT_MAP: dict[str, GameEvent] = {
    "playing": GameEvent.GAME_STARTED,
    "finished": GameEvent.GAME_ENDED,
}


def classify_room_change(
    change_type: str, record: dict[str, Any], old_record: dict[str, Any]
) -> GameEvent | None:
    """Determine the game event from a game_rooms table change."""
    # old_record only carries the primary key unless the table uses
    # REPLICA IDENTITY FULL; without the old column there is no transition.
    if change_type == "UPDATE" and "status" in old_record:
        new_status = record.get("status")
        if new_status != old_record["status"] and new_status in _ROOM_EVENT_MAP:
            return _ROOM_EVENT_MAP[new_status]
    return None


def classify_player_change(
    change_type: str, record: dict[str, Any], old_record: dict[str, Any]
) -> GameEvent | None:
    """Determine the game event from a game_players table change."""
    if change_type in _PLAYER_EVENT_MAP:
        return _PLAYER_EVENT_MAP[change_type]
    if change_type == "UPDATE":
        if (
            "is_current_turn" in old_record
            and record.get("is_current_turn")
            and not old_record["is_current_turn"]
        ):
            return GameEvent.TURN_CHANGED
        if "position" in old_record and record.get("position") != old_record["position"]:
            return GameEvent.PLAYER_MOVED
    return None


def payload_from_change(
    table: str,
    change_type: str,
    record: dict[str, Any],
    old_record: dict[str, Any],
    room_id: str,
) -> EventPayload | None:
    """Build an EventPayload from a postgres change, or None if irrelevant."""
    if table == "game_rooms":
        event = classify_room_change(change_type, record, old_record)
        if event is None:
            return None
        return EventPayload(
            event=event,
            room_id=room_id,
            data={"winner_name": record.get("winner_name"), "record": record},
        )

    if table == "game_players":
        event = classify_player_change(change_type, record, old_record)
        if event is None:
            return None
        row = record or old_record
        player_id = row.get("id")
        data: dict[str, Any] = {"player_id": player_id}
        if event == GameEvent.PLAYER_JOINED:
            data["player"] = record
        elif event == GameEvent.PLAYER_MOVED:
            data["new_position"] = record.get("position")
        return EventPayload(
            event=event,
            room_id=room_id,
            player_id=str(player_id) if player_id else None,
            data=data,
        )

    return None


# -- Broadcast constructors ---------------------------------------------

def player_joined(room_id: str, player_record: dict[str, Any], sender_id: str | None = None) -> EventPayload:
    return EventPayload(
        event=GameEvent.PLAYER_JOINED,
        room_id=room_id,
        player_id=str(player_record.get("id")),
        data={"player": player_record},
        sender_id=sender_id,
    )


def player_left(room_id: str, player_id: str, sender_id: str | None = None) -> EventPayload:
    return EventPayload(
        event=GameEvent.PLAYER_LEFT, room_id=room_id, player_id=player_id, sender_id=sender_id,
    )


def game_started(room_id: str, sender_id: str | None = None) -> EventPayload:
    return EventPayload(event=GameEvent.GAME_STARTED, room_id=room_id, sender_id=sender_id)


def player_moved(
    room_id: str,
    player_id: str,
    new_position: int,
    *,
    dice_roll: int = 0,
    move_type: str = "normal",
    sender_id: str | None = None,
) -> EventPayload:
    return EventPayload(
        event=GameEvent.PLAYER_MOVED,
        room_id=room_id,
        player_id=player_id,
        data={"new_position": new_position, "dice_roll": dice_roll, "move_type": move_type},
        sender_id=sender_id,
    )


def turn_changed(
    room_id: str, next_turn_index: int, next_player_id: str, sender_id: str | None = None
) -> EventPayload:
    return EventPayload(
        event=GameEvent.TURN_CHANGED,
        room_id=room_id,
        player_id=next_player_id,
        data={"next_turn_index": next_turn_index},
        sender_id=sender_id,
    )


def game_ended(room_id: str, winner_name: str | None, sender_id: str | None = None) -> EventPayload:
    return EventPayload(
        event=GameEvent.GAME_ENDED,
        room_id=room_id,
        data={"winner_name": winner_name},
        sender_id=sender_id,
    )


def host_left(room_id: str, message: str, sender_id: str | None = None) -> EventPayload:
    return EventPayload(
        event=GameEvent.HOST_LEFT,
        room_id=room_id,
        data={"message": message},
        sender_id=sender_id,
    )
