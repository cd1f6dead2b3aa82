"""
Chutes & Climbs Realtime Layer.

Room channel subscriptions, event propagation, and the per-client
session replica.
"""

from chutes_climbs.realtime.bots import BotDriver
from chutes_climbs.realtime.events import EventPayload, GameEvent
from chutes_climbs.realtime.presence import HeartbeatMonitor
from chutes_climbs.realtime.session import GameSession
from chutes_climbs.realtime.subscriptions import ChannelManager
from chutes_climbs.realtime.sync_manager import (
    RealtimeManager,
    subscribe_to_room,
    unsubscribe_from_room,
)
from chutes_climbs.realtime.synchronizer import (
    LocalSynchronizer,
    SessionSynchronizer,
    SupabaseSynchronizer,
)

__all__ = [
    # Events
    "EventPayload",
    "GameEvent",
    # Channels
    "ChannelManager",
    "RealtimeManager",
    "subscribe_to_room",
    "unsubscribe_from_room",
    # Synchronizers
    "LocalSynchronizer",
    "SessionSynchronizer",
    "SupabaseSynchronizer",
    # Replica
    "BotDriver",
    "GameSession",
    "HeartbeatMonitor",
]
