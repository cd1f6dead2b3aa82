"""
Chutes & Climbs - Presence Heartbeats

Periodically refreshes ``last_active`` for the players a client is
responsible for, so room cleanup does not reap them.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable, Iterable

from chutes_climbs.config.settings import get_settings
from chutes_climbs.errors import StoreWriteFailed

if TYPE_CHECKING:
    from chutes_climbs.realtime.synchronizer import SessionSynchronizer

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """Background thread that writes heartbeats every ``interval`` seconds.

    Args:
        synchronizer: Backend used to write the heartbeat.
        player_ids: Returns the ids to refresh; called on every beat so
            bots added later are picked up.
        interval: Seconds between beats (default: settings.heartbeat_interval).
    """

    def __init__(
        self,
        synchronizer: SessionSynchronizer,
        player_ids: Callable[[], Iterable[str]],
        interval: float | None = None,
    ) -> None:
        self._synchronizer = synchronizer
        self._player_ids = player_ids
        self.interval = interval if interval is not None else get_settings().heartbeat_interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def beat(self) -> int:
        """Write one heartbeat per player. Returns how many succeeded."""
        written = 0
        for player_id in list(self._player_ids()):
            try:
                self._synchronizer.heartbeat(player_id)
                written += 1
            except StoreWriteFailed as exc:
                logger.warning("Heartbeat for %s failed: %s", player_id, exc)
        return written

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="heartbeat"
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.beat()
            self._stop_event.wait(self.interval)
