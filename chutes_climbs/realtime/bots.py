"""
Chutes & Climbs - Bot Players

Bots are ordinary player records with ``is_bot`` set. The host's client
rolls for them through the same GameSession.roll path a human uses, after
a short think delay.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from chutes_climbs.engine.base import AVATAR_COLORS, GameStatus, PlayerState
from chutes_climbs.engine.turn import TurnOutcome
from chutes_climbs.errors import GameNotInProgress, HostOnly
from chutes_climbs.realtime.session import GameSession

logger = logging.getLogger(__name__)

BOT_NAMES = ("Bot Alice", "Bot Bob", "Bot Charlie")


class BotDriver:
    """Adds bots to a hosted room and plays their turns."""

    def __init__(
        self,
        session: GameSession,
        *,
        think_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session
        self.think_delay = (
            think_delay if think_delay is not None else session.settings.bot_think_delay
        )
        self._sleep = sleep

    def add_bot(self, name: str | None = None, avatar: int | None = None) -> PlayerState:
        """
        Join a bot to the waiting room.

        Raises:
            HostOnly: This client is not the host
            GameNotInProgress: The game has already started
        """
        session = self.session
        if not session.is_host:
            raise HostOnly(session.local_player_id, "add bots")
        if session.state.status != GameStatus.WAITING:
            raise GameNotInProgress("Bots can only join a waiting game.")

        used_names = {p.name for p in session.state.players}
        if name is None:
            name = next((n for n in BOT_NAMES if n not in used_names), f"Bot {len(used_names) + 1}")
        if avatar is None:
            used_avatars = {p.avatar for p in session.state.players}
            avatar = next((a for a in AVATAR_COLORS if a not in used_avatars), None)

        _, player, _ = session.synchronizer.join_session(
            session.room.room_code, name, avatar=avatar, is_bot=True
        )
        session.add_player(player)
        logger.info("Bot %s joined room %s", name, session.room.room_code)
        return player.to_state()

    def pending_bot(self) -> PlayerState | None:
        """The bot whose turn it is, if this client should roll for it."""
        state = self.session.state
        if not self.session.is_host or state.status != GameStatus.PLAYING or state.paused:
            return None
        current = state.current_player
        if current is None or not current.is_bot:
            return None
        return current

    def play_turn(self) -> TurnOutcome | None:
        """Roll once for the pending bot, if any."""
        bot = self.pending_bot()
        if bot is None:
            return None
        self._sleep(self.think_delay)
        return self.session.roll(player_id=bot.id)

    def run(self, max_turns: int | None = None) -> int:
        """Play bot turns until a human is up or the game ends. Returns turns played."""
        played = 0
        while max_turns is None or played < max_turns:
            if self.play_turn() is None:
                break
            played += 1
        return played
