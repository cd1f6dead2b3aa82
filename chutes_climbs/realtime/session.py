"""
Chutes & Climbs - Game Session Replica

A GameSession is one client's copy of a room. Local rolls are validated,
applied through TurnEngine, persisted and broadcast; remote events are
replayed through the same TurnEngine transitions.

Local flow for a roll:
    validate -> apply -> report move -> wait per tile moved
    -> end turn (or end the game on a win) -> report turn change

The waits give other clients time to apply the position update before the
turn change that follows it. Sync failures never undo the local move; the
session is marked desynchronized instead and can be rebuilt with resync().
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Sequence

from chutes_climbs.config.settings import Settings, get_settings
from chutes_climbs.database.models import Player, Room
from chutes_climbs.engine.base import GameState, GameStatus, MoveType, PlayerState
from chutes_climbs.engine.board import get_board
from chutes_climbs.engine.powerups import PowerUpEngine, PowerUpState, RollModifier
from chutes_climbs.engine.rules import roll_die
from chutes_climbs.engine.turn import TurnEngine, TurnOutcome
from chutes_climbs.errors import (
    ChannelUnavailable,
    ChutesError,
    HostOnly,
    NotYourTurn,
    StoreWriteFailed,
)
from chutes_climbs.realtime import events
from chutes_climbs.realtime.events import EventPayload, GameEvent
from chutes_climbs.realtime.presence import HeartbeatMonitor
from chutes_climbs.realtime.synchronizer import SessionSynchronizer

logger = logging.getLogger(__name__)

SYNC_ERRORS = (StoreWriteFailed, ChannelUnavailable)


class GameSession:
    """Local replica of one room, driven by one client."""

    def __init__(
        self,
        synchronizer: SessionSynchronizer,
        room: Room,
        local_player_id: str,
        players: Sequence[Player] = (),
        *,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        dice: Callable[[], int] = roll_die,
        on_change: Callable[[GameState], None] | None = None,
    ) -> None:
        self.synchronizer = synchronizer
        self.room = room
        self.room_id = str(room.id)
        self.local_player_id = local_player_id
        self.settings = settings or get_settings()
        self.state = TurnEngine.new_game(
            [p.to_state() for p in players], get_board(room.board_theme)
        )
        self.powerups: dict[str, PowerUpState] = {}
        self.desynchronized = False
        self.host_left = False
        self._sleep = sleep
        self._dice = dice
        self._on_change = on_change
        self._lock = threading.RLock()
        self._heartbeat: HeartbeatMonitor | None = None
        self._handlers = {
            GameEvent.PLAYER_JOINED: self._on_player_joined,
            GameEvent.PLAYER_LEFT: self._on_player_left,
            GameEvent.GAME_STARTED: self._on_game_started,
            GameEvent.PLAYER_MOVED: self._on_player_moved,
            GameEvent.TURN_CHANGED: self._on_turn_changed,
            GameEvent.GAME_ENDED: self._on_game_ended,
            GameEvent.HOST_LEFT: self._on_host_left,
        }

    # -- Construction ----------------------------------------------------

    @classmethod
    def create(
        cls,
        synchronizer: SessionSynchronizer,
        room_name: str,
        host_name: str,
        *,
        color: str | None = None,
        avatar: int | None = None,
        board_theme_id: str | None = None,
        **kwargs,
    ) -> "GameSession":
        """Create a room and return the host's session, already subscribed."""
        room, host = synchronizer.create_session(
            room_name, host_name, color=color, avatar=avatar, board_theme_id=board_theme_id
        )
        session = cls(synchronizer, room, str(host.id), [host], **kwargs)
        synchronizer.subscribe(session.room_id, session.handle_event)
        return session

    @classmethod
    def join(
        cls,
        synchronizer: SessionSynchronizer,
        code: str,
        name: str,
        *,
        color: str | None = None,
        avatar: int | None = None,
        **kwargs,
    ) -> "GameSession":
        """Join a waiting room by code, subscribe, and announce the join."""
        room, player, players = synchronizer.join_session(code, name, color=color, avatar=avatar)
        session = cls(synchronizer, room, str(player.id), players, **kwargs)
        synchronizer.subscribe(session.room_id, session.handle_event)
        session._sync(
            synchronizer.broadcast,
            events.player_joined(
                session.room_id, player.model_dump(mode="json"), sender_id=session.local_player_id
            ),
        )
        return session

    # -- Accessors -------------------------------------------------------

    @property
    def local_player(self) -> PlayerState | None:
        return self.state.find_player(self.local_player_id)

    @property
    def is_host(self) -> bool:
        player = self.local_player
        return player is not None and player.is_host

    def powerups_for(self, player_id: str) -> PowerUpState:
        return self.powerups.get(player_id, PowerUpState())

    def controlled_player_ids(self) -> list[str]:
        """The local player, plus bots when this client is the host."""
        ids = [self.local_player_id]
        if self.is_host:
            ids += [p.id for p in self.state.players if p.is_bot]
        return ids

    # -- Local actions ---------------------------------------------------

    def add_player(self, player: Player) -> None:
        """Add a player this client created (e.g. a bot) and announce it."""
        with self._lock:
            self.state = TurnEngine.add_player(self.state, player.to_state())
        self._notify()
        self._sync(
            self.synchronizer.broadcast,
            events.player_joined(
                self.room_id, player.model_dump(mode="json"), sender_id=self.local_player_id
            ),
        )

    def start(self) -> None:
        """Start the game. Host only."""
        if not self.is_host:
            raise HostOnly(self.local_player_id, "start the game")
        with self._lock:
            self.state = TurnEngine.start_game(self.state)
            first = self.state.current_player
        self._notify()
        self._sync(
            self.synchronizer.start_session,
            self.room_id,
            first.id,
            sender_id=self.local_player_id,
        )

    def roll(
        self,
        face: int | None = None,
        *,
        modifier: RollModifier | None = None,
        player_id: str | None = None,
    ) -> TurnOutcome:
        """
        Roll for the local player (or a bot, on the host) and play the turn out.

        Args:
            face: Die value from a dice collaborator; rolled here if omitted
            modifier: Optional power-up to use for this roll
            player_id: Bot to roll for; defaults to the local player

        Raises:
            NotYourTurn, GameNotInProgress, GamePaused, MoveInFlight,
            InvalidRoll, PowerUpUnavailable: Nothing was applied or sent
        """
        actor = player_id or self.local_player_id

        with self._lock:
            self._check_controls(actor)
            TurnEngine.check_can_roll(self.state, actor)
            if modifier is not None:
                PowerUpEngine.check(
                    self.powerups_for(actor), modifier, self.state.current_player.position, self.state.board
                )
            dice_roll = face if face is not None else self._dice()
            outcome = TurnEngine.apply_roll(self.state, actor, dice_roll, modifier)
            self.state = outcome.state
            if modifier is not None:
                self.powerups[actor] = PowerUpEngine.consume(self.powerups_for(actor), modifier)

        move = outcome.move
        logger.debug(
            "%s rolled %d: %d -> %d (%s)",
            move.player_name, move.dice_roll, move.previous_position,
            move.new_position, move.move_type.value,
        )
        self._notify()
        self._sync(
            self.synchronizer.report_move,
            self.room_id,
            move,
            outcome.bump_move,
            sender_id=self.local_player_id,
        )

        steps = abs(move.new_position - move.previous_position)
        self._sleep(self.settings.move_step_delay * steps)

        if outcome.won:
            logger.info("%s won in room %s", move.player_name, self.room.room_code)
            self._sync(
                self.synchronizer.end_session,
                self.room_id,
                move.player_name,
                self.state.players,
                sender_id=self.local_player_id,
            )
            return outcome

        self._sleep(self.settings.turn_advance_delay)
        self.end_turn()
        return outcome

    def end_turn(self) -> None:
        """Close the turn in flight; reports the turn change if it moved."""
        with self._lock:
            if self.state.status != GameStatus.PLAYING:
                return
            before = self.state.current_player
            self.powerups[before.id] = PowerUpEngine.tick(self.powerups_for(before.id))
            self.state = TurnEngine.end_turn(self.state)
            after = self.state.current_player
            index = self.state.current_index
        self._notify()

        if after.id != before.id:
            self._sync(
                self.synchronizer.advance_turn,
                self.room_id,
                index,
                after.id,
                sender_id=self.local_player_id,
            )

    def pause(self) -> None:
        """Pause this client only; other replicas keep their own state."""
        with self._lock:
            self.state = TurnEngine.pause(self.state)
        self._notify()

    def resume(self) -> None:
        with self._lock:
            self.state = TurnEngine.resume(self.state)
        self._notify()

    def leave(self) -> None:
        """
        Leave the room. The turn passes on if the local player held it.

        Leaving a running game with one opponent left ends it with that
        opponent as the winner, and the result is written like any other win.
        """
        self.stop_heartbeat()
        with self._lock:
            me = self.local_player
            if me is None:
                return
            was_playing = self.state.status == GameStatus.PLAYING
            held_turn = was_playing and self.state.is_current_turn(me.id)
            players = self.state.players
            self.state = TurnEngine.remove_player(self.state, me.id)
            game_over = (
                was_playing
                and not me.is_host
                and self.state.status == GameStatus.FINISHED
                and self.state.winner_id is not None
            )
            next_player = self.state.current_player
            next_player_id = (
                next_player.id
                if held_turn and next_player and self.state.status == GameStatus.PLAYING
                else None
            )

        try:
            left = self._sync(
                self.synchronizer.leave_session,
                self.room_id,
                me.id,
                is_host=me.is_host,
                next_player_id=next_player_id,
                sender_id=me.id,
            )
            if left and game_over:
                logger.info(
                    "%s wins room %s by forfeit", self.state.winner_name, self.room.room_code
                )
                self._sync(
                    self.synchronizer.end_session,
                    self.room_id,
                    self.state.winner_name,
                    players,
                    sender_id=me.id,
                )
        finally:
            self.synchronizer.unsubscribe(self.room_id, self.handle_event)
        logger.info("%s left room %s", me.name, self.room.room_code)

    # -- Presence --------------------------------------------------------

    def start_heartbeat(self, interval: float | None = None) -> HeartbeatMonitor:
        """Keep the local player (and hosted bots) alive in the store."""
        if self._heartbeat is None:
            self._heartbeat = HeartbeatMonitor(
                self.synchronizer,
                self.controlled_player_ids,
                interval if interval is not None else self.settings.heartbeat_interval,
            )
        self._heartbeat.start()
        return self._heartbeat

    def stop_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.stop()

    # -- Remote events ---------------------------------------------------

    def handle_event(self, payload: EventPayload) -> None:
        """Replay an event from another client. Own echoes are ignored."""
        if payload.sender_id is not None and payload.sender_id == self.local_player_id:
            return
        handler = self._handlers.get(payload.event)
        if handler is None:
            return

        with self._lock:
            before = self.state
            try:
                handler(payload)
            except (ChutesError, ValueError) as exc:
                logger.warning(
                    "Could not apply %s in room %s: %s",
                    payload.event.value, self.room.room_code, exc,
                )
                self.desynchronized = True
                return
            changed = self.state is not before

        if changed:
            self._notify()

    def _on_player_joined(self, payload: EventPayload) -> None:
        record = payload.data.get("player")
        if not record:
            return
        player = Player.model_validate(record)
        if self.state.status != GameStatus.WAITING:
            logger.debug("Ignoring late join of %s", player.player_name)
            return
        self.state = TurnEngine.add_player(self.state, player.to_state())

    def _on_player_left(self, payload: EventPayload) -> None:
        if payload.player_id:
            self.state = TurnEngine.remove_player(self.state, payload.player_id)

    def _on_game_started(self, payload: EventPayload) -> None:
        if self.state.status == GameStatus.WAITING:
            self.state = TurnEngine.start_game(self.state)

    def _on_player_moved(self, payload: EventPayload) -> None:
        new_position = payload.data.get("new_position")
        if payload.player_id is None or new_position is None:
            return
        try:
            move_type = MoveType(payload.data.get("move_type", MoveType.NORMAL.value))
        except ValueError:
            move_type = MoveType.NORMAL
        self.state = TurnEngine.apply_remote_move(
            self.state,
            payload.player_id,
            int(new_position),
            dice_roll=int(payload.data.get("dice_roll") or 0),
            move_type=move_type,
        )

    def _on_turn_changed(self, payload: EventPayload) -> None:
        index = self.state.index_of(payload.player_id) if payload.player_id else -1
        if index < 0:
            index = payload.data.get("next_turn_index")
            if index is None:
                return
        self.state = TurnEngine.apply_turn_change(self.state, int(index))

    def _on_game_ended(self, payload: EventPayload) -> None:
        self.state = TurnEngine.finish(self.state, winner_name=payload.data.get("winner_name"))

    def _on_host_left(self, payload: EventPayload) -> None:
        self.host_left = True
        self.state = TurnEngine.finish(self.state)
        logger.info("Room %s closed: %s", self.room.room_code, payload.data.get("message"))

    # -- Reconciliation --------------------------------------------------

    def resync(self) -> None:
        """Rebuild local state from the store after a missed event."""
        snapshot = self.synchronizer.get_snapshot(self.room_id)
        room = snapshot["room"]

        with self._lock:
            if room is None:
                self.host_left = True
                self.state = (
                    TurnEngine.finish(self.state)
                    if self.state.status == GameStatus.PLAYING
                    else replace(self.state, status=GameStatus.FINISHED)
                )
            else:
                self.room = room
                players = snapshot["players"]
                state = TurnEngine.new_game([p.to_state() for p in players], self.state.board)
                current_ids = {str(p.id) for p in players if p.is_current_turn}
                current = next(
                    (i for i, p in enumerate(state.players) if p.id in current_ids), 0
                )
                winner = next(
                    (p for p in state.players if p.name == room.winner_name), None
                )
                self.state = replace(
                    state,
                    status=room.status,
                    current_index=current,
                    paused=self.state.paused,
                    history=tuple(snapshot["history"]),
                    winner_name=room.winner_name,
                    winner_id=winner.id if winner else None,
                )
            self.desynchronized = False
        self._notify()

    # -- Internals -------------------------------------------------------

    def _check_controls(self, player_id: str) -> None:
        if player_id not in self.controlled_player_ids():
            raise NotYourTurn(player_id)

    def _sync(self, fn: Callable, *args, **kwargs) -> bool:
        """Run a synchronizer call; failures mark the session desynchronized."""
        try:
            fn(*args, **kwargs)
            return True
        except SYNC_ERRORS as exc:
            logger.error("Sync failed in room %s: %s", self.room.room_code, exc)
            self.desynchronized = True
            return False

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.state)
