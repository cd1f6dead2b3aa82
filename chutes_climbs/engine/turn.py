"""
Chutes & Climbs - Turn State Machine

Owns whose turn it is, bonus rolls, pause/resume and the
waiting -> playing -> finished lifecycle. Local rolls and replayed remote
events go through the same transitions here.

All methods are stateless class methods operating on immutable data.
State is passed in and returned, never stored.
"""

from dataclasses import dataclass, replace

from chutes_climbs.engine.base import (
    DIE_FACES,
    MAX_PLAYERS,
    CollisionEvent,
    GameState,
    GameStatus,
    MoveEvent,
    MoveType,
    PlayerState,
    TurnPhase,
)
from chutes_climbs.engine.board import DEFAULT_BOARD, START_TILE, BoardTopology
from chutes_climbs.engine.powerups import PowerUpEngine, RollModifier
from chutes_climbs.engine.rules import detect_collision, is_winning_position, next_player_index
from chutes_climbs.engine.validators import (
    validate_dice_value,
    validate_player_count,
    validate_position,
)
from chutes_climbs.errors import (
    GameNotInProgress,
    GamePaused,
    MoveInFlight,
    NotYourTurn,
)


@dataclass(frozen=True)
class TurnOutcome:
    """
    Result of applying a roll.

    Attributes:
        state: Game state after the move
        move: The mover's move event
        collision: Displacement of a resting player, if any
        bump_move: Move event for the displaced player, if any
    """
    state: GameState
    move: MoveEvent
    collision: CollisionEvent | None = None
    bump_move: MoveEvent | None = None

    @property
    def won(self) -> bool:
        return self.state.status == GameStatus.FINISHED

    @property
    def grants_bonus(self) -> bool:
        return self.state.bonus_pending


class TurnEngine:
    """Stateless transitions for a single game."""

    @classmethod
    def new_game(
        cls,
        players: tuple[PlayerState, ...] | list[PlayerState] = (),
        board: BoardTopology = DEFAULT_BOARD,
    ) -> GameState:
        """Create a waiting game with players sorted into turn order."""
        ordered = tuple(sorted(players, key=lambda p: p.player_order))
        return GameState(players=ordered, board=board)

    # -- Roster ----------------------------------------------------------

    @classmethod
    def add_player(cls, state: GameState, player: PlayerState) -> GameState:
        """Add a player to a waiting game. Re-adding a known id is a no-op."""
        if state.find_player(player.id) is not None:
            return state
        if state.status != GameStatus.WAITING:
            raise GameNotInProgress("Players can only join a waiting game.")
        if len(state.players) >= MAX_PLAYERS:
            raise ValueError(f"A game holds at most {MAX_PLAYERS} players.")

        players = tuple(sorted(state.players + (player,), key=lambda p: p.player_order))
        return replace(state, players=players)

    @classmethod
    def remove_player(cls, state: GameState, player_id: str) -> GameState:
        """
        Remove a player, keeping the turn on a live player.

        If the departing player held the turn, it passes to the player who
        followed them. If fewer than two players remain mid-game, the game
        finishes with the survivor as winner.
        """
        index = state.index_of(player_id)
        if index < 0:
            return state

        players = state.players[:index] + state.players[index + 1:]

        if state.status != GameStatus.PLAYING:
            return replace(state, players=players, current_index=0)

        if len(players) < 2:
            survivor = players[0] if players else None
            return replace(
                state,
                players=players,
                status=GameStatus.FINISHED,
                current_index=0,
                phase=TurnPhase.AWAITING_ROLL,
                bonus_pending=False,
                last_roll=None,
                winner_id=survivor.id if survivor else None,
                winner_name=survivor.name if survivor else None,
            )

        if index < state.current_index:
            return replace(state, players=players, current_index=state.current_index - 1)
        if index > state.current_index:
            return replace(state, players=players)

        return replace(
            state,
            players=tuple(replace(p, dice_result=None) for p in players),
            current_index=index % len(players),
            phase=TurnPhase.AWAITING_ROLL,
            bonus_pending=False,
            last_roll=None,
        )

    # -- Lifecycle -------------------------------------------------------

    @classmethod
    def start_game(cls, state: GameState) -> GameState:
        """waiting -> playing: everyone back to the start, first player's turn."""
        if state.status != GameStatus.WAITING:
            raise GameNotInProgress(f"Cannot start a game that is {state.status.value}.")
        validate_player_count(len(state.players))

        players = tuple(
            replace(p, position=START_TILE, dice_result=None) for p in state.players
        )
        return replace(
            state,
            players=players,
            status=GameStatus.PLAYING,
            current_index=0,
            phase=TurnPhase.AWAITING_ROLL,
            paused=False,
            last_roll=None,
            bonus_pending=False,
            winner_id=None,
            winner_name=None,
            history=(),
        )

    @classmethod
    def finish(
        cls,
        state: GameState,
        winner_name: str | None = None,
        winner_id: str | None = None,
    ) -> GameState:
        """Force the game to finished (remote game_ended / host_left)."""
        if state.status == GameStatus.FINISHED:
            return state
        if winner_id is None and winner_name is not None:
            match = next((p for p in state.players if p.name == winner_name), None)
            winner_id = match.id if match else None
        return replace(
            state,
            status=GameStatus.FINISHED,
            phase=TurnPhase.AWAITING_ROLL,
            bonus_pending=False,
            winner_id=winner_id,
            winner_name=winner_name,
        )

    @classmethod
    def pause(cls, state: GameState) -> GameState:
        """Freeze roll acceptance. Turn index and positions are untouched."""
        cls._require_playing(state)
        return state if state.paused else replace(state, paused=True)

    @classmethod
    def resume(cls, state: GameState) -> GameState:
        cls._require_playing(state)
        return replace(state, paused=False) if state.paused else state

    # -- Rolling ---------------------------------------------------------

    @classmethod
    def check_can_roll(cls, state: GameState, player_id: str) -> None:
        """
        Reject a roll without changing anything.

        Raises:
            GameNotInProgress: Game is waiting or finished
            GamePaused: Game is paused locally
            MoveInFlight: Previous move has not finished its turn
            NotYourTurn: Someone else holds the turn
        """
        cls._require_playing(state)
        if state.paused:
            raise GamePaused("Game is paused.")
        if state.phase == TurnPhase.MOVE_IN_FLIGHT:
            raise MoveInFlight("Wait for the current move to finish.")
        if not state.is_current_turn(player_id):
            raise NotYourTurn(player_id)

    @classmethod
    def apply_roll(
        cls,
        state: GameState,
        player_id: str,
        dice_roll: int,
        modifier: RollModifier | None = None,
    ) -> TurnOutcome:
        """
        Apply a roll for the player holding the turn.

        Resolves the move, bumps a resting occupant of the landing tile,
        then checks for a win. A win finishes the game immediately; any
        other move leaves the turn in flight until ``end_turn``.
        """
        cls.check_can_roll(state, player_id)
        validate_dice_value(dice_roll)

        board = state.board
        mover = state.current_player
        result, effective_roll = PowerUpEngine.resolve(mover.position, dice_roll, board, modifier)
        collision = detect_collision(result.position, state.players, mover.id)

        players = []
        for p in state.players:
            if p.id == mover.id:
                p = replace(p, position=result.position, dice_result=effective_roll)
            elif collision and p.id == collision.bumped_player_id:
                p = p.moved_to(collision.bumped_to_position)
            players.append(p)

        move = MoveEvent(
            player_id=mover.id,
            player_name=mover.name,
            previous_position=mover.position,
            new_position=result.position,
            dice_roll=effective_roll,
            move_type=result.move_type,
        )
        bump_move = None
        history = state.history + (move,)
        if collision:
            bump_move = MoveEvent(
                player_id=collision.bumped_player_id,
                player_name=collision.bumped_player_name,
                previous_position=collision.bumped_from_position,
                new_position=collision.bumped_to_position,
                dice_roll=0,
                move_type=MoveType.COLLISION,
            )
            history += (bump_move,)

        if is_winning_position(result.position, board.max_tile):
            new_state = replace(
                state,
                players=tuple(players),
                history=history,
                status=GameStatus.FINISHED,
                phase=TurnPhase.AWAITING_ROLL,
                last_roll=effective_roll,
                bonus_pending=False,
                winner_id=mover.id,
                winner_name=mover.name,
            )
        else:
            new_state = replace(
                state,
                players=tuple(players),
                history=history,
                phase=TurnPhase.MOVE_IN_FLIGHT,
                last_roll=effective_roll,
                bonus_pending=effective_roll == DIE_FACES,
            )

        return TurnOutcome(state=new_state, move=move, collision=collision, bump_move=bump_move)

    @classmethod
    def end_turn(cls, state: GameState) -> GameState:
        """
        Finish the current turn.

        A maximum-face roll keeps the turn with the same player once;
        otherwise the turn passes to the next player, wrapping around.
        """
        cls._require_playing(state)

        if state.bonus_pending:
            return replace(
                state,
                phase=TurnPhase.AWAITING_ROLL,
                bonus_pending=False,
                last_roll=None,
            )

        return cls._set_turn(state, next_player_index(state.current_index, len(state.players)))

    # -- Remote replay ---------------------------------------------------

    @classmethod
    def apply_remote_move(
        cls,
        state: GameState,
        player_id: str,
        new_position: int,
        dice_roll: int = 0,
        move_type: MoveType = MoveType.NORMAL,
    ) -> GameState:
        """
        Replay another client's ``player_moved`` event.

        Positions are absolute, so re-applying the same event is a no-op.
        The win is re-derived locally from the position.
        """
        player = state.find_player(player_id)
        if player is None:
            return state
        validate_position(new_position, state.board.max_tile)
        if player.position == new_position:
            return state

        move = MoveEvent(
            player_id=player.id,
            player_name=player.name,
            previous_position=player.position,
            new_position=new_position,
            dice_roll=dice_roll,
            move_type=move_type,
        )
        players = tuple(
            replace(p, position=new_position, dice_result=dice_roll or p.dice_result)
            if p.id == player_id else p
            for p in state.players
        )
        new_state = replace(state, players=players, history=state.history + (move,))

        if (
            state.status == GameStatus.PLAYING
            and move_type != MoveType.COLLISION
            and is_winning_position(new_position, state.board.max_tile)
        ):
            new_state = cls.finish(new_state, winner_name=player.name, winner_id=player.id)
        return new_state

    @classmethod
    def apply_turn_change(cls, state: GameState, next_index: int) -> GameState:
        """Replay a ``turn_changed`` event; the latest one received wins."""
        if state.status != GameStatus.PLAYING or not state.players:
            return state
        next_index %= len(state.players)
        if next_index == state.current_index:
            return state
        return cls._set_turn(state, next_index)

    # -- Internals -------------------------------------------------------

    @classmethod
    def _set_turn(cls, state: GameState, index: int) -> GameState:
        return replace(
            state,
            players=tuple(replace(p, dice_result=None) for p in state.players),
            current_index=index,
            phase=TurnPhase.AWAITING_ROLL,
            bonus_pending=False,
            last_roll=None,
        )

    @classmethod
    def _require_playing(cls, state: GameState) -> None:
        if state.status != GameStatus.PLAYING:
            raise GameNotInProgress(f"Game is {state.status.value}, not playing.")
