"""
Chutes & Climbs - Error Types

Validation errors are raised before any store write or broadcast.
Transient I/O errors are raised only after retries are exhausted.
"""


class ChutesError(Exception):
    """Base class for all game errors."""


# -- Session errors ------------------------------------------------------

class RoomNotFound(ChutesError):
    """No waiting room matches the given join code."""

    def __init__(self, code: str) -> None:
        super().__init__(f"Room {code!r} not found.")
        self.code = code


class RoomFull(ChutesError):
    """The room already holds its maximum number of players."""

    def __init__(self, code: str, max_players: int) -> None:
        super().__init__(f"Room {code!r} is full ({max_players} players).")
        self.code = code
        self.max_players = max_players


class AvatarTaken(ChutesError):
    """Another participant in the room already uses this avatar."""

    def __init__(self, avatar: int) -> None:
        super().__init__(f"Avatar {avatar} is already taken in this room.")
        self.avatar = avatar


class JoinCodeExhausted(ChutesError):
    """No free join code was found within the allowed attempts."""


class HostOnly(ChutesError):
    """Only the room's host may do this (start the game, add bots)."""

    def __init__(self, player_id: str, action: str) -> None:
        super().__init__(f"Only the host can {action}; player {player_id} is not the host.")
        self.player_id = player_id
        self.action = action


# -- Move validation errors ----------------------------------------------

class NotYourTurn(ChutesError):
    """A player tried to act outside of their turn."""

    def __init__(self, player_id: str) -> None:
        super().__init__(f"It is not player {player_id}'s turn.")
        self.player_id = player_id


class InvalidRoll(ChutesError, ValueError):
    """Die value outside 1-6 or outside the enabled custom faces."""


class GameNotInProgress(ChutesError):
    """The action requires a game in the ``playing`` state."""


class GamePaused(GameNotInProgress):
    """Rolls are frozen while the local game is paused."""


class MoveInFlight(ChutesError):
    """A move is still animating; the next roll must wait for end of turn."""


class PowerUpUnavailable(ChutesError):
    """The requested roll modifier has no charges left or is cooling down."""


# -- Transient I/O errors ------------------------------------------------

class StoreWriteFailed(ChutesError):
    """A store operation failed after all retries."""


class ChannelUnavailable(ChutesError):
    """The realtime channel could not be reached."""
