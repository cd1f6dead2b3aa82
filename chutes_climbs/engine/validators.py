"""
Chutes & Climbs - Input Validation Utilities

Provides validation functions for game engine inputs. All validators
either return validated data or raise descriptive exceptions
(``InvalidRoll`` for dice, ``ValueError`` otherwise).
"""

import re
from typing import Collection

from chutes_climbs.engine.base import DIE_FACES, MAX_PLAYERS, MIN_PLAYERS
from chutes_climbs.errors import InvalidRoll

JOIN_CODE_LENGTH = 6
_JOIN_CODE_RE = re.compile(rf"^[A-Z0-9]{{{JOIN_CODE_LENGTH}}}$")
MAX_NAME_LENGTH = 30


def validate_dice_value(
    value: int,
    allowed_faces: Collection[int] | None = None,
) -> int:
    """
    Validate a die face.

    Args:
        value: Face value to validate
        allowed_faces: Enabled faces for a chosen-face roll (None = 1-6)

    Returns:
        Validated value

    Raises:
        InvalidRoll: If the value is not an integer face, or not enabled
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRoll(f"Die value must be an integer, got {type(value).__name__}.")

    if not (1 <= value <= DIE_FACES):
        raise InvalidRoll(f"Die value {value} must be between 1 and {DIE_FACES}.")

    if allowed_faces is not None and value not in allowed_faces:
        raise InvalidRoll(
            f"Die value {value} is not one of the enabled faces {sorted(allowed_faces)}."
        )

    return value


def validate_position(position: int, max_tile: int = 100) -> int:
    """
    Validate a board position.

    Raises:
        ValueError: If position is outside 1..max_tile
    """
    if isinstance(position, bool) or not isinstance(position, int):
        raise ValueError(f"Position must be an integer, got {type(position).__name__}.")

    if not (1 <= position <= max_tile):
        raise ValueError(f"Position {position} must be between 1 and {max_tile}.")

    return position


def validate_player_count(count: int) -> int:
    """
    Validate number of players for starting a game.

    Raises:
        ValueError: If count is not 2-4
    """
    if not isinstance(count, int):
        raise ValueError(f"Player count must be an integer, got {type(count).__name__}.")

    if not (MIN_PLAYERS <= count <= MAX_PLAYERS):
        raise ValueError(f"Player count must be {MIN_PLAYERS}-{MAX_PLAYERS}, got {count}.")

    return count


def validate_join_code(code: str) -> str:
    """Normalize and validate a 6-character join code."""
    normalized = (code or "").strip().upper()
    if not _JOIN_CODE_RE.match(normalized):
        raise ValueError(
            f"Join code must be {JOIN_CODE_LENGTH} letters or digits, got {code!r}."
        )
    return normalized


def validate_display_name(name: str) -> str:
    """Strip and validate a player or room display name."""
    stripped = (name or "").strip()
    if not stripped:
        raise ValueError("Name cannot be empty.")
    if len(stripped) > MAX_NAME_LENGTH:
        raise ValueError(f"Name must be at most {MAX_NAME_LENGTH} characters.")
    return stripped
