"""
Chutes & Climbs - Move Rules

Pure functions computing the outcome of a die roll. Nothing here knows about
turns, rooms, or the network; the same inputs always give the same result.

Rules:
- Overshooting the final tile reflects the excess back from it (bounce).
- A bounce that lands on a chute head or climb bottom takes that tile's effect.
- Landing on a tile held by a resting player pushes them back 2 tiles (min 1).
  Only the mover's landing tile is checked; bumps never cascade.
"""

import random
from typing import Mapping, Sequence

from chutes_climbs.engine.base import (
    BUMP_DISTANCE,
    DIE_FACES,
    CollisionEvent,
    MoveResult,
    MoveType,
)
from chutes_climbs.engine.board import START_TILE


def resolve_move(
    position: int,
    dice_roll: int,
    chutes: Mapping[int, int],
    climbs: Mapping[int, int],
    max_tile: int = 100,
) -> MoveResult:
    """
    Resolve where a piece ends up after moving ``dice_roll`` tiles.

    Examples:
        >>> result = resolve_move(97, 5, {}, {})
        >>> result.position, result.move_type.value
        (98, 'bounce')
        >>> resolve_move(14, 3, {17: 7}, {}).position
        7
    """
    target = position + dice_roll
    move_type = MoveType.NORMAL

    if target > max_tile:
        target = max_tile - (target - max_tile)
        move_type = MoveType.BOUNCE

    if target in chutes:
        return MoveResult(position=chutes[target], move_type=MoveType.CHUTE)
    if target in climbs:
        return MoveResult(position=climbs[target], move_type=MoveType.CLIMB)

    return MoveResult(position=target, move_type=move_type)


def detect_collision(
    candidate_position: int,
    players: Sequence,
    moving_player_id: str,
) -> CollisionEvent | None:
    """
    Check whether the mover would share a tile with a resting player.

    Args:
        candidate_position: Tile the mover is about to settle on
        players: All players (anything with ``id``, ``name``, ``position``)
        moving_player_id: The mover, excluded from the scan

    Returns:
        CollisionEvent for the first occupant found, else None
    """
    for player in players:
        if player.id == moving_player_id or player.position != candidate_position:
            continue
        return CollisionEvent(
            bumped_player_id=player.id,
            bumped_player_name=player.name,
            bumped_from_position=player.position,
            bumped_to_position=max(START_TILE, player.position - BUMP_DISTANCE),
        )
    return None


def is_winning_position(position: int, max_tile: int = 100) -> bool:
    """Only exact arrival on the final tile wins."""
    return position == max_tile


def next_player_index(current_index: int, player_count: int) -> int:
    """Index of the next player in turn order, wrapping around."""
    if player_count <= 0:
        raise ValueError(f"Player count must be positive, got {player_count}.")
    return (current_index + 1) % player_count


def nearest_climb(position: int, climbs: Mapping[int, int]) -> int | None:
    """Closest climb bottom strictly ahead of ``position``, if any."""
    ahead = [bottom for bottom in climbs if bottom > position]
    return min(ahead) if ahead else None


def roll_die(faces: int = DIE_FACES) -> int:
    """Roll a single fair die."""
    return random.randint(1, faces)
