"""
Chutes & Climbs - Roll Modifiers

Optional mechanics applied before or instead of the random roll:

- Shield: the next chute landed on is ignored (charges + cooldown).
- Teleport: single use, jump to the nearest climb ahead and take it.
- Chosen face: substitute a face from the enabled set (cooldown in turns).

Charge and cooldown bookkeeping lives here, separate from the turn state.
Modifiers only change where the mover lands; collision detection and the
win check still run afterwards in the turn engine.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import ClassVar

from chutes_climbs.engine.base import DIE_FACES, MoveResult, MoveType
from chutes_climbs.engine.board import BoardTopology
from chutes_climbs.engine.rules import nearest_climb, resolve_move
from chutes_climbs.engine.validators import validate_dice_value
from chutes_climbs.errors import PowerUpUnavailable


class PowerUp(str, Enum):
    SHIELD = "shield"
    TELEPORT = "teleport"
    CHOSEN_FACE = "chosen_face"


@dataclass(frozen=True)
class RollModifier:
    """A power-up activation; ``face`` is only used by CHOSEN_FACE."""
    kind: PowerUp
    face: int | None = None


@dataclass(frozen=True)
class PowerUpState:
    """
    Per-player charges and cooldowns.

    Attributes:
        shield_charges: Remaining shield activations
        shield_cooldown: Turns before the shield can be used again
        teleport_charges: Remaining teleports (single use by default)
        chosen_face_cooldown: Turns before a face can be chosen again
        allowed_faces: Faces a chosen-face roll may use
    """
    shield_charges: int = 2
    shield_cooldown: int = 0
    teleport_charges: int = 1
    chosen_face_cooldown: int = 0
    allowed_faces: frozenset[int] = frozenset(range(1, DIE_FACES + 1))


class PowerUpEngine:
    """Stateless helpers for roll modifiers."""

    SHIELD_COOLDOWN: ClassVar[int] = 3
    CHOSEN_FACE_COOLDOWN: ClassVar[int] = 3

    @classmethod
    def check(
        cls,
        state: PowerUpState,
        modifier: RollModifier,
        position: int,
        board: BoardTopology,
    ) -> None:
        """
        Raise if ``modifier`` cannot be used right now.

        Raises:
            PowerUpUnavailable: No charges, cooling down, or no climb ahead
            InvalidRoll: Chosen face is missing or not enabled
        """
        if modifier.kind == PowerUp.SHIELD:
            if state.shield_charges <= 0:
                raise PowerUpUnavailable("No shield charges left.")
            if state.shield_cooldown > 0:
                raise PowerUpUnavailable(
                    f"Shield is cooling down ({state.shield_cooldown} turns)."
                )
        elif modifier.kind == PowerUp.TELEPORT:
            if state.teleport_charges <= 0:
                raise PowerUpUnavailable("Teleport already used.")
            if nearest_climb(position, board.climbs) is None:
                raise PowerUpUnavailable("No climb ahead to teleport to.")
        elif modifier.kind == PowerUp.CHOSEN_FACE:
            if state.chosen_face_cooldown > 0:
                raise PowerUpUnavailable(
                    f"Chosen face is cooling down ({state.chosen_face_cooldown} turns)."
                )
            if modifier.face is None:
                raise PowerUpUnavailable("A chosen-face roll needs a face value.")
            validate_dice_value(modifier.face, state.allowed_faces)

    @classmethod
    def resolve(
        cls,
        position: int,
        dice_roll: int,
        board: BoardTopology,
        modifier: RollModifier | None = None,
    ) -> tuple[MoveResult, int]:
        """
        Resolve a move with an optional modifier.

        Returns:
            Tuple of (move_result, effective_roll). A teleport does not use
            the die, so its effective roll is 0.
        """
        if modifier is None:
            return resolve_move(position, dice_roll, board.chutes, board.climbs, board.max_tile), dice_roll

        if modifier.kind == PowerUp.CHOSEN_FACE:
            face = validate_dice_value(modifier.face)
            return resolve_move(position, face, board.chutes, board.climbs, board.max_tile), face

        if modifier.kind == PowerUp.SHIELD:
            # No chutes exist for a shielded move
            return resolve_move(position, dice_roll, {}, board.climbs, board.max_tile), dice_roll

        bottom = nearest_climb(position, board.climbs)
        if bottom is None:
            raise PowerUpUnavailable("No climb ahead to teleport to.")
        return MoveResult(position=board.climbs[bottom], move_type=MoveType.TELEPORT), 0

    @classmethod
    def consume(cls, state: PowerUpState, modifier: RollModifier) -> PowerUpState:
        """Spend a charge / start the cooldown for a used modifier."""
        if modifier.kind == PowerUp.SHIELD:
            return replace(
                state,
                shield_charges=state.shield_charges - 1,
                shield_cooldown=cls.SHIELD_COOLDOWN,
            )
        if modifier.kind == PowerUp.TELEPORT:
            return replace(state, teleport_charges=state.teleport_charges - 1)
        return replace(state, chosen_face_cooldown=cls.CHOSEN_FACE_COOLDOWN)

    @classmethod
    def tick(cls, state: PowerUpState) -> PowerUpState:
        """Count down cooldowns at the end of the owner's turn."""
        return replace(
            state,
            shield_cooldown=max(0, state.shield_cooldown - 1),
            chosen_face_cooldown=max(0, state.chosen_face_cooldown - 1),
        )
