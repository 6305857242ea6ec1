"""
Engine errors.

Precondition violations raise synchronously from the store and engine.
Event-handler boundaries (GameManager, EventBus) catch GameError and route
it to GameStateManager.handle_error so it ends up in state.error.
"""

from __future__ import annotations


class GameError(Exception):
    """Base class for all engine errors."""

    error_code = "INVALID_ACTION"


class PlayerNotFoundError(GameError, LookupError):
    error_code = "PLAYER_NOT_FOUND"

    def __init__(self, player_id: str):
        super().__init__(f"Player {player_id} not found")
        self.player_id = player_id


class CardNotFoundError(GameError, LookupError):
    error_code = "CARD_NOT_FOUND"

    def __init__(self, card_id: str, player_id: str | None = None):
        where = f" in player {player_id}'s hand" if player_id else ""
        super().__init__(f"Card {card_id} not found{where}")
        self.card_id = card_id
        self.player_id = player_id


class GameNotFoundError(GameError, LookupError):
    error_code = "GAME_NOT_FOUND"

    def __init__(self, game_id: str):
        super().__init__(f"Game {game_id} not found")
        self.game_id = game_id


class MissingArgumentError(GameError, ValueError):
    """A required argument was empty or out of range."""

    error_code = "VALIDATION_ERROR"


class EmptyDeckError(GameError):
    """A draw was requested for a card type with no cards in the catalog."""

    error_code = "EMPTY_DECK"

    def __init__(self, card_type: str):
        super().__init__(f"No {card_type} cards available")
        self.card_type = card_type


class UnsupportedEffectError(GameError):
    """Effect data the engine has no handler for. Recoverable."""

    error_code = "UNSUPPORTED_EFFECT"


class CardEffectError(GameError):
    """A card's immediate effect could not be applied."""

    error_code = "CARD_EFFECT_FAILED"


class SnapshotMissingError(GameError):
    error_code = "INVALID_ACTION"

    def __init__(self, player_id: str):
        super().__init__(f"No space entry snapshot for player {player_id}")
        self.player_id = player_id


class DiceAlreadyRolledError(GameError):
    error_code = "INVALID_ACTION"

    def __init__(self, player_id: str, roll: int):
        super().__init__(f"Player {player_id} already rolled {roll} this turn")
        self.player_id = player_id
        self.roll = roll


class TurnNotCompleteError(GameError):
    error_code = "TURN_NOT_COMPLETE"

    def __init__(self, player_id: str, remaining: int):
        super().__init__(
            f"Player {player_id} has {remaining} required action(s) left this turn"
        )
        self.player_id = player_id
        self.remaining = remaining
