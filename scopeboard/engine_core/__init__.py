"""
Engine Core - State container, effects and turn lifecycle.

The engine is the runtime that:
1. Holds the immutable GameState
2. Applies domain operations and emits typed events
3. Resolves space, card and dice effects
4. Tracks required actions for the current turn
"""

from .state import (
    ActionKind,
    Card,
    CardType,
    GamePhase,
    GameSettings,
    GameState,
    Hand,
    PlayerState,
    TurnState,
    VisitType,
)
from .errors import (
    GameError,
    PlayerNotFoundError,
    CardNotFoundError,
    GameNotFoundError,
    MissingArgumentError,
    EmptyDeckError,
    UnsupportedEffectError,
    CardEffectError,
    SnapshotMissingError,
    DiceAlreadyRolledError,
    TurnNotCompleteError,
)
from .events import EventBus
from .effects import EffectResult, SpaceEffect
from .effects_engine import EffectsEngine
from .store import GameStateManager

__all__ = [
    "ActionKind",
    "Card",
    "CardType",
    "GamePhase",
    "GameSettings",
    "GameState",
    "Hand",
    "PlayerState",
    "TurnState",
    "VisitType",
    "GameError",
    "PlayerNotFoundError",
    "CardNotFoundError",
    "GameNotFoundError",
    "MissingArgumentError",
    "EmptyDeckError",
    "UnsupportedEffectError",
    "CardEffectError",
    "SnapshotMissingError",
    "DiceAlreadyRolledError",
    "TurnNotCompleteError",
    "EventBus",
    "EffectResult",
    "SpaceEffect",
    "EffectsEngine",
    "GameStateManager",
]
