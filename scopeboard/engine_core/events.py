"""
Events - Typed notifications emitted by the game state manager.

Each event is a frozen dataclass with its own payload. `event_type`
returns the wire name UI layers subscribe to. The EventBus delivers
events synchronously, in registration order, to listeners registered
for the event's class.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable
import logging

from .state import (
    Card,
    CardType,
    GameState,
    PlayerState,
    RequiredAction,
    ActionCounts,
    VisitType,
)

logger = logging.getLogger(__name__)


# =============================================================================
# State Events
# =============================================================================


@dataclass(frozen=True)
class StateChanged:
    """The root state was replaced."""

    previous: GameState
    current: GameState
    updates: dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str:
        return "stateChanged"


@dataclass(frozen=True)
class GameInitialized:
    state: GameState

    @property
    def event_type(self) -> str:
        return "gameInitialized"


@dataclass(frozen=True)
class GameReady:
    state: GameState

    @property
    def event_type(self) -> str:
        return "gameReady"


@dataclass(frozen=True)
class GameReset:
    @property
    def event_type(self) -> str:
        return "gameReset"


# =============================================================================
# Turn Events
# =============================================================================


@dataclass(frozen=True)
class TurnStarted:
    player: PlayerState
    turn_count: int

    @property
    def event_type(self) -> str:
        return "turnStarted"


@dataclass(frozen=True)
class TurnAdvanced:
    """The current player changed at end of turn."""

    previous_player: PlayerState
    current_player: PlayerState
    turn_count: int

    @property
    def event_type(self) -> str:
        return "turnAdvanced"


@dataclass(frozen=True)
class TurnActionsInitialized:
    player_id: str
    required_actions: tuple[RequiredAction, ...]
    action_counts: ActionCounts
    can_end_turn: bool

    @property
    def event_type(self) -> str:
        return "turnActionsInitialized"


@dataclass(frozen=True)
class ActionCompleted:
    player_id: str
    action_type: str
    action_details: Any
    action_counts: ActionCounts
    can_end_turn: bool

    @property
    def event_type(self) -> str:
        return "actionCompleted"


@dataclass(frozen=True)
class DiceRollRecorded:
    player_id: str
    roll: int

    @property
    def event_type(self) -> str:
        return "diceRollRecorded"


# =============================================================================
# Player Events
# =============================================================================


@dataclass(frozen=True)
class PlayerMoved:
    player: PlayerState
    previous_position: str
    new_position: str
    visit_type: VisitType

    @property
    def event_type(self) -> str:
        return "playerMoved"


@dataclass(frozen=True)
class PlayerMovedWithEffects:
    """A move finished and every arrival effect has been applied."""

    player_id: str
    destination: str
    visit_type: VisitType
    effects: tuple[Any, ...]
    all_messages: tuple[str, ...]

    @property
    def event_type(self) -> str:
        return "playerMovedWithEffects"


@dataclass(frozen=True)
class PlayerMoneyChanged:
    player: PlayerState
    previous_amount: int
    new_amount: int
    change: int
    reason: str

    @property
    def event_type(self) -> str:
        return "playerMoneyChanged"


@dataclass(frozen=True)
class PlayerTimeChanged:
    player: PlayerState
    previous_amount: int
    new_amount: int
    change: int
    reason: str

    @property
    def event_type(self) -> str:
        return "playerTimeChanged"


@dataclass(frozen=True)
class PlayerScopeChanged:
    player: PlayerState
    work_cost: int
    work_type: str

    @property
    def event_type(self) -> str:
        return "playerScopeChanged"


@dataclass(frozen=True)
class PlayerWorkCommitted:
    """A played W card's cost moved from the hand into committed work."""

    player: PlayerState
    card_id: str
    work_cost: int
    work_type: str

    @property
    def event_type(self) -> str:
        return "playerWorkCommitted"


@dataclass(frozen=True)
class PlayerStateRestored:
    """Negotiation rolled the player back to their space-entry snapshot."""

    player: PlayerState
    time_penalty: int
    reason: str

    @property
    def event_type(self) -> str:
        return "playerStateRestored"


@dataclass(frozen=True)
class PlayerActionTaken:
    player_id: str
    action_type: str
    action_data: dict[str, Any]
    timestamp: float
    space_name: str
    visit_type: VisitType

    @property
    def event_type(self) -> str:
        return "playerActionTaken"


# =============================================================================
# Card Events
# =============================================================================


@dataclass(frozen=True)
class CardsAddedToPlayer:
    player: PlayerState
    card_type: CardType
    cards: tuple[Card, ...]
    total_cards: int

    @property
    def event_type(self) -> str:
        return "cardsAddedToPlayer"


@dataclass(frozen=True)
class CardsRemovedFromPlayer:
    player_id: str
    card_type: CardType
    removed_cards: tuple[Card, ...]
    source: str

    @property
    def event_type(self) -> str:
        return "cardsRemovedFromPlayer"


@dataclass(frozen=True)
class PlayerCardsDiscarded:
    player: PlayerState
    discarded_cards: tuple[Card, ...]
    card_type_filter: CardType | None

    @property
    def event_type(self) -> str:
        return "playerCardsDiscarded"


@dataclass(frozen=True)
class CardUsed:
    player_id: str
    card: Card
    card_type: CardType
    result: Any

    @property
    def event_type(self) -> str:
        return "cardUsed"


# =============================================================================
# UI Events
# =============================================================================


@dataclass(frozen=True)
class ModalShown:
    modal: str

    @property
    def event_type(self) -> str:
        return "modalShown"


@dataclass(frozen=True)
class ModalHidden:
    previous_modal: str | None

    @property
    def event_type(self) -> str:
        return "modalHidden"


@dataclass(frozen=True)
class LoadingChanged:
    loading: bool

    @property
    def event_type(self) -> str:
        return "loadingChanged"


@dataclass(frozen=True)
class ErrorOccurred:
    error: str
    context: str
    timestamp: float

    @property
    def event_type(self) -> str:
        return "errorOccurred"


@dataclass(frozen=True)
class ErrorCleared:
    @property
    def event_type(self) -> str:
        return "errorCleared"


# =============================================================================
# UI Requests (consumed by GameManager)
# =============================================================================


@dataclass(frozen=True)
class MovePlayerRequested:
    player_id: str
    destination: str
    visit_type: VisitType | None = None

    @property
    def event_type(self) -> str:
        return "movePlayerRequest"


@dataclass(frozen=True)
class UseCardRequested:
    player_id: str
    card_id: str

    @property
    def event_type(self) -> str:
        return "useCardRequest"


@dataclass(frozen=True)
class DiceRolled:
    """The UI rolled the dice. A missing roll is rolled by the engine."""

    player_id: str
    roll: int | None = None

    @property
    def event_type(self) -> str:
        return "diceRollComplete"


@dataclass(frozen=True)
class CardActionRequested:
    """A Draw/Remove/Replace button for a card type was pressed."""

    player_id: str
    card_type: CardType
    action: str

    @property
    def event_type(self) -> str:
        return "cardActionRequest"


@dataclass(frozen=True)
class NegotiateRequested:
    player_id: str
    time_penalty: int | None = None

    @property
    def event_type(self) -> str:
        return "negotiateRequest"


@dataclass(frozen=True)
class EndTurnRequested:
    player_id: str
    destination: str | None = None

    @property
    def event_type(self) -> str:
        return "endTurnRequest"


Listener = Callable[[Any], None]


class EventBus:
    """
    Synchronous publish/subscribe keyed by event class.

    A listener that raises is logged and reported to `on_listener_error`;
    the remaining listeners still run.
    """

    def __init__(
        self,
        on_listener_error: Callable[[Any, Exception], None] | None = None,
        record_history: bool = False,
    ):
        self._listeners: dict[type, list[Listener]] = {}
        self._history: list[Any] = []
        self.on_listener_error = on_listener_error
        self.record_history = record_history

    def on(self, event_cls: type, callback: Listener) -> Callable[[], None]:
        """Register `callback` for `event_cls`. Returns an unsubscribe callable."""
        self._listeners.setdefault(event_cls, []).append(callback)

        def unsubscribe():
            self.off(event_cls, callback)

        return unsubscribe

    def off(self, event_cls: type, callback: Listener) -> bool:
        listeners = self._listeners.get(event_cls, [])
        if callback in listeners:
            listeners.remove(callback)
            return True
        return False

    def emit(self, event: Any) -> None:
        if self.record_history:
            self._history.append(event)

        # Snapshot so listeners may (un)subscribe while we iterate
        for callback in list(self._listeners.get(type(event), ())):
            try:
                callback(event)
            except Exception as e:
                logger.exception("Listener for %s failed", event.event_type)
                if self.on_listener_error is not None:
                    self.on_listener_error(event, e)

    def listener_count(self, event_cls: type) -> int:
        return len(self._listeners.get(event_cls, ()))

    def history(self) -> list[Any]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
