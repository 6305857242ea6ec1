"""
Game Manager - Turns UI requests into store and engine calls.

The manager holds no game state of its own. It:
1. Subscribes to the request events a UI emits on the store's bus
2. Validates turn order and required actions
3. Calls the store and effects engine
4. Routes any failure in an event handler to store.handle_error

The same operations are available as direct methods for the API and CLI,
which raise instead of routing errors.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable
import logging
import time

from ..engine_core.state import ActionKind, CardType, GamePhase, PlayerState, VisitType
from ..engine_core.events import (
    CardActionRequested,
    DiceRolled,
    EndTurnRequested,
    MovePlayerRequested,
    NegotiateRequested,
    PlayerActionTaken,
    UseCardRequested,
)
from ..engine_core.effects import DiceActionType, parse_dice_card_action
from ..engine_core.errors import (
    DiceAlreadyRolledError,
    GameError,
    MissingArgumentError,
    TurnNotCompleteError,
    UnsupportedEffectError,
)
from ..engine_core.store import GameStateManager

logger = logging.getLogger(__name__)


@dataclass
class DiceRollResult:
    """Outcome of a dice roll: the value, effect messages and where it leads."""
    roll: int
    messages: list[str] = field(default_factory=list)
    destination: str | None = None


class GameManager:
    """
    Event-driven orchestrator bound to one store.

    Usage:
        manager = GameManager(store)
        store.emit(DiceRolled(player_id="player_1"))      # UI path
        result = manager.roll_dice("player_1", roll=4)    # direct path
    """

    def __init__(self, store: GameStateManager):
        self.store = store
        self._unsubscribers: list[Callable[[], None]] = []
        self._subscribe()

    def _subscribe(self) -> None:
        handlers = {
            MovePlayerRequested: lambda e: self.move_player(e.player_id, e.destination, e.visit_type),
            UseCardRequested: lambda e: self.use_card(e.player_id, e.card_id),
            DiceRolled: lambda e: self.roll_dice(e.player_id, e.roll),
            CardActionRequested: lambda e: self.perform_card_action(e.player_id, e.card_type, e.action),
            NegotiateRequested: lambda e: self.negotiate(e.player_id, e.time_penalty),
            EndTurnRequested: lambda e: self.end_turn(e.player_id, e.destination),
        }
        for event_cls, handler in handlers.items():
            self._unsubscribers.append(self.store.on(event_cls, self._guarded(handler)))

    def _guarded(self, handler: Callable[[Any], Any]) -> Callable[[Any], None]:
        def run(event: Any) -> None:
            try:
                handler(event)
            except GameError as e:
                self.store.handle_error(e, event.event_type)
            except Exception as e:
                logger.exception("Handler for %s failed", event.event_type)
                self.store.handle_error(e, event.event_type)

        return run

    def detach(self) -> None:
        """Stop listening to the store's bus."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_current_player(self, player_id: str) -> PlayerState:
        player = self.store.get_player(player_id)
        if self.store.get_state().current_player != player_id:
            raise GameError(f"It is not {player.name}'s turn")
        return player

    def _action_taken(self, player: PlayerState, kind: ActionKind, data: dict[str, Any]) -> None:
        self.store.emit(PlayerActionTaken(
            player_id=player.player_id,
            action_type=kind.value,
            action_data=data,
            timestamp=time.time(),
            space_name=player.position,
            visit_type=player.visit_type,
        ))

    # =========================================================================
    # Operations
    # =========================================================================

    def move_player(
        self,
        player_id: str,
        destination: str,
        visit_type: VisitType | str | None = None,
    ) -> list[str]:
        """
        Move the current player with arrival effects.

        With data loaded the destination must be one of available_moves.
        The visit type follows visited_spaces by default.
        """
        player = self._require_current_player(player_id)
        if self.store.data_ready and destination not in self.available_moves(player_id):
            raise GameError(f"{destination} is not a valid move")
        if visit_type is None:
            visit_type = VisitType.SUBSEQUENT if player.has_visited(destination) else VisitType.FIRST
        messages = self.store.move_player_with_effects(player_id, destination, visit_type)

        if self.store.data_ready and self.store.database.is_ending_space(destination):
            logger.info("%s reached the end of the board at %s", player.name, destination)
            self.store.set_state(
                game_phase=GamePhase.COMPLETED,
                last_action=f"{player.name} completed the project",
            )
        return messages

    def use_card(self, player_id: str, card_id: str) -> str:
        return self.store.use_player_card(player_id, card_id)

    def roll_dice(self, player_id: str, roll: int | None = None) -> DiceRollResult:
        """
        Roll for the current player and apply what the roll yields.

        DICE_EFFECTS rows and roll-conditioned space effects are applied,
        then the dice action is marked complete. One roll per turn.
        """
        player = self._require_current_player(player_id)
        turn = self.store.get_state().current_turn
        if turn.player_id == player_id and turn.last_dice_roll is not None:
            raise DiceAlreadyRolledError(player_id, turn.last_dice_roll)
        if roll is None:
            roll = self.store.rng.randint(1, 6)
        self.store.record_dice_roll(player_id, roll)

        engine = self.store.effects
        messages = engine.apply_dice_effects(player_id, player.position, player.visit_type, roll)
        messages.extend(self._apply_roll_space_effects(player_id, player))
        destination = engine.dice_destination(player.position, player.visit_type, roll)

        self._action_taken(player, ActionKind.DICE, {
            "dice_value": roll,
            "destination": destination,
            "messages": messages,
        })
        logger.info("%s rolled %d at %s", player.name, roll, player.position)
        return DiceRollResult(roll=roll, messages=messages, destination=destination)

    def _apply_roll_space_effects(self, player_id: str, player: PlayerState) -> list[str]:
        messages = []
        for effect in self.store.space_effects(player.position, player.visit_type):
            if not effect.requires_dice_roll or effect.is_manual or effect.effect_value.lower() == "dice":
                continue
            if not self.store.effects.meets_condition(effect.condition, player=self.store.get_player(player_id)):
                continue
            try:
                message = self.store.process_space_effect(player_id, effect)
            except UnsupportedEffectError as e:
                self.store.handle_error(e, "rollDice")
                continue
            if message:
                messages.append(message)
        return messages

    def perform_card_action(self, player_id: str, card_type: CardType | str, action_text: str) -> str:
        """
        A card button: "Draw N", "Remove N", "Replace N" or "Roll dice".

        A B/I draw on a space with scope-conditioned funding draws whichever
        funding card the player's scope qualifies for.
        """
        player = self._require_current_player(player_id)
        card_type = CardType.parse(card_type)
        text = (action_text or "").strip()

        if text.lower().startswith("roll"):
            result = self.roll_dice(player_id)
            message = "; ".join(result.messages) or f"Rolled {result.roll}"
            self._action_taken(player, ActionKind.CARD, {
                "card_type": card_type.value,
                "action": text,
                "message": message,
            })
            return message

        action = parse_dice_card_action(text)
        if action.action is DiceActionType.NONE:
            raise MissingArgumentError(f"Unknown card action: {text or '<blank>'}")

        if action.action is DiceActionType.DRAW and card_type in (CardType.B, CardType.I):
            funding = self.store.trigger_funding_card_draw(player_id)
            if funding:
                return "; ".join(funding)

        if action.action is DiceActionType.DRAW:
            message = self.store.draw_cards_for_player(player_id, card_type, action.amount)
        elif action.action is DiceActionType.REMOVE:
            message = self.store.remove_cards_from_player(
                player_id, card_type, -action.amount, source="card_action"
            )
        else:
            message = self.store.replace_cards_for_player(player_id, card_type, action.amount)

        self._action_taken(player, ActionKind.CARD, {
            "card_type": card_type.value,
            "action": text,
            "message": message,
        })
        return message

    def negotiate(self, player_id: str, time_penalty: int | None = None) -> list[str]:
        """Undo this space's effects for a time penalty, then pass the turn."""
        self._require_current_player(player_id)
        message = self.store.restore_player_snapshot(player_id, time_penalty)
        next_player = self.store.end_turn(player_id)
        return [message, f"{next_player.name}'s turn"]

    def end_turn(self, player_id: str, destination: str | None = None) -> PlayerState:
        """
        Finish the current player's turn, optionally moving first.

        Raises TurnNotCompleteError while required actions remain.
        Returns the player whose turn it now is.
        """
        self._require_current_player(player_id)
        turn = self.store.get_state().current_turn
        if not turn.can_end_turn:
            raise TurnNotCompleteError(player_id, len(turn.pending_actions))

        if destination:
            self.move_player(player_id, destination)
        return self.store.end_turn(player_id)

    def available_moves(self, player_id: str) -> list[str]:
        """Fixed destinations, or the dice destination once the player has rolled."""
        player = self.store.get_player(player_id)
        if not self.store.data_ready:
            return []

        destinations = self.store.database.destinations(player.position, player.visit_type)
        if destinations:
            return destinations

        turn = self.store.get_state().current_turn
        if turn.player_id == player_id and turn.last_dice_roll:
            destination = self.store.database.dice_destination(
                player.position, player.visit_type, turn.last_dice_roll
            )
            return [destination] if destination else []
        return []
