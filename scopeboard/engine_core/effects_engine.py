"""
Effects Engine - Conditions, card mechanics and dice effects.

The engine never touches state directly. Every change goes through the
GameStateManager it was built with, so the store's events and error
handling apply to effects the same way they apply to UI actions.

Design principles:
- One condition table; unknown conditions are not met
- Card handlers validate their inputs and return EffectResult values
- Dice effects are planned before the first mutation
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable
import logging
import math

from .state import Card, CardType, GameState, PlayerState, VisitType, parse_int
from .effects import (
    CardMechanic,
    DiceActionType,
    DiceCardAction,
    EffectResult,
    SpaceEffect,
    UnsupportedEffect,
    parse_amount,
    parse_dice_card_action,
)
from .errors import EmptyDeckError, UnsupportedEffectError

if TYPE_CHECKING:
    from ..data.database import CSVDatabase
    from .store import GameStateManager

logger = logging.getLogger(__name__)


Condition = Callable[[GameState, "PlayerState | None"], bool]

# Satisfied by the player pressing the matching button
PLAYER_CHOICE_CONDITIONS = (
    "replace",
    "to_right_player",
    "return",
    "percent_of_borrowed",
)

_CARD_EFFECT_TYPES = {f"{t.attr}_cards": t for t in CardType}


def _scope(player: PlayerState | None) -> int:
    return player.scope_total_cost if player else 0


def _loan(player: PlayerState | None) -> int:
    return player.loan_total if player else 0


def _rolled(state: GameState) -> int | None:
    return state.current_turn.last_dice_roll


@dataclass(frozen=True)
class _PlannedDiceEffect:
    effect_type: str
    text: str
    card_type: CardType | None = None
    card_action: DiceCardAction | None = None


class EffectsEngine:
    """
    Resolves conditions, card immediate effects and dice effects.

    Usage:
        engine = EffectsEngine(database, store)
        engine.meets_condition("scope_le_4M", state, player)
        result = engine.resolve_card(card, player_id)
    """

    def __init__(self, database: CSVDatabase | None = None, store: GameStateManager | None = None):
        self.database = database
        self.store = store
        self._conditions: dict[str, Condition] = self._build_condition_table()

    @property
    def data_ready(self) -> bool:
        return self.database is not None and self.database.loaded

    # =========================================================================
    # Conditions
    # =========================================================================

    def _build_condition_table(self) -> dict[str, Condition]:
        table: dict[str, Condition] = {
            "always": lambda state, player: True,
            "scope_le_4M": lambda state, player: _scope(player) <= 4_000_000,
            "scope_gt_4M": lambda state, player: _scope(player) > 4_000_000,
            "loan_up_to_1.4M": lambda state, player: _loan(player) <= 1_400_000,
            "loan_1.5M_to_2.75M": lambda state, player: 1_500_000 <= _loan(player) <= 2_750_000,
            "loan_above_2.75M": lambda state, player: _loan(player) > 2_750_000,
        }
        for roll in range(1, 7):
            check = (lambda state, player, roll=roll: _rolled(state) == roll)
            table[f"dice_roll_{roll}"] = check
            table[f"roll_{roll}"] = check
        for choice in PLAYER_CHOICE_CONDITIONS:
            table[choice] = lambda state, player: True
        return table

    def meets_condition(
        self,
        condition: str | None,
        state: GameState | None = None,
        player: PlayerState | None = None,
    ) -> bool:
        """
        Evaluate an effect condition for a player.

        Named conditions come first, then the scope_le_/scope_gt_/dice_roll_
        patterns. per_<amount> conditions parametrize per-amount effects and
        always hold. Anything else is not met.
        """
        condition = (condition or "").strip()
        if not condition:
            return True
        if state is None:
            state = self.store.get_state() if self.store else GameState()

        handler = self._conditions.get(condition)
        if handler is not None:
            return handler(state, player)

        if condition.startswith("scope_le_"):
            amount = parse_amount(condition[len("scope_le_"):])
            return amount is not None and _scope(player) <= amount
        if condition.startswith("scope_gt_"):
            amount = parse_amount(condition[len("scope_gt_"):])
            return amount is not None and _scope(player) > amount
        if condition.startswith("dice_roll_"):
            return _rolled(state) == parse_int(condition[len("dice_roll_"):])
        if condition.startswith("per_"):
            return True

        logger.warning("Unknown condition: %s", condition)
        return False

    def is_known_condition(self, condition: str) -> bool:
        condition = (condition or "").strip()
        return (
            not condition
            or condition in self._conditions
            or condition.startswith(("scope_le_", "scope_gt_", "dice_roll_", "per_"))
        )

    # =========================================================================
    # Card immediate effects
    # =========================================================================

    def resolve_card(self, card: Card, player_id: str) -> EffectResult:
        """
        Apply a card's immediate effect.

        Raises UnsupportedEffectError for an unknown immediate_effect.
        """
        mechanic = CardMechanic.parse(card.immediate_effect)
        handler = self._get_card_handler(mechanic)
        logger.debug("Applying %s from %s for %s", mechanic.value, card.card_id, player_id)
        return handler(card, player_id)

    def _get_card_handler(self, mechanic: CardMechanic) -> Callable[[Card, str], EffectResult]:
        handlers = {
            CardMechanic.WORK: self.apply_work_effect,
            CardMechanic.LOAN: self.apply_loan_effect,
            CardMechanic.INVESTMENT: self.apply_investment_effect,
            CardMechanic.LIFE_BALANCE: self.apply_life_balance_effect,
            CardMechanic.EFFICIENCY: self.apply_efficiency_effect,
            CardMechanic.CARD: self.apply_card_effect,
        }
        return handlers[mechanic]

    def _check_inputs(self, card: Card | None, player_id: str | None) -> str | None:
        if card is None:
            return "No card provided"
        if not player_id:
            return "No player ID provided"
        if self.store is None:
            return "Game state manager not available"
        return None

    def apply_work_effect(self, card: Card, player_id: str) -> EffectResult:
        """Commit the card's work to the player's project scope."""
        error = self._check_inputs(card, player_id)
        if error:
            return EffectResult.failure(error)

        work_cost = card.int_field("work_cost")
        if work_cost == 0:
            return EffectResult.failure("No work cost in card")

        message = self.store.commit_work_card(player_id, card)
        return EffectResult.ok(
            "work_committed",
            [message],
            work_cost=work_cost,
            work_type=card.work_type,
            card_id=card.card_id,
        )

    def apply_loan_effect(self, card: Card, player_id: str) -> EffectResult:
        error = self._check_inputs(card, player_id)
        if error:
            return EffectResult.failure(error)

        amount = card.int_field("loan_amount")
        if amount == 0:
            return EffectResult.failure("No loan amount in card")

        message = self.store.update_player_money(
            player_id, amount, f"Bank loan: {card.card_name}", loan=True
        )
        return EffectResult.ok(
            "loan_amount_added",
            [message],
            amount=amount,
            loan_rate=card.get("loan_rate") or "N/A",
            card_id=card.card_id,
        )

    def apply_investment_effect(self, card: Card, player_id: str) -> EffectResult:
        error = self._check_inputs(card, player_id)
        if error:
            return EffectResult.failure(error)

        amount = card.int_field("investment_amount")
        if amount == 0:
            return EffectResult.failure("No investment amount in card")

        message = self.store.update_player_money(player_id, amount, f"Investment: {card.card_name}")
        return EffectResult.ok("investment_amount_added", [message], amount=amount, card_id=card.card_id)

    def apply_life_balance_effect(self, card: Card, player_id: str) -> EffectResult:
        error = self._check_inputs(card, player_id)
        if error:
            return EffectResult.failure(error)

        days = card.int_field("time_effect")
        if days == 0:
            return EffectResult.failure("No time effect in card")

        message = self.store.update_player_time(player_id, days, f"Life balance: {card.card_name}")
        return EffectResult.ok("life_balance_time_adjusted", [message], time_change=days, card_id=card.card_id)

    def apply_efficiency_effect(self, card: Card, player_id: str) -> EffectResult:
        """Time and/or money; both apply when both are present."""
        error = self._check_inputs(card, player_id)
        if error:
            return EffectResult.failure(error)

        effects: list[dict[str, Any]] = []
        days = card.int_field("time_effect")
        if days:
            message = self.store.update_player_time(player_id, days, f"Efficiency: {card.card_name}")
            effects.append({"type": "time", "value": days, "description": message})

        money = card.int_field("money_effect")
        if money:
            message = self.store.update_player_money(player_id, money, f"Efficiency: {card.card_name}")
            effects.append({"type": "money", "value": money, "description": message})

        if not effects:
            return EffectResult.failure("No efficiency effects in card")
        return EffectResult.ok(
            "efficiency_effects_applied",
            [e["description"] for e in effects],
            effects=effects,
            card_id=card.card_id,
        )

    def apply_card_effect(self, card: Card, player_id: str) -> EffectResult:
        """Time, forced discards and turn skips."""
        error = self._check_inputs(card, player_id)
        if error:
            return EffectResult.failure(error)

        effects: list[dict[str, Any]] = []
        days = card.int_field("time_effect")
        if days:
            message = self.store.update_player_time(player_id, days, f"Card effect: {card.card_name}")
            effects.append({"type": "time", "value": days, "description": message})

        discard_count = card.int_field("discard_cards")
        if discard_count > 0:
            type_filter = _optional_card_type(card.get("card_type_filter"))
            message = self.store.force_player_discard(player_id, discard_count, type_filter)
            effects.append({"type": "discard", "value": discard_count, "description": message})

        turn_effect = card.get("turn_effect")
        if "skip next turn" in turn_effect.lower():
            self.store.set_player_skip_next_turn(player_id, True)
            effects.append({"type": "turn", "value": turn_effect, "description": f"Turn effect: {turn_effect}"})
        elif "skip this turn" in turn_effect.lower():
            effects.append({"type": "turn", "value": turn_effect, "description": f"Turn effect: {turn_effect}"})

        if not effects:
            return EffectResult.failure("No effects in card")
        return EffectResult.ok(
            "card_effects_applied",
            [e["description"] for e in effects],
            effects=effects,
            card_id=card.card_id,
        )

    # =========================================================================
    # Dice effects
    # =========================================================================

    def get_dice_card_effect(
        self,
        space_name: str,
        visit_type: VisitType | str,
        card_type: CardType | str,
        roll: int,
    ) -> DiceCardAction | None:
        """The card action a roll yields for one card type, or None."""
        if not self.data_ready:
            logger.debug("Dice effects requested before data was loaded")
            return None

        card_type = CardType.parse(card_type)
        for row in self.database.dice_effects(space_name, visit_type):
            if _row_card_type(row) is not card_type:
                continue
            text = row.get(f"roll_{roll}", "")
            if not text:
                return None
            return parse_dice_card_action(text)
        return None

    def dice_destination(self, space_name: str, visit_type: VisitType | str, roll: int) -> str | None:
        if not self.data_ready:
            return None
        return self.database.dice_destination(space_name, visit_type, roll)

    def apply_dice_effects(
        self,
        player_id: str,
        space_name: str,
        visit_type: VisitType | str,
        roll: int,
    ) -> list[str]:
        """
        Apply every DICE_EFFECTS row for a roll.

        Card rows draw, remove or replace; money rows are a percentage fee
        ("8%") or a fixed amount; time rows add days.
        """
        if not self.data_ready:
            logger.debug("Dice effects skipped: data not loaded")
            return []

        planned = self._plan_dice_effects(space_name, visit_type, roll)
        for effect in planned:
            if effect.card_action and effect.card_action.action is not DiceActionType.REMOVE:
                if not self.database.cards(effect.card_type):
                    raise EmptyDeckError(effect.card_type.value)

        messages = []
        for effect in planned:
            message = self._apply_planned(player_id, effect, roll)
            if message:
                messages.append(message)
        logger.info("Applied %d dice effects for %s roll %d", len(messages), space_name, roll)
        return messages

    def _plan_dice_effects(self, space_name, visit_type, roll) -> list[_PlannedDiceEffect]:
        planned = []
        for row in self.database.dice_effects(space_name, visit_type):
            text = row.get(f"roll_{roll}", "").strip()
            if not text or text.lower() == "no change":
                continue
            effect_type = row.get("effect_type", "").lower()
            card_type = _row_card_type(row)
            if card_type is not None:
                action = parse_dice_card_action(text)
                if action.action is DiceActionType.NONE:
                    continue
                planned.append(_PlannedDiceEffect("cards", text, card_type, action))
            elif effect_type in ("money", "time"):
                planned.append(_PlannedDiceEffect(effect_type, text))
            else:
                raise UnsupportedEffectError(
                    f"Unknown dice effect type {effect_type or '<blank>'} at {space_name}"
                )
        return planned

    def _apply_planned(self, player_id: str, effect: _PlannedDiceEffect, roll: int) -> str | None:
        reason = f"Dice roll {roll}"
        if effect.card_action is not None:
            action = effect.card_action
            if action.action is DiceActionType.DRAW:
                return self.store.draw_cards_for_player(player_id, effect.card_type, action.amount)
            if action.action is DiceActionType.REMOVE:
                return self.store.remove_cards_from_player(
                    player_id, effect.card_type, -action.amount, source="dice_roll"
                )
            return self.store.replace_cards_for_player(player_id, effect.card_type, action.amount)

        if effect.effect_type == "money":
            player = self.store.get_player(player_id)
            if effect.text.endswith("%"):
                percent = float(effect.text.rstrip("%").strip() or 0)
                fee = math.floor(player.money * percent / 100)
                if fee == 0:
                    return None
                return self.store.update_player_money(player_id, -fee, f"{reason}: {effect.text} fee")
            amount = parse_int(effect.text)
            if amount == 0:
                return None
            return self.store.update_player_money(player_id, amount, reason)

        days = parse_int(effect.text)
        if days == 0:
            return None
        return self.store.update_player_time(player_id, days, reason)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def effects_summary(self, space_name: str, visit_type: VisitType | str = VisitType.FIRST) -> dict[str, Any]:
        if not self.data_ready:
            return {"space": space_name, "loaded": False}

        visit = VisitType.parse(visit_type)
        space_rows = self.database.space_effects(space_name, visit)
        dice_rows = self.database.dice_effects(space_name, visit)
        return {
            "space": space_name,
            "visit_type": visit.value,
            "loaded": True,
            "space_effects_count": len(space_rows),
            "dice_effects_count": len(dice_rows),
            "space_effects": [
                {**row, "parsed": repr(SpaceEffect.from_row(row).classify())} for row in space_rows
            ],
            "dice_effects": dice_rows,
            "requires_dice_roll": self.database.requires_dice_roll(space_name, visit),
            "card_actions": self.database.card_actions(space_name, visit),
            "destinations": self.database.destinations(space_name, visit),
        }

    def validate_effects_data(self) -> list[str]:
        """Describe every row the engine cannot interpret. Empty means valid."""
        if not self.data_ready:
            return ["Database not loaded"]

        issues = []
        for row in self.database.query("space_effects"):
            effect = SpaceEffect.from_row(row)
            parsed = effect.classify()
            if isinstance(parsed, UnsupportedEffect):
                issues.append(f"{effect.space_name}/{effect.visit_type.value}: {parsed.reason}")
            if not self.is_known_condition(effect.condition):
                issues.append(f"{effect.space_name}/{effect.visit_type.value}: Unknown condition {effect.condition}")

        for row in self.database.query("dice_effects"):
            effect_type = row.get("effect_type", "").lower()
            if effect_type not in ("cards", "money", "time") and effect_type not in _CARD_EFFECT_TYPES:
                issues.append(f"{row.get('space_name')}: Invalid dice effect type {effect_type or '<blank>'}")

        for card in self.database.cards():
            if not card.immediate_effect:
                continue
            try:
                CardMechanic.parse(card.immediate_effect)
            except UnsupportedEffectError as e:
                issues.append(f"Card {card.card_id}: {e}")

        known_spaces = set(self.database.spaces())
        for row in self.database.query("movement"):
            for index in range(1, 6):
                destination = row.get(f"destination_{index}")
                if destination and destination not in known_spaces:
                    issues.append(f"{row.get('space_name')}: Unknown destination {destination}")

        if issues:
            logger.warning("Effects data validation found %d issue(s)", len(issues))
        return issues


def _optional_card_type(value: str | None) -> CardType | None:
    if not value:
        return None
    try:
        return CardType.parse(value)
    except ValueError:
        return None


def _row_card_type(row: dict[str, str]) -> CardType | None:
    """Card type for a card-related dice row, None for money/time rows."""
    effect_type = row.get("effect_type", "").lower()
    if effect_type in _CARD_EFFECT_TYPES:
        return _optional_card_type(row.get("card_type")) or _CARD_EFFECT_TYPES[effect_type]
    if effect_type == "cards":
        return _optional_card_type(row.get("card_type"))
    return None
