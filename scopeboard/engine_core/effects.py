"""
Effects - Parsed space effects, dice actions and card mechanics.

Raw CSV rows are parsed once into a closed set of effect variants.
Anything the engine has no handler for becomes UnsupportedEffect, which
the store reports as a recoverable error instead of silently skipping.

Design principles:
- Parse at the edge: handlers never look at raw strings
- Closed dispatch: every variant has exactly one handler
- Effect results are values; exceptions are reserved for broken preconditions
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union
import logging
import re

from .state import CardType, VisitType, parse_int
from .errors import UnsupportedEffectError

logger = logging.getLogger(__name__)


_AMOUNT_PATTERN = re.compile(r"^\s*\$?([\d.,]+)\s*([KMB]?)\s*$", re.IGNORECASE)
_AMOUNT_MULTIPLIERS = {"": 1, "K": 1_000, "M": 1_000_000, "B": 1_000_000_000}


def parse_amount(text: str | None) -> int | None:
    """
    Parse a K/M/B-suffixed amount: "4M" -> 4000000, "1.4M" -> 1400000.

    Returns None when the text is not an amount.
    """
    if text is None:
        return None
    match = _AMOUNT_PATTERN.match(str(text))
    if not match:
        return None
    number, suffix = match.groups()
    try:
        value = float(number.replace(",", ""))
    except ValueError:
        return None
    return int(round(value * _AMOUNT_MULTIPLIERS[suffix.upper()]))


# =============================================================================
# Space effect variants
# =============================================================================


@dataclass(frozen=True)
class TimeChange:
    days: int


@dataclass(frozen=True)
class TimePerAmount:
    """N days for every `unit` dollars of the basis, e.g. 1 day per $200K borrowed."""
    days: int
    unit: int
    basis: str


@dataclass(frozen=True)
class MoneyChange:
    amount: int


@dataclass(frozen=True)
class FeeCharge:
    """A fee; always taken as a negative money change."""
    amount: int


@dataclass(frozen=True)
class CardGrant:
    card_type: CardType
    count: int


@dataclass(frozen=True)
class CardRemoval:
    card_type: CardType
    count: int


@dataclass(frozen=True)
class CardReplacement:
    card_type: CardType
    count: int


@dataclass(frozen=True)
class UnsupportedEffect:
    effect_type: str
    reason: str


Effect = Union[
    TimeChange,
    TimePerAmount,
    MoneyChange,
    FeeCharge,
    CardGrant,
    CardRemoval,
    CardReplacement,
    UnsupportedEffect,
]

_CARD_EFFECT_TYPES = {f"{t.attr}_cards": t for t in CardType}
_CARD_ACTION_PATTERN = re.compile(r"^(draw|remove|replace)_([wbile])$", re.IGNORECASE)
_PER_AMOUNT_PATTERN = re.compile(r"per_([\d.,]+[KMB]?)", re.IGNORECASE)
_SCOPE_CONDITIONS = ("scope_le_4M", "scope_gt_4M")


def _truthy(value: Any) -> bool:
    return str(value).strip().lower() in ("true", "yes", "1")


@dataclass(frozen=True)
class SpaceEffect:
    """One SPACE_EFFECTS.csv row."""
    space_name: str
    visit_type: VisitType
    effect_type: str
    effect_action: str = ""
    effect_value: str = ""
    condition: str = ""
    description: str = ""
    trigger_type: str = ""
    use_dice: bool = False
    card_type: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> SpaceEffect:
        def cell(name: str) -> str:
            value = row.get(name)
            return "" if value is None else str(value).strip()

        return cls(
            space_name=cell("space_name"),
            visit_type=VisitType.parse(cell("visit_type")),
            effect_type=cell("effect_type").lower(),
            effect_action=cell("effect_action"),
            effect_value=cell("effect_value"),
            condition=cell("condition"),
            description=cell("description"),
            trigger_type=cell("trigger_type").lower(),
            use_dice=_truthy(cell("use_dice")),
            card_type=cell("card_type").upper(),
        )

    @property
    def is_manual(self) -> bool:
        return self.trigger_type == "manual"

    @property
    def requires_dice_roll(self) -> bool:
        """True when the effect can only be resolved after a roll."""
        if self.use_dice or self.effect_value.lower() == "dice":
            return True
        return self.condition.startswith(("roll_", "dice_roll_"))

    @property
    def is_card_effect(self) -> bool:
        return self.effect_type in _CARD_EFFECT_TYPES or self.effect_type == "cards"

    @property
    def is_scope_conditioned_funding(self) -> bool:
        """B/I grants that are mutually exclusive on project scope size."""
        return (
            self.effect_type in ("b_cards", "i_cards")
            and any(cond in self.condition for cond in _SCOPE_CONDITIONS)
        )

    def classify(self) -> Effect:
        """Parse this row into an effect variant."""
        kind = self.effect_type
        if kind in ("time", "e_time"):
            if self.effect_action.lower() == "add_per_amount":
                return self._classify_time_per_amount()
            return TimeChange(days=parse_int(self.effect_value))
        if kind in ("money", "e_money"):
            return MoneyChange(amount=parse_int(self.effect_value))
        if kind == "fee":
            return FeeCharge(amount=abs(parse_int(self.effect_value)))
        if kind in _CARD_EFFECT_TYPES:
            card_type = self._card_type_override() or _CARD_EFFECT_TYPES[kind]
            return CardGrant(card_type=card_type, count=parse_int(self.effect_value) or 1)
        if kind == "cards":
            return self._classify_card_action()
        return UnsupportedEffect(effect_type=kind, reason=f"Unknown effect type: {kind or '<blank>'}")

    def _card_type_override(self) -> CardType | None:
        if not self.card_type:
            return None
        try:
            return CardType.parse(self.card_type)
        except ValueError:
            return None

    def _classify_time_per_amount(self) -> Effect:
        match = _PER_AMOUNT_PATTERN.search(self.condition)
        unit = parse_amount(match.group(1)) if match else None
        if not unit:
            return UnsupportedEffect(
                effect_type=self.effect_type,
                reason=f"Per-amount time effect without a unit: {self.condition or '<blank>'}",
            )
        condition = self.condition.lower()
        basis = "loan" if ("borrowed" in condition or "loan" in condition) else "money"
        return TimePerAmount(days=parse_int(self.effect_value), unit=unit, basis=basis)

    def _classify_card_action(self) -> Effect:
        match = _CARD_ACTION_PATTERN.match(self.effect_action)
        if not match:
            return UnsupportedEffect(
                effect_type=self.effect_type,
                reason=f"Unknown card action: {self.effect_action or '<blank>'}",
            )
        verb, letter = match.groups()
        card_type = CardType.parse(letter)
        count = parse_int(self.effect_value) or 1
        variant = {"draw": CardGrant, "remove": CardRemoval, "replace": CardReplacement}[verb.lower()]
        return variant(card_type=card_type, count=count)


def unsupported_effect_error(effect: UnsupportedEffect, space_name: str) -> UnsupportedEffectError:
    return UnsupportedEffectError(f"{effect.reason} at {space_name}")


# =============================================================================
# Dice card actions
# =============================================================================


class DiceActionType(Enum):
    DRAW = "draw"
    REMOVE = "remove"
    REPLACE = "replace"
    NONE = "none"


@dataclass(frozen=True)
class DiceCardAction:
    """
    A parsed DICE_EFFECTS cell.

    amount is signed: Remove N yields -N, Draw N and Replace N yield +N.
    """
    action: DiceActionType
    amount: int
    text: str = ""


_DICE_ACTION_PATTERN = re.compile(r"^(draw|remove|replace)\s+(\d+)", re.IGNORECASE)


def parse_dice_card_action(text: str | None) -> DiceCardAction:
    """Parse "Draw 2", "Remove 1", "Replace 1" or "No change"."""
    raw = (text or "").strip()
    if not raw or raw.lower() in ("no change", "none", "n/a"):
        return DiceCardAction(DiceActionType.NONE, 0, raw)

    match = _DICE_ACTION_PATTERN.match(raw)
    if not match:
        logger.warning("Could not parse dice card action: %r", raw)
        return DiceCardAction(DiceActionType.NONE, 0, raw)

    verb, count = match.groups()
    action = DiceActionType(verb.lower())
    amount = int(count)
    if action is DiceActionType.REMOVE:
        amount = -amount
    return DiceCardAction(action, amount, raw)


# =============================================================================
# Card mechanics
# =============================================================================


class CardMechanic(Enum):
    """Values of the cards.csv immediate_effect column."""
    WORK = "Apply Work"
    LOAN = "Apply Loan"
    INVESTMENT = "Apply Investment"
    LIFE_BALANCE = "Apply Life Balance"
    EFFICIENCY = "Apply Efficiency"
    CARD = "Apply Card"

    @classmethod
    def parse(cls, value: str) -> CardMechanic:
        text = (value or "").strip()
        for mechanic in cls:
            if mechanic.value.lower() == text.lower():
                return mechanic
        raise UnsupportedEffectError(f"Unknown card effect type: {text or '<blank>'}")


@dataclass
class EffectResult:
    """
    Result of applying a card effect.

    Failures are values; the store turns them into error state.
    """
    success: bool
    action: str | None = None
    reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    messages: list[str] = field(default_factory=list)

    @classmethod
    def failure(cls, reason: str) -> EffectResult:
        return cls(success=False, reason=reason)

    @classmethod
    def ok(cls, action: str, messages: list[str] | None = None, **details) -> EffectResult:
        return cls(success=True, action=action, details=details, messages=messages or [])


def format_effect_result(result: EffectResult) -> str:
    """Human-readable summary of a card effect for the UI."""
    if not result.success:
        return f"Effect failed: {result.reason}"

    details = result.details
    if result.action == "work_committed":
        return f"Committed ${details['work_cost']:,} of {details['work_type']} to project scope"
    if result.action == "loan_amount_added":
        return f"Loan of ${details['amount']:,} received"
    if result.action == "investment_amount_added":
        return f"Investment of ${details['amount']:,} received"
    if result.action == "life_balance_time_adjusted":
        days = details["time_change"]
        return f"Time adjusted by {days:+d} day{'' if abs(days) == 1 else 's'}"
    if result.action in ("efficiency_effects_applied", "card_effects_applied"):
        parts = [effect["description"] for effect in details.get("effects", [])]
        return "; ".join(parts) if parts else "No effects"
    return "; ".join(result.messages) or "Card effect applied"
