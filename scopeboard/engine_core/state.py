"""
Game State - Immutable data model for Project Scope games.

Design principles:
- Immutable: every model is a frozen dataclass and every sequence a tuple
- Mutations build new objects; unchanged branches are shared, not copied
- Cheap reads: the root state can be handed out as-is
- Scope is a projection of W cards and committed work, never edited directly
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping
import re
import uuid


DEFAULT_WORK_TYPE = "General Construction"
DEFAULT_STARTING_SPACE = "OWNER-SCOPE-INITIATION"

_LEADING_INT = re.compile(r"^[+-]?\d+")


def parse_int(value: Any) -> int:
    """
    Lenient integer parse for CSV cells.

    Blank or unparseable values read as 0, thousands separators and a
    leading currency sign are ignored, trailing text is dropped.
    """
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().replace(",", "").replace("$", "")
    match = _LEADING_INT.match(text)
    return int(match.group()) if match else 0


class GamePhase(Enum):
    """High-level game phases."""
    SETUP = "SETUP"
    PLAYING = "PLAYING"
    COMPLETED = "COMPLETED"


class TurnPhase(Enum):
    SETUP = "SETUP"
    ACTIONS = "ACTIONS"
    COMPLETED = "COMPLETED"


class VisitType(Enum):
    """Whether a player is on a space for the first time."""
    FIRST = "First"
    SUBSEQUENT = "Subsequent"

    @classmethod
    def parse(cls, value: VisitType | str | None) -> VisitType:
        if isinstance(value, VisitType):
            return value
        if not value:
            return cls.FIRST
        return cls(str(value).strip().capitalize())


class CardType(Enum):
    """Card categories. Declaration order is the canonical search order."""
    W = "W"
    B = "B"
    I = "I"  # noqa: E741
    L = "L"
    E = "E"

    @property
    def label(self) -> str:
        return _CARD_TYPE_LABELS[self]

    @property
    def attr(self) -> str:
        """Field name used by per-type containers."""
        return self.value.lower()

    @classmethod
    def parse(cls, value: CardType | str) -> CardType:
        if isinstance(value, CardType):
            return value
        return cls(str(value).strip().upper())


_CARD_TYPE_LABELS = {
    CardType.W: "Work",
    CardType.B: "Bank",
    CardType.I: "Investor",
    CardType.L: "Life",
    CardType.E: "Expeditor",
}


class ActionKind(Enum):
    """Kinds of required turn actions. Movement is never required."""
    DICE = "dice"
    CARD = "card"


@dataclass(frozen=True)
class Card:
    """
    A card from the catalog.

    Catalog columns live in an immutable attribute bag. Numeric columns
    are read through int_field so blank CSV cells behave as zero.
    """
    card_id: str
    card_type: CardType
    card_name: str = ""
    attributes: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "card_type", CardType.parse(self.card_type))
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def __hash__(self):
        return hash((self.card_id, self.card_type))

    def __eq__(self, other):
        if not isinstance(other, Card):
            return False
        return (self.card_id, self.card_type) == (other.card_id, other.card_type)

    def get(self, name: str, default: str = "") -> str:
        value = self.attributes.get(name)
        if value is None:
            return default
        return str(value).strip()

    def int_field(self, name: str) -> int:
        return parse_int(self.attributes.get(name))

    @property
    def description(self) -> str:
        return self.get("description")

    @property
    def immediate_effect(self) -> str:
        return self.get("immediate_effect")

    @property
    def work_type(self) -> str:
        return self.get("work_type_restriction") or DEFAULT_WORK_TYPE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Card:
        """Build a card from a cards.csv row."""
        return cls(
            card_id=str(row["card_id"]).strip(),
            card_type=CardType.parse(row["card_type"]),
            card_name=str(row.get("card_name") or "").strip(),
            attributes={k: "" if v is None else str(v) for k, v in row.items()},
        )

    @classmethod
    def stub(cls, card_type: CardType | str, source: str = "space") -> Card:
        """Synthetic card with a unique id, used when the catalog has no cards of a type."""
        card_type = CardType.parse(card_type)
        card_id = f"{card_type.value}_{source}_{uuid.uuid4().hex[:8]}"
        return cls(
            card_id=card_id,
            card_type=card_type,
            card_name=f"{card_type.label} Card",
        )

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.attributes)
        data.update(
            card_id=self.card_id,
            card_type=self.card_type.value,
            card_name=self.card_name,
        )
        return data


class _PerCardType:
    """Mixin for frozen containers holding one field per card type."""

    def of(self, card_type: CardType | str):
        return getattr(self, CardType.parse(card_type).attr)

    def with_type(self, card_type: CardType | str, value):
        return replace(self, **{CardType.parse(card_type).attr: value})

    def items(self) -> Iterator[tuple[CardType, Any]]:
        for card_type in CardType:
            yield card_type, self.of(card_type)


@dataclass(frozen=True)
class Hand(_PerCardType):
    """A player's cards, one tuple per type in draw order."""
    w: tuple[Card, ...] = ()
    b: tuple[Card, ...] = ()
    i: tuple[Card, ...] = ()
    l: tuple[Card, ...] = ()  # noqa: E741
    e: tuple[Card, ...] = ()

    def add(self, card_type: CardType | str, cards) -> Hand:
        return self.with_type(card_type, self.of(card_type) + tuple(cards))

    def find(self, card_id: str) -> tuple[Card, CardType] | None:
        """Search W, B, I, L, E in order for a card id."""
        for card_type, cards in self.items():
            for card in cards:
                if card.card_id == card_id:
                    return card, card_type
        return None

    def without(self, card_id: str) -> Hand:
        found = self.find(card_id)
        if found is None:
            return self
        _, card_type = found
        return self.with_type(
            card_type, tuple(c for c in self.of(card_type) if c.card_id != card_id)
        )

    def all_cards(self) -> list[Card]:
        return [card for _, cards in self.items() for card in cards]

    @property
    def count(self) -> int:
        return sum(len(cards) for _, cards in self.items())

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            card_type.value: [card.to_dict() for card in cards]
            for card_type, cards in self.items()
        }


@dataclass(frozen=True)
class ScopeItem:
    """Aggregated work of one type in a player's project scope."""
    work_type: str
    cost: int
    count: int = 1


@dataclass(frozen=True)
class WorkEntry:
    """Work committed to the project by playing a W card."""
    work_type: str
    cost: int


def calculate_scope(
    work_cards: tuple[Card, ...],
    committed_work: tuple[WorkEntry, ...] = (),
) -> tuple[tuple[ScopeItem, ...], int]:
    """
    Project scope from W cards in hand plus committed work.

    Items are grouped by work type in first-seen order.
    Returns (scope_items, total_cost).
    """
    totals: dict[str, list[int]] = {}
    entries = [(card.work_type, card.int_field("work_cost")) for card in work_cards]
    entries.extend((entry.work_type, entry.cost) for entry in committed_work)
    for work_type, cost in entries:
        bucket = totals.setdefault(work_type, [0, 0])
        bucket[0] += cost
        bucket[1] += 1

    items = tuple(
        ScopeItem(work_type=work_type, cost=cost, count=count)
        for work_type, (cost, count) in totals.items()
    )
    return items, sum(item.cost for item in items)


@dataclass(frozen=True)
class PlayerSnapshot:
    """Value copy of the parts of a player that negotiation can roll back."""
    cards: Hand
    money: int
    time_spent: int
    scope_items: tuple[ScopeItem, ...]
    scope_total_cost: int
    committed_work: tuple[WorkEntry, ...]
    loan_total: int


@dataclass(frozen=True)
class PlayerState:
    """State for a single player."""
    player_id: str
    name: str
    color: str = "#007bff"
    avatar: str = ""
    position: str = DEFAULT_STARTING_SPACE
    visit_type: VisitType = VisitType.FIRST
    money: int = 0
    time_spent: int = 0
    cards: Hand = field(default_factory=Hand)
    scope_items: tuple[ScopeItem, ...] = ()
    scope_total_cost: int = 0
    committed_work: tuple[WorkEntry, ...] = ()
    loan_total: int = 0
    skip_next_turn: bool = False
    space_entry_snapshot: PlayerSnapshot | None = None
    visited_spaces: tuple[str, ...] = ()

    def with_cards(self, cards: Hand) -> PlayerState:
        """Return player holding `cards`, with scope recomputed."""
        return self._rescoped(cards, self.committed_work)

    def with_committed_work(self, entry: WorkEntry) -> PlayerState:
        return self._rescoped(self.cards, self.committed_work + (entry,))

    def _rescoped(self, cards: Hand, committed: tuple[WorkEntry, ...]) -> PlayerState:
        items, total = calculate_scope(cards.w, committed)
        return replace(
            self,
            cards=cards,
            committed_work=committed,
            scope_items=items,
            scope_total_cost=total,
        )

    def has_visited(self, space_name: str) -> bool:
        return space_name in self.visited_spaces

    def snapshot(self) -> PlayerSnapshot:
        return PlayerSnapshot(
            cards=self.cards,
            money=self.money,
            time_spent=self.time_spent,
            scope_items=self.scope_items,
            scope_total_cost=self.scope_total_cost,
            committed_work=self.committed_work,
            loan_total=self.loan_total,
        )

    def restored_from(self, snapshot: PlayerSnapshot, time_penalty: int) -> PlayerState:
        """Roll back to `snapshot`; time keeps moving forward by the penalty."""
        return replace(
            self,
            cards=snapshot.cards,
            money=snapshot.money,
            scope_items=snapshot.scope_items,
            scope_total_cost=snapshot.scope_total_cost,
            committed_work=snapshot.committed_work,
            loan_total=snapshot.loan_total,
            time_spent=self.time_spent + time_penalty,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_id": self.player_id,
            "name": self.name,
            "color": self.color,
            "avatar": self.avatar,
            "position": self.position,
            "visit_type": self.visit_type.value,
            "money": self.money,
            "time_spent": self.time_spent,
            "cards": self.cards.to_dict(),
            "scope_items": [
                {"work_type": item.work_type, "cost": item.cost, "count": item.count}
                for item in self.scope_items
            ],
            "scope_total_cost": self.scope_total_cost,
            "loan_total": self.loan_total,
            "skip_next_turn": self.skip_next_turn,
            "has_snapshot": self.space_entry_snapshot is not None,
            "visited_spaces": list(self.visited_spaces),
        }


@dataclass(frozen=True)
class RequiredAction:
    """An action the current player must complete before ending the turn."""
    type: ActionKind
    required: bool = True
    completed: bool = False
    completed_at: float | None = None
    details: Any = None
    description: str = ""
    card_types: tuple[str, ...] = ()


@dataclass(frozen=True)
class CompletedAction:
    type: ActionKind
    details: Any
    timestamp: float


@dataclass(frozen=True)
class ActionCounts:
    required: int = 0
    completed: int = 0


@dataclass(frozen=True)
class TurnState:
    """Required-action bookkeeping for the current turn."""
    player_id: str | None = None
    turn_number: int = 0
    phase: TurnPhase = TurnPhase.SETUP
    required_actions: tuple[RequiredAction, ...] = ()
    completed_actions: tuple[CompletedAction, ...] = ()
    action_counts: ActionCounts = field(default_factory=ActionCounts)
    can_end_turn: bool = True
    last_action_timestamp: float | None = None
    last_dice_roll: int | None = None

    @property
    def pending_actions(self) -> list[RequiredAction]:
        return [a for a in self.required_actions if a.required and not a.completed]


@dataclass(frozen=True)
class InPlayCard:
    """A card with a lasting effect, counting down turns until it expires."""
    card: Card
    player_id: str
    activated_turn: int
    turns_remaining: int


@dataclass(frozen=True)
class CardDeck:
    available: tuple[Card, ...] = ()
    discarded: tuple[Card, ...] = ()
    in_play: tuple[InPlayCard, ...] = ()


@dataclass(frozen=True)
class CardDecks(_PerCardType):
    """One deck per card type."""
    w: CardDeck = field(default_factory=CardDeck)
    b: CardDeck = field(default_factory=CardDeck)
    i: CardDeck = field(default_factory=CardDeck)
    l: CardDeck = field(default_factory=CardDeck)  # noqa: E741
    e: CardDeck = field(default_factory=CardDeck)


@dataclass(frozen=True)
class GameSettings:
    """Per-game configuration."""
    max_players: int = 4
    win_condition: str = "TIME_AND_MONEY"
    debug_mode: bool = False
    starting_money: int = 0
    starting_space: str | None = None


@dataclass(frozen=True)
class UIState:
    active_modal: str | None = None
    loading: bool = False
    dice_rolling: bool = False
    is_dice_result_modal_active: bool = False


@dataclass(frozen=True)
class GameState:
    """
    The whole game.

    Replaced wholesale on every change; holding a reference to an old
    GameState is how listeners see "previous" values.
    """
    game_phase: GamePhase = GamePhase.SETUP
    current_player: str | None = None
    turn_count: int = 0
    players: tuple[PlayerState, ...] = ()
    current_turn: TurnState = field(default_factory=TurnState)
    game_settings: GameSettings = field(default_factory=GameSettings)
    ui: UIState = field(default_factory=UIState)
    card_decks: CardDecks = field(default_factory=CardDecks)
    error: str | None = None
    last_action: str | None = None

    def get_player(self, player_id: str) -> PlayerState | None:
        for player in self.players:
            if player.player_id == player_id:
                return player
        return None

    def player_index(self, player_id: str) -> int:
        for index, player in enumerate(self.players):
            if player.player_id == player_id:
                return index
        return -1

    @property
    def current_player_state(self) -> PlayerState | None:
        if self.current_player is None:
            return None
        return self.get_player(self.current_player)

    def to_dict(self) -> dict[str, Any]:
        turn = self.current_turn
        return {
            "game_phase": self.game_phase.value,
            "current_player": self.current_player,
            "turn_count": self.turn_count,
            "players": [player.to_dict() for player in self.players],
            "current_turn": {
                "player_id": turn.player_id,
                "turn_number": turn.turn_number,
                "phase": turn.phase.value,
                "required_actions": [
                    {
                        "type": action.type.value,
                        "required": action.required,
                        "completed": action.completed,
                        "description": action.description,
                        "card_types": list(action.card_types),
                    }
                    for action in turn.required_actions
                ],
                "action_counts": {
                    "required": turn.action_counts.required,
                    "completed": turn.action_counts.completed,
                },
                "can_end_turn": turn.can_end_turn,
                "last_dice_roll": turn.last_dice_roll,
            },
            "error": self.error,
            "last_action": self.last_action,
        }
