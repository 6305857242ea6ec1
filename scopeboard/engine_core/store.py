"""
Game State Manager - The single owner of game state.

Every change to the game goes through this class:
1. Validate (player exists, arguments present) before touching anything
2. Build the new immutable state and swap the root reference
3. Emit a typed event describing the change
4. Return a human-readable message for the UI

Design principles:
- Explicit construction: no module-level instance, collaborators are injected
- get_state() is O(1) and safe to share; nothing can mutate it
- Scope is recomputed from W cards and committed work on every card change
- Data-not-loaded is a normal condition, never an error
"""

from __future__ import annotations
from dataclasses import fields, is_dataclass, replace
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping
import logging
import random
import time

from .state import (
    DEFAULT_STARTING_SPACE,
    DEFAULT_WORK_TYPE,
    ActionCounts,
    ActionKind,
    Card,
    CardDeck,
    CardDecks,
    CardType,
    CompletedAction,
    GamePhase,
    GameSettings,
    GameState,
    Hand,
    InPlayCard,
    PlayerState,
    RequiredAction,
    TurnPhase,
    TurnState,
    UIState,
    VisitType,
    WorkEntry,
)
from .events import (
    ActionCompleted,
    CardsAddedToPlayer,
    CardsRemovedFromPlayer,
    CardUsed,
    DiceRollRecorded,
    ErrorCleared,
    ErrorOccurred,
    EventBus,
    GameInitialized,
    GameReady,
    GameReset,
    LoadingChanged,
    ModalHidden,
    ModalShown,
    PlayerActionTaken,
    PlayerCardsDiscarded,
    PlayerMoneyChanged,
    PlayerMoved,
    PlayerMovedWithEffects,
    PlayerScopeChanged,
    PlayerStateRestored,
    PlayerTimeChanged,
    PlayerWorkCommitted,
    StateChanged,
    TurnActionsInitialized,
    TurnAdvanced,
    TurnStarted,
)
from .effects import (
    CardGrant,
    CardRemoval,
    CardReplacement,
    FeeCharge,
    MoneyChange,
    SpaceEffect,
    TimeChange,
    TimePerAmount,
    UnsupportedEffect,
    format_effect_result,
    unsupported_effect_error,
)
from .effects_engine import EffectsEngine
from .errors import (
    CardEffectError,
    CardNotFoundError,
    EmptyDeckError,
    GameError,
    MissingArgumentError,
    PlayerNotFoundError,
    SnapshotMissingError,
    UnsupportedEffectError,
)

if TYPE_CHECKING:
    from ..data.database import CSVDatabase

logger = logging.getLogger(__name__)


PLAYER_COLORS = ("#007bff", "#28a745", "#dc3545", "#ffc107")


def money_message(amount: int) -> str:
    if amount > 0:
        return f"Gained ${amount:,}"
    return f"Spent ${abs(amount):,}"


def time_message(days: int) -> str:
    label = "day" if abs(days) == 1 else "days"
    if days > 0:
        return f"Spent {days} {label}"
    return f"Saved {abs(days)} {label}"


def _cards_label(card_type: CardType, count: int) -> str:
    return f"{card_type.label} {'card' if count == 1 else 'cards'}"


def _merge(target: Any, updates: Mapping[str, Any]) -> Any:
    """
    Recursive merge of `updates` into a frozen dataclass.

    A mapping value merges into a dataclass field; anything else (tuples,
    scalars, dataclass instances) replaces the field wholesale.
    """
    names = {f.name for f in fields(target)}
    changes = {}
    for key, value in updates.items():
        if key not in names:
            raise MissingArgumentError(f"Unknown state field: {type(target).__name__}.{key}")
        current = getattr(target, key)
        if isinstance(value, Mapping) and is_dataclass(current):
            changes[key] = _merge(current, value)
        else:
            changes[key] = value
    return replace(target, **changes)


class GameStateManager:
    """
    Central state container, domain operations and turn lifecycle.

    Usage:
        store = GameStateManager(database=CSVDatabase.sample())
        store.on(PlayerMoneyChanged, lambda event: ...)
        store.initialize_game(["Alice", "Bob"])
        messages = store.move_player_with_effects("player_1", "OWNER-FUND-INITIATION")
    """

    def __init__(
        self,
        database: CSVDatabase | None = None,
        rng: random.Random | None = None,
        settings: GameSettings | None = None,
    ):
        self.database = database
        self.rng = rng or random.Random()
        self._initial_settings = settings or GameSettings()
        self._reporting_error = False
        self.bus = EventBus(
            on_listener_error=self._on_listener_error,
            record_history=self._initial_settings.debug_mode,
        )
        self.effects = EffectsEngine(database, self)
        self._state = self._initial_state()

        self.bus.on(PlayerActionTaken, self._handle_player_action)

    @property
    def data_ready(self) -> bool:
        return self.database is not None and self.database.loaded

    def _initial_state(self) -> GameState:
        return GameState(
            game_settings=self._initial_settings,
            card_decks=self._shuffled_decks(),
        )

    # =========================================================================
    # Event bus
    # =========================================================================

    def on(self, event_cls: type, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe to an event class. Returns an unsubscribe callable."""
        return self.bus.on(event_cls, callback)

    def off(self, event_cls: type, callback: Callable[[Any], None]) -> bool:
        return self.bus.off(event_cls, callback)

    def emit(self, event: Any) -> None:
        self.bus.emit(event)

    def event_history(self) -> list[Any]:
        return self.bus.history()

    def _on_listener_error(self, event: Any, error: Exception) -> None:
        # A failing errorOccurred/stateChanged listener must not recurse
        if self._reporting_error:
            return
        self._reporting_error = True
        try:
            self.handle_error(error, f"listener:{event.event_type}")
        finally:
            self._reporting_error = False

    def _handle_player_action(self, event: PlayerActionTaken) -> None:
        self.process_player_action(event.player_id, event.action_type, event.action_data)

    # =========================================================================
    # State mutation contract
    # =========================================================================

    def get_state(self) -> GameState:
        return self._state

    def set_state(self, updates: Mapping[str, Any] | None = None, **kwargs) -> GameState:
        """Merge updates into the state and emit StateChanged."""
        updates = {**(updates or {}), **kwargs}
        previous = self._state
        self._state = _merge(previous, updates)
        self.emit(StateChanged(previous=previous, current=self._state, updates=updates))
        return self._state

    def get_player(self, player_id: str) -> PlayerState:
        player = self._state.get_player(player_id)
        if player is None:
            raise PlayerNotFoundError(player_id)
        return player

    def update_player(self, player_id: str, **updates) -> PlayerState:
        """Replace one player; every other player object is kept as-is."""
        player = self.get_player(player_id)
        return self._put_player(replace(player, **updates))

    def _put_player(self, player: PlayerState) -> PlayerState:
        players = self._state.players
        index = self._state.player_index(player.player_id)
        if index < 0:
            raise PlayerNotFoundError(player.player_id)
        self.set_state(players=players[:index] + (player,) + players[index + 1:])
        return player

    # =========================================================================
    # Player domain operations
    # =========================================================================

    def move_player(
        self,
        player_id: str,
        space_name: str,
        visit_type: VisitType | str = VisitType.FIRST,
    ) -> str:
        player = self.get_player(player_id)
        if not space_name:
            raise MissingArgumentError("Destination is required")
        visit = VisitType.parse(visit_type)

        visited = player.visited_spaces
        if space_name not in visited:
            visited = visited + (space_name,)
        updated = self.update_player(
            player_id, position=space_name, visit_type=visit, visited_spaces=visited
        )

        self.emit(PlayerMoved(
            player=updated,
            previous_position=player.position,
            new_position=space_name,
            visit_type=visit,
        ))
        return f"Moved to {space_name}"

    def update_player_money(self, player_id: str, amount: int, reason: str = "", loan: bool = False) -> str:
        """Additive money change; money may go negative. Loans also raise loan_total."""
        player = self.get_player(player_id)
        updates = {"money": player.money + amount}
        if loan:
            updates["loan_total"] = player.loan_total + amount
        updated = self.update_player(player_id, **updates)

        self.emit(PlayerMoneyChanged(
            player=updated,
            previous_amount=player.money,
            new_amount=updated.money,
            change=amount,
            reason=reason,
        ))
        return money_message(amount)

    def update_player_time(self, player_id: str, amount: int, reason: str = "") -> str:
        player = self.get_player(player_id)
        updated = self.update_player(player_id, time_spent=player.time_spent + amount)

        self.emit(PlayerTimeChanged(
            player=updated,
            previous_amount=player.time_spent,
            new_amount=updated.time_spent,
            change=amount,
            reason=reason,
        ))
        return time_message(amount)

    def add_cards_to_player(
        self,
        player_id: str,
        card_type: CardType | str,
        cards: Card | Iterable[Card],
    ) -> str:
        """
        Append cards to a player's hand.

        Except for E cards, loan/investment/money/time columns of the new
        cards are applied to the player in the same update.
        """
        player = self.get_player(player_id)
        card_type = CardType.parse(card_type)
        new_cards = (cards,) if isinstance(cards, Card) else tuple(cards)

        money, time_spent, loan_total = player.money, player.time_spent, player.loan_total
        if card_type is not CardType.E:
            for card in new_cards:
                loan = card.int_field("loan_amount")
                money += loan + card.int_field("investment_amount") + card.int_field("money_effect")
                loan_total += loan
                time_spent += card.int_field("time_effect")

        updated = replace(
            player.with_cards(player.cards.add(card_type, new_cards)),
            money=money,
            time_spent=time_spent,
            loan_total=loan_total,
        )
        self._put_player(updated)

        self.emit(CardsAddedToPlayer(
            player=updated,
            card_type=card_type,
            cards=new_cards,
            total_cards=len(updated.cards.of(card_type)),
        ))
        return f"Drew {len(new_cards)} {_cards_label(card_type, len(new_cards))}"

    def add_work_to_player_scope(
        self,
        player_id: str,
        work_cost: int,
        work_type: str = DEFAULT_WORK_TYPE,
    ) -> str:
        player = self.get_player(player_id)
        work_type = work_type or DEFAULT_WORK_TYPE
        updated = self._put_player(player.with_committed_work(WorkEntry(work_type, work_cost)))

        self.emit(PlayerScopeChanged(player=updated, work_cost=work_cost, work_type=work_type))
        return f"Added ${work_cost:,} of {work_type} to scope"

    def commit_work_card(self, player_id: str, card: Card) -> str:
        """
        Move a W card's cost from the hand into committed work.

        The card leaves the hand in the same update, so scope_total_cost
        is unchanged. A card not in hand adds its work to scope.
        """
        player = self.get_player(player_id)
        work_cost = card.int_field("work_cost")
        work_type = card.work_type
        entry = WorkEntry(work_type, work_cost)

        in_hand = player.cards.find(card.card_id) is not None
        if not in_hand:
            return self.add_work_to_player_scope(player_id, work_cost, work_type)

        updated = self._put_player(
            player.with_cards(player.cards.without(card.card_id)).with_committed_work(entry)
        )
        self.handle_card_state_transition(card, CardType.W, player_id)
        self.emit(PlayerWorkCommitted(
            player=updated, card_id=card.card_id, work_cost=work_cost, work_type=work_type
        ))
        return f"Committed ${work_cost:,} of {work_type} to scope"

    def force_player_discard(
        self,
        player_id: str,
        count: int,
        card_type: CardType | str | None = None,
    ) -> str:
        """Discard the oldest cards, of one type or searching W, B, I, L, E."""
        player = self.get_player(player_id)
        type_filter = CardType.parse(card_type) if card_type else None
        search = [type_filter] if type_filter else list(CardType)

        hand = player.cards
        discarded: list[tuple[CardType, Card]] = []
        for current in search:
            remaining = count - len(discarded)
            if remaining <= 0:
                break
            cards = hand.of(current)
            taken = cards[:remaining]
            hand = hand.with_type(current, cards[len(taken):])
            discarded.extend((current, card) for card in taken)

        updated = self._put_player(player.with_cards(hand))
        for discarded_type, card in discarded:
            self.discard_card(discarded_type, card)

        self.emit(PlayerCardsDiscarded(
            player=updated,
            discarded_cards=tuple(card for _, card in discarded),
            card_type_filter=type_filter,
        ))
        label = f" {type_filter.value}" if type_filter else ""
        return f"Discarded {len(discarded)}{label} cards"

    def remove_cards_from_player(
        self,
        player_id: str,
        card_type: CardType | str,
        count: int,
        source: str = "card_effect",
    ) -> str:
        player = self.get_player(player_id)
        card_type = CardType.parse(card_type)
        cards = player.cards.of(card_type)
        removed = cards[:max(count, 0)]
        if not removed:
            return f"No {card_type.label} cards to remove"

        self._put_player(player.with_cards(player.cards.with_type(card_type, cards[len(removed):])))
        for card in removed:
            self.discard_card(card_type, card)

        self.emit(CardsRemovedFromPlayer(
            player_id=player_id, card_type=card_type, removed_cards=removed, source=source
        ))
        return f"Removed {len(removed)} {_cards_label(card_type, len(removed))}"

    def replace_cards_for_player(
        self,
        player_id: str,
        card_type: CardType | str,
        count: int,
        indices: Iterable[int] | None = None,
    ) -> str:
        """
        Swap cards in hand for fresh ones from the deck.

        Without indices the oldest `count` cards are replaced. A player
        holding none of the type simply draws.
        """
        return self._replace_cards(player_id, CardType.parse(card_type), count, indices, self.draw_cards_from_deck)

    def replace_cards_from_space(self, player_id: str, card_type: CardType | str, count: int) -> str:
        """Space-effect replacement: stubs stand in for an empty catalog, as with grants."""
        card_type = CardType.parse(card_type)
        draw = self.draw_cards_from_deck if self.catalog_has(card_type) else self._stub_cards
        return self._replace_cards(player_id, card_type, count, None, draw)

    def _replace_cards(
        self,
        player_id: str,
        card_type: CardType,
        count: int,
        indices: Iterable[int] | None,
        draw: Callable[[CardType, int], tuple[Card, ...]],
    ) -> str:
        player = self.get_player(player_id)
        cards = player.cards.of(card_type)
        if not cards:
            drawn = draw(card_type, count)
            if not drawn:
                return f"No {card_type.label} cards available to draw"
            return self.add_cards_to_player(player_id, card_type, drawn)

        chosen = sorted(set(indices)) if indices is not None else list(range(min(count, len(cards))))
        if any(index < 0 or index >= len(cards) for index in chosen):
            raise MissingArgumentError(f"Card index out of range for {card_type.label} cards")

        drawn = draw(card_type, len(chosen))
        if not drawn:
            return f"No {card_type.label} cards available to replace"

        replaced = tuple(cards[index] for index in chosen[:len(drawn)])
        kept = tuple(card for card in cards if card not in replaced)
        self._put_player(player.with_cards(player.cards.with_type(card_type, kept)))
        for card in replaced:
            self.discard_card(card_type, card)
        self.emit(CardsRemovedFromPlayer(
            player_id=player_id, card_type=card_type, removed_cards=replaced, source="card_replacement"
        ))

        self.add_cards_to_player(player_id, card_type, drawn)
        return f"Replaced {len(replaced)} {_cards_label(card_type, len(replaced))}"

    def draw_cards_for_player(self, player_id: str, card_type: CardType | str, count: int) -> str:
        """Draw from the deck into a hand. Raises EmptyDeckError for an empty catalog."""
        self.get_player(player_id)
        card_type = CardType.parse(card_type)
        drawn = self.draw_cards_from_deck(card_type, count)
        if not drawn:
            return f"No {card_type.label} cards available to draw"
        return self.add_cards_to_player(player_id, card_type, drawn)

    def grant_cards_from_space(self, player_id: str, card_type: CardType | str, count: int) -> str:
        """Space-effect card grant: deck cards, or synthetic stubs when the catalog has none."""
        card_type = CardType.parse(card_type)
        if self.catalog_has(card_type):
            return self.draw_cards_for_player(player_id, card_type, count)
        return self.add_cards_to_player(player_id, card_type, self._stub_cards(card_type, count))

    @staticmethod
    def _stub_cards(card_type: CardType, count: int) -> tuple[Card, ...]:
        return tuple(Card.stub(card_type) for _ in range(max(count, 0)))

    def use_player_card(self, player_id: str, card_id: str) -> str:
        """
        Play a card from hand and apply its immediate effect.

        On failure the card stays in hand, the error is recorded in state
        and a "Failed to use card" message is returned.
        """
        try:
            player = self.get_player(player_id)
            found = player.cards.find(card_id)
            if found is None:
                raise CardNotFoundError(card_id, player_id)
            card, card_type = found
            result = self._resolve_card(card, player_id)
            if not result.success:
                raise CardEffectError(result.reason or "Card effect failed")
        except GameError as e:
            self.handle_error(e, "usePlayerCard")
            return f"Failed to use card: {e}"

        player = self.get_player(player_id)
        if player.cards.find(card_id) is not None:
            player = self._put_player(player.with_cards(player.cards.without(card_id)))
            self.handle_card_state_transition(card, card_type, player_id)

        self.emit(CardUsed(player_id=player_id, card=card, card_type=card_type, result=result))
        self.emit(PlayerActionTaken(
            player_id=player_id,
            action_type=ActionKind.CARD.value,
            action_data={
                "card_id": card.card_id,
                "card_type": card_type.value,
                "card_name": card.card_name,
                "effect_result": result,
            },
            timestamp=time.time(),
            space_name=player.position,
            visit_type=player.visit_type,
        ))
        self.set_state(last_action=f"{player.name} used {card.card_name or card.card_id}")
        return f"Used {card.card_name or card.card_id}: {format_effect_result(result)}"

    def _resolve_card(self, card: Card, player_id: str):
        try:
            return self.effects.resolve_card(card, player_id)
        except GameError:
            raise
        except Exception as e:
            logger.exception("Card effect for %s raised", card.card_id)
            raise CardEffectError(str(e)) from e

    def set_player_skip_next_turn(self, player_id: str, should_skip: bool = True) -> PlayerState:
        return self.update_player(player_id, skip_next_turn=should_skip)

    # =========================================================================
    # Negotiation snapshots
    # =========================================================================

    def save_player_snapshot(self, player_id: str) -> PlayerState:
        player = self.get_player(player_id)
        return self.update_player(player_id, space_entry_snapshot=player.snapshot())

    def negotiation_penalty(self, player: PlayerState) -> int:
        """Days a negotiation costs: the space's own time cost, else 1."""
        if self.data_ready:
            cost = self.database.space_time_cost(player.position, player.visit_type)
            if cost and cost > 0:
                return cost
        return 1

    def restore_player_snapshot(self, player_id: str, time_penalty: int | None = None) -> str:
        """Roll a player back to their space-entry snapshot; time still advances."""
        player = self.get_player(player_id)
        snapshot = player.space_entry_snapshot
        if snapshot is None:
            raise SnapshotMissingError(player_id)

        penalty = time_penalty if time_penalty is not None else self.negotiation_penalty(player)
        restored = self._put_player(player.restored_from(snapshot, penalty))
        self._reconcile_decks(player.cards, restored.cards)

        self.emit(PlayerStateRestored(player=restored, time_penalty=penalty, reason="negotiation"))
        return f"Restored state at {player.position}. {time_message(penalty)}"

    def _reconcile_decks(self, before: Hand, after: Hand) -> None:
        """Cards leaving the hand go to discard; cards returning leave the deck."""
        decks = self._state.card_decks
        for card_type in CardType:
            before_cards = before.of(card_type)
            after_cards = after.of(card_type)
            leaving = tuple(c for c in before_cards if c not in after_cards and self._in_catalog(c))
            returning = {c for c in after_cards if c not in before_cards}
            if not leaving and not returning:
                continue
            deck = decks.of(card_type)
            decks = decks.with_type(card_type, CardDeck(
                available=tuple(c for c in deck.available if c not in returning),
                discarded=tuple(c for c in deck.discarded if c not in returning) + leaving,
                in_play=tuple(p for p in deck.in_play if p.card not in returning),
            ))
        if decks is not self._state.card_decks:
            self.set_state(card_decks=decks)

    # =========================================================================
    # Decks
    # =========================================================================

    def _catalog(self, card_type: CardType) -> list[Card]:
        if not self.data_ready:
            return []
        return self.database.cards(card_type)

    def catalog_has(self, card_type: CardType | str) -> bool:
        return bool(self._catalog(CardType.parse(card_type)))

    def _in_catalog(self, card: Card) -> bool:
        return self.data_ready and self.database.card(card.card_id) is not None

    def _shuffled_decks(self) -> CardDecks:
        decks = CardDecks()
        for card_type in CardType:
            cards = list(self._catalog(card_type))
            self.rng.shuffle(cards)
            decks = decks.with_type(card_type, CardDeck(available=tuple(cards)))
        return decks

    def initialize_card_decks(self) -> CardDecks:
        decks = self._shuffled_decks()
        self.set_state(card_decks=decks)
        logger.info(
            "Card decks initialized: %s",
            ", ".join(f"{t.value}={len(d.available)}" for t, d in decks.items()),
        )
        return decks

    def draw_cards_from_deck(self, card_type: CardType | str, count: int) -> tuple[Card, ...]:
        """
        Draw without replacement, reshuffling the discard pile when the deck runs out.

        May return fewer cards than asked when every card is in a hand.
        Raises EmptyDeckError when the catalog has no cards of the type.
        """
        card_type = CardType.parse(card_type)
        if count <= 0:
            return ()
        if not self.catalog_has(card_type):
            raise EmptyDeckError(card_type.value)

        deck = self._state.card_decks.of(card_type)
        available = list(deck.available)
        discarded = list(deck.discarded)
        drawn: list[Card] = []
        while len(drawn) < count:
            if not available:
                if not discarded:
                    logger.warning("%s deck exhausted after %d card(s)", card_type.label, len(drawn))
                    break
                logger.info("Reshuffling %d discarded %s cards", len(discarded), card_type.label)
                available, discarded = discarded, []
                self.rng.shuffle(available)
            drawn.append(available.pop(0))

        self._set_deck(card_type, replace(deck, available=tuple(available), discarded=tuple(discarded)))
        return tuple(drawn)

    def _set_deck(self, card_type: CardType, deck: CardDeck) -> None:
        self.set_state(card_decks=self._state.card_decks.with_type(card_type, deck))

    def discard_card(self, card_type: CardType | str, card: Card) -> None:
        # Synthetic stubs never enter the deck cycle
        if not self._in_catalog(card):
            return
        card_type = CardType.parse(card_type)
        deck = self._state.card_decks.of(card_type)
        self._set_deck(card_type, replace(deck, discarded=deck.discarded + (card,)))

    def move_card_to_in_play(self, card_type: CardType | str, card: Card, player_id: str) -> InPlayCard:
        card_type = CardType.parse(card_type)
        entry = InPlayCard(
            card=card,
            player_id=player_id,
            activated_turn=self._state.turn_count,
            turns_remaining=card.int_field("duration_count"),
        )
        deck = self._state.card_decks.of(card_type)
        self._set_deck(card_type, replace(deck, in_play=deck.in_play + (entry,)))
        return entry

    def handle_card_state_transition(self, card: Card, card_type: CardType | str, player_id: str) -> None:
        """Timed cards stay in play for duration_count turns; everything else is discarded."""
        duration = card.get("duration").lower()
        if duration and duration not in ("immediate", "permanent") and card.int_field("duration_count") > 0:
            self.move_card_to_in_play(card_type, card, player_id)
        else:
            self.discard_card(card_type, card)

    def process_in_play_cards(self) -> list[InPlayCard]:
        """Count down in-play cards; expired ones move to discard. Returns the expired."""
        decks = self._state.card_decks
        expired: list[InPlayCard] = []
        for card_type, deck in decks.items():
            if not deck.in_play:
                continue
            still_active = []
            discarded = deck.discarded
            for entry in deck.in_play:
                remaining = entry.turns_remaining - 1
                if remaining <= 0:
                    expired.append(entry)
                    discarded = discarded + (entry.card,)
                else:
                    still_active.append(replace(entry, turns_remaining=remaining))
            decks = decks.with_type(card_type, replace(deck, in_play=tuple(still_active), discarded=discarded))

        if decks is not self._state.card_decks:
            self.set_state(card_decks=decks)
        return expired

    def in_play_cards(self, player_id: str | None = None) -> list[InPlayCard]:
        return [
            entry
            for _, deck in self._state.card_decks.items()
            for entry in deck.in_play
            if player_id is None or entry.player_id == player_id
        ]

    # =========================================================================
    # Space effects and movement
    # =========================================================================

    def space_effects(self, space_name: str, visit_type: VisitType | str = VisitType.FIRST) -> list[SpaceEffect]:
        if not self.data_ready:
            logger.debug("No space effects for %s: data not loaded", space_name)
            return []
        return [SpaceEffect.from_row(row) for row in self.database.space_effects(space_name, visit_type)]

    def process_space_effect(self, player_id: str, effect: SpaceEffect) -> str | None:
        """Apply one space effect. Raises UnsupportedEffectError for unknown effects."""
        parsed = effect.classify()
        handler = self._get_effect_handler(type(parsed))
        return handler(player_id, parsed, effect)

    def _get_effect_handler(self, effect_cls: type):
        handlers = {
            TimeChange: self._apply_time_change,
            TimePerAmount: self._apply_time_per_amount,
            MoneyChange: self._apply_money_change,
            FeeCharge: self._apply_fee,
            CardGrant: self._apply_card_grant,
            CardRemoval: self._apply_card_removal,
            CardReplacement: self._apply_card_replacement,
            UnsupportedEffect: self._reject_effect,
        }
        return handlers[effect_cls]

    def _apply_time_change(self, player_id, parsed: TimeChange, effect: SpaceEffect):
        return self.update_player_time(player_id, parsed.days, f"Space effect: {effect.space_name}")

    def _apply_time_per_amount(self, player_id, parsed: TimePerAmount, effect: SpaceEffect):
        player = self.get_player(player_id)
        basis = player.loan_total if parsed.basis == "loan" else max(player.money, 0)
        days = (basis // parsed.unit) * parsed.days
        if days == 0:
            return None
        return self.update_player_time(player_id, days, f"Space effect: {effect.space_name}")

    def _apply_money_change(self, player_id, parsed: MoneyChange, effect: SpaceEffect):
        return self.update_player_money(player_id, parsed.amount, f"Space effect: {effect.space_name}")

    def _apply_fee(self, player_id, parsed: FeeCharge, effect: SpaceEffect):
        return self.update_player_money(player_id, -parsed.amount, f"Space fee: {effect.space_name}")

    def _apply_card_grant(self, player_id, parsed: CardGrant, effect: SpaceEffect):
        return self.grant_cards_from_space(player_id, parsed.card_type, parsed.count)

    def _apply_card_removal(self, player_id, parsed: CardRemoval, effect: SpaceEffect):
        return self.remove_cards_from_player(player_id, parsed.card_type, parsed.count, source="space_effect")

    def _apply_card_replacement(self, player_id, parsed: CardReplacement, effect: SpaceEffect):
        return self.replace_cards_from_space(player_id, parsed.card_type, parsed.count)

    def _reject_effect(self, player_id, parsed: UnsupportedEffect, effect: SpaceEffect):
        raise unsupported_effect_error(parsed, effect.space_name)

    def process_all_space_effects(
        self,
        player_id: str,
        space_name: str,
        visit_type: VisitType | str = VisitType.FIRST,
    ) -> list[str]:
        return self._apply_space_effects(player_id, self.space_effects(space_name, visit_type))

    def _apply_space_effects(self, player_id: str, effects: list[SpaceEffect]) -> list[str]:
        messages: list[str] = []
        funding = [e for e in effects if e.is_scope_conditioned_funding]
        automatic_funding = [e for e in funding if not e.is_manual]
        if automatic_funding:
            messages.extend(self._apply_funding_group(player_id, automatic_funding))

        for effect in effects:
            if effect.is_scope_conditioned_funding:
                continue
            if effect.is_manual:
                logger.debug("Skipping manual effect %s at %s", effect.effect_type, effect.space_name)
                continue
            if effect.requires_dice_roll:
                logger.debug("Skipping dice effect %s at %s", effect.effect_type, effect.space_name)
                continue
            if not self.effects.meets_condition(effect.condition, self._state, self.get_player(player_id)):
                logger.debug("Condition %s not met at %s", effect.condition, effect.space_name)
                continue
            try:
                message = self.process_space_effect(player_id, effect)
            except UnsupportedEffectError as e:
                self.handle_error(e, "processSpaceEffect")
                continue
            if message:
                messages.append(message)
        return messages

    def _apply_funding_group(self, player_id: str, effects: list[SpaceEffect]) -> list[str]:
        """Scope-conditioned B/I grants: only the first matching one applies."""
        for effect in effects:
            player = self.get_player(player_id)
            if self.effects.meets_condition(effect.condition, self._state, player):
                message = self.process_space_effect(player_id, effect)
                return [message] if message else []
        return []

    def trigger_funding_card_draw(self, player_id: str) -> list[str]:
        """Apply the manual scope-conditioned B/I grant of the player's current space."""
        player = self.get_player(player_id)
        funding = [
            e for e in self.space_effects(player.position, player.visit_type)
            if e.is_scope_conditioned_funding
        ]
        if not funding:
            return []

        messages = self._apply_funding_group(player_id, funding)
        if messages:
            self.emit(PlayerActionTaken(
                player_id=player_id,
                action_type=ActionKind.CARD.value,
                action_data={"source": "funding_card_draw", "messages": messages},
                timestamp=time.time(),
                space_name=player.position,
                visit_type=player.visit_type,
            ))
        return messages

    def move_player_with_effects(
        self,
        player_id: str,
        destination: str,
        visit_type: VisitType | str = VisitType.FIRST,
    ) -> list[str]:
        """
        Move, snapshot for negotiation, then apply arrival effects.

        All inputs are validated before the first change.
        """
        self.get_player(player_id)
        if not destination:
            raise MissingArgumentError("Destination is required")
        visit = VisitType.parse(visit_type)
        effects = self.space_effects(destination, visit)

        try:
            messages = [self.move_player(player_id, destination, visit)]
            self.save_player_snapshot(player_id)
            effect_messages = self._apply_space_effects(player_id, effects)
        except GameError as e:
            self.handle_error(e, "movePlayerWithEffects")
            raise
        messages.extend(effect_messages)

        self.emit(PlayerMovedWithEffects(
            player_id=player_id,
            destination=destination,
            visit_type=visit,
            effects=tuple(effect_messages),
            all_messages=tuple(messages),
        ))
        logger.info("Moved %s to %s (%d effects)", player_id, destination, len(effect_messages))
        return messages

    # =========================================================================
    # Game and turn lifecycle
    # =========================================================================

    def initialize_game(
        self,
        players: Iterable[str | Mapping[str, Any]],
        settings: GameSettings | Mapping[str, Any] | None = None,
    ) -> GameState:
        """Start a new game with the first player to move."""
        if isinstance(settings, GameSettings):
            game_settings = settings
        else:
            game_settings = replace(self._initial_settings, **dict(settings or {}))

        start = (
            game_settings.starting_space
            or (self.database.starting_space() if self.data_ready else None)
            or DEFAULT_STARTING_SPACE
        )
        player_states = tuple(
            self._build_player(index, data, start, game_settings)
            for index, data in enumerate(players)
        )
        if not player_states:
            raise MissingArgumentError("At least one player is required")
        if len(player_states) > game_settings.max_players:
            raise MissingArgumentError(f"At most {game_settings.max_players} players are allowed")
        if len({p.player_id for p in player_states}) != len(player_states):
            raise MissingArgumentError("Player ids must be unique")

        self.bus.record_history = game_settings.debug_mode
        self.set_state(
            game_phase=GamePhase.PLAYING,
            current_player=player_states[0].player_id,
            turn_count=0,
            players=player_states,
            current_turn=TurnState(),
            game_settings=game_settings,
            ui=UIState(),
            error=None,
            last_action=None,
        )
        self.initialize_card_decks()
        for player in player_states:
            self.save_player_snapshot(player.player_id)

        logger.info("Game initialized with %d players at %s", len(player_states), start)
        self.emit(GameInitialized(state=self._state))
        self.initialize_turn_actions(player_states[0].player_id)
        self.emit(GameReady(state=self._state))
        return self._state

    def _build_player(
        self,
        index: int,
        data: str | Mapping[str, Any],
        start: str,
        settings: GameSettings,
    ) -> PlayerState:
        if isinstance(data, str):
            data = {"name": data}
        name = data.get("name") or f"Player {index + 1}"
        return PlayerState(
            player_id=str(data.get("player_id") or data.get("id") or f"player_{index + 1}"),
            name=name,
            color=data.get("color") or PLAYER_COLORS[index % len(PLAYER_COLORS)],
            avatar=data.get("avatar") or "",
            position=data.get("position") or start,
            visit_type=VisitType.parse(data.get("visit_type")),
            money=int(data.get("money", settings.starting_money) or 0),
            time_spent=int(data.get("time_spent", 0) or 0),
        )

    def start_turn(self, player_id: str) -> None:
        player = self.get_player(player_id)
        self.set_state(current_player=player_id, last_action=None)
        self.emit(TurnStarted(player=player, turn_count=self._state.turn_count))
        self.initialize_turn_actions(player_id)

    def end_turn(self, player_id: str) -> PlayerState:
        """
        Advance to the next player.

        A next player flagged skip_next_turn has the flag cleared and is
        passed over. turn_count goes up when the advance passes index 0.
        """
        player = self.get_player(player_id)
        players = self._state.players
        next_index = (self._state.player_index(player_id) + 1) % len(players)
        next_player = players[next_index]
        new_round = next_index == 0

        if next_player.skip_next_turn:
            self.update_player(next_player.player_id, skip_next_turn=False)
            logger.info("%s skips this turn", next_player.name)
            after_index = (next_index + 1) % len(players)
            next_player = self._state.players[after_index]
            new_round = new_round or after_index == 0

        turn_count = self._state.turn_count + (1 if new_round else 0)
        self.set_state(
            current_player=next_player.player_id,
            turn_count=turn_count,
            last_action=f"{player.name} ended their turn",
        )
        self.process_in_play_cards()

        self.emit(TurnAdvanced(
            previous_player=player,
            current_player=next_player,
            turn_count=self._state.turn_count,
        ))
        self.initialize_turn_actions(next_player.player_id)
        return next_player

    def initialize_turn_actions(self, player_id: str) -> TurnState:
        """Work out which actions the player's current space requires."""
        player = self.get_player(player_id)
        required: list[RequiredAction] = []

        if self.data_ready:
            if self.database.requires_dice_roll(player.position, player.visit_type):
                required.append(RequiredAction(type=ActionKind.DICE, description="Roll dice"))
            card_actions = self.database.card_actions(player.position, player.visit_type)
            if card_actions:
                required.append(RequiredAction(
                    type=ActionKind.CARD,
                    description=", ".join(f"{a['action']} {a['card_type']}" for a in card_actions),
                    card_types=tuple(a["card_type"] for a in card_actions),
                ))
        else:
            logger.debug("Data not loaded; turn for %s has no required actions", player_id)

        counts = ActionCounts(required=len(required), completed=0)
        turn = TurnState(
            player_id=player_id,
            turn_number=self._state.turn_count,
            phase=TurnPhase.ACTIONS,
            required_actions=tuple(required),
            action_counts=counts,
            can_end_turn=not required,
            last_action_timestamp=time.time(),
        )
        self.set_state(current_turn=turn)

        self.emit(TurnActionsInitialized(
            player_id=player_id,
            required_actions=turn.required_actions,
            action_counts=counts,
            can_end_turn=turn.can_end_turn,
        ))
        return turn

    def process_player_action(
        self,
        player_id: str,
        action_type: ActionKind | str,
        action_details: Any = None,
    ) -> bool:
        """
        Mark the first pending required action of a type complete.

        Out-of-turn actions and actions with nothing pending are ignored.
        Returns whether an action was completed.
        """
        turn = self._state.current_turn
        if turn.player_id != player_id:
            logger.warning("Action from %s but current turn is %s", player_id, turn.player_id)
            return False
        try:
            kind = ActionKind(action_type.value if isinstance(action_type, ActionKind) else action_type)
        except ValueError:
            logger.warning("Ignoring unknown action type %r", action_type)
            return False

        index = next(
            (i for i, action in enumerate(turn.required_actions)
             if action.type is kind and not action.completed),
            None,
        )
        if index is None:
            logger.warning("Action type %s not required or already completed", kind.value)
            return False

        now = time.time()
        done = replace(turn.required_actions[index], completed=True, completed_at=now, details=action_details)
        required = turn.required_actions[:index] + (done,) + turn.required_actions[index + 1:]
        completed_count = sum(1 for action in required if action.completed)
        counts = ActionCounts(required=len(required), completed=completed_count)
        can_end_turn = completed_count >= len(required)

        updates: dict[str, Any] = {
            "required_actions": required,
            "completed_actions": turn.completed_actions + (CompletedAction(kind, action_details, now),),
            "action_counts": counts,
            "can_end_turn": can_end_turn,
            "last_action_timestamp": now,
        }
        if kind is ActionKind.DICE and isinstance(action_details, Mapping) and action_details.get("dice_value"):
            updates["last_dice_roll"] = action_details["dice_value"]
        self.set_state(current_turn=updates)

        self.emit(ActionCompleted(
            player_id=player_id,
            action_type=kind.value,
            action_details=action_details,
            action_counts=counts,
            can_end_turn=can_end_turn,
        ))
        return True

    def record_dice_roll(self, player_id: str, roll: int) -> None:
        self.get_player(player_id)
        if not 1 <= roll <= 6:
            raise MissingArgumentError(f"Dice roll must be between 1 and 6, got {roll}")
        self.set_state(current_turn={"last_dice_roll": roll})
        self.emit(DiceRollRecorded(player_id=player_id, roll=roll))

    def reset(self) -> None:
        self._state = self._initial_state()
        self.bus.clear_history()
        self.emit(GameReset())

    # =========================================================================
    # UI flags and errors
    # =========================================================================

    def show_modal(self, modal: str) -> None:
        self.set_state(ui={"active_modal": modal})
        self.emit(ModalShown(modal=modal))

    def hide_modal(self) -> None:
        previous = self._state.ui.active_modal
        self.set_state(ui={"active_modal": None})
        self.emit(ModalHidden(previous_modal=previous))

    def set_loading(self, loading: bool) -> None:
        self.set_state(ui={"loading": loading})
        self.emit(LoadingChanged(loading=loading))

    def set_dice_modal_active(self, active: bool) -> None:
        self.set_state(ui={"is_dice_result_modal_active": active})

    def handle_error(self, error: Exception | str, context: str = "") -> None:
        """Record an error in state (last one wins) and emit ErrorOccurred."""
        message = str(error)
        logger.error("%s: %s", context or "game", message)
        self.set_state(error=message)
        self.emit(ErrorOccurred(error=message, context=context, timestamp=time.time()))

    def clear_error(self) -> None:
        self.set_state(error=None)
        self.emit(ErrorCleared())

    def set_debug(self, enabled: bool) -> None:
        self.set_state(game_settings={"debug_mode": enabled})
        self.bus.record_history = enabled
