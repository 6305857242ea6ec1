"""
Tests for GameStateManager domain operations.

Tests:
- State mutation contract and immutability
- Money, time and card operations
- Card use, decks and in-play cards
- Space effects and movement
- Snapshots and negotiation
- Error routing
"""

import dataclasses

import pytest

from ..engine_core.errors import (
    EmptyDeckError,
    MissingArgumentError,
    PlayerNotFoundError,
    SnapshotMissingError,
)
from ..engine_core.events import (
    CardsAddedToPlayer,
    CardUsed,
    ErrorOccurred,
    GameReset,
    PlayerMoneyChanged,
    PlayerMoved,
    PlayerMovedWithEffects,
    PlayerScopeChanged,
    PlayerStateRestored,
    PlayerWorkCommitted,
    StateChanged,
)
from ..engine_core.state import CardType, GamePhase, VisitType
from .conftest import EventRecorder, make_card, space_effect_row

P1 = "player_1"
P2 = "player_2"


class TestStateContract:
    """Tests for set_state / get_state / update_player."""

    def test_old_state_is_unchanged(self, store):
        """A state handed out earlier never changes."""
        before = store.get_state()
        store.update_player_money(P1, 100, "test")

        assert before.players[0].money == 0
        assert store.get_state().players[0].money == 100

    def test_other_players_keep_identity(self, store):
        """Updating one player leaves the other player objects as they were."""
        before = store.get_state()
        store.update_player_time(P1, 2, "test")

        assert store.get_state().players[1] is before.players[1]
        assert store.get_state().players[0] is not before.players[0]

    def test_nested_merge(self, store):
        """A dict for a nested record merges field by field."""
        store.show_modal("rules")
        store.set_state({"ui": {"loading": True}})

        ui = store.get_state().ui
        assert ui.loading is True
        assert ui.active_modal == "rules"

    def test_unknown_field_rejected(self, store):
        """Merging an unknown field raises."""
        with pytest.raises(MissingArgumentError):
            store.set_state(bogus=1)

    def test_state_changed_event(self, store):
        """set_state emits previous and current states."""
        recorder = EventRecorder(store, StateChanged)
        previous = store.get_state()

        store.set_state(last_action="hello")

        event = recorder.of(StateChanged)[-1]
        assert event.previous is previous
        assert event.current.last_action == "hello"
        assert event.updates == {"last_action": "hello"}

    def test_state_is_frozen(self, store):
        """The root state cannot be mutated in place."""
        with pytest.raises(dataclasses.FrozenInstanceError):
            store.get_state().turn_count = 9

    def test_update_missing_player(self, store):
        """Updating a missing player raises PlayerNotFoundError."""
        with pytest.raises(PlayerNotFoundError):
            store.update_player("nobody", money=5)


class TestMoneyAndTime:
    """Tests for additive money and time changes."""

    def test_money_messages(self, store):
        """Money changes are additive with signed messages."""
        assert store.update_player_money(P1, 1000, "prize") == "Gained $1,000"
        assert store.update_player_money(P1, -500, "fee") == "Spent $500"
        assert store.get_player(P1).money == 500

    def test_money_can_go_negative(self, store):
        """There is no floor on money."""
        store.update_player_money(P1, -2000, "fee")
        assert store.get_player(P1).money == -2000

    def test_money_event(self, store):
        """PlayerMoneyChanged carries before, after and reason."""
        recorder = EventRecorder(store, PlayerMoneyChanged)
        store.update_player_money(P1, 250, "bonus")

        event = recorder.of(PlayerMoneyChanged)[0]
        assert (event.previous_amount, event.new_amount, event.change) == (0, 250, 250)
        assert event.reason == "bonus"

    def test_loan_raises_loan_total(self, store):
        """Loans count toward loan_total as well as money."""
        store.update_player_money(P1, 300, "loan", loan=True)
        assert store.get_player(P1).loan_total == 300

    def test_time_messages(self, store):
        """Time changes pluralize and distinguish spending from saving."""
        assert store.update_player_time(P1, 3, "work") == "Spent 3 days"
        assert store.update_player_time(P1, -1, "shortcut") == "Saved 1 day"
        assert store.update_player_time(P1, 1, "work") == "Spent 1 day"
        assert store.get_player(P1).time_spent == 3

    def test_unknown_player(self, store):
        """Operations on a missing player raise."""
        with pytest.raises(PlayerNotFoundError):
            store.update_player_money("nobody", 5)


class TestAddCards:
    """Tests for add_cards_to_player side effects."""

    def test_bank_card_adds_loan(self, store, sample_db):
        """Drawing a B card adds its loan to money and loan_total."""
        message = store.add_cards_to_player(P1, "B", [sample_db.card("B002")])

        player = store.get_player(P1)
        assert message == "Drew 1 Bank card"
        assert player.money == 500000
        assert player.loan_total == 500000

    def test_expeditor_card_has_no_draw_effect(self, store, sample_db):
        """E card money and time only apply when the card is used."""
        store.add_cards_to_player(P1, "E", [sample_db.card("E001")])

        player = store.get_player(P1)
        assert player.money == 0
        assert player.time_spent == 0
        assert len(player.cards.e) == 1

    def test_life_card_adds_time(self, store, sample_db):
        """Non-E cards fold time_effect in on draw."""
        store.add_cards_to_player(P1, "L", [sample_db.card("L001")])
        assert store.get_player(P1).time_spent == 3

    def test_work_cards_update_scope(self, store, sample_db):
        """W cards recompute scope in the same update."""
        message = store.add_cards_to_player(P1, "W", [sample_db.card("W001"), sample_db.card("W003")])

        player = store.get_player(P1)
        assert message == "Drew 2 Work cards"
        assert player.scope_total_cost == 1_200_000
        assert {item.work_type for item in player.scope_items} == {"Excavation", "General Construction"}

    def test_bank_card_drawn_as_expeditor(self, store, sample_db):
        """The type a card is added under decides whether its loan applies."""
        store.add_cards_to_player(P1, "E", [sample_db.card("B002")])
        assert store.get_player(P1).money == 0

    def test_same_work_type_merges(self, store):
        """W cards sharing a work type form one scope item."""
        store.add_cards_to_player(P1, "W", [
            make_card("W1", "W", work_cost=1000, work_type_restriction="Plumbing"),
            make_card("W2", "W", work_cost=2000, work_type_restriction="Plumbing"),
        ])

        player = store.get_player(P1)
        assert [(i.work_type, i.cost, i.count) for i in player.scope_items] == [("Plumbing", 3000, 2)]
        assert player.scope_total_cost == 3000

    def test_event(self, store, sample_db):
        """CardsAddedToPlayer reports the new total for the type."""
        recorder = EventRecorder(store, CardsAddedToPlayer)
        store.add_cards_to_player(P1, "W", [sample_db.card("W001")])
        store.add_cards_to_player(P1, "W", [sample_db.card("W002")])

        assert recorder.of(CardsAddedToPlayer)[-1].total_cards == 2


class TestDiscardAndRemove:
    """Tests for forced discards, removals and replacements."""

    def test_force_discard_filtered(self, store):
        """Discards the oldest cards of the filter type."""
        store.add_cards_to_player(P1, "E", [make_card("E1", "E"), make_card("E2", "E"), make_card("E3", "E")])

        message = store.force_player_discard(P1, 2, "E")

        assert message == "Discarded 2 E cards"
        assert [c.card_id for c in store.get_player(P1).cards.e] == ["E3"]

    def test_force_discard_searches_in_type_order(self, store):
        """Without a filter, W cards go before E cards."""
        store.add_cards_to_player(P1, "E", [make_card("E1", "E")])
        store.add_cards_to_player(P1, "W", [make_card("W1", "W", work_cost=100)])

        assert store.force_player_discard(P1, 1) == "Discarded 1 cards"
        player = store.get_player(P1)
        assert player.cards.w == ()
        assert len(player.cards.e) == 1
        assert player.scope_total_cost == 0

    def test_discarded_catalog_cards_reach_discard_pile(self, store, sample_db):
        """Catalog cards go to their deck's discard pile; stubs do not."""
        store.add_cards_to_player(P1, "W", [sample_db.card("W001"), make_card("Wx", "W")])
        store.force_player_discard(P1, 2, "W")

        assert [c.card_id for c in store.get_state().card_decks.w.discarded] == ["W001"]

    def test_remove_cards(self, store):
        """remove_cards_from_player takes the oldest cards of a type."""
        store.add_cards_to_player(P1, "W", [make_card("W1", "W"), make_card("W2", "W")])

        assert store.remove_cards_from_player(P1, "W", 1, source="dice_roll") == "Removed 1 Work card"
        assert [c.card_id for c in store.get_player(P1).cards.w] == ["W2"]

    def test_remove_with_empty_hand(self, store):
        """Removing from an empty hand is a no-op message."""
        assert store.remove_cards_from_player(P1, "L", 1) == "No Life cards to remove"

    def test_replace_cards(self, store):
        """Replaced cards go to discard and fresh ones are drawn."""
        store.draw_cards_for_player(P1, "W", 2)
        first, second = store.get_player(P1).cards.w

        message = store.replace_cards_for_player(P1, "W", 1, indices=[0])

        hand_ids = [c.card_id for c in store.get_player(P1).cards.w]
        assert message == "Replaced 1 Work card"
        assert first.card_id not in hand_ids
        assert second.card_id in hand_ids
        assert len(hand_ids) == 2
        assert first in store.get_state().card_decks.w.discarded

    def test_replace_bad_index(self, store):
        """Indices outside the hand are rejected."""
        store.draw_cards_for_player(P1, "W", 1)
        with pytest.raises(MissingArgumentError):
            store.replace_cards_for_player(P1, "W", 1, indices=[3])

    def test_replace_with_empty_hand_draws(self, store):
        """Replacing with no cards of the type falls back to drawing."""
        assert store.replace_cards_for_player(P1, "L", 1) == "Drew 1 Life card"


class TestDecks:
    """Tests for deck management."""

    def test_draw_without_replacement(self, store):
        """Every W card can be drawn once, then the deck is exhausted."""
        drawn = store.draw_cards_from_deck("W", 5)

        assert len({c.card_id for c in drawn}) == 5
        assert store.draw_cards_from_deck("W", 1) == ()

    def test_reshuffle_discard_pile(self, store):
        """An empty deck refills from its discard pile."""
        drawn = store.draw_cards_from_deck("W", 5)
        store.discard_card("W", drawn[0])

        assert store.draw_cards_from_deck("W", 1) == (drawn[0],)
        assert store.get_state().card_decks.w.discarded == ()

    def test_empty_catalog_raises(self, bare_store):
        """Drawing a type the catalog does not have raises EmptyDeckError."""
        with pytest.raises(EmptyDeckError):
            bare_store.draw_cards_from_deck("B", 1)
        with pytest.raises(EmptyDeckError):
            bare_store.draw_cards_for_player(P1, "B", 1)

    def test_zero_count(self, bare_store):
        """Drawing nothing is always allowed."""
        assert bare_store.draw_cards_from_deck("B", 0) == ()

    def test_decks_initialized_from_catalog(self, store, sample_db):
        """Each deck starts with the whole catalog for its type."""
        decks = store.get_state().card_decks
        for card_type in CardType:
            assert len(decks.of(card_type).available) == len(sample_db.cards(card_type))


class TestUseCard:
    """Tests for use_player_card."""

    def test_loan_card(self, store, sample_db):
        """Using a B card adds its loan again and discards it."""
        card = sample_db.card("B002")
        store.add_cards_to_player(P1, "B", [card])

        message = store.use_player_card(P1, "B002")

        player = store.get_player(P1)
        assert message == "Used Bridge Loan: Loan of $500,000 received"
        assert player.money == 1_000_000
        assert player.loan_total == 1_000_000
        assert player.cards.b == ()
        assert card in store.get_state().card_decks.b.discarded

    def test_work_card_commits_scope(self, store, sample_db):
        """Playing a W card keeps its cost in scope as committed work."""
        card = sample_db.card("W002")
        store.add_cards_to_player(P1, "W", [card])
        recorder = EventRecorder(store, PlayerWorkCommitted, PlayerScopeChanged)

        message = store.use_player_card(P1, "W002")

        player = store.get_player(P1)
        assert message == "Used Structural Frame: Committed $1,500,000 of Structural to project scope"
        assert player.cards.w == ()
        assert player.scope_total_cost == 1_500_000
        assert card in store.get_state().card_decks.w.discarded

        assert recorder.of(PlayerScopeChanged) == []
        [event] = recorder.of(PlayerWorkCommitted)
        assert event.card_id == "W002"
        assert event.player.scope_total_cost == 1_500_000

    def test_work_card_outside_hand_adds_scope(self, store, sample_db):
        """Committing a card that was never in hand grows the scope."""
        message = store.commit_work_card(P1, sample_db.card("W001"))

        assert message == "Added $800,000 of Excavation to scope"
        assert store.get_player(P1).scope_total_cost == 800_000

    def test_union_strike(self, store, sample_db):
        """Apply Card combines time, forced discard and a skipped turn."""
        store.add_cards_to_player(P1, "W", [sample_db.card("W001")])
        store.add_cards_to_player(P1, "E", [sample_db.card("E003")])

        message = store.use_player_card(P1, "E003")

        player = store.get_player(P1)
        assert message == "Used Union Strike: Spent 2 days; Discarded 1 W cards; Turn effect: Skip next turn"
        assert player.time_spent == 2
        assert player.cards.w == ()
        assert player.cards.e == ()
        assert player.skip_next_turn is True

    def test_timed_card_goes_in_play(self, store, sample_db):
        """A card with a duration stays in play and expires after its turns."""
        store.add_cards_to_player(P1, "E", [sample_db.card("E001")])

        message = store.use_player_card(P1, "E001")

        assert message == "Used Permit Expediter: Saved 2 days; Spent $5,000"
        in_play = store.in_play_cards(P1)
        assert [entry.turns_remaining for entry in in_play] == [2]

        store.end_turn(P1)
        assert [entry.turns_remaining for entry in store.in_play_cards(P1)] == [1]

        store.end_turn(P2)
        assert store.in_play_cards(P1) == []
        assert sample_db.card("E001") in store.get_state().card_decks.e.discarded

    def test_events_on_success(self, store, sample_db):
        """A successful use emits CardUsed and completes the card action."""
        recorder = EventRecorder(store, CardUsed)
        store.add_cards_to_player(P1, "L", [sample_db.card("L002")])
        assert store.get_state().current_turn.can_end_turn is False

        store.use_player_card(P1, "L002")

        assert len(recorder.of(CardUsed)) == 1
        assert store.get_state().current_turn.can_end_turn is True

    def test_missing_card(self, store):
        """Using a card not in hand fails without raising."""
        message = store.use_player_card(P1, "W999")

        assert message.startswith("Failed to use card: Card W999 not found")
        assert "W999" in store.get_state().error

    def test_unknown_mechanic_keeps_card(self, store):
        """An unknown immediate effect leaves the card in hand."""
        recorder = EventRecorder(store, CardUsed, ErrorOccurred)
        store.add_cards_to_player(P1, "E", [make_card("EX", "E", immediate_effect="Apply Magic")])

        message = store.use_player_card(P1, "EX")

        assert message == "Failed to use card: Unknown card effect type: Apply Magic"
        assert [c.card_id for c in store.get_player(P1).cards.e] == ["EX"]
        assert recorder.of(CardUsed) == []
        assert len(recorder.of(ErrorOccurred)) == 1

    def test_handler_failure_keeps_card(self, store):
        """A handler reporting failure leaves hand, money and time unchanged."""
        store.add_cards_to_player(P1, "L", [make_card("LX", "L", immediate_effect="Apply Life Balance")])
        before = store.get_player(P1)

        message = store.use_player_card(P1, "LX")

        after = store.get_player(P1)
        assert message == "Failed to use card: No time effect in card"
        assert after.cards == before.cards
        assert (after.money, after.time_spent) == (before.money, before.time_spent)

    def test_unknown_player(self, store):
        """A missing player is reported, not raised."""
        assert store.use_player_card("nobody", "W001") == "Failed to use card: Player nobody not found"


class TestMovement:
    """Tests for move_player_with_effects on the sample board."""

    def test_move_applies_effects(self, store):
        """Arrival effects apply in order after the move."""
        recorder = EventRecorder(store, PlayerMoved, PlayerMovedWithEffects)

        messages = store.move_player_with_effects(P1, "ARCH-INITIATION")

        player = store.get_player(P1)
        assert messages == ["Moved to ARCH-INITIATION", "Spent $5,000", "Spent 5 days"]
        assert player.position == "ARCH-INITIATION"
        assert player.money == -5000
        assert player.has_visited("ARCH-INITIATION")
        assert recorder.of(PlayerMovedWithEffects)[0].all_messages == tuple(messages)
        assert recorder.of(PlayerMoved)[0].previous_position == "OWNER-SCOPE-INITIATION"

    def test_manual_effects_skipped(self, store):
        """Manual card grants wait for the player; the funding group is not auto-applied."""
        messages = store.move_player_with_effects(P1, "OWNER-FUND-INITIATION")

        player = store.get_player(P1)
        assert messages == ["Moved to OWNER-FUND-INITIATION", "Spent 1 day"]
        assert player.cards.count == 0

    def test_funding_draw_small_scope(self, store):
        """A scope of at most $4M is funded with a Bank card."""
        store.move_player_with_effects(P1, "OWNER-FUND-INITIATION")

        messages = store.trigger_funding_card_draw(P1)

        player = store.get_player(P1)
        assert messages == ["Drew 1 Bank card"]
        assert len(player.cards.b) == 1
        assert player.money == player.cards.b[0].int_field("loan_amount")

    def test_funding_draw_large_scope(self, store):
        """A scope above $4M is funded with an Investor card."""
        store.add_work_to_player_scope(P1, 5_000_000, "Structural")
        store.move_player_with_effects(P1, "OWNER-FUND-INITIATION")

        messages = store.trigger_funding_card_draw(P1)

        player = store.get_player(P1)
        assert messages == ["Drew 1 Investor card"]
        assert player.cards.b == ()
        assert len(player.cards.i) == 1

    def test_funding_draw_elsewhere(self, store):
        """Spaces without scope-conditioned funding draw nothing."""
        assert store.trigger_funding_card_draw(P1) == []

    def test_time_per_amount_borrowed(self, store):
        """Review time scales with the amount borrowed."""
        store.update_player(P1, loan_total=1_000_000)

        messages = store.move_player_with_effects(P1, "REG-DOB-FEE-REVIEW")

        assert messages == ["Moved to REG-DOB-FEE-REVIEW", "Spent $1,500", "Spent 5 days"]

    def test_card_removal_effect(self, store, sample_db):
        """A cards/remove_e effect takes an E card from the hand."""
        store.add_cards_to_player(P1, "E", [sample_db.card("E002")])

        messages = store.move_player_with_effects(P1, "CON-INITIATION")

        assert messages == ["Moved to CON-INITIATION", "Spent 10 days", "Removed 1 Expeditor card"]
        assert store.get_player(P1).cards.e == ()

    def test_subsequent_visit_rows(self, store):
        """Subsequent visits use their own effect rows."""
        messages = store.move_player_with_effects(P1, "PM-DECISION-CHECK", VisitType.SUBSEQUENT)
        assert messages == ["Moved to PM-DECISION-CHECK", "Spent 2 days"]

    def test_validation_before_side_effects(self, store):
        """Bad arguments raise before anything changes."""
        before = store.get_state()
        with pytest.raises(MissingArgumentError):
            store.move_player_with_effects(P1, "")
        with pytest.raises(PlayerNotFoundError):
            store.move_player_with_effects("nobody", "ARCH-INITIATION")
        assert store.get_state() is before

    def test_no_data_moves_only(self, bare_store):
        """Without data, a move has no effects."""
        assert bare_store.move_player_with_effects(P1, "ANYWHERE") == ["Moved to ANYWHERE"]


class TestSpaceEffectRows:
    """Tests for space effects over in-memory tables."""

    def test_e_money(self, store_with_rows):
        """An e_money -500 effect spends $500."""
        store = store_with_rows(space_effects=[space_effect_row("S", "e_money", "-500")])

        messages = store.move_player_with_effects(P1, "S")

        assert messages == ["Moved to S", "Spent $500"]
        assert store.get_player(P1).money == -500

    def test_card_grant_without_catalog_creates_stubs(self, store_with_rows):
        """e_cards W 3 with no W cards in the catalog grants three synthetic cards."""
        store = store_with_rows(space_effects=[
            space_effect_row("S", "e_cards", "3", effect_action="draw_w", card_type="W"),
        ])

        messages = store.move_player_with_effects(P1, "S")

        cards = store.get_player(P1).cards.w
        assert messages == ["Moved to S", "Drew 3 Work cards"]
        assert len(cards) == 3
        assert len({card.card_id for card in cards}) == 3

    def test_card_replacement_without_catalog_uses_stubs(self, store_with_rows):
        """Replacing held stubs with no catalog swaps in new stubs and completes the move."""
        store = store_with_rows(space_effects=[
            space_effect_row("A", "w_cards", "2", card_type="W"),
            space_effect_row("B", "money", "100"),
            space_effect_row("B", "cards", "1", effect_action="replace_w"),
        ])
        store.move_player_with_effects(P1, "A")
        before = store.get_player(P1).cards.w

        messages = store.move_player_with_effects(P1, "B")

        player = store.get_player(P1)
        assert messages == ["Moved to B", "Gained $100", "Replaced 1 Work card"]
        assert player.position == "B"
        assert player.money == 100
        assert len(player.cards.w) == 2
        assert before[0] not in player.cards.w
        assert before[1] in player.cards.w
        assert store.get_state().card_decks.w.discarded == ()
        assert store.get_state().error is None

    def test_unsupported_effect_is_reported(self, store_with_rows):
        """An unknown effect type becomes an error while the rest still apply."""
        store = store_with_rows(space_effects=[
            space_effect_row("S", "teleport", "1"),
            space_effect_row("S", "time", "2"),
        ])
        recorder = EventRecorder(store, ErrorOccurred)

        messages = store.move_player_with_effects(P1, "S")

        assert messages == ["Moved to S", "Spent 2 days"]
        assert "Unknown effect type: teleport" in store.get_state().error
        assert recorder.of(ErrorOccurred)[0].context == "processSpaceEffect"

    def test_funding_group_applies_first_match(self, store_with_rows):
        """Only one of the scope-conditioned B/I grants applies."""
        store = store_with_rows(space_effects=[
            space_effect_row("S", "b_cards", "1", condition="scope_le_4M", card_type="B"),
            space_effect_row("S", "i_cards", "1", condition="scope_gt_4M", card_type="I"),
        ])

        store.move_player_with_effects(P1, "S")

        player = store.get_player(P1)
        assert len(player.cards.b) == 1
        assert player.cards.i == ()

    def test_unmet_condition_skipped(self, store_with_rows):
        """Effects whose condition does not hold are skipped."""
        store = store_with_rows(space_effects=[
            space_effect_row("S", "money", "100", condition="scope_gt_4M"),
            space_effect_row("S", "money", "50", condition="no_such_condition"),
        ])

        assert store.move_player_with_effects(P1, "S") == ["Moved to S"]

    def test_dice_effects_wait_for_roll(self, store_with_rows):
        """Dice-dependent space effects are not applied on arrival."""
        store = store_with_rows(space_effects=[
            space_effect_row("S", "time", "5", use_dice="true"),
            space_effect_row("S", "time", "1", condition="dice_roll_3"),
        ])

        assert store.move_player_with_effects(P1, "S") == ["Moved to S"]

    def test_fee_is_always_a_charge(self, store_with_rows):
        """Fee amounts are charged whatever their sign in the data."""
        store = store_with_rows(space_effects=[space_effect_row("S", "fee", "-750")])

        assert store.move_player_with_effects(P1, "S") == ["Moved to S", "Spent $750"]


class TestSnapshots:
    """Tests for negotiation snapshots."""

    def test_restore_uses_space_time_cost(self, store):
        """Restoring undoes the space's effects and charges its time again."""
        store.move_player_with_effects(P1, "ARCH-INITIATION")
        recorder = EventRecorder(store, PlayerStateRestored)

        message = store.restore_player_snapshot(P1)

        player = store.get_player(P1)
        assert message == "Restored state at ARCH-INITIATION. Spent 5 days"
        assert player.money == 0
        assert player.time_spent == 10
        assert recorder.of(PlayerStateRestored)[0].time_penalty == 5

    def test_explicit_penalty(self, store):
        """An explicit penalty overrides the space's time cost."""
        store.move_player_with_effects(P1, "ARCH-INITIATION")
        store.restore_player_snapshot(P1, time_penalty=2)
        assert store.get_player(P1).time_spent == 7

    def test_restore_returns_drawn_cards(self, store):
        """Cards drawn since the snapshot leave the hand and go to discard."""
        store.move_player_with_effects(P1, "OWNER-FUND-INITIATION")
        store.trigger_funding_card_draw(P1)
        drawn = store.get_player(P1).cards.b[0]

        store.restore_player_snapshot(P1)

        assert store.get_player(P1).cards.b == ()
        assert store.get_player(P1).money == 0
        assert drawn in store.get_state().card_decks.b.discarded

    def test_default_penalty_is_one_day(self, bare_store):
        """Without a time cost for the space the penalty is one day."""
        bare_store.restore_player_snapshot(P1)
        assert bare_store.get_player(P1).time_spent == 1

    def test_missing_snapshot(self, store):
        """Restoring without a snapshot raises SnapshotMissingError."""
        store.update_player(P1, space_entry_snapshot=None)
        with pytest.raises(SnapshotMissingError):
            store.restore_player_snapshot(P1)


class TestErrorsAndFlags:
    """Tests for error routing, UI flags and reset."""

    def test_listener_failure_becomes_error_state(self, store):
        """A failing listener is recorded as state.error; the operation still succeeds."""
        def broken(event):
            raise RuntimeError("listener exploded")

        store.on(PlayerMoneyChanged, broken)

        assert store.update_player_money(P1, 10, "test") == "Gained $10"
        assert store.get_state().error == "listener exploded"

    def test_failing_error_listener_does_not_recurse(self, store):
        """An errorOccurred listener that raises is reported once."""
        calls = []

        def broken(event):
            calls.append(event)
            raise RuntimeError("still broken")

        store.on(ErrorOccurred, broken)
        store.handle_error(RuntimeError("first"), "test")

        assert len(calls) == 2
        assert store.get_state().error == "still broken"

    def test_clear_error(self, store):
        """clear_error resets state.error."""
        store.handle_error("oops", "test")
        store.clear_error()
        assert store.get_state().error is None

    def test_modal_and_loading_flags(self, store):
        """UI flags live under state.ui."""
        store.show_modal("cards")
        store.set_loading(True)
        store.set_dice_modal_active(True)
        ui = store.get_state().ui
        assert (ui.active_modal, ui.loading, ui.is_dice_result_modal_active) == ("cards", True, True)

        store.hide_modal()
        assert store.get_state().ui.active_modal is None

    def test_debug_records_history(self, store):
        """Event history is kept only in debug mode."""
        store.update_player_money(P1, 1, "a")
        assert store.event_history() == []

        store.set_debug(True)
        store.update_player_money(P1, 1, "b")
        assert any(isinstance(e, PlayerMoneyChanged) for e in store.event_history())

    def test_reset(self, store):
        """reset returns to the initial state and emits GameReset."""
        recorder = EventRecorder(store, GameReset)
        store.reset()

        state = store.get_state()
        assert state.players == ()
        assert state.game_phase is GamePhase.SETUP
        assert len(recorder.of(GameReset)) == 1
