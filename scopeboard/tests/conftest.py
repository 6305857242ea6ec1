"""
Pytest fixtures for Scopeboard tests.
"""

import random

import pytest

from ..data.database import CSVDatabase
from ..engine_core.state import Card, CardType
from ..engine_core.store import GameStateManager
from ..session.game_manager import GameManager


class EventRecorder:
    """Collects events of the given classes from a store's bus."""

    def __init__(self, store: GameStateManager, *event_classes):
        self.events = []
        for event_cls in event_classes:
            store.on(event_cls, self.events.append)

    def of(self, event_cls):
        return [event for event in self.events if isinstance(event, event_cls)]


def make_card(card_id: str, card_type: str, name: str = "", **attributes) -> Card:
    """Build a card with string attributes, like a cards.csv row."""
    attrs = {key: str(value) for key, value in attributes.items()}
    return Card(card_id=card_id, card_type=CardType.parse(card_type), card_name=name or card_id, attributes=attrs)


def space_effect_row(space_name: str, effect_type: str, effect_value: str, **extra) -> dict:
    """A SPACE_EFFECTS row for a first visit with an always-true condition."""
    row = {
        "space_name": space_name,
        "visit_type": "First",
        "effect_type": effect_type,
        "effect_action": "add",
        "effect_value": effect_value,
        "condition": "always",
        "trigger_type": "auto",
        "use_dice": "false",
        "card_type": "",
    }
    row.update(extra)
    return row


@pytest.fixture
def sample_db() -> CSVDatabase:
    """The bundled sample board."""
    return CSVDatabase.sample()


@pytest.fixture
def store(sample_db: CSVDatabase) -> GameStateManager:
    """A two-player game on the sample board, Alice to move."""
    store = GameStateManager(database=sample_db, rng=random.Random(7))
    store.initialize_game(["Alice", "Bob"])
    return store


@pytest.fixture
def manager(store: GameStateManager) -> GameManager:
    return GameManager(store)


@pytest.fixture
def bare_store() -> GameStateManager:
    """A two-player game with no data loaded."""
    store = GameStateManager(rng=random.Random(7))
    store.initialize_game(["Alice", "Bob"])
    return store


@pytest.fixture
def store_with_rows():
    """Factory: a one-player game over in-memory tables."""

    def build(players=("Alice",), **tables) -> GameStateManager:
        store = GameStateManager(database=CSVDatabase.from_rows(**tables), rng=random.Random(7))
        store.initialize_game(list(players))
        return store

    return build
