"""
CSV Database - Read-only query layer over the game's CSV data files.

Files (all optional except where noted):
    MOVEMENT.csv        space_name, visit_type, destination_1..destination_5
    DICE_OUTCOMES.csv   space_name, visit_type, roll_1..roll_6 (destinations)
    SPACE_EFFECTS.csv   space_name, visit_type, effect_type, effect_action,
                        effect_value, condition, trigger_type, use_dice, card_type
    DICE_EFFECTS.csv    space_name, visit_type, effect_type, card_type, roll_1..roll_6
    SPACE_CONTENT.csv   space_name, visit_type, title, story, action_description
    GAME_CONFIG.csv     space_name, phase, is_starting_space, ...
    cards.csv           card_id, card_type, card_name, immediate_effect, ...

Missing rows are empty results, never errors. An unloaded database
answers every query with an empty result.
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Iterable, Mapping
import csv
import logging

from ..engine_core.state import Card, CardType, VisitType, parse_int

logger = logging.getLogger(__name__)


SAMPLE_DIR = Path(__file__).parent / "sample"

TABLE_FILES = {
    "movement": "MOVEMENT.csv",
    "dice_outcomes": "DICE_OUTCOMES.csv",
    "space_effects": "SPACE_EFFECTS.csv",
    "dice_effects": "DICE_EFFECTS.csv",
    "space_content": "SPACE_CONTENT.csv",
    "game_config": "GAME_CONFIG.csv",
    "cards": "cards.csv",
}

Row = dict[str, str]

_CARD_EFFECT_TYPES = {f"{t.attr}_cards": t for t in CardType}


def _clean_row(row: Mapping[str, Any]) -> Row:
    return {
        str(key).strip(): "" if value is None else str(value).strip()
        for key, value in row.items()
        if key is not None
    }


def _visit_value(visit_type: VisitType | str | None) -> str:
    return VisitType.parse(visit_type).value


class CSVDatabase:
    """
    In-memory tables loaded from CSV.

    Usage:
        db = CSVDatabase.from_directory("data/")
        db.space_effects("OWNER-SCOPE-INITIATION", "First")
    """

    def __init__(self, tables: Mapping[str, Iterable[Mapping[str, Any]]] | None = None):
        self._tables: dict[str, list[Row]] = {name: [] for name in TABLE_FILES}
        self._cards: list[Card] = []
        self._cards_by_id: dict[str, Card] = {}
        self.loaded = False
        if tables is not None:
            self.load_rows(tables)

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    def from_directory(cls, path: str | Path) -> CSVDatabase:
        """Load every known CSV file present in `path`."""
        directory = Path(path)
        if not directory.is_dir():
            raise FileNotFoundError(f"Data directory not found: {directory}")

        tables: dict[str, list[Row]] = {}
        for name, filename in TABLE_FILES.items():
            file_path = directory / filename
            if not file_path.exists():
                logger.debug("Skipping missing data file %s", file_path)
                continue
            with open(file_path, newline="", encoding="utf-8-sig") as f:
                tables[name] = [_clean_row(row) for row in csv.DictReader(f)]
            logger.debug("Loaded %d rows from %s", len(tables[name]), filename)

        return cls(tables)

    @classmethod
    def from_rows(cls, **tables: Iterable[Mapping[str, Any]]) -> CSVDatabase:
        unknown = set(tables) - set(TABLE_FILES)
        if unknown:
            raise ValueError(f"Unknown tables: {', '.join(sorted(unknown))}")
        return cls(tables)

    @classmethod
    def sample(cls) -> CSVDatabase:
        """The small board bundled with the package."""
        return cls.from_directory(SAMPLE_DIR)

    def load_rows(self, tables: Mapping[str, Iterable[Mapping[str, Any]]]) -> None:
        for name, rows in tables.items():
            if name not in TABLE_FILES:
                raise ValueError(f"Unknown table: {name}")
            self._tables[name] = [_clean_row(row) for row in rows]

        self._cards = [Card.from_row(row) for row in self._tables["cards"] if row.get("card_id")]
        self._cards_by_id = {card.card_id: card for card in self._cards}
        self.loaded = True
        logger.info(
            "CSV database loaded: %d spaces, %d space effects, %d cards",
            len(self.spaces()),
            len(self._tables["space_effects"]),
            len(self._cards),
        )

    # =========================================================================
    # Generic queries
    # =========================================================================

    def query(self, table: str, **filters: str) -> list[Row]:
        """Rows of `table` whose columns equal every filter (case-insensitive)."""
        if not self.loaded:
            return []
        wanted = {key: str(value).lower() for key, value in filters.items()}
        return [
            row for row in self._tables[table]
            if all(row.get(key, "").lower() == value for key, value in wanted.items())
        ]

    def find(self, table: str, space_name: str, visit_type: VisitType | str | None = None) -> list[Row]:
        return self.query(table, space_name=space_name, visit_type=_visit_value(visit_type))

    def spaces(self) -> list[str]:
        names: dict[str, None] = {}
        for table in ("game_config", "movement", "space_effects"):
            for row in self._tables[table]:
                if row.get("space_name"):
                    names.setdefault(row["space_name"], None)
        return list(names)

    # =========================================================================
    # Space queries
    # =========================================================================

    def space_effects(self, space_name: str, visit_type: VisitType | str | None = None) -> list[Row]:
        return self.find("space_effects", space_name, visit_type)

    def dice_effects(self, space_name: str, visit_type: VisitType | str | None = None) -> list[Row]:
        return self.find("dice_effects", space_name, visit_type)

    def dice_outcome(self, space_name: str, visit_type: VisitType | str | None = None) -> Row | None:
        rows = self.find("dice_outcomes", space_name, visit_type)
        return rows[0] if rows else None

    def space_content(self, space_name: str, visit_type: VisitType | str | None = None) -> Row | None:
        rows = self.find("space_content", space_name, visit_type)
        return rows[0] if rows else None

    def destinations(self, space_name: str, visit_type: VisitType | str | None = None) -> list[str]:
        """Fixed destinations from MOVEMENT.csv, in column order."""
        destinations = []
        for row in self.find("movement", space_name, visit_type):
            for index in range(1, 6):
                value = row.get(f"destination_{index}", "")
                if value and value not in destinations:
                    destinations.append(value)
        return destinations

    def dice_destination(self, space_name: str, visit_type: VisitType | str | None, roll: int) -> str | None:
        outcome = self.dice_outcome(space_name, visit_type)
        if not outcome:
            return None
        return outcome.get(f"roll_{roll}") or None

    def starting_space(self) -> str | None:
        for row in self._tables["game_config"]:
            if row.get("is_starting_space", "").lower() in ("yes", "true", "1"):
                return row["space_name"]
        return None

    def is_ending_space(self, space_name: str) -> bool:
        for row in self.query("game_config", space_name=space_name):
            if row.get("is_ending_space", "").lower() in ("yes", "true", "1"):
                return True
        return False

    def space_time_cost(self, space_name: str, visit_type: VisitType | str | None = None) -> int | None:
        """Days a plain visit to the space costs, or None when it has no time effect."""
        total = None
        for row in self.space_effects(space_name, visit_type):
            if row.get("effect_type", "").lower() not in ("time", "e_time"):
                continue
            if row.get("effect_action", "").lower() not in ("", "add"):
                continue
            total = (total or 0) + parse_int(row.get("effect_value"))
        return total

    def requires_dice_roll(self, space_name: str, visit_type: VisitType | str | None = None) -> bool:
        if self.dice_outcome(space_name, visit_type):
            return True
        return any(
            row.get("use_dice", "").lower() in ("true", "yes", "1")
            for row in self.space_effects(space_name, visit_type)
        )

    def card_actions(self, space_name: str, visit_type: VisitType | str | None = None) -> list[dict[str, str]]:
        """
        Card buttons a space offers, one per card type.

        Each entry is {"card_type", "action", "condition", "trigger_type"},
        where action reads like "Draw 2" or "Roll dice".
        """
        actions: dict[str, dict[str, str]] = {}
        for row in self.space_effects(space_name, visit_type):
            effect_type = row.get("effect_type", "").lower()
            card_type = None
            if effect_type in _CARD_EFFECT_TYPES:
                card_type = row.get("card_type") or _CARD_EFFECT_TYPES[effect_type].value
                verb = "Draw"
            elif effect_type == "cards" and "_" in row.get("effect_action", ""):
                verb, letter = row["effect_action"].split("_", 1)
                card_type = letter
                verb = verb.capitalize()
            if not card_type:
                continue

            card_type = card_type.upper()
            if row.get("use_dice", "").lower() in ("true", "yes", "1") or row.get("effect_value", "").lower() == "dice":
                action = "Roll dice"
            else:
                action = f"{verb} {parse_int(row.get('effect_value')) or 1}"
            actions.setdefault(card_type, {
                "card_type": card_type,
                "action": action,
                "condition": row.get("condition", ""),
                "trigger_type": row.get("trigger_type", ""),
            })
        return list(actions.values())

    # =========================================================================
    # Card queries
    # =========================================================================

    def cards(self, card_type: CardType | str | None = None) -> list[Card]:
        if card_type is None:
            return list(self._cards)
        card_type = CardType.parse(card_type)
        return [card for card in self._cards if card.card_type is card_type]

    def card(self, card_id: str) -> Card | None:
        return self._cards_by_id.get(card_id)

    def status(self) -> dict[str, Any]:
        return {
            "loaded": self.loaded,
            "tables": {name: len(rows) for name, rows in self._tables.items()},
            "cards_by_type": {t.value: len(self.cards(t)) for t in CardType},
        }
