"""
Session Manager - Creates and tracks in-memory games.

A session is one play-through:
- Created when players start a game
- Owns its GameStateManager and the GameManager bound to it
- Removed when the game ends

Sessions are EPHEMERAL: nothing is persisted. All sessions share one
read-only CSVDatabase.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, TYPE_CHECKING
import logging
import random
import time
import uuid

from ..engine_core.state import GamePhase, GameSettings, GameState
from ..engine_core.errors import GameNotFoundError
from ..engine_core.store import GameStateManager
from .game_manager import GameManager

if TYPE_CHECKING:
    from ..data.database import CSVDatabase

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """State of a game session."""
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass
class Session:
    """One game: its store, its orchestrator and some metadata."""
    session_id: str
    store: GameStateManager
    manager: GameManager
    created_at: float
    state: SessionState = SessionState.ACTIVE
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def game_state(self) -> GameState:
        return self.store.get_state()

    def is_active(self) -> bool:
        return (
            self.state is SessionState.ACTIVE
            and self.game_state.game_phase is not GamePhase.COMPLETED
        )


class SessionManager:
    """
    Manages game sessions.

    No persistence - sessions are in-memory only.
    """

    def __init__(self, database: CSVDatabase | None = None):
        self.database = database
        self._sessions: dict[str, Session] = {}

    def create_session(
        self,
        players: Iterable[str | Mapping[str, Any]],
        settings: GameSettings | Mapping[str, Any] | None = None,
        seed: int | None = None,
    ) -> Session:
        """
        Start a new game.

        Args:
            players: Player names or player dicts (name, id, color, ...)
            settings: GameSettings or a dict of overrides
            seed: Seed for deck shuffles and dice, for reproducible games
        """
        store = GameStateManager(database=self.database, rng=random.Random(seed))
        manager = GameManager(store)
        store.initialize_game(list(players), settings)

        session = Session(
            session_id=str(uuid.uuid4()),
            store=store,
            manager=manager,
            created_at=time.time(),
            metadata={"seed": seed},
        )
        self._sessions[session.session_id] = session
        logger.info("Created session %s with %d players", session.session_id, len(store.get_state().players))
        return session

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def require_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise GameNotFoundError(session_id)
        return session

    def end_session(self, session_id: str, reason: str = "completed") -> bool:
        """Remove a session. Returns False when it did not exist."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.state = SessionState.COMPLETED if reason == "completed" else SessionState.ABANDONED
        session.manager.detach()
        logger.info("Ended session %s (%s)", session_id, reason)
        return True

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def list_active_sessions(self) -> list[str]:
        return [sid for sid, session in self._sessions.items() if session.is_active()]

    def cleanup_stale_sessions(self, max_age_seconds: int = 3600) -> int:
        """Drop finished sessions older than max_age. Returns how many were removed."""
        now = time.time()
        stale = [
            sid for sid, session in self._sessions.items()
            if now - session.created_at > max_age_seconds and not session.is_active()
        ]
        for session_id in stale:
            self.end_session(session_id, reason="stale")
        return len(stale)
