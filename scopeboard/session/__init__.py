"""
Session Module - In-memory games and their orchestration.

A session represents one play-through:
- Created when players start a game
- Holds the game's GameStateManager
- Routes UI requests through a GameManager
- Destroyed when the game ends

Sessions are EPHEMERAL: there is no persistence.
"""

from .game_manager import GameManager, DiceRollResult
from .manager import SessionManager, Session, SessionState

__all__ = [
    "GameManager",
    "DiceRollResult",
    "SessionManager",
    "Session",
    "SessionState",
]
