"""
API Module - Local UI interface.

Exposes the engine via a REST API for a hot-seat UI. The UI:
1. Starts a game
2. Reads state to render the board, hands and required actions
3. Posts dice rolls, card plays and moves
4. Ends turns

All state is in-memory and per game. No accounts, no persistence.
"""

from .schemas import (
    # Requests
    CreateGameRequest,
    MoveRequest,
    UseCardRequest,
    RollDiceRequest,
    CardActionRequest,
    PlayerActionRequest,
    NegotiateRequest,
    EndTurnRequest,
    # Responses
    ActionResponse,
    GameStateResponse,
    ErrorResponse,
    # Enums
    ErrorCode,
)
from .service import APIService
from .app import create_app

__all__ = [
    # Requests
    "CreateGameRequest",
    "MoveRequest",
    "UseCardRequest",
    "RollDiceRequest",
    "CardActionRequest",
    "PlayerActionRequest",
    "NegotiateRequest",
    "EndTurnRequest",
    # Responses
    "ActionResponse",
    "GameStateResponse",
    "ErrorResponse",
    # Enums
    "ErrorCode",
    # Service
    "APIService",
    "create_app",
]
