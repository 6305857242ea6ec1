"""
Pydantic Schemas for API - Request/response models for OpenAPI.

These models define the contract between a local UI and the engine.
All responses include explicit types for OpenAPI schema generation.

Error Codes:
- GAME_NOT_FOUND: Game does not exist or has ended
- PLAYER_NOT_FOUND: No player with that id in the game
- CARD_NOT_FOUND: The card is not in the player's hand
- TURN_NOT_COMPLETE: Required actions remain before the turn can end
- EMPTY_DECK: A draw was requested for a card type with no cards
- INVALID_ACTION: The action is not allowed right now
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class ErrorCode(str, Enum):
    """Structured error codes."""
    GAME_NOT_FOUND = "GAME_NOT_FOUND"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    CARD_NOT_FOUND = "CARD_NOT_FOUND"
    INVALID_ACTION = "INVALID_ACTION"
    TURN_NOT_COMPLETE = "TURN_NOT_COMPLETE"
    EMPTY_DECK = "EMPTY_DECK"
    UNSUPPORTED_EFFECT = "UNSUPPORTED_EFFECT"
    CARD_EFFECT_FAILED = "CARD_EFFECT_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ActionType(str, Enum):
    """Required turn actions a UI can report."""
    DICE = "dice"
    CARD = "card"


# =============================================================================
# Shared Models
# =============================================================================

class CardInfo(BaseModel):
    """Card information for display."""
    card_id: str
    card_type: str
    card_name: str
    description: str = ""
    immediate_effect: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)

    model_config = {"from_attributes": True}


class ScopeItemInfo(BaseModel):
    """Work of one type in a player's project scope."""
    work_type: str
    cost: int
    count: int = 1

    model_config = {"from_attributes": True}


class PlayerInfo(BaseModel):
    """Player information for display."""
    player_id: str
    name: str
    color: str
    avatar: str = ""
    position: str
    visit_type: str
    money: int
    time_spent: int
    loan_total: int = 0
    scope_total_cost: int = 0
    scope_items: list[ScopeItemInfo] = Field(default_factory=list)
    cards: dict[str, list[CardInfo]] = Field(default_factory=dict)
    skip_next_turn: bool = False
    has_snapshot: bool = False
    is_current_turn: bool = False


class RequiredActionInfo(BaseModel):
    """An action the current player must complete."""
    type: ActionType
    completed: bool = False
    description: str = ""
    card_types: list[str] = Field(default_factory=list)


class TurnInfo(BaseModel):
    """Required-action progress for the current turn."""
    player_id: Optional[str] = None
    turn_number: int = 0
    required_actions: list[RequiredActionInfo] = Field(default_factory=list)
    required: int = 0
    completed: int = 0
    can_end_turn: bool = True
    last_dice_roll: Optional[int] = None


class SpaceInfo(BaseModel):
    """The current player's space and where they can go."""
    space_name: str
    visit_type: str
    title: Optional[str] = None
    story: Optional[str] = None
    action_description: Optional[str] = None
    available_moves: list[str] = Field(default_factory=list)


# =============================================================================
# Request Models
# =============================================================================

class PlayerSetup(BaseModel):
    """One player at game creation."""
    name: str = Field(..., min_length=1, description="Display name")
    player_id: Optional[str] = Field(None, description="Defaults to player_<n>")
    color: Optional[str] = Field(None, description="CSS color for the token")
    avatar: Optional[str] = None


class CreateGameRequest(BaseModel):
    """Request to start a new game."""
    players: list[PlayerSetup] = Field(..., min_length=1, max_length=4)
    starting_money: int = Field(0, description="Money each player starts with")
    debug_mode: bool = Field(False, description="Record event history")
    seed: Optional[int] = Field(None, description="Seed for reproducible shuffles and dice")


class MoveRequest(BaseModel):
    player_id: str
    destination: str = Field(..., min_length=1)
    visit_type: Optional[str] = Field(None, description="First or Subsequent; inferred when omitted")


class UseCardRequest(BaseModel):
    player_id: str
    card_id: str


class RollDiceRequest(BaseModel):
    player_id: str
    roll: Optional[int] = Field(None, ge=1, le=6, description="Rolled by the server when omitted")


class CardActionRequest(BaseModel):
    player_id: str
    card_type: str = Field(..., description="W, B, I, L or E")
    action: str = Field(..., description="Draw N, Remove N, Replace N or Roll dice")


class PlayerActionRequest(BaseModel):
    player_id: str
    action_type: ActionType
    details: Optional[dict[str, Any]] = None


class NegotiateRequest(BaseModel):
    player_id: str
    time_penalty: Optional[int] = Field(None, ge=0, description="Defaults to the space's time cost")


class EndTurnRequest(BaseModel):
    player_id: str
    destination: Optional[str] = Field(None, description="Move here before ending the turn")


# =============================================================================
# Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Human-readable error message")
    error_code: ErrorCode = Field(..., description="Machine-readable error code")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error context")
    api_version: str = Field("v1", description="API version")


class GameStateResponse(BaseModel):
    """Full game state for rendering."""
    game_id: str
    game_phase: str
    current_player: Optional[str] = None
    turn_count: int = 0
    players: list[PlayerInfo] = Field(default_factory=list)
    current_turn: TurnInfo = Field(default_factory=TurnInfo)
    current_space: Optional[SpaceInfo] = None
    error: Optional[str] = None
    last_action: Optional[str] = None
    api_version: str = "v1"


class ActionResponse(BaseModel):
    """Result of a game action plus the updated state."""
    success: bool
    game_id: str
    messages: list[str] = Field(default_factory=list)
    dice_roll: Optional[int] = None
    destination: Optional[str] = None
    game_state: GameStateResponse


class GameListResponse(BaseModel):
    """Response listing active games."""
    games: list[str]
    count: int


class EndGameResponse(BaseModel):
    """Response after ending a game."""
    success: bool
    game_id: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    data_loaded: bool = False
