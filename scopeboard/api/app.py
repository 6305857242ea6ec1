"""
FastAPI Application - REST API for a local game UI.

Endpoints:
    GET    /api/v1/health                       Health check
    POST   /api/v1/games                        Start a game
    GET    /api/v1/games                        List active games
    GET    /api/v1/games/{id}                   Get game state
    DELETE /api/v1/games/{id}                   End a game
    POST   /api/v1/games/{id}/move              Move with space effects
    POST   /api/v1/games/{id}/cards/use         Play a card from hand
    POST   /api/v1/games/{id}/dice              Roll the dice
    POST   /api/v1/games/{id}/card-actions      Draw / remove / replace cards
    POST   /api/v1/games/{id}/actions           Report a completed action
    POST   /api/v1/games/{id}/negotiate         Undo this space for a time penalty
    POST   /api/v1/games/{id}/end-turn          End the current turn

Games live in memory for the life of the process. All responses are JSON
with explicit Pydantic schemas.
"""

from typing import Optional, Union
import logging
import os

# Environment configuration
SCOPEBOARD_ENV = os.getenv("SCOPEBOARD_ENV", "development")
SCOPEBOARD_DATA_DIR = os.getenv("SCOPEBOARD_DATA_DIR", None)
SCOPEBOARD_LOG_LEVEL = os.getenv("SCOPEBOARD_LOG_LEVEL", "INFO")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"GAME_NOT_FOUND", "PLAYER_NOT_FOUND", "CARD_NOT_FOUND"}


def create_app(service=None):
    """
    Create the FastAPI application.

    Args:
        service: Optional APIService instance (creates new if not provided)

    Returns:
        FastAPI application instance
    """
    try:
        from fastapi import FastAPI, Query
        from fastapi.middleware.cors import CORSMiddleware
        from fastapi.responses import JSONResponse
    except ImportError:
        raise ImportError(
            "FastAPI not installed. Install with: pip install fastapi uvicorn"
        )

    from .service import APIService
    from .schemas import (
        # Request models
        CreateGameRequest,
        MoveRequest,
        UseCardRequest,
        RollDiceRequest,
        CardActionRequest,
        PlayerActionRequest,
        NegotiateRequest,
        EndTurnRequest,
        # Response models
        ActionResponse,
        GameStateResponse,
        GameListResponse,
        EndGameResponse,
        ErrorResponse,
        HealthResponse,
        # Enums
        ErrorCode,
    )
    from .. import __version__
    from ..data.database import CSVDatabase
    from ..engine_core.errors import GameError
    from ..session import SessionManager

    logging.getLogger("scopeboard").setLevel(SCOPEBOARD_LOG_LEVEL.upper())

    app = FastAPI(
        title="Scopeboard API",
        description="""
Project Scope board game engine for a hot-seat UI.

## Turn Flow

1. `GET /games/{id}` shows the current player, their space and required actions
2. Complete required actions with `/dice`, `/card-actions` or `/cards/use`
3. `POST /end-turn` with a `destination` from `current_space.available_moves`

## Error Codes

| Code | Description |
|------|-------------|
| `GAME_NOT_FOUND` | Game does not exist |
| `PLAYER_NOT_FOUND` | No such player in the game |
| `CARD_NOT_FOUND` | Card is not in the player's hand |
| `TURN_NOT_COMPLETE` | Required actions remain |
| `EMPTY_DECK` | No cards of that type exist |
        """,
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Service instance
    if service is None:
        database = (
            CSVDatabase.from_directory(SCOPEBOARD_DATA_DIR) if SCOPEBOARD_DATA_DIR else CSVDatabase.sample()
        )
        service = APIService(session_manager=SessionManager(database))
    api_service = service
    logger.info("Scopeboard API starting (%s)", SCOPEBOARD_ENV)

    # =========================================================================
    # Error helpers
    # =========================================================================

    def make_error_response(
        error_code: ErrorCode,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ) -> JSONResponse:
        """Create a standardized error response."""
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=message,
                error_code=error_code,
                details=details,
            ).model_dump(),
        )

    def game_error_response(error: GameError) -> JSONResponse:
        code = error.error_code
        status_code = 404 if code in _NOT_FOUND_CODES else 400
        if code == "TURN_NOT_COMPLETE":
            status_code = 409
        try:
            error_code = ErrorCode(code)
        except ValueError:
            error_code = ErrorCode.INVALID_ACTION
        return make_error_response(error_code, str(error), status_code=status_code)

    def run(call):
        """Invoke a service call, mapping engine errors to ErrorResponse."""
        try:
            return call()
        except GameError as e:
            return game_error_response(e)
        except ValueError as e:
            return make_error_response(ErrorCode.VALIDATION_ERROR, str(e))

    error_responses = {
        400: {"model": ErrorResponse, "description": "Invalid action"},
        404: {"model": ErrorResponse, "description": "Game, player or card not found"},
    }

    # =========================================================================
    # Game Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/games",
        response_model=GameStateResponse,
        responses={400: {"model": ErrorResponse}},
        tags=["Games"],
        summary="Start a new game",
    )
    async def create_game(body: CreateGameRequest) -> Union[GameStateResponse, JSONResponse]:
        """Start a game with 1-4 players on the loaded board."""
        return run(lambda: api_service.create_game(body))

    @app.get(
        "/api/v1/games",
        response_model=GameListResponse,
        tags=["Games"],
        summary="List active games",
    )
    async def list_games() -> GameListResponse:
        games = api_service.list_games()
        return GameListResponse(games=games, count=len(games))

    @app.get(
        "/api/v1/games/{game_id}",
        response_model=GameStateResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["Games"],
        summary="Get game state",
    )
    async def get_game(game_id: str) -> Union[GameStateResponse, JSONResponse]:
        return run(lambda: api_service.get_game(game_id))

    @app.delete(
        "/api/v1/games/{game_id}",
        response_model=EndGameResponse,
        tags=["Games"],
        summary="End a game",
    )
    async def end_game(
        game_id: str,
        reason: str = Query("user_ended", description="Reason for ending"),
    ) -> EndGameResponse:
        """End a game and release its state."""
        success = api_service.end_game(game_id, reason)
        return EndGameResponse(success=success, game_id=game_id)

    # =========================================================================
    # Turn Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/games/{game_id}/move",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Turn"],
        summary="Move the current player to an available space and apply its effects",
    )
    async def move(game_id: str, body: MoveRequest) -> Union[ActionResponse, JSONResponse]:
        return run(lambda: api_service.move(game_id, body))

    @app.post(
        "/api/v1/games/{game_id}/cards/use",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Turn"],
        summary="Play a card from hand",
    )
    async def use_card(game_id: str, body: UseCardRequest) -> Union[ActionResponse, JSONResponse]:
        """
        Apply a card's immediate effect.

        A card that cannot be used stays in hand; the response has
        `success=false` and the reason in `game_state.error`.
        """
        return run(lambda: api_service.use_card(game_id, body))

    @app.post(
        "/api/v1/games/{game_id}/dice",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Turn"],
        summary="Roll the dice",
    )
    async def roll_dice(game_id: str, body: RollDiceRequest) -> Union[ActionResponse, JSONResponse]:
        return run(lambda: api_service.roll_dice(game_id, body))

    @app.post(
        "/api/v1/games/{game_id}/card-actions",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Turn"],
        summary="Draw, remove or replace cards",
    )
    async def card_action(game_id: str, body: CardActionRequest) -> Union[ActionResponse, JSONResponse]:
        return run(lambda: api_service.card_action(game_id, body))

    @app.post(
        "/api/v1/games/{game_id}/actions",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Turn"],
        summary="Report a completed required action",
    )
    async def record_action(game_id: str, body: PlayerActionRequest) -> Union[ActionResponse, JSONResponse]:
        return run(lambda: api_service.record_action(game_id, body))

    @app.post(
        "/api/v1/games/{game_id}/negotiate",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Turn"],
        summary="Undo this space's effects for a time penalty",
    )
    async def negotiate(game_id: str, body: NegotiateRequest) -> Union[ActionResponse, JSONResponse]:
        return run(lambda: api_service.negotiate(game_id, body))

    @app.post(
        "/api/v1/games/{game_id}/end-turn",
        response_model=ActionResponse,
        responses={**error_responses, 409: {"model": ErrorResponse, "description": "Required actions remain"}},
        tags=["Turn"],
        summary="End the current turn",
    )
    async def end_turn(game_id: str, body: EndTurnRequest) -> Union[ActionResponse, JSONResponse]:
        return run(lambda: api_service.end_turn(game_id, body))

    # =========================================================================
    # System Endpoints
    # =========================================================================

    @app.get(
        "/api/v1/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        database = api_service.session_manager.database
        return HealthResponse(
            status="healthy",
            service="scopeboard",
            version=__version__,
            data_loaded=bool(database and database.loaded),
        )

    @app.get("/", tags=["System"])
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Scopeboard API",
            "version": __version__,
            "docs": "/api/docs",
            "health": "/api/v1/health",
        }

    return app
