"""
API Service - Business logic layer between API and engine.

The service:
1. Translates API requests to GameManager / store calls
2. Manages sessions
3. Formats state for the UI

This layer is framework-agnostic (can be used with FastAPI, Flask, etc.)
Engine errors propagate as GameError; the web layer maps them to
ErrorResponse.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging

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
    # Shared
    CardInfo,
    PlayerInfo,
    ScopeItemInfo,
    RequiredActionInfo,
    SpaceInfo,
    TurnInfo,
)
from ..data.database import CSVDatabase
from ..engine_core.state import Card, GameSettings, PlayerState
from ..session import Session, SessionManager

logger = logging.getLogger(__name__)


def _default_session_manager() -> SessionManager:
    return SessionManager(CSVDatabase.sample())


@dataclass
class APIService:
    """
    Main API service for a local game UI.

    Usage:
        service = APIService()

        state = service.create_game(CreateGameRequest(players=[...]))
        response = service.roll_dice(state.game_id, RollDiceRequest(player_id="player_1"))
    """
    session_manager: SessionManager = field(default_factory=_default_session_manager)

    # =========================================================================
    # Games
    # =========================================================================

    def create_game(self, request: CreateGameRequest) -> GameStateResponse:
        settings = GameSettings(
            starting_money=request.starting_money,
            debug_mode=request.debug_mode,
        )
        players = [player.model_dump(exclude_none=True) for player in request.players]
        session = self.session_manager.create_session(players, settings, seed=request.seed)
        return self._state_response(session)

    def get_game(self, game_id: str) -> GameStateResponse:
        return self._state_response(self.session_manager.require_session(game_id))

    def list_games(self) -> list[str]:
        return self.session_manager.list_active_sessions()

    def end_game(self, game_id: str, reason: str = "user_ended") -> bool:
        return self.session_manager.end_session(game_id, reason)

    # =========================================================================
    # Actions
    # =========================================================================

    def move(self, game_id: str, request: MoveRequest) -> ActionResponse:
        session = self.session_manager.require_session(game_id)
        messages = session.manager.move_player(request.player_id, request.destination, request.visit_type)
        return self._action_response(session, messages)

    def use_card(self, game_id: str, request: UseCardRequest) -> ActionResponse:
        session = self.session_manager.require_session(game_id)
        message = session.manager.use_card(request.player_id, request.card_id)
        # use_player_card reports failure in state rather than raising
        success = not message.startswith("Failed to use card")
        return self._action_response(session, [message], success=success)

    def roll_dice(self, game_id: str, request: RollDiceRequest) -> ActionResponse:
        session = self.session_manager.require_session(game_id)
        result = session.manager.roll_dice(request.player_id, request.roll)
        return self._action_response(
            session,
            result.messages,
            dice_roll=result.roll,
            destination=result.destination,
        )

    def card_action(self, game_id: str, request: CardActionRequest) -> ActionResponse:
        session = self.session_manager.require_session(game_id)
        message = session.manager.perform_card_action(request.player_id, request.card_type, request.action)
        return self._action_response(session, [message])

    def record_action(self, game_id: str, request: PlayerActionRequest) -> ActionResponse:
        session = self.session_manager.require_session(game_id)
        completed = session.store.process_player_action(
            request.player_id, request.action_type.value, request.details
        )
        message = "Action completed" if completed else "Action ignored"
        return self._action_response(session, [message], success=completed)

    def negotiate(self, game_id: str, request: NegotiateRequest) -> ActionResponse:
        session = self.session_manager.require_session(game_id)
        messages = session.manager.negotiate(request.player_id, request.time_penalty)
        return self._action_response(session, messages)

    def end_turn(self, game_id: str, request: EndTurnRequest) -> ActionResponse:
        session = self.session_manager.require_session(game_id)
        next_player = session.manager.end_turn(request.player_id, request.destination)
        return self._action_response(session, [f"{next_player.name}'s turn"])

    # =========================================================================
    # Conversion Helpers
    # =========================================================================

    def _action_response(
        self,
        session: Session,
        messages: list[str],
        success: bool = True,
        dice_roll: int | None = None,
        destination: str | None = None,
    ) -> ActionResponse:
        return ActionResponse(
            success=success,
            game_id=session.session_id,
            messages=messages,
            dice_roll=dice_roll,
            destination=destination,
            game_state=self._state_response(session),
        )

    def _state_response(self, session: Session) -> GameStateResponse:
        state = session.game_state
        turn = state.current_turn
        return GameStateResponse(
            game_id=session.session_id,
            game_phase=state.game_phase.value,
            current_player=state.current_player,
            turn_count=state.turn_count,
            players=[
                _player_info(player, player.player_id == state.current_player)
                for player in state.players
            ],
            current_turn=TurnInfo(
                player_id=turn.player_id,
                turn_number=turn.turn_number,
                required_actions=[
                    RequiredActionInfo(
                        type=action.type.value,
                        completed=action.completed,
                        description=action.description,
                        card_types=list(action.card_types),
                    )
                    for action in turn.required_actions
                ],
                required=turn.action_counts.required,
                completed=turn.action_counts.completed,
                can_end_turn=turn.can_end_turn,
                last_dice_roll=turn.last_dice_roll,
            ),
            current_space=self._space_info(session),
            error=state.error,
            last_action=state.last_action,
        )

    def _space_info(self, session: Session) -> SpaceInfo | None:
        player = session.game_state.current_player_state
        if player is None:
            return None
        content = {}
        if session.store.data_ready:
            content = session.store.database.space_content(player.position, player.visit_type) or {}
        return SpaceInfo(
            space_name=player.position,
            visit_type=player.visit_type.value,
            title=content.get("title"),
            story=content.get("story"),
            action_description=content.get("action_description"),
            available_moves=session.manager.available_moves(player.player_id),
        )


def _card_info(card: Card) -> CardInfo:
    return CardInfo(
        card_id=card.card_id,
        card_type=card.card_type.value,
        card_name=card.card_name,
        description=card.description,
        immediate_effect=card.immediate_effect,
        attributes={key: value for key, value in card.attributes.items() if value},
    )


def _player_info(player: PlayerState, is_current: bool) -> PlayerInfo:
    return PlayerInfo(
        player_id=player.player_id,
        name=player.name,
        color=player.color,
        avatar=player.avatar,
        position=player.position,
        visit_type=player.visit_type.value,
        money=player.money,
        time_spent=player.time_spent,
        loan_total=player.loan_total,
        scope_total_cost=player.scope_total_cost,
        scope_items=[ScopeItemInfo.model_validate(item) for item in player.scope_items],
        cards={
            card_type.value: [_card_info(card) for card in cards]
            for card_type, cards in player.cards.items()
        },
        skip_next_turn=player.skip_next_turn,
        has_snapshot=player.space_entry_snapshot is not None,
        is_current_turn=is_current,
    )
