"""
Tests for API layer.

Tests:
- API service methods
- Request/response serialization
- Session lifecycle via API
- HTTP error mapping
"""

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from ..api.app import create_app
from ..api.schemas import (
    ActionType,
    CardActionRequest,
    CreateGameRequest,
    EndTurnRequest,
    ErrorCode,
    NegotiateRequest,
    PlayerActionRequest,
    PlayerSetup,
    RollDiceRequest,
    UseCardRequest,
)
from ..api.service import APIService
from ..engine_core.errors import GameNotFoundError, TurnNotCompleteError
from ..session import SessionManager

P1 = "player_1"


def two_players(**kwargs):
    return CreateGameRequest(players=[PlayerSetup(name="Alice"), PlayerSetup(name="Bob")], seed=3, **kwargs)


class TestAPIService:
    """Tests for APIService."""

    @pytest.fixture
    def service(self, sample_db):
        """Create a fresh API service on the sample board."""
        return APIService(session_manager=SessionManager(sample_db))

    @pytest.fixture
    def game_id(self, service):
        return service.create_game(two_players()).game_id

    def test_create_game(self, service):
        """A new game starts with Alice on the starting space."""
        response = service.create_game(two_players(starting_money=500))

        assert response.game_phase == "PLAYING"
        assert response.current_player == P1
        assert [p.name for p in response.players] == ["Alice", "Bob"]
        assert all(p.money == 500 for p in response.players)
        assert response.players[0].is_current_turn is True
        assert response.current_space.space_name == "OWNER-SCOPE-INITIATION"
        assert response.current_space.title == "Define the Scope"
        assert response.current_turn.can_end_turn is False
        assert response.current_turn.required_actions[0].type is ActionType.CARD

    def test_get_and_list(self, service, game_id):
        assert service.get_game(game_id).game_id == game_id
        assert service.list_games() == [game_id]

    def test_missing_game(self, service):
        with pytest.raises(GameNotFoundError):
            service.get_game("nonexistent-id")

    def test_end_game(self, service, game_id):
        """Ended games are gone; ending twice reports False."""
        assert service.end_game(game_id) is True
        assert service.end_game(game_id) is False
        assert service.list_games() == []

    def test_card_action_and_end_turn(self, service, game_id):
        """Drawing the scope cards lets Alice move on."""
        response = service.card_action(game_id, CardActionRequest(player_id=P1, card_type="W", action="Draw 2"))

        assert response.success is True
        assert response.messages == ["Drew 2 Work cards"]
        alice = response.game_state.players[0]
        assert len(alice.cards["W"]) == 2
        assert response.game_state.current_space.available_moves == ["OWNER-FUND-INITIATION"]

        response = service.end_turn(game_id, EndTurnRequest(player_id=P1, destination="OWNER-FUND-INITIATION"))

        assert response.messages == ["Bob's turn"]
        assert response.game_state.current_player == "player_2"
        assert response.game_state.players[0].position == "OWNER-FUND-INITIATION"

    def test_end_turn_too_early(self, service, game_id):
        with pytest.raises(TurnNotCompleteError):
            service.end_turn(game_id, EndTurnRequest(player_id=P1))

    def test_failed_card_use(self, service, game_id):
        """A card that cannot be used reports success=False and the reason."""
        response = service.use_card(game_id, UseCardRequest(player_id=P1, card_id="W999"))

        assert response.success is False
        assert "W999" in response.game_state.error

    def test_dice(self, service, game_id):
        """A roll off a dice space is recorded but leads nowhere."""
        response = service.roll_dice(game_id, RollDiceRequest(player_id=P1, roll=2))

        assert response.dice_roll == 2
        assert response.destination is None
        assert response.game_state.current_turn.last_dice_roll == 2

    def test_record_action(self, service, game_id):
        """Reported actions complete pending requirements once."""
        request = PlayerActionRequest(player_id=P1, action_type="card", details={"note": "drawn by hand"})

        assert service.record_action(game_id, request).messages == ["Action completed"]
        response = service.record_action(game_id, request)
        assert response.success is False
        assert response.messages == ["Action ignored"]

    def test_negotiate(self, service, game_id):
        response = service.negotiate(game_id, NegotiateRequest(player_id=P1, time_penalty=2))

        assert response.messages == ["Restored state at OWNER-SCOPE-INITIATION. Spent 2 days", "Bob's turn"]
        assert response.game_state.players[0].time_spent == 2

    def test_sessions_are_independent(self, service):
        """Two games never share state."""
        first = service.create_game(two_players()).game_id
        second = service.create_game(two_players()).game_id

        service.card_action(first, CardActionRequest(player_id=P1, card_type="W", action="Draw 2"))

        assert service.get_game(second).players[0].cards["W"] == []


class TestSchemas:
    """Tests for request validation."""

    @pytest.mark.parametrize("players", [[], [{"name": f"P{i}"} for i in range(5)], [{"name": ""}]])
    def test_create_game_players(self, players):
        with pytest.raises(ValidationError):
            CreateGameRequest(players=players)

    def test_roll_range(self):
        with pytest.raises(ValidationError):
            RollDiceRequest(player_id=P1, roll=7)

    def test_error_code_values(self):
        assert ErrorCode.TURN_NOT_COMPLETE.value == "TURN_NOT_COMPLETE"
        assert ErrorCode("GAME_NOT_FOUND") is ErrorCode.GAME_NOT_FOUND


class TestHTTP:
    """Tests for the FastAPI routes."""

    @pytest.fixture
    def client(self, sample_db):
        service = APIService(session_manager=SessionManager(sample_db))
        return TestClient(create_app(service))

    @pytest.fixture
    def game_id(self, client):
        response = client.post("/api/v1/games", json={"players": [{"name": "Alice"}, {"name": "Bob"}], "seed": 3})
        assert response.status_code == 200
        return response.json()["game_id"]

    def test_health(self, client):
        body = client.get("/api/v1/health").json()
        assert body["status"] == "healthy"
        assert body["data_loaded"] is True

    def test_game_lifecycle(self, client, game_id):
        """Games can be fetched, listed and deleted."""
        assert client.get(f"/api/v1/games/{game_id}").json()["current_player"] == P1
        assert client.get("/api/v1/games").json() == {"games": [game_id], "count": 1}

        assert client.delete(f"/api/v1/games/{game_id}").json() == {"success": True, "game_id": game_id}
        response = client.get(f"/api/v1/games/{game_id}")
        assert response.status_code == 404
        assert response.json()["error_code"] == "GAME_NOT_FOUND"

    def test_turn_not_complete(self, client, game_id):
        response = client.post(f"/api/v1/games/{game_id}/end-turn", json={"player_id": P1})

        assert response.status_code == 409
        assert response.json()["error_code"] == "TURN_NOT_COMPLETE"

    def test_draw_and_end_turn(self, client, game_id):
        response = client.post(
            f"/api/v1/games/{game_id}/card-actions",
            json={"player_id": P1, "card_type": "W", "action": "Draw 2"},
        )
        assert response.status_code == 200
        assert response.json()["messages"] == ["Drew 2 Work cards"]

        response = client.post(
            f"/api/v1/games/{game_id}/end-turn",
            json={"player_id": P1, "destination": "OWNER-FUND-INITIATION"},
        )
        assert response.status_code == 200
        assert response.json()["game_state"]["current_player"] == "player_2"

    def test_unknown_card_type(self, client, game_id):
        """Bad card types are validation errors."""
        response = client.post(
            f"/api/v1/games/{game_id}/card-actions",
            json={"player_id": P1, "card_type": "X", "action": "Draw 1"},
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_unknown_player(self, client, game_id):
        response = client.post(f"/api/v1/games/{game_id}/dice", json={"player_id": "nobody", "roll": 3})

        assert response.status_code == 404
        assert response.json()["error_code"] == "PLAYER_NOT_FOUND"

    def test_second_roll_refused(self, client, game_id):
        """Only one roll is allowed per turn."""
        assert client.post(f"/api/v1/games/{game_id}/dice", json={"player_id": P1, "roll": 3}).status_code == 200

        response = client.post(f"/api/v1/games/{game_id}/dice", json={"player_id": P1, "roll": 4})

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_ACTION"

    def test_move_checks_turn_and_destination(self, client, game_id):
        """Moves are for the current player along the board's paths."""
        url = f"/api/v1/games/{game_id}/move"

        out_of_turn = client.post(url, json={"player_id": "player_2", "destination": "OWNER-FUND-INITIATION"})
        assert out_of_turn.status_code == 400
        assert client.post(url, json={"player_id": P1, "destination": "FINISH"}).status_code == 400

        response = client.post(url, json={"player_id": P1, "destination": "OWNER-FUND-INITIATION"})
        assert response.status_code == 200
        assert response.json()["game_state"]["players"][0]["position"] == "OWNER-FUND-INITIATION"

    def test_roll_out_of_range(self, client, game_id):
        response = client.post(f"/api/v1/games/{game_id}/dice", json={"player_id": P1, "roll": 7})
        assert response.status_code == 422

    def test_failed_card_use(self, client, game_id):
        response = client.post(f"/api/v1/games/{game_id}/cards/use", json={"player_id": P1, "card_id": "E001"})

        assert response.status_code == 200
        assert response.json()["success"] is False
