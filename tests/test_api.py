"""Tests for the FastAPI lobby socket and REST endpoints."""

from __future__ import annotations

import pytest
from fastapi import BackgroundTasks, WebSocketDisconnect

from gridxo import server


def _join(socket, lobby_id, width=3, height=3):
    socket.send_json(
        {"type": "joinLobby", "lobbyId": lobby_id, "boardWidth": width, "boardHeight": height}
    )
    return socket.receive_json()


def test_index(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "running" in response.text


# ---------- single player ----------


def test_create_game_and_first_move(client):
    response = client.post("/api/game", json={"width": 4, "height": 3})
    assert response.status_code == 200
    payload = response.json()
    assert payload["currentPlayer"] == "X"
    assert payload["board"] == [None] * 12
    assert payload["moveLog"] == []

    game_id = payload["id"]
    move_response = client.post(f"/api/game/{game_id}/move", json={"index": 5})
    assert move_response.status_code == 200
    state = move_response.json()
    assert state["moveLog"][0] == {"player": "X", "index": 5}
    assert state["board"][5] == "X"
    assert state["currentPlayer"] == "O"
    assert state["aiPending"] is True

    follow_up = client.get(f"/api/game/{game_id}")
    assert follow_up.status_code == 200
    final_state = follow_up.json()
    assert final_state["currentPlayer"] == "X"
    assert final_state["aiPending"] is False
    assert final_state["moveLog"][-1]["player"] == "O"
    assert final_state["board"].count("O") == 1


def test_invalid_move_rejected(client):
    game_id = client.post("/api/game", json={}).json()["id"]
    assert client.post(f"/api/game/{game_id}/move", json={"index": 0}).status_code == 200

    duplicate_move = client.post(f"/api/game/{game_id}/move", json={"index": 0})
    assert duplicate_move.status_code == 400
    assert duplicate_move.json()["detail"]

    off_board = client.post(f"/api/game/{game_id}/move", json={"index": 9})
    assert off_board.status_code == 400


def test_reset_game(client):
    game_id = client.post("/api/game", json={}).json()["id"]
    client.post(f"/api/game/{game_id}/move", json={"index": 4})
    response = client.post(f"/api/game/{game_id}/reset")
    assert response.status_code == 200
    state = response.json()
    assert state["board"] == [None] * 9
    assert state["moveLog"] == []
    assert state["currentPlayer"] == "X"


def test_rejects_unsupported_dimensions(client):
    assert client.post("/api/game", json={"width": 2}).status_code == 422
    assert client.post("/api/game", json={"height": 21}).status_code == 422


def test_missing_game_returns_404(client):
    assert client.get("/api/game/INVALID").status_code == 404


def test_player_move_schedules_computer_reply(monkeypatch):
    monkeypatch.setattr(server, "AI_THINK_DELAY", (0.0, 0.0))
    games = {}
    game_id, session = server._create_session(games, 3, 3)
    tasks = BackgroundTasks()

    server._apply_player_move(games, game_id, 4, tasks)
    assert session.ai_pending is True
    assert len(tasks.tasks) == 1

    server._run_ai_turn(games, game_id)
    assert session.ai_pending is False
    assert session.game.board.count("O") == 1
    assert session.game.current_player == "X"


def test_winning_move_schedules_nothing():
    games = {}
    game_id, session = server._create_session(games, 3, 3)
    for index, symbol in zip((0, 3, 1, 4), "XOXO"):
        session.game.board[index] = symbol
    tasks = BackgroundTasks()

    server._apply_player_move(games, game_id, 2, tasks)
    assert session.game.winner == "X"
    assert session.ai_pending is False
    assert tasks.tasks == []


# ---------- lobbies ----------


def test_inspect_missing_lobby_returns_404(client):
    missing = client.get("/api/lobby/INVALID")
    assert missing.status_code == 404


def test_lobby_socket_join_and_inspect(client):
    with client.websocket_connect("/ws") as socket:
        state = _join(socket, "abc", 4, 4)
        assert state["type"] == "gameState"
        assert state["symbol"] == "X"
        assert state["players"] == 1
        assert state["width"] == 4

        details = client.get("/api/lobby/abc").json()
        assert details["players"] == 1
        assert details["availableSymbols"] == ["O"]

        socket.send_json({"type": "makeMove", "lobbyId": "abc", "index": 0})
        error = socket.receive_json()
        assert error == {
            "type": "error",
            "message": "Waiting for an opponent to join",
            "code": "AwaitingOpponent",
        }


def test_lobby_socket_rejects_bad_input(client):
    with client.websocket_connect("/ws") as socket:
        socket.send_text("not json")
        assert socket.receive_json()["code"] == "MalformedMessage"

        socket.send_json({"type": "dance", "lobbyId": "abc"})
        assert socket.receive_json()["code"] == "MalformedMessage"

        socket.send_json({"type": "makeMove", "lobbyId": "abc"})
        assert socket.receive_json()["code"] == "MalformedMessage"

        socket.send_json({"type": "joinLobby", "lobbyId": "abc", "boardWidth": 30})
        assert socket.receive_json()["code"] == "InvalidBoardDimensions"

        # The connection is still usable afterwards
        assert _join(socket, "abc")["type"] == "gameState"


def test_two_players_over_sockets(client, registry):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        assert _join(alice, "abc", 4, 4)["symbol"] == "X"

        bob_state = _join(bob, "abc", 9, 9)
        assert bob_state["symbol"] == "O"
        assert bob_state["players"] == 2
        assert bob_state["width"] == 4
        assert alice.receive_json() == {"type": "playerJoined", "players": 2}

        alice.send_json({"type": "makeMove", "lobbyId": "abc", "index": 5})
        for socket in (alice, bob):
            moved = socket.receive_json()
            assert moved["type"] == "moveMade"
            assert moved["index"] == 5
            assert moved["player"] == "X"
            assert moved["xIsNext"] is False

        alice.send_json({"type": "makeMove", "lobbyId": "abc", "index": 6})
        assert alice.receive_json()["code"] == "OutOfTurn"

        bob.send_json({"type": "resetGame", "lobbyId": "abc"})
        for socket in (alice, bob):
            reset = socket.receive_json()
            assert reset == {"type": "gameReset", "board": [None] * 16, "xIsNext": True}

        bob.send_json({"type": "leaveLobby", "lobbyId": "abc"})
        assert alice.receive_json() == {"type": "playerLeft", "players": 1}
        assert list(registry.get("abc").participants.values()) == ["X"]


def test_full_lobby_refuses_third_socket(client):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        _join(alice, "abc")
        _join(bob, "abc")
        alice.receive_json()  # playerJoined
        with client.websocket_connect("/ws") as carol:
            carol.send_json({"type": "joinLobby", "lobbyId": "abc"})
            error = carol.receive_json()
            assert error["type"] == "error"
            assert error["code"] == "LobbyFull"
            with pytest.raises(WebSocketDisconnect):
                carol.receive_json()


def test_closing_socket_leaves_lobby(client, registry):
    with client.websocket_connect("/ws") as alice:
        _join(alice, "abc")
        with client.websocket_connect("/ws") as bob:
            _join(bob, "abc")
            assert alice.receive_json() == {"type": "playerJoined", "players": 2}
        assert alice.receive_json() == {"type": "playerLeft", "players": 1}
        assert list(registry.get("abc").participants.values()) == ["X"]
    assert "abc" not in registry
