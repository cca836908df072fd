"""FastAPI transport: the lobby WebSocket plus a small REST surface."""

from __future__ import annotations

import json
import logging
import os
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from fastapi import (
    APIRouter,
    BackgroundTasks,
    FastAPI,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .ai import HeuristicAI
from .errors import GameError, LobbyFull, MalformedMessage, SessionNotFound
from .game import MAX_BOARD_DIMENSION, MIN_BOARD_DIMENSION, LocalGame
from .lobby import (
    Join,
    Leave,
    LobbyRegistry,
    Move,
    Outbound,
    Request as LobbyRequest,
    Reset,
    error_event,
)

logger = logging.getLogger(__name__)

AI_THINK_DELAY: Tuple[float, float] = (0.4, 0.8)
ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.environ.get("GRIDXO_CORS_ORIGINS", "*").split(",")
    if origin.strip()
]

router = APIRouter()


# ---------- Lobby messages ----------


class _LobbyMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lobby_id: str = Field(alias="lobbyId", min_length=1, max_length=64)


class JoinLobbyMessage(_LobbyMessage):
    type: Literal["joinLobby"]
    board_width: int = Field(default=3, alias="boardWidth")
    board_height: int = Field(default=3, alias="boardHeight")

    def to_request(self) -> Join:
        return Join(self.lobby_id, self.board_width, self.board_height)


class MakeMoveMessage(_LobbyMessage):
    type: Literal["makeMove"]
    index: int

    def to_request(self) -> Move:
        return Move(self.lobby_id, self.index)


class ResetGameMessage(_LobbyMessage):
    type: Literal["resetGame"]

    def to_request(self) -> Reset:
        return Reset(self.lobby_id)


class LeaveLobbyMessage(_LobbyMessage):
    type: Literal["leaveLobby"]

    def to_request(self) -> Leave:
        return Leave(self.lobby_id)


InboundMessage = Annotated[
    Union[JoinLobbyMessage, MakeMoveMessage, ResetGameMessage, LeaveLobbyMessage],
    Field(discriminator="type"),
]
_INBOUND = TypeAdapter(InboundMessage)


def parse_message(text: str) -> LobbyRequest:
    """Turn one raw WebSocket frame into a lobby request."""

    try:
        data = json.loads(text)
    except ValueError as exc:
        raise MalformedMessage("Message is not valid JSON") from exc
    try:
        message = _INBOUND.validate_python(data)
    except ValidationError as exc:
        raise MalformedMessage(f"Malformed message: {exc.errors()[0]['msg']}") from exc
    return message.to_request()


class ConnectionHub:
    """Live sockets keyed by the handle the lobby registry knows them by."""

    def __init__(self) -> None:
        self._sockets: Dict[str, WebSocket] = {}

    def __len__(self) -> int:
        return len(self._sockets)

    def register(self, websocket: WebSocket) -> str:
        handle = uuid.uuid4().hex
        self._sockets[handle] = websocket
        return handle

    def unregister(self, handle: str) -> None:
        self._sockets.pop(handle, None)

    async def deliver(self, events: List[Outbound]) -> None:
        for event in events:
            message = event.message()
            for handle in event.recipients:
                websocket = self._sockets.get(handle)
                if websocket is None:
                    continue
                try:
                    await websocket.send_json(message)
                except (RuntimeError, WebSocketDisconnect):
                    logger.debug("Dropped %s for closed connection %s", event.event, handle)


def _rejected_as_full(events: List[Outbound]) -> bool:
    return any(
        e.event == "error" and e.payload.get("code") == LobbyFull.__name__
        for e in events
    )


@router.websocket("/ws")
async def lobby_socket(websocket: WebSocket) -> None:
    await websocket.accept()
    registry: LobbyRegistry = websocket.app.state.registry
    hub: ConnectionHub = websocket.app.state.hub
    handle = hub.register(websocket)
    logger.info("Connection %s opened", handle)

    try:
        while True:
            text = await websocket.receive_text()
            try:
                request = parse_message(text)
            except MalformedMessage as exc:
                await hub.deliver([error_event(handle, exc)])
                continue

            events = registry.dispatch(handle, request)
            await hub.deliver(events)
            if isinstance(request, Join) and _rejected_as_full(events):
                await websocket.close()
                return
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(handle)
        await hub.deliver(registry.dispatch(handle, Leave()))
        logger.info("Connection %s closed", handle)


@router.get("/api/lobby/{lobby_id}")
def inspect_lobby(lobby_id: str, request: Request) -> Dict[str, object]:
    registry: LobbyRegistry = request.app.state.registry
    try:
        return registry.describe(lobby_id)
    except SessionNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc


# ---------- Single player ----------


@dataclass
class SoloSession:
    """Container for a game against the computer."""

    game: LocalGame
    ai: HeuristicAI
    move_log: List[Dict[str, int | str]] = field(default_factory=list)
    ai_pending: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class NewGameRequest(BaseModel):
    """Request payload for starting a game against the computer."""

    width: int = Field(default=3, ge=MIN_BOARD_DIMENSION, le=MAX_BOARD_DIMENSION)
    height: int = Field(default=3, ge=MIN_BOARD_DIMENSION, le=MAX_BOARD_DIMENSION)


class MoveRequest(BaseModel):
    index: int = Field(ge=0)


def _create_session(
    games: Dict[str, SoloSession], width: int, height: int
) -> Tuple[str, SoloSession]:
    game = LocalGame(width=width, height=height)
    session = SoloSession(game=game, ai=HeuristicAI(player=game.computer))
    game_id = uuid.uuid4().hex
    games[game_id] = session
    return game_id, session


def _get_session(games: Dict[str, SoloSession], game_id: str) -> SoloSession:
    try:
        return games[game_id]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _run_ai_turn(games: Dict[str, SoloSession], game_id: str) -> None:
    session = games.get(game_id)
    if not session:
        return

    time.sleep(max(0.0, random.uniform(*AI_THINK_DELAY)))

    with session.lock:
        try:
            game = session.game
            if game.finished or game.current_player != session.ai.player:
                return
            index = session.ai.choose(game)
            game.play(index)
            session.move_log.append({"player": session.ai.player, "index": index})
        finally:
            session.ai_pending = False


def _serialize_session(game_id: str, session: SoloSession) -> Dict[str, object]:
    with session.lock:
        game = session.game
        state: Dict[str, object] = {
            "id": game_id,
            "width": game.width,
            "height": game.height,
            "board": list(game.board),
            "currentPlayer": game.current_player,
            "human": game.human,
            "computer": game.computer,
            "winner": game.winner,
            "winningLine": list(game.winning_line) if game.winning_line else None,
            "drawn": game.drawn,
            "availableMoves": game.available_moves(),
            "moveLog": list(session.move_log),
            "aiPending": session.ai_pending,
        }
        if session.move_log:
            state["lastMove"] = session.move_log[-1]
        return state


def _apply_player_move(
    games: Dict[str, SoloSession],
    game_id: str,
    index: int,
    background_tasks: BackgroundTasks,
) -> None:
    session = _get_session(games, game_id)
    with session.lock:
        game = session.game
        if session.ai_pending:
            raise HTTPException(status_code=400, detail="AI is completing its move")
        if game.current_player != game.human and not game.finished:
            raise HTTPException(status_code=400, detail="It is not your turn")

        player = game.current_player
        try:
            game.play(index)
        except GameError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc
        session.move_log.append({"player": player, "index": index})

        if not game.finished and game.current_player == session.ai.player:
            session.ai_pending = True
            background_tasks.add_task(_run_ai_turn, games, game_id)


@router.post("/api/game")
def create_game(body: NewGameRequest, request: Request) -> Dict[str, object]:
    game_id, session = _create_session(request.app.state.games, body.width, body.height)
    return _serialize_session(game_id, session)


@router.get("/api/game/{game_id}")
def get_game(game_id: str, request: Request) -> Dict[str, object]:
    session = _get_session(request.app.state.games, game_id)
    return _serialize_session(game_id, session)


@router.post("/api/game/{game_id}/move")
def make_move(
    game_id: str, body: MoveRequest, request: Request, background_tasks: BackgroundTasks
) -> Dict[str, object]:
    games = request.app.state.games
    _apply_player_move(games, game_id, body.index, background_tasks)
    return _serialize_session(game_id, _get_session(games, game_id))


@router.post("/api/game/{game_id}/reset")
def reset_game(game_id: str, request: Request) -> Dict[str, object]:
    session = _get_session(request.app.state.games, game_id)
    with session.lock:
        if session.ai_pending:
            raise HTTPException(status_code=400, detail="AI is completing its move")
        session.game.reset()
        session.move_log.clear()
    return _serialize_session(game_id, session)


@router.get("/", response_class=PlainTextResponse)
def index() -> str:
    return "gridxo server is running"


def create_app(registry: Optional[LobbyRegistry] = None) -> FastAPI:
    """Build the application around its own lobby registry and game store."""

    application = FastAPI(
        title="gridxo", description="Two-player N-in-a-row lobbies over WebSockets"
    )
    application.state.registry = registry if registry is not None else LobbyRegistry()
    application.state.hub = ConnectionHub()
    application.state.games = {}
    application.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    application.include_router(router)
    return application


app = create_app()
