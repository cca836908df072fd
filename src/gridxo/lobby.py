"""Authoritative two-player lobbies.

``GameSession`` holds the state of one lobby and validates every transition;
``LobbyRegistry`` owns the sessions, creates them on first join and drops
them when the last participant leaves. Transports talk to the registry with
the request variants below and get back a list of ``Outbound`` events to
deliver.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .errors import (
    AwaitingOpponent,
    GameConcluded,
    GameError,
    InvalidSquare,
    LobbyFull,
    NotAParticipant,
    OutOfTurn,
    SessionNotFound,
    SquareOccupied,
)
from .game import (
    PLAYERS,
    RUN_LENGTH,
    Cell,
    Line,
    Player,
    check_dimensions,
    empty_board,
    evaluate_board,
)

logger = logging.getLogger(__name__)

Handle = str  # opaque per-connection id chosen by the transport


# ---------- Requests and events ----------


@dataclass(frozen=True)
class Join:
    lobby_id: str
    width: int = 3
    height: int = 3


@dataclass(frozen=True)
class Move:
    lobby_id: str
    index: int


@dataclass(frozen=True)
class Reset:
    lobby_id: str


@dataclass(frozen=True)
class Leave:
    # None leaves every lobby the connection is in (used on disconnect)
    lobby_id: Optional[str] = None


Request = Union[Join, Move, Reset, Leave]


@dataclass(frozen=True)
class Outbound:
    """One event addressed to one or more connections."""

    event: str
    payload: Dict[str, object]
    recipients: Tuple[Handle, ...]

    def message(self) -> Dict[str, object]:
        return {"type": self.event, **self.payload}


def error_event(handle: Handle, exc: GameError) -> Outbound:
    return Outbound("error", {"message": exc.message, "code": exc.code}, (handle,))


class SessionState(str, Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    CONCLUDED = "concluded"


# ---------- Session ----------


@dataclass
class GameSession:
    lobby_id: str
    width: int
    height: int
    run_length: int = RUN_LENGTH
    board: List[Cell] = field(init=False)
    x_is_next: bool = True
    # insertion ordered; at most one handle per symbol
    participants: Dict[Handle, Player] = field(default_factory=dict)
    winner: Optional[Player] = None
    winning_line: Optional[Line] = None
    drawn: bool = False
    closed: bool = field(default=False, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        check_dimensions(self.width, self.height)
        self.board = empty_board(self.width, self.height)

    # ---- derived state ----

    @property
    def next_symbol(self) -> Player:
        return "X" if self.x_is_next else "O"

    @property
    def finished(self) -> bool:
        return self.winner is not None or self.drawn

    @property
    def state(self) -> SessionState:
        if self.finished:
            return SessionState.CONCLUDED
        if len(self.participants) < 2:
            return SessionState.WAITING
        return SessionState.IN_PROGRESS

    def available_symbols(self) -> List[Player]:
        taken = set(self.participants.values())
        return [p for p in PLAYERS if p not in taken]

    def symbol_of(self, handle: Handle) -> Optional[Player]:
        return self.participants.get(handle)

    def snapshot(self, handle: Optional[Handle] = None) -> Dict[str, object]:
        return {
            "lobbyId": self.lobby_id,
            "board": list(self.board),
            "width": self.width,
            "height": self.height,
            "xIsNext": self.x_is_next,
            "symbol": self.symbol_of(handle) if handle else None,
            "players": len(self.participants),
            "winner": self.winner,
            "winningLine": list(self.winning_line) if self.winning_line else None,
            "draw": self.drawn,
            "status": self.state.value,
        }

    def _everyone(self) -> Tuple[Handle, ...]:
        return tuple(self.participants)

    def _others(self, handle: Handle) -> Tuple[Handle, ...]:
        return tuple(h for h in self.participants if h != handle)

    def _ensure_open(self) -> None:
        if self.closed:
            raise SessionNotFound()

    # ---- transitions ----

    def join(self, handle: Handle) -> List[Outbound]:
        """Claim a free symbol for ``handle``; X is handed out before O."""
        with self.lock:
            self._ensure_open()
            if handle in self.participants:
                return [Outbound("gameState", self.snapshot(handle), (handle,))]

            free = self.available_symbols()
            if not free:
                raise LobbyFull()
            self.participants[handle] = free[0]

            events = [Outbound("gameState", self.snapshot(handle), (handle,))]
            others = self._others(handle)
            if others:
                events.append(
                    Outbound("playerJoined", {"players": len(self.participants)}, others)
                )
            return events

    def move(self, handle: Handle, index: int) -> List[Outbound]:
        """Place the caller's symbol; checks run in a fixed order and the
        first failing one is reported."""
        with self.lock:
            self._ensure_open()
            if self.finished:
                raise GameConcluded()
            if not 0 <= index < len(self.board):
                raise InvalidSquare()
            if self.board[index] is not None:
                raise SquareOccupied()
            symbol = self.participants.get(handle)
            if symbol is None:
                raise NotAParticipant()
            if len(self.participants) < 2:
                raise AwaitingOpponent()
            if symbol != self.next_symbol:
                raise OutOfTurn()

            self.board[index] = symbol
            self.x_is_next = not self.x_is_next
            outcome = evaluate_board(self.board, self.width, self.height, self.run_length)
            self.winner = outcome.winner
            self.winning_line = outcome.line
            self.drawn = outcome.draw

            payload: Dict[str, object] = {
                "index": index,
                "player": symbol,
                "xIsNext": self.x_is_next,
                "winner": self.winner,
                "winningLine": list(self.winning_line) if self.winning_line else None,
                "draw": self.drawn,
            }
            return [Outbound("moveMade", payload, self._everyone())]

    def reset(self, handle: Handle) -> List[Outbound]:
        """Clear the board for a rematch. Symbol assignments are kept."""
        with self.lock:
            self._ensure_open()
            if handle not in self.participants:
                raise NotAParticipant()
            self.board = empty_board(self.width, self.height)
            self.x_is_next = True
            self.winner = None
            self.winning_line = None
            self.drawn = False
            payload = {"board": list(self.board), "xIsNext": self.x_is_next}
            return [Outbound("gameReset", payload, self._everyone())]

    def leave(self, handle: Handle) -> List[Outbound]:
        with self.lock:
            if self.participants.pop(handle, None) is None:
                return []
            remaining = self._everyone()
            if not remaining:
                return []
            return [Outbound("playerLeft", {"players": len(remaining)}, remaining)]

    def close(self) -> None:
        with self.lock:
            self.closed = True


# ---------- Registry ----------


class LobbyRegistry:
    """Owns every live :class:`GameSession`, keyed by lobby id.

    Mutations of the mapping happen under one lock; each session then
    serializes its own transitions. Locks are always taken registry first.
    """

    def __init__(self, run_length: int = RUN_LENGTH) -> None:
        self.run_length = run_length
        self._sessions: Dict[str, GameSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, lobby_id: object) -> bool:
        return lobby_id in self._sessions

    def get(self, lobby_id: str) -> GameSession:
        with self._lock:
            session = self._sessions.get(lobby_id)
        if session is None:
            raise SessionNotFound(f"Lobby {lobby_id!r} not found")
        return session

    def describe(self, lobby_id: str) -> Dict[str, object]:
        session = self.get(lobby_id)
        with session.lock:
            return {
                "lobbyId": session.lobby_id,
                "width": session.width,
                "height": session.height,
                "players": len(session.participants),
                "availableSymbols": session.available_symbols(),
                "status": session.state.value,
            }

    # ---- operations ----

    def join(
        self, handle: Handle, lobby_id: str, width: int = 3, height: int = 3
    ) -> List[Outbound]:
        """Join ``lobby_id``, creating it with the given size if it is new.

        The size of an existing lobby never changes; later joiners' dimensions
        are ignored.
        """
        with self._lock:
            session = self._sessions.get(lobby_id)
            created = session is None
            if session is None:
                session = GameSession(
                    lobby_id=lobby_id,
                    width=width,
                    height=height,
                    run_length=self.run_length,
                )
            events = session.join(handle)
            if created:
                self._sessions[lobby_id] = session
                logger.info(
                    "Created lobby %s (%dx%d)", lobby_id, session.width, session.height
                )
            logger.info(
                "Connection %s in lobby %s as %s (%d/2)",
                handle,
                lobby_id,
                session.symbol_of(handle),
                len(session.participants),
            )
        return events

    def move(self, handle: Handle, lobby_id: str, index: int) -> List[Outbound]:
        session = self.get(lobby_id)
        events = session.move(handle, index)
        if session.finished:
            logger.info(
                "Lobby %s concluded: %s",
                lobby_id,
                f"{session.winner} wins" if session.winner else "draw",
            )
        return events

    def reset(self, handle: Handle, lobby_id: str) -> List[Outbound]:
        return self.get(lobby_id).reset(handle)

    def leave(self, handle: Handle, lobby_id: str) -> List[Outbound]:
        with self._lock:
            return self._leave_locked(handle, lobby_id)

    def disconnect(self, handle: Handle) -> List[Outbound]:
        """Leave every lobby ``handle`` belongs to."""
        events: List[Outbound] = []
        with self._lock:
            for lobby_id, session in list(self._sessions.items()):
                if handle in session.participants:
                    events.extend(self._leave_locked(handle, lobby_id))
        return events

    def _leave_locked(self, handle: Handle, lobby_id: str) -> List[Outbound]:
        session = self._sessions.get(lobby_id)
        if session is None:
            return []
        events = session.leave(handle)
        logger.info("Connection %s left lobby %s", handle, lobby_id)
        if not session.participants:
            session.close()
            del self._sessions[lobby_id]
            logger.info("Discarded empty lobby %s", lobby_id)
        return events

    # ---- typed entry point ----

    def dispatch(self, handle: Handle, request: Request) -> List[Outbound]:
        """Apply ``request`` on behalf of ``handle``.

        Rejections never raise; they come back as a single ``error`` event
        addressed to ``handle`` and leave all state untouched.
        """
        try:
            if isinstance(request, Join):
                return self.join(handle, request.lobby_id, request.width, request.height)
            if isinstance(request, Move):
                return self.move(handle, request.lobby_id, request.index)
            if isinstance(request, Reset):
                return self.reset(handle, request.lobby_id)
            if isinstance(request, Leave):
                if request.lobby_id is None:
                    return self.disconnect(handle)
                return self.leave(handle, request.lobby_id)
        except GameError as exc:
            logger.info(
                "Rejected %s from %s: %s", type(request).__name__, handle, exc.code
            )
            return [error_event(handle, exc)]
        raise TypeError(f"Unsupported request: {request!r}")
