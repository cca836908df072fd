"""Recoverable game errors reported back to the requesting connection."""

from __future__ import annotations

from typing import Optional


class GameError(Exception):
    """Base class for rejected requests.

    ``code`` is stable and machine readable; ``str(exc)`` is meant for
    players.
    """

    default_message = "Request rejected"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def code(self) -> str:
        return type(self).__name__

    @property
    def message(self) -> str:
        return str(self)


class InvalidBoardDimensions(GameError):
    default_message = "Board dimensions are out of range"


class SessionNotFound(GameError):
    default_message = "Lobby not found"


class GameConcluded(GameError):
    default_message = "Game already finished"


class InvalidSquare(GameError):
    default_message = "Square index is off the board"


class SquareOccupied(GameError):
    default_message = "Square already occupied"


class NotAParticipant(GameError):
    default_message = "You are not a player in this lobby"


class AwaitingOpponent(GameError):
    default_message = "Waiting for an opponent to join"


class OutOfTurn(GameError):
    default_message = "It is not your turn"


class LobbyFull(GameError):
    default_message = "Lobby is full"


class MalformedMessage(GameError):
    default_message = "Malformed message"
