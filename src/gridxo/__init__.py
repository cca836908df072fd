"""gridxo package exposing board rules, the heuristic opponent, lobbies and the web application."""

from .ai import HeuristicAI, choose_move
from .game import LocalGame, detect_win
from .lobby import GameSession, LobbyRegistry
from .server import app, create_app

__all__ = [
    "GameSession",
    "HeuristicAI",
    "LobbyRegistry",
    "LocalGame",
    "app",
    "choose_move",
    "create_app",
    "detect_win",
]
