"""Core rules for N-in-a-row on a rectangular board."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

from .errors import (
    GameConcluded,
    InvalidBoardDimensions,
    InvalidSquare,
    SquareOccupied,
)

Player = str  # "X" or "O"
Cell = Optional[Player]  # None means empty
Line = Tuple[int, ...]

PLAYERS: Tuple[Player, Player] = ("X", "O")
MIN_BOARD_DIMENSION = 3
MAX_BOARD_DIMENSION = 20
RUN_LENGTH = 3

# (row step, column step): right, down, down-right, down-left
DIRECTIONS: Tuple[Tuple[int, int], ...] = (
    (0, 1),
    (1, 0),
    (1, 1),
    (1, -1),
)


def opponent(player: Player) -> Player:
    return "O" if player == "X" else "X"


def check_dimensions(width: int, height: int) -> None:
    """Raise :class:`InvalidBoardDimensions` unless both axes are in range."""

    for name, value in (("width", width), ("height", height)):
        if not MIN_BOARD_DIMENSION <= value <= MAX_BOARD_DIMENSION:
            raise InvalidBoardDimensions(
                f"Board {name} must be between {MIN_BOARD_DIMENSION} "
                f"and {MAX_BOARD_DIMENSION}, got {value}"
            )


def empty_board(width: int, height: int) -> List[Cell]:
    return [None] * (width * height)


def empty_cells(board: Sequence[Cell]) -> List[int]:
    return [i for i, c in enumerate(board) if c is None]


def is_full(board: Sequence[Cell]) -> bool:
    return all(c is not None for c in board)


# ---------- Line scanning ----------


@lru_cache(maxsize=None)
def iter_lines(width: int, height: int, run_length: int = RUN_LENGTH) -> Tuple[Line, ...]:
    """
    Every candidate run of ``run_length`` cells that fits on the board.

    Runs are ordered by start cell (row-major) and then by DIRECTIONS, which
    is the scan order both the win detector and the heuristic rely on.
    """
    lines: List[Line] = []
    for r in range(height):
        for c in range(width):
            for dr, dc in DIRECTIONS:
                end_r = r + (run_length - 1) * dr
                end_c = c + (run_length - 1) * dc
                if not (0 <= end_r < height and 0 <= end_c < width):
                    continue
                lines.append(
                    tuple(
                        (r + i * dr) * width + (c + i * dc)
                        for i in range(run_length)
                    )
                )
    return tuple(lines)


# ---------- Win / draw detection ----------


@dataclass(frozen=True)
class Win:
    symbol: Player
    line: Line


@dataclass(frozen=True)
class Outcome:
    winner: Optional[Player] = None
    line: Optional[Line] = None
    draw: bool = False

    @property
    def concluded(self) -> bool:
        return self.winner is not None or self.draw


def detect_win(
    board: Sequence[Cell], width: int, height: int, run_length: int = RUN_LENGTH
) -> Optional[Win]:
    """Return the first completed run in scan order, or None.

    When one move completes several runs at once the first one found wins the
    tie; the choice has no meaning beyond being deterministic.
    """
    for line in iter_lines(width, height, run_length):
        first = board[line[0]]
        if first is None:
            continue
        if all(board[i] == first for i in line[1:]):
            return Win(symbol=first, line=line)
    return None


def evaluate_board(
    board: Sequence[Cell], width: int, height: int, run_length: int = RUN_LENGTH
) -> Outcome:
    win = detect_win(board, width, height, run_length)
    if win:
        return Outcome(winner=win.symbol, line=win.line)
    if is_full(board):
        return Outcome(draw=True)
    return Outcome()


# ---------- Single-player game ----------


@dataclass
class LocalGame:
    """Board state for a game played against the computer.

    Nothing here knows about lobbies or connections; the caller decides who
    is moving and when.
    """

    width: int = 3
    height: int = 3
    run_length: int = RUN_LENGTH
    human: Player = "X"
    board: List[Cell] = field(init=False)
    x_is_next: bool = True
    winner: Optional[Player] = None
    winning_line: Optional[Line] = None
    drawn: bool = False

    def __post_init__(self) -> None:
        check_dimensions(self.width, self.height)
        self.board = empty_board(self.width, self.height)

    @property
    def current_player(self) -> Player:
        return "X" if self.x_is_next else "O"

    @property
    def computer(self) -> Player:
        return opponent(self.human)

    @property
    def finished(self) -> bool:
        return self.winner is not None or self.drawn

    def available_moves(self) -> List[int]:
        if self.finished:
            return []
        return empty_cells(self.board)

    def play(self, index: int) -> Player:
        """Place the current player's symbol at ``index`` and return it."""
        if self.finished:
            raise GameConcluded()
        if not 0 <= index < len(self.board):
            raise InvalidSquare()
        if self.board[index] is not None:
            raise SquareOccupied()

        player = self.current_player
        self.board[index] = player
        self.x_is_next = not self.x_is_next

        outcome = evaluate_board(self.board, self.width, self.height, self.run_length)
        self.winner = outcome.winner
        self.winning_line = outcome.line
        self.drawn = outcome.draw
        return player

    def reset(self) -> None:
        self.board = empty_board(self.width, self.height)
        self.x_is_next = True
        self.winner = None
        self.winning_line = None
        self.drawn = False
