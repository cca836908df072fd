"""Greedy one-ply opponent: win if possible, block if needed, else random."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence
import random

from .game import RUN_LENGTH, Cell, LocalGame, Player, empty_cells, iter_lines, opponent


def find_completing_cell(
    board: Sequence[Cell],
    width: int,
    height: int,
    target: Player,
    run_length: int = RUN_LENGTH,
) -> Optional[int]:
    """Empty cell that would complete a run for ``target``, first in scan order."""
    for line in iter_lines(width, height, run_length):
        cells = [board[i] for i in line]
        if cells.count(target) == run_length - 1 and cells.count(None) == 1:
            return line[cells.index(None)]
    return None


def choose_move(
    board: Sequence[Cell],
    width: int,
    height: int,
    player: Player,
    run_length: int = RUN_LENGTH,
    rng: Optional[random.Random] = None,
) -> int:
    """Pick a move for ``player``.

    Priority is win-now, then block the opponent's near-complete line, then a
    uniformly random empty cell. There is no lookahead: forks and double
    threats fall through to the random choice.
    """
    empties = empty_cells(board)
    if not empties:
        raise ValueError("No empty squares to choose from")

    winning = find_completing_cell(board, width, height, player, run_length)
    if winning is not None:
        return winning

    blocking = find_completing_cell(board, width, height, opponent(player), run_length)
    if blocking is not None:
        return blocking

    return (rng or random).choice(empties)


@dataclass
class HeuristicAI:
    """Computer player for :class:`LocalGame`.

      - HeuristicAI(player="O")
      - choose(game) -> cell index
    """

    player: Player
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def choose(self, game: LocalGame) -> int:
        if game.current_player != self.player:
            raise ValueError("It is not this AI player's turn")
        return choose_move(
            game.board,
            game.width,
            game.height,
            self.player,
            run_length=game.run_length,
            rng=self.rng,
        )
