"""
Helper functions for replaying a game into the positions analysis needs.
"""
import chess
import chess.pgn
from io import StringIO
from typing import List, Optional, Sequence, Tuple


def build_positions(
    pgn: Optional[str] = None,
    moves: Optional[Sequence[str]] = None,
) -> Tuple[List[str], List[str]]:
    """
    Replay a game and collect the FEN before every ply.

    Args:
        pgn: Full PGN text (headers optional)
        moves: Alternatively, a move list in SAN or UCI

    Returns:
        (fens, uci_moves) where fens has one more entry than uci_moves; the
        last FEN is the final position

    Raises:
        ValueError: if neither input is given or a move is illegal
    """
    if pgn:
        game = chess.pgn.read_game(StringIO(pgn))
        if game is None:
            raise ValueError("Could not parse PGN")
        if game.errors:
            raise ValueError(f"Invalid PGN: {game.errors[0]}")
        board = game.board()
        played = list(game.mainline_moves())
    elif moves is not None:
        board = chess.Board()
        played = _parse_move_list(board.copy(), moves)
    else:
        raise ValueError("Either pgn or moves is required")

    fens = [board.fen()]
    uci_moves = []
    for move in played:
        uci_moves.append(move.uci())
        board.push(move)
        fens.append(board.fen())

    return fens, uci_moves


def _parse_move_list(board: chess.Board, moves: Sequence[str]) -> List[chess.Move]:
    """Parse each token as UCI first, then SAN."""
    parsed = []
    for token in moves:
        try:
            move = board.parse_uci(token)
        except ValueError:
            move = board.parse_san(token)  # raises ValueError on bad input
        parsed.append(move)
        board.push(move)
    return parsed
