"""
Game analysis: per-move centipawn loss, classification and accuracy.

Positions are evaluated through the cloud cache when allowed, falling back to
the local engine. Every position is evaluated at most once per game.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from . import config
from .cloud_eval import CloudEvalClient
from .errors import GameNotFoundError
from .game_data import WHITE, Evaluation, GameAnalysis, GOOD, MoveAnalysis
from .local_engine import LocalEvaluator
from .scoring import (
    calculate_accuracy,
    calculate_acpl,
    classify_move,
    count_classifications,
    extrapolate_counts,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]


def is_player_turn(fen: str, player_color: str) -> bool:
    """True when the side to move in `fen` is the subject player."""
    fields = fen.split()
    side = fields[1] if len(fields) > 1 else 'w'
    return (side == 'w') == (player_color == WHITE)


class AnalysisService:
    """Runs engine analysis over a game's positions."""

    def __init__(
        self,
        evaluator: Optional[LocalEvaluator] = None,
        cloud_client: Optional[CloudEvalClient] = None,
    ):
        self.evaluator = evaluator or LocalEvaluator()
        self.cloud_client = cloud_client

    def close(self) -> None:
        self.evaluator.destroy()

    def analyze_position(
        self,
        fen: str,
        depth: int = config.DEFAULT_ANALYSIS_DEPTH,
        use_cloud: bool = True,
    ) -> Evaluation:
        """Evaluate one position, trying the cloud cache before the local engine."""
        if use_cloud and self.cloud_client is not None:
            evaluation = self.cloud_client.get_cloud_eval(fen)
            if evaluation is not None:
                return evaluation

        self.evaluator.init()
        return self.evaluator.analyze(fen, depth)

    def analyze_game(
        self,
        game_id: str,
        fens: Sequence[str],
        moves: Sequence[str],
        player_color: str,
        depth: int = config.DEFAULT_ANALYSIS_DEPTH,
        use_cloud: bool = True,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GameAnalysis:
        """
        Analyze every ply of a game.

        Args:
            game_id: ID of the game being analyzed
            fens: Position before each ply, plus the final position
            moves: Move played at each ply
            player_color: Subject player ('white' or 'black')
            depth: Local engine search depth
            use_cloud: Try the cloud evaluation cache first
            on_progress: Optional (percent, message) callback, called after each ply

        Returns:
            GameAnalysis with one MoveAnalysis per ply. Losses are counted for
            the subject's moves only.
        """
        plies = _ply_count(fens, moves)
        evaluate = self._cached_evaluator(fens, depth, use_cloud)

        analyzed: List[MoveAnalysis] = []
        for ply in range(plies):
            analyzed.append(self._analyze_ply(ply, fens, moves, player_color, evaluate))
            _report(on_progress, (ply + 1) / plies * 100, f"Analyzed move {ply + 1}/{plies}")

        player_moves = [m for m in analyzed if m.is_player_move]
        acpl = calculate_acpl([m.cp_loss for m in player_moves])
        counts = count_classifications(m.classification for m in player_moves)

        logger.info(f"Analyzed game {game_id}: {len(player_moves)} player moves, ACPL {acpl:.1f}")
        return GameAnalysis(
            game_id=game_id,
            moves=tuple(analyzed),
            accuracy=calculate_accuracy(acpl),
            blunders=counts['blunder'],
            mistakes=counts['mistake'],
            inaccuracies=counts['inaccuracy'],
            acpl=round(acpl, 1),
            analyzed_at=datetime.now(timezone.utc),
            player_moves=len(player_moves),
            sampled_moves=len(player_moves),
        )

    def quick_analysis(
        self,
        game_id: str,
        fens: Sequence[str],
        moves: Sequence[str],
        player_color: str,
        depth: int = config.QUICK_ANALYSIS_DEPTH,
        use_cloud: bool = True,
        on_progress: Optional[ProgressCallback] = None,
        sample_interval: int = config.QUICK_SAMPLE_INTERVAL,
    ) -> GameAnalysis:
        """
        Estimate game statistics from every Nth ply.

        Only sampled plies belonging to the subject are evaluated. ACPL and
        accuracy come from the sample; blunder/mistake/inaccuracy counts are
        scaled to the whole game and are estimates (`estimated=True`).
        """
        plies = _ply_count(fens, moves)
        evaluate = self._cached_evaluator(fens, depth, use_cloud)

        total_player_moves = sum(1 for ply in range(plies) if is_player_turn(fens[ply], player_color))
        samples = [
            ply for ply in range(0, plies, sample_interval)
            if is_player_turn(fens[ply], player_color)
        ]

        analyzed: List[MoveAnalysis] = []
        for index, ply in enumerate(samples):
            analyzed.append(self._analyze_ply(ply, fens, moves, player_color, evaluate))
            _report(on_progress, (index + 1) / len(samples) * 100, f"Sampled move {index + 1}/{len(samples)}")

        acpl = calculate_acpl([m.cp_loss for m in analyzed])
        counts = extrapolate_counts(
            count_classifications(m.classification for m in analyzed),
            len(analyzed),
            total_player_moves,
        )

        logger.info(
            f"Quick analysis of {game_id}: sampled {len(analyzed)}/{total_player_moves} player moves"
        )
        return GameAnalysis(
            game_id=game_id,
            moves=tuple(analyzed),
            accuracy=calculate_accuracy(acpl),
            blunders=counts['blunder'],
            mistakes=counts['mistake'],
            inaccuracies=counts['inaccuracy'],
            acpl=round(acpl, 1),
            analyzed_at=datetime.now(timezone.utc),
            estimated=True,
            player_moves=total_player_moves,
            sampled_moves=len(analyzed),
        )

    def analyze_stored_game(
        self,
        game_store,
        game_id: str,
        fens: Sequence[str],
        moves: Sequence[str],
        quick: bool = False,
        depth: Optional[int] = None,
        use_cloud: bool = True,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GameAnalysis:
        """Analyze a stored game and write the summary back to the store."""
        game = game_store.find_by_id(game_id)
        if game is None:
            raise GameNotFoundError(game_id)

        if quick:
            result = self.quick_analysis(
                game_id, fens, moves, game.player_color,
                depth=depth or config.QUICK_ANALYSIS_DEPTH,
                use_cloud=use_cloud,
                on_progress=on_progress,
            )
        else:
            result = self.analyze_game(
                game_id, fens, moves, game.player_color,
                depth=depth or config.DEFAULT_ANALYSIS_DEPTH,
                use_cloud=use_cloud,
                on_progress=on_progress,
            )

        game_store.update_analysis(game_id, result.to_analysis_data())
        return result

    def _cached_evaluator(
        self,
        fens: Sequence[str],
        depth: int,
        use_cloud: bool,
    ) -> Callable[[int], Evaluation]:
        """Evaluate positions by index, searching each one at most once."""
        cache: Dict[int, Evaluation] = {}

        def evaluate(index: int) -> Evaluation:
            if index not in cache:
                cache[index] = self.analyze_position(fens[index], depth=depth, use_cloud=use_cloud)
            return cache[index]

        return evaluate

    def _analyze_ply(
        self,
        ply: int,
        fens: Sequence[str],
        moves: Sequence[str],
        player_color: str,
        evaluate: Callable[[int], Evaluation],
    ) -> MoveAnalysis:
        eval_before = evaluate(ply)
        eval_after = evaluate(ply + 1)
        is_player_move = is_player_turn(fens[ply], player_color)

        cp_loss = 0
        classification = GOOD
        if is_player_move:
            sign = 1 if player_color == WHITE else -1
            cp_loss = max(0, sign * eval_before.score - sign * eval_after.score)
            classification = classify_move(cp_loss)

        return MoveAnalysis(
            ply=ply,
            move_number=ply // 2 + 1,
            fen=fens[ply],
            move=moves[ply],
            eval_before=eval_before,
            eval_after=eval_after,
            cp_loss=cp_loss,
            best_move=eval_before.best_move or None,
            classification=classification,
            is_player_move=is_player_move,
        )


def _ply_count(fens: Sequence[str], moves: Sequence[str]) -> int:
    if len(fens) < len(moves) + 1:
        raise ValueError(f"Need {len(moves) + 1} positions for {len(moves)} moves, got {len(fens)}")
    return len(moves)


def _report(on_progress: Optional[ProgressCallback], percent: float, message: str) -> None:
    if on_progress is not None:
        on_progress(round(min(100.0, percent), 1), message)
