import os
import tempfile
import unittest
from unittest.mock import Mock

from chess_insights.analysis_service import AnalysisService, is_player_turn
from chess_insights.cloud_eval import CloudEvalClient
from chess_insights.database import GameStore, UserStore
from chess_insights.errors import EngineError, GameNotFoundError
from chess_insights.game_data import Evaluation
from tests.game_fixtures import make_game


def synthetic_fens(count):
    """Positions that only carry the side to move, which is all the service reads."""
    return [f"pos{i} {'w' if i % 2 == 0 else 'b'} - - 0 1" for i in range(count)]


class FakeEvaluator:
    """White-POV scores by position index."""

    def __init__(self, fens, scores, fail_on=None):
        self.scores = {fen: scores.get(i, 0) for i, fen in enumerate(fens)}
        self.fail_on = fail_on
        self.calls = []
        self.init_calls = 0
        self.destroyed = False

    def init(self):
        self.init_calls += 1

    def analyze(self, fen, depth=16):
        if fen == self.fail_on:
            raise EngineError("search failed")
        self.calls.append((fen, depth))
        return Evaluation(score=self.scores[fen], best_move="e2e4", depth=depth)

    def destroy(self):
        self.destroyed = True


class AnalyzeGameTests(unittest.TestCase):
    def test_white_losses_and_classification(self) -> None:
        fens = synthetic_fens(4)
        evaluator = FakeEvaluator(fens, {0: 0, 1: -150, 2: -150, 3: -600})
        service = AnalysisService(evaluator)

        result = service.analyze_game("g1", fens, ["e2e4", "e7e5", "g1f3"], "white", use_cloud=False)

        player_moves = [m for m in result.moves if m.is_player_move]
        self.assertEqual([m.ply for m in player_moves], [0, 2])
        self.assertEqual([m.cp_loss for m in player_moves], [150, 450])
        self.assertEqual([m.classification for m in player_moves], ["mistake", "blunder"])
        self.assertEqual(result.acpl, 300)
        self.assertEqual(result.mistakes, 1)
        self.assertEqual(result.blunders, 1)
        self.assertEqual(result.inaccuracies, 0)
        self.assertLess(result.accuracy, 100)
        self.assertFalse(result.estimated)

        opponent_move = result.moves[1]
        self.assertFalse(opponent_move.is_player_move)
        self.assertEqual(opponent_move.cp_loss, 0)
        self.assertEqual(opponent_move.classification, "good")

    def test_black_perspective(self) -> None:
        fens = synthetic_fens(4)
        evaluator = FakeEvaluator(fens, {0: 0, 1: 100, 2: 300, 3: 250})
        service = AnalysisService(evaluator)

        result = service.analyze_game("g1", fens, ["e2e4", "e7e5", "g1f3"], "black", use_cloud=False)

        black_move = result.moves[1]
        self.assertTrue(black_move.is_player_move)
        self.assertEqual(black_move.cp_loss, 200)
        self.assertEqual(black_move.classification, "mistake")
        self.assertEqual(result.acpl, 200)

    def test_improving_move_has_no_loss(self) -> None:
        fens = synthetic_fens(2)
        evaluator = FakeEvaluator(fens, {0: -200, 1: 50})
        result = AnalysisService(evaluator).analyze_game("g1", fens, ["e2e4"], "white", use_cloud=False)
        self.assertEqual(result.moves[0].cp_loss, 0)
        self.assertEqual(result.accuracy, 100.0)

    def test_each_position_evaluated_once(self) -> None:
        fens = synthetic_fens(7)
        evaluator = FakeEvaluator(fens, {})
        AnalysisService(evaluator).analyze_game("g1", fens, ["m"] * 6, "white", depth=18, use_cloud=False)

        self.assertEqual(sorted(fen for fen, _ in evaluator.calls), sorted(fens))
        self.assertTrue(all(depth == 18 for _, depth in evaluator.calls))

    def test_progress_is_monotonic(self) -> None:
        fens = synthetic_fens(6)
        progress = []
        AnalysisService(FakeEvaluator(fens, {})).analyze_game(
            "g1", fens, ["m"] * 5, "white", use_cloud=False,
            on_progress=lambda percent, message: progress.append(percent),
        )

        self.assertEqual(len(progress), 5)
        self.assertEqual(progress, sorted(progress))
        self.assertEqual(progress[-1], 100.0)

    def test_empty_game(self) -> None:
        result = AnalysisService(FakeEvaluator([], {})).analyze_game(
            "g1", ["start w - - 0 1"], [], "white", use_cloud=False,
        )
        self.assertEqual(result.moves, ())
        self.assertEqual(result.acpl, 0)

    def test_position_count_mismatch(self) -> None:
        with self.assertRaises(ValueError):
            AnalysisService(FakeEvaluator([], {})).analyze_game("g1", synthetic_fens(2), ["a", "b"], "white")

    def test_engine_errors_propagate(self) -> None:
        fens = synthetic_fens(3)
        evaluator = FakeEvaluator(fens, {}, fail_on=fens[1])
        with self.assertRaises(EngineError):
            AnalysisService(evaluator).analyze_game("g1", fens, ["a", "b"], "white", use_cloud=False)

    def test_cloud_first_then_local(self) -> None:
        fens = synthetic_fens(3)
        evaluator = FakeEvaluator(fens, {1: -40, 2: -40})
        cloud = Mock(spec=CloudEvalClient)
        cloud.get_cloud_eval.side_effect = lambda fen: (
            Evaluation(score=20, best_move="d2d4", depth=40, source="cloud") if fen == fens[0] else None
        )
        service = AnalysisService(evaluator, cloud)

        result = service.analyze_game("g1", fens, ["a", "b"], "white")

        self.assertEqual(result.moves[0].eval_before.source, "cloud")
        self.assertEqual(result.moves[0].best_move, "d2d4")
        self.assertEqual(result.moves[0].cp_loss, 60)
        self.assertEqual([fen for fen, _ in evaluator.calls], fens[1:])
        self.assertGreaterEqual(evaluator.init_calls, 1)

    def test_use_cloud_false_skips_cloud(self) -> None:
        fens = synthetic_fens(2)
        cloud = Mock(spec=CloudEvalClient)
        AnalysisService(FakeEvaluator(fens, {}), cloud).analyze_game("g1", fens, ["a"], "white", use_cloud=False)
        cloud.get_cloud_eval.assert_not_called()

    def test_close_destroys_evaluator(self) -> None:
        evaluator = FakeEvaluator([], {})
        AnalysisService(evaluator).close()
        self.assertTrue(evaluator.destroyed)

    def test_is_player_turn(self) -> None:
        self.assertTrue(is_player_turn("x w - - 0 1", "white"))
        self.assertFalse(is_player_turn("x b - - 0 1", "white"))
        self.assertTrue(is_player_turn("x b - - 0 1", "black"))


class QuickAnalysisTests(unittest.TestCase):
    def test_samples_every_fifth_ply(self) -> None:
        fens = synthetic_fens(41)
        # Sampled white plies are 0, 10, 20, 30; each drops 500 cp
        scores = {ply + 1: -500 for ply in (0, 10, 20, 30)}
        evaluator = FakeEvaluator(fens, scores)
        progress = []

        result = AnalysisService(evaluator).quick_analysis(
            "g1", fens, ["m"] * 40, "white", use_cloud=False,
            on_progress=lambda percent, message: progress.append(percent),
        )

        self.assertTrue(result.estimated)
        self.assertEqual([m.ply for m in result.moves], [0, 10, 20, 30])
        self.assertEqual(result.sampled_moves, 4)
        self.assertEqual(result.player_moves, 20)
        self.assertEqual(result.blunders, 20)
        self.assertLessEqual(result.blunders + result.mistakes + result.inaccuracies, 20)
        self.assertEqual(result.acpl, 500)
        self.assertEqual(len(evaluator.calls), 8)
        self.assertTrue(all(depth == 12 for _, depth in evaluator.calls))
        self.assertEqual(progress, [25.0, 50.0, 75.0, 100.0])

    def test_black_samples(self) -> None:
        fens = synthetic_fens(21)
        result = AnalysisService(FakeEvaluator(fens, {})).quick_analysis(
            "g1", fens, ["m"] * 20, "black", use_cloud=False,
        )
        self.assertEqual([m.ply for m in result.moves], [5, 15])
        self.assertEqual(result.player_moves, 10)
        self.assertEqual(result.blunders, 0)

    def test_counts_bounded_by_player_moves(self) -> None:
        fens = synthetic_fens(12)
        # White plies 0 and 10 sampled; both blunders
        evaluator = FakeEvaluator(fens, {1: -900, 11: -900})
        result = AnalysisService(evaluator).quick_analysis("g1", fens, ["m"] * 11, "white", use_cloud=False)

        self.assertEqual(result.player_moves, 6)
        self.assertEqual(result.blunders, 6)
        self.assertLessEqual(result.blunders, result.player_moves)


class AnalyzeStoredGameTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp_dir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmp_dir.name, "chess.db")
        user = UserStore(db_path).create_user(lichess_username="alice")
        self.games = GameStore(db_path)
        self.games.save_many([make_game("g1", user_id=user.id, player_color="black")])

    def tearDown(self) -> None:
        self.tmp_dir.cleanup()

    def test_writes_analysis_back(self) -> None:
        fens = synthetic_fens(4)
        evaluator = FakeEvaluator(fens, {0: 0, 1: 0, 2: 300, 3: 300})
        result = AnalysisService(evaluator).analyze_stored_game(
            self.games, "g1", fens, ["a", "b", "c"], use_cloud=False,
        )

        self.assertEqual(result.mistakes, 0)
        self.assertEqual(result.blunders, 1)
        stored = self.games.find_by_id("g1")
        self.assertEqual(stored.analysis.blunders, 1)
        self.assertEqual(stored.analysis.acpl, 300)
        self.assertLess(abs(stored.analysis.analyzed_at - result.analyzed_at).total_seconds(), 0.001)
        self.assertEqual(stored.result, "win")

    def test_quick_mode(self) -> None:
        fens = synthetic_fens(4)
        result = AnalysisService(FakeEvaluator(fens, {})).analyze_stored_game(
            self.games, "g1", fens, ["a", "b", "c"], quick=True, use_cloud=False,
        )
        self.assertTrue(result.estimated)
        self.assertIsNotNone(self.games.find_by_id("g1").analysis.analyzed_at)

    def test_unknown_game(self) -> None:
        with self.assertRaises(GameNotFoundError):
            AnalysisService(FakeEvaluator([], {})).analyze_stored_game(
                self.games, "missing", synthetic_fens(1), [], use_cloud=False,
            )
