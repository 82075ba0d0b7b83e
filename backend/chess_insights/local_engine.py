"""
Local Stockfish evaluator built on python-chess.
"""
import logging
import threading
from contextlib import suppress
from typing import Any, Dict, Optional

import chess
import chess.engine

from . import config
from .cloud_eval import MATE_SCORE
from .errors import EngineError
from .game_data import Evaluation

logger = logging.getLogger(__name__)


class LocalEvaluator:
    """
    Owns one UCI engine process.

    init() may be called any number of times; only the first call starts a
    process. destroy() may be called at any time, including while another
    thread is inside analyze(), which then fails with EngineError.
    """

    def __init__(
        self,
        engine_path: str = config.STOCKFISH_PATH,
        threads: int = config.STOCKFISH_THREADS,
        hash_mb: int = config.STOCKFISH_HASH_MB,
        timeout: float = config.ENGINE_TIMEOUT,
    ):
        self.engine_path = engine_path
        self.threads = threads
        self.hash_mb = hash_mb
        self.timeout = timeout
        self.engine: Optional[chess.engine.SimpleEngine] = None
        self._lock = threading.Lock()

    def __enter__(self) -> "LocalEvaluator":
        self.init()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()

    @property
    def is_ready(self) -> bool:
        return self.engine is not None

    def _options(self) -> Dict[str, Any]:
        return {"Threads": self.threads, "Hash": self.hash_mb}

    def init(self) -> None:
        """Start the engine process if it is not already running."""
        with self._lock:
            if self.engine is not None:
                return
            try:
                engine = chess.engine.SimpleEngine.popen_uci(self.engine_path, timeout=self.timeout)
            except (OSError, chess.engine.EngineError, TimeoutError) as e:
                logger.error(f"Could not start engine at {self.engine_path}: {e}")
                raise EngineError(f"Could not start engine at {self.engine_path}: {e}") from e

            try:
                engine.configure(self._options())
            except chess.engine.EngineError as e:
                with suppress(chess.engine.EngineError):
                    engine.quit()
                raise EngineError(f"Could not configure engine: {e}") from e

            self.engine = engine
            logger.info(f"Engine started: {engine.id.get('name', self.engine_path)}")

    def analyze(self, fen: str, depth: int = config.DEFAULT_ANALYSIS_DEPTH) -> Evaluation:
        """
        Search a position to a fixed depth.

        Raises:
            EngineError: engine not initialized, destroyed mid-search, invalid
                FEN, or the search itself failed
        """
        engine = self.engine
        if engine is None:
            raise EngineError("Engine not initialized")

        try:
            board = chess.Board(fen)
        except ValueError as e:
            raise EngineError(f"Invalid FEN {fen!r}: {e}") from e

        try:
            info = engine.analyse(board, chess.engine.Limit(depth=depth))
        except (chess.engine.EngineError, TimeoutError) as e:
            raise EngineError(f"Engine search failed: {e}") from e

        return info_to_evaluation(info, depth)

    def destroy(self) -> None:
        """Shut down the engine process. Safe to call repeatedly."""
        with self._lock:
            engine, self.engine = self.engine, None
        if engine is None:
            return
        with suppress(chess.engine.EngineError, TimeoutError):
            engine.quit()
        logger.info("Engine stopped")


def info_to_evaluation(info: Dict[str, Any], depth: int) -> Evaluation:
    """Convert a python-chess analysis InfoDict into a White-POV Evaluation."""
    pov_score = info.get("score")
    if pov_score is None:
        raise EngineError("Engine returned no score")

    white = pov_score.white()
    pv = tuple(move.uci() for move in info.get("pv") or [])
    return Evaluation(
        score=white.score(mate_score=MATE_SCORE),
        best_move=pv[0] if pv else "",
        depth=int(info.get("depth", depth)),
        mate=white.mate(),
        pv=pv,
        source="local",
    )
