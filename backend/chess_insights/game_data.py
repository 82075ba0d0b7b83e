"""
Data models for chess games, evaluations and sync results.
"""
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

# Sources
CHESS_COM = "chesscom"
LICHESS = "lichess"
GAME_SOURCES = (CHESS_COM, LICHESS)

# Time classes
BULLET = "bullet"
BLITZ = "blitz"
RAPID = "rapid"
CLASSICAL = "classical"
TIME_CLASSES = (BULLET, BLITZ, RAPID, CLASSICAL)

# Colors
WHITE = "white"
BLACK = "black"

# Results from the subject player's perspective
WIN = "win"
LOSS = "loss"
DRAW = "draw"
GAME_RESULTS = (WIN, LOSS, DRAW)

TERMINATIONS = (
    "checkmate",
    "resignation",
    "timeout",
    "stalemate",
    "insufficient",
    "repetition",
    "agreement",
    "abandoned",
    "other",
)

UNKNOWN_ECO = "Unknown"
UNKNOWN_OPENING = "Unknown Opening"

# Move classifications
GOOD = "good"
INACCURACY = "inaccuracy"
MISTAKE = "mistake"
BLUNDER = "blunder"
CLASSIFICATIONS = (GOOD, INACCURACY, MISTAKE, BLUNDER)


@dataclass(frozen=True)
class Opening:
    eco: str = UNKNOWN_ECO
    name: str = UNKNOWN_OPENING


@dataclass(frozen=True)
class Opponent:
    username: str
    rating: Optional[int] = None


@dataclass(frozen=True)
class ClockData:
    """Clock configuration and usage for the subject player. All times in seconds."""
    initial_time: int
    increment: int = 0
    time_remaining: Optional[float] = None
    move_times: Tuple[float, ...] = ()
    avg_move_time: Optional[float] = None


@dataclass(frozen=True)
class AnalysisData:
    """
    Game-level analysis summary.

    Every field is optional so that a merge can tell "not analyzed" apart
    from a genuine zero count.
    """
    accuracy: Optional[float] = None
    blunders: Optional[int] = None
    mistakes: Optional[int] = None
    inaccuracies: Optional[int] = None
    acpl: Optional[float] = None
    analyzed_at: Optional[datetime] = None


@dataclass(frozen=True)
class Game:
    """A single game from any platform, seen from the subject player's side."""
    id: str
    source: str
    played_at: datetime
    time_class: str
    player_color: str
    result: str
    opening: Opening
    opponent: Opponent
    player_rating: Optional[int]
    termination: str
    move_count: int
    rated: bool
    game_url: str
    rating_change: Optional[int] = None
    clock: Optional[ClockData] = None
    analysis: Optional[AnalysisData] = None
    user_id: Optional[int] = None

    def with_user(self, user_id: int) -> "Game":
        return replace(self, user_id=user_id)


def make_game_id(source: str, played_at: datetime, opponent_username: str) -> str:
    """Build a deterministic ID for platforms that don't hand us one."""
    timestamp_ms = int(played_at.timestamp() * 1000)
    opponent = opponent_username.lower()[:10]
    return f"{source}-{timestamp_ms}-{opponent}"


@dataclass(frozen=True)
class UserConfig:
    """Local user record with the platform usernames to sync."""
    id: int
    chess_com_username: Optional[str] = None
    lichess_username: Optional[str] = None
    last_synced_at: Optional[datetime] = None


# ============================================
# Evaluation / analysis
# ============================================

@dataclass(frozen=True)
class Evaluation:
    """
    Engine evaluation of a position.

    `score` is in centipawns from White's point of view. Forced mates are
    folded into the score as +/-(10000 - |mate|) so the two always compare.
    """
    score: int
    best_move: str
    depth: int
    mate: Optional[int] = None
    pv: Tuple[str, ...] = ()
    source: str = "local"  # "cloud" or "local"


@dataclass(frozen=True)
class MoveAnalysis:
    ply: int
    move_number: int
    fen: str
    move: str
    eval_before: Optional[Evaluation]
    eval_after: Optional[Evaluation]
    cp_loss: int
    best_move: Optional[str]
    classification: str
    is_player_move: bool


@dataclass(frozen=True)
class GameAnalysis:
    game_id: str
    moves: Tuple[MoveAnalysis, ...]
    accuracy: float
    blunders: int
    mistakes: int
    inaccuracies: int
    acpl: float
    analyzed_at: datetime
    estimated: bool = False  # True for quick analysis: counts are extrapolated
    player_moves: int = 0
    sampled_moves: int = 0

    def to_analysis_data(self) -> AnalysisData:
        return AnalysisData(
            accuracy=self.accuracy,
            blunders=self.blunders,
            mistakes=self.mistakes,
            inaccuracies=self.inaccuracies,
            acpl=self.acpl,
            analyzed_at=self.analyzed_at,
        )


# ============================================
# Sync results
# ============================================

@dataclass
class SyncSourceResult:
    source: str
    new_games: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"source": self.source, "newGames": self.new_games}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class SyncResult:
    success: bool = True
    new_games_count: int = 0
    total_games_count: int = 0
    sources: List[SyncSourceResult] = field(default_factory=list)
    deleted_games_count: int = 0  # only set by a full resync

    def add_source(self, source_result: SyncSourceResult) -> None:
        self.sources.append(source_result)
        self.new_games_count += source_result.new_games
        if source_result.error is not None:
            self.success = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "newGamesCount": self.new_games_count,
            "totalGamesCount": self.total_games_count,
            "deletedGamesCount": self.deleted_games_count,
            "sources": [s.to_dict() for s in self.sources],
        }


def game_to_dict(game: Game) -> Dict[str, Any]:
    """Serialize a game for API responses."""
    data = asdict(game)
    data["played_at"] = game.played_at.isoformat()
    if game.analysis is not None and game.analysis.analyzed_at is not None:
        data["analysis"]["analyzed_at"] = game.analysis.analyzed_at.isoformat()
    if game.clock is not None:
        data["clock"]["move_times"] = list(game.clock.move_times)
    return data
