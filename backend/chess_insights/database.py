"""
SQLite database setup and operations.

Games are upserted with a per-column merge policy: static game facts keep
the stored value and only fill gaps, analysis results take the incoming
value when one is given.
"""
import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from . import config
from .errors import AccountNotFoundError, DatabaseError
from .game_data import (
    AnalysisData,
    ClockData,
    Game,
    Opening,
    Opponent,
    UNKNOWN_ECO,
    UNKNOWN_OPENING,
    UserConfig,
)

logger = logging.getLogger(__name__)

# Columns whose stored value wins on conflict: COALESCE(existing, incoming).
STATIC_COLUMNS = (
    "user_id",
    "source",
    "played_at",
    "time_class",
    "player_color",
    "result",
    "opening_eco",
    "opening_name",
    "opponent_username",
    "opponent_rating",
    "player_rating",
    "termination",
    "rating_change",
    "move_count",
    "rated",
    "game_url",
    "initial_time",
    "increment",
    "time_remaining",
    "avg_move_time",
    "move_times",
)

# Columns where a new value wins on conflict: COALESCE(incoming, existing).
ANALYSIS_COLUMNS = (
    "accuracy",
    "blunders",
    "mistakes",
    "inaccuracies",
    "acpl",
    "analyzed_at",
)

GAME_COLUMNS = ("id",) + STATIC_COLUMNS + ANALYSIS_COLUMNS

UPSERT_GAME_SQL = """
    INSERT INTO games ({columns}) VALUES ({placeholders})
    ON CONFLICT(id) DO UPDATE SET
        {static_updates},
        {analysis_updates},
        updated_at = CURRENT_TIMESTAMP
""".format(
    columns=", ".join(GAME_COLUMNS),
    placeholders=", ".join("?" for _ in GAME_COLUMNS),
    static_updates=",\n        ".join(
        f"{column} = COALESCE(games.{column}, excluded.{column})" for column in STATIC_COLUMNS
    ),
    analysis_updates=",\n        ".join(
        f"{column} = COALESCE(excluded.{column}, games.{column})" for column in ANALYSIS_COLUMNS
    ),
)

UPDATE_ANALYSIS_SQL = """
    UPDATE games SET
        accuracy = COALESCE(?, accuracy),
        blunders = COALESCE(?, blunders),
        mistakes = COALESCE(?, mistakes),
        inaccuracies = COALESCE(?, inaccuracies),
        acpl = COALESCE(?, acpl),
        analyzed_at = ?,
        updated_at = CURRENT_TIMESTAMP
    WHERE id = ?
"""

SELECT_GAME_COLUMNS = ", ".join(GAME_COLUMNS)


def get_db_path(db_path: Optional[str] = None) -> str:
    """Get the database path, creating its directory if needed."""
    path = db_path or config.DATABASE_PATH
    db_dir = os.path.dirname(os.path.abspath(path))
    os.makedirs(db_dir, exist_ok=True)
    return path


@contextmanager
def get_connection(db_path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Context manager for database connections."""
    try:
        conn = sqlite3.connect(get_db_path(db_path), timeout=30)
    except sqlite3.Error as e:
        raise DatabaseError("Could not open database", e) from e
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise DatabaseError("Database operation failed", e) from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chess_com_username TEXT COLLATE NOCASE,
                lichess_username TEXT COLLATE NOCASE,
                last_synced_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS games (
                id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                source TEXT NOT NULL,
                played_at TEXT NOT NULL,
                time_class TEXT NOT NULL,
                player_color TEXT NOT NULL,
                result TEXT NOT NULL,
                opening_eco TEXT,
                opening_name TEXT,
                opponent_username TEXT,
                opponent_rating INTEGER,
                player_rating INTEGER,
                termination TEXT,
                rating_change INTEGER,
                move_count INTEGER,
                rated INTEGER NOT NULL DEFAULT 0,
                game_url TEXT,
                initial_time INTEGER,
                increment INTEGER,
                time_remaining REAL,
                avg_move_time REAL,
                move_times TEXT,
                accuracy REAL,
                blunders INTEGER,
                mistakes INTEGER,
                inaccuracies INTEGER,
                acpl REAL,
                analyzed_at TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        """)

        # Index for incremental sync and listing
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_games_user_source_played
            ON games(user_id, source, played_at DESC)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_games_user_analyzed
            ON games(user_id, analyzed_at)
        """)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a sortable UTC ISO string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def game_to_params(game: Game) -> Tuple[Any, ...]:
    """Flatten a game into the GAME_COLUMNS parameter order."""
    if game.user_id is None:
        raise ValueError(f"Game {game.id} has no user_id")

    clock = game.clock
    analysis = game.analysis or AnalysisData()
    return (
        game.id,
        game.user_id,
        game.source,
        to_iso(game.played_at),
        game.time_class,
        game.player_color,
        game.result,
        # "Unknown" sentinels are stored as NULL so a later fetch can fill them in
        None if game.opening.eco == UNKNOWN_ECO else game.opening.eco,
        None if game.opening.name == UNKNOWN_OPENING else game.opening.name,
        game.opponent.username,
        game.opponent.rating,
        game.player_rating,
        game.termination,
        game.rating_change,
        game.move_count,
        1 if game.rated else 0,
        game.game_url,
        clock.initial_time if clock else None,
        clock.increment if clock else None,
        clock.time_remaining if clock else None,
        clock.avg_move_time if clock else None,
        json.dumps(list(clock.move_times)) if clock and clock.move_times else None,
        analysis.accuracy,
        analysis.blunders,
        analysis.mistakes,
        analysis.inaccuracies,
        analysis.acpl,
        to_iso(analysis.analyzed_at),
    )


def row_to_game(row: sqlite3.Row) -> Game:
    """Build a Game from a games row."""
    clock = None
    if row["initial_time"] is not None:
        clock = ClockData(
            initial_time=row["initial_time"],
            increment=row["increment"] or 0,
            time_remaining=row["time_remaining"],
            move_times=tuple(json.loads(row["move_times"])) if row["move_times"] else (),
            avg_move_time=row["avg_move_time"],
        )

    analysis = None
    if any(row[column] is not None for column in ANALYSIS_COLUMNS):
        analysis = AnalysisData(
            accuracy=row["accuracy"],
            blunders=row["blunders"],
            mistakes=row["mistakes"],
            inaccuracies=row["inaccuracies"],
            acpl=row["acpl"],
            analyzed_at=from_iso(row["analyzed_at"]),
        )

    return Game(
        id=row["id"],
        source=row["source"],
        played_at=from_iso(row["played_at"]),
        time_class=row["time_class"],
        player_color=row["player_color"],
        result=row["result"],
        opening=Opening(
            eco=row["opening_eco"] or UNKNOWN_ECO,
            name=row["opening_name"] or UNKNOWN_OPENING,
        ),
        opponent=Opponent(
            username=row["opponent_username"] or "Unknown",
            rating=row["opponent_rating"],
        ),
        player_rating=row["player_rating"],
        termination=row["termination"] or "other",
        move_count=row["move_count"] or 0,
        rated=row["rated"] == 1,
        game_url=row["game_url"] or "",
        rating_change=row["rating_change"],
        clock=clock,
        analysis=analysis,
        user_id=row["user_id"],
    )


# ============================================
# Games
# ============================================

class GameStore:
    """
    Persistence for Game records.

    Rows are keyed by the platform game id alone and user_id is a static
    column, so a game shared by two local users stays with whoever synced it
    first; the other user's sync counts it as 0 new and never lists it.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.DATABASE_PATH
        init_db(self.db_path)

    def exists_by_id(self, game_id: str) -> bool:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute("SELECT 1 FROM games WHERE id = ?", (game_id,))
            return cursor.fetchone() is not None

    def find_by_id(self, game_id: str) -> Optional[Game]:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                f"SELECT {SELECT_GAME_COLUMNS} FROM games WHERE id = ?",
                (game_id,),
            )
            row = cursor.fetchone()
            return row_to_game(row) if row else None

    def find_all(
        self,
        user_id: int,
        source: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Game]:
        """Get games for a user, newest first."""
        sql = f"SELECT {SELECT_GAME_COLUMNS} FROM games WHERE user_id = ?"
        params: List[Any] = [user_id]
        if source:
            sql += " AND source = ?"
            params.append(source)
        sql += " ORDER BY played_at DESC"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        with get_connection(self.db_path) as conn:
            return [row_to_game(row) for row in conn.execute(sql, params).fetchall()]

    def count(self, user_id: int) -> int:
        """Get count of games for a user."""
        with get_connection(self.db_path) as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM games WHERE user_id = ?", (user_id,))
            return cursor.fetchone()[0]

    def get_latest_game_date(self, user_id: int, source: str) -> Optional[datetime]:
        """Most recent played_at for a user/source pair, for incremental sync."""
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT MAX(played_at) FROM games WHERE user_id = ? AND source = ?",
                (user_id, source),
            )
            row = cursor.fetchone()
            return from_iso(row[0]) if row else None

    def find_games_needing_analysis(self, user_id: int, limit: int = 50) -> List[Game]:
        """Get games that haven't been analyzed yet."""
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                f"""
                SELECT {SELECT_GAME_COLUMNS} FROM games
                WHERE user_id = ? AND analyzed_at IS NULL
                ORDER BY played_at DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            return [row_to_game(row) for row in cursor.fetchall()]

    def save_many(self, games: Sequence[Game]) -> int:
        """
        Upsert games in a single transaction.

        Returns:
            Number of games submitted (not the number of new rows)
        """
        if not games:
            return 0

        params = [game_to_params(game) for game in games]
        with get_connection(self.db_path) as conn:
            conn.executemany(UPSERT_GAME_SQL, params)
        return len(params)

    def update_analysis(self, game_id: str, analysis: AnalysisData) -> bool:
        """
        Write analysis results for a game.

        Incoming values replace stored ones; fields left as None keep what is
        stored. Returns False if the game does not exist.
        """
        analyzed_at = analysis.analyzed_at or datetime.now(timezone.utc)
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(UPDATE_ANALYSIS_SQL, (
                analysis.accuracy,
                analysis.blunders,
                analysis.mistakes,
                analysis.inaccuracies,
                analysis.acpl,
                to_iso(analyzed_at),
                game_id,
            ))
            return cursor.rowcount > 0

    def delete_by_user(self, user_id: int) -> int:
        """Delete all games for a user. Returns the number of rows removed."""
        with get_connection(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM games WHERE user_id = ?", (user_id,))
            deleted = cursor.rowcount
        logger.info(f"Deleted {deleted} games for user {user_id}")
        return deleted


# ============================================
# Users
# ============================================

def _row_to_user(row: sqlite3.Row) -> UserConfig:
    return UserConfig(
        id=row["id"],
        chess_com_username=row["chess_com_username"],
        lichess_username=row["lichess_username"],
        last_synced_at=from_iso(row["last_synced_at"]),
    )


class UserStore:
    """Local user records and their configured platform usernames."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.DATABASE_PATH
        init_db(self.db_path)

    def create_user(
        self,
        chess_com_username: Optional[str] = None,
        lichess_username: Optional[str] = None,
    ) -> UserConfig:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                "INSERT INTO users (chess_com_username, lichess_username) VALUES (?, ?)",
                (chess_com_username or None, lichess_username or None),
            )
            user_id = cursor.lastrowid
        return UserConfig(
            id=user_id,
            chess_com_username=chess_com_username or None,
            lichess_username=lichess_username or None,
        )

    def find_by_id(self, user_id: int) -> Optional[UserConfig]:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT id, chess_com_username, lichess_username, last_synced_at FROM users WHERE id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
            return _row_to_user(row) if row else None

    def update_usernames(
        self,
        user_id: int,
        chess_com_username: Optional[str] = None,
        lichess_username: Optional[str] = None,
    ) -> UserConfig:
        """Update the platform usernames. Empty strings clear a username."""
        updates = []
        params: List[Any] = []
        if chess_com_username is not None:
            updates.append("chess_com_username = ?")
            params.append(chess_com_username or None)
        if lichess_username is not None:
            updates.append("lichess_username = ?")
            params.append(lichess_username or None)

        if updates:
            params.append(user_id)
            with get_connection(self.db_path) as conn:
                conn.execute(f"UPDATE users SET {', '.join(updates)} WHERE id = ?", params)

        user = self.find_by_id(user_id)
        if user is None:
            raise AccountNotFoundError(user_id)
        return user

    def update_last_synced(self, user_id: int, when: Optional[datetime] = None) -> None:
        """Update the last sync timestamp for a user (defaults to now)."""
        when = when or datetime.now(timezone.utc)
        with get_connection(self.db_path) as conn:
            conn.execute(
                "UPDATE users SET last_synced_at = ? WHERE id = ?",
                (to_iso(when), user_id),
            )

