"""
Lichess API client for fetching user game data.
"""
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests

from . import config
from .errors import ExternalApiError, IncompleteFetchError, RateLimitError, UserNotFoundError
from .game_data import (
    BLACK,
    CLASSICAL,
    DRAW,
    LICHESS,
    LOSS,
    WHITE,
    WIN,
    AnalysisData,
    Game,
    Opening,
    Opponent,
    UNKNOWN_ECO,
    UNKNOWN_OPENING,
)
from .pgn_parser import build_clock_data

logger = logging.getLogger(__name__)

SOURCE_NAME = "Lichess"

TERMINATION_MAP = {
    'mate': 'checkmate',
    'resign': 'resignation',
    'outoftime': 'timeout',
    'timeout': 'timeout',
    'stalemate': 'stalemate',
    'draw': 'agreement',
    'aborted': 'abandoned',
    'noStart': 'abandoned',
    'cheat': 'other',
    'variantEnd': 'other',
}

TIME_CLASS_MAP = {
    'ultrabullet': 'bullet',
    'bullet': 'bullet',
    'blitz': 'blitz',
    'rapid': 'rapid',
}


class LichessClient:
    """Client for interacting with the Lichess API."""

    BASE_URL = "https://lichess.org/api"
    source = LICHESS

    def __init__(
        self,
        rate_limit_delay: float = config.LICHESS_RATE_LIMIT_DELAY,
        timeout: float = config.STREAM_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.rate_limit_delay = rate_limit_delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': config.USER_AGENT
        })

    def validate_user(self, username: str) -> bool:
        """Verify that a Lichess username exists."""
        url = f"{self.BASE_URL}/user/{username}"
        try:
            response = self.session.get(url, timeout=config.REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Could not validate Lichess user {username}: {e}")
            return False
        return response.status_code == 200

    def fetch_games(
        self,
        username: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        max_games: int = config.DEFAULT_MAX_GAMES,
        fetch_all: bool = False,
    ) -> List[Game]:
        """
        Fetch games for a user from the Lichess export stream.

        Args:
            username: Lichess username
            since: Only games created at or after this time
            until: Only games created at or before this time
            max_games: Maximum number of games (not sent when fetch_all)
            fetch_all: Export the full history

        Returns:
            List of Game objects sorted by played_at descending

        Raises:
            UserNotFoundError, RateLimitError, ExternalApiError if the export
                request fails
            IncompleteFetchError if the stream breaks part way; the games
                received before the break ride on the error
        """
        url = f"{self.BASE_URL}/games/user/{username}"
        params = {
            'opening': 'true',
            'moves': 'true',
            'clocks': 'true',
            'evals': 'true',
            'accuracy': 'true',
        }
        if not fetch_all:
            params['max'] = str(max_games)
        if since:
            params['since'] = str(_to_millis(since))
        if until:
            params['until'] = str(_to_millis(until))

        raw_games, stream_error = self._stream_games(url, params, username)

        games = []
        for raw in raw_games:
            try:
                games.append(self.convert_game(raw, username))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed Lichess game {raw.get('id')}: {e}")

        games.sort(key=lambda g: g.played_at, reverse=True)
        if stream_error is not None:
            raise IncompleteFetchError(SOURCE_NAME, games, [stream_error])
        logger.info(f"Fetched {len(games)} Lichess games for {username}")
        return games

    def _stream_games(
        self,
        url: str,
        params: Dict[str, str],
        username: str,
    ) -> Tuple[List[Dict[str, Any]], Optional[ExternalApiError]]:
        """
        Request the NDJSON export and parse it line by line.

        Returns the parsed games and, if the stream broke part way, the error.
        """
        time.sleep(self.rate_limit_delay)
        try:
            response = self.session.get(
                url,
                params=params,
                headers={'Accept': 'application/x-ndjson'},
                timeout=self.timeout,
                stream=True,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error fetching {url}: {e}")
            raise ExternalApiError(SOURCE_NAME, original_error=e) from e

        if response.status_code == 404:
            raise UserNotFoundError(SOURCE_NAME, username)
        if response.status_code == 429:
            raise RateLimitError.from_response(SOURCE_NAME, response)
        if response.status_code >= 400:
            logger.error(f"HTTP {response.status_code} fetching {url}")
            raise ExternalApiError(SOURCE_NAME, http_status=response.status_code)

        games = []
        stream_error = None
        try:
            for line in response.iter_lines(decode_unicode=True):
                if not line or not line.strip():
                    continue
                try:
                    games.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.warning(f"Failed to parse game JSON: {e}")
        except requests.exceptions.RequestException as e:
            logger.error(f"Lichess stream for {username} interrupted after {len(games)} games: {e}")
            stream_error = ExternalApiError(SOURCE_NAME, original_error=e)
        finally:
            response.close()

        return games, stream_error

    def convert_game(self, raw: Dict[str, Any], username: str) -> Game:
        """Convert a Lichess export entry into a Game."""
        players = raw['players']
        white_id = ((players.get('white') or {}).get('user') or {}).get('id', '')
        is_white = white_id.lower() == username.lower()
        player_color = WHITE if is_white else BLACK
        player = players['white'] if is_white else players['black']
        opponent = players['black'] if is_white else players['white']

        winner = raw.get('winner')
        if winner:
            result = WIN if winner == player_color else LOSS
        else:
            result = DRAW

        opening_data = raw.get('opening') or {}
        opening = Opening(
            eco=opening_data.get('eco') or UNKNOWN_ECO,
            name=opening_data.get('name') or UNKNOWN_OPENING,
        )

        clock = None
        clock_config = raw.get('clock')
        if clock_config:
            remaining = [cs / 100 for cs in raw.get('clocks') or []]
            clock = build_clock_data(
                int(clock_config.get('initial', 0)),
                int(clock_config.get('increment', 0)),
                remaining,
                player_color,
            )

        analysis = None
        player_analysis = player.get('analysis')
        if player_analysis:
            accuracy = player_analysis.get('accuracy')
            acpl = player_analysis.get('acpl')
            analysis = AnalysisData(
                accuracy=float(accuracy) if accuracy is not None else None,
                blunders=player_analysis.get('blunder'),
                mistakes=player_analysis.get('mistake'),
                inaccuracies=player_analysis.get('inaccuracy'),
                acpl=float(acpl) if acpl is not None else None,
            )

        opponent_user = opponent.get('user') or {}
        return Game(
            id=raw['id'],
            source=LICHESS,
            played_at=datetime.fromtimestamp(raw['createdAt'] / 1000, tz=timezone.utc),
            time_class=TIME_CLASS_MAP.get((raw.get('speed') or '').lower(), CLASSICAL),
            player_color=player_color,
            result=result,
            opening=opening,
            opponent=Opponent(
                username=opponent_user.get('name') or 'Anonymous',
                rating=opponent.get('rating'),
            ),
            player_rating=player.get('rating'),
            termination=TERMINATION_MAP.get(raw.get('status', ''), 'other'),
            move_count=count_moves(raw.get('moves')),
            rated=bool(raw.get('rated', False)),
            game_url=f"https://lichess.org/{raw['id']}",
            rating_change=player.get('ratingDiff'),
            clock=clock,
            analysis=analysis,
        )


def count_moves(moves: Optional[str]) -> int:
    """Full moves from a space separated move list (half-moves / 2, rounded up)."""
    if not moves or not moves.strip():
        return 0
    half_moves = len(moves.split())
    return (half_moves + 1) // 2


def _to_millis(when: datetime) -> int:
    return int(when.timestamp() * 1000)
