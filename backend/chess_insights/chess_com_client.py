"""
Chess.com API client for fetching user game data.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests

from . import config
from .errors import (
    ChessInsightsError,
    ExternalApiError,
    IncompleteFetchError,
    RateLimitError,
    UserNotFoundError,
)
from .game_data import (
    BLACK,
    CHESS_COM,
    CLASSICAL,
    DRAW,
    LOSS,
    WHITE,
    WIN,
    AnalysisData,
    Game,
    Opponent,
    make_game_id,
)
from .pgn_parser import (
    build_clock_data,
    count_full_moves,
    parse_clock_annotations,
    parse_headers,
    parse_opening,
    parse_time_control,
)

logger = logging.getLogger(__name__)

SOURCE_NAME = "Chess.com"

LOSS_RESULTS = {
    'checkmated',
    'timeout',
    'resigned',
    'lose',
    'abandoned',
    'kingofthehill',
    'threecheck',
    'bughousepartnerlose',
}

# Checked in order against both players' result codes; first hit wins.
TERMINATION_PRIORITY: List[Tuple[Tuple[str, ...], str]] = [
    (('checkmated',), 'checkmate'),
    (('timeout',), 'timeout'),
    (('resigned',), 'resignation'),
    (('stalemate',), 'stalemate'),
    (('insufficient',), 'insufficient'),
    (('repetition',), 'repetition'),
    (('agreed', '50move'), 'agreement'),
    (('abandoned',), 'abandoned'),
    (('timevsinsufficient',), 'timeout'),
]

TIME_CLASS_MAP = {
    'bullet': 'bullet',
    'ultrabullet': 'bullet',
    'blitz': 'blitz',
    'rapid': 'rapid',
}


class ChessComClient:
    """Client for the Chess.com Published Data API."""

    BASE_URL = "https://api.chess.com/pub"
    source = CHESS_COM

    def __init__(
        self,
        rate_limit_delay: float = config.CHESS_COM_RATE_LIMIT_DELAY,
        timeout: float = config.REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the Chess.com API client.

        Args:
            rate_limit_delay: Seconds to sleep before every request
            timeout: Per-request timeout in seconds
            session: Optional pre-configured session (used by tests)
        """
        self.rate_limit_delay = rate_limit_delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': config.USER_AGENT
        })

    def _make_request(self, url: str, username: str) -> Dict[str, Any]:
        """
        Make an API request with rate limiting, mapping failures to typed errors.
        """
        time.sleep(self.rate_limit_delay)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error fetching {url}: {e}")
            raise ExternalApiError(SOURCE_NAME, original_error=e) from e

        if response.status_code == 404:
            raise UserNotFoundError(SOURCE_NAME, username)
        if response.status_code == 429:
            raise RateLimitError.from_response(SOURCE_NAME, response)
        if response.status_code >= 400:
            logger.warning(f"HTTP {response.status_code} fetching {url}")
            raise ExternalApiError(SOURCE_NAME, http_status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ExternalApiError(SOURCE_NAME, original_error=e) from e

    def validate_user(self, username: str) -> bool:
        """Check that a Chess.com username exists."""
        url = f"{self.BASE_URL}/player/{username.lower()}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Could not validate Chess.com user {username}: {e}")
            return False
        return response.status_code == 200

    def get_archives(self, username: str) -> List[str]:
        """Get the list of monthly archive URLs for a user, oldest first."""
        url = f"{self.BASE_URL}/player/{username.lower()}/games/archives"
        data = self._make_request(url, username)
        return list(data.get('archives') or [])

    def get_monthly_games(self, archive_url: str, username: str) -> List[Dict[str, Any]]:
        """Get raw games from a monthly archive."""
        data = self._make_request(archive_url, username)
        return list(data.get('games') or [])

    def fetch_games(
        self,
        username: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        max_games: int = config.DEFAULT_MAX_GAMES,
        fetch_all: bool = False,
    ) -> List[Game]:
        """
        Fetch games for a user, newest first.

        Args:
            username: Chess.com username
            since: Only games that ended at or after this time
            until: Only games that ended at or before this time
            max_games: Stop after this many games (ignored when fetch_all)
            fetch_all: Scan every archive without truncating

        Returns:
            List of Game objects sorted by played_at descending

        Raises:
            UserNotFoundError, RateLimitError, ExternalApiError if the archive
                list itself cannot be fetched
            IncompleteFetchError if any monthly archive failed; the other
                archives are still scanned and their games ride on the error
        """
        archives = self.get_archives(username)
        if not archives:
            return []

        all_games: List[Game] = []
        skipped_variant = 0
        archive_errors: List[ChessInsightsError] = []

        for archive_url in reversed(archives):
            if not fetch_all and len(all_games) >= max_games:
                break

            month_range = _archive_month_range(archive_url)
            if month_range and (since or until):
                month_start, month_end = month_range
                if until and month_start > until:
                    continue
                if since and month_end <= since:
                    break  # Archives are newest first; everything after is older

            try:
                raw_games = self.get_monthly_games(archive_url, username)
            except ChessInsightsError as e:
                archive_errors.append(e)
                logger.error(f"Failed to fetch archive {archive_url}: {e}")
                continue

            for raw in reversed(raw_games):
                if raw.get('rules', 'chess') != 'chess':
                    skipped_variant += 1
                    continue

                try:
                    game = self.convert_game(raw, username)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed Chess.com game {raw.get('url')}: {e}")
                    continue

                if since and game.played_at < since:
                    continue
                if until and game.played_at > until:
                    continue

                all_games.append(game)
                if not fetch_all and len(all_games) >= max_games:
                    break

        if skipped_variant > 0:
            logger.info(f"Skipped {skipped_variant} variant games for {username}")
        all_games.sort(key=lambda g: g.played_at, reverse=True)
        if archive_errors:
            logger.warning(f"{len(archive_errors)} Chess.com archives failed for {username}")
            raise IncompleteFetchError(SOURCE_NAME, all_games, archive_errors)
        return all_games

    def convert_game(self, raw: Dict[str, Any], username: str) -> Game:
        """Convert a Chess.com archive entry into a Game."""
        is_white = raw['white']['username'].lower() == username.lower()
        player_color = WHITE if is_white else BLACK
        player = raw['white'] if is_white else raw['black']
        opponent = raw['black'] if is_white else raw['white']

        pgn = raw.get('pgn') or ''
        headers = parse_headers(pgn)

        clock = None
        time_control = parse_time_control(raw.get('time_control') or headers.get('TimeControl'))
        if time_control:
            initial, increment = time_control
            clock = build_clock_data(initial, increment, parse_clock_annotations(pgn), player_color)

        analysis = None
        accuracies = raw.get('accuracies') or {}
        if accuracies.get(player_color) is not None:
            analysis = AnalysisData(accuracy=float(accuracies[player_color]))

        played_at = datetime.fromtimestamp(raw['end_time'], tz=timezone.utc)
        url = raw.get('url') or ''
        game_id = url.rstrip('/').split('/')[-1] or make_game_id(CHESS_COM, played_at, opponent['username'])
        return Game(
            id=game_id,
            source=CHESS_COM,
            played_at=played_at,
            time_class=map_time_class(raw.get('time_class', '')),
            player_color=player_color,
            result=map_result(player.get('result', '')),
            opening=parse_opening(headers),
            opponent=Opponent(username=opponent['username'], rating=opponent.get('rating')),
            player_rating=player.get('rating'),
            termination=determine_termination(raw['white'].get('result', ''), raw['black'].get('result', '')),
            move_count=count_full_moves(pgn),
            rated=bool(raw.get('rated', False)),
            game_url=url,
            rating_change=None,  # not exposed by the published API
            clock=clock,
            analysis=analysis,
        )


def map_result(result: str) -> str:
    """Map a Chess.com player result code to win/loss/draw."""
    if result == 'win':
        return WIN
    if result in LOSS_RESULTS:
        return LOSS
    return DRAW


def map_time_class(time_class: str) -> str:
    return TIME_CLASS_MAP.get(time_class.lower(), CLASSICAL)


def determine_termination(white_result: str, black_result: str) -> str:
    """Work out how the game ended from both players' result codes."""
    results = {white_result, black_result}
    for codes, termination in TERMINATION_PRIORITY:
        if results.intersection(codes):
            return termination
    return 'other'


def _archive_month_range(archive_url: str) -> Optional[Tuple[datetime, datetime]]:
    """Start and end (exclusive) of an archive month from .../games/YYYY/MM."""
    parts = archive_url.rstrip('/').split('/')
    try:
        year, month = int(parts[-2]), int(parts[-1])
    except (IndexError, ValueError):
        return None
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end
