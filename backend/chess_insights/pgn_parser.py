"""
PGN parsing utilities - lightweight regex version.

Platform payloads embed a PGN; these helpers read its headers, clock
annotations and move count without a full python-chess parse.
"""
import re
from typing import Dict, List, Optional, Sequence, Tuple

from .game_data import WHITE, ClockData, Opening, UNKNOWN_ECO, UNKNOWN_OPENING

HEADER_RE = re.compile(r'\[(\w+)\s+"([^"]*)"\]')
CLOCK_RE = re.compile(r'\[%clk\s+(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)\]')


def parse_headers(pgn_string: str) -> Dict[str, str]:
    """Extract PGN tag pairs into a dict."""
    headers = {}
    for match in HEADER_RE.finditer(pgn_string or ""):
        headers[match.group(1)] = match.group(2)
    return headers


def strip_movetext(pgn_string: str) -> str:
    """Return the movetext with headers, comments and variations removed."""
    move_text = re.sub(r'\[[^\]]*\]', '', pgn_string or "")  # Remove headers
    move_text = re.sub(r'\{[^}]*\}', '', move_text)    # Remove comments
    move_text = re.sub(r'\([^)]*\)', '', move_text)    # Remove variations
    return move_text


def count_full_moves(pgn_string: str) -> int:
    """Highest move number in the movetext, i.e. the number of full moves."""
    numbers = [int(n) for n in re.findall(r'(\d+)\.', strip_movetext(pgn_string))]
    return max(numbers, default=0)


def parse_opening(headers: Dict[str, str]) -> Opening:
    """
    Build the opening from ECO/Opening tags.

    Chess.com has no Opening tag but links to the opening page in ECOUrl,
    e.g. https://www.chess.com/openings/Italian-Game-Two-Knights-Defense.
    """
    eco = headers.get('ECO') or UNKNOWN_ECO
    name = headers.get('Opening')
    if not name and headers.get('ECOUrl'):
        slug = headers['ECOUrl'].rstrip('/').split('/')[-1]
        name = slug.replace('-', ' ').strip() or None
    return Opening(eco=eco, name=name or UNKNOWN_OPENING)


def parse_time_control(time_control: Optional[str]) -> Optional[Tuple[int, int]]:
    """
    Parse a "base+increment" time control in seconds.

    Returns None for untimed ("-") and daily ("1/86400") games.
    """
    if not time_control or '/' in time_control:
        return None
    try:
        base, _, increment = time_control.partition('+')
        return int(float(base)), int(float(increment or 0))
    except ValueError:
        return None


def parse_clock_annotations(pgn_string: str) -> List[float]:
    """Remaining clock in seconds after each ply, from [%clk h:mm:ss.f] comments."""
    clocks = []
    for hours, minutes, seconds in CLOCK_RE.findall(pgn_string or ""):
        clocks.append(int(hours) * 3600 + int(minutes) * 60 + float(seconds))
    return clocks


def build_clock_data(
    initial_time: Optional[int],
    increment: int,
    remaining_per_ply: Sequence[float],
    player_color: str,
) -> Optional[ClockData]:
    """
    Derive the subject player's clock usage.

    Args:
        initial_time: Starting clock in seconds (None if unknown)
        increment: Increment per move in seconds
        remaining_per_ply: Remaining clock after every ply, both colors interleaved
        player_color: 'white' or 'black'

    Returns:
        ClockData, or None when the game has no clock
    """
    if initial_time is None:
        return None

    offset = 0 if player_color == WHITE else 1
    player_clocks = list(remaining_per_ply[offset::2])

    move_times = []
    previous = float(initial_time)
    for remaining in player_clocks:
        spent = max(0.0, previous - remaining + increment)
        move_times.append(round(spent, 1))
        previous = remaining

    avg_move_time = round(sum(move_times) / len(move_times), 2) if move_times else None
    return ClockData(
        initial_time=initial_time,
        increment=increment,
        time_remaining=player_clocks[-1] if player_clocks else None,
        move_times=tuple(move_times),
        avg_move_time=avg_move_time,
    )
